"""SuperAdmin view of the audit trail: search, reports and retention cleanup."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.access.policy import Action
from taskgate.access.resolver import AccessScopeResolver
from taskgate.audit import queries
from taskgate.audit.queries import (
    ActionCount,
    ActorActivity,
    AuditFilters,
    CategoryCount,
    DailyActivity,
    IPFailureSummary,
    OverallStats,
)
from taskgate.audit.recorder import AuditRecorder
from taskgate.config import settings
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.errors import NotFound, ValidationFailed
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditEntry,
    AuditResource,
    Page,
    Severity,
    User,
)
from taskgate.utils.time import utc_now

logger = logging.getLogger(__name__)

SUMMARY_PERIODS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}

MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 365


class SecurityReport(BaseModel):
    hours: int
    logs: Page[AuditEntry]
    summary: list[ActionCount]
    failed_logins_by_ip: list[IPFailureSummary]


class ActorReport(BaseModel):
    actor: User
    days: int
    logs: Page[AuditEntry]
    summary: list[ActionCount]
    daily_activity: list[DailyActivity]


class AuditSummary(BaseModel):
    period: str
    since: datetime
    stats: OverallStats
    top_actions: list[ActionCount]
    categories: list[CategoryCount]
    most_active_actors: list[ActorActivity]
    security_alerts: int


class AuditLogService:
    """Every method requires audit.read; reads are themselves audited."""

    def __init__(
        self,
        session: AsyncSession,
        directory: IdentityDirectory,
        resolver: AccessScopeResolver,
        recorder: AuditRecorder,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self.directory = directory
        self.resolver = resolver
        self.recorder = recorder
        self.clock = clock

    async def query(
        self,
        actor: User,
        filters: Optional[AuditFilters] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Page[AuditEntry]:
        await self.resolver.require(actor, Action.AUDIT_READ)
        filters = filters or AuditFilters()
        result = await queries.search(self.session, filters, page, _page_limit(limit))
        await self._record_access(
            actor,
            "audit_logs",
            {"filters": filters.model_dump(exclude_none=True), "total_results": result.total},
        )
        return result

    async def get_entry(self, actor: User, entry_id: UUID) -> AuditEntry:
        await self.resolver.require(actor, Action.AUDIT_READ)
        entry = await self.recorder.entries.get(entry_id)
        if not entry:
            raise NotFound("audit entry", str(entry_id))
        return entry

    async def security_report(
        self, actor: User, hours: int = 24, page: int = 1, limit: int = 50
    ) -> SecurityReport:
        """Security-relevant entries in the trailing window, with brute-force rollups."""
        await self.resolver.require(actor, Action.AUDIT_READ)
        if not 1 <= hours <= 168:
            raise ValidationFailed({"hours": "Hours must be between 1 and 168"})

        since = self.clock() - timedelta(hours=hours)
        logs = await queries.security_logs(self.session, since, page, _page_limit(limit))
        report = SecurityReport(
            hours=hours,
            logs=logs,
            summary=await queries.action_summary(self.session, since, security_only=True),
            failed_logins_by_ip=await queries.failed_logins_by_ip(self.session, since),
        )
        await self._record_access(
            actor,
            "security_audit",
            {"timeframe_hours": hours, "total_results": logs.total},
            category=AuditCategory.SECURITY,
        )
        return report

    async def actor_report(
        self, actor: User, actor_id: UUID, days: int = 30, page: int = 1, limit: int = 50
    ) -> ActorReport:
        """One user's trail: entries, per-action counts and per-day activity."""
        await self.resolver.require(actor, Action.AUDIT_READ)
        if not 1 <= days <= 365:
            raise ValidationFailed({"days": "Days must be between 1 and 365"})
        subject = await self.directory.require(actor_id)

        since = self.clock() - timedelta(days=days)
        report = ActorReport(
            actor=subject,
            days=days,
            logs=await queries.logs_by_actor(
                self.session, actor_id, page, _page_limit(limit), since=since
            ),
            summary=await queries.action_summary(self.session, since, actor_id=actor_id),
            daily_activity=await queries.daily_activity(self.session, actor_id, since),
        )
        await self._record_access(
            actor, "user_audit", {"subject_id": actor_id, "timeframe_days": days}
        )
        return report

    async def summary(self, actor: User, period: str = "7d") -> AuditSummary:
        await self.resolver.require(actor, Action.AUDIT_READ)
        if period not in SUMMARY_PERIODS:
            raise ValidationFailed(
                {"period": f"Period must be one of {', '.join(SUMMARY_PERIODS)}"}
            )

        since = self.clock() - SUMMARY_PERIODS[period]
        result = AuditSummary(
            period=period,
            since=since,
            stats=await queries.overall_stats(self.session, since),
            top_actions=await queries.action_summary(self.session, since, limit=10),
            categories=await queries.category_breakdown(self.session, since),
            most_active_actors=await queries.most_active_actors(self.session, since),
            security_alerts=await queries.security_alert_count(self.session, since),
        )
        await self._record_access(actor, "audit_summary", {"period": period})
        return result

    async def cleanup(self, actor: User, retention_days: Optional[int] = None) -> int:
        """
        Delete entries older than the retention window.

        High and critical entries are kept regardless of age.

        Returns:
            Number of entries deleted
        """
        await self.resolver.require(actor, Action.AUDIT_READ)
        days = retention_days or settings.audit_retention_days
        if not MIN_RETENTION_DAYS <= days <= MAX_RETENTION_DAYS:
            raise ValidationFailed(
                {
                    "retention_days": (
                        f"Retention must be between {MIN_RETENTION_DAYS} "
                        f"and {MAX_RETENTION_DAYS} days"
                    )
                }
            )

        cutoff = self.clock() - timedelta(days=days)
        deleted = await queries.delete_older_than(self.session, cutoff)
        await self.recorder.record(
            action=AuditAction.AUDIT_CLEANUP,
            resource=AuditResource.SYSTEM,
            actor_id=actor.id,
            details={"retention_days": days, "cutoff": cutoff, "deleted_count": deleted},
            severity=Severity.MEDIUM,
            category=AuditCategory.SYSTEM,
        )
        logger.info(f"Audit cleanup by {actor.id}: {deleted} entries older than {cutoff} removed")
        return deleted

    async def _record_access(
        self,
        actor: User,
        endpoint: str,
        details: dict[str, Any],
        category: AuditCategory = AuditCategory.SYSTEM,
    ) -> None:
        await self.recorder.record(
            action=AuditAction.SYSTEM_ACCESS,
            resource=AuditResource.SYSTEM,
            actor_id=actor.id,
            details={"endpoint": endpoint, **details},
            category=category,
        )


def _page_limit(limit: int) -> int:
    return max(1, min(limit, settings.max_list_limit))
