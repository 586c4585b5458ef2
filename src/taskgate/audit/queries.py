"""
Named read-side queries over the audit trail.

Each function takes a session and returns plain models so it can be
tested on its own. Trailing windows are expressed as a `since` instant
computed by the caller.
"""

from collections import defaultdict
from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy import case, delete, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from taskgate.db.repositories import AuditRepository
from taskgate.db.tables import AuditEntryTable
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditEntry,
    AuditResource,
    Page,
    Severity,
)
from taskgate.utils.time import as_utc


class AuditFilters(BaseModel):
    """Filters accepted by search()."""

    action: Optional[AuditAction] = None
    resource: Optional[AuditResource] = None
    actor_id: Optional[UUID] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    success: Optional[bool] = None
    severity: Optional[Severity] = None
    category: Optional[AuditCategory] = None


class ActionCount(BaseModel):
    action: AuditAction
    count: int
    success_count: int
    failure_count: int


class CategoryCount(BaseModel):
    category: AuditCategory
    count: int
    success_count: int
    failure_count: int


class IPFailureSummary(BaseModel):
    """Failed logins grouped by source IP, for brute-force detection."""

    ip_address: str
    count: int
    last_attempt: datetime
    actor_ids: list[UUID] = Field(default_factory=list)


class DailyActivity(BaseModel):
    date: str
    total: int
    actions: dict[str, int]


class ActorActivity(BaseModel):
    actor_id: UUID
    count: int
    last_activity: datetime


class OverallStats(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    unique_actors: int = 0
    unique_ips: int = 0
    success_rate: float = 0.0


def _success_sums():
    """SUM(CASE ...) columns counting successes and failures."""
    return (
        func.sum(case((AuditEntryTable.success.is_(True), 1), else_=0)),
        func.sum(case((AuditEntryTable.success.is_(False), 1), else_=0)),
    )


def security_predicate() -> ColumnElement[bool]:
    """Entries relevant to security review."""
    return or_(
        AuditEntryTable.category == AuditCategory.SECURITY,
        AuditEntryTable.action.in_(list(AuditAction.authentication_actions())),
        AuditEntryTable.success.is_(False),
        AuditEntryTable.severity.in_(list(Severity.retained())),
    )


async def search(
    session: AsyncSession,
    filters: AuditFilters,
    page: int = 1,
    limit: int = 50,
) -> Page[AuditEntry]:
    """Filtered audit log, newest first."""
    query = select(AuditEntryTable)

    if filters.action:
        query = query.where(AuditEntryTable.action == filters.action)
    if filters.resource:
        query = query.where(AuditEntryTable.resource == filters.resource)
    if filters.actor_id:
        query = query.where(AuditEntryTable.actor_id == filters.actor_id)
    if filters.start:
        query = query.where(AuditEntryTable.created_at >= filters.start)
    if filters.end:
        query = query.where(AuditEntryTable.created_at <= filters.end)
    if filters.success is not None:
        query = query.where(AuditEntryTable.success.is_(filters.success))
    if filters.severity:
        query = query.where(AuditEntryTable.severity == filters.severity)
    if filters.category:
        query = query.where(AuditEntryTable.category == filters.category)

    query = query.order_by(AuditEntryTable.created_at.desc())
    items, total = await AuditRepository(session).list_page(query, page, limit)
    return Page[AuditEntry](items=items, total=total, page=page, limit=limit)


async def logs_by_actor(
    session: AsyncSession,
    actor_id: UUID,
    page: int = 1,
    limit: int = 50,
    since: Optional[datetime] = None,
) -> Page[AuditEntry]:
    """Entries written on behalf of one actor, newest first."""
    return await search(
        session, AuditFilters(actor_id=actor_id, start=since), page=page, limit=limit
    )


async def logs_by_action(
    session: AsyncSession, action: AuditAction, limit: int = 100
) -> list[AuditEntry]:
    query = (
        select(AuditEntryTable)
        .where(AuditEntryTable.action == action)
        .order_by(AuditEntryTable.created_at.desc())
        .limit(limit)
    )
    return await AuditRepository(session).all(query)


async def security_logs(
    session: AsyncSession,
    since: Optional[datetime] = None,
    page: int = 1,
    limit: int = 100,
) -> Page[AuditEntry]:
    query = select(AuditEntryTable).where(security_predicate())
    if since:
        query = query.where(AuditEntryTable.created_at >= since)
    query = query.order_by(AuditEntryTable.created_at.desc())
    items, total = await AuditRepository(session).list_page(query, page, limit)
    return Page[AuditEntry](items=items, total=total, page=page, limit=limit)


async def failed_logins(session: AsyncSession, since: datetime) -> list[AuditEntry]:
    query = (
        select(AuditEntryTable)
        .where(
            AuditEntryTable.action == AuditAction.FAILED_LOGIN,
            AuditEntryTable.created_at >= since,
        )
        .order_by(AuditEntryTable.created_at.desc())
    )
    return await AuditRepository(session).all(query)


async def failed_logins_by_ip(
    session: AsyncSession, since: datetime, limit: int = 10
) -> list[IPFailureSummary]:
    """Top source IPs by failed login count within the window."""
    window = (
        AuditEntryTable.action == AuditAction.FAILED_LOGIN,
        AuditEntryTable.created_at >= since,
    )
    result = await session.execute(
        select(
            AuditEntryTable.ip_address,
            func.count().label("entry_count"),
            func.max(AuditEntryTable.created_at).label("last_attempt"),
        )
        .where(*window)
        .group_by(AuditEntryTable.ip_address)
        .order_by(func.count().desc())
        .limit(limit)
    )
    groups = result.all()
    if not groups:
        return []

    actors: dict[str, list[UUID]] = defaultdict(list)
    actor_rows = await session.execute(
        select(AuditEntryTable.ip_address, AuditEntryTable.actor_id)
        .where(*window)
        .where(AuditEntryTable.ip_address.in_([g.ip_address for g in groups]))
        .where(AuditEntryTable.actor_id.is_not(None))
        .distinct()
    )
    for ip_address, actor_id in actor_rows.all():
        actors[ip_address].append(actor_id)

    return [
        IPFailureSummary(
            ip_address=g.ip_address,
            count=g.entry_count,
            last_attempt=as_utc(g.last_attempt),
            actor_ids=actors.get(g.ip_address, []),
        )
        for g in groups
    ]


async def action_summary(
    session: AsyncSession,
    since: datetime,
    actor_id: Optional[UUID] = None,
    limit: Optional[int] = None,
    security_only: bool = False,
) -> list[ActionCount]:
    """Counts per action with success/failure split, most frequent first."""
    successes, failures = _success_sums()
    query = (
        select(
            AuditEntryTable.action,
            func.count().label("entry_count"),
            successes.label("success_count"),
            failures.label("failure_count"),
        )
        .where(AuditEntryTable.created_at >= since)
        .group_by(AuditEntryTable.action)
        .order_by(func.count().desc())
    )
    if actor_id:
        query = query.where(AuditEntryTable.actor_id == actor_id)
    if security_only:
        query = query.where(security_predicate())
    if limit:
        query = query.limit(limit)

    result = await session.execute(query)
    return [
        ActionCount(
            action=row.action,
            count=row.entry_count,
            success_count=row.success_count or 0,
            failure_count=row.failure_count or 0,
        )
        for row in result.all()
    ]


async def daily_activity(
    session: AsyncSession, actor_id: UUID, since: datetime
) -> list[DailyActivity]:
    """Per-day rollup of one actor's actions, newest day first."""
    result = await session.execute(
        select(AuditEntryTable.created_at, AuditEntryTable.action).where(
            AuditEntryTable.actor_id == actor_id,
            AuditEntryTable.created_at >= since,
        )
    )

    # Bucketed here rather than in SQL so the UTC day boundary is the same
    # on every backend.
    days: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for created_at, action in result.all():
        day = as_utc(created_at).date().isoformat()
        days[day][action.value] += 1

    return [
        DailyActivity(date=day, total=sum(actions.values()), actions=dict(actions))
        for day, actions in sorted(days.items(), reverse=True)
    ]


async def category_breakdown(session: AsyncSession, since: datetime) -> list[CategoryCount]:
    successes, failures = _success_sums()
    result = await session.execute(
        select(
            AuditEntryTable.category,
            func.count().label("entry_count"),
            successes.label("success_count"),
            failures.label("failure_count"),
        )
        .where(AuditEntryTable.created_at >= since)
        .group_by(AuditEntryTable.category)
        .order_by(func.count().desc())
    )
    return [
        CategoryCount(
            category=row.category,
            count=row.entry_count,
            success_count=row.success_count or 0,
            failure_count=row.failure_count or 0,
        )
        for row in result.all()
    ]


async def most_active_actors(
    session: AsyncSession, since: datetime, limit: int = 10
) -> list[ActorActivity]:
    result = await session.execute(
        select(
            AuditEntryTable.actor_id,
            func.count().label("entry_count"),
            func.max(AuditEntryTable.created_at).label("last_activity"),
        )
        .where(
            AuditEntryTable.created_at >= since,
            AuditEntryTable.actor_id.is_not(None),
        )
        .group_by(AuditEntryTable.actor_id)
        .order_by(func.count().desc())
        .limit(limit)
    )
    return [
        ActorActivity(
            actor_id=row.actor_id,
            count=row.entry_count,
            last_activity=as_utc(row.last_activity),
        )
        for row in result.all()
    ]


async def overall_stats(session: AsyncSession, since: datetime) -> OverallStats:
    successes, failures = _success_sums()
    row = (
        await session.execute(
            select(
                func.count().label("total"),
                successes.label("successful"),
                failures.label("failed"),
                func.count(distinct(AuditEntryTable.actor_id)).label("unique_actors"),
                func.count(distinct(AuditEntryTable.ip_address)).label("unique_ips"),
            ).where(AuditEntryTable.created_at >= since)
        )
    ).one()

    if not row.total:
        return OverallStats()
    successful = row.successful or 0
    return OverallStats(
        total=row.total,
        successful=successful,
        failed=row.failed or 0,
        unique_actors=row.unique_actors,
        unique_ips=row.unique_ips,
        success_rate=round(successful / row.total * 100, 2),
    )


async def security_alert_count(session: AsyncSession, since: datetime) -> int:
    """High/critical entries plus failed security-category entries."""
    count = await session.scalar(
        select(func.count())
        .select_from(AuditEntryTable)
        .where(
            AuditEntryTable.created_at >= since,
            or_(
                AuditEntryTable.severity.in_(list(Severity.retained())),
                (AuditEntryTable.success.is_(False))
                & (AuditEntryTable.category == AuditCategory.SECURITY),
            ),
        )
    )
    return int(count or 0)


async def delete_older_than(session: AsyncSession, cutoff: datetime) -> int:
    """
    Retention cleanup. Removes entries created before the cutoff except
    high and critical severity. Returns the number deleted.
    """
    result = await session.execute(
        delete(AuditEntryTable)
        .where(
            AuditEntryTable.created_at < cutoff,
            AuditEntryTable.severity.not_in(list(Severity.retained())),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0
