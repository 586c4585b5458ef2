"""
Audit trail: failure-isolated writes, reports and retention cleanup.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from taskgate.audit import queries
from taskgate.audit.queries import AuditFilters
from taskgate.audit.recorder import AuditRecorder
from taskgate.auth.context import MAX_IP_LENGTH, MAX_USER_AGENT_LENGTH, RequestContext
from taskgate.db.repositories import AuditRepository
from taskgate.db.tables import AuditEntryTable, TaskTable
from taskgate.engine.errors import NotFound, PermissionDenied, ValidationFailed
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditResource,
    Severity,
    TaskStatus,
)
from taskgate.models.commands import TaskCreate, TransitionRequest
from taskgate.utils.time import MonotonicClock, utc_now

from conftest import CLIENT_IP, future


async def add_entry(session, days_ago: float = 0, **kwargs):
    """Insert an entry with an explicit timestamp."""
    values = {
        "action": AuditAction.TASK_UPDATED,
        "resource": AuditResource.TASK,
        "ip_address": "198.51.100.1",
        "severity": Severity.LOW,
        "category": AuditCategory.DATA,
    }
    values.update(kwargs)
    return await AuditRepository(session).create(
        created_at=utc_now() - timedelta(days=days_ago), **values
    )


async def count_entries(session, **where) -> int:
    query = select(func.count()).select_from(AuditEntryTable)
    for column, value in where.items():
        query = query.where(getattr(AuditEntryTable, column) == value)
    return await session.scalar(query)


class BrokenClock:
    """Produces a NULL created_at so the INSERT fails in the database."""

    def now(self):
        return None


# ============================================================================
# Recorder
# ============================================================================


@pytest.mark.asyncio
async def test_record_stamps_request_context(gate, manager):
    entry = await gate.recorder.record(
        action=AuditAction.REPORT_GENERATED,
        resource=AuditResource.REPORT,
        actor_id=manager.id,
        details={"when": utc_now(), "id": uuid4()},
    )
    assert entry.ip_address == CLIENT_IP
    assert entry.user_agent == "pytest"
    assert entry.severity == Severity.LOW
    assert entry.category == AuditCategory.USER_ACTION
    # Details are stored JSON-safe
    assert isinstance(entry.details["when"], str)
    assert entry.display_message() == "Report generated"


@pytest.mark.asyncio
async def test_failed_audit_write_does_not_break_the_action(
    gate, session, monkeypatch, manager, employee
):
    monkeypatch.setattr(gate.recorder, "clock", BrokenClock())

    task = await gate.workflow.create_task(
        manager,
        TaskCreate(
            title="Survives audit outage",
            description="The task must exist even if auditing fails",
            assigned_to=employee.id,
            deadline=future(),
        ),
    )
    started = await gate.workflow.transition_task(
        employee, task.id, TransitionRequest(status=TaskStatus.IN_PROGRESS)
    )
    await session.commit()

    assert started.status == TaskStatus.IN_PROGRESS
    assert await session.scalar(select(func.count()).select_from(TaskTable)) == 1
    assert await count_entries(session) == 0


@pytest.mark.asyncio
async def test_record_returns_none_on_repository_error(session, monkeypatch):
    recorder = AuditRecorder(session)

    async def explode(**kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(recorder.entries, "create", explode)
    assert await recorder.record(AuditAction.LOGIN, AuditResource.AUTH) is None


def test_monotonic_clock_never_repeats():
    fixed = utc_now()
    clock = MonotonicClock(source=lambda: fixed)

    first, second, third = clock.now(), clock.now(), clock.now()
    assert first == fixed
    assert first < second < third


def test_monotonic_clock_survives_backwards_step():
    times = iter([utc_now(), utc_now() - timedelta(hours=1)])
    clock = MonotonicClock(source=lambda: next(times))

    first = clock.now()
    assert clock.now() > first


# ============================================================================
# Queries
# ============================================================================


@pytest.mark.asyncio
async def test_search_filters(session, manager, employee):
    await add_entry(session, actor_id=manager.id)
    await add_entry(session, actor_id=employee.id, success=False)
    await add_entry(session, days_ago=10, actor_id=employee.id)

    by_actor = await queries.search(session, AuditFilters(actor_id=employee.id))
    assert by_actor.total == 2

    failures = await queries.search(session, AuditFilters(success=False))
    assert failures.total == 1

    recent = await queries.search(session, AuditFilters(start=utc_now() - timedelta(days=1)))
    assert recent.total == 2
    assert recent.items[0].created_at >= recent.items[1].created_at


@pytest.mark.asyncio
async def test_failed_logins_grouped_by_ip(session, employee, teammate):
    for _ in range(3):
        await add_entry(
            session,
            action=AuditAction.FAILED_LOGIN,
            resource=AuditResource.AUTH,
            actor_id=employee.id,
            ip_address="192.0.2.9",
            success=False,
            category=AuditCategory.SECURITY,
        )
    await add_entry(
        session,
        action=AuditAction.FAILED_LOGIN,
        resource=AuditResource.AUTH,
        actor_id=teammate.id,
        ip_address="192.0.2.9",
        success=False,
        category=AuditCategory.SECURITY,
    )
    await add_entry(
        session,
        action=AuditAction.FAILED_LOGIN,
        resource=AuditResource.AUTH,
        ip_address="192.0.2.50",
        success=False,
        category=AuditCategory.SECURITY,
    )

    groups = await queries.failed_logins_by_ip(session, utc_now() - timedelta(hours=1))

    assert [(g.ip_address, g.count) for g in groups] == [("192.0.2.9", 4), ("192.0.2.50", 1)]
    assert set(groups[0].actor_ids) == {employee.id, teammate.id}
    assert groups[1].actor_ids == []


@pytest.mark.asyncio
async def test_action_summary_and_daily_activity(session, employee):
    await add_entry(session, actor_id=employee.id)
    await add_entry(session, actor_id=employee.id, success=False)
    await add_entry(session, actor_id=employee.id, action=AuditAction.COMMENT_ADDED)
    await add_entry(session, days_ago=2, actor_id=employee.id, action=AuditAction.COMMENT_ADDED)

    since = utc_now() - timedelta(days=7)
    summary = await queries.action_summary(session, since, actor_id=employee.id)
    counts = {s.action: (s.count, s.success_count, s.failure_count) for s in summary}
    assert counts == {
        AuditAction.TASK_UPDATED: (2, 1, 1),
        AuditAction.COMMENT_ADDED: (2, 2, 0),
    }

    days = await queries.daily_activity(session, employee.id, since)
    assert len(days) == 2
    assert days[0].date > days[1].date
    assert sum(d.total for d in days) == 4


@pytest.mark.asyncio
async def test_overall_stats(session, manager):
    assert (await queries.overall_stats(session, utc_now() - timedelta(days=1))).total == 0

    await add_entry(session, actor_id=manager.id)
    await add_entry(session, actor_id=manager.id, success=False, ip_address="198.51.100.2")
    await add_entry(session, severity=Severity.HIGH)

    stats = await queries.overall_stats(session, utc_now() - timedelta(days=1))
    assert stats.total == 3
    assert stats.failed == 1
    assert stats.unique_actors == 1
    assert stats.unique_ips == 2
    assert stats.success_rate == 66.67
    assert await queries.security_alert_count(session, utc_now() - timedelta(days=1)) == 1


# ============================================================================
# AuditLogService
# ============================================================================


@pytest.mark.asyncio
async def test_audit_reads_require_super_admin(gate, manager):
    with pytest.raises(PermissionDenied):
        await gate.audit.query(manager)
    with pytest.raises(PermissionDenied):
        await gate.audit.summary(manager)


@pytest.mark.asyncio
async def test_audit_query_is_itself_audited(gate, session, admin):
    await gate.audit.query(admin, AuditFilters(action=AuditAction.LOGIN))

    [entry] = (
        await session.execute(
            select(AuditEntryTable).where(AuditEntryTable.action == AuditAction.SYSTEM_ACCESS)
        )
    ).scalars().all()
    assert entry.details["endpoint"] == "audit_logs"
    assert entry.details["filters"] == {"action": "login"}


@pytest.mark.asyncio
async def test_get_entry(gate, session, admin):
    entry = await add_entry(session)
    assert (await gate.audit.get_entry(admin, entry.id)).id == entry.id
    with pytest.raises(NotFound):
        await gate.audit.get_entry(admin, uuid4())


@pytest.mark.asyncio
async def test_security_report(gate, session, admin):
    await add_entry(
        session,
        action=AuditAction.FAILED_LOGIN,
        resource=AuditResource.AUTH,
        success=False,
        category=AuditCategory.SECURITY,
    )
    await add_entry(session)

    report = await gate.audit.security_report(admin, hours=24)
    assert report.logs.total == 1
    assert report.failed_logins_by_ip[0].count == 1

    with pytest.raises(ValidationFailed):
        await gate.audit.security_report(admin, hours=200)


@pytest.mark.asyncio
async def test_actor_report(gate, session, admin, employee):
    await add_entry(session, actor_id=employee.id)

    report = await gate.audit.actor_report(admin, employee.id, days=7)
    assert report.actor.id == employee.id
    assert report.logs.total == 1
    assert report.daily_activity[0].total == 1

    with pytest.raises(NotFound):
        await gate.audit.actor_report(admin, uuid4())


@pytest.mark.asyncio
async def test_summary_periods(gate, admin):
    result = await gate.audit.summary(admin, "24h")
    assert result.period == "24h"

    with pytest.raises(ValidationFailed):
        await gate.audit.summary(admin, "1y")


@pytest.mark.asyncio
async def test_cleanup_keeps_high_and_critical(gate, session, admin):
    await add_entry(session, days_ago=120)
    await add_entry(session, days_ago=120, severity=Severity.MEDIUM)
    await add_entry(session, days_ago=120, severity=Severity.HIGH)
    await add_entry(session, days_ago=120, severity=Severity.CRITICAL)
    await add_entry(session, days_ago=10)

    deleted = await gate.audit.cleanup(admin, retention_days=90)

    assert deleted == 2
    assert await count_entries(session, severity=Severity.HIGH) == 1
    assert await count_entries(session, severity=Severity.CRITICAL) == 1
    [cleanup] = (
        await session.execute(
            select(AuditEntryTable).where(AuditEntryTable.action == AuditAction.AUDIT_CLEANUP)
        )
    ).scalars().all()
    assert cleanup.details["deleted_count"] == 2
    assert cleanup.details["retention_days"] == 90


@pytest.mark.asyncio
async def test_cleanup_retention_bounds(gate, admin):
    for days in (7, 400):
        with pytest.raises(ValidationFailed):
            await gate.audit.cleanup(admin, retention_days=days)


@pytest.mark.asyncio
async def test_logs_by_action_and_failed_logins(session, employee):
    await add_entry(session, action=AuditAction.LOGIN, resource=AuditResource.AUTH)
    await add_entry(
        session,
        action=AuditAction.FAILED_LOGIN,
        resource=AuditResource.AUTH,
        actor_id=employee.id,
        success=False,
    )
    await add_entry(
        session,
        days_ago=3,
        action=AuditAction.FAILED_LOGIN,
        resource=AuditResource.AUTH,
        success=False,
    )

    assert len(await queries.logs_by_action(session, AuditAction.FAILED_LOGIN)) == 2
    recent = await queries.failed_logins(session, utc_now() - timedelta(days=1))
    assert [e.actor_id for e in recent] == [employee.id]


def test_request_context_fits_audit_columns():
    context = RequestContext(ip_address="9" * 100, user_agent="agent/" * 200)
    assert len(context.ip_address) == MAX_IP_LENGTH
    assert len(context.user_agent) == MAX_USER_AGENT_LENGTH
    assert RequestContext(ip_address="").ip_address == "unknown"
