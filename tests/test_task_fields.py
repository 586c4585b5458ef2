"""
Task creation, field updates, archiving, comments and attachments.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from taskgate.db.repositories import AuditRepository, TaskRepository
from taskgate.db.tables import AuditEntryTable
from taskgate.engine.errors import NotFound, PermissionDenied, ValidationFailed
from taskgate.models import NotificationType, TaskPriority, TaskStatus
from taskgate.models.commands import (
    AttachmentCreate,
    CommentCreate,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    field_errors,
)
from taskgate.utils.time import utc_now

from conftest import future


def new_task(assigned_to, **overrides) -> TaskCreate:
    values = {
        "title": "Ship the release",
        "description": "Tag, build and publish the new release",
        "assigned_to": assigned_to,
        "deadline": future(),
    }
    values.update(overrides)
    return TaskCreate(**values)


@pytest.fixture
async def task(gate, manager, employee):
    return await gate.workflow.create_task(manager, new_task(employee.id, estimated_hours=4))


# ============================================================================
# Create
# ============================================================================


def test_task_input_lengths():
    with pytest.raises(ValidationError) as exc:
        TaskCreate(
            title="ab",
            description="too short",
            assigned_to="00000000-0000-0000-0000-000000000001",
            deadline=future(),
        )
    errors = field_errors(exc.value)
    assert set(errors) == {"title", "description"}


def test_task_text_is_stripped():
    data = new_task(
        "00000000-0000-0000-0000-000000000001",
        title="   Fix   ",
        description="  Fix the login page  ",
    )
    assert data.title == "Fix"
    assert data.description == "Fix the login page"


@pytest.mark.asyncio
async def test_create_defaults(task, manager, employee):
    assert task.assigned_by == manager.id
    assert task.assigned_to == employee.id
    assert task.priority == TaskPriority.MEDIUM
    assert task.estimated_hours == 4
    assert task.is_archived is False
    assert task.comments == []


@pytest.mark.asyncio
async def test_deadline_must_be_in_the_future(gate, manager, employee):
    with pytest.raises(ValidationFailed) as exc:
        await gate.workflow.create_task(
            manager, new_task(employee.id, deadline=utc_now() - timedelta(minutes=1))
        )
    assert "deadline" in exc.value.field_errors


@pytest.mark.asyncio
async def test_start_date_after_deadline(gate, manager, employee):
    with pytest.raises(ValidationFailed) as exc:
        await gate.workflow.create_task(
            manager, new_task(employee.id, deadline=future(2), start_date=future(5))
        )
    assert "start_date" in exc.value.field_errors


@pytest.mark.asyncio
async def test_inactive_assignee(gate, admin, manager, employee):
    await gate.users.deactivate_user(admin, employee.id)

    with pytest.raises(ValidationFailed) as exc:
        await gate.workflow.create_task(manager, new_task(employee.id))
    assert "assigned_to" in exc.value.field_errors


@pytest.mark.asyncio
async def test_manager_assigns_only_inside_team(gate, manager, outsider):
    with pytest.raises(PermissionDenied):
        await gate.workflow.create_task(manager, new_task(outsider.id))


@pytest.mark.asyncio
async def test_inactive_outsider_looks_like_active_outsider(gate, admin, manager, outsider):
    await gate.users.deactivate_user(admin, outsider.id)

    with pytest.raises(PermissionDenied):
        await gate.workflow.create_task(manager, new_task(outsider.id))


@pytest.mark.asyncio
async def test_employee_cannot_create(gate, employee, teammate):
    with pytest.raises(PermissionDenied):
        await gate.workflow.create_task(employee, new_task(teammate.id))


@pytest.mark.asyncio
async def test_admin_assigns_anyone(gate, admin, outsider):
    task = await gate.workflow.create_task(admin, new_task(outsider.id))
    assert task.assigned_by == admin.id


# ============================================================================
# Update
# ============================================================================


@pytest.mark.asyncio
async def test_supervisor_updates_fields(gate, task, manager):
    updated = await gate.workflow.update_task(
        manager,
        task.id,
        TaskUpdate(title="Ship release 2.0", priority=TaskPriority.URGENT, tags=["release"]),
    )
    assert updated.title == "Ship release 2.0"
    assert updated.priority == TaskPriority.URGENT
    assert updated.tags == ["release"]
    assert updated.status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_assignee_reports_actual_hours_only(gate, task, employee):
    updated = await gate.workflow.update_task(employee, task.id, TaskUpdate(actual_hours=5.5))
    assert updated.actual_hours == 5.5

    with pytest.raises(PermissionDenied):
        await gate.workflow.update_task(
            employee, task.id, TaskUpdate(actual_hours=6, title="Renamed by assignee")
        )


@pytest.mark.asyncio
async def test_update_deadline_must_be_future(gate, task, manager):
    with pytest.raises(ValidationFailed):
        await gate.workflow.update_task(
            manager, task.id, TaskUpdate(deadline=utc_now() - timedelta(days=1))
        )


@pytest.mark.asyncio
async def test_null_title_is_ignored(gate, task, manager):
    updated = await gate.workflow.update_task(manager, task.id, TaskUpdate(title=None))
    assert updated.title == task.title


@pytest.mark.asyncio
async def test_outsider_update_denied(gate, task, outsider):
    with pytest.raises(PermissionDenied):
        await gate.workflow.update_task(outsider, task.id, TaskUpdate(actual_hours=1))


# ============================================================================
# Archive and listing
# ============================================================================


@pytest.mark.asyncio
async def test_archive_hides_from_default_listing(gate, task, manager):
    archived = await gate.workflow.archive_task(manager, task.id)
    assert archived.is_archived is True

    assert (await gate.workflow.list_tasks(manager)).total == 0
    everything = await gate.workflow.list_tasks(manager, TaskFilters(include_archived=True))
    assert [t.id for t in everything.items] == [task.id]

    # Archiving twice is a no-op
    assert (await gate.workflow.archive_task(manager, task.id)).is_archived is True


@pytest.mark.asyncio
async def test_only_assigner_or_admin_archives(gate, task, employee, admin):
    with pytest.raises(PermissionDenied):
        await gate.workflow.archive_task(employee, task.id)
    assert (await gate.workflow.archive_task(admin, task.id)).is_archived is True


@pytest.mark.asyncio
async def test_overdue_filter(gate, clock, task, manager):
    assert (await gate.workflow.list_tasks(manager, TaskFilters(overdue=True))).total == 0

    clock.advance(days=4)
    overdue = await gate.workflow.list_tasks(manager, TaskFilters(overdue=True))
    assert [t.id for t in overdue.items] == [task.id]
    assert overdue.items[0].is_overdue(clock.current)


@pytest.mark.asyncio
async def test_search_and_pagination(gate, manager, employee):
    for n in range(3):
        await gate.workflow.create_task(manager, new_task(employee.id, title=f"Invoice batch {n}"))
    await gate.workflow.create_task(manager, new_task(employee.id, title="Unrelated"))

    page = await gate.workflow.list_tasks(manager, TaskFilters(search="invoice"), page=2, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert len(page.items) == 1


@pytest.mark.asyncio
async def test_user_tasks(gate, task, manager, employee, outsider):
    page = await gate.workflow.user_tasks(manager, employee.id)
    assert [t.id for t in page.items] == [task.id]

    with pytest.raises(NotFound):
        await gate.workflow.user_tasks(manager, outsider.id)


# ============================================================================
# Comments and attachments
# ============================================================================


@pytest.mark.asyncio
async def test_comment_notifies_the_other_side(gate, gateway, task, manager, employee):
    gateway.clear()
    comment = await gate.workflow.add_comment(employee, task.id, CommentCreate(text=" On it "))

    assert comment.text == "On it"
    assert comment.author_id == employee.id
    [event] = gateway.events
    assert event.type == NotificationType.COMMENT_ADDED
    assert event.target_user_id == manager.id

    reloaded = await gate.workflow.get_task(manager, task.id)
    assert [c.text for c in reloaded.comments] == ["On it"]


@pytest.mark.asyncio
async def test_comment_outside_scope(gate, task, outsider):
    with pytest.raises(PermissionDenied):
        await gate.workflow.add_comment(outsider, task.id, CommentCreate(text="Hello"))


def test_empty_comment_rejected():
    with pytest.raises(ValidationError):
        CommentCreate(text="   ")


@pytest.mark.asyncio
async def test_attachment_metadata(gate, gateway, task, manager, employee):
    gateway.clear()
    attachment = await gate.workflow.add_attachment(
        employee,
        task.id,
        AttachmentCreate(
            filename="a1b2c3.pdf",
            original_name="report.pdf",
            mimetype="application/pdf",
            size=2048,
            url="https://files.example.com/a1b2c3.pdf",
        ),
    )
    assert attachment.uploaded_by == employee.id
    assert [e.target_user_id for e in gateway.events] == [manager.id]

    reloaded = await gate.workflow.get_task(manager, task.id)
    assert [a.original_name for a in reloaded.attachments] == ["report.pdf"]


@pytest.mark.asyncio
async def test_attachment_type_and_size_limits(gate, task, employee):
    with pytest.raises(ValidationFailed) as exc:
        await gate.workflow.add_attachment(
            employee,
            task.id,
            AttachmentCreate(
                filename="x.exe", original_name="x.exe", mimetype="application/x-msdownload", size=10
            ),
        )
    assert "mimetype" in exc.value.field_errors

    with pytest.raises(ValidationFailed) as exc:
        await gate.workflow.add_attachment(
            employee,
            task.id,
            AttachmentCreate(
                filename="big.png", original_name="big.png", mimetype="image/png", size=50 * 1024 * 1024
            ),
        )
    assert "size" in exc.value.field_errors


# ============================================================================
# Repository
# ============================================================================


@pytest.mark.asyncio
async def test_repository_pages_and_open_work(session, task, employee):
    tasks = TaskRepository(session)

    items, total = await tasks.list_page(assigned_to=employee.id, limit=5)
    assert total == 1
    assert [t.id for t in items] == [task.id]
    assert [t.id for t in await tasks.open_for_assignee(employee.id)] == [task.id]

    entries, count = await AuditRepository(session).list_page(
        select(AuditEntryTable), page=1, limit=5
    )
    assert count == len(entries) == 1
