"""
Access scope: the role x relationship table and how the resolver applies it.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from taskgate.access.policy import POLICY, Action, Relation, granting_relations, permits
from taskgate.access.resolver import AccessScopeResolver
from taskgate.db.tables import AuditEntryTable
from taskgate.engine.errors import NotFound, PermissionDenied
from taskgate.models import AuditAction, AuditCategory, Role, Severity
from taskgate.models.commands import TaskCreate, TaskUpdate, UserFilters, UserUpdate

from conftest import future


def test_every_action_covers_every_role():
    for action in Action:
        assert set(POLICY[action]) == set(Role), action


def test_super_admin_has_any_except_on_assignee_transitions():
    for action in Action:
        granted = granting_relations(action, Role.SUPER_ADMIN)
        if action in (Action.TASK_START, Action.TASK_COMPLETE):
            assert granted == {Relation.ASSIGNEE}
        else:
            assert Relation.ANY in granted, action


def test_employee_never_reaches_other_employees_records():
    """An employee with no relationship to a target is denied everything."""
    for action in Action:
        assert not permits(Role.EMPLOYEE, action, frozenset()), action


def test_employee_relations():
    assert permits(Role.EMPLOYEE, Action.USER_READ, {Relation.SELF})
    assert not permits(Role.EMPLOYEE, Action.USER_READ, {Relation.TEAM_MEMBER})
    assert permits(Role.EMPLOYEE, Action.TASK_READ, {Relation.ASSIGNEE})
    assert permits(Role.EMPLOYEE, Action.TASK_START, {Relation.ASSIGNEE})
    assert not permits(Role.EMPLOYEE, Action.TASK_APPROVE, {Relation.ASSIGNEE})
    assert permits(Role.EMPLOYEE, Action.TASK_RESET, {Relation.ASSIGNEE})
    assert not permits(Role.EMPLOYEE, Action.TASK_CREATE, {Relation.SELF})
    assert not permits(Role.EMPLOYEE, Action.AUDIT_READ, {Relation.SELF})


def test_manager_relations():
    assert permits(Role.MANAGER, Action.USER_READ, {Relation.TEAM_MEMBER})
    assert permits(Role.MANAGER, Action.TASK_APPROVE, {Relation.OWNING_MANAGER})
    assert permits(Role.MANAGER, Action.TASK_APPROVE, {Relation.ASSIGNER})
    assert not permits(Role.MANAGER, Action.TASK_APPROVE, {Relation.ASSIGNEE})
    assert not permits(Role.MANAGER, Action.TASK_ARCHIVE, {Relation.OWNING_MANAGER})
    assert not permits(Role.MANAGER, Action.USER_DEACTIVATE, {Relation.TEAM_MEMBER})
    assert permits(Role.MANAGER, Action.TASK_CREATE, frozenset())


def test_only_assignee_starts_and_completes():
    for role in Role:
        assert not permits(role, Action.TASK_START, {Relation.ASSIGNER})
        assert not permits(role, Action.TASK_COMPLETE, {Relation.OWNING_MANAGER})
        assert permits(role, Action.TASK_COMPLETE, {Relation.ASSIGNEE})


@pytest.mark.asyncio
async def test_task_relations(gate, manager, employee, outsider):
    task = await gate.workflow.create_task(
        manager,
        TaskCreate(
            title="Quarterly report",
            description="Compile the quarterly numbers",
            assigned_to=employee.id,
            deadline=future(),
        ),
    )

    assert await gate.resolver.task_relations_for(manager, task) == {
        Relation.ASSIGNER,
        Relation.OWNING_MANAGER,
    }
    assert await gate.resolver.task_relations_for(employee, task) == {Relation.ASSIGNEE}
    assert await gate.resolver.task_relations_for(outsider, task) == frozenset()


@pytest.mark.asyncio
async def test_user_relations(manager, employee, outsider):
    assert AccessScopeResolver.user_relations(manager, employee) == {Relation.TEAM_MEMBER}
    assert AccessScopeResolver.user_relations(employee, employee) == {Relation.SELF}
    assert AccessScopeResolver.user_relations(manager, outsider) == frozenset()


@pytest.mark.asyncio
async def test_concealed_read_is_not_found_and_audited(gate, session, employee, outsider):
    with pytest.raises(NotFound):
        await gate.users.get_user(employee, outsider.id)

    entries = (
        await session.execute(
            select(AuditEntryTable).where(AuditEntryTable.action == AuditAction.ACCESS_DENIED)
        )
    ).scalars().all()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.actor_id == employee.id
    assert entry.resource_id == outsider.id
    assert entry.category == AuditCategory.SECURITY
    assert entry.severity == Severity.MEDIUM
    assert entry.success is False
    assert entry.details == {"attempted_action": "user.read", "actor_role": "employee"}
    assert entry.ip_address == "203.0.113.7"


@pytest.mark.asyncio
async def test_missing_and_hidden_users_look_the_same(gate, employee, outsider):
    with pytest.raises(NotFound) as hidden:
        await gate.users.get_user(employee, outsider.id)
    with pytest.raises(NotFound) as missing:
        await gate.users.get_user(employee, uuid4())
    assert hidden.value.code == missing.value.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_require_denies_targetless_action(gate, employee):
    with pytest.raises(PermissionDenied):
        await gate.resolver.require(employee, Action.AUDIT_READ)


@pytest.mark.asyncio
async def test_user_scope_lists(gate, admin, manager, employee, teammate, other_manager, outsider):
    everyone = await gate.users.list_users(admin)
    assert everyone.total == 6

    team = await gate.users.list_users(manager)
    assert {u.id for u in team.items} == {manager.id, employee.id, teammate.id}

    own = await gate.users.list_users(employee)
    assert [u.id for u in own.items] == [employee.id]

    employees = await gate.users.list_users(manager, UserFilters(role=Role.EMPLOYEE))
    assert {u.id for u in employees.items} == {employee.id, teammate.id}


@pytest.mark.asyncio
async def test_task_scope_lists(gate, admin, manager, employee, teammate, other_manager, outsider):
    mine = await gate.workflow.create_task(
        manager,
        TaskCreate(
            title="Team task",
            description="Work for the first team",
            assigned_to=employee.id,
            deadline=future(),
        ),
    )
    theirs = await gate.workflow.create_task(
        other_manager,
        TaskCreate(
            title="Other task",
            description="Work for the second team",
            assigned_to=outsider.id,
            deadline=future(),
        ),
    )
    # Assigned by an admin to the manager's employee: visible to the owning manager
    by_admin = await gate.workflow.create_task(
        admin,
        TaskCreate(
            title="Admin task",
            description="Work handed out by the admin",
            assigned_to=teammate.id,
            deadline=future(),
        ),
    )

    assert (await gate.workflow.list_tasks(admin)).total == 3
    assert {t.id for t in (await gate.workflow.list_tasks(manager)).items} == {
        mine.id,
        by_admin.id,
    }
    assert [t.id for t in (await gate.workflow.list_tasks(employee)).items] == [mine.id]
    assert [t.id for t in (await gate.workflow.list_tasks(outsider)).items] == [theirs.id]


def test_employee_assigner_relation_grants_nothing_extra():
    """An employee only ever acts through being the assignee."""
    for action in Action:
        assert not permits(Role.EMPLOYEE, action, {Relation.ASSIGNER}), action


@pytest.mark.asyncio
async def test_demoted_manager_loses_control_of_assigned_tasks(
    gate, admin, manager, employee, other_manager
):
    task = await gate.workflow.create_task(
        manager,
        TaskCreate(
            title="Shelf audit",
            description="Check every shelf label in aisle four",
            assigned_to=employee.id,
            deadline=future(),
        ),
    )
    await gate.users.update_user(admin, employee.id, UserUpdate(manager_id=other_manager.id))
    demoted = await gate.users.update_user(admin, manager.id, UserUpdate(role=Role.EMPLOYEE))

    with pytest.raises(PermissionDenied):
        await gate.workflow.update_task(demoted, task.id, TaskUpdate(title="Renamed shelf audit"))
    with pytest.raises(PermissionDenied):
        await gate.workflow.archive_task(demoted, task.id)
    with pytest.raises(NotFound):
        await gate.workflow.get_task(demoted, task.id)
