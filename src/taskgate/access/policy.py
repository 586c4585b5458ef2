"""
Permission table: action x role -> relationships that grant access.

Every authorization decision in TaskGate is a lookup in POLICY. An
actor may perform an action on a target when at least one relationship
it holds to that target is listed for its role. Relation.ANY grants
access regardless of relationship.
"""

from enum import Enum

from taskgate.models import Role


class Action(str, Enum):
    """Operations subject to authorization."""

    USER_READ = "user.read"
    USER_LIST = "user.list"
    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DEACTIVATE = "user.deactivate"

    TASK_READ = "task.read"
    TASK_LIST = "task.list"
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_UPDATE_EFFORT = "task.update_effort"
    TASK_ARCHIVE = "task.archive"
    TASK_COMMENT = "task.comment"
    TASK_ATTACH = "task.attach"

    TASK_START = "task.start"
    TASK_COMPLETE = "task.complete"
    TASK_APPROVE = "task.approve"
    TASK_REJECT = "task.reject"
    TASK_RESET = "task.reset"
    TASK_REMIND = "task.remind"

    AUDIT_READ = "audit.read"

    NOTIFICATION_SEND = "notification.send"
    NOTIFICATION_BROADCAST = "notification.broadcast"


class Relation(str, Enum):
    """How an actor relates to a target user or task."""

    ANY = "any"
    SELF = "self"
    TEAM_MEMBER = "team_member"  # target.manager_id == actor.id
    ASSIGNER = "assigner"  # task.assigned_by == actor.id
    ASSIGNEE = "assignee"  # task.assigned_to == actor.id
    OWNING_MANAGER = "owning_manager"  # actor manages task.assigned_to


_NONE: frozenset[Relation] = frozenset()
_ANY = frozenset({Relation.ANY})
_OWN_AND_TEAM = frozenset({Relation.SELF, Relation.TEAM_MEMBER})
_SELF = frozenset({Relation.SELF})
_MANAGER_TASKS = frozenset({Relation.ASSIGNER, Relation.ASSIGNEE, Relation.OWNING_MANAGER})
_SUPERVISES = frozenset({Relation.ASSIGNER, Relation.OWNING_MANAGER})
_ASSIGNEE = frozenset({Relation.ASSIGNEE})
_ASSIGNER = frozenset({Relation.ASSIGNER})


POLICY: dict[Action, dict[Role, frozenset[Relation]]] = {
    # Users
    Action.USER_READ: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _OWN_AND_TEAM,
        Role.EMPLOYEE: _SELF,
    },
    Action.USER_LIST: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _OWN_AND_TEAM,
        Role.EMPLOYEE: _SELF,
    },
    Action.USER_CREATE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _ANY,  # restricted to employees of their own team
        Role.EMPLOYEE: _NONE,
    },
    Action.USER_UPDATE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _OWN_AND_TEAM,
        Role.EMPLOYEE: _SELF,  # restricted to profile fields
    },
    Action.USER_DEACTIVATE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _NONE,
        Role.EMPLOYEE: _NONE,
    },
    # Tasks
    Action.TASK_READ: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_LIST: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_CREATE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _ANY,  # assignee must be in the manager's user scope
        Role.EMPLOYEE: _NONE,
    },
    Action.TASK_UPDATE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _SUPERVISES,
        Role.EMPLOYEE: _NONE,
    },
    Action.TASK_UPDATE_EFFORT: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_ARCHIVE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _ASSIGNER,
        Role.EMPLOYEE: _NONE,
    },
    Action.TASK_COMMENT: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_ATTACH: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    # Status transitions
    Action.TASK_START: {
        Role.SUPER_ADMIN: _ASSIGNEE,
        Role.MANAGER: _ASSIGNEE,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_COMPLETE: {
        Role.SUPER_ADMIN: _ASSIGNEE,
        Role.MANAGER: _ASSIGNEE,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_APPROVE: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _SUPERVISES,
        Role.EMPLOYEE: _NONE,
    },
    Action.TASK_REJECT: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _SUPERVISES,
        Role.EMPLOYEE: _NONE,
    },
    Action.TASK_RESET: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _MANAGER_TASKS,
        Role.EMPLOYEE: _ASSIGNEE,
    },
    Action.TASK_REMIND: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _ANY,  # limited to tasks in the manager's task scope
        Role.EMPLOYEE: _NONE,
    },
    # Audit
    Action.AUDIT_READ: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _NONE,
        Role.EMPLOYEE: _NONE,
    },
    # Notifications
    Action.NOTIFICATION_SEND: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _OWN_AND_TEAM,
        Role.EMPLOYEE: _NONE,
    },
    Action.NOTIFICATION_BROADCAST: {
        Role.SUPER_ADMIN: _ANY,
        Role.MANAGER: _NONE,
        Role.EMPLOYEE: _NONE,
    },
}


def granting_relations(action: Action, role: Role) -> frozenset[Relation]:
    """Relationships that grant `action` to an actor holding `role`."""
    return POLICY[action].get(role, _NONE)


def permits(role: Role, action: Action, relations: frozenset[Relation] | set[Relation]) -> bool:
    """Pure decision: does holding `relations` let `role` perform `action`?"""
    granted = granting_relations(action, role)
    if Relation.ANY in granted:
        return True
    return bool(granted & frozenset(relations))
