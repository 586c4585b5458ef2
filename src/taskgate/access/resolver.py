"""AccessScope resolver - applies the permission table to concrete targets."""

import logging
from typing import NoReturn, Optional
from uuid import UUID

from sqlalchemy import false, or_, select, true
from sqlalchemy.sql import ColumnElement

from taskgate.access.policy import Action, Relation, granting_relations, permits
from taskgate.audit.recorder import AuditRecorder
from taskgate.db.tables import TaskTable, UserTable
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.errors import NotFound, PermissionDenied
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditResource,
    Role,
    Severity,
    Task,
    User,
)

logger = logging.getLogger(__name__)


class AccessScopeResolver:
    """
    Decides whether an actor may act on a user or task, and builds the
    predicates that scope list queries.

    Reads of an out-of-scope resource raise NotFound (conceal=True) so
    callers cannot learn whether it exists. Mutations raise PermissionDenied.
    Both paths write a security audit entry.
    """

    def __init__(self, directory: IdentityDirectory, recorder: AuditRecorder):
        self.directory = directory
        self.recorder = recorder

    # Relationship computation

    @staticmethod
    def user_relations(actor: User, target: User) -> frozenset[Relation]:
        relations = set()
        if actor.id == target.id:
            relations.add(Relation.SELF)
        if target.manager_id is not None and target.manager_id == actor.id:
            relations.add(Relation.TEAM_MEMBER)
        return frozenset(relations)

    @staticmethod
    def task_relations(
        actor: User, task: Task, assignee: Optional[User]
    ) -> frozenset[Relation]:
        relations = set()
        if task.assigned_by == actor.id:
            relations.add(Relation.ASSIGNER)
        if task.assigned_to == actor.id:
            relations.add(Relation.ASSIGNEE)
        if (
            actor.role == Role.MANAGER
            and assignee is not None
            and assignee.manager_id == actor.id
        ):
            relations.add(Relation.OWNING_MANAGER)
        return frozenset(relations)

    # Checks

    async def require(self, actor: User, action: Action) -> None:
        """Check an action that has no target yet (create, audit read)."""
        if not permits(actor.role, action, frozenset()):
            await self.deny(actor, action, AuditResource.SYSTEM, None)

    async def authorize_user(
        self, actor: User, action: Action, target_id: UUID, conceal: bool = False
    ) -> User:
        """Load a user and check the actor may perform `action` on it."""
        target = await self.directory.get(target_id)
        if not target:
            raise NotFound("user", str(target_id))
        if not permits(actor.role, action, self.user_relations(actor, target)):
            await self.deny(actor, action, AuditResource.USER, target.id, conceal)
        return target

    async def task_relations_for(self, actor: User, task: Task) -> frozenset[Relation]:
        assignee = await self.directory.get(task.assigned_to)
        return self.task_relations(actor, task, assignee)

    async def authorize_task(
        self, actor: User, action: Action, task: Task, conceal: bool = False
    ) -> frozenset[Relation]:
        """Check the actor may perform `action` on a loaded task."""
        relations = await self.task_relations_for(actor, task)
        if not permits(actor.role, action, relations):
            await self.deny(actor, action, AuditResource.TASK, task.id, conceal)
        return relations

    async def deny(
        self,
        actor: User,
        action: Action,
        resource: AuditResource,
        resource_id: Optional[UUID],
        conceal: bool = False,
    ) -> NoReturn:
        """Record the denial as a security event, then raise."""
        logger.warning(
            f"Access denied: {actor.role.value} {actor.id} attempted {action.value} "
            f"on {resource.value} {resource_id}"
        )
        await self.recorder.record(
            action=AuditAction.ACCESS_DENIED,
            resource=resource,
            actor_id=actor.id,
            resource_id=resource_id,
            details={"attempted_action": action.value, "actor_role": actor.role.value},
            success=False,
            error_message="Permission denied",
            severity=Severity.MEDIUM,
            category=AuditCategory.SECURITY,
        )
        if conceal:
            raise NotFound(resource.value, str(resource_id or ""))
        raise PermissionDenied(action.value)

    # List scoping

    def user_scope(self, actor: User) -> ColumnElement[bool]:
        """Predicate over UserTable matching the users `actor` may list."""
        granted = granting_relations(Action.USER_LIST, actor.role)
        if Relation.ANY in granted:
            return true()
        clauses = []
        if Relation.SELF in granted:
            clauses.append(UserTable.id == actor.id)
        if Relation.TEAM_MEMBER in granted:
            clauses.append(UserTable.manager_id == actor.id)
        return or_(*clauses) if clauses else false()

    def task_scope(self, actor: User) -> ColumnElement[bool]:
        """Predicate over TaskTable matching the tasks `actor` may list."""
        granted = granting_relations(Action.TASK_LIST, actor.role)
        if Relation.ANY in granted:
            return true()
        clauses = []
        if Relation.ASSIGNER in granted:
            clauses.append(TaskTable.assigned_by == actor.id)
        if Relation.ASSIGNEE in granted:
            clauses.append(TaskTable.assigned_to == actor.id)
        if Relation.OWNING_MANAGER in granted and actor.role == Role.MANAGER:
            team = select(UserTable.id).where(UserTable.manager_id == actor.id)
            clauses.append(TaskTable.assigned_to.in_(team))
        return or_(*clauses) if clauses else false()
