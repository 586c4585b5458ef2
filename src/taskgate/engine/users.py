"""User account operations."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.access.policy import Action
from taskgate.access.resolver import AccessScopeResolver
from taskgate.audit.recorder import AuditRecorder
from taskgate.auth.passwords import hash_password, password_problems
from taskgate.config import settings
from taskgate.db.repositories import TaskRepository
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.errors import (
    DuplicateEmail,
    SelfDeactivation,
    ValidationFailed,
)
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditResource,
    NotificationSettings,
    NotificationType,
    Page,
    Role,
    Severity,
    TaskStatus,
    User,
)
from taskgate.models.commands import SELF_PROFILE_FIELDS, UserCreate, UserFilters, UserUpdate
from taskgate.notifications.dispatcher import NotificationDispatcher
from taskgate.utils.time import utc_now

logger = logging.getLogger(__name__)

REASSIGNMENT_COMMENT = "Task reassignment needed - original assignee account deactivated"
NON_NULL_USER_FIELDS = ("name", "email", "role", "is_active", "notification_settings")


class UserService:
    """Create, read, update and deactivate accounts within the actor's scope."""

    def __init__(
        self,
        session: AsyncSession,
        directory: IdentityDirectory,
        resolver: AccessScopeResolver,
        recorder: AuditRecorder,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.directory = directory
        self.users = directory.users
        self.tasks = TaskRepository(session)
        self.resolver = resolver
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.clock = clock

    # =========================================================================
    # Create
    # =========================================================================

    async def create_user(self, actor: User, data: UserCreate) -> User:
        """
        Create an account.

        SuperAdmins may create any role. Managers may only create Employees,
        who always join the creating manager's team.
        """
        await self.resolver.require(actor, Action.USER_CREATE)

        manager_id = data.manager_id
        if actor.role == Role.MANAGER:
            if data.role != Role.EMPLOYEE:
                await self.resolver.deny(actor, Action.USER_CREATE, AuditResource.USER, None)
            manager_id = actor.id

        problems = password_problems(data.password)
        if problems:
            raise ValidationFailed({"password": "; ".join(problems)})

        if manager_id is not None:
            if data.role != Role.EMPLOYEE:
                raise ValidationFailed({"manager_id": "Only employees can have a manager"})
            await self.directory.validate_manager(manager_id)

        if await self.directory.email_taken(data.email):
            raise DuplicateEmail(data.email)

        user = await self.users.create(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
            role=data.role,
            now=self.clock(),
            manager_id=manager_id,
            phone_number=data.phone_number,
            department=data.department,
            notification_settings=data.notification_settings,
        )
        await self.recorder.record(
            action=AuditAction.USER_CREATED,
            resource=AuditResource.USER,
            actor_id=actor.id,
            resource_id=user.id,
            details={"email": user.email, "role": user.role.value, "manager_id": manager_id},
            category=AuditCategory.DATA,
        )
        logger.info(f"User {user.id} ({user.role.value}) created by {actor.id}")
        return user

    async def bootstrap_super_admin(self, email: str, password: str, name: str) -> Optional[User]:
        """Create the first SuperAdmin. No-op when the email already exists."""
        if await self.directory.email_taken(email):
            return None
        problems = password_problems(password)
        if problems:
            raise ValidationFailed({"password": "; ".join(problems)})

        user = await self.users.create(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=Role.SUPER_ADMIN,
            now=self.clock(),
        )
        await self.recorder.record(
            action=AuditAction.USER_CREATED,
            resource=AuditResource.USER,
            resource_id=user.id,
            details={"email": user.email, "role": user.role.value, "bootstrap": True},
            severity=Severity.HIGH,
            category=AuditCategory.SYSTEM,
        )
        logger.info(f"Bootstrapped super admin {user.email}")
        return user

    # =========================================================================
    # Read
    # =========================================================================

    async def get_user(self, actor: User, user_id: UUID) -> User:
        """Out-of-scope users are reported as not found."""
        return await self.resolver.authorize_user(actor, Action.USER_READ, user_id, conceal=True)

    async def list_users(
        self,
        actor: User,
        filters: Optional[UserFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[User]:
        filters = filters or UserFilters()
        page, limit = clamp_page(page, limit)
        items, total = await self.users.list_page(
            scope=self.resolver.user_scope(actor),
            role=filters.role,
            is_active=filters.is_active,
            search=filters.search,
            page=page,
            limit=limit,
        )
        return Page[User](items=items, total=total, page=page, limit=limit)

    # =========================================================================
    # Update
    # =========================================================================

    async def update_user(self, actor: User, user_id: UUID, patch: UserUpdate) -> User:
        """
        Apply a partial update.

        Employees may only change their own name, phone number and
        notification settings; anything else is a permission error.
        Managers cannot change role, activation or team placement, and
        those fields are silently dropped. Passwords and login counters
        are never patchable here.
        """
        target = await self.resolver.authorize_user(actor, Action.USER_UPDATE, user_id)
        values: dict[str, Any] = patch.model_dump(exclude_unset=True)

        if actor.role == Role.EMPLOYEE and set(values) - SELF_PROFILE_FIELDS:
            await self.resolver.deny(actor, Action.USER_UPDATE, AuditResource.USER, target.id)
        if actor.role == Role.MANAGER:
            for field in ("role", "is_active", "manager_id"):
                values.pop(field, None)

        for field in NON_NULL_USER_FIELDS:
            if field in values and values[field] is None:
                del values[field]

        if not values:
            return target

        if values.get("is_active") is False and target.id == actor.id:
            raise SelfDeactivation()

        if "email" in values and await self.directory.email_taken(values["email"], target.id):
            raise DuplicateEmail(values["email"])

        await self._check_hierarchy(target, values)

        if "notification_settings" in values:
            values["notification_settings"] = NotificationSettings(**values["notification_settings"])

        deactivating = values.get("is_active") is False and target.is_active
        updated = await self.users.update_fields(target.id, values, self.clock())

        await self.recorder.record(
            action=AuditAction.USER_UPDATED,
            resource=AuditResource.USER,
            actor_id=actor.id,
            resource_id=target.id,
            details={"updated_fields": sorted(values)},
            category=AuditCategory.DATA,
        )
        if "role" in values and values["role"] != target.role:
            await self.recorder.record(
                action=AuditAction.ROLE_CHANGED,
                resource=AuditResource.USER,
                actor_id=actor.id,
                resource_id=target.id,
                details={"old_role": target.role.value, "new_role": values["role"].value},
                severity=Severity.HIGH,
                category=AuditCategory.SECURITY,
            )
        if deactivating:
            await self._reassign_open_tasks(actor, updated)
        return updated

    async def update_notification_settings(
        self, actor: User, preferences: NotificationSettings
    ) -> NotificationSettings:
        updated = await self.users.update_fields(
            actor.id, {"notification_settings": preferences}, self.clock()
        )
        await self.recorder.record(
            action=AuditAction.SETTINGS_CHANGED,
            resource=AuditResource.USER,
            actor_id=actor.id,
            resource_id=actor.id,
            details={"notification_settings": preferences.model_dump()},
        )
        return updated.notification_settings

    async def _check_hierarchy(self, target: User, values: dict[str, Any]) -> None:
        """Keep manager_id pointing at a Manager and only on Employees."""
        new_role = values.get("role", target.role)

        if new_role != Role.EMPLOYEE:
            if values.get("manager_id") is not None:
                raise ValidationFailed({"manager_id": "Only employees can have a manager"})
            if target.manager_id is not None:
                values["manager_id"] = None
        elif values.get("manager_id") is not None:
            if values["manager_id"] == target.id:
                raise ValidationFailed({"manager_id": "A user cannot manage themselves"})
            await self.directory.validate_manager(values["manager_id"])

        if target.role == Role.MANAGER and new_role != Role.MANAGER:
            if await self.directory.team_ids(target.id):
                raise ValidationFailed({"role": "Manager still has team members"})

    # =========================================================================
    # Activation
    # =========================================================================

    async def deactivate_user(self, actor: User, user_id: UUID) -> int:
        """
        Soft-delete an account. SuperAdmin only.

        Pending and in-progress work is handed back to whoever assigned it.

        Returns:
            Number of tasks reassigned
        """
        target = await self.resolver.authorize_user(actor, Action.USER_DEACTIVATE, user_id)
        if target.id == actor.id:
            raise SelfDeactivation()

        now = self.clock()
        target = await self.users.update_fields(target.id, {"is_active": False}, now)
        reassigned = await self._reassign_open_tasks(actor, target)

        await self.recorder.record(
            action=AuditAction.USER_DELETED,
            resource=AuditResource.USER,
            actor_id=actor.id,
            resource_id=target.id,
            details={
                "deleted_user": {
                    "name": target.name,
                    "email": target.email,
                    "role": target.role.value,
                },
                "reassigned_tasks": reassigned,
            },
            severity=Severity.HIGH,
            category=AuditCategory.DATA,
        )
        logger.info(f"User {target.id} deactivated by {actor.id}, {reassigned} tasks reassigned")
        return reassigned

    async def set_active(self, actor: User, user_id: UUID, is_active: bool) -> User:
        """Re-activate (or deactivate) an account. SuperAdmin only."""
        if not is_active:
            await self.deactivate_user(actor, user_id)
            return await self.directory.require(user_id)

        target = await self.resolver.authorize_user(actor, Action.USER_DEACTIVATE, user_id)
        if target.is_active:
            return target
        updated = await self.users.update_fields(target.id, {"is_active": True}, self.clock())
        await self.recorder.record(
            action=AuditAction.USER_UPDATED,
            resource=AuditResource.USER,
            actor_id=actor.id,
            resource_id=target.id,
            details={"updated_fields": ["is_active"], "is_active": True},
            severity=Severity.MEDIUM,
            category=AuditCategory.DATA,
        )
        return updated

    async def _reassign_open_tasks(self, actor: User, target: User) -> int:
        now = self.clock()
        open_tasks = await self.tasks.open_for_assignee(target.id)
        for task in open_tasks:
            # Self-assigned work falls back to the deactivating admin
            new_assignee = task.assigned_by if task.assigned_by != target.id else actor.id
            await self.tasks.reassign(task.id, new_assignee, now)
            await self.tasks.update_status(
                task.id, TaskStatus.PENDING, actor.id, now, comment=REASSIGNMENT_COMMENT
            )
            await self.tasks.add_comment(task.id, actor.id, REASSIGNMENT_COMMENT, now)
            await self.dispatcher.notify(
                NotificationType.TASK_ASSIGNED,
                target_user_id=new_assignee,
                source_actor_name=actor.name,
                title="Task Reassigned",
                body=f'"{task.title}" was returned to you after {target.name} was deactivated',
                task_id=task.id,
            )
        return len(open_tasks)


def clamp_page(page: int, limit: Optional[int]) -> tuple[int, int]:
    """Normalize pagination to 1-based pages within the configured limit."""
    page = max(1, page)
    limit = limit or settings.default_list_limit
    return page, max(1, min(limit, settings.max_list_limit))
