"""Database repositories for TaskGate entities."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement, Select

from taskgate.db.tables import (
    AuditEntryTable,
    StatusHistoryTable,
    TaskAttachmentTable,
    TaskCommentTable,
    TaskTable,
    UserTable,
)
from taskgate.models import (
    AuditEntry,
    NotificationSettings,
    Role,
    StatusChange,
    Task,
    TaskAttachment,
    TaskComment,
    TaskPriority,
    TaskStatus,
    User,
)
from taskgate.utils.time import as_utc

# Rows are re-read with populate_existing after bulk updates.
_NO_SYNC = {"synchronize_session": False}


async def _paginate(
    session: AsyncSession, query: Select, page: int, limit: int
) -> tuple[list[Any], int]:
    """Run a count plus an offset/limit page of the same query."""
    total = await session.scalar(select(func.count()).select_from(query.order_by(None).subquery()))
    result = await session.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), int(total or 0)


class UserRepository:
    """Repository for user operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        email: str,
        password_hash: str,
        role: Role,
        now: datetime,
        manager_id: UUID | None = None,
        phone_number: str | None = None,
        department: str | None = None,
        notification_settings: NotificationSettings | None = None,
    ) -> User:
        """Create a new user. Caller checks email uniqueness first."""
        row = UserTable(
            id=uuid4(),
            name=name,
            email=email.lower(),
            password_hash=password_hash,
            role=role,
            manager_id=manager_id,
            is_active=True,
            login_attempts=0,
            phone_number=phone_number,
            department=department,
            notification_settings=(notification_settings or NotificationSettings()).model_dump(),
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def get(self, user_id: UUID) -> User | None:
        """Get a user by ID."""
        row = await self._get_row(user_id)
        return self._row_to_model(row) if row else None

    async def get_by_email(self, email: str) -> User | None:
        result = await self.session.execute(
            select(UserTable)
            .where(UserTable.email == email.lower())
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def get_password_hash(self, user_id: UUID) -> str | None:
        return await self.session.scalar(
            select(UserTable.password_hash).where(UserTable.id == user_id)
        )

    async def email_taken(self, email: str, exclude_id: UUID | None = None) -> bool:
        query = select(UserTable.id).where(UserTable.email == email.lower())
        if exclude_id:
            query = query.where(UserTable.id != exclude_id)
        return (await self.session.scalar(query.limit(1))) is not None

    async def team_ids(self, manager_id: UUID) -> list[UUID]:
        """IDs of users whose manager_id references the given manager."""
        result = await self.session.execute(
            select(UserTable.id).where(UserTable.manager_id == manager_id)
        )
        return list(result.scalars().all())

    async def active_ids(self, role: Role | None = None) -> list[UUID]:
        """IDs of active users, optionally narrowed to one role."""
        query = select(UserTable.id).where(UserTable.is_active.is_(True))
        if role:
            query = query.where(UserTable.role == role)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_page(
        self,
        scope: ColumnElement[bool] | None = None,
        role: Role | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[User], int]:
        """List users intersected with a scope predicate."""
        query = select(UserTable).where(scope if scope is not None else true())

        if role:
            query = query.where(UserTable.role == role)
        if is_active is not None:
            query = query.where(UserTable.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(UserTable.name.ilike(pattern), UserTable.email.ilike(pattern))
            )

        query = query.order_by(UserTable.created_at.desc())
        rows, total = await _paginate(self.session, query, page, limit)
        return [self._row_to_model(row) for row in rows], total

    async def update_fields(self, user_id: UUID, values: dict[str, Any], now: datetime) -> User:
        """Apply a pre-validated field patch."""
        values = dict(values)
        if "email" in values:
            values["email"] = values["email"].lower()
        if isinstance(values.get("notification_settings"), NotificationSettings):
            values["notification_settings"] = values["notification_settings"].model_dump()
        values["updated_at"] = now
        await self.session.execute(
            update(UserTable).where(UserTable.id == user_id).values(**values),
            execution_options=_NO_SYNC,
        )
        return await self.get(user_id)

    async def set_password_hash(self, user_id: UUID, password_hash: str, now: datetime) -> None:
        await self.session.execute(
            update(UserTable)
            .where(UserTable.id == user_id)
            .values(password_hash=password_hash, updated_at=now),
            execution_options=_NO_SYNC,
        )

    # Login tracking. Each method is a single conditional UPDATE so that
    # concurrent failed attempts for one user never lose an increment.

    async def increment_login_attempts(self, user_id: UUID) -> int | None:
        """
        Atomically add one failed attempt while the account is unlocked.

        Returns the new counter, or None when a lock is already in place.
        """
        result = await self.session.execute(
            update(UserTable)
            .where(UserTable.id == user_id, UserTable.lock_until.is_(None))
            .values(login_attempts=UserTable.login_attempts + 1),
            execution_options=_NO_SYNC,
        )
        if result.rowcount == 0:
            return None
        return await self.session.scalar(
            select(UserTable.login_attempts).where(UserTable.id == user_id)
        )

    async def restart_expired_lock(self, user_id: UUID, now: datetime) -> bool:
        """Clear an expired lock and count the current failure as the first."""
        result = await self.session.execute(
            update(UserTable)
            .where(
                UserTable.id == user_id,
                UserTable.lock_until.is_not(None),
                UserTable.lock_until <= now,
            )
            .values(login_attempts=1, lock_until=None),
            execution_options=_NO_SYNC,
        )
        return result.rowcount > 0

    async def lock_account(self, user_id: UUID, threshold: int, until: datetime) -> bool:
        """Lock once the threshold is reached. Only the first caller wins."""
        result = await self.session.execute(
            update(UserTable)
            .where(
                UserTable.id == user_id,
                UserTable.lock_until.is_(None),
                UserTable.login_attempts >= threshold,
            )
            .values(lock_until=until),
            execution_options=_NO_SYNC,
        )
        return result.rowcount > 0

    async def record_successful_login(
        self, user_id: UUID, now: datetime, fcm_token: str | None = None
    ) -> User:
        values: dict[str, Any] = {
            "login_attempts": 0,
            "lock_until": None,
            "last_login": now,
        }
        if fcm_token:
            values["fcm_token"] = fcm_token
        await self.session.execute(
            update(UserTable).where(UserTable.id == user_id).values(**values),
            execution_options=_NO_SYNC,
        )
        return await self.get(user_id)

    async def clear_fcm_token(self, user_id: UUID) -> None:
        await self.session.execute(
            update(UserTable).where(UserTable.id == user_id).values(fcm_token=None),
            execution_options=_NO_SYNC,
        )

    async def _get_row(self, user_id: UUID) -> UserTable | None:
        result = await self.session.execute(
            select(UserTable)
            .where(UserTable.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _row_to_model(self, row: UserTable) -> User:
        """Convert database row to model."""
        return User(
            id=row.id,
            name=row.name,
            email=row.email,
            role=row.role,
            manager_id=row.manager_id,
            is_active=row.is_active,
            login_attempts=row.login_attempts,
            lock_until=as_utc(row.lock_until),
            last_login=as_utc(row.last_login),
            phone_number=row.phone_number,
            department=row.department,
            fcm_token=row.fcm_token,
            notification_settings=NotificationSettings(**(row.notification_settings or {})),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


class TaskRepository:
    """Repository for task operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        title: str,
        description: str,
        assigned_by: UUID,
        assigned_to: UUID,
        deadline: datetime,
        now: datetime,
        priority: TaskPriority = TaskPriority.MEDIUM,
        start_date: datetime | None = None,
        estimated_hours: float | None = None,
        tags: list[str] | None = None,
    ) -> Task:
        """Create a task in PENDING with its initial history entry."""
        task_id = uuid4()
        row = TaskTable(
            id=task_id,
            title=title,
            description=description,
            priority=priority,
            status=TaskStatus.PENDING,
            assigned_by=assigned_by,
            assigned_to=assigned_to,
            deadline=deadline,
            start_date=start_date,
            estimated_hours=estimated_hours,
            tags=tags or [],
            is_archived=False,
            reminder_sent=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()

        await self.add_history(task_id, TaskStatus.PENDING, assigned_by, now)
        return await self.get(task_id)

    async def get(self, task_id: UUID) -> Task | None:
        """Get a task by ID with history, comments and attachments."""
        result = await self.session.execute(
            select(TaskTable)
            .where(TaskTable.id == task_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def list_page(
        self,
        scope: ColumnElement[bool] | None = None,
        now: datetime | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assigned_to: UUID | None = None,
        assigned_by: UUID | None = None,
        search: str | None = None,
        overdue: bool = False,
        include_archived: bool = False,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Task], int]:
        """List tasks intersected with a scope predicate, newest first."""
        query = select(TaskTable).where(scope if scope is not None else true())

        if not include_archived:
            query = query.where(TaskTable.is_archived.is_(False))
        if status:
            query = query.where(TaskTable.status == status)
        if priority:
            query = query.where(TaskTable.priority == priority)
        if assigned_to:
            query = query.where(TaskTable.assigned_to == assigned_to)
        if assigned_by:
            query = query.where(TaskTable.assigned_by == assigned_by)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(TaskTable.title.ilike(pattern), TaskTable.description.ilike(pattern))
            )
        if overdue and now is not None:
            query = query.where(
                TaskTable.deadline < now,
                TaskTable.status.not_in([TaskStatus.COMPLETED, TaskStatus.APPROVED]),
            )

        query = query.order_by(TaskTable.created_at.desc())
        rows, total = await _paginate(self.session, query, page, limit)
        return [self._row_to_model(row) for row in rows], total

    async def open_for_assignee(self, user_id: UUID) -> list[Task]:
        """Pending or in-progress tasks still assigned to a user."""
        result = await self.session.execute(
            select(TaskTable).where(
                TaskTable.assigned_to == user_id,
                TaskTable.status.in_([TaskStatus.PENDING, TaskStatus.IN_PROGRESS]),
                TaskTable.is_archived.is_(False),
            )
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def due_for_reminder(
        self,
        scope: ColumnElement[bool] | None,
        now: datetime,
        cooldown_cutoff: datetime,
    ) -> list[Task]:
        """
        Open, unarchived tasks past their deadline that have not been
        reminded since `cooldown_cutoff`.
        """
        result = await self.session.execute(
            select(TaskTable)
            .where(
                scope if scope is not None else true(),
                TaskTable.deadline < now,
                TaskTable.status.in_([TaskStatus.PENDING, TaskStatus.IN_PROGRESS]),
                TaskTable.is_archived.is_(False),
                or_(
                    TaskTable.reminder_sent.is_(False),
                    TaskTable.last_reminder_at.is_(None),
                    TaskTable.last_reminder_at < cooldown_cutoff,
                ),
            )
            .order_by(TaskTable.deadline)
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def mark_reminded(self, task_ids: list[UUID], now: datetime) -> None:
        if not task_ids:
            return
        await self.session.execute(
            update(TaskTable)
            .where(TaskTable.id.in_(task_ids))
            .values(reminder_sent=True, last_reminder_at=now),
            execution_options=_NO_SYNC,
        )

    async def update_fields(self, task_id: UUID, values: dict[str, Any], now: datetime) -> Task:
        """Apply a pre-validated non-status field patch."""
        values = dict(values)
        values["updated_at"] = now
        await self.session.execute(
            update(TaskTable).where(TaskTable.id == task_id).values(**values),
            execution_options=_NO_SYNC,
        )
        return await self.get(task_id)

    async def update_status(
        self,
        task_id: UUID,
        status: TaskStatus,
        changed_by: UUID,
        now: datetime,
        comment: str | None = None,
        rejection_reason: str | None = None,
    ) -> Task:
        """
        Write a status change and append its history entry.

        Field-level update, last write wins. completed_at and approved_at
        are only filled when still empty. The rejection reason stays on the
        task through rework and is cleared on approval.
        """
        values: dict[str, Any] = {"status": status, "updated_at": now}
        if status == TaskStatus.COMPLETED:
            values["completed_at"] = func.coalesce(TaskTable.completed_at, now)
        elif status == TaskStatus.APPROVED:
            values["approved_at"] = func.coalesce(TaskTable.approved_at, now)
            values["approved_by"] = func.coalesce(TaskTable.approved_by, changed_by)
            values["rejection_reason"] = None
        elif status == TaskStatus.REJECTED:
            values["rejection_reason"] = rejection_reason

        await self.session.execute(
            update(TaskTable)
            .where(TaskTable.id == task_id)
            .values(**values),
            execution_options=_NO_SYNC,
        )
        await self.add_history(task_id, status, changed_by, now, comment)
        return await self.get(task_id)

    async def reassign(self, task_id: UUID, assigned_to: UUID, now: datetime) -> None:
        await self.session.execute(
            update(TaskTable)
            .where(TaskTable.id == task_id)
            .values(assigned_to=assigned_to, updated_at=now),
            execution_options=_NO_SYNC,
        )

    async def add_history(
        self,
        task_id: UUID,
        status: TaskStatus,
        changed_by: UUID,
        now: datetime,
        comment: str | None = None,
    ) -> None:
        self.session.add(
            StatusHistoryTable(
                task_id=task_id,
                status=status,
                changed_by=changed_by,
                changed_at=now,
                comment=comment,
            )
        )
        await self.session.flush()

    async def add_comment(
        self, task_id: UUID, author_id: UUID, text: str, now: datetime
    ) -> TaskComment:
        row = TaskCommentTable(
            id=uuid4(),
            task_id=task_id,
            author_id=author_id,
            text=text,
            created_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return TaskComment(
            id=row.id,
            author_id=row.author_id,
            text=row.text,
            created_at=as_utc(row.created_at),
        )

    async def add_attachment(
        self,
        task_id: UUID,
        uploaded_by: UUID,
        filename: str,
        original_name: str,
        mimetype: str,
        size: int,
        now: datetime,
        url: Optional[str] = None,
    ) -> TaskAttachment:
        row = TaskAttachmentTable(
            id=uuid4(),
            task_id=task_id,
            filename=filename,
            original_name=original_name,
            mimetype=mimetype,
            size=size,
            url=url,
            uploaded_by=uploaded_by,
            uploaded_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._attachment_to_model(row)

    def _attachment_to_model(self, row: TaskAttachmentTable) -> TaskAttachment:
        return TaskAttachment(
            id=row.id,
            filename=row.filename,
            original_name=row.original_name,
            mimetype=row.mimetype,
            size=row.size,
            url=row.url,
            uploaded_by=row.uploaded_by,
            uploaded_at=as_utc(row.uploaded_at),
        )

    def _row_to_model(self, row: TaskTable) -> Task:
        """Convert database row to model."""
        return Task(
            id=row.id,
            title=row.title,
            description=row.description,
            priority=row.priority,
            status=row.status,
            assigned_by=row.assigned_by,
            assigned_to=row.assigned_to,
            deadline=as_utc(row.deadline),
            start_date=as_utc(row.start_date),
            completed_at=as_utc(row.completed_at),
            approved_at=as_utc(row.approved_at),
            approved_by=row.approved_by,
            rejection_reason=row.rejection_reason,
            estimated_hours=row.estimated_hours,
            actual_hours=row.actual_hours,
            tags=list(row.tags or []),
            is_archived=row.is_archived,
            reminder_sent=bool(row.reminder_sent),
            last_reminder_at=as_utc(row.last_reminder_at),
            status_history=[
                StatusChange(
                    status=entry.status,
                    changed_by=entry.changed_by,
                    changed_at=as_utc(entry.changed_at),
                    comment=entry.comment,
                )
                for entry in row.history
            ],
            comments=[
                TaskComment(
                    id=comment.id,
                    author_id=comment.author_id,
                    text=comment.text,
                    created_at=as_utc(comment.created_at),
                )
                for comment in row.comments
            ],
            attachments=[self._attachment_to_model(a) for a in row.attachments],
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


class AuditRepository:
    """Repository for audit entries. Insert and read only."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        action,
        resource,
        created_at: datetime,
        ip_address: str,
        actor_id: UUID | None = None,
        resource_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        success: bool = True,
        error_message: str | None = None,
        severity=None,
        category=None,
        user_agent: str | None = None,
    ) -> AuditEntry:
        row = AuditEntryTable(
            id=uuid4(),
            actor_id=actor_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            success=success,
            error_message=error_message,
            severity=severity,
            category=category,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=created_at,
        )
        self.session.add(row)
        await self.session.flush()
        return self.row_to_model(row)

    async def get(self, entry_id: UUID) -> AuditEntry | None:
        row = await self.session.get(AuditEntryTable, entry_id)
        return self.row_to_model(row) if row else None

    async def list_page(self, query: Select, page: int, limit: int) -> tuple[list[AuditEntry], int]:
        rows, total = await _paginate(self.session, query, page, limit)
        return [self.row_to_model(row) for row in rows], total

    async def all(self, query: Select) -> list[AuditEntry]:
        result = await self.session.execute(query)
        return [self.row_to_model(row) for row in result.scalars().all()]

    @staticmethod
    def row_to_model(row: AuditEntryTable) -> AuditEntry:
        """Convert database row to model."""
        return AuditEntry(
            id=row.id,
            actor_id=row.actor_id,
            action=row.action,
            resource=row.resource,
            resource_id=row.resource_id,
            details=row.details or {},
            success=row.success,
            error_message=row.error_message,
            severity=row.severity,
            category=row.category,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=as_utc(row.created_at),
        )
