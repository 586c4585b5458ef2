"""Task workflow - creation, status state machine, comments and attachments."""

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, NamedTuple, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.access.policy import Action, permits
from taskgate.access.resolver import AccessScopeResolver
from taskgate.audit.recorder import AuditRecorder
from taskgate.config import settings
from taskgate.db.repositories import TaskRepository
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.errors import InvalidTransition, NotFound, ValidationFailed
from taskgate.engine.users import clamp_page
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditResource,
    NotificationType,
    Page,
    Severity,
    Task,
    TaskAttachment,
    TaskComment,
    TaskStatus,
    User,
)
from taskgate.models.commands import (
    ASSIGNEE_TASK_FIELDS,
    AttachmentCreate,
    CommentCreate,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    TransitionRequest,
)
from taskgate.notifications.dispatcher import NotificationDispatcher
from taskgate.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)

NON_NULL_TASK_FIELDS = ("title", "description", "priority", "deadline", "tags")


class ReminderResult(NamedTuple):
    total_tasks: int
    total_sent: int


class TransitionRule(NamedTuple):
    action: Action
    audit_action: AuditAction
    event: NotificationType
    title: str


TRANSITION_RULES: dict[TaskStatus, TransitionRule] = {
    TaskStatus.IN_PROGRESS: TransitionRule(
        Action.TASK_START, AuditAction.TASK_STARTED, NotificationType.TASK_STARTED, "Task Started"
    ),
    TaskStatus.COMPLETED: TransitionRule(
        Action.TASK_COMPLETE,
        AuditAction.TASK_COMPLETED,
        NotificationType.TASK_COMPLETED,
        "Task Completed",
    ),
    TaskStatus.APPROVED: TransitionRule(
        Action.TASK_APPROVE,
        AuditAction.TASK_APPROVED,
        NotificationType.TASK_APPROVED,
        "Task Approved",
    ),
    TaskStatus.REJECTED: TransitionRule(
        Action.TASK_REJECT,
        AuditAction.TASK_REJECTED,
        NotificationType.TASK_REJECTED,
        "Task Rejected",
    ),
    TaskStatus.PENDING: TransitionRule(
        Action.TASK_RESET, AuditAction.TASK_RESET, NotificationType.TASK_RESET, "Task Reset"
    ),
}


def _transition_message(status: TaskStatus, actor: User, task: Task) -> str:
    if status == TaskStatus.IN_PROGRESS:
        return f'{actor.name} started working on "{task.title}"'
    if status == TaskStatus.COMPLETED:
        return f'{actor.name} completed "{task.title}"'
    if status == TaskStatus.APPROVED:
        return f'Your task "{task.title}" has been approved'
    if status == TaskStatus.REJECTED:
        return f'Your task "{task.title}" needs revision'
    return f'{actor.name} moved "{task.title}" back to pending'


def counterpart(task: Task, actor: User, status: TaskStatus) -> UUID:
    """The single user told about a transition."""
    if status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
        return task.assigned_by
    if status in (TaskStatus.APPROVED, TaskStatus.REJECTED):
        return task.assigned_to
    # Reset: whichever side did not trigger it
    return task.assigned_by if actor.id == task.assigned_to else task.assigned_to


class TaskWorkflow:
    """
    Task operations gated by the access resolver.

    Status changes go through transition_task only. Every successful
    operation writes one audit entry and at most a few best-effort
    notifications.
    """

    def __init__(
        self,
        session: AsyncSession,
        directory: IdentityDirectory,
        resolver: AccessScopeResolver,
        recorder: AuditRecorder,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.tasks = TaskRepository(session)
        self.directory = directory
        self.resolver = resolver
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.clock = clock

    async def _require_task(self, task_id: UUID) -> Task:
        task = await self.tasks.get(task_id)
        if not task:
            raise NotFound("task", str(task_id))
        return task

    # =========================================================================
    # Create / read
    # =========================================================================

    async def create_task(self, actor: User, data: TaskCreate) -> Task:
        """
        Assign a new task.

        The deadline must be in the future and the assignee an active user
        inside the creator's user scope (a Manager's own team or self).
        """
        await self.resolver.require(actor, Action.TASK_CREATE)

        now = self.clock()
        deadline = as_utc(data.deadline)
        if deadline <= now:
            raise ValidationFailed({"deadline": "Deadline must be in the future"})
        start_date = as_utc(data.start_date)
        if start_date is not None and start_date > deadline:
            raise ValidationFailed({"start_date": "Start date must be before the deadline"})

        assignee = await self.directory.get(data.assigned_to)
        if not assignee:
            raise ValidationFailed({"assigned_to": "Assigned user not found or inactive"})
        # Scope first: an out-of-scope account's state is not revealed
        if not permits(
            actor.role, Action.USER_READ, self.resolver.user_relations(actor, assignee)
        ):
            await self.resolver.deny(actor, Action.TASK_CREATE, AuditResource.USER, assignee.id)
        if not assignee.is_active:
            raise ValidationFailed({"assigned_to": "Assigned user not found or inactive"})

        task = await self.tasks.create(
            title=data.title,
            description=data.description,
            assigned_by=actor.id,
            assigned_to=assignee.id,
            deadline=deadline,
            now=now,
            priority=data.priority,
            start_date=start_date,
            estimated_hours=data.estimated_hours,
            tags=data.tags,
        )
        await self.recorder.record(
            action=AuditAction.TASK_CREATED,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details={
                "title": task.title,
                "assigned_to": assignee.id,
                "priority": task.priority.value,
                "deadline": task.deadline,
            },
            category=AuditCategory.DATA,
        )
        await self.dispatcher.notify(
            NotificationType.TASK_ASSIGNED,
            target_user_id=assignee.id,
            source_actor_name=actor.name,
            title="New Task Assigned",
            body=f'New task "{task.title}" assigned by {actor.name}',
            task_id=task.id,
        )
        logger.info(f"Task {task.id} assigned by {actor.id} to {assignee.id}")
        return task

    async def get_task(self, actor: User, task_id: UUID) -> Task:
        """Out-of-scope tasks are reported as not found."""
        task = await self._require_task(task_id)
        await self.resolver.authorize_task(actor, Action.TASK_READ, task, conceal=True)
        return task

    async def list_tasks(
        self,
        actor: User,
        filters: Optional[TaskFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[Task]:
        filters = filters or TaskFilters()
        page, limit = clamp_page(page, limit)
        items, total = await self.tasks.list_page(
            scope=self.resolver.task_scope(actor),
            now=self.clock(),
            status=filters.status,
            priority=filters.priority,
            assigned_to=filters.assigned_to,
            assigned_by=filters.assigned_by,
            search=filters.search,
            overdue=filters.overdue,
            include_archived=filters.include_archived,
            page=page,
            limit=limit,
        )
        return Page[Task](items=items, total=total, page=page, limit=limit)

    async def user_tasks(
        self,
        actor: User,
        user_id: UUID,
        filters: Optional[TaskFilters] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page[Task]:
        """Tasks assigned to a user the actor can see, within the actor's task scope."""
        await self.resolver.authorize_user(actor, Action.USER_READ, user_id, conceal=True)
        filters = (filters or TaskFilters()).model_copy(update={"assigned_to": user_id})
        return await self.list_tasks(actor, filters, page, limit)

    # =========================================================================
    # Field updates
    # =========================================================================

    async def update_task(self, actor: User, task_id: UUID, patch: TaskUpdate) -> Task:
        """
        Patch non-status fields.

        Supervisors (SuperAdmin, assigner, owning Manager) may change any
        field. An assignee without a supervising relation may only report
        actual hours.
        """
        task = await self._require_task(task_id)
        relations = await self.resolver.task_relations_for(actor, task)
        values: dict[str, Any] = patch.model_dump(exclude_unset=True)
        for field in NON_NULL_TASK_FIELDS:
            if field in values and values[field] is None:
                del values[field]

        if not permits(actor.role, Action.TASK_UPDATE, relations):
            effort_only = not set(values) - ASSIGNEE_TASK_FIELDS
            if not (effort_only and permits(actor.role, Action.TASK_UPDATE_EFFORT, relations)):
                await self.resolver.deny(actor, Action.TASK_UPDATE, AuditResource.TASK, task.id)

        if not values:
            return task

        now = self.clock()
        if "deadline" in values:
            values["deadline"] = as_utc(values["deadline"])
            if values["deadline"] <= now:
                raise ValidationFailed({"deadline": "Deadline must be in the future"})

        updated = await self.tasks.update_fields(task.id, values, now)
        await self.recorder.record(
            action=AuditAction.TASK_UPDATED,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details={"updated_fields": sorted(values)},
            category=AuditCategory.DATA,
        )
        return updated

    async def archive_task(self, actor: User, task_id: UUID) -> Task:
        """Soft delete. SuperAdmin or the original assigner."""
        task = await self._require_task(task_id)
        await self.resolver.authorize_task(actor, Action.TASK_ARCHIVE, task)
        if task.is_archived:
            return task

        archived = await self.tasks.update_fields(task.id, {"is_archived": True}, self.clock())
        await self.recorder.record(
            action=AuditAction.TASK_DELETED,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details={"title": task.title, "status": task.status.value},
            severity=Severity.MEDIUM,
            category=AuditCategory.DATA,
        )
        return archived

    # =========================================================================
    # Status transitions
    # =========================================================================

    async def transition_task(
        self, actor: User, task_id: UUID, request: TransitionRequest
    ) -> Task:
        """
        Move a task to a new status.

        Checks run in order: the task exists, the actor can see it, the
        actor may trigger this transition, the transition is in the table,
        and a rejection carries a reason.

        Raises:
            NotFound, PermissionDenied, InvalidTransition, ValidationFailed
        """
        task = await self._require_task(task_id)
        target = request.status
        rule = TRANSITION_RULES[target]

        relations = await self.resolver.task_relations_for(actor, task)
        if not permits(actor.role, Action.TASK_READ, relations):
            await self.resolver.deny(actor, Action.TASK_READ, AuditResource.TASK, task.id)
        if not permits(actor.role, rule.action, relations):
            await self.resolver.deny(actor, rule.action, AuditResource.TASK, task.id)

        if not task.can_transition_to(target):
            raise InvalidTransition(task.status.value, target.value)

        rejection_reason = (request.rejection_reason or "").strip() or None
        if target == TaskStatus.REJECTED and not rejection_reason:
            raise ValidationFailed({"rejection_reason": "Rejection reason is required"})

        comment = (request.comment or "").strip() or None
        updated = await self.tasks.update_status(
            task.id,
            target,
            changed_by=actor.id,
            now=self.clock(),
            comment=comment,
            rejection_reason=rejection_reason,
        )

        details: dict[str, Any] = {"from": task.status.value, "to": target.value}
        if comment:
            details["comment"] = comment
        if rejection_reason:
            details["rejection_reason"] = rejection_reason
        await self.recorder.record(
            action=rule.audit_action,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details=details,
            category=AuditCategory.DATA,
        )
        await self.dispatcher.notify(
            rule.event,
            target_user_id=counterpart(task, actor, target),
            source_actor_name=actor.name,
            title=rule.title,
            body=_transition_message(target, actor, task),
            task_id=task.id,
        )
        logger.info(f"Task {task.id}: {task.status.value} -> {target.value} by {actor.id}")
        return updated

    # =========================================================================
    # Overdue reminders
    # =========================================================================

    async def remind_overdue(self, actor: User) -> ReminderResult:
        """
        Notify assignees of open tasks past their deadline.

        A task is reminded at most once per cooldown period. Tasks whose
        assignee has the reminder switched off still count as processed.
        Managers reach only the tasks in their own task scope.
        """
        await self.resolver.require(actor, Action.TASK_REMIND)

        now = self.clock()
        cutoff = now - timedelta(seconds=settings.reminder_cooldown_seconds)
        due = await self.tasks.due_for_reminder(self.resolver.task_scope(actor), now, cutoff)

        sent = 0
        for task in due:
            days = math.ceil((now - task.deadline).total_seconds() / 86400)
            delivered = await self.dispatcher.notify(
                NotificationType.TASK_OVERDUE,
                target_user_id=task.assigned_to,
                source_actor_name=actor.name,
                title="Task Overdue",
                body=f'Task "{task.title}" is {days} day{"s" if days != 1 else ""} overdue',
                task_id=task.id,
            )
            sent += int(delivered)
        await self.tasks.mark_reminded([task.id for task in due], now)

        result = ReminderResult(total_tasks=len(due), total_sent=sent)
        await self.recorder.record(
            action=AuditAction.NOTIFICATION_SENT,
            resource=AuditResource.NOTIFICATION,
            actor_id=actor.id,
            details={
                "type": "overdue_reminders",
                "total_tasks": result.total_tasks,
                "total_sent": result.total_sent,
            },
            category=AuditCategory.SYSTEM,
        )
        logger.info(f"Overdue reminders by {actor.id}: {sent} sent for {len(due)} tasks")
        return result

    # =========================================================================
    # Comments and attachments
    # =========================================================================

    async def add_comment(self, actor: User, task_id: UUID, data: CommentCreate) -> TaskComment:
        task = await self._require_task(task_id)
        await self.resolver.authorize_task(actor, Action.TASK_COMMENT, task)

        comment = await self.tasks.add_comment(task.id, actor.id, data.text, self.clock())
        await self.recorder.record(
            action=AuditAction.COMMENT_ADDED,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details={"task_title": task.title, "comment_length": len(data.text)},
        )
        await self._notify_participants(
            task,
            actor,
            NotificationType.COMMENT_ADDED,
            "New Comment",
            f'{actor.name} commented on "{task.title}"',
        )
        return comment

    async def add_attachment(
        self, actor: User, task_id: UUID, data: AttachmentCreate
    ) -> TaskAttachment:
        """Record metadata for a file already uploaded to external storage."""
        task = await self._require_task(task_id)
        await self.resolver.authorize_task(actor, Action.TASK_ATTACH, task)

        if data.mimetype not in settings.allowed_attachment_types:
            raise ValidationFailed({"mimetype": f"File type not allowed: {data.mimetype}"})
        if data.size > settings.max_attachment_bytes:
            raise ValidationFailed(
                {"size": f"File exceeds {settings.max_attachment_bytes} bytes"}
            )

        attachment = await self.tasks.add_attachment(
            task.id,
            uploaded_by=actor.id,
            filename=data.filename,
            original_name=data.original_name,
            mimetype=data.mimetype,
            size=data.size,
            now=self.clock(),
            url=data.url,
        )
        await self.recorder.record(
            action=AuditAction.ATTACHMENT_UPLOADED,
            resource=AuditResource.TASK,
            actor_id=actor.id,
            resource_id=task.id,
            details={
                "task_title": task.title,
                "filename": data.original_name,
                "size": data.size,
                "mimetype": data.mimetype,
            },
        )
        await self._notify_participants(
            task,
            actor,
            NotificationType.ATTACHMENT_UPLOADED,
            "New Attachment",
            f'{actor.name} uploaded a file to "{task.title}"',
        )
        return attachment

    async def _notify_participants(
        self, task: Task, actor: User, event: NotificationType, title: str, body: str
    ) -> None:
        """Assignee and assigner, minus the author."""
        for user_id in dict.fromkeys([task.assigned_to, task.assigned_by]):
            if user_id != actor.id:
                await self.dispatcher.notify(
                    event,
                    target_user_id=user_id,
                    source_actor_name=actor.name,
                    title=title,
                    body=body,
                    task_id=task.id,
                )
