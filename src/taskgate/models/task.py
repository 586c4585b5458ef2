"""Task model - assigned unit of work and its state machine."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from taskgate.models.enums import TaskPriority, TaskStatus


# (from, to) pairs accepted by the workflow. A reset to PENDING sends a task
# back for rework; APPROVED accepts nothing further.
VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.PENDING}),
    TaskStatus.COMPLETED: frozenset(
        {TaskStatus.APPROVED, TaskStatus.REJECTED, TaskStatus.PENDING}
    ),
    TaskStatus.APPROVED: frozenset(),
    TaskStatus.REJECTED: frozenset({TaskStatus.PENDING}),
}


class StatusChange(BaseModel):
    """One append-only entry of a task's status history."""

    status: TaskStatus
    changed_by: UUID
    changed_at: datetime
    comment: Optional[str] = None


class TaskComment(BaseModel):
    """Comment left on a task."""

    id: UUID
    author_id: UUID
    text: str
    created_at: datetime


class TaskAttachment(BaseModel):
    """Attachment metadata. File bytes live in external storage."""

    id: UUID
    filename: str
    original_name: str
    mimetype: str
    size: int
    url: Optional[str] = None
    uploaded_by: UUID
    uploaded_at: datetime


class Task(BaseModel):
    """Task assigned by a manager to a user."""

    # Identity
    id: UUID
    title: str
    description: str
    priority: TaskPriority = TaskPriority.MEDIUM

    # Status
    status: TaskStatus = TaskStatus.PENDING

    # Assignment
    assigned_by: UUID
    assigned_to: UUID

    # Scheduling
    deadline: datetime
    start_date: Optional[datetime] = None

    # Set once on first entry into the matching status
    completed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None

    rejection_reason: Optional[str] = None

    # Effort
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None

    tags: list[str] = Field(default_factory=list)
    is_archived: bool = False

    # Overdue reminder bookkeeping
    reminder_sent: bool = False
    last_reminder_at: Optional[datetime] = None

    status_history: list[StatusChange] = Field(default_factory=list)
    comments: list[TaskComment] = Field(default_factory=list)
    attachments: list[TaskAttachment] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.status.is_terminal()

    def can_transition_to(self, new_status: TaskStatus) -> bool:
        """Check if transition to new status is valid per state machine."""
        return new_status in VALID_TRANSITIONS.get(self.status, frozenset())

    def previous_status(self) -> Optional[TaskStatus]:
        """Status held before the latest history entry."""
        if len(self.status_history) < 2:
            return None
        return self.status_history[-2].status

    def is_overdue(self, now: datetime) -> bool:
        return self.deadline < now and self.status not in (
            TaskStatus.COMPLETED,
            TaskStatus.APPROVED,
        )
