"""Validated inputs for user and task operations."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from taskgate.models.enums import (
    BroadcastTarget,
    NotificationType,
    Role,
    TaskPriority,
    TaskStatus,
)
from taskgate.models.user import NotificationSettings


_LOCATIONS = ("body", "query", "path", "header")


def field_errors(exc: ValidationError) -> dict[str, str]:
    """Flatten a pydantic (or FastAPI request) validation error into {field: message}."""
    errors: dict[str, str] = {}
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"] if part not in _LOCATIONS) or "__root__"
        errors.setdefault(name, error["msg"])
    return errors


class UserCreate(BaseModel):
    """New account, created by a SuperAdmin or a Manager."""

    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str
    role: Role = Role.EMPLOYEE
    manager_id: Optional[UUID] = None
    phone_number: Optional[str] = Field(None, max_length=32)
    department: Optional[str] = Field(None, max_length=50)
    notification_settings: Optional[NotificationSettings] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class UserUpdate(BaseModel):
    """Partial user patch. Only fields explicitly set are applied."""

    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    manager_id: Optional[UUID] = None
    is_active: Optional[bool] = None
    phone_number: Optional[str] = Field(None, max_length=32)
    department: Optional[str] = Field(None, max_length=50)
    notification_settings: Optional[NotificationSettings] = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v


class UserFilters(BaseModel):
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


class TaskCreate(BaseModel):
    """New task assignment."""

    title: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    assigned_to: UUID
    deadline: datetime
    priority: TaskPriority = TaskPriority.MEDIUM
    start_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    tags: list[str] = Field(default_factory=list)

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class TaskUpdate(BaseModel):
    """Partial non-status task patch."""

    title: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    priority: Optional[TaskPriority] = None
    deadline: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(None, ge=0)
    actual_hours: Optional[float] = Field(None, ge=0)
    tags: Optional[list[str]] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


# Fields an assignee may patch on a task they do not supervise
ASSIGNEE_TASK_FIELDS = frozenset({"actual_hours"})

# Fields an employee may patch on their own profile
SELF_PROFILE_FIELDS = frozenset({"name", "phone_number", "notification_settings"})


class TaskFilters(BaseModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to: Optional[UUID] = None
    assigned_by: Optional[UUID] = None
    search: Optional[str] = None
    overdue: bool = False
    include_archived: bool = False


class TransitionRequest(BaseModel):
    """Requested status change."""

    status: TaskStatus
    comment: Optional[str] = Field(None, max_length=200)
    rejection_reason: Optional[str] = Field(None, max_length=500)


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)

    @field_validator("text", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class AttachmentCreate(BaseModel):
    """Metadata of a file already placed in external storage."""

    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    mimetype: str
    size: int = Field(..., gt=0)
    url: Optional[str] = None


# Types a person may pick when sending directly or broadcasting
SENDABLE_TYPES = frozenset(
    {
        NotificationType.TASK_ASSIGNED,
        NotificationType.TASK_UPDATED,
        NotificationType.SYSTEM_NOTIFICATION,
        NotificationType.GENERAL,
    }
)
BROADCAST_TYPES = frozenset(
    {
        NotificationType.SYSTEM_NOTIFICATION,
        NotificationType.ANNOUNCEMENT,
        NotificationType.MAINTENANCE,
        NotificationType.GENERAL,
    }
)


class _Message(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    body: str = Field(..., min_length=1, max_length=200)

    @field_validator("title", "body", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v


class NotificationSend(_Message):
    """Direct message from a SuperAdmin or Manager to one user."""

    user_id: UUID
    type: NotificationType = NotificationType.GENERAL

    @field_validator("type")
    @classmethod
    def sendable(cls, v):
        if v not in SENDABLE_TYPES:
            raise ValueError(f"Type {v.value} cannot be sent directly")
        return v


class Broadcast(_Message):
    """
    SuperAdmin announcement.

    target_type USERS needs `targets`, ROLE needs `role`, ALL needs neither.
    Only active users receive it.
    """

    type: NotificationType = NotificationType.SYSTEM_NOTIFICATION
    target_type: BroadcastTarget = BroadcastTarget.ALL
    targets: list[UUID] = Field(default_factory=list)
    role: Optional[Role] = None

    @field_validator("type")
    @classmethod
    def broadcastable(cls, v):
        if v not in BROADCAST_TYPES:
            raise ValueError(f"Type {v.value} cannot be broadcast")
        return v
