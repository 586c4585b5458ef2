"""TaskGate data models."""

from taskgate.models.enums import (
    AuditAction,
    AuditCategory,
    AuditResource,
    BroadcastTarget,
    NotificationType,
    Role,
    Severity,
    TaskPriority,
    TaskStatus,
)
from taskgate.models.user import NotificationSettings, User
from taskgate.models.task import (
    VALID_TRANSITIONS,
    StatusChange,
    Task,
    TaskAttachment,
    TaskComment,
)
from taskgate.models.audit import AuditEntry
from taskgate.models.notification import NotificationEvent
from taskgate.models.page import Page

__all__ = [
    "AuditAction",
    "AuditCategory",
    "AuditEntry",
    "AuditResource",
    "BroadcastTarget",
    "NotificationEvent",
    "NotificationSettings",
    "NotificationType",
    "Page",
    "Role",
    "Severity",
    "StatusChange",
    "Task",
    "TaskAttachment",
    "TaskComment",
    "TaskPriority",
    "TaskStatus",
    "User",
    "VALID_TRANSITIONS",
]
