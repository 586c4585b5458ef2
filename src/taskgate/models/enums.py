"""TaskGate enumerations."""

from enum import Enum


class Role(str, Enum):
    """User role, determines baseline permissions."""

    SUPER_ADMIN = "super_admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def terminal_states(cls) -> set["TaskStatus"]:
        """Return terminal states."""
        return {cls.APPROVED, cls.REJECTED}

    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in self.terminal_states()


class TaskPriority(str, Enum):
    """Task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AuditAction(str, Enum):
    """Closed set of audited domain events."""

    LOGIN = "login"
    LOGOUT = "logout"
    FAILED_LOGIN = "failed_login"
    PASSWORD_CHANGE = "password_change"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    ROLE_CHANGED = "role_changed"
    TASK_CREATED = "task_created"
    TASK_UPDATED = "task_updated"
    TASK_DELETED = "task_deleted"
    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    TASK_RESET = "task_reset"
    COMMENT_ADDED = "comment_added"
    ATTACHMENT_UPLOADED = "attachment_uploaded"
    TASK_OVERDUE = "task_overdue"

    # Sent by people rather than produced by the workflow
    GENERAL = "general"
    SYSTEM_NOTIFICATION = "system_notification"
    ANNOUNCEMENT = "announcement"
    MAINTENANCE = "maintenance"
    NOTIFICATION_SENT = "notification_sent"
    REPORT_GENERATED = "report_generated"
    TEAM_UPDATED = "team_updated"
    SETTINGS_CHANGED = "settings_changed"
    DATA_EXPORT = "data_export"
    SYSTEM_ACCESS = "system_access"
    ACCESS_DENIED = "access_denied"
    AUDIT_CLEANUP = "audit_cleanup"

    @classmethod
    def authentication_actions(cls) -> set["AuditAction"]:
        """Actions always treated as security relevant."""
        return {cls.LOGIN, cls.LOGOUT, cls.FAILED_LOGIN, cls.PASSWORD_CHANGE}


class AuditResource(str, Enum):
    """Kind of resource an audit entry refers to."""

    USER = "user"
    TASK = "task"
    NOTIFICATION = "notification"
    REPORT = "report"
    SYSTEM = "system"
    AUTH = "auth"


class Severity(str, Enum):
    """Audit severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def retained(cls) -> set["Severity"]:
        """Severities the retention cleanup never removes."""
        return {cls.HIGH, cls.CRITICAL}


class AuditCategory(str, Enum):
    """Audit category."""

    SECURITY = "security"
    DATA = "data"
    SYSTEM = "system"
    USER_ACTION = "user_action"


class NotificationType(str, Enum):
    """Workflow events delivered to the notification gateway."""

    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    TASK_RESET = "task_reset"
    COMMENT_ADDED = "comment_added"
    ATTACHMENT_UPLOADED = "attachment_uploaded"
    TASK_OVERDUE = "task_overdue"

    # Sent by people rather than produced by the workflow
    GENERAL = "general"
    TASK_UPDATED = "task_updated"
    SYSTEM_NOTIFICATION = "system_notification"
    ANNOUNCEMENT = "announcement"
    MAINTENANCE = "maintenance"


class BroadcastTarget(str, Enum):
    """Who a broadcast reaches."""

    USERS = "users"
    ROLE = "role"
    ALL = "all"
