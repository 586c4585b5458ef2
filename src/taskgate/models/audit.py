"""Audit entry model - immutable record of a state-changing event."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from taskgate.models.enums import AuditAction, AuditCategory, AuditResource, Severity


ACTION_MESSAGES: dict[AuditAction, str] = {
    AuditAction.LOGIN: "User logged in",
    AuditAction.LOGOUT: "User logged out",
    AuditAction.FAILED_LOGIN: "Failed login attempt",
    AuditAction.PASSWORD_CHANGE: "Password changed",
    AuditAction.USER_CREATED: "User account created",
    AuditAction.USER_UPDATED: "User account updated",
    AuditAction.USER_DELETED: "User account deactivated",
    AuditAction.ROLE_CHANGED: "User role changed",
    AuditAction.TASK_CREATED: "Task created",
    AuditAction.TASK_UPDATED: "Task updated",
    AuditAction.TASK_DELETED: "Task archived",
    AuditAction.TASK_ASSIGNED: "Task assigned",
    AuditAction.TASK_STARTED: "Task started",
    AuditAction.TASK_COMPLETED: "Task completed",
    AuditAction.TASK_APPROVED: "Task approved",
    AuditAction.TASK_REJECTED: "Task rejected",
    AuditAction.TASK_RESET: "Task reset to pending",
    AuditAction.COMMENT_ADDED: "Comment added to task",
    AuditAction.ATTACHMENT_UPLOADED: "File attachment uploaded",
    AuditAction.NOTIFICATION_SENT: "Notification sent",
    AuditAction.REPORT_GENERATED: "Report generated",
    AuditAction.TEAM_UPDATED: "Team membership updated",
    AuditAction.SETTINGS_CHANGED: "Settings modified",
    AuditAction.DATA_EXPORT: "Data exported",
    AuditAction.SYSTEM_ACCESS: "System accessed",
    AuditAction.ACCESS_DENIED: "Access denied",
    AuditAction.AUDIT_CLEANUP: "Audit log cleanup",
}


class AuditEntry(BaseModel):
    """Audit trail entry. Never updated after creation."""

    id: UUID
    actor_id: Optional[UUID] = None
    action: AuditAction
    resource: AuditResource
    resource_id: Optional[UUID] = None
    details: dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    error_message: Optional[str] = None
    severity: Severity = Severity.LOW
    category: AuditCategory = AuditCategory.USER_ACTION
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    created_at: datetime

    def display_message(self) -> str:
        return ACTION_MESSAGES.get(self.action, self.action.value)
