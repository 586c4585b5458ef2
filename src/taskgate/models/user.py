"""User model - identity and hierarchy."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from taskgate.models.enums import Role


class NotificationSettings(BaseModel):
    """Per-user notification preferences."""

    task_assignments: bool = True
    task_updates: bool = True
    task_approvals: bool = True
    system_notifications: bool = True


class User(BaseModel):
    """A person acting in the system. Never hard-deleted."""

    id: UUID
    name: str
    email: str
    role: Role = Role.EMPLOYEE

    # Hierarchy: an employee's manager_id references a Manager
    manager_id: Optional[UUID] = None

    is_active: bool = True

    # Account security
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    last_login: Optional[datetime] = None

    # Profile
    phone_number: Optional[str] = None
    department: Optional[str] = None
    fcm_token: Optional[str] = None
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    created_at: datetime
    updated_at: datetime

    def is_locked(self, now: datetime) -> bool:
        """Check if the account is inside a lockout window."""
        return self.lock_until is not None and self.lock_until > now

