"""API request/response schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from taskgate.models import NotificationSettings, Role


# ============================================================================
# Auth schemas
# ============================================================================


class LoginRequest(BaseModel):
    """Login request."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    fcm_token: Optional[str] = None


class UserResponse(BaseModel):
    """User as exposed over the API. Login counters and tokens are omitted."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    email: str
    role: Role
    manager_id: Optional[UUID] = None
    is_active: bool
    last_login: Optional[datetime] = None
    phone_number: Optional[str] = None
    department: Optional[str] = None
    notification_settings: NotificationSettings
    created_at: datetime
    updated_at: datetime


class LoginResponse(BaseModel):
    """Login response."""

    token: str
    token_type: str = "bearer"
    user: UserResponse


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class FcmTokenRequest(BaseModel):
    fcm_token: str = Field(..., min_length=1)


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


# ============================================================================
# User schemas
# ============================================================================


class DeactivateResponse(BaseModel):
    """Soft delete result."""

    ok: bool = True
    reassigned_tasks: int


# ============================================================================
# Notification schemas
# ============================================================================


class SendResponse(BaseModel):
    ok: bool = True
    delivered: bool


class BroadcastResponse(BaseModel):
    ok: bool = True
    total_sent: int
    total_failed: int


class ReminderResponse(BaseModel):
    ok: bool = True
    total_tasks: int
    total_sent: int


# ============================================================================
# Audit schemas
# ============================================================================


class CleanupResponse(BaseModel):
    ok: bool = True
    deleted_count: int
    retention_days: int


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
