"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskgate.db.base import Base
from taskgate.models.enums import (
    AuditAction,
    AuditCategory,
    AuditResource,
    Role,
    Severity,
    TaskPriority,
    TaskStatus,
)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UserTable(Base):
    """Users table - identities and the manager hierarchy."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False, default=Role.EMPLOYEE)

    # Hierarchy (one level: manager -> employee)
    manager_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True
    )

    # Soft delete
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Account security
    login_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lock_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Profile
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    department: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fcm_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    notification_settings: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_users_role_active", "role", "is_active"),
    )


class TaskTable(Base):
    """Tasks table - assigned work units."""

    __tablename__ = "tasks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM
    )

    # Status
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus), nullable=False, default=TaskStatus.PENDING
    )

    # Assignment
    assigned_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    assigned_to: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    # Scheduling
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set-once milestones
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Effort
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    tags: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Overdue reminders
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_reminder_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Children, loaded eagerly for async access
    history: Mapped[list["StatusHistoryTable"]] = relationship(
        "StatusHistoryTable",
        order_by="StatusHistoryTable.id",
        lazy="selectin",
    )
    comments: Mapped[list["TaskCommentTable"]] = relationship(
        "TaskCommentTable",
        order_by="TaskCommentTable.created_at",
        lazy="selectin",
    )
    attachments: Mapped[list["TaskAttachmentTable"]] = relationship(
        "TaskAttachmentTable",
        order_by="TaskAttachmentTable.uploaded_at",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_tasks_assigned_to_status", "assigned_to", "status"),
        Index("idx_tasks_assigned_by_status", "assigned_by", "status"),
        Index("idx_tasks_deadline", "deadline"),
    )


class StatusHistoryTable(Base):
    """Append-only task status history. Autoincrement id preserves insertion order."""

    __tablename__ = "task_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id"), nullable=False, index=True
    )
    status: Mapped[TaskStatus] = mapped_column(Enum(TaskStatus), nullable=False)
    changed_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(200), nullable=True)


class TaskCommentTable(Base):
    """Comments left on tasks."""

    __tablename__ = "task_comments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    task_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id"), nullable=False, index=True
    )
    author_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    text: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TaskAttachmentTable(Base):
    """Attachment metadata."""

    __tablename__ = "task_attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    task_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tasks.id"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mimetype: Mapped[str] = mapped_column(String(128), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    uploaded_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class AuditEntryTable(Base):
    """Audit trail - append-only, only retention cleanup deletes."""

    __tablename__ = "audit_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    actor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), nullable=False)
    resource: Mapped[AuditResource] = mapped_column(Enum(AuditResource), nullable=False)
    resource_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[Severity] = mapped_column(
        Enum(Severity), nullable=False, default=Severity.LOW
    )
    category: Mapped[AuditCategory] = mapped_column(
        Enum(AuditCategory), nullable=False, default=AuditCategory.USER_ACTION
    )
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_audit_actor_created", "actor_id", "created_at"),
        Index("idx_audit_action_created", "action", "created_at"),
        Index("idx_audit_category_created", "category", "created_at"),
        Index("idx_audit_severity_created", "severity", "created_at"),
        Index("idx_audit_success_created", "success", "created_at"),
        Index("idx_audit_ip", "ip_address"),
        Index("idx_audit_created", "created_at"),
    )
