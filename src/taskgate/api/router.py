"""REST API router."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from taskgate import __version__
from taskgate.api.deps import current_actor, get_engine, http_error
from taskgate.api.schemas import (
    BroadcastResponse,
    ChangePasswordRequest,
    CleanupResponse,
    DeactivateResponse,
    FcmTokenRequest,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    OkResponse,
    ReminderResponse,
    SendResponse,
    UserResponse,
)
from taskgate.audit.queries import AuditFilters
from taskgate.config import settings
from taskgate.engine.audit_log import ActorReport, AuditSummary, SecurityReport
from taskgate.engine.core import TaskGateEngine
from taskgate.engine.errors import TaskGateError
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditEntry,
    AuditResource,
    NotificationSettings,
    Page,
    Role,
    Severity,
    Task,
    TaskAttachment,
    TaskComment,
    TaskPriority,
    TaskStatus,
    User,
)
from taskgate.models.commands import (
    AttachmentCreate,
    Broadcast,
    CommentCreate,
    NotificationSend,
    TaskCreate,
    TaskFilters,
    TaskUpdate,
    TransitionRequest,
    UserCreate,
    UserFilters,
    UserUpdate,
)

router = APIRouter(prefix="/v1")


def _user_page(page: Page[User]) -> Page[UserResponse]:
    return Page[UserResponse](
        items=[UserResponse.model_validate(u) for u in page.items],
        total=page.total,
        page=page.page,
        limit=page.limit,
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


# ============================================================================
# Auth Endpoints
# ============================================================================


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    engine: TaskGateEngine = Depends(get_engine),
):
    """Exchange credentials for a session token."""
    try:
        user, token = await engine.guard.authenticate(
            request.email, request.password, request.fcm_token
        )
    except TaskGateError as e:
        raise http_error(e)
    return LoginResponse(token=token, user=UserResponse.model_validate(user))


@router.post("/auth/logout", response_model=OkResponse)
async def logout(
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    await engine.guard.logout(actor)
    return OkResponse(message="Logged out")


@router.get("/auth/me", response_model=UserResponse)
async def me(actor: User = Depends(current_actor)):
    return UserResponse.model_validate(actor)


@router.put("/auth/change-password", response_model=OkResponse)
async def change_password(
    request: ChangePasswordRequest,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Change own password. Rate limited per caller IP and user."""
    try:
        await engine.guard.change_password(actor, request.current_password, request.new_password)
    except TaskGateError as e:
        raise http_error(e)
    return OkResponse(message="Password changed")


@router.put("/auth/fcm-token", response_model=OkResponse)
async def update_fcm_token(
    request: FcmTokenRequest,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        await engine.guard.update_fcm_token(actor, request.fcm_token)
    except TaskGateError as e:
        raise http_error(e)
    return OkResponse(message="FCM token updated")


# ============================================================================
# User Endpoints
# ============================================================================


@router.get("/users", response_model=Page[UserResponse])
async def list_users(
    role: Optional[Role] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_list_limit, ge=1, le=settings.max_list_limit),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Users within the caller's scope."""
    result = await engine.users.list_users(
        actor, UserFilters(role=role, is_active=is_active, search=search), page, limit
    )
    return _user_page(result)


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: UserCreate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        user = await engine.users.create_user(actor, request)
    except TaskGateError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        user = await engine.users.get_user(actor, user_id)
    except TaskGateError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: UUID,
    request: UserUpdate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        user = await engine.users.update_user(actor, user_id, request)
    except TaskGateError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}", response_model=DeactivateResponse)
async def deactivate_user(
    user_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Soft delete. Open tasks go back to their assigners."""
    try:
        reassigned = await engine.users.deactivate_user(actor, user_id)
    except TaskGateError as e:
        raise http_error(e)
    return DeactivateResponse(reassigned_tasks=reassigned)


@router.put("/users/{user_id}/activate", response_model=UserResponse)
async def activate_user(
    user_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        user = await engine.users.set_active(actor, user_id, True)
    except TaskGateError as e:
        raise http_error(e)
    return UserResponse.model_validate(user)


@router.get("/users/{user_id}/tasks", response_model=Page[Task])
async def list_user_tasks(
    user_id: UUID,
    status: Optional[TaskStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_list_limit, ge=1, le=settings.max_list_limit),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.workflow.user_tasks(
            actor, user_id, TaskFilters(status=status), page, limit
        )
    except TaskGateError as e:
        raise http_error(e)


# ============================================================================
# Notifications
# ============================================================================


@router.get("/notifications/settings", response_model=NotificationSettings)
async def get_notification_settings(actor: User = Depends(current_actor)):
    return actor.notification_settings


@router.put("/notifications/settings", response_model=NotificationSettings)
async def update_notification_settings(
    request: NotificationSettings,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    return await engine.users.update_notification_settings(actor, request)



@router.post("/notifications/send", response_model=SendResponse)
async def send_notification(
    request: NotificationSend,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Notify one user directly. SuperAdmin, or a Manager within their team."""
    try:
        delivered = await engine.messaging.send(actor, request)
    except TaskGateError as e:
        raise http_error(e)
    return SendResponse(delivered=delivered)


@router.post("/notifications/broadcast", response_model=BroadcastResponse)
async def broadcast_notification(
    request: Broadcast,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        report = await engine.messaging.broadcast(actor, request)
    except TaskGateError as e:
        raise http_error(e)
    return BroadcastResponse(total_sent=report.total_sent, total_failed=report.total_failed)


@router.post("/notifications/reminders/overdue", response_model=ReminderResponse)
async def send_overdue_reminders(
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        result = await engine.workflow.remind_overdue(actor)
    except TaskGateError as e:
        raise http_error(e)
    return ReminderResponse(total_tasks=result.total_tasks, total_sent=result.total_sent)


# ============================================================================
# Task Endpoints
# ============================================================================


@router.get("/tasks", response_model=Page[Task])
async def list_tasks(
    status: Optional[TaskStatus] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    assigned_to: Optional[UUID] = Query(None),
    assigned_by: Optional[UUID] = Query(None),
    search: Optional[str] = Query(None),
    overdue: bool = Query(False),
    include_archived: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_list_limit, ge=1, le=settings.max_list_limit),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Tasks within the caller's scope, newest first."""
    filters = TaskFilters(
        status=status,
        priority=priority,
        assigned_to=assigned_to,
        assigned_by=assigned_by,
        search=search,
        overdue=overdue,
        include_archived=include_archived,
    )
    return await engine.workflow.list_tasks(actor, filters, page, limit)


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(
    request: TaskCreate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Create and assign a task."""
    try:
        return await engine.workflow.create_task(actor, request)
    except TaskGateError as e:
        raise http_error(e)


@router.get("/tasks/{task_id}", response_model=Task)
async def get_task(
    task_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.workflow.get_task(actor, task_id)
    except TaskGateError as e:
        raise http_error(e)


@router.put("/tasks/{task_id}", response_model=Task)
async def update_task(
    task_id: UUID,
    request: TaskUpdate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.workflow.update_task(actor, task_id, request)
    except TaskGateError as e:
        raise http_error(e)


@router.delete("/tasks/{task_id}", response_model=Task)
async def archive_task(
    task_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Archive (soft delete) a task."""
    try:
        return await engine.workflow.archive_task(actor, task_id)
    except TaskGateError as e:
        raise http_error(e)


@router.put("/tasks/{task_id}/status", response_model=Task)
async def transition_task(
    task_id: UUID,
    request: TransitionRequest,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Move a task through the status state machine."""
    try:
        return await engine.workflow.transition_task(actor, task_id, request)
    except TaskGateError as e:
        raise http_error(e)


@router.post("/tasks/{task_id}/comments", response_model=TaskComment, status_code=201)
async def add_comment(
    task_id: UUID,
    request: CommentCreate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.workflow.add_comment(actor, task_id, request)
    except TaskGateError as e:
        raise http_error(e)


@router.post("/tasks/{task_id}/attachments", response_model=TaskAttachment, status_code=201)
async def add_attachment(
    task_id: UUID,
    request: AttachmentCreate,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Register metadata for a file stored externally."""
    try:
        return await engine.workflow.add_attachment(actor, task_id, request)
    except TaskGateError as e:
        raise http_error(e)


# ============================================================================
# Audit Endpoints (SuperAdmin)
# ============================================================================


@router.get("/audit/logs", response_model=Page[AuditEntry])
async def query_audit_logs(
    action: Optional[AuditAction] = Query(None),
    resource: Optional[AuditResource] = Query(None),
    actor_id: Optional[UUID] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    success: Optional[bool] = Query(None),
    severity: Optional[Severity] = Query(None),
    category: Optional[AuditCategory] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    filters = AuditFilters(
        action=action,
        resource=resource,
        actor_id=actor_id,
        start=start,
        end=end,
        success=success,
        severity=severity,
        category=category,
    )
    try:
        return await engine.audit.query(actor, filters, page, limit)
    except TaskGateError as e:
        raise http_error(e)


@router.get("/audit/logs/{entry_id}", response_model=AuditEntry)
async def get_audit_entry(
    entry_id: UUID,
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.audit.get_entry(actor, entry_id)
    except TaskGateError as e:
        raise http_error(e)


@router.get("/audit/security", response_model=SecurityReport)
async def security_report(
    hours: int = Query(24),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.audit.security_report(actor, hours, page, limit)
    except TaskGateError as e:
        raise http_error(e)


@router.get("/audit/users/{user_id}", response_model=ActorReport)
async def actor_report(
    user_id: UUID,
    days: int = Query(30),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.audit.actor_report(actor, user_id, days, page, limit)
    except TaskGateError as e:
        raise http_error(e)


@router.get("/audit/summary", response_model=AuditSummary)
async def audit_summary(
    period: str = Query("7d"),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    try:
        return await engine.audit.summary(actor, period)
    except TaskGateError as e:
        raise http_error(e)


@router.delete("/audit/logs/cleanup", response_model=CleanupResponse)
async def audit_cleanup(
    days: int = Query(settings.audit_retention_days),
    actor: User = Depends(current_actor),
    engine: TaskGateEngine = Depends(get_engine),
):
    """Delete old low/medium entries. High and critical are kept."""
    try:
        deleted = await engine.audit.cleanup(actor, days)
    except TaskGateError as e:
        raise http_error(e)
    return CleanupResponse(deleted_count=deleted, retention_days=days)
