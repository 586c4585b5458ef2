"""Notification event model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from taskgate.models.enums import NotificationType


class NotificationEvent(BaseModel):
    """Workflow event handed to a NotificationGateway."""

    type: NotificationType
    target_user_id: UUID
    task_id: Optional[UUID] = None
    source_actor_name: str
    title: str
    body: str
    created_at: datetime
