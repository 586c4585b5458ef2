"""Preference-aware, best-effort notification dispatch."""

import logging
from typing import Optional
from uuid import UUID

from taskgate.engine.directory import IdentityDirectory
from taskgate.models import NotificationEvent, NotificationSettings, NotificationType
from taskgate.notifications.gateway import NotificationGateway
from taskgate.utils.time import utc_now

logger = logging.getLogger(__name__)


# Which preference switch governs each event type
PREFERENCE_FOR: dict[NotificationType, str] = {
    NotificationType.TASK_ASSIGNED: "task_assignments",
    NotificationType.TASK_STARTED: "task_updates",
    NotificationType.TASK_COMPLETED: "task_updates",
    NotificationType.TASK_RESET: "task_updates",
    NotificationType.COMMENT_ADDED: "task_updates",
    NotificationType.ATTACHMENT_UPLOADED: "task_updates",
    NotificationType.TASK_OVERDUE: "task_updates",
    NotificationType.TASK_UPDATED: "task_updates",
    NotificationType.TASK_APPROVED: "task_approvals",
    NotificationType.TASK_REJECTED: "task_approvals",
}


def wants(preferences: NotificationSettings, event_type: NotificationType) -> bool:
    # Types not listed fall under system_notifications
    return getattr(preferences, PREFERENCE_FOR.get(event_type, "system_notifications"))


class NotificationDispatcher:
    """
    Filters events by the target's preferences and hands them to a gateway.

    Delivery failures are logged and swallowed: notifications are a side
    channel and never fail the workflow action that produced them.
    """

    def __init__(self, gateway: NotificationGateway, directory: IdentityDirectory):
        self.gateway = gateway
        self.directory = directory

    async def notify(
        self,
        event_type: NotificationType,
        target_user_id: UUID,
        source_actor_name: str,
        title: str,
        body: str,
        task_id: Optional[UUID] = None,
    ) -> bool:
        """Returns True when the event was handed to the gateway."""
        target = await self.directory.get(target_user_id)
        if not target or not target.is_active:
            logger.debug(f"Skipping {event_type.value}: user {target_user_id} unavailable")
            return False
        if not wants(target.notification_settings, event_type):
            logger.debug(f"Skipping {event_type.value}: disabled by user {target_user_id}")
            return False

        event = NotificationEvent(
            type=event_type,
            target_user_id=target_user_id,
            task_id=task_id,
            source_actor_name=source_actor_name,
            title=title,
            body=body,
            created_at=utc_now(),
        )
        try:
            return await self.gateway.publish(event)
        except Exception as e:
            logger.warning(
                f"Notification {event_type.value} to user {target_user_id} failed: {e}"
            )
            return False
