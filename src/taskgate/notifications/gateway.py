"""Notification gateways - delivery side channel for workflow events."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from taskgate.config import NotificationBackend, settings
from taskgate.models import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationGateway(ABC):
    """Abstract base class for notification delivery."""

    @abstractmethod
    async def publish(self, event: NotificationEvent) -> bool:
        """
        Deliver one event.

        Returns:
            bool: True if the event was accepted for delivery
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


class LoggingNotificationGateway(NotificationGateway):
    """Writes events to the log. Default for development."""

    async def publish(self, event: NotificationEvent) -> bool:
        logger.info(
            f"Notification {event.type.value} -> user {event.target_user_id}: {event.title}"
        )
        return True


class InMemoryNotificationGateway(NotificationGateway):
    """Keeps delivered events in a list for tests."""

    def __init__(self):
        self.events: list[NotificationEvent] = []

    async def publish(self, event: NotificationEvent) -> bool:
        self.events.append(event)
        return True

    def for_user(self, user_id) -> list[NotificationEvent]:
        return [e for e in self.events if e.target_user_id == user_id]

    def clear(self) -> None:
        self.events.clear()


class WebhookNotificationGateway(NotificationGateway):
    """
    POSTs events as JSON to a push-delivery service.

    Usage:
        gateway = WebhookNotificationGateway("https://push.internal/notify")
        await gateway.publish(event)
    """

    def __init__(self, url: str, timeout_ms: int = 2000, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_ms / 1000)

    async def publish(self, event: NotificationEvent) -> bool:
        response = await self._client.post(
            self.url,
            json=event.model_dump(mode="json"),
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()
        return True

    async def close(self) -> None:
        await self._client.aclose()


_gateway: Optional[NotificationGateway] = None


def get_notification_gateway() -> NotificationGateway:
    """Get or create the configured gateway singleton."""
    global _gateway
    if _gateway is None:
        if settings.notification_backend == NotificationBackend.WEBHOOK:
            if not settings.notification_webhook_url:
                raise ValueError("notification_webhook_url required for webhook backend")
            _gateway = WebhookNotificationGateway(
                settings.notification_webhook_url, settings.notification_timeout_ms
            )
        elif settings.notification_backend == NotificationBackend.MEMORY:
            _gateway = InMemoryNotificationGateway()
        else:
            _gateway = LoggingNotificationGateway()
        logger.info(f"Notification gateway: {settings.notification_backend.value}")
    return _gateway
