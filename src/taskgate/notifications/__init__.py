"""Workflow notifications."""

from taskgate.notifications.dispatcher import NotificationDispatcher
from taskgate.notifications.gateway import (
    InMemoryNotificationGateway,
    LoggingNotificationGateway,
    NotificationGateway,
    WebhookNotificationGateway,
    get_notification_gateway,
)

__all__ = [
    "InMemoryNotificationGateway",
    "LoggingNotificationGateway",
    "NotificationDispatcher",
    "NotificationGateway",
    "WebhookNotificationGateway",
    "get_notification_gateway",
]
