"""Person-to-person notifications - direct sends and SuperAdmin broadcasts."""

import logging
from typing import NamedTuple

from taskgate.access.policy import Action
from taskgate.access.resolver import AccessScopeResolver
from taskgate.audit.recorder import AuditRecorder
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.errors import ValidationFailed
from taskgate.models import (
    AuditAction,
    AuditCategory,
    AuditResource,
    BroadcastTarget,
    Severity,
    User,
)
from taskgate.models.commands import Broadcast, NotificationSend
from taskgate.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


class DeliveryReport(NamedTuple):
    total_sent: int
    total_failed: int


class MessagingService:
    """
    Notifications written by people rather than produced by the workflow.

    Delivery goes through the same preference-aware dispatcher, so a
    recipient who switched a category off is counted as failed.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        resolver: AccessScopeResolver,
        recorder: AuditRecorder,
        dispatcher: NotificationDispatcher,
    ):
        self.directory = directory
        self.resolver = resolver
        self.recorder = recorder
        self.dispatcher = dispatcher

    async def send(self, actor: User, data: NotificationSend) -> bool:
        """
        Notify one user. Managers reach themselves and their team.

        Raises:
            NotFound: target does not exist
            PermissionDenied: target outside the actor's scope
        """
        target = await self.resolver.authorize_user(actor, Action.NOTIFICATION_SEND, data.user_id)

        delivered = await self.dispatcher.notify(
            data.type,
            target_user_id=target.id,
            source_actor_name=actor.name,
            title=data.title,
            body=data.body,
        )
        await self.recorder.record(
            action=AuditAction.NOTIFICATION_SENT,
            resource=AuditResource.NOTIFICATION,
            actor_id=actor.id,
            resource_id=target.id,
            details={
                "type": data.type.value,
                "title": data.title,
                "delivered": delivered,
            },
            category=AuditCategory.SYSTEM,
        )
        return delivered

    async def broadcast(self, actor: User, data: Broadcast) -> DeliveryReport:
        """Notify every active user matched by the broadcast target."""
        await self.resolver.require(actor, Action.NOTIFICATION_BROADCAST)

        if data.target_type == BroadcastTarget.USERS:
            if not data.targets:
                raise ValidationFailed({"targets": "Target users are required"})
            recipients = list(dict.fromkeys(data.targets))
        elif data.target_type == BroadcastTarget.ROLE:
            if data.role is None:
                raise ValidationFailed({"role": "Target role is required"})
            recipients = await self.directory.active_ids(data.role)
        else:
            recipients = await self.directory.active_ids()

        sent = 0
        for user_id in recipients:
            if await self.dispatcher.notify(
                data.type,
                target_user_id=user_id,
                source_actor_name=actor.name,
                title=data.title,
                body=data.body,
            ):
                sent += 1
        report = DeliveryReport(total_sent=sent, total_failed=len(recipients) - sent)

        await self.recorder.record(
            action=AuditAction.NOTIFICATION_SENT,
            resource=AuditResource.NOTIFICATION,
            actor_id=actor.id,
            details={
                "type": data.type.value,
                "title": data.title,
                "target_type": data.target_type.value,
                "role": data.role.value if data.role else None,
                "total_sent": report.total_sent,
                "total_failed": report.total_failed,
            },
            severity=Severity.MEDIUM,
            category=AuditCategory.SYSTEM,
        )
        logger.info(
            f"Broadcast by {actor.id} to {data.target_type.value}: "
            f"{report.total_sent} sent, {report.total_failed} failed"
        )
        return report
