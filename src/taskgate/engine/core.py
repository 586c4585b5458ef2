"""TaskGate core engine - one unit of work per request."""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.access.resolver import AccessScopeResolver
from taskgate.audit.recorder import AuditRecorder
from taskgate.auth.context import RequestContext
from taskgate.auth.guard import AccountSecurityGuard
from taskgate.engine.audit_log import AuditLogService
from taskgate.engine.directory import IdentityDirectory
from taskgate.engine.messaging import MessagingService
from taskgate.engine.users import UserService
from taskgate.engine.workflow import TaskWorkflow
from taskgate.middleware.rate_limit import SensitiveOperationLimiter
from taskgate.notifications.dispatcher import NotificationDispatcher
from taskgate.notifications.gateway import NotificationGateway, get_notification_gateway
from taskgate.utils.time import utc_now

logger = logging.getLogger(__name__)


class TaskGateEngine:
    """
    Wires the services for one session.

    Usage:
        engine = TaskGateEngine(session, RequestContext(ip_address="10.0.0.5"))
        task = await engine.workflow.create_task(manager, TaskCreate(...))
    """

    def __init__(
        self,
        session: AsyncSession,
        context: Optional[RequestContext] = None,
        gateway: Optional[NotificationGateway] = None,
        clock: Callable[[], datetime] = utc_now,
        limiter: Optional[SensitiveOperationLimiter] = None,
    ):
        self.session = session
        self.directory = IdentityDirectory(session)
        self.recorder = AuditRecorder(session, context)
        self.resolver = AccessScopeResolver(self.directory, self.recorder)
        self.dispatcher = NotificationDispatcher(
            gateway or get_notification_gateway(), self.directory
        )
        self.guard = AccountSecurityGuard(session, self.recorder, clock=clock, limiter=limiter)
        self.users = UserService(
            session, self.directory, self.resolver, self.recorder, self.dispatcher, clock
        )
        self.workflow = TaskWorkflow(
            session, self.directory, self.resolver, self.recorder, self.dispatcher, clock
        )
        self.audit = AuditLogService(
            session, self.directory, self.resolver, self.recorder, clock
        )
        self.messaging = MessagingService(
            self.directory, self.resolver, self.recorder, self.dispatcher
        )
