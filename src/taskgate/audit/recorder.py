"""Failure-isolated audit trail writer."""

import logging
from typing import Any, Optional
from uuid import UUID

from pydantic_core import to_jsonable_python
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.context import RequestContext
from taskgate.db.repositories import AuditRepository
from taskgate.models import AuditAction, AuditCategory, AuditEntry, AuditResource, Severity
from taskgate.utils.time import MonotonicClock, audit_clock

logger = logging.getLogger(__name__)


class AuditRecorder:
    """
    Appends one audit entry per state-changing action.

    Every write runs inside its own SAVEPOINT. If the write fails the
    savepoint is rolled back, the error is logged, and the caller's
    unit of work carries on untouched. record() never raises.
    """

    def __init__(
        self,
        session: AsyncSession,
        context: Optional[RequestContext] = None,
        clock: MonotonicClock = audit_clock,
    ):
        self.session = session
        self.context = context or RequestContext()
        self.clock = clock
        self.entries = AuditRepository(session)

    async def record(
        self,
        action: AuditAction,
        resource: AuditResource,
        actor_id: Optional[UUID] = None,
        resource_id: Optional[UUID] = None,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        severity: Severity = Severity.LOW,
        category: AuditCategory = AuditCategory.USER_ACTION,
    ) -> Optional[AuditEntry]:
        """Write an entry. Returns None when the write failed."""
        try:
            async with self.session.begin_nested():  # SAVEPOINT
                return await self.entries.create(
                    action=action,
                    resource=resource,
                    created_at=self.clock.now(),
                    ip_address=self.context.ip_address,
                    user_agent=self.context.user_agent,
                    actor_id=actor_id,
                    resource_id=resource_id,
                    details=to_jsonable_python(details or {}),
                    success=success,
                    error_message=error_message,
                    severity=severity,
                    category=category,
                )
        except Exception as e:
            logger.error(
                f"Failed to write audit entry {action.value} for {resource.value} "
                f"{resource_id}: {e}",
                exc_info=True,
            )
            return None
