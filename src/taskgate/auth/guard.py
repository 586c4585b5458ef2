"""Account security: failed-login tracking, lockout and session timeout."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.audit.recorder import AuditRecorder
from taskgate.auth.passwords import hash_password, password_problems, verify_password
from taskgate.auth.tokens import decode_token, issue_token
from taskgate.config import settings
from taskgate.db.repositories import UserRepository
from taskgate.engine.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    SessionExpired,
    ValidationFailed,
)
from taskgate.middleware.rate_limit import SensitiveOperationLimiter
from taskgate.models import AuditAction, AuditCategory, AuditResource, Severity, User
from taskgate.utils.time import utc_now

logger = logging.getLogger(__name__)


class AccountSecurityGuard:
    """
    Authentication policy.

    Failed password checks increment a per-user counter with a single
    conditional UPDATE (compare-and-increment), so concurrent failures
    are never lost. Reaching the threshold locks the account; a locked
    account is rejected before any password comparison. Sessions expire
    a fixed time after the last successful login.
    """

    def __init__(
        self,
        session: AsyncSession,
        recorder: AuditRecorder,
        clock: Callable[[], datetime] = utc_now,
        limiter: Optional[SensitiveOperationLimiter] = None,
        max_attempts: Optional[int] = None,
        lockout_seconds: Optional[int] = None,
        session_timeout_seconds: Optional[int] = None,
    ):
        self.users = UserRepository(session)
        self.recorder = recorder
        self.clock = clock
        self.limiter = limiter
        self.max_attempts = max_attempts or settings.max_login_attempts
        self.lockout = timedelta(seconds=lockout_seconds or settings.lockout_duration_seconds)
        self.session_timeout = timedelta(
            seconds=session_timeout_seconds or settings.session_timeout_seconds
        )

    async def authenticate(
        self, email: str, password: str, fcm_token: Optional[str] = None
    ) -> tuple[User, str]:
        """Verify credentials and issue a session token."""
        now = self.clock()
        user = await self.users.get_by_email(email)

        if not user:
            await self._record_failure(None, email, "user_not_found")
            raise InvalidCredentials()

        # Checked before the password so a locked account reveals nothing
        if user.is_locked(now):
            await self._record_failure(
                user.id,
                email,
                "account_locked",
                severity=Severity.HIGH,
                extra={"lock_until": user.lock_until},
            )
            raise AccountLocked(user.lock_until)

        if not user.is_active:
            await self._record_failure(user.id, email, "account_inactive")
            raise AccountInactive()

        password_hash = await self.users.get_password_hash(user.id)
        if not password_hash or not verify_password(password, password_hash):
            attempts, locked = await self._register_failed_attempt(user, now)
            await self._record_failure(
                user.id,
                email,
                "invalid_password",
                severity=Severity.HIGH if locked else Severity.MEDIUM,
                extra={"attempts": attempts, "locked": locked},
            )
            raise InvalidCredentials()

        user = await self.users.record_successful_login(user.id, now, fcm_token)
        await self.recorder.record(
            action=AuditAction.LOGIN,
            resource=AuditResource.AUTH,
            actor_id=user.id,
            resource_id=user.id,
            details={"email": user.email, "role": user.role.value},
            category=AuditCategory.SECURITY,
        )
        return user, issue_token(user.id, now)

    async def verify_session(self, token: str) -> User:
        """Resolve a session token to an active user, enforcing the timeout."""
        user_id = decode_token(token)
        user = await self.users.get(user_id)
        if not user:
            raise InvalidCredentials("User no longer exists")
        if not user.is_active:
            raise AccountInactive()

        now = self.clock()
        if user.is_locked(now):
            raise AccountLocked(user.lock_until)

        if user.last_login is None or now - user.last_login > self.session_timeout:
            await self.recorder.record(
                action=AuditAction.LOGOUT,
                resource=AuditResource.AUTH,
                actor_id=user.id,
                resource_id=user.id,
                details={"reason": "session_timeout", "last_login": user.last_login},
                category=AuditCategory.SECURITY,
            )
            raise SessionExpired()
        return user

    async def logout(self, actor: User) -> None:
        await self.users.clear_fcm_token(actor.id)
        await self.recorder.record(
            action=AuditAction.LOGOUT,
            resource=AuditResource.AUTH,
            actor_id=actor.id,
            resource_id=actor.id,
            details={"reason": "user_logout"},
            category=AuditCategory.SECURITY,
        )

    async def update_fcm_token(self, actor: User, fcm_token: str) -> None:
        if not fcm_token or not fcm_token.strip():
            raise ValidationFailed({"fcm_token": "FCM token is required"})
        await self.users.update_fields(actor.id, {"fcm_token": fcm_token.strip()}, self.clock())

    async def change_password(self, actor: User, current_password: str, new_password: str) -> None:
        """Rate limited per (caller IP, actor)."""
        if self.limiter:
            await self.limiter.check(self.recorder.context.ip_address, actor.id)

        password_hash = await self.users.get_password_hash(actor.id)
        if not password_hash or not verify_password(current_password, password_hash):
            await self.recorder.record(
                action=AuditAction.PASSWORD_CHANGE,
                resource=AuditResource.AUTH,
                actor_id=actor.id,
                resource_id=actor.id,
                success=False,
                error_message="Current password is incorrect",
                severity=Severity.MEDIUM,
                category=AuditCategory.SECURITY,
            )
            raise ValidationFailed({"current_password": "Current password is incorrect"})

        problems = password_problems(new_password)
        if problems:
            raise ValidationFailed({"new_password": "; ".join(problems)})

        await self.users.set_password_hash(actor.id, hash_password(new_password), self.clock())
        await self.recorder.record(
            action=AuditAction.PASSWORD_CHANGE,
            resource=AuditResource.AUTH,
            actor_id=actor.id,
            resource_id=actor.id,
            severity=Severity.MEDIUM,
            category=AuditCategory.SECURITY,
        )

    async def _register_failed_attempt(self, user: User, now: datetime) -> tuple[int, bool]:
        """Count one failure; lock when the threshold is reached. Returns (attempts, locked)."""
        attempts: Optional[int] = None
        if user.lock_until is not None and user.lock_until <= now:
            # Expired lock: this failure starts a fresh window
            if await self.users.restart_expired_lock(user.id, now):
                attempts = 1

        if attempts is None:
            attempts = await self.users.increment_login_attempts(user.id)
            if attempts is None:
                # A concurrent failure locked the account first
                return self.max_attempts, True

        locked = False
        if attempts >= self.max_attempts:
            locked = await self.users.lock_account(user.id, self.max_attempts, now + self.lockout)
            if locked:
                logger.warning(
                    f"Account {user.id} locked after {attempts} failed login attempts"
                )
        return attempts, locked

    async def _record_failure(
        self,
        user_id: Optional[UUID],
        email: str,
        reason: str,
        severity: Severity = Severity.MEDIUM,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.recorder.record(
            action=AuditAction.FAILED_LOGIN,
            resource=AuditResource.AUTH,
            actor_id=user_id,
            resource_id=user_id,
            details={"email": email, "reason": reason, **(extra or {})},
            success=False,
            error_message=reason,
            severity=severity,
            category=AuditCategory.SECURITY,
        )
