"""API dependencies."""

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.auth.context import RequestContext
from taskgate.db import base as db_base
from taskgate.engine.core import TaskGateEngine
from taskgate.engine.errors import (
    AccountInactive,
    AccountLocked,
    DuplicateEmail,
    InvalidCredentials,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    RateLimitExceededError,
    SelfDeactivation,
    SessionExpired,
    TaskGateError,
    ValidationFailed,
)
from taskgate.middleware.rate_limit import get_sensitive_limiter
from taskgate.models import User

logger = logging.getLogger("taskgate.api")


STATUS_FOR_ERROR: dict[type[TaskGateError], int] = {
    ValidationFailed: 400,
    SelfDeactivation: 400,
    InvalidCredentials: 401,
    SessionExpired: 401,
    AccountInactive: 401,
    PermissionDenied: 403,
    NotFound: 404,
    InvalidTransition: 409,
    DuplicateEmail: 409,
    AccountLocked: 423,
    RateLimitExceededError: 429,
}


def http_error(exc: TaskGateError) -> HTTPException:
    """Translate a domain error into an HTTP response."""
    detail: dict = {"code": exc.code, "message": exc.message}
    headers: Optional[dict[str, str]] = None

    if isinstance(exc, ValidationFailed):
        detail["errors"] = exc.field_errors
    elif isinstance(exc, AccountLocked):
        detail["lock_until"] = exc.lock_until.isoformat() if exc.lock_until else None
    elif isinstance(exc, RateLimitExceededError):
        detail["retry_after"] = exc.retry_after
        headers = {"Retry-After": str(exc.retry_after)}
    elif isinstance(exc, (InvalidCredentials, SessionExpired)):
        headers = {"WWW-Authenticate": "Bearer"}

    return HTTPException(
        status_code=STATUS_FOR_ERROR.get(type(exc), 400), detail=detail, headers=headers
    )


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Get database session.

    Client errors still commit: audit entries and failed-login counters
    written before the error must persist.
    """
    async with db_base.async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except HTTPException as exc:
            if exc.status_code < 500:
                await session.commit()
            else:
                await session.rollback()
            raise
        except Exception:
            await session.rollback()
            raise


def get_request_context(
    request: Request,
    user_agent: Optional[str] = Header(None, alias="User-Agent"),
) -> RequestContext:
    ip_address = request.client.host if request.client else "unknown"
    return RequestContext(ip_address=ip_address, user_agent=user_agent)


async def get_engine(
    session: AsyncSession = Depends(get_db_session),
    context: RequestContext = Depends(get_request_context),
) -> TaskGateEngine:
    return TaskGateEngine(session, context, limiter=get_sensitive_limiter())


async def current_actor(
    authorization: Optional[str] = Header(None),
    engine: TaskGateEngine = Depends(get_engine),
) -> User:
    """Resolve the bearer session token to an active user."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_CREDENTIALS", "message": "Missing bearer token"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await engine.guard.verify_session(authorization[7:])
    except TaskGateError as e:
        raise http_error(e)
