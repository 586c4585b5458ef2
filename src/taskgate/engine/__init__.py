"""TaskGate engine - services and domain errors.

The composed engine lives in taskgate.engine.core.
"""

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

__all__ = [
    "AccountInactive",
    "AccountLocked",
    "DuplicateEmail",
    "InvalidCredentials",
    "InvalidTransition",
    "NotFound",
    "PermissionDenied",
    "RateLimitExceededError",
    "SelfDeactivation",
    "SessionExpired",
    "TaskGateError",
    "ValidationFailed",
]
