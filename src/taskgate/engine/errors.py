"""TaskGate engine errors."""

from typing import Optional


class TaskGateError(Exception):
    """Base error for TaskGate operations."""

    def __init__(self, message: str, code: str = "TASKGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationFailed(TaskGateError):
    """Malformed or out-of-range input, with per-field detail."""

    def __init__(self, field_errors: dict[str, str], message: str = "Validation failed"):
        super().__init__(message, "VALIDATION_FAILED")
        self.field_errors = field_errors


class PermissionDenied(TaskGateError):
    """Actor is outside the scope required for the action."""

    def __init__(self, action: str, message: Optional[str] = None):
        super().__init__(message or f"Not permitted: {action}", "PERMISSION_DENIED")
        self.action = action


class NotFound(TaskGateError):
    """Resource does not exist or is not visible to the actor."""

    def __init__(self, resource: str, resource_id: str = ""):
        super().__init__(f"{resource.capitalize()} not found: {resource_id}", "NOT_FOUND")
        self.resource = resource
        self.resource_id = resource_id


class InvalidTransition(TaskGateError):
    """Invalid task state transition."""

    def __init__(self, current_status: str, requested_status: str):
        super().__init__(
            f"Invalid transition from {current_status} to {requested_status}",
            "INVALID_TRANSITION",
        )
        self.current_status = current_status
        self.requested_status = requested_status


class DuplicateEmail(TaskGateError):
    """Email address already registered."""

    def __init__(self, email: str):
        super().__init__(f"User already exists with email: {email}", "DUPLICATE_EMAIL")
        self.email = email


class InvalidCredentials(TaskGateError):
    """Unknown email, wrong password or unusable session token."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message, "INVALID_CREDENTIALS")


class AccountLocked(TaskGateError):
    """Account is inside a lockout window."""

    def __init__(self, lock_until):
        super().__init__(
            "Account is temporarily locked due to too many failed login attempts",
            "ACCOUNT_LOCKED",
        )
        self.lock_until = lock_until


class AccountInactive(TaskGateError):
    """Account has been deactivated."""

    def __init__(self):
        super().__init__("Account is deactivated", "ACCOUNT_INACTIVE")


class SessionExpired(TaskGateError):
    """Absolute session timeout since last login has elapsed."""

    def __init__(self):
        super().__init__("Session expired due to inactivity", "SESSION_EXPIRED")


class SelfDeactivation(TaskGateError):
    """An actor tried to deactivate their own account."""

    def __init__(self):
        super().__init__("You cannot deactivate your own account", "SELF_DEACTIVATION")


class RateLimitExceededError(TaskGateError):
    """Rate limit exceeded."""

    def __init__(self, limit: int, window: str, retry_after: int):
        super().__init__(
            f"Rate limit exceeded ({limit}/{window})",
            "RATE_LIMIT_EXCEEDED",
        )
        self.limit = limit
        self.window = window
        self.retry_after = retry_after
