"""Session token issue and verification."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from taskgate.config import settings
from taskgate.engine.errors import InvalidCredentials


def issue_token(user_id: UUID, issued_at: datetime) -> str:
    """Sign an HS256 session token for a user."""
    payload = {
        "sub": str(user_id),
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=settings.jwt_expire_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> UUID:
    """Return the user id a token was issued for."""
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except JWTError as exc:
        raise InvalidCredentials(f"Invalid token: {exc}") from exc

    subject = payload.get("sub")
    if not subject:
        raise InvalidCredentials("Token has no subject")
    try:
        return UUID(subject)
    except ValueError as exc:
        raise InvalidCredentials("Token subject is not a user id") from exc
