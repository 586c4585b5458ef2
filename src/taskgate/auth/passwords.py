"""Password hashing and strength rules."""

import re

import bcrypt

from taskgate.config import settings

_STRENGTH = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def hash_password(password: str) -> str:
    """Hash password with bcrypt"""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against hash"""
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash
        return False


def password_problems(password: str) -> list[str]:
    """Return human-readable reasons a password is unacceptable."""
    problems = []
    if len(password) < 6:
        problems.append("Password must be at least 6 characters long")
    if len(password.encode()) > 72:
        problems.append("Password cannot exceed 72 bytes")
    if not _STRENGTH.match(password):
        problems.append(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return problems
