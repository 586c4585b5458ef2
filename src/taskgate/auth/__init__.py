"""TaskGate authentication module."""

from taskgate.auth.context import RequestContext
from taskgate.auth.passwords import hash_password, password_problems, verify_password

__all__ = [
    "RequestContext",
    "hash_password",
    "password_problems",
    "verify_password",
]
