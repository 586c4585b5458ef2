"""Middleware components for the TaskGate API."""

from taskgate.middleware.rate_limit import (
    InMemoryRateLimiter,
    RateLimiterBackend,
    RedisRateLimiter,
    SensitiveOperationLimiter,
    get_sensitive_limiter,
)

__all__ = [
    "InMemoryRateLimiter",
    "RateLimiterBackend",
    "RedisRateLimiter",
    "SensitiveOperationLimiter",
    "get_sensitive_limiter",
]
