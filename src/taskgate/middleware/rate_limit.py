"""Rate limiting for sensitive TaskGate operations."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple
from uuid import UUID

from taskgate.config import settings
from taskgate.engine.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiterBackend(ABC):
    """Abstract base class for rate limiter backends."""

    @abstractmethod
    async def check_rate_limit(
        self, key: str, max_calls: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        """
        Check if request should be rate limited.

        Args:
            key: Rate limit key
            max_calls: Maximum calls allowed in window
            window_seconds: Window size in seconds

        Returns:
            Tuple of (allowed: bool, remaining: int, reset_time: int)
            - allowed: Whether request should proceed
            - remaining: Calls remaining in current window
            - reset_time: Unix timestamp when window resets
        """
        pass

    @abstractmethod
    async def reset(self, key: str):
        """Reset rate limit for a specific key."""
        pass


class InMemoryRateLimiter(RateLimiterBackend):
    """
    In-memory rate limiter using sliding window.

    Good for development and single-instance deployments.
    Not suitable for multi-instance production (no shared state).
    """

    SWEEP_INTERVAL_SECONDS = 60

    def __init__(self, clock: Callable[[], float] = time.time):
        self._windows: Dict[str, list[float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._max_window = 0
        self._last_sweep = clock()

    async def check_rate_limit(
        self, key: str, max_calls: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        """Check rate limit using sliding window."""
        async with self._lock:
            now = self._clock()
            window_start = now - window_seconds
            self._max_window = max(self._max_window, window_seconds)

            # Clean old entries
            window = [ts for ts in self._windows.get(key, ()) if ts > window_start]

            current_calls = len(window)
            allowed = current_calls < max_calls
            remaining = max(0, max_calls - current_calls - (1 if allowed else 0))

            # Reset when the oldest entry leaves the window
            if window:
                reset_time = int(window[0] + window_seconds)
            else:
                reset_time = int(now + window_seconds)

            if allowed:
                window.append(now)

            # Keys whose window has drained are dropped
            if window:
                self._windows[key] = window
            else:
                self._windows.pop(key, None)
            self._sweep(now)

            return allowed, remaining, reset_time

    def _sweep(self, now: float) -> None:
        """Drop every key idle for longer than the largest window seen."""
        if now - self._last_sweep < self.SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        horizon = now - self._max_window
        for stale in [k for k, ts in self._windows.items() if not ts or ts[-1] <= horizon]:
            del self._windows[stale]

    def __len__(self) -> int:
        return len(self._windows)

    async def reset(self, key: str):
        """Reset rate limit for key."""
        async with self._lock:
            self._windows.pop(key, None)


class RedisRateLimiter(RateLimiterBackend):
    """
    Redis-backed rate limiter using sorted sets.

    Suitable for multi-instance deployments: every instance sees the same
    window for a key.
    """

    def __init__(self, redis_url: str):
        import redis.asyncio as aioredis

        self.redis = aioredis.from_url(redis_url, decode_responses=True)
        logger.info(f"Redis rate limiter initialized: {redis_url}")

    async def check_rate_limit(
        self, key: str, max_calls: int, window_seconds: int
    ) -> Tuple[bool, int, int]:
        """Check rate limit using Redis sorted set."""
        now = time.time()
        window_start = now - window_seconds
        redis_key = f"ratelimit:{key}"

        pipe = self.redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, window_start)
        pipe.zcard(redis_key)
        pipe.zadd(redis_key, {str(now): now})
        pipe.expire(redis_key, window_seconds)

        results = await pipe.execute()
        current_calls = results[1]  # zcard

        allowed = current_calls < max_calls
        remaining = max(0, max_calls - current_calls - (1 if allowed else 0))

        oldest_entries = await self.redis.zrange(redis_key, 0, 0, withscores=True)
        if oldest_entries:
            reset_time = int(oldest_entries[0][1] + window_seconds)
        else:
            reset_time = int(now + window_seconds)

        # Rejected calls do not occupy the window
        if not allowed:
            await self.redis.zrem(redis_key, str(now))

        return allowed, remaining, reset_time

    async def reset(self, key: str):
        """Reset rate limit for key."""
        await self.redis.delete(f"ratelimit:{key}")


def build_backend() -> RateLimiterBackend:
    """Backend selected by configuration."""
    if settings.rate_limit_backend == "redis":
        if not settings.redis_url:
            raise ValueError("redis_url required for redis backend")
        return RedisRateLimiter(settings.redis_url)
    logger.info("Using in-memory rate limiter (single instance only)")
    return InMemoryRateLimiter()


class SensitiveOperationLimiter:
    """
    Sliding-window limiter for sensitive operations such as password change.

    Keyed by (caller IP, actor id). Usage:
        limiter = SensitiveOperationLimiter()
        await limiter.check("203.0.113.7", user.id)
    """

    def __init__(
        self,
        backend: Optional[RateLimiterBackend] = None,
        calls: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.backend = backend or build_backend()
        self.calls = calls or settings.sensitive_operation_calls
        self.window_seconds = window_seconds or settings.sensitive_operation_window_seconds

    @staticmethod
    def key(ip_address: str, actor_id: UUID) -> str:
        return f"sensitive:{ip_address}:{actor_id}"

    async def check(self, ip_address: str, actor_id: UUID) -> int:
        """
        Count one call against the window.

        Returns:
            Calls remaining in the current window

        Raises:
            RateLimitExceededError: when the window is exhausted
        """
        if not settings.rate_limit_active:
            return self.calls

        key = self.key(ip_address, actor_id)
        allowed, remaining, reset_time = await self.backend.check_rate_limit(
            key, self.calls, self.window_seconds
        )
        if not allowed:
            retry_after = max(0, reset_time - int(time.time()))
            logger.warning(
                f"Rate limit exceeded for {key} (retry after {retry_after}s)"
            )
            raise RateLimitExceededError(self.calls, f"{self.window_seconds}s", retry_after)
        return remaining

    async def reset(self, ip_address: str, actor_id: UUID) -> None:
        await self.backend.reset(self.key(ip_address, actor_id))


# Singleton instance
_sensitive_limiter: Optional[SensitiveOperationLimiter] = None


def get_sensitive_limiter() -> SensitiveOperationLimiter:
    """Get or create the sensitive-operation limiter singleton."""
    global _sensitive_limiter
    if _sensitive_limiter is None:
        _sensitive_limiter = SensitiveOperationLimiter()
    return _sensitive_limiter
