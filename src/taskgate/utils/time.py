"""Time utilities."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from databases without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MonotonicClock:
    """
    Wall clock that never returns the same or an earlier instant twice.

    Audit entries are stamped from this so trailing-window queries see
    a strictly increasing order per process even when the system clock
    steps backwards or two writes land in the same microsecond.
    """

    def __init__(self, source=utc_now):
        self._source = source
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            current = self._source()
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


audit_clock = MonotonicClock()
