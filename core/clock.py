"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time abstraction for cache TTLs, report validity windows
and usage periods.

- Every TTL comparison goes through an injected clock
- Tests advance a MockClock instead of sleeping

============================================================
DESIGN PRINCIPLES
============================================================
- UTC everywhere; local (America/Sao_Paulo) only for display
- Mockable for testing
============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
import time


SAO_PAULO_OFFSET = timezone(timedelta(hours=-3), name="America/Sao_Paulo")


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the service clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def monotonic(self) -> float:
        """Seconds from an arbitrary origin, never going backwards."""
        pass

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()

    def local_now(self) -> datetime:
        """Current time in Brazilian (Brasília) time."""
        return self.now().astimezone(SAO_PAULO_OFFSET)

    def next_day_start(self) -> datetime:
        """Start of the next UTC day (quota reset)."""
        today = self.now().replace(hour=0, minute=0, second=0, microsecond=0)
        return today + timedelta(days=1)


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Manually driven clock.

    Both wall time and monotonic time move only through
    ``advance`` / ``set_time``.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = initial_time or datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)
        self._monotonic = 1000.0

    def now(self) -> datetime:
        return self._time

    def monotonic(self) -> float:
        return self._monotonic

    def set_time(self, new_time: datetime) -> None:
        """Jump to a specific time; monotonic time follows the delta."""
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        delta = (new_time - self._time).total_seconds()
        self._time = new_time
        self._monotonic += max(delta, 0.0)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        delta = timedelta(seconds=seconds, **kwargs)
        self._time = self._time + delta
        self._monotonic += delta.total_seconds()


# ============================================================
# TIMESTAMP UTILITIES
# ============================================================

def to_iso8601(dt: datetime) -> str:
    """Convert datetime to ISO 8601 string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def time_ago(dt: datetime, now: datetime) -> str:
    """Short pt-BR relative time ("há 5 min", "há 2h", "há 3 dias")."""
    seconds = max((now - dt).total_seconds(), 0)
    if seconds < 3600:
        return f"há {int(seconds // 60)} min"
    if seconds < 86400:
        return f"há {int(seconds // 3600)}h"
    days = int(seconds // 86400)
    return f"há {days} dia" if days == 1 else f"há {days} dias"


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "SAO_PAULO_OFFSET",
    "to_iso8601",
    "time_ago",
]
