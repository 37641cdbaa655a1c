"""Injectable time source.

Services never call ``datetime.now()`` or ``date.today()`` directly; they
receive a :class:`Clock` so that expiry windows and audit timestamps are
deterministic under test.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """Abstract clock interface."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC ``datetime``."""

    def today(self) -> date:
        """Current calendar date (UTC)."""
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant until advanced explicitly."""

    def __init__(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, *, days: int = 0, seconds: int = 0) -> None:
        self._now = self._now + timedelta(days=days, seconds=seconds)
