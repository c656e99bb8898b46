"""
Injectable time source.

Nothing in the kernel or the batch runner reads the wall clock directly.
The reward day, the weekday checked by the business-day gate, the run
deadline and every audit timestamp all come from the Clock handed to the
service.  SystemClock is the only place that touches real time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant; implementations return aware datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def now_utc(self) -> datetime:
        """``now()`` normalised to UTC, the form persisted in audit columns."""
        return self.now().astimezone(timezone.utc)


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    Holds one instant until moved with ``advance()`` or ``set_time()``.
    Naive datetimes are rejected with ValueError because the reward day
    would silently depend on the host time zone.
    """

    def __init__(self, start: datetime | None = None):
        start = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._require_aware(start)
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._require_aware(instant)
        self._current = instant

    def advance(self, seconds: int = 0, *, days: int = 0) -> datetime:
        """Move forward and return the new instant."""
        self._current += timedelta(days=days, seconds=seconds)
        return self._current

    @staticmethod
    def _require_aware(value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
