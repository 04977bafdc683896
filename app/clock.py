# app/clock.py
"""
Injectable time source.

Services take a ``Clock`` instead of calling ``date.today()`` so sweeps and
cadence arithmetic can be driven deterministically from tests.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as a naive UTC datetime (what SQLite stores)."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock; ``today()`` is the calendar date in the business timezone."""

    def __init__(self, tz_name: Optional[str] = None):
        self.tz = ZoneInfo(tz_name) if tz_name else None

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def today(self) -> date:
        if self.tz is None:
            return self.now().date()
        return datetime.now(self.tz).date()


class FixedClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, fixed: Optional[datetime] = None):
        self._now = fixed or datetime(2025, 1, 15, 9, 0, 0)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def set_date(self, value: date) -> None:
        self._now = datetime.combine(value, self._now.time())

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
