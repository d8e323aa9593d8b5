"""
Injected time for the order kernel.

Nothing in the kernel calls ``datetime.now()`` directly: order numbers,
ledger timestamps, report periods, the producer registry cache and the
webhook signature window all read the Clock they were given.

The helpers at the bottom turn calendar dates into the half-open UTC
windows used by ledger and report queries.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware UTC now."""

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Fixed clock for tests, 2026-01-15 12:00 UTC unless told otherwise.

    Time only moves through ``advance`` and ``set_time``.
    """

    DEFAULT_START = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __init__(self, start: datetime | None = None):
        self._now = start or self.DEFAULT_START

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 1) -> datetime:
        self._now += timedelta(seconds=seconds)
        return self._now

    def set_time(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware datetime")
        self._now = moment


def day_window(first_day: date, last_day: date) -> tuple[datetime, datetime]:
    """``[first_day 00:00, day after last_day 00:00)`` in UTC."""
    start = datetime.combine(first_day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=(last_day - first_day).days + 1)


def as_naive_utc(moment: datetime) -> datetime:
    """
    Convert to UTC and drop the zone.

    SQLite hands stored timestamps back without tzinfo; hashing the naive
    UTC form gives the same text on every dialect.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment
