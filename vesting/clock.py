"""
clock.py - Clock implementations

SystemClock reads wall-clock time; ManualClock is a logical clock for
simulations and tests. Both return naive datetimes in UTC.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall-clock time, as a naive UTC datetime."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class ManualClock:
    """
    Logical clock that only moves when told to.

    Time can only move forward, never backward.

    Example:
        clock = ManualClock(datetime(2025, 1, 1))
        clock.advance(timedelta(days=30))
        clock.now()  # datetime(2025, 1, 31)
    """

    def __init__(self, start: datetime):
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta) -> datetime:
        """
        Move the clock forward by delta.

        Raises:
            ValueError: If delta is negative
        """
        if delta < timedelta(0):
            raise ValueError(f"Cannot move time backwards by {delta}")
        self._now = self._now + delta
        return self._now

    def set(self, new_time: datetime) -> datetime:
        """
        Jump to an absolute time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._now:
            raise ValueError(f"Cannot move time backwards: {new_time} < {self._now}")
        self._now = new_time
        return self._now
