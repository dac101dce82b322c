"""
schedule.py - Vesting schedule record

A VestingSchedule is an immutable snapshot of one beneficiary's grant. Terms
(amount, cliff, duration, interval, revocability) are fixed at creation;
released/withdrawn/revoked fields change over the lifecycle, and every change
produces a NEW instance via dataclasses.replace (value semantics).

Invariants enforced on construction:
    0 <= withdrawn_amount <= released_amount <= total_amount
    released_amount + revoked_amount <= total_amount
    start_time <= cliff_time <= start_time + duration
    0 <= cliff_amount <= total_amount
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from .core import InvalidInput, ScheduleStatus, ZERO, to_amount


@dataclass(frozen=True, slots=True)
class VestingSchedule:
    """
    One beneficiary's cliff-then-linear vesting grant.

    Term fields are set at creation and never change. The ScheduleStore
    rejects any mutation that alters them.
    """
    beneficiary: str
    total_amount: Decimal
    start_time: datetime
    cliff_time: datetime
    cliff_amount: Decimal
    duration: timedelta
    interval: timedelta
    revocable: bool
    # Lifecycle state
    released_amount: Decimal = ZERO
    withdrawn_amount: Decimal = ZERO
    revoked: bool = False
    revoked_amount: Decimal = ZERO
    revoked_at: Optional[datetime] = None

    def __post_init__(self):
        """Convert numeric inputs to Decimal and validate every invariant."""
        for name in ('total_amount', 'cliff_amount', 'released_amount',
                     'withdrawn_amount', 'revoked_amount'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_amount(value, name))

        if not isinstance(self.beneficiary, str) or not self.beneficiary.strip():
            raise InvalidInput("beneficiary cannot be empty")
        if self.total_amount <= 0:
            raise InvalidInput(f"total_amount must be positive, got {self.total_amount}")
        if not isinstance(self.duration, timedelta) or self.duration <= timedelta(0):
            raise InvalidInput(f"duration must be a positive timedelta, got {self.duration!r}")
        if not isinstance(self.interval, timedelta) or self.interval <= timedelta(0):
            raise InvalidInput(f"interval must be a positive timedelta, got {self.interval!r}")
        if self.cliff_time < self.start_time:
            raise InvalidInput(
                f"cliff_time {self.cliff_time} is before start_time {self.start_time}"
            )
        if self.cliff_time > self.start_time + self.duration:
            raise InvalidInput(
                f"cliff_time {self.cliff_time} is after the vesting end {self.start_time + self.duration}"
            )
        if not ZERO <= self.cliff_amount <= self.total_amount:
            raise InvalidInput(
                f"cliff_amount must be within [0, {self.total_amount}], got {self.cliff_amount}"
            )

        if self.withdrawn_amount < 0 or self.released_amount < 0 or self.revoked_amount < 0:
            raise InvalidInput("lifecycle amounts cannot be negative")
        if self.withdrawn_amount > self.released_amount:
            raise InvalidInput(
                f"withdrawn_amount {self.withdrawn_amount} exceeds released_amount {self.released_amount}"
            )
        if self.released_amount + self.revoked_amount > self.total_amount:
            raise InvalidInput(
                f"released {self.released_amount} + revoked {self.revoked_amount} "
                f"exceeds total_amount {self.total_amount}"
            )
        if not self.revoked and (self.revoked_amount or self.revoked_at is not None):
            raise InvalidInput("revocation fields set on a schedule that is not revoked")

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def end_time(self) -> datetime:
        """Instant at which the full total_amount has unlocked."""
        return self.start_time + self.duration

    @property
    def linear_span(self) -> timedelta:
        return self.end_time - self.cliff_time

    @property
    def locked_amount(self) -> Decimal:
        """Tokens neither released nor swept back by revocation."""
        return self.total_amount - self.released_amount - self.revoked_amount

    @property
    def withdrawable_amount(self) -> Decimal:
        return self.released_amount - self.withdrawn_amount

    @property
    def outstanding_amount(self) -> Decimal:
        """This schedule's contribution to the pool's held tokens."""
        return self.total_amount - self.withdrawn_amount - self.revoked_amount

    @property
    def status(self) -> ScheduleStatus:
        return ScheduleStatus.REVOKED if self.revoked else ScheduleStatus.ACTIVE

    def terms(self) -> Tuple:
        """The immutable part of the schedule, for change detection."""
        return (
            self.beneficiary, self.total_amount, self.start_time, self.cliff_time,
            self.cliff_amount, self.duration, self.interval, self.revocable,
        )

    def __repr__(self) -> str:
        flag = " REVOKED" if self.revoked else ""
        return (
            f"VestingSchedule({self.beneficiary}: {self.total_amount} "
            f"cliff {self.cliff_amount}@{self.cliff_time.isoformat()} "
            f"end {self.end_time.isoformat()} every {self.interval}; "
            f"released={self.released_amount} withdrawn={self.withdrawn_amount}{flag})"
        )
