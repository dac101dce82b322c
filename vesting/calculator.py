"""
calculator.py - Cliff-then-linear unlock arithmetic

PURE FUNCTIONS - every input is explicit, nothing reads a clock or a store.

Key formula (cliff_time <= time < end_time):

    periods  = floor((time - cliff_time) / interval)
    unlocked = cliff_amount
             + (total_amount - cliff_amount) * periods * interval / (end_time - cliff_time)

Before the cliff nothing has unlocked; from end_time onward everything has.
Only whole intervals count, so the curve is a staircase. Time spans are
converted to integer microseconds before entering Decimal arithmetic so no
float rounding leaks into amounts, and the result is truncated to the token
precision.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal, localcontext
from typing import Optional

from .core import DEFAULT_TOKEN_DECIMAL_PLACES, VESTING_CONTEXT, ZERO, quantize_amount
from .schedule import VestingSchedule


_ONE_MICROSECOND = timedelta(microseconds=1)


def to_microseconds(span: timedelta) -> int:
    """Exact integer length of a timedelta in microseconds."""
    return span // _ONE_MICROSECOND


def completed_periods(schedule: VestingSchedule, time: datetime) -> int:
    """
    Whole intervals elapsed between the cliff and min(time, end_time).

    Returns 0 before the cliff.
    """
    if time < schedule.cliff_time:
        return 0
    capped = min(time, schedule.end_time)
    return (capped - schedule.cliff_time) // schedule.interval


def unlocked_at(
    schedule: VestingSchedule,
    time: datetime,
    decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
) -> Decimal:
    """
    Cumulative amount of total_amount that has unlocked by `time`.

    Independent of what has been released, withdrawn, or revoked: callers
    subtract released_amount to get the newly unlockable delta.

    Args:
        schedule: The vesting schedule (only its terms are read)
        time: Point in time to evaluate
        decimal_places: Token precision used to truncate the result

    Returns:
        0 before cliff_time, total_amount from end_time onward, and the
        staircase value in between (never above total_amount).

    Example:
        # 1,000,000 total, 250,000 at a 30-day cliff, 180-day duration, 30-day steps
        unlocked_at(schedule, start + timedelta(days=60))  # -> 400000
    """
    if time < schedule.cliff_time:
        return ZERO
    if time >= schedule.end_time:
        return schedule.total_amount

    # cliff_time <= time < end_time, so the linear span is strictly positive here
    span_us = to_microseconds(schedule.linear_span)
    periods = (time - schedule.cliff_time) // schedule.interval
    elapsed_us = periods * to_microseconds(schedule.interval)

    with localcontext(VESTING_CONTEXT):
        linear_pool = schedule.total_amount - schedule.cliff_amount
        linear = linear_pool * Decimal(elapsed_us) / Decimal(span_us)
        unlocked = quantize_amount(schedule.cliff_amount + linear, decimal_places)
    return min(unlocked, schedule.total_amount)


def releasable_at(
    schedule: VestingSchedule,
    time: datetime,
    decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
) -> Decimal:
    """
    Newly unlocked amount not yet moved into the released pool.

    A revoked schedule stops unlocking, so it has nothing releasable.
    """
    if schedule.revoked:
        return ZERO
    delta = unlocked_at(schedule, time, decimal_places) - schedule.released_amount
    return delta if delta > 0 else ZERO


def next_unlock_time(schedule: VestingSchedule, time: datetime) -> Optional[datetime]:
    """
    Next scheduled step boundary strictly after `time`.

    Boundaries are the cliff, each whole interval after it, and end_time.
    Returns None once `time` has reached end_time.
    """
    if time >= schedule.end_time:
        return None
    if time < schedule.cliff_time:
        return schedule.cliff_time
    steps = (time - schedule.cliff_time) // schedule.interval + 1
    candidate = schedule.cliff_time + steps * schedule.interval
    return min(candidate, schedule.end_time)
