"""
projection.py - Release calendars and unlock curves for planning

release_calendar() lists the exact Decimal staircase a schedule will follow.
unlock_curve() evaluates the same staircase over many instants at once with
numpy, returning float64 for charts and reports. Neither touches a store:
both read only the schedule's terms.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List

import numpy as np

from .calculator import to_microseconds, unlocked_at
from .core import DEFAULT_TOKEN_DECIMAL_PLACES, ZERO
from .schedule import VestingSchedule


@dataclass(frozen=True, slots=True)
class UnlockStep:
    """
    One step of the unlock staircase.

    Attributes:
        time: Instant the step takes effect
        unlocked: Cumulative unlocked amount from this instant
        delta: Amount that unlocks at this instant
    """
    time: datetime
    unlocked: Decimal
    delta: Decimal


def release_calendar(
    schedule: VestingSchedule,
    decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
) -> List[UnlockStep]:
    """
    Every instant at which the unlocked amount increases.

    Candidate instants are the cliff, each whole interval after it, and
    end_time. Candidates that unlock nothing (a zero cliff_amount, for
    instance) are omitted. The deltas always sum to total_amount because the
    last step is end_time, where everything has unlocked.

    Example:
        # 1,000,000 total, 250,000 at the cliff, five 150,000 steps
        [step.delta for step in release_calendar(schedule)]
        # [250000, 150000, 150000, 150000, 150000, 150000]
    """
    instants = []
    t = schedule.cliff_time
    while t < schedule.end_time:
        instants.append(t)
        t = t + schedule.interval
    instants.append(schedule.end_time)

    steps: List[UnlockStep] = []
    previous = ZERO
    for instant in instants:
        unlocked = unlocked_at(schedule, instant, decimal_places)
        delta = unlocked - previous
        if delta > 0:
            steps.append(UnlockStep(time=instant, unlocked=unlocked, delta=delta))
            previous = unlocked
    return steps


def unlock_curve(schedule: VestingSchedule, times: Iterable[datetime]) -> np.ndarray:
    """
    Vectorised unlocked amount at each of `times`, as float64.

    Mirrors unlocked_at() without Decimal truncation, so values agree with
    it to within float tolerance.

    Args:
        schedule: The vesting schedule (only its terms are read)
        times: Instants to evaluate, in any order

    Returns:
        np.ndarray of shape (len(times),)
    """
    offsets = np.asarray(
        [to_microseconds(t - schedule.cliff_time) for t in times], dtype=np.int64
    )
    if offsets.size == 0:
        return np.zeros(0, dtype=np.float64)

    total = float(schedule.total_amount)
    cliff_amount = float(schedule.cliff_amount)
    interval_us = to_microseconds(schedule.interval)
    span_us = to_microseconds(schedule.linear_span)

    periods = np.floor_divide(np.maximum(offsets, 0), interval_us)
    # span_us is zero only when the cliff is the end; those points are masked below.
    fraction = (periods * interval_us).astype(np.float64) / float(max(span_us, 1))
    curve = cliff_amount + (total - cliff_amount) * fraction

    curve = np.where(offsets < 0, 0.0, curve)
    curve = np.where(offsets >= span_us, total, curve)
    return np.minimum(curve, total)
