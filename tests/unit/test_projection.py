"""
test_projection.py - Unit tests for release calendars and numpy unlock curves
"""

import pytest
import numpy as np
from datetime import timedelta
from decimal import Decimal

from vesting import UnlockStep, release_calendar, unlock_curve, unlocked_at


DAY = timedelta(days=1)


class TestReleaseCalendar:

    def test_scenario_a_steps(self, scenario_a, start):
        steps = release_calendar(scenario_a)
        assert [s.time for s in steps] == [start + d * DAY for d in (30, 60, 90, 120, 150, 180)]
        assert [s.delta for s in steps] == [Decimal("250000")] + [Decimal("150000")] * 5
        assert steps[-1].unlocked == Decimal("1000000")

    def test_deltas_sum_to_total(self, schedule_factory):
        schedule = schedule_factory(total_amount=Decimal("1"), interval=timedelta(days=45),
                                    cliff_amount=Decimal("0.1"))
        steps = release_calendar(schedule)
        assert sum(s.delta for s in steps) == Decimal("1")

    def test_zero_cliff_step_omitted(self, schedule_factory, start):
        steps = release_calendar(schedule_factory(cliff_amount=Decimal("0")))
        assert steps[0].time == start + 60 * DAY
        assert steps[0].delta == Decimal("200000")

    def test_cliff_at_end_is_single_step(self, schedule_factory, start):
        steps = release_calendar(schedule_factory(cliff_time=start + 180 * DAY))
        assert steps == [UnlockStep(start + 180 * DAY, Decimal("1000000"), Decimal("1000000"))]

    def test_steps_strictly_increasing(self, schedule_factory):
        steps = release_calendar(schedule_factory(interval=timedelta(days=7)))
        times = [s.time for s in steps]
        assert times == sorted(set(times))
        assert all(s.delta > 0 for s in steps)

    def test_matches_calculator(self, scenario_a):
        for step in release_calendar(scenario_a):
            assert unlocked_at(scenario_a, step.time) == step.unlocked


class TestUnlockCurve:

    def test_matches_calculator(self, scenario_a, start):
        times = [start + d * DAY for d in range(0, 200, 7)]
        curve = unlock_curve(scenario_a, times)
        expected = np.array([float(unlocked_at(scenario_a, t)) for t in times])
        assert curve.dtype == np.float64
        np.testing.assert_allclose(curve, expected, rtol=1e-12)

    def test_boundaries(self, scenario_a, start):
        curve = unlock_curve(scenario_a, [start + 29 * DAY, start + 30 * DAY,
                                          start + 60 * DAY, start + 180 * DAY])
        np.testing.assert_allclose(curve, [0.0, 250000.0, 400000.0, 1000000.0])

    def test_empty_times(self, scenario_a):
        assert unlock_curve(scenario_a, []).shape == (0,)

    def test_cliff_at_end(self, schedule_factory, start):
        schedule = schedule_factory(cliff_time=start + 180 * DAY)
        curve = unlock_curve(schedule, [start, start + 179 * DAY, start + 180 * DAY])
        np.testing.assert_allclose(curve, [0.0, 0.0, 1000000.0])

    def test_monotone(self, schedule_factory, start):
        schedule = schedule_factory(interval=timedelta(hours=13))
        curve = unlock_curve(schedule, [start + timedelta(hours=h) for h in range(0, 5000, 11)])
        assert np.all(np.diff(curve) >= 0)
