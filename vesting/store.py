"""
store.py - Keyed storage of vesting schedules

At most one schedule per beneficiary, ever: a key is never overwritten and
never freed, not even after revocation. Schedules are immutable values;
mutate() swaps in a replacement after checking its terms are unchanged.
"""

from __future__ import annotations
import logging
from typing import Callable, Dict, Iterator, List, Mapping

from .core import DuplicateSchedule, InvalidInput, NoSchedule, ScheduleStatus
from .schedule import VestingSchedule

logger = logging.getLogger(__name__)


class ScheduleStore:
    """In-memory map of beneficiary -> VestingSchedule."""

    def __init__(self):
        self._schedules: Dict[str, VestingSchedule] = {}

    def create(self, beneficiary: str, schedule: VestingSchedule) -> VestingSchedule:
        """
        Store the first and only schedule for a beneficiary.

        Raises:
            DuplicateSchedule: if the key exists, regardless of revoked status
            InvalidInput: if the key and schedule.beneficiary disagree
        """
        if beneficiary in self._schedules:
            raise DuplicateSchedule(f"{beneficiary} already has a vesting schedule")
        if schedule.beneficiary != beneficiary:
            raise InvalidInput(
                f"schedule belongs to {schedule.beneficiary}, cannot store under {beneficiary}"
            )
        self._schedules[beneficiary] = schedule
        logger.debug("Stored schedule %r", schedule)
        return schedule

    def get(self, beneficiary: str) -> VestingSchedule:
        """Raises NoSchedule if the beneficiary has none."""
        try:
            return self._schedules[beneficiary]
        except KeyError:
            raise NoSchedule(f"{beneficiary} has no vesting schedule") from None

    def mutate(
        self,
        beneficiary: str,
        fn: Callable[[VestingSchedule], VestingSchedule],
    ) -> VestingSchedule:
        """
        Replace a schedule with fn(schedule).

        fn may only change lifecycle fields (released, withdrawn, revoked...).
        If it returns a schedule with different terms, nothing is stored.

        Returns:
            The stored replacement.
        """
        current = self.get(beneficiary)
        updated = fn(current)
        if not isinstance(updated, VestingSchedule):
            raise InvalidInput(f"mutation returned {type(updated).__name__}, not VestingSchedule")
        if updated.terms() != current.terms():
            raise InvalidInput(f"cannot change the terms of {beneficiary}'s schedule")
        if current.revoked and not updated.revoked:
            raise InvalidInput(f"cannot un-revoke {beneficiary}'s schedule")
        self._schedules[beneficiary] = updated
        return updated

    def status(self, beneficiary: str) -> ScheduleStatus:
        schedule = self._schedules.get(beneficiary)
        if schedule is None:
            return ScheduleStatus.NON_EXISTENT
        return schedule.status

    def beneficiaries(self) -> List[str]:
        """All beneficiaries, sorted for deterministic iteration."""
        return sorted(self._schedules)

    def schedules(self) -> List[VestingSchedule]:
        return [self._schedules[b] for b in self.beneficiaries()]

    def copy(self) -> Dict[str, VestingSchedule]:
        """Shallow copy of the mapping. Schedules are immutable, so this is a full checkpoint."""
        return dict(self._schedules)

    def replace_all(self, schedules: Mapping[str, VestingSchedule]) -> None:
        """Restore a mapping captured by copy()."""
        self._schedules = dict(schedules)

    def __contains__(self, beneficiary: object) -> bool:
        return beneficiary in self._schedules

    def __len__(self) -> int:
        return len(self._schedules)

    def __iter__(self) -> Iterator[str]:
        return iter(self.beneficiaries())
