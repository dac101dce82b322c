"""
accountant.py - Aggregate vesting ledger with conservation checks

The LedgerAccountant keeps the per-beneficiary aggregates and the contract-wide
held_tokens total. It is the only place these numbers change.

Every apply_* call follows the same three steps:
    1. Propose: compute the post-change aggregates without touching state
    2. Validate: reject (never clamp) anything that breaks an invariant
    3. Commit: write the proposal, then re-check conservation

Conservation laws (checked after every commit):
    held_tokens == Σ_b total_vested[b]
    ∀b: total_vested[b] + total_withdrawn[b] + total_revoked[b] == total_allocated[b]
    ∀b: total_withdrawn[b] <= total_released[b]
    ∀b: total_released[b] + total_revoked[b] <= total_allocated[b]
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .core import (
    AmountMap, ZERO,
    ConservationViolation, DuplicateSchedule, InsufficientBalance, InvalidInput, NoSchedule,
    to_amount,
)
from .schedule import VestingSchedule

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    """Immutable view of one beneficiary's aggregates."""
    beneficiary: str
    allocated: Decimal
    vested: Decimal
    released: Decimal
    withdrawn: Decimal
    revoked: Decimal


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Immutable view of the contract-wide aggregates."""
    held_tokens: Decimal
    total_allocated: Decimal
    total_released: Decimal
    total_withdrawn: Decimal
    total_revoked: Decimal
    beneficiary_count: int
    account: Optional[AccountSnapshot] = None


@dataclass(frozen=True, slots=True)
class _Checkpoint:
    held_tokens: Decimal
    maps: Mapping[str, Mapping[str, Decimal]] = field(default_factory=dict)


_MAP_NAMES = ('allocated', 'vested', 'released', 'withdrawn', 'revoked')


class LedgerAccountant:
    """
    Per-beneficiary vesting aggregates plus the pooled held_tokens counter.

    Not thread-safe by itself; the VestingService serialises access.

    Example:
        accountant = LedgerAccountant()
        accountant.apply_vest("alice", Decimal("1000"))
        accountant.apply_release("alice", Decimal("250"))
        accountant.apply_withdraw("alice", Decimal("100"))
        accountant.held_tokens  # Decimal("900")
    """

    def __init__(self):
        self._allocated: AmountMap = {}
        self._vested: AmountMap = {}
        self._released: AmountMap = {}
        self._withdrawn: AmountMap = {}
        self._revoked: AmountMap = {}
        self._held_tokens: Decimal = ZERO

    # ========================================================================
    # READ ACCESS (copies, for external auditing)
    # ========================================================================

    @property
    def held_tokens(self) -> Decimal:
        return self._held_tokens

    @property
    def total_vested(self) -> AmountMap:
        """Remaining claimable total per beneficiary."""
        return dict(self._vested)

    @property
    def total_released(self) -> AmountMap:
        return dict(self._released)

    @property
    def total_withdrawn(self) -> AmountMap:
        return dict(self._withdrawn)

    @property
    def total_revoked(self) -> AmountMap:
        return dict(self._revoked)

    @property
    def total_allocated(self) -> AmountMap:
        return dict(self._allocated)

    def account(self, beneficiary: str) -> AccountSnapshot:
        if beneficiary not in self._allocated:
            raise NoSchedule(f"{beneficiary} has no ledger entries")
        return AccountSnapshot(
            beneficiary=beneficiary,
            allocated=self._allocated[beneficiary],
            vested=self._vested[beneficiary],
            released=self._released[beneficiary],
            withdrawn=self._withdrawn[beneficiary],
            revoked=self._revoked[beneficiary],
        )

    def snapshot(self, beneficiary: Optional[str] = None) -> LedgerSnapshot:
        """Contract-wide totals, optionally with one beneficiary's account."""
        return LedgerSnapshot(
            held_tokens=self._held_tokens,
            total_allocated=sum(self._allocated.values(), ZERO),
            total_released=sum(self._released.values(), ZERO),
            total_withdrawn=sum(self._withdrawn.values(), ZERO),
            total_revoked=sum(self._revoked.values(), ZERO),
            beneficiary_count=len(self._allocated),
            account=self.account(beneficiary) if beneficiary is not None else None,
        )

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def apply_vest(self, beneficiary: str, amount: Decimal) -> AccountSnapshot:
        """Open a beneficiary's account: total_vested += amount, held_tokens += amount."""
        amount = self._positive(amount)
        if beneficiary in self._allocated:
            raise DuplicateSchedule(f"{beneficiary} already has ledger entries")
        proposal = {
            'allocated': amount, 'vested': amount,
            'released': ZERO, 'withdrawn': ZERO, 'revoked': ZERO,
        }
        return self._commit(beneficiary, proposal, self._held_tokens + amount, "vest", amount)

    def apply_release(self, beneficiary: str, amount: Decimal) -> AccountSnapshot:
        """Move amount from locked to released. held_tokens is unchanged."""
        amount = self._positive(amount)
        proposal = self._current(beneficiary)
        proposal['released'] += amount
        return self._commit(beneficiary, proposal, self._held_tokens, "release", amount)

    def apply_withdraw(self, beneficiary: str, amount: Decimal) -> AccountSnapshot:
        """Pay out released tokens: withdrawn += amount, vested and held_tokens -= amount."""
        amount = self._positive(amount)
        proposal = self._current(beneficiary)
        proposal['withdrawn'] += amount
        proposal['vested'] -= amount
        return self._commit(beneficiary, proposal, self._held_tokens - amount, "withdraw", amount)

    def apply_revoke(self, beneficiary: str, amount: Decimal) -> AccountSnapshot:
        """
        Sweep the locked remainder back: revoked += amount, vested and held_tokens -= amount.

        A zero amount is allowed (revoking a fully released schedule).
        """
        amount = to_amount(amount)
        if amount < 0:
            raise InvalidInput(f"revoked amount cannot be negative, got {amount}")
        proposal = self._current(beneficiary)
        proposal['revoked'] += amount
        proposal['vested'] -= amount
        return self._commit(beneficiary, proposal, self._held_tokens - amount, "revoke", amount)

    # ========================================================================
    # ROLLBACK SUPPORT
    # ========================================================================

    def checkpoint(self) -> _Checkpoint:
        """Capture every aggregate so a failed operation can be undone."""
        return _Checkpoint(
            held_tokens=self._held_tokens,
            maps={name: dict(self._map(name)) for name in _MAP_NAMES},
        )

    def restore(self, checkpoint: _Checkpoint) -> None:
        self._held_tokens = checkpoint.held_tokens
        for name in _MAP_NAMES:
            self._map(name).clear()
            self._map(name).update(checkpoint.maps[name])

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def check_conservation(self) -> None:
        """Raise ConservationViolation if any conservation law fails."""
        problems = self._conservation_problems()
        if problems:
            raise ConservationViolation("; ".join(problems))

    def verify_conservation(self, schedules: Iterable[VestingSchedule]) -> Dict[str, Any]:
        """
        Cross-check the aggregates against the authoritative schedules.

        Returns:
            Dict with keys:
            - 'valid': bool - True if aggregates and schedules agree everywhere
            - 'held_tokens': Decimal - the tracked pooled total
            - 'expected_held_tokens': Decimal - Σ schedule.outstanding_amount
            - 'discrepancies': List[Dict] - one entry per mismatch, each with
              beneficiary, field, expected, actual

        Example:
            report = accountant.verify_conservation(store.schedules())
            assert report['valid'], report['discrepancies']
        """
        discrepancies: List[Dict[str, Any]] = []
        expected_held = ZERO
        seen = set()

        for schedule in schedules:
            b = schedule.beneficiary
            seen.add(b)
            expected_held += schedule.outstanding_amount
            if b not in self._allocated:
                discrepancies.append({
                    'beneficiary': b, 'field': 'account',
                    'expected': 'present', 'actual': 'missing',
                })
                continue
            expected = {
                'allocated': schedule.total_amount,
                'vested': schedule.outstanding_amount,
                'released': schedule.released_amount,
                'withdrawn': schedule.withdrawn_amount,
                'revoked': schedule.revoked_amount,
            }
            for name, value in expected.items():
                actual = self._map(name)[b]
                if actual != value:
                    discrepancies.append({
                        'beneficiary': b, 'field': name,
                        'expected': value, 'actual': actual,
                    })

        for b in sorted(set(self._allocated) - seen):
            discrepancies.append({
                'beneficiary': b, 'field': 'schedule',
                'expected': 'present', 'actual': 'missing',
            })

        if expected_held != self._held_tokens:
            discrepancies.append({
                'beneficiary': None, 'field': 'held_tokens',
                'expected': expected_held, 'actual': self._held_tokens,
            })
        for problem in self._conservation_problems():
            discrepancies.append({
                'beneficiary': None, 'field': 'conservation',
                'expected': None, 'actual': problem,
            })

        return {
            'valid': not discrepancies,
            'held_tokens': self._held_tokens,
            'expected_held_tokens': expected_held,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _map(self, name: str) -> AmountMap:
        return getattr(self, f"_{name}")

    @staticmethod
    def _positive(amount: Any) -> Decimal:
        amount = to_amount(amount)
        if amount <= 0:
            raise InvalidInput(f"amount must be positive, got {amount}")
        return amount

    def _current(self, beneficiary: str) -> Dict[str, Decimal]:
        if beneficiary not in self._allocated:
            raise NoSchedule(f"{beneficiary} has no ledger entries")
        return {name: self._map(name)[beneficiary] for name in _MAP_NAMES}

    @staticmethod
    def _validate(beneficiary: str, proposal: Mapping[str, Decimal], held: Decimal) -> Optional[str]:
        """Return a rejection reason, or None if the proposal is acceptable."""
        if held < 0:
            return f"held_tokens would become negative ({held})"
        if proposal['vested'] < 0:
            return f"{beneficiary} total_vested would become negative ({proposal['vested']})"
        if proposal['released'] + proposal['revoked'] > proposal['allocated']:
            return (
                f"{beneficiary} released {proposal['released']} + revoked {proposal['revoked']} "
                f"would exceed allocated {proposal['allocated']}"
            )
        if proposal['withdrawn'] > proposal['released']:
            return (
                f"{beneficiary} withdrawn {proposal['withdrawn']} "
                f"would exceed released {proposal['released']}"
            )
        return None

    def _commit(
        self,
        beneficiary: str,
        proposal: Mapping[str, Decimal],
        held: Decimal,
        operation: str,
        amount: Decimal,
    ) -> AccountSnapshot:
        reason = self._validate(beneficiary, proposal, held)
        if reason is not None:
            raise InsufficientBalance(f"{operation} of {amount} rejected: {reason}")

        before = self.checkpoint()
        for name in _MAP_NAMES:
            self._map(name)[beneficiary] = proposal[name]
        self._held_tokens = held
        try:
            self.check_conservation()
        except ConservationViolation:
            self.restore(before)
            raise
        logger.debug("Applied %s of %s for %s (held_tokens=%s)", operation, amount, beneficiary, held)
        return self.account(beneficiary)

    def _conservation_problems(self) -> List[str]:
        problems = []
        vested_sum = sum((self._vested[b] for b in sorted(self._vested)), ZERO)
        if vested_sum != self._held_tokens:
            problems.append(f"held_tokens {self._held_tokens} != sum of total_vested {vested_sum}")
        for b in sorted(self._allocated):
            accounted = self._vested[b] + self._withdrawn[b] + self._revoked[b]
            if accounted != self._allocated[b]:
                problems.append(
                    f"{b}: vested + withdrawn + revoked = {accounted} != allocated {self._allocated[b]}"
                )
            if self._withdrawn[b] > self._released[b]:
                problems.append(f"{b}: withdrawn {self._withdrawn[b]} > released {self._released[b]}")
            if self._released[b] + self._revoked[b] > self._allocated[b]:
                problems.append(f"{b}: released + revoked exceeds allocated {self._allocated[b]}")
        return problems
