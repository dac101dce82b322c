"""
service.py - VestingService: the stateful orchestrator

The VestingService is the only object that mutates vesting state. It owns one
ScheduleStore and one LedgerAccountant, and reaches the outside world only
through the collaborator protocols (TokenTransfer, Authorizer, EventSink, Clock).

Every state-changing operation runs as one unit under the mutation guard:

    1. Check:    authorisation and argument validation (nothing touched yet)
    2. Effect:   update the schedule and the aggregate ledger
    3. Interact: request the external token transfer LAST

If the transfer is rejected or raises, the store and the accountant are
restored from checkpoints taken before step 2 and TransferFailed is raised.
No partial application is ever visible.

Released-but-unwithdrawn tokens survive revocation: revoke sweeps only the
still-locked remainder back to the administrator, and the beneficiary may
still withdraw what was already released.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, localcontext
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from .accountant import AccountSnapshot, LedgerAccountant, LedgerSnapshot
from .calculator import next_unlock_time, releasable_at, unlocked_at
from .clock import SystemClock
from .collaborators import EventLog
from .core import (
    DEFAULT_TOKEN_DECIMAL_PLACES, POOL_WALLET, SYSTEM_WALLET, VESTING_CONTEXT, ZERO,
    AmountMap, Authorizer, Clock, EventSink, TokenTransfer,
    ScheduleStatus, VestingEvent, VestingEventType,
    DuplicateSchedule, InvalidInput, InsufficientReleasedBalance, InsufficientVestedBalance,
    InsufficientWithdrawnBalance, ReentrantCall, TransferFailed, Unauthorized,
    VestingAlreadyRevoked, VestingNotRevocable,
    quantize_amount, to_amount,
)
from .schedule import VestingSchedule
from .store import ScheduleStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ContractInfo:
    """Summary of the whole vesting pool at one instant."""
    pool_wallet: str
    pool_balance: Decimal
    held_tokens: Decimal
    schedule_count: int
    active_count: int
    revoked_count: int
    total_allocated: Decimal
    total_released: Decimal
    total_withdrawn: Decimal
    total_revoked: Decimal
    next_unlock_time: Optional[datetime]
    as_of: datetime


class _MutationGuard:
    """
    Scoped per-operation lock.

    Other threads block until the running operation finishes. A nested call
    on the thread that already holds the guard (for example, from inside a
    token transfer callback) is rejected with ReentrantCall instead of
    deadlocking or observing half-applied state.

    The holder runs under VESTING_CONTEXT whatever thread it is on.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._operation: Optional[str] = None

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        if self._owner == threading.get_ident():
            raise ReentrantCall(f"{operation} called while {self._operation} is in flight")
        with self._lock:
            self._owner = threading.get_ident()
            self._operation = operation
            try:
                with localcontext(VESTING_CONTEXT):
                    yield
            finally:
                self._owner = None
                self._operation = None

    @property
    def busy(self) -> bool:
        return self._owner is not None


class VestingService:
    """
    Cliff-then-linear token vesting over one pooled balance.

    Example:
        token = TokenLedger("VEST")
        token.register_wallet("admin")
        token.mint("admin", Decimal("1000000"))
        clock = ManualClock(datetime(2025, 1, 1))

        service = VestingService(token, SingleAdministrator("admin"), clock=clock)
        service.vest("admin", "alice", Decimal("1000000"),
                     cliff_time=datetime(2025, 1, 31), cliff_amount=Decimal("250000"),
                     duration=timedelta(days=180), interval=timedelta(days=30),
                     revocable=True)

        clock.advance(timedelta(days=60))
        service.release("alice")                    # Decimal("400000")
        service.withdraw("alice", Decimal("400000"))
    """

    def __init__(
        self,
        token: TokenTransfer,
        authorizer: Authorizer,
        clock: Optional[Clock] = None,
        events: Optional[EventSink] = None,
        pool_wallet: str = POOL_WALLET,
        decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES,
    ):
        """
        Args:
            token: Token transfer collaborator backing the pool
            authorizer: Capability check for vest and revoke
            clock: Time source (default: SystemClock)
            events: Event sink (default: a fresh EventLog)
            pool_wallet: Holder whose balance backs every claim
            decimal_places: Token precision for amounts
        """
        self.token = token
        self.authorizer = authorizer
        self.clock = clock or SystemClock()
        self.events = events if events is not None else EventLog()
        self.pool_wallet = pool_wallet
        self.decimal_places = decimal_places

        self._store = ScheduleStore()
        self._accountant = LedgerAccountant()
        self._guard = _MutationGuard()
        self._next_sequence: int = 0

    # ========================================================================
    # STATE-CHANGING OPERATIONS
    # ========================================================================

    def vest(
        self,
        caller: str,
        beneficiary: str,
        total_amount: Any,
        cliff_time: datetime,
        cliff_amount: Any,
        duration: timedelta,
        interval: timedelta,
        revocable: bool,
    ) -> VestingSchedule:
        """
        Create a beneficiary's schedule and pull total_amount into the pool.

        Raises:
            Unauthorized: caller is not the administrator
            InvalidInput: empty or reserved beneficiary, non-positive amount/duration/interval,
                          cliff outside [now, now + duration], cliff_amount out of range
            DuplicateSchedule: beneficiary already has a schedule, even a revoked one
            TransferFailed: the token collaborator rejected the deposit
        """
        with self._guard.hold("vest"):
            self._require_administrator(caller, "vest")
            if not beneficiary or not str(beneficiary).strip():
                raise InvalidInput("beneficiary cannot be empty")
            if beneficiary in (self.pool_wallet, SYSTEM_WALLET):
                raise InvalidInput(f"{beneficiary} is a reserved wallet and cannot be a beneficiary")
            total = self._token_amount(total_amount, "total_amount")
            if total <= 0:
                raise InvalidInput(f"total_amount must be positive, got {total}")
            cliff = self._token_amount(cliff_amount, "cliff_amount")
            if not isinstance(duration, timedelta) or duration <= timedelta(0):
                raise InvalidInput(f"duration must be a positive timedelta, got {duration!r}")
            if not isinstance(interval, timedelta) or interval <= timedelta(0):
                raise InvalidInput(f"interval must be a positive timedelta, got {interval!r}")
            if not isinstance(cliff_time, datetime):
                raise InvalidInput(f"cliff_time must be a datetime, got {cliff_time!r}")

            now = self.clock.now()
            try:
                in_range = now <= cliff_time <= now + duration
            except TypeError as exc:
                raise InvalidInput(f"cliff_time {cliff_time} is not comparable with {now}") from exc
            if not in_range:
                raise InvalidInput(
                    f"cliff_time {cliff_time} must fall within [{now}, {now + duration}]"
                )
            if beneficiary in self._store:
                raise DuplicateSchedule(f"{beneficiary} already has a vesting schedule")
            schedule = VestingSchedule(
                beneficiary=beneficiary,
                total_amount=total,
                start_time=now,
                cliff_time=cliff_time,
                cliff_amount=cliff,
                duration=duration,
                interval=interval,
                revocable=bool(revocable),
            )

            with self._transaction("vest", beneficiary):
                self._store.create(beneficiary, schedule)
                self._accountant.apply_vest(beneficiary, total)
                self._interact(self.token.transfer_in, caller, total, "vest")

            logger.info("Vested %s for %s (cliff %s at %s, end %s)",
                        total, beneficiary, cliff, cliff_time, schedule.end_time)
            self._emit(VestingEventType.VESTED, beneficiary, total, now)
            return schedule

    def release(self, caller: str) -> Decimal:
        """
        Move everything newly unlocked from locked to released.

        No tokens leave the pool; the released amount becomes withdrawable.
        The delta is capped by the pool balance not already owed to released
        claims.

        Returns:
            The amount released.

        Raises:
            NoSchedule: caller has no schedule
            VestingAlreadyRevoked: the schedule was revoked
            InsufficientReleasedBalance: nothing newly unlocked, or empty pool
        """
        with self._guard.hold("release"):
            schedule = self._store.get(caller)
            if schedule.revoked:
                raise VestingAlreadyRevoked(f"{caller}'s schedule was revoked; nothing more unlocks")

            now = self.clock.now()
            delta = unlocked_at(schedule, now, self.decimal_places) - schedule.released_amount
            if delta <= 0:
                raise InsufficientReleasedBalance(
                    f"nothing newly unlocked for {caller} at {now} "
                    f"(released {schedule.released_amount})"
                )
            pool_balance = self.token.balance_of(self.pool_wallet)
            available = pool_balance - self._released_unwithdrawn()
            if pool_balance <= 0 or available <= 0:
                raise InsufficientReleasedBalance(
                    f"pool {self.pool_wallet} has no balance to back a release for {caller}"
                )
            delta = min(delta, available)

            with self._transaction("release", caller):
                self._store.mutate(caller, lambda s: replace(
                    s, released_amount=s.released_amount + delta))
                self._accountant.apply_release(caller, delta)

            logger.info("Released %s for %s (unlocked so far %s)", delta, caller,
                        schedule.released_amount + delta)
            self._emit(VestingEventType.RELEASED, caller, delta, now)
            return delta

    def withdraw(self, caller: str, amount: Any) -> Decimal:
        """
        Pay released tokens out of the pool to the caller.

        Also allowed after revocation, for whatever was released beforehand.

        Raises:
            InvalidInput: amount is zero or negative
            NoSchedule: caller has no schedule
            InsufficientWithdrawnBalance: amount exceeds released - withdrawn
            InsufficientVestedBalance: pool balance is below amount
            TransferFailed: the token collaborator rejected the payout
        """
        with self._guard.hold("withdraw"):
            amount = self._token_amount(amount, "amount")
            if amount <= 0:
                raise InvalidInput(f"amount must be positive, got {amount}")
            schedule = self._store.get(caller)
            if amount > schedule.withdrawable_amount:
                raise InsufficientWithdrawnBalance(
                    f"{caller} requested {amount} but only {schedule.withdrawable_amount} "
                    f"is released and unwithdrawn"
                )
            pool_balance = self.token.balance_of(self.pool_wallet)
            if pool_balance < amount:
                raise InsufficientVestedBalance(
                    f"pool {self.pool_wallet} holds {pool_balance}, cannot pay {amount} to {caller}"
                )

            now = self.clock.now()
            with self._transaction("withdraw", caller):
                self._store.mutate(caller, lambda s: replace(
                    s, withdrawn_amount=s.withdrawn_amount + amount))
                self._accountant.apply_withdraw(caller, amount)
                self._interact(self.token.transfer_out, caller, amount, "withdraw")

            logger.info("Withdrew %s for %s", amount, caller)
            self._emit(VestingEventType.WITHDRAWN, caller, amount, now)
            return amount

    def revoke(self, caller: str, who: str) -> Decimal:
        """
        Terminate a revocable schedule and sweep its locked remainder to the caller.

        Released-but-unwithdrawn tokens stay with the beneficiary.

        Returns:
            The amount returned to the administrator.

        Raises:
            Unauthorized: caller is not the administrator
            NoSchedule: who has no schedule
            VestingNotRevocable: the schedule was created non-revocable
            VestingAlreadyRevoked: the schedule is already revoked
            TransferFailed: the token collaborator rejected the sweep
        """
        with self._guard.hold("revoke"):
            self._require_administrator(caller, "revoke")
            schedule = self._store.get(who)
            if not schedule.revocable:
                raise VestingNotRevocable(f"{who}'s schedule is not revocable")
            if schedule.revoked:
                raise VestingAlreadyRevoked(f"{who}'s schedule is already revoked")

            now = self.clock.now()
            remaining = schedule.locked_amount
            with self._transaction("revoke", who):
                self._store.mutate(who, lambda s: replace(
                    s, revoked=True, revoked_amount=remaining, revoked_at=now))
                self._accountant.apply_revoke(who, remaining)
                if remaining > 0:
                    self._interact(self.token.transfer_out, caller, remaining, "revoke")

            logger.info("Revoked %s's schedule: %s returned to %s, %s preserved for withdrawal",
                        who, remaining, caller, schedule.withdrawable_amount)
            self._emit(VestingEventType.REVOKED, who, remaining, now)
            return remaining

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def vested_amount(self, beneficiary: str) -> Decimal:
        """Cumulative unlocked amount at the current time."""
        with self._guard.hold("vested_amount"):
            schedule = self._store.get(beneficiary)
            return unlocked_at(schedule, self.clock.now(), self.decimal_places)

    def vested_balance(self, beneficiary: str) -> Decimal:
        """Vested tokens the beneficiary is owed but has not withdrawn, as of now."""
        with self._guard.hold("vested_balance"):
            return self._vested_balance(self._store.get(beneficiary), self.clock.now())

    def vested_balance_at(self, beneficiary: str, time: datetime) -> Decimal:
        """
        vested_balance evaluated at an arbitrary past or future instant.

        Uses the schedule's current withdrawn amount, so it answers
        "what would be vested and still owed at `time`" for planning.
        """
        with self._guard.hold("vested_balance_at"):
            return self._vested_balance(self._store.get(beneficiary), time)

    def releasable_amount(self, beneficiary: str) -> Decimal:
        with self._guard.hold("releasable_amount"):
            schedule = self._store.get(beneficiary)
            return releasable_at(schedule, self.clock.now(), self.decimal_places)

    def withdrawable_amount(self, beneficiary: str) -> Decimal:
        with self._guard.hold("withdrawable_amount"):
            return self._store.get(beneficiary).withdrawable_amount

    def get_schedule(self, beneficiary: str) -> VestingSchedule:
        with self._guard.hold("get_schedule"):
            return self._store.get(beneficiary)

    def schedule_status(self, beneficiary: str) -> ScheduleStatus:
        with self._guard.hold("schedule_status"):
            return self._store.status(beneficiary)

    def beneficiaries(self) -> List[str]:
        with self._guard.hold("beneficiaries"):
            return self._store.beneficiaries()

    @property
    def held_tokens(self) -> Decimal:
        with self._guard.hold("held_tokens"):
            return self._accountant.held_tokens

    @property
    def total_vested(self) -> AmountMap:
        with self._guard.hold("total_vested"):
            return self._accountant.total_vested

    @property
    def total_released(self) -> AmountMap:
        with self._guard.hold("total_released"):
            return self._accountant.total_released

    @property
    def total_withdrawn(self) -> AmountMap:
        with self._guard.hold("total_withdrawn"):
            return self._accountant.total_withdrawn

    @property
    def total_revoked(self) -> AmountMap:
        with self._guard.hold("total_revoked"):
            return self._accountant.total_revoked

    def account(self, beneficiary: str) -> AccountSnapshot:
        with self._guard.hold("account"):
            return self._accountant.account(beneficiary)

    def snapshot(self, beneficiary: Optional[str] = None) -> LedgerSnapshot:
        with self._guard.hold("snapshot"):
            return self._accountant.snapshot(beneficiary)

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Audit the aggregate ledger against every schedule and the pool balance.

        Adds a 'pool_balance' key and flags a pool holding less than
        held_tokens (the pool may hold more, e.g. after a direct deposit).
        """
        with self._guard.hold("verify_conservation"):
            report = self._accountant.verify_conservation(self._store.schedules())
            pool_balance = self.token.balance_of(self.pool_wallet)
            report['pool_balance'] = pool_balance
            if pool_balance < report['held_tokens']:
                report['discrepancies'].append({
                    'beneficiary': None, 'field': 'pool_balance',
                    'expected': report['held_tokens'], 'actual': pool_balance,
                })
                report['valid'] = False
            return report

    def contract_info(self) -> ContractInfo:
        with self._guard.hold("contract_info"):
            now = self.clock.now()
            schedules = self._store.schedules()
            active = [s for s in schedules if not s.revoked]
            upcoming = [t for t in (next_unlock_time(s, now) for s in active) if t is not None]
            totals = self._accountant.snapshot()
            return ContractInfo(
                pool_wallet=self.pool_wallet,
                pool_balance=self.token.balance_of(self.pool_wallet),
                held_tokens=totals.held_tokens,
                schedule_count=len(schedules),
                active_count=len(active),
                revoked_count=len(schedules) - len(active),
                total_allocated=totals.total_allocated,
                total_released=totals.total_released,
                total_withdrawn=totals.total_withdrawn,
                total_revoked=totals.total_revoked,
                next_unlock_time=min(upcoming) if upcoming else None,
                as_of=now,
            )

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_administrator(self, caller: str, operation: str) -> None:
        if not self.authorizer.is_administrator(caller):
            raise Unauthorized(f"{caller} may not {operation}")

    def _token_amount(self, value: Any, name: str) -> Decimal:
        """Convert to Decimal and reject precision finer than the token supports."""
        amount = to_amount(value, name)
        try:
            quantized = quantize_amount(amount, self.decimal_places)
        except InvalidOperation as exc:
            raise InvalidInput(f"{name} {amount} is too large") from exc
        if quantized != amount:
            raise InvalidInput(
                f"{name} {amount} has more than {self.decimal_places} decimal places"
            )
        return amount

    def _vested_balance(self, schedule: VestingSchedule, time: datetime) -> Decimal:
        # Unlocking stops at revocation; only the preserved released amount remains.
        if schedule.revoked:
            vested = schedule.released_amount
        else:
            vested = unlocked_at(schedule, time, self.decimal_places)
        balance = vested - schedule.withdrawn_amount
        return balance if balance > 0 else ZERO

    def _released_unwithdrawn(self) -> Decimal:
        released = self._accountant.total_released
        withdrawn = self._accountant.total_withdrawn
        return sum((released[b] - withdrawn[b] for b in sorted(released)), ZERO)

    @contextmanager
    def _transaction(self, operation: str, beneficiary: str) -> Iterator[None]:
        """Restore the store and the accountant if anything inside fails."""
        schedules = self._store.copy()
        checkpoint = self._accountant.checkpoint()
        try:
            yield
        except BaseException:
            self._store.replace_all(schedules)
            self._accountant.restore(checkpoint)
            logger.warning("Rolled back %s for %s", operation, beneficiary)
            raise

    def _interact(
        self,
        transfer: Callable[[str, Decimal], bool],
        party: str,
        amount: Decimal,
        operation: str,
    ) -> None:
        """Invoke the external transfer; any failure becomes TransferFailed."""
        try:
            ok = transfer(party, amount)
        except Exception as exc:
            raise TransferFailed(
                f"{operation}: token transfer of {amount} with {party} raised {exc!r}"
            ) from exc
        if not ok:
            raise TransferFailed(f"{operation}: token transfer of {amount} with {party} was rejected")

    def _emit(self, event_type: VestingEventType, beneficiary: str, amount: Decimal, timestamp: datetime) -> None:
        event = VestingEvent(
            event_type=event_type,
            beneficiary=beneficiary,
            amount=amount,
            timestamp=timestamp,
            sequence_number=self._next_sequence,
        )
        self._next_sequence += 1
        self.events.emit(event)
