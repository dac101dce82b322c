"""
Core types and pure helpers for the token vesting ledger.

This module provides the foundational pieces shared by every other module:
1. Decimal context and amount helpers (to_amount, quantize_amount)
2. Protocols for the external collaborators: Clock, TokenTransfer, Authorizer, EventSink
3. Enums: ExecuteResult, ScheduleStatus, VestingEventType
4. Exceptions: VestingError and the domain-specific error types
5. Immutable records: VestingEvent

Nothing in this module holds state. The collaborator protocols describe the
narrow seams through which the vesting core touches the outside world; the
package ships in-memory implementations of each (TokenLedger, SingleAdministrator,
EventLog, ManualClock/SystemClock).
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Context, Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_EVEN, getcontext, localcontext
from enum import Enum
from typing import Any, Dict, Protocol, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Vesting arithmetic must be deterministic on every thread. Decimal contexts
# are thread-local, so the import-time getcontext() only covers the importing
# thread. VESTING_CONTEXT is the shared template; the service enters it with
# decimal.localcontext() around every operation, and the amount helpers and
# the calculator enter it for direct callers.
#
#   - prec=50: enough headroom for amount * elapsed_microseconds products
#   - rounding=ROUND_HALF_EVEN: neutral default for intermediate values
#
# Amounts that leave the calculator are quantized with AMOUNT_ROUNDING
# (ROUND_DOWN) so the ledger never releases more than has unlocked.
#
VESTING_CONTEXT = Context(prec=50, rounding=ROUND_HALF_EVEN)

_IMPORT_THREAD_CONTEXT = getcontext()
_IMPORT_THREAD_CONTEXT.prec = VESTING_CONTEXT.prec
_IMPORT_THREAD_CONTEXT.rounding = VESTING_CONTEXT.rounding


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for token issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Wallet holding the pooled tokens that back every beneficiary's claim.
POOL_WALLET = "vesting_pool"

# Token precision. Matches the usual on-chain fungible token granularity.
DEFAULT_TOKEN_DECIMAL_PLACES = 8

# Unlocked amounts are always truncated, never rounded up.
AMOUNT_ROUNDING = ROUND_DOWN

ZERO = Decimal("0")


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from beneficiary to an aggregate amount.
AmountMap = Dict[str, Decimal]


# ============================================================================
# AMOUNT HELPERS
# ============================================================================

def to_amount(value: Any, name: str = "amount") -> Decimal:
    """
    Convert a numeric input to a finite Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion. Booleans are rejected even though they are ints.

    Raises:
        InvalidInput: if the value is not numeric, or is NaN/infinite.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInput(f"{name} must be numeric, got {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise InvalidInput(f"{name} must be numeric, got {value!r}") from exc
    else:
        raise InvalidInput(f"{name} must be numeric, got {type(value).__name__}")
    if not result.is_finite():
        raise InvalidInput(f"{name} must be finite, got {result}")
    return result


def quantize_amount(value: Decimal, decimal_places: int = DEFAULT_TOKEN_DECIMAL_PLACES) -> Decimal:
    """Truncate an amount to the token's precision."""
    quantizer = Decimal(10) ** -decimal_places
    with localcontext(VESTING_CONTEXT):
        return value.quantize(quantizer, rounding=AMOUNT_ROUNDING)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class Clock(Protocol):
    """
    Source of the current time.

    Every time read in the vesting core goes through a Clock so that tests can
    simulate arbitrary elapsed time deterministically.
    """

    def now(self) -> datetime:
        """Return the current time as a naive datetime."""
        ...


@runtime_checkable
class TokenTransfer(Protocol):
    """
    Narrow interface to the fungible token backing the vesting pool.

    The core never assumes a transfer succeeds: a False return (or an
    exception) aborts the enclosing vesting operation and rolls back
    any ledger mutation it made.
    """

    def transfer_in(self, frm: str, amount: Decimal) -> bool:
        """Move amount from an external holder into the pooled holdings."""
        ...

    def transfer_out(self, to: str, amount: Decimal) -> bool:
        """Move amount from the pooled holdings to an external holder."""
        ...

    def balance_of(self, holder: str) -> Decimal:
        """Return the holder's balance (Decimal("0") if unknown)."""
        ...


@runtime_checkable
class Authorizer(Protocol):
    """Capability check gating vest and revoke."""

    def is_administrator(self, caller: str) -> bool:
        ...


@runtime_checkable
class EventSink(Protocol):
    """Observability sink for vesting lifecycle records."""

    def emit(self, event: 'VestingEvent') -> None:
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a token transfer attempt.

    APPLIED: The transfer was validated and applied.
    REJECTED: The transfer failed validation; nothing was applied.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class ScheduleStatus(Enum):
    """Per-beneficiary lifecycle: NON_EXISTENT -> ACTIVE -> REVOKED (terminal)."""
    NON_EXISTENT = "non_existent"
    ACTIVE = "active"
    REVOKED = "revoked"


class VestingEventType(Enum):
    VESTED = "vested"
    RELEASED = "released"
    WITHDRAWN = "withdrawn"
    REVOKED = "revoked"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VestingError(Exception):
    """Base exception for all vesting errors."""
    pass


class InvalidInput(VestingError, ValueError):
    """Raised for malformed arguments: zero amounts, zero spans, empty beneficiary."""
    pass


class DuplicateSchedule(VestingError):
    """Raised when a beneficiary already has a schedule (revoked or not)."""
    pass


class NoSchedule(VestingError):
    """Raised when a beneficiary has no schedule."""
    pass


class InsufficientBalance(VestingError):
    """Raised when a requested amount exceeds what is available at that stage."""
    pass


class InsufficientVestedBalance(InsufficientBalance):
    """Raised when the pooled contract balance cannot cover a withdrawal."""
    pass


class InsufficientReleasedBalance(InsufficientBalance):
    """Raised when release finds nothing newly unlocked, or an empty pool."""
    pass


class InsufficientWithdrawnBalance(InsufficientBalance):
    """Raised when a withdrawal exceeds released_amount - withdrawn_amount."""
    pass


class VestingNotRevocable(VestingError):
    pass


class VestingAlreadyRevoked(VestingError):
    pass


class Unauthorized(VestingError):
    """Raised when a non-administrator calls vest or revoke."""
    pass


class TransferFailed(VestingError):
    """Raised when the token collaborator rejects a transfer. The operation was rolled back."""
    pass


class ReentrantCall(VestingError):
    """Raised when an operation is invoked while another is in flight on the same thread."""
    pass


class ConservationViolation(VestingError):
    """Raised when the aggregate ledger no longer balances. Indicates a bug."""
    pass


# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class VestingEvent:
    """
    Immutable record of a committed vesting operation.

    Attributes:
        event_type: Which operation committed
        beneficiary: The schedule the operation applied to
        amount: Tokens vested, released, withdrawn, or swept back
        timestamp: Clock time at which the operation committed
        sequence_number: Monotonic within the emitting service
    """
    event_type: VestingEventType
    beneficiary: str
    amount: Decimal
    timestamp: datetime
    sequence_number: int

    def __repr__(self) -> str:
        return (
            f"VestingEvent(#{self.sequence_number} {self.event_type.value} "
            f"{self.amount} -> {self.beneficiary} @ {self.timestamp.isoformat()})"
        )
