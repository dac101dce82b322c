"""
vesting - Token Vesting Ledger

Cliff-then-linear vesting schedules over one pooled token balance, with
exact Decimal accounting and conservation checks after every operation.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from vesting import VestingService, TokenLedger, SingleAdministrator, ManualClock

    token = TokenLedger("VEST")
    token.register_wallet("admin")
    token.mint("admin", Decimal("1000000"))

    clock = ManualClock(datetime(2025, 1, 1))
    service = VestingService(token, SingleAdministrator("admin"), clock=clock)

    # 250,000 unlocks at a 30-day cliff, the rest in 30-day steps to day 180
    service.vest("admin", "alice", Decimal("1000000"),
                 cliff_time=datetime(2025, 1, 31), cliff_amount=Decimal("250000"),
                 duration=timedelta(days=180), interval=timedelta(days=30),
                 revocable=True)

    clock.advance(timedelta(days=60))
    service.release("alice")                      # Decimal("400000")
    service.withdraw("alice", Decimal("400000"))
    token.balance_of("alice")                     # Decimal("400000")
"""

# Core types
from .core import (
    SYSTEM_WALLET,
    POOL_WALLET,
    DEFAULT_TOKEN_DECIMAL_PLACES,
    AMOUNT_ROUNDING,
    VESTING_CONTEXT,
    AmountMap,
    to_amount,
    quantize_amount,
    Clock,
    TokenTransfer,
    Authorizer,
    EventSink,
    ExecuteResult,
    ScheduleStatus,
    VestingEventType,
    VestingEvent,
    VestingError,
    InvalidInput,
    DuplicateSchedule,
    NoSchedule,
    InsufficientBalance,
    InsufficientVestedBalance,
    InsufficientReleasedBalance,
    InsufficientWithdrawnBalance,
    VestingNotRevocable,
    VestingAlreadyRevoked,
    Unauthorized,
    TransferFailed,
    ReentrantCall,
    ConservationViolation,
)

# Schedule and unlock arithmetic
from .schedule import VestingSchedule
from .calculator import (
    to_microseconds,
    completed_periods,
    unlocked_at,
    releasable_at,
    next_unlock_time,
)
from .projection import UnlockStep, release_calendar, unlock_curve

# State
from .store import ScheduleStore
from .accountant import AccountSnapshot, LedgerSnapshot, LedgerAccountant

# Collaborators
from .token_ledger import TokenLedger, Transfer, WalletNotRegistered
from .clock import SystemClock, ManualClock
from .collaborators import SingleAdministrator, EventLog

# Service
from .service import VestingService, ContractInfo


__all__ = [
    # Core
    'SYSTEM_WALLET', 'POOL_WALLET', 'DEFAULT_TOKEN_DECIMAL_PLACES', 'AMOUNT_ROUNDING', 'VESTING_CONTEXT',
    'AmountMap', 'to_amount', 'quantize_amount',
    'Clock', 'TokenTransfer', 'Authorizer', 'EventSink',
    'ExecuteResult', 'ScheduleStatus', 'VestingEventType', 'VestingEvent',
    'VestingError', 'InvalidInput', 'DuplicateSchedule', 'NoSchedule',
    'InsufficientBalance', 'InsufficientVestedBalance', 'InsufficientReleasedBalance',
    'InsufficientWithdrawnBalance', 'VestingNotRevocable', 'VestingAlreadyRevoked',
    'Unauthorized', 'TransferFailed', 'ReentrantCall', 'ConservationViolation',
    # Schedule and arithmetic
    'VestingSchedule',
    'to_microseconds', 'completed_periods', 'unlocked_at', 'releasable_at', 'next_unlock_time',
    'UnlockStep', 'release_calendar', 'unlock_curve',
    # State
    'ScheduleStore', 'AccountSnapshot', 'LedgerSnapshot', 'LedgerAccountant',
    # Collaborators
    'TokenLedger', 'Transfer', 'WalletNotRegistered',
    'SystemClock', 'ManualClock',
    'SingleAdministrator', 'EventLog',
    # Service
    'VestingService', 'ContractInfo',
]

__version__ = '1.0.0'
