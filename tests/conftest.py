"""
conftest.py - Shared pytest fixtures for vesting tests

Provides common fixtures used across unit, conformance and functional tests:
- A manual clock and a funded token ledger
- A VestingService wired to both, with an EventLog
- Scenario A (1,000,000 over 180 days, 250,000 at a 30-day cliff, 30-day steps)
- Token doubles that reject, raise, or call back into the service
- State capture for all-or-nothing comparisons
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from vesting import (
    POOL_WALLET,
    VestingService, VestingSchedule,
    TokenLedger, ManualClock, SingleAdministrator, EventLog,
)


START = datetime(2025, 1, 1)
ADMIN = "admin"
ADMIN_FUNDING = Decimal("10000000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def scenario_a_terms(start: datetime = START) -> Dict[str, Any]:
    """Keyword arguments for VestingService.vest() matching Scenario A."""
    return dict(
        total_amount=Decimal("1000000"),
        cliff_time=start + timedelta(days=30),
        cliff_amount=Decimal("250000"),
        duration=timedelta(days=180),
        interval=timedelta(days=30),
        revocable=True,
    )


def build_schedule(**overrides) -> VestingSchedule:
    """Scenario A schedule starting at START, with any field overridden."""
    fields = dict(beneficiary="alice", start_time=START, **scenario_a_terms())
    fields.update(overrides)
    return VestingSchedule(**fields)


def capture_state(service: VestingService, token: Any) -> Dict[str, Any]:
    """Everything an operation could touch, for before/after comparison."""
    return {
        'schedules': [service.get_schedule(b) for b in service.beneficiaries()],
        'snapshot': service.snapshot(),
        'vested': service.total_vested,
        'released': service.total_released,
        'withdrawn': service.total_withdrawn,
        'revoked': service.total_revoked,
        'pool': token.balance_of(POOL_WALLET),
        'admin': token.balance_of(ADMIN),
        'events': len(service.events),
    }


class FailingToken:
    """
    TokenTransfer wrapper that fails on demand.

    Set fail_on to "transfer_in" or "transfer_out", and mode to "reject"
    (return False) or "raise" (raise RuntimeError). Everything else is
    delegated to the wrapped TokenLedger.
    """

    def __init__(self, inner: TokenLedger):
        self.inner = inner
        self.fail_on: Optional[str] = None
        self.mode = "reject"
        self.calls = []

    def _maybe_fail(self, name: str) -> bool:
        self.calls.append(name)
        if self.fail_on != name:
            return False
        if self.mode == "raise":
            raise RuntimeError(f"{name} unavailable")
        return True

    def transfer_in(self, frm: str, amount: Decimal) -> bool:
        if self._maybe_fail("transfer_in"):
            return False
        return self.inner.transfer_in(frm, amount)

    def transfer_out(self, to: str, amount: Decimal) -> bool:
        if self._maybe_fail("transfer_out"):
            return False
        return self.inner.transfer_out(to, amount)

    def balance_of(self, holder: str) -> Decimal:
        return self.inner.balance_of(holder)


class CallbackToken:
    """
    TokenTransfer wrapper that runs a callback in the middle of each transfer.

    Models a token whose transfer hook calls back into the vesting service.
    Exceptions from the callback are recorded in `errors` and, unless
    propagate is set, swallowed so the transfer itself still goes through.
    """

    def __init__(self, inner: TokenLedger):
        self.inner = inner
        self.callback: Optional[Callable[[], Any]] = None
        self.propagate = False
        self.errors = []

    def _run_callback(self) -> None:
        if self.callback is None:
            return
        try:
            self.callback()
        except Exception as exc:
            self.errors.append(exc)
            if self.propagate:
                raise

    def transfer_in(self, frm: str, amount: Decimal) -> bool:
        self._run_callback()
        return self.inner.transfer_in(frm, amount)

    def transfer_out(self, to: str, amount: Decimal) -> bool:
        self._run_callback()
        return self.inner.transfer_out(to, amount)

    def balance_of(self, holder: str) -> Decimal:
        return self.inner.balance_of(holder)


def make_token(clock: Optional[ManualClock] = None) -> TokenLedger:
    token = TokenLedger("VEST", test_mode=True, clock=clock)
    token.register_wallet(ADMIN)
    token.mint(ADMIN, ADMIN_FUNDING)
    return token


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def start():
    return START


@pytest.fixture
def clock():
    """Logical clock at 2025-01-01."""
    return ManualClock(START)


@pytest.fixture
def token(clock):
    """Token ledger with the admin holding 10,000,000 issued from the system wallet."""
    return make_token(clock)


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def service(token, clock, events):
    """VestingService over the funded token ledger, administered by ADMIN."""
    return VestingService(token, SingleAdministrator(ADMIN), clock=clock, events=events)


@pytest.fixture
def vested_service(service):
    """Service with Scenario A vested for alice at START."""
    service.vest(ADMIN, "alice", **scenario_a_terms())
    return service


@pytest.fixture
def scenario_a():
    """Scenario A schedule for alice, as a bare VestingSchedule."""
    return build_schedule()


@pytest.fixture
def schedule_factory():
    return build_schedule


@pytest.fixture
def state_of():
    return capture_state


# =============================================================================
# FAILURE-INJECTION FIXTURES
# =============================================================================

@pytest.fixture
def failing_token(token):
    return FailingToken(token)


@pytest.fixture
def failing_service(failing_token, clock, events):
    """Scenario A vested for alice through a token that can be told to fail."""
    svc = VestingService(failing_token, SingleAdministrator(ADMIN), clock=clock, events=events)
    svc.vest(ADMIN, "alice", **scenario_a_terms())
    return svc


@pytest.fixture
def callback_token(token):
    return CallbackToken(token)


@pytest.fixture
def callback_service(callback_token, clock, events):
    """Scenario A vested for alice through a token that calls back on transfer."""
    svc = VestingService(callback_token, SingleAdministrator(ADMIN), clock=clock, events=events)
    svc.vest(ADMIN, "alice", **scenario_a_terms())
    return svc
