"""
test_accountant.py - Unit tests for LedgerAccountant

Tests:
- apply_vest / apply_release / apply_withdraw / apply_revoke bookkeeping
- Rejection (never clamping) of invariant-breaking proposals
- Checkpoint and restore
- Post-commit conservation check rolls back on violation
- verify_conservation against schedules
"""

import pytest
from dataclasses import replace
from decimal import Decimal

from vesting import (
    LedgerAccountant,
    ConservationViolation, DuplicateSchedule, InsufficientBalance, InvalidInput, NoSchedule,
)


@pytest.fixture
def accountant():
    acct = LedgerAccountant()
    acct.apply_vest("alice", Decimal("1000"))
    return acct


class TestApply:

    def test_vest_opens_account(self, accountant):
        assert accountant.held_tokens == Decimal("1000")
        assert accountant.total_vested == {"alice": Decimal("1000")}
        assert accountant.total_allocated == {"alice": Decimal("1000")}
        assert accountant.total_released == {"alice": Decimal("0")}

    def test_release_keeps_held_tokens(self, accountant):
        snap = accountant.apply_release("alice", Decimal("250"))
        assert snap.released == Decimal("250")
        assert snap.vested == Decimal("1000")
        assert accountant.held_tokens == Decimal("1000")

    def test_withdraw_reduces_vested_and_held(self, accountant):
        accountant.apply_release("alice", Decimal("250"))
        snap = accountant.apply_withdraw("alice", Decimal("100"))
        assert snap.withdrawn == Decimal("100")
        assert snap.vested == Decimal("900")
        assert accountant.held_tokens == Decimal("900")

    def test_revoke_reduces_vested_and_held(self, accountant):
        accountant.apply_release("alice", Decimal("400"))
        snap = accountant.apply_revoke("alice", Decimal("600"))
        assert snap.revoked == Decimal("600")
        assert snap.vested == Decimal("400")
        assert accountant.held_tokens == Decimal("400")

    def test_zero_revoke_allowed(self, accountant):
        accountant.apply_release("alice", Decimal("1000"))
        snap = accountant.apply_revoke("alice", Decimal("0"))
        assert snap.revoked == Decimal("0")
        assert accountant.held_tokens == Decimal("1000")

    def test_maps_are_copies(self, accountant):
        accountant.total_vested["alice"] = Decimal("0")
        assert accountant.total_vested["alice"] == Decimal("1000")

    def test_held_tokens_sums_beneficiaries(self, accountant):
        accountant.apply_vest("bob", Decimal("500"))
        assert accountant.held_tokens == Decimal("1500")
        assert accountant.snapshot().beneficiary_count == 2


class TestRejection:

    def test_duplicate_vest(self, accountant):
        with pytest.raises(DuplicateSchedule):
            accountant.apply_vest("alice", Decimal("1"))

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_non_positive_amounts(self, accountant, amount):
        with pytest.raises(InvalidInput):
            accountant.apply_release("alice", amount)

    def test_negative_revoke(self, accountant):
        with pytest.raises(InvalidInput):
            accountant.apply_revoke("alice", Decimal("-1"))

    def test_unknown_beneficiary(self, accountant):
        with pytest.raises(NoSchedule):
            accountant.apply_release("bob", Decimal("1"))

    def test_withdraw_more_than_released(self, accountant):
        accountant.apply_release("alice", Decimal("100"))
        with pytest.raises(InsufficientBalance, match="exceed released"):
            accountant.apply_withdraw("alice", Decimal("101"))
        assert accountant.total_withdrawn["alice"] == Decimal("0")

    def test_release_more_than_allocated(self, accountant):
        with pytest.raises(InsufficientBalance):
            accountant.apply_release("alice", Decimal("1001"))
        assert accountant.total_released["alice"] == Decimal("0")

    def test_revoke_more_than_locked(self, accountant):
        accountant.apply_release("alice", Decimal("400"))
        with pytest.raises(InsufficientBalance):
            accountant.apply_revoke("alice", Decimal("601"))
        assert accountant.held_tokens == Decimal("1000")


class TestCheckpoint:

    def test_restore_undoes_everything(self, accountant):
        saved = accountant.checkpoint()
        accountant.apply_release("alice", Decimal("300"))
        accountant.apply_withdraw("alice", Decimal("300"))
        accountant.apply_vest("bob", Decimal("50"))

        accountant.restore(saved)

        assert accountant.held_tokens == Decimal("1000")
        assert accountant.total_vested == {"alice": Decimal("1000")}
        assert "bob" not in accountant.total_allocated

    def test_failed_conservation_check_restores(self, accountant):
        # Corrupt the counter so the next commit's conservation check fails.
        accountant._held_tokens += Decimal("1")
        with pytest.raises(ConservationViolation):
            accountant.apply_release("alice", Decimal("10"))
        assert accountant.total_released["alice"] == Decimal("0")


class TestVerifyConservation:

    def test_matches_schedules(self, scenario_a):
        acct = LedgerAccountant()
        acct.apply_vest("alice", scenario_a.total_amount)
        acct.apply_release("alice", Decimal("400000"))
        acct.apply_withdraw("alice", Decimal("100000"))
        schedule = replace(scenario_a, released_amount=Decimal("400000"),
                           withdrawn_amount=Decimal("100000"))

        report = acct.verify_conservation([schedule])

        assert report['valid'], report['discrepancies']
        assert report['held_tokens'] == Decimal("900000")
        assert report['expected_held_tokens'] == Decimal("900000")

    def test_reports_mismatch(self, scenario_a):
        acct = LedgerAccountant()
        acct.apply_vest("alice", scenario_a.total_amount)
        schedule = replace(scenario_a, released_amount=Decimal("250000"))

        report = acct.verify_conservation([schedule])

        assert not report['valid']
        fields = {d['field'] for d in report['discrepancies']}
        assert 'released' in fields

    def test_reports_account_without_schedule(self, accountant):
        report = accountant.verify_conservation([])
        assert not report['valid']
        assert any(d['field'] == 'schedule' for d in report['discrepancies'])

    def test_check_conservation_passes_on_clean_ledger(self, accountant):
        accountant.apply_release("alice", Decimal("10"))
        accountant.check_conservation()
