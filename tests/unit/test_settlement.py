"""
test_settlement.py - Unit tests for the double-entry wallet ledger

Tests:
- Move validation
- Issuance through SYSTEM_WALLET and conservation
- Atomic execution and rejection
- Idempotency on intent_id
- Transfer log and position index
"""

import pytest

from creditpool import (
    SYSTEM_WALLET, SettlementLedger, Move, PendingTransfer, ExecuteResult,
    InsufficientFunds, UnitNotRegistered,
)


@pytest.fixture
def ledger():
    ledger = SettlementLedger("test")
    ledger.register_unit("USDC", "USD Coin")
    ledger.issue("alice", "USDC", 1000)
    return ledger


class TestMove:

    @pytest.mark.parametrize("kwargs", [
        dict(quantity=0, unit_symbol="USDC", source="a", dest="b", reference="r"),
        dict(quantity=-1, unit_symbol="USDC", source="a", dest="b", reference="r"),
        dict(quantity=1, unit_symbol="USDC", source="a", dest="a", reference="r"),
        dict(quantity=1, unit_symbol="", source="a", dest="b", reference="r"),
        dict(quantity=1.0, unit_symbol="USDC", source="a", dest="b", reference="r"),
    ])
    def test_invalid_moves(self, kwargs):
        with pytest.raises(ValueError):
            Move(**kwargs)

    def test_intent_id_is_deterministic(self):
        moves = (Move(1, "USDC", "a", "b", "r"),)
        assert PendingTransfer(moves, "ref").intent_id == PendingTransfer(moves, "ref").intent_id
        assert PendingTransfer(moves, "ref").intent_id != PendingTransfer(moves, "other").intent_id


class TestIssuance:

    def test_issue_credits_wallet(self, ledger):
        assert ledger.get_balance("alice", "USDC") == 1000
        assert ledger.get_balance(SYSTEM_WALLET, "USDC") == -1000

    def test_supply_is_conserved(self, ledger):
        assert ledger.total_supply("USDC") == 0
        assert ledger.circulating_supply("USDC") == 1000
        assert ledger.verify_double_entry()['valid']

    def test_unknown_wallet_has_zero_balance(self, ledger):
        assert ledger.get_balance("nobody", "USDC") == 0

    def test_unknown_unit(self, ledger):
        with pytest.raises(UnitNotRegistered):
            ledger.get_balance("alice", "EUR")


class TestExecute:

    def test_transfer_applies_all_moves(self, ledger):
        pending = PendingTransfer(
            (Move(300, "USDC", "alice", "bob", "pay"), Move(100, "USDC", "bob", "carol", "pay")),
            reference="chain",
        )
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", "USDC") == 700
        assert ledger.get_balance("bob", "USDC") == 200
        assert ledger.get_balance("carol", "USDC") == 100

    def test_netting_within_a_transfer(self, ledger):
        # bob spends what he receives in the same transfer
        pending = PendingTransfer(
            (Move(100, "USDC", "bob", "carol", "pay"), Move(100, "USDC", "alice", "bob", "pay")),
            reference="netted",
        )
        assert ledger.execute(pending) == ExecuteResult.APPLIED

    def test_rejected_transfer_changes_nothing(self, ledger):
        pending = PendingTransfer(
            (Move(500, "USDC", "alice", "bob", "pay"), Move(600, "USDC", "alice", "carol", "pay")),
            reference="overdraft",
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.get_balance("alice", "USDC") == 1000
        assert ledger.get_balance("bob", "USDC") == 0

    def test_require_valid_raises(self, ledger):
        with pytest.raises(InsufficientFunds):
            ledger.require_valid(PendingTransfer((Move(1001, "USDC", "alice", "bob", "pay"),), "x"))
        with pytest.raises(UnitNotRegistered):
            ledger.require_valid(PendingTransfer((Move(1, "EUR", "alice", "bob", "pay"),), "x"))

    def test_idempotent_on_intent(self, ledger):
        pending = PendingTransfer((Move(100, "USDC", "alice", "bob", "pay"),), reference="once")
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", "USDC") == 100

    def test_transfer_log(self, ledger):
        ledger.execute(PendingTransfer((Move(100, "USDC", "alice", "bob", "pay"),), reference="logged"))
        last = ledger.transaction_log[-1]
        assert last.reference == "logged"
        assert last.transfer_id == f"xfer:test:{last.sequence_number:012d}"
        assert [t.sequence_number for t in ledger.transaction_log] == list(range(len(ledger.transaction_log)))

    def test_position_index(self, ledger):
        ledger.execute(PendingTransfer((Move(1000, "USDC", "alice", "bob", "pay"),), reference="all"))
        positions = ledger.get_positions("USDC")
        assert "alice" not in positions
        assert positions["bob"] == 1000

    def test_empty_transfer_is_noop(self, ledger):
        assert ledger.execute(PendingTransfer((), reference="nothing")) == ExecuteResult.APPLIED
        assert len(ledger.transaction_log) == 1
