"""
Loss Waterfall Conformance Tests

INVARIANT: For a write-down of L with reserve balance R:

    reserve absorbs      min(L, R)
    LP NAV absorbs       L - min(L, R)
    reserve afterwards   R - min(L, R)

and the pool's books still reconcile with the wallet ledger.
"""

from hypothesis import given, settings, assume
from hypothesis import strategies as st

from creditpool import (
    GRACE_PERIOD, RECOVERY_WINDOW, RESERVE_WALLET,
)
from tests.conftest import ADMIN, OPERATOR, LP, BORROWER, INVOICE, build_pool, fund, lock_invoice


def defaulted_pool(reserve, drawn):
    pool, _, custody, clock = build_pool()
    fund(pool, LP, 10_000)
    pool.deposit(LP, 10_000)
    if reserve:
        fund(pool, ADMIN, reserve)
        pool.fund_reserve(ADMIN, reserve)
    lock_invoice(pool, custody, clock, face_value=5000)
    pool.draw_credit(BORROWER, INVOICE, drawn)
    clock.set(pool.get_position(INVOICE).due_date)
    pool.mark_overdue_and_start_grace(OPERATOR, INVOICE)
    clock.advance(GRACE_PERIOD)
    pool.declare_default(OPERATOR, INVOICE)
    clock.advance(RECOVERY_WINDOW)
    return pool, custody


class TestLossWaterfall:

    @given(
        reserve=st.integers(0, 5000),
        drawn=st.integers(1, 3000),
        loss=st.integers(1, 3000),
    )
    @settings(max_examples=100, deadline=None)
    def test_reserve_absorbs_first(self, reserve, drawn, loss):
        """
        PROPERTY: The reserve covers the loss up to its balance; only the
        remainder reaches LPs.
        """
        assume(loss <= drawn)
        pool, _ = defaulted_pool(reserve, drawn)
        pool.accrue_interest(OPERATOR, INVOICE)
        nav_before = pool.get_nav()

        result = pool.write_down_loss(ADMIN, INVOICE, loss)

        absorbed = min(loss, reserve)
        state = pool.pool_state()
        assert result.reserve_absorbed == absorbed
        assert result.lp_loss == loss - absorbed
        assert state.reserve_balance == reserve - absorbed
        assert state.total_losses == loss - absorbed
        assert pool.settlement.get_balance(RESERVE_WALLET, "USDC") == reserve - absorbed
        # NAV falls by the LP share of the loss plus the reversed interest
        assert pool.get_nav() == nav_before - result.lp_loss - result.interest_reversed
        assert pool.reconcile()['valid']

    @given(drawn=st.integers(1, 3000))
    @settings(max_examples=50, deadline=None)
    def test_full_write_down_liquidates(self, drawn):
        """
        PROPERTY: Writing off all principal archives the position and hands
        the collateral to the administrator.
        """
        pool, custody = defaulted_pool(0, drawn)
        result = pool.write_down_loss(ADMIN, INVOICE, drawn)
        assert result.liquidated
        assert not pool.has_position(INVOICE)
        assert custody.holder_of(INVOICE) == ADMIN
        assert pool.issuer_exposure(BORROWER) == 0
        assert pool.reconcile()['valid']
