"""
test_liquidity.py - Unit tests for LP share accounting

Tests:
- NAV and share price
- Utilization, cash on hand and available liquidity
- Deposit share minting (first deposit 1:1, later at NAV)
- Withdrawal payout and its rejections
- Loss application clamped at NAV
"""

import pytest

from creditpool import (
    WAD, InvalidAmount, InsufficientLiquidity, PoolInsolvent, UtilizationLimitExceeded,
    calculate_nav, calculate_share_price, calculate_utilization_bps,
    calculate_available_liquidity, calculate_shares_for_deposit, calculate_withdrawal_amount,
)
from creditpool import liquidity
from tests.conftest import make_pool_state


class TestCalculations:

    def test_nav_formula(self):
        pool = make_pool_state(
            total_liquidity_asset=1000,
            total_principal_outstanding=500,
            total_interest_accrued=50,
            total_losses=100,
            protocol_fees_accrued=5,
        )
        assert calculate_nav(pool) == 1445

    def test_nav_never_negative(self):
        assert calculate_nav(make_pool_state(total_losses=10)) == 0

    def test_share_price_empty_pool_is_one(self):
        assert calculate_share_price(make_pool_state()) == WAD

    def test_share_price_tracks_nav(self):
        pool = make_pool_state(total_liquidity_asset=1100, lp_share_supply=1000)
        assert calculate_share_price(pool) == 11 * WAD // 10

    def test_utilization(self):
        pool = make_pool_state(total_liquidity_asset=2000, total_principal_outstanding=8000)
        assert calculate_utilization_bps(pool) == 8000
        assert calculate_utilization_bps(pool, additional_principal=100) == 8100

    def test_utilization_empty_pool(self):
        pool = make_pool_state()
        assert calculate_utilization_bps(pool) == 0
        assert calculate_utilization_bps(pool, additional_principal=1) == 10_000

    def test_utilization_measured_against_cash_after_losses(self):
        # 3,000 written off: 7,000 of cash still backs the pool
        pool = make_pool_state(total_liquidity_asset=10_000, total_losses=3000)
        assert calculate_utilization_bps(pool, additional_principal=6500) == 9285

    def test_available_liquidity_excludes_losses_and_fees(self):
        pool = make_pool_state(total_liquidity_asset=1000, total_losses=200, protocol_fees_accrued=50)
        assert liquidity.calculate_cash_on_hand(pool) == 800
        assert calculate_available_liquidity(pool) == 750

    def test_available_liquidity_clamped(self):
        pool = make_pool_state(total_liquidity_asset=100, total_losses=100, protocol_fees_accrued=5)
        assert calculate_available_liquidity(pool) == 0

    def test_first_deposit_is_one_to_one(self):
        assert calculate_shares_for_deposit(make_pool_state(), 1000) == 1000

    def test_deposit_at_premium_rounds_down(self):
        pool = make_pool_state(total_liquidity_asset=1500, lp_share_supply=1000)
        assert calculate_shares_for_deposit(pool, 100) == 66

    def test_deposit_into_insolvent_pool(self):
        pool = make_pool_state(total_liquidity_asset=100, total_losses=100, lp_share_supply=100)
        with pytest.raises(PoolInsolvent):
            calculate_shares_for_deposit(pool, 10)

    def test_withdrawal_amount_rounds_down(self):
        pool = make_pool_state(total_liquidity_asset=1000, lp_share_supply=3)
        assert calculate_withdrawal_amount(pool, 1) == 333


class TestDeposit:

    def test_deposit_updates_books(self):
        result = liquidity.deposit(make_pool_state(), 1000)
        assert result.shares_minted == 1000
        assert result.share_price_wad == WAD
        assert result.pool.total_liquidity_asset == 1000
        assert result.pool.lp_share_supply == 1000

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_deposit(self, amount):
        with pytest.raises(InvalidAmount):
            liquidity.deposit(make_pool_state(), amount)

    def test_dust_deposit_rejected(self):
        pool = make_pool_state(total_liquidity_asset=3000, lp_share_supply=1000)
        with pytest.raises(InvalidAmount):
            liquidity.deposit(pool, 2)

    def test_deposit_does_not_change_share_price(self):
        pool = make_pool_state(total_liquidity_asset=1500, lp_share_supply=1000)
        after = liquidity.deposit(pool, 300).pool
        assert calculate_share_price(after) == calculate_share_price(pool)


class TestWithdraw:

    def test_withdraw_full_supply(self):
        pool = make_pool_state(total_liquidity_asset=1000, lp_share_supply=1000)
        result = liquidity.withdraw(pool, 1000)
        assert result.amount_out == 1000
        assert result.pool.total_liquidity_asset == 0
        assert result.pool.lp_share_supply == 0

    def test_withdraw_more_than_supply(self):
        pool = make_pool_state(total_liquidity_asset=1000, lp_share_supply=1000)
        with pytest.raises(InvalidAmount):
            liquidity.withdraw(pool, 1001)

    def test_withdraw_blocked_at_utilization_cap(self):
        pool = make_pool_state(
            total_liquidity_asset=2000, total_principal_outstanding=8000, lp_share_supply=10_000,
        )
        with pytest.raises(UtilizationLimitExceeded):
            liquidity.withdraw(pool, 1)

    def test_withdraw_beyond_cash(self):
        pool = make_pool_state(
            total_liquidity_asset=4000, total_principal_outstanding=6000, lp_share_supply=10_000,
        )
        with pytest.raises(InsufficientLiquidity):
            liquidity.withdraw(pool, 5000)

    def test_withdraw_zero_value(self):
        pool = make_pool_state(total_liquidity_asset=1, lp_share_supply=1000)
        with pytest.raises(InvalidAmount):
            liquidity.withdraw(pool, 1)


class TestApplyLoss:

    def test_loss_reduces_nav(self):
        pool = make_pool_state(total_liquidity_asset=1000, lp_share_supply=1000)
        new_pool, applied = liquidity.apply_loss(pool, 250)
        assert applied == 250
        assert calculate_nav(new_pool) == 750

    def test_loss_clamped_at_nav(self):
        pool = make_pool_state(total_liquidity_asset=100, lp_share_supply=100)
        new_pool, applied = liquidity.apply_loss(pool, 500)
        assert applied == 100
        assert calculate_nav(new_pool) == 0

    def test_zero_loss_is_noop(self):
        pool = make_pool_state(total_liquidity_asset=100)
        assert liquidity.apply_loss(pool, 0) == (pool, 0)
