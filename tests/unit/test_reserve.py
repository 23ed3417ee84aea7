"""
test_reserve.py - Unit tests for the first-loss reserve
"""

import pytest

from creditpool import InvalidAmount, InvalidParameter, calculate_nav, reserve_status
from creditpool import reserve
from tests.conftest import make_pool_state


def test_fund_and_withdraw():
    pool = reserve.fund(make_pool_state(), 500)
    assert pool.reserve_balance == 500
    pool = reserve.withdraw(pool, 200)
    assert pool.reserve_balance == 300


@pytest.mark.parametrize("amount", [0, -1])
def test_fund_requires_positive_amount(amount):
    with pytest.raises(InvalidAmount):
        reserve.fund(make_pool_state(), amount)


def test_withdraw_more_than_balance():
    with pytest.raises(InvalidAmount):
        reserve.withdraw(make_pool_state(reserve_balance=100), 101)


def test_set_target_bounds():
    assert reserve.set_target(make_pool_state(), 500).reserve_target_bps == 500
    with pytest.raises(InvalidParameter):
        reserve.set_target(make_pool_state(), 10_001)


def test_absorb_partial():
    pool, absorbed = reserve.absorb(make_pool_state(reserve_balance=500), 3000)
    assert absorbed == 500
    assert pool.reserve_balance == 0


def test_absorb_full():
    pool, absorbed = reserve.absorb(make_pool_state(reserve_balance=500), 200)
    assert absorbed == 200
    assert pool.reserve_balance == 300


def test_absorb_with_empty_reserve():
    original = make_pool_state()
    pool, absorbed = reserve.absorb(original, 200)
    assert absorbed == 0
    assert pool is original


def test_reserve_does_not_change_nav():
    pool = make_pool_state(total_liquidity_asset=1000, lp_share_supply=1000)
    assert calculate_nav(reserve.fund(pool, 500)) == calculate_nav(pool)


def test_status_against_target():
    pool = make_pool_state(
        total_liquidity_asset=10_000, lp_share_supply=10_000,
        reserve_balance=300, reserve_target_bps=500,
    )
    status = reserve_status(pool)
    assert status.target_amount == 500
    assert status.shortfall == 200
    assert not status.funded
