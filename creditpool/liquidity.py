"""
liquidity.py - LP Share Accounting

Pure functions over PoolState for NAV, share pricing, utilization and the
deposit / withdraw / loss transitions.

Key Formulas:
    NAV = cash_book + principal + interest - losses - fees
    share_price = NAV * WAD / share_supply        (WAD when supply is zero)
    shares_minted = amount * WAD / share_price     (rounded down)
    amount_out = shares * share_price / WAD        (rounded down)
    utilization_bps = principal * 10000 / (cash_book + principal)

Share and payout math is evaluated in the exact form (amount * supply / NAV
and shares * NAV / supply) so that rounding never moves value from the pool
to the transacting LP. The share price is therefore non-decreasing across
deposits and withdrawals.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Tuple

from .core import (
    PoolState,
    InvalidAmount, InsufficientLiquidity, PoolInsolvent, UtilizationLimitExceeded,
)
from .fixed_point import (
    WAD, BPS_DENOMINATOR,
    checked_add, checked_sub, mul_div_down,
)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_nav(pool: PoolState) -> int:
    """
    Net asset value attributable to LP shares.

    Never negative: losses are clamped by apply_loss, and fees are backed by
    cash collected from repayments.
    """
    nav = (
        pool.total_liquidity_asset
        + pool.total_principal_outstanding
        + pool.total_interest_accrued
        - pool.total_losses
        - pool.protocol_fees_accrued
    )
    return max(nav, 0)


def calculate_share_price(pool: PoolState) -> int:
    if pool.lp_share_supply == 0:
        return WAD
    return mul_div_down(calculate_nav(pool), WAD, pool.lp_share_supply)


def calculate_utilization_bps(pool: PoolState, additional_principal: int = 0) -> int:
    """
    Fraction of pool liquidity lent out, in basis points.

    The denominator is the liquidity still backing the pool: cash on hand
    (net of realised losses) plus principal lent out. With additional_principal
    the result is the utilization after a draw of that size (the draw moves
    cash into principal, so the denominator is unchanged).
    """
    backing = calculate_cash_on_hand(pool) + pool.total_principal_outstanding
    principal = pool.total_principal_outstanding + additional_principal
    if backing == 0:
        return 0 if principal == 0 else BPS_DENOMINATOR
    return mul_div_down(principal, BPS_DENOMINATOR, backing)


def calculate_cash_on_hand(pool: PoolState) -> int:
    """Cash physically held in the pool wallet."""
    return max(pool.total_liquidity_asset - pool.total_losses, 0)


def calculate_available_liquidity(pool: PoolState) -> int:
    """Cash that can be lent or paid out: cash on hand less fees owed to the protocol."""
    return max(calculate_cash_on_hand(pool) - pool.protocol_fees_accrued, 0)


def calculate_shares_for_deposit(pool: PoolState, amount: int) -> int:
    """
    Shares minted for a deposit of `amount`, rounded down.

    Raises:
        PoolInsolvent: If shares exist but NAV is zero
    """
    if pool.lp_share_supply == 0:
        return mul_div_down(amount, WAD, WAD)
    nav = calculate_nav(pool)
    if nav == 0:
        raise PoolInsolvent("Pool NAV is zero while LP shares are outstanding")
    # amount * WAD / share_price, without the intermediate rounding of share_price
    return mul_div_down(amount, pool.lp_share_supply, nav)


def calculate_withdrawal_amount(pool: PoolState, shares: int) -> int:
    """Asset paid out for burning `shares`, rounded down."""
    if pool.lp_share_supply == 0:
        return 0
    return mul_div_down(shares, calculate_nav(pool), pool.lp_share_supply)


# ============================================================================
# TRANSITIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class DepositResult:
    pool: PoolState
    shares_minted: int
    share_price_wad: int


@dataclass(frozen=True, slots=True)
class WithdrawalResult:
    pool: PoolState
    amount_out: int
    share_price_wad: int


def deposit(pool: PoolState, amount: int) -> DepositResult:
    """
    Stage an LP deposit.

    The paused check belongs to the caller; this function only applies the
    share math.

    Raises:
        InvalidAmount: If amount <= 0 or the deposit would mint zero shares
        PoolInsolvent: If no share price exists
    """
    if amount <= 0:
        raise InvalidAmount(f"Deposit amount must be positive, got {amount}")
    price = calculate_share_price(pool)
    shares = calculate_shares_for_deposit(pool, amount)
    if shares == 0:
        raise InvalidAmount(f"Deposit of {amount} is below the value of one share")
    new_pool = replace(
        pool,
        total_liquidity_asset=checked_add(pool.total_liquidity_asset, amount),
        lp_share_supply=checked_add(pool.lp_share_supply, shares),
    )
    return DepositResult(pool=new_pool, shares_minted=shares, share_price_wad=price)


def withdraw(pool: PoolState, shares: int) -> WithdrawalResult:
    """
    Stage an LP withdrawal.

    Share-balance and paused checks belong to the caller.

    Raises:
        InvalidAmount: If shares <= 0 or the payout rounds to zero
        UtilizationLimitExceeded: If the pool is at or above its utilization cap
        InsufficientLiquidity: If the payout exceeds available cash
    """
    if shares <= 0:
        raise InvalidAmount(f"Withdrawal shares must be positive, got {shares}")
    if shares > pool.lp_share_supply:
        raise InvalidAmount(f"Cannot burn {shares} shares, supply is {pool.lp_share_supply}")

    utilization = calculate_utilization_bps(pool)
    if utilization >= pool.max_utilization_bps:
        raise UtilizationLimitExceeded(
            f"Withdrawals blocked: utilization {utilization} bps >= cap {pool.max_utilization_bps} bps"
        )

    price = calculate_share_price(pool)
    amount_out = calculate_withdrawal_amount(pool, shares)
    if amount_out == 0:
        raise InvalidAmount(f"Withdrawal of {shares} shares is worth nothing")
    available = calculate_available_liquidity(pool)
    if amount_out > available:
        raise InsufficientLiquidity(
            f"Withdrawal of {amount_out} exceeds available liquidity {available}"
        )

    new_pool = replace(
        pool,
        total_liquidity_asset=checked_sub(pool.total_liquidity_asset, amount_out),
        lp_share_supply=checked_sub(pool.lp_share_supply, shares),
    )
    return WithdrawalResult(pool=new_pool, amount_out=amount_out, share_price_wad=price)


def apply_loss(pool: PoolState, amount: int) -> Tuple[PoolState, int]:
    """
    Charge a realised loss to LP NAV.

    Never raises. The applied amount is clamped so NAV cannot go negative;
    the caller receives the amount actually applied.

    Returns:
        (new_pool, applied)
    """
    if amount <= 0:
        return pool, 0
    applied = min(amount, calculate_nav(pool))
    if applied == 0:
        return pool, 0
    return replace(pool, total_losses=pool.total_losses + applied), applied
