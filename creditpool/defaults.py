"""
defaults.py - Default Resolution State Machine

Time-gated transitions from an overdue position to one of its terminal
resolutions:

    DRAWN --(now >= due_date)--> OVERDUE
    OVERDUE --mark_overdue--> GRACE (grace_ends_at = now + grace_period)
    GRACE --(now >= grace_ends_at)--> DEFAULT (is_in_default, default_declared_at)
    DEFAULT --pay_recourse (RECOURSE, full clearance)--> RECOURSE_CLAIMED
    DEFAULT --write_down (NON_RECOURSE, after recovery window)--> WRITTEN_DOWN

Timers are plain comparisons of the clock against stored timestamps.

Write-down waterfall for a loss L on a NON_RECOURSE position:
    1. The position's accrued interest is reversed as uncollectible.
    2. used_credit and total_principal_outstanding fall by L.
    3. The reserve absorbs R = min(L, reserve_balance); that cash moves from
       the reserve wallet into the pool.
    4. The shortfall L - R is charged to LP NAV through apply_loss.

PURE FUNCTIONS - all inputs explicit; FinancingPool applies the results.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Tuple

from . import liquidity, reserve
from .core import (
    OverpaymentPolicy, Position, PoolState, RecourseMode, Repayment, Resolution, WriteDown,
    AlreadyInDefault, GracePeriodAlreadyStarted, GracePeriodNotElapsed, GracePeriodNotStarted,
    InvalidAmount, InvalidPositionState, NotInDefault, NotOverdue, RecourseModeMismatch,
    RecoveryWindowNotElapsed,
)
from .fixed_point import checked_add, checked_sub
from .positions import TERMINAL_RESOLUTIONS, apply_payment, calculate_payment_allocation


def start_grace(position: Position, now: int, grace_period: int) -> Position:
    """
    Mark a position overdue and open its grace period.

    Raises:
        NotOverdue: If now < due_date
        GracePeriodAlreadyStarted: If a grace period is already running
        AlreadyInDefault: If the position is already in default
        InvalidPositionState: If nothing is owed or the position is resolved
    """
    if position.is_in_default:
        raise AlreadyInDefault(f"Position {position.collateral_ref} is already in default")
    if position.grace_ends_at != 0:
        raise GracePeriodAlreadyStarted(
            f"Grace period for {position.collateral_ref} already ends at {position.grace_ends_at}"
        )
    if now < position.due_date:
        raise NotOverdue(
            f"Position {position.collateral_ref} is not due until {position.due_date} (now {now})"
        )
    if position.resolution in TERMINAL_RESOLUTIONS:
        raise InvalidPositionState(
            f"Position {position.collateral_ref} is resolved ({position.resolution.name})"
        )
    if position.total_debt == 0:
        raise InvalidPositionState(f"Position {position.collateral_ref} has no outstanding debt")
    return replace(position, grace_ends_at=now + grace_period)


def declare_default(position: Position, now: int) -> Position:
    """
    Raises:
        GracePeriodNotStarted: If mark_overdue_and_start_grace never ran
        GracePeriodNotElapsed: If now < grace_ends_at
        AlreadyInDefault: If the position is already in default
    """
    if position.is_in_default:
        raise AlreadyInDefault(f"Position {position.collateral_ref} is already in default")
    if position.grace_ends_at == 0:
        raise GracePeriodNotStarted(f"No grace period started for {position.collateral_ref}")
    if now < position.grace_ends_at:
        raise GracePeriodNotElapsed(
            f"Grace period for {position.collateral_ref} ends at {position.grace_ends_at} (now {now})"
        )
    return replace(position, is_in_default=True, default_declared_at=now)


def pay_recourse(
    position: Position,
    pool: PoolState,
    amount: int,
    policy: OverpaymentPolicy,
    partial_cure: bool = False,
) -> Tuple[Position, PoolState, Repayment]:
    """
    Settle a defaulted RECOURSE position from the borrower's own funds.

    Uses the repayment allocation (interest first, protocol fee on interest).
    Full clearance resolves the position as RECOURSE_CLAIMED and lifts the
    default. With partial_cure, any payment returns the position to active.

    Raises:
        RecourseModeMismatch: If the position is NON_RECOURSE
        NotInDefault: If the position is not in default
    """
    if position.recourse_mode != RecourseMode.RECOURSE:
        raise RecourseModeMismatch(
            f"pay_recourse requires a RECOURSE position; {position.collateral_ref} is "
            f"{position.recourse_mode.name}"
        )
    if not position.is_in_default:
        raise NotInDefault(f"Position {position.collateral_ref} is not in default")

    allocation = calculate_payment_allocation(position, amount, pool.protocol_fee_bps, policy)
    new_position, new_pool = apply_payment(position, pool, allocation)
    if allocation.cleared:
        new_position = replace(
            new_position,
            resolution=Resolution.RECOURSE_CLAIMED,
            is_in_default=False,
            grace_ends_at=0,
        )
    elif partial_cure:
        new_position = replace(
            new_position,
            is_in_default=False,
            grace_ends_at=0,
            resolution=Resolution.NONE,
        )
    return new_position, new_pool, allocation


def write_down(
    position: Position,
    pool: PoolState,
    loss_amount: int,
    now: int,
    recovery_window: int,
) -> Tuple[Position, PoolState, WriteDown]:
    """
    Recognise a realised loss on a defaulted NON_RECOURSE position.

    The position must already be accrued to `now`. When used credit reaches
    zero the result is flagged liquidated and the caller takes the collateral.

    Raises:
        RecourseModeMismatch: If the position is RECOURSE
        NotInDefault: If the position is not in default
        RecoveryWindowNotElapsed: If now < default_declared_at + recovery_window
        InvalidAmount: If loss_amount is not in (0, used_credit]
    """
    if position.recourse_mode != RecourseMode.NON_RECOURSE:
        raise RecourseModeMismatch(
            f"write_down_loss requires a NON_RECOURSE position; {position.collateral_ref} is "
            f"{position.recourse_mode.name}"
        )
    if not position.is_in_default:
        raise NotInDefault(f"Position {position.collateral_ref} is not in default")
    recoverable_until = position.default_declared_at + recovery_window
    if now < recoverable_until:
        raise RecoveryWindowNotElapsed(
            f"Recovery window for {position.collateral_ref} runs until {recoverable_until} (now {now})"
        )
    if loss_amount <= 0 or loss_amount > position.used_credit:
        raise InvalidAmount(
            f"Write-down must be in (0, {position.used_credit}] for {position.collateral_ref}, "
            f"got {loss_amount}"
        )

    # Interest on a written-down loan is never collected
    interest_reversed = position.interest_accrued
    staged = replace(
        pool,
        total_interest_accrued=checked_sub(pool.total_interest_accrued, interest_reversed),
        total_principal_outstanding=checked_sub(pool.total_principal_outstanding, loss_amount),
    )

    staged, absorbed = reserve.absorb(staged, loss_amount)
    shortfall = loss_amount - absorbed
    # The written-off principal enters the cash book: the absorbed part is real
    # reserve cash, the shortfall is offset by total_losses.
    staged = replace(
        staged,
        total_liquidity_asset=checked_add(staged.total_liquidity_asset, loss_amount),
    )
    nav = liquidity.calculate_nav(staged)
    if shortfall > nav:
        raise InvalidAmount(
            f"Write-down shortfall {shortfall} exceeds pool NAV {nav} on {position.collateral_ref}"
        )
    staged, lp_loss = liquidity.apply_loss(staged, shortfall)

    remaining = position.used_credit - loss_amount
    new_position = replace(
        position,
        used_credit=remaining,
        interest_accrued=0,
        resolution=Resolution.WRITTEN_DOWN,
        total_written_down=position.total_written_down + loss_amount,
        liquidated=remaining == 0,
    )
    result = WriteDown(
        collateral_ref=position.collateral_ref,
        loss_amount=loss_amount,
        reserve_absorbed=absorbed,
        lp_loss=lp_loss,
        interest_reversed=interest_reversed,
        remaining_principal=remaining,
        liquidated=remaining == 0,
    )
    return new_position, staged, result
