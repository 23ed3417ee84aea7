"""
positions.py - Per-Collateral Credit Positions

Pure functions for the credit side of a position's lifecycle:

    NONE -> LOCKED -> DRAWN (repeatable draw/repay) -> ... -> RELEASED

ARCHITECTURE (Pure Function Pattern):
=====================================

1. Position and PoolState are frozen snapshots (see core.py).

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - Example: calculate_max_credit_line(face_value, ltv_bps) -> int

3. TRANSITIONS (open_position, draw, apply_payment, ...):
   - Take the current snapshots, validate, and return new snapshots
   - Raise the specific PoolError on any violated precondition
   - Never touch the settlement ledger or custody; FinancingPool does that

Payments are applied interest-first. A protocol_fee_bps share of the
interest collected is booked to protocol_fees_accrued; the remainder stays
in pool cash as LP yield.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Iterable, Tuple

from .config import PoolConfig
from .core import (
    OverpaymentPolicy, Position, PoolState, RecourseMode, Repayment, Resolution,
    AlreadyInDefault, CreditLineExceeded, InsufficientLiquidity, InvalidAmount,
    InvalidParameter, InvalidPositionState, OverpaymentRejected,
)
from .fixed_point import bps_of, checked_add, checked_sub
from .liquidity import calculate_available_liquidity


TERMINAL_RESOLUTIONS = frozenset({Resolution.WRITTEN_DOWN, Resolution.RECOURSE_CLAIMED})


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_max_credit_line(face_value: int, ltv_bps: int) -> int:
    return bps_of(face_value, ltv_bps)


def calculate_issuer_exposure(positions: Iterable[Position], owner: str) -> int:
    """Sum of used_credit across `owner`'s live positions."""
    return sum(p.used_credit for p in positions if p.owner == owner)


def calculate_payment_allocation(
    position: Position,
    amount: int,
    protocol_fee_bps: int,
    policy: OverpaymentPolicy,
) -> Repayment:
    """
    Split a payment into interest, principal and protocol fee.

    PURE FUNCTION - the position must already be accrued to the payment time.

    interest_paid = min(amount, interest_accrued)
    principal_paid = min(amount - interest_paid, used_credit)
    protocol_fee = interest_paid * protocol_fee_bps / 10000 (rounded down)

    Raises:
        InvalidAmount: If amount <= 0 or there is no debt to pay
        OverpaymentRejected: If amount exceeds the debt under the REJECT policy
    """
    if amount <= 0:
        raise InvalidAmount(f"Payment amount must be positive, got {amount}")
    debt = position.total_debt
    if debt == 0:
        raise InvalidAmount(f"Position {position.collateral_ref} has no outstanding debt")
    if amount > debt and policy == OverpaymentPolicy.REJECT:
        raise OverpaymentRejected(
            f"Payment {amount} exceeds outstanding debt {debt} on {position.collateral_ref}"
        )

    interest_paid = min(amount, position.interest_accrued)
    principal_paid = min(amount - interest_paid, position.used_credit)
    paid = interest_paid + principal_paid
    return Repayment(
        collateral_ref=position.collateral_ref,
        amount_offered=amount,
        amount_paid=paid,
        interest_paid=interest_paid,
        principal_paid=principal_paid,
        protocol_fee=bps_of(interest_paid, protocol_fee_bps),
        remaining_debt=debt - paid,
    )


# ============================================================================
# TRANSITIONS
# ============================================================================

def open_position(
    collateral_ref: str,
    owner: str,
    face_value: int,
    due_date: int,
    now: int,
    config: PoolConfig,
) -> Position:
    """
    Create the position for freshly locked collateral.

    New positions are NON_RECOURSE at the non-recourse LTV.
    """
    if not collateral_ref:
        raise InvalidParameter("collateral_ref cannot be empty")
    if not owner:
        raise InvalidParameter("owner cannot be empty")
    if face_value <= 0:
        raise InvalidAmount(f"face_value must be positive, got {face_value}")
    if due_date <= now:
        raise InvalidParameter(f"due_date {due_date} must be after the current time {now}")

    ltv = config.ltv_for(RecourseMode.NON_RECOURSE)
    return Position(
        owner=owner,
        collateral_ref=collateral_ref,
        face_value=face_value,
        ltv_bps=ltv,
        max_credit_line=calculate_max_credit_line(face_value, ltv),
        recourse_mode=RecourseMode.NON_RECOURSE,
        due_date=due_date,
        last_accrual_timestamp=now,
        created_at=now,
    )


def change_recourse_mode(position: Position, mode: RecourseMode, config: PoolConfig) -> Position:
    """
    Switch recourse mode and re-derive LTV and credit line.

    Raises:
        AlreadyInDefault: If the position is in default
        InvalidPositionState: If the position already reached a terminal resolution
        CreditLineExceeded: If used credit would exceed the new credit line
    """
    mode = RecourseMode(mode)
    if position.is_in_default:
        raise AlreadyInDefault(f"Cannot change recourse mode of defaulted {position.collateral_ref}")
    if position.resolution in TERMINAL_RESOLUTIONS:
        raise InvalidPositionState(
            f"Position {position.collateral_ref} is resolved ({position.resolution.name})"
        )
    ltv = config.ltv_for(mode)
    line = calculate_max_credit_line(position.face_value, ltv)
    if position.used_credit > line:
        raise CreditLineExceeded(
            f"Used credit {position.used_credit} exceeds the {mode.name} credit line {line}"
        )
    return replace(position, recourse_mode=mode, ltv_bps=ltv, max_credit_line=line)


def check_drawable(position: Position) -> None:
    if position.is_in_default:
        raise AlreadyInDefault(f"Position {position.collateral_ref} is in default")
    if position.resolution in TERMINAL_RESOLUTIONS:
        raise InvalidPositionState(
            f"Position {position.collateral_ref} is resolved ({position.resolution.name})"
        )


def draw(position: Position, pool: PoolState, amount: int) -> Tuple[Position, PoolState]:
    """
    Move `amount` of pool cash into the position's principal.

    RiskGuard is not consulted here; the caller runs it on the accrued pool
    before calling draw().

    Raises:
        InvalidAmount: If amount <= 0
        CreditLineExceeded: If used_credit + amount > max_credit_line
        InsufficientLiquidity: If amount exceeds available pool cash
    """
    if amount <= 0:
        raise InvalidAmount(f"Draw amount must be positive, got {amount}")
    check_drawable(position)
    if position.used_credit + amount > position.max_credit_line:
        raise CreditLineExceeded(
            f"Draw of {amount} exceeds remaining credit {position.available_credit} "
            f"on {position.collateral_ref} (line {position.max_credit_line})"
        )
    available = calculate_available_liquidity(pool)
    if amount > available:
        raise InsufficientLiquidity(f"Draw of {amount} exceeds available liquidity {available}")

    new_position = replace(
        position,
        used_credit=position.used_credit + amount,
        resolution=Resolution.NONE,
    )
    new_pool = replace(
        pool,
        total_liquidity_asset=checked_sub(pool.total_liquidity_asset, amount),
        total_principal_outstanding=checked_add(pool.total_principal_outstanding, amount),
    )
    return new_position, new_pool


def apply_payment(
    position: Position,
    pool: PoolState,
    allocation: Repayment,
) -> Tuple[Position, PoolState]:
    """
    Book a payment allocation on the position and the pool.

    Interest and principal collected both enter pool cash; the protocol's cut
    of the interest is recorded as a liability in protocol_fees_accrued.
    """
    new_position = replace(
        position,
        interest_accrued=checked_sub(position.interest_accrued, allocation.interest_paid),
        used_credit=checked_sub(position.used_credit, allocation.principal_paid),
        total_interest_paid=position.total_interest_paid + allocation.interest_paid,
        total_principal_paid=position.total_principal_paid + allocation.principal_paid,
    )
    new_pool = replace(
        pool,
        total_liquidity_asset=checked_add(pool.total_liquidity_asset, allocation.amount_paid),
        total_interest_accrued=checked_sub(pool.total_interest_accrued, allocation.interest_paid),
        total_principal_outstanding=checked_sub(
            pool.total_principal_outstanding, allocation.principal_paid
        ),
        protocol_fees_accrued=checked_add(pool.protocol_fees_accrued, allocation.protocol_fee),
    )
    return new_position, new_pool


def repay(
    position: Position,
    pool: PoolState,
    amount: int,
    policy: OverpaymentPolicy,
) -> Tuple[Position, PoolState, Repayment]:
    """
    Stage a regular repayment on an accrued position.

    Full clearance marks the position REPAID and stops any grace timer.

    Raises:
        AlreadyInDefault: Defaulted positions settle through recourse or write-down
    """
    if position.is_in_default:
        raise AlreadyInDefault(
            f"Position {position.collateral_ref} is in default; use pay_recourse or write_down_loss"
        )
    if position.resolution in TERMINAL_RESOLUTIONS:
        raise InvalidPositionState(
            f"Position {position.collateral_ref} is resolved ({position.resolution.name})"
        )
    allocation = calculate_payment_allocation(position, amount, pool.protocol_fee_bps, policy)
    new_position, new_pool = apply_payment(position, pool, allocation)
    if allocation.cleared:
        new_position = replace(new_position, resolution=Resolution.REPAID, grace_ends_at=0)
    return new_position, new_pool, allocation


def check_releasable(position: Position) -> None:
    """
    Raises:
        AlreadyInDefault: If the position is in default
        InvalidPositionState: If any principal or interest is outstanding
    """
    if position.is_in_default:
        raise AlreadyInDefault(f"Position {position.collateral_ref} is in default")
    if position.used_credit != 0 or position.interest_accrued != 0:
        raise InvalidPositionState(
            f"Position {position.collateral_ref} still owes {position.total_debt}"
        )
