"""
interest.py - Continuous Interest Accrual

Simple (non-compounding) interest on a position's used credit at the pool-wide
borrow APR:

    delta = used_credit * borrow_apr_wad * elapsed / (SECONDS_PER_YEAR * WAD)

rounded down. The fraction lost to rounding is carried on the position as
accrual_remainder, so frequent accruals charge the same total as one long one.
Accrued interest is added both to the position and to the pool's
total_interest_accrued, so NAV grows as interest is earned.

PURE FUNCTIONS - positions and pools go in, new snapshots come out.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Tuple

from .core import Position, PoolState, SECONDS_PER_YEAR
from .fixed_point import WAD, checked_add

# Denominator of the accrual fraction; accrual_remainder is in these units.
ACCRUAL_SCALE = SECONDS_PER_YEAR * WAD


def _accrual_numerator(used_credit: int, apr_wad: int, elapsed: int, remainder: int = 0) -> int:
    if used_credit <= 0 or apr_wad <= 0 or elapsed <= 0:
        return remainder
    return used_credit * apr_wad * elapsed + remainder


def calculate_interest_delta(used_credit: int, apr_wad: int, elapsed: int) -> int:
    """
    Interest owed on `used_credit` over `elapsed` seconds.

    Example:
        300 units at 15% for one year:
        calculate_interest_delta(300, to_wad("0.15"), SECONDS_PER_YEAR) == 45
    """
    if used_credit <= 0 or apr_wad <= 0 or elapsed <= 0:
        return 0
    return _accrual_numerator(used_credit, apr_wad, elapsed) // ACCRUAL_SCALE


def calculate_pending_interest(position: Position, apr_wad: int, now: int) -> int:
    """Interest accrued since the last accrual but not yet booked."""
    if position.used_credit <= 0:
        return 0
    numerator = _accrual_numerator(
        position.used_credit, apr_wad, now - position.last_accrual_timestamp,
        position.accrual_remainder,
    )
    return numerator // ACCRUAL_SCALE


def calculate_total_debt(position: Position, apr_wad: int, now: int) -> int:
    """used_credit + interest_accrued + pending interest."""
    return position.total_debt + calculate_pending_interest(position, apr_wad, now)


def accrue(position: Position, pool: PoolState, now: int) -> Tuple[Position, PoolState, int]:
    """
    Book interest on a position up to `now`.

    Idempotent: a second call at the same time is a no-op. Every other call
    moves last_accrual_timestamp to `now`, so a later change of used_credit
    is only ever charged from the moment it happened.

    Returns:
        (new_position, new_pool, delta)

    Raises:
        ValueError: If `now` is before the position's last accrual
    """
    elapsed = now - position.last_accrual_timestamp
    if elapsed < 0:
        raise ValueError(
            f"Cannot accrue backwards: now={now} < last_accrual={position.last_accrual_timestamp}"
        )
    if elapsed == 0:
        return position, pool, 0

    if position.used_credit <= 0:
        # Nothing owed: drop any fraction left over from settled debt
        return replace(position, last_accrual_timestamp=now, accrual_remainder=0), pool, 0

    numerator = _accrual_numerator(
        position.used_credit, pool.borrow_apr_wad, elapsed, position.accrual_remainder
    )
    delta, remainder = divmod(numerator, ACCRUAL_SCALE)
    new_position = replace(
        position,
        interest_accrued=checked_add(position.interest_accrued, delta),
        last_accrual_timestamp=now,
        accrual_remainder=remainder,
    )
    if delta == 0:
        return new_position, pool, 0

    new_pool = replace(
        pool,
        total_interest_accrued=checked_add(pool.total_interest_accrued, delta),
    )
    return new_position, new_pool, delta
