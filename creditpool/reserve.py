"""
reserve.py - First-Loss Reserve

The reserve is a buffer funded by the pool operator, independent of LP
deposits and not attributable to any LP share. On a non-recourse write-down
it is consumed before LP NAV is touched:

    reserve_absorbed = min(loss, reserve_balance)
    lp_loss          = loss - reserve_absorbed

The reserve target is informational; nothing tops the reserve up automatically.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Tuple

from .core import PoolState, InvalidAmount, InvalidParameter
from .fixed_point import BPS_DENOMINATOR, bps_of, checked_add, checked_sub
from .liquidity import calculate_nav


def fund(pool: PoolState, amount: int) -> PoolState:
    if amount <= 0:
        raise InvalidAmount(f"Reserve funding must be positive, got {amount}")
    return replace(pool, reserve_balance=checked_add(pool.reserve_balance, amount))


def withdraw(pool: PoolState, amount: int) -> PoolState:
    if amount <= 0:
        raise InvalidAmount(f"Reserve withdrawal must be positive, got {amount}")
    if amount > pool.reserve_balance:
        raise InvalidAmount(
            f"Reserve withdrawal {amount} exceeds reserve balance {pool.reserve_balance}"
        )
    return replace(pool, reserve_balance=checked_sub(pool.reserve_balance, amount))


def set_target(pool: PoolState, bps: int) -> PoolState:
    if not isinstance(bps, int) or isinstance(bps, bool) or not 0 <= bps <= BPS_DENOMINATOR:
        raise InvalidParameter(f"Reserve target must be in [0, {BPS_DENOMINATOR}] bps, got {bps!r}")
    return replace(pool, reserve_target_bps=bps)


def absorb(pool: PoolState, loss: int) -> Tuple[PoolState, int]:
    """
    Take as much of `loss` as the reserve can cover.

    Returns:
        (new_pool, absorbed) where absorbed = min(loss, reserve_balance)
    """
    absorbed = min(max(loss, 0), pool.reserve_balance)
    if absorbed == 0:
        return pool, 0
    return replace(pool, reserve_balance=pool.reserve_balance - absorbed), absorbed


@dataclass(frozen=True, slots=True)
class ReserveStatus:
    balance: int
    target_bps: int
    target_amount: int

    @property
    def shortfall(self) -> int:
        return max(self.target_amount - self.balance, 0)

    @property
    def funded(self) -> bool:
        return self.shortfall == 0


def reserve_status(pool: PoolState) -> ReserveStatus:
    """Reserve balance against its target, sized as a fraction of NAV."""
    return ReserveStatus(
        balance=pool.reserve_balance,
        target_bps=pool.reserve_target_bps,
        target_amount=bps_of(calculate_nav(pool), pool.reserve_target_bps),
    )
