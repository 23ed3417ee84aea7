"""
risk_guard.py - Pre-Draw Circuit Breakers

Pure, stateless evaluators consulted before any credit draw. Each takes the
current PoolState (and, for issuer exposure, the issuer's outstanding
principal) plus the proposed draw amount and raises on violation.

Checks, in evaluation order:
    1. Utilization:      (P + amount) * 10000 / (cash + P) > max_utilization_bps
    2. Max single loan:  amount > NAV * max_loan_bps_of_nav / 10000
    3. Issuer exposure:  exposure + amount > NAV * max_issuer_exposure_bps / 10000

A draw landing exactly on a cap is permitted.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict

from .core import (
    PoolState,
    IssuerExposureLimitExceeded, MaxSingleLoanExceeded, UtilizationLimitExceeded,
)
from .fixed_point import bps_of
from .liquidity import (
    calculate_available_liquidity, calculate_nav, calculate_utilization_bps,
)


def check_utilization(pool: PoolState, amount: int) -> None:
    utilization_after = calculate_utilization_bps(pool, additional_principal=amount)
    if utilization_after > pool.max_utilization_bps:
        raise UtilizationLimitExceeded(
            f"UTILIZATION_LIMIT_REACHED: draw of {amount} takes utilization to "
            f"{utilization_after} bps, cap is {pool.max_utilization_bps} bps"
        )


def max_single_loan(pool: PoolState) -> int:
    return bps_of(calculate_nav(pool), pool.max_loan_bps_of_nav)


def check_single_loan(pool: PoolState, amount: int) -> None:
    limit = max_single_loan(pool)
    if amount > limit:
        raise MaxSingleLoanExceeded(
            f"MAX_SINGLE_LOAN_EXCEEDED: draw of {amount} exceeds {limit} "
            f"({pool.max_loan_bps_of_nav} bps of NAV)"
        )


def max_issuer_exposure(pool: PoolState) -> int:
    return bps_of(calculate_nav(pool), pool.max_issuer_exposure_bps)


def check_issuer_exposure(pool: PoolState, current_exposure: int, amount: int) -> None:
    limit = max_issuer_exposure(pool)
    if current_exposure + amount > limit:
        raise IssuerExposureLimitExceeded(
            f"ISSUER_EXPOSURE_LIMIT_EXCEEDED: exposure {current_exposure} + {amount} "
            f"exceeds {limit} ({pool.max_issuer_exposure_bps} bps of NAV)"
        )


def evaluate_draw(pool: PoolState, issuer_exposure: int, amount: int) -> None:
    """
    Run every RiskGuard check for a proposed draw.

    PURE FUNCTION - raises the first violation, returns None if the draw is
    within all limits. Must run against the staged (post-accrual) pool.

    Args:
        pool: Pool snapshot the draw would apply to
        issuer_exposure: Sum of used_credit over the borrower's live positions
        amount: Proposed draw

    Raises:
        UtilizationLimitExceeded, MaxSingleLoanExceeded, IssuerExposureLimitExceeded
    """
    check_utilization(pool, amount)
    check_single_loan(pool, amount)
    check_issuer_exposure(pool, issuer_exposure, amount)


@dataclass(frozen=True, slots=True)
class RiskSnapshot:
    """Read model of the pool's risk headroom, as consumed by monitoring guards."""
    total_liquidity: int
    total_borrowed: int
    available_liquidity: int
    utilization_bps: int
    max_utilization_bps: int
    nav: int
    max_single_loan: int
    max_issuer_exposure: int
    paused: bool

    @property
    def utilization_headroom_bps(self) -> int:
        return max(self.max_utilization_bps - self.utilization_bps, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalLiquidity': self.total_liquidity,
            'totalBorrowed': self.total_borrowed,
            'availableLiquidity': self.available_liquidity,
            'utilization': self.utilization_bps,
            'nav': self.nav,
            'maxSingleLoan': self.max_single_loan,
            'maxIssuerExposure': self.max_issuer_exposure,
            'paused': self.paused,
        }


def risk_snapshot(pool: PoolState) -> RiskSnapshot:
    return RiskSnapshot(
        total_liquidity=pool.total_liquidity_asset + pool.total_principal_outstanding,
        total_borrowed=pool.total_principal_outstanding,
        available_liquidity=calculate_available_liquidity(pool),
        utilization_bps=calculate_utilization_bps(pool),
        max_utilization_bps=pool.max_utilization_bps,
        nav=calculate_nav(pool),
        max_single_loan=max_single_loan(pool),
        max_issuer_exposure=max_issuer_exposure(pool),
        paused=pool.paused,
    )
