"""
config.py - Pool Configuration

PoolConfig is the immutable term sheet of a pool: everything fixed when the
pool is created. Risk limits, APR, fee and reserve target seed the initial
PoolState; the remaining fields govern the position lifecycle.

Configuration can be built directly, from a plain mapping, or from a YAML file:

    config = load_config("pool.yaml")
    pool = FinancingPool(access, custody, clock, config=config)
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from .core import (
    GRACE_PERIOD, RECOVERY_WINDOW,
    InvalidParameter, OverpaymentPolicy, PoolState, RecourseMode,
)
from .fixed_point import BPS_DENOMINATOR, to_wad

logger = logging.getLogger(__name__)


_BPS_FIELDS = (
    "protocol_fee_bps", "max_utilization_bps", "max_loan_bps_of_nav",
    "max_issuer_exposure_bps", "reserve_target_bps",
    "ltv_non_recourse_bps", "ltv_recourse_bps",
)


@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Immutable pool terms.

    borrow_apr_wad accepts a WAD integer or a Decimal/str ratio ("0.15");
    ratios are converted to WAD in __post_init__. Durations are seconds.
    """
    borrow_apr_wad: Union[int, Decimal, str] = 150_000_000_000_000_000  # 15%
    protocol_fee_bps: int = 1000
    max_utilization_bps: int = 8000
    max_loan_bps_of_nav: int = 10_000
    max_issuer_exposure_bps: int = 10_000
    reserve_target_bps: int = 0
    ltv_non_recourse_bps: int = 6000
    ltv_recourse_bps: int = 8000
    grace_period: int = GRACE_PERIOD
    recovery_window: int = RECOVERY_WINDOW
    overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.CLAMP
    recourse_partial_cure: bool = False
    asset_symbol: str = "USDC"
    share_symbol: str = "LPS"

    def __post_init__(self):
        if not isinstance(self.borrow_apr_wad, int) or isinstance(self.borrow_apr_wad, bool):
            object.__setattr__(self, 'borrow_apr_wad', to_wad(self.borrow_apr_wad))
        if not isinstance(self.overpayment_policy, OverpaymentPolicy):
            try:
                policy = OverpaymentPolicy(str(self.overpayment_policy).lower())
            except ValueError as e:
                raise InvalidParameter(f"Unknown overpayment_policy: {self.overpayment_policy!r}") from e
            object.__setattr__(self, 'overpayment_policy', policy)

        for name in _BPS_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 <= value <= BPS_DENOMINATOR:
                raise InvalidParameter(f"{name} must be an int in [0, {BPS_DENOMINATOR}], got {value!r}")
        if self.grace_period < 0 or self.recovery_window < 0:
            raise InvalidParameter("grace_period and recovery_window must be non-negative")
        if self.borrow_apr_wad < 0:
            raise InvalidParameter("borrow_apr_wad must be non-negative")
        if not self.asset_symbol or not self.share_symbol:
            raise InvalidParameter("asset_symbol and share_symbol cannot be empty")
        if self.asset_symbol == self.share_symbol:
            raise InvalidParameter("asset_symbol and share_symbol must differ")

    def initial_pool_state(self) -> PoolState:
        """Return the empty PoolState these terms open with."""
        return PoolState(
            reserve_target_bps=self.reserve_target_bps,
            max_utilization_bps=self.max_utilization_bps,
            max_loan_bps_of_nav=self.max_loan_bps_of_nav,
            max_issuer_exposure_bps=self.max_issuer_exposure_bps,
            borrow_apr_wad=self.borrow_apr_wad,
            protocol_fee_bps=self.protocol_fee_bps,
        )

    def ltv_for(self, recourse_mode: RecourseMode) -> int:
        if recourse_mode == RecourseMode.RECOURSE:
            return self.ltv_recourse_bps
        return self.ltv_non_recourse_bps

    def with_overrides(self, **overrides: Any) -> "PoolConfig":
        return replace(self, **overrides)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PoolConfig":
        """
        Build a PoolConfig from a plain mapping (e.g. parsed YAML).

        Unknown keys are rejected so that typos do not silently fall back to
        defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameter(f"Unknown pool config keys: {sorted(unknown)}")
        values = dict(data)
        apr = values.get("borrow_apr_wad")
        if isinstance(apr, float):
            # YAML reads 0.15 as a float; keep its literal digits
            values["borrow_apr_wad"] = Decimal(str(apr))
        return cls(**values)


def load_config(path: Union[str, Path]) -> PoolConfig:
    """
    Load pool terms from a YAML file.

    The file may hold the terms at top level or under a `pool:` key.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, Mapping):
        raise InvalidParameter(f"Config file {config_path} must contain a mapping")
    if "pool" in raw:
        raw = raw["pool"] or {}

    config = PoolConfig.from_mapping(raw)
    logger.info("Pool configuration loaded from %s", config_path)
    return config
