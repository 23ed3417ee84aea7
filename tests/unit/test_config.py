"""
test_config.py - Unit tests for pool configuration

Tests:
- Defaults and validation
- APR conversion from ratios
- Mapping and YAML loading
"""

import pytest
from decimal import Decimal

from creditpool import (
    PoolConfig, load_config, RecourseMode, OverpaymentPolicy, InvalidParameter, InvalidAmount,
    SECONDS_PER_DAY,
)


class TestDefaults:

    def test_default_terms(self):
        config = PoolConfig()
        assert config.borrow_apr_wad == 150_000_000_000_000_000
        assert config.protocol_fee_bps == 1000
        assert config.max_utilization_bps == 8000
        assert config.grace_period == 7 * SECONDS_PER_DAY
        assert config.recovery_window == 30 * SECONDS_PER_DAY
        assert config.overpayment_policy == OverpaymentPolicy.CLAMP
        assert config.recourse_partial_cure is False

    def test_concentration_caps_off_by_default(self):
        config = PoolConfig()
        assert config.max_loan_bps_of_nav == 10_000
        assert config.max_issuer_exposure_bps == 10_000

    def test_production_concentration_caps(self):
        config = PoolConfig.from_mapping({"max_loan_bps_of_nav": 1000, "max_issuer_exposure_bps": 2500})
        state = config.initial_pool_state()
        assert state.max_loan_bps_of_nav == 1000
        assert state.max_issuer_exposure_bps == 2500

    def test_ltv_by_mode(self):
        config = PoolConfig()
        assert config.ltv_for(RecourseMode.NON_RECOURSE) == 6000
        assert config.ltv_for(RecourseMode.RECOURSE) == 8000

    def test_initial_pool_state(self):
        state = PoolConfig(max_loan_bps_of_nav=1000, reserve_target_bps=500).initial_pool_state()
        assert state.max_loan_bps_of_nav == 1000
        assert state.reserve_target_bps == 500
        assert state.total_liquidity_asset == 0
        assert not state.paused


class TestValidation:

    def test_apr_from_ratio(self):
        assert PoolConfig(borrow_apr_wad="0.10").borrow_apr_wad == 100_000_000_000_000_000
        assert PoolConfig(borrow_apr_wad=Decimal("0.2")).borrow_apr_wad == 200_000_000_000_000_000

    def test_float_apr_rejected(self):
        with pytest.raises(InvalidAmount):
            PoolConfig(borrow_apr_wad=0.15)

    def test_policy_from_string(self):
        assert PoolConfig(overpayment_policy="REJECT").overpayment_policy == OverpaymentPolicy.REJECT

    def test_unknown_policy(self):
        with pytest.raises(InvalidParameter):
            PoolConfig(overpayment_policy="refund")

    @pytest.mark.parametrize("field", ["protocol_fee_bps", "max_utilization_bps", "ltv_recourse_bps"])
    def test_bps_out_of_range(self, field):
        with pytest.raises(InvalidParameter):
            PoolConfig(**{field: 10_001})

    def test_negative_grace(self):
        with pytest.raises(InvalidParameter):
            PoolConfig(grace_period=-1)

    def test_symbols_must_differ(self):
        with pytest.raises(InvalidParameter):
            PoolConfig(asset_symbol="USDC", share_symbol="USDC")

    def test_with_overrides(self):
        config = PoolConfig().with_overrides(protocol_fee_bps=0)
        assert config.protocol_fee_bps == 0


class TestLoading:

    def test_from_mapping(self):
        config = PoolConfig.from_mapping({"borrow_apr_wad": 0.12, "max_loan_bps_of_nav": 1000})
        assert config.borrow_apr_wad == 120_000_000_000_000_000
        assert config.max_loan_bps_of_nav == 1000

    def test_unknown_keys_rejected(self):
        with pytest.raises(InvalidParameter):
            PoolConfig.from_mapping({"max_utilisation_bps": 7000})

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "pool.yaml"
        path.write_text(
            "pool:\n"
            "  borrow_apr_wad: 0.15\n"
            "  protocol_fee_bps: 1000\n"
            "  max_loan_bps_of_nav: 1000\n"
            "  max_issuer_exposure_bps: 2500\n"
            "  overpayment_policy: reject\n"
        )
        config = load_config(path)
        assert config.borrow_apr_wad == 150_000_000_000_000_000
        assert config.max_issuer_exposure_bps == 2500
        assert config.overpayment_policy == OverpaymentPolicy.REJECT

    def test_load_top_level_yaml(self, tmp_path):
        path = tmp_path / "pool.yaml"
        path.write_text("grace_period: 86400\n")
        assert load_config(path).grace_period == 86400

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "pool.yaml"
        path.write_text("")
        assert load_config(path) == PoolConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "pool.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(InvalidParameter):
            load_config(path)
