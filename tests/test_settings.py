"""
Test Suite for Trading Settings - Options Trade-Generation Engine

Presets, hard-cap validation, diffs, kill switches and dict round trips.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from trade_engine.engine.settings import (
    MAX_RISK_PER_TRADE_CAP_PCT, MAX_TOTAL_RISK_CAP_PCT, RiskPreset, SettingsValidationError,
    TradingSettings, calculate_settings_diff, ensure_valid_settings, get_default_settings,
    validate_settings, with_kill_switches
)


class TestPresets:

    @pytest.mark.parametrize("preset", list(RiskPreset))
    def test_every_preset_is_valid(self, preset):
        settings = get_default_settings(preset)
        result = validate_settings(settings)

        assert result.valid, result.errors
        assert settings.risk_preset == preset

    @pytest.mark.parametrize("preset", list(RiskPreset))
    def test_presets_ship_with_execution_off(self, preset):
        settings = get_default_settings(preset)

        assert settings.trading_enabled is False
        assert settings.broker_execution_enabled is False
        assert settings.paper_mode_enabled is True

    def test_preset_accepts_string(self):
        assert get_default_settings("aggressive").risk_preset == RiskPreset.AGGRESSIVE

        print("✅ Preset lookup accepts string values")

    def test_conservative_disables_call_credit_spread(self):
        assert not get_default_settings(RiskPreset.CONSERVATIVE).call_credit_spread.enabled

        print("✅ Conservative preset disables call credit spreads")

    def test_dollar_risk_limits(self, balanced_settings):
        risk = balanced_settings.risk_limits

        assert risk.effective_account_size == Decimal('100000')
        assert risk.max_risk_per_trade == Decimal('3000')
        assert risk.max_total_risk == Decimal('15000')

        print("✅ Dollar risk limits derived from account size")


class TestValidation:

    def test_per_trade_cap_enforced(self, balanced_settings):
        settings = replace(
            balanced_settings,
            risk_limits=replace(balanced_settings.risk_limits, max_risk_per_trade_pct=MAX_RISK_PER_TRADE_CAP_PCT + 1),
        )
        result = validate_settings(settings)

        assert not result.valid
        assert any("max_risk_per_trade_pct" in e for e in result.errors)

        print("✅ Per-trade risk cap enforced")

    def test_total_cap_enforced(self, balanced_settings):
        settings = replace(
            balanced_settings,
            risk_limits=replace(balanced_settings.risk_limits, max_total_risk_pct=MAX_TOTAL_RISK_CAP_PCT + 5),
        )

        with pytest.raises(SettingsValidationError) as exc_info:
            ensure_valid_settings(settings)

        assert any("max_total_risk_pct" in e for e in exc_info.value.errors)

        print("✅ Total risk cap enforced")

    def test_delta_window_and_dte_rules(self, balanced_settings):
        settings = replace(
            balanced_settings,
            cash_secured_put=replace(balanced_settings.cash_secured_put, target_delta_min=0.4, target_delta_max=0.3),
            covered_call=replace(balanced_settings.covered_call, min_dte=30, max_dte=20),
        )
        errors = validate_settings(settings).errors

        assert any("cash_secured_put: target_delta_min" in e for e in errors)
        assert any("covered_call: max_dte" in e for e in errors)

        print("✅ Strategy window rules enforced")

    def test_liquidity_floors(self, balanced_settings):
        settings = replace(
            balanced_settings,
            liquidity_filters=replace(balanced_settings.liquidity_filters, min_option_oi=5),
        )

        assert not validate_settings(settings).valid

        print("✅ Liquidity floors enforced")

    def test_broker_without_trading_warns(self, balanced_settings):
        settings = with_kill_switches(balanced_settings, broker_execution_enabled=True)
        result = validate_settings(settings)

        assert result.valid
        assert result.warnings

        print("✅ Broker switch without trading produces a warning")

    def test_zero_daily_cap_warns(self, balanced_settings):
        settings = replace(
            balanced_settings,
            risk_limits=replace(balanced_settings.risk_limits, max_new_orders_per_day=0),
        )
        result = validate_settings(settings)

        assert result.valid
        assert "max_new_orders_per_day is 0; no new orders will be submitted" in result.warnings

        print("✅ Zero daily order cap flagged")

    def test_valid_settings_pass_through(self, balanced_settings):
        assert ensure_valid_settings(balanced_settings) is balanced_settings


class TestDiffAndSerialization:

    def test_diff_of_identical_settings_is_empty(self, balanced_settings):
        assert calculate_settings_diff(balanced_settings, balanced_settings) == {}

        print("✅ Identical settings produce an empty diff")

    def test_diff_reports_changed_leaves(self, balanced_settings):
        changed = with_kill_switches(balanced_settings, trading_enabled=True)
        changed = replace(
            changed, put_credit_spread=replace(changed.put_credit_spread, spread_width=Decimal('10'))
        )
        diff = calculate_settings_diff(balanced_settings, changed)

        assert diff == {
            "put_credit_spread.spread_width": {"old": 5.0, "new": 10.0},
            "trading_enabled": {"old": False, "new": True},
        }

        print("✅ Diff reports dotted paths of changed leaves")

    def test_kill_switches_leave_other_fields(self, balanced_settings):
        updated = with_kill_switches(balanced_settings, paper_mode_enabled=False)

        assert updated.paper_mode_enabled is False
        assert updated.trading_enabled is False
        assert updated.risk_limits == balanced_settings.risk_limits

    @pytest.mark.parametrize("preset", list(RiskPreset))
    def test_dict_round_trip(self, preset):
        settings = get_default_settings(preset)

        assert TradingSettings.from_dict(settings.to_dict()) == settings

    def test_from_dict_rejects_unknown_keys(self, balanced_settings):
        data = balanced_settings.to_dict()
        data["risk_limits"]["leverage"] = 4

        with pytest.raises(TypeError):
            TradingSettings.from_dict(data)

        print("✅ Unknown settings keys rejected")
