"""
Test Suite for Strategy Engines - Options Trade-Generation Engine

Cash-secured puts, covered calls and vertical credit spreads against a
hand-built $100 chain, plus the strategy registry.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from trade_engine.custom_types import TrendRegime, VolatilityRegime
from trade_engine.engine.settings import RiskPreset, get_default_settings
from trade_engine.strategies.base import LegAction, PacketStatus, StrategyType
from trade_engine.strategies.cash_secured_put import CashSecuredPutStrategy
from trade_engine.strategies.covered_call import CoveredCallStrategy
from trade_engine.strategies.credit_spread import call_credit_spread, put_credit_spread
from trade_engine.strategies.registry import StrategyRegistry

from market_fixtures import (
    EXPIRATION, TODAY, large_account_settings, make_chain, make_context, make_liquidity, make_signals
)


class TestCashSecuredPut:

    def test_collateral_risk_blocks_small_account(self, balanced_settings):
        context = make_context(balanced_settings)
        strategy = CashSecuredPutStrategy()

        assert strategy.should_consider(context)
        assert strategy.find_candidates(context) == []

        print("✅ CSP collateral above the per-trade cap rejected")

    def test_candidate_on_large_account(self):
        context = make_context(large_account_settings())
        candidates = CashSecuredPutStrategy().find_candidates(context)

        assert len(candidates) == 1
        candidate = candidates[0]
        short = candidate.legs[0]
        assert short.action == LegAction.SELL
        assert short.contract.strike == Decimal('90')
        assert 0.20 <= abs(short.contract.delta) <= 0.30
        assert candidate.net_credit == Decimal('124.00')
        assert candidate.risk_box.max_loss == Decimal('8876.00')
        assert candidate.risk_box.breakeven == Decimal('88.76')
        assert candidate.risk_box.collateral_required == Decimal('9000.00')
        assert 0 <= candidate.score <= 100

        print(f"✅ CSP candidate: 90 put, score {candidate.score}")

    def test_strong_downtrend_skipped_unless_aggressive(self):
        settings = large_account_settings()
        signals = make_signals(trend=TrendRegime.STRONG_DOWNTREND)

        assert not CashSecuredPutStrategy().should_consider(make_context(settings, signals=signals))

        aggressive = replace(get_default_settings(RiskPreset.AGGRESSIVE), preferred_trend_regimes=())
        context = make_context(aggressive, signals=signals)
        assert CashSecuredPutStrategy().should_consider(context)

    def test_earnings_window_blocks(self, balanced_settings):
        signals = make_signals(days_to_earnings=4, within_earnings_window=True)

        assert not CashSecuredPutStrategy().should_consider(make_context(balanced_settings, signals=signals))

        print("✅ Earnings window blocks new positions")

    def test_illiquid_underlying_blocks(self, balanced_settings):
        signals = make_signals(liquidity=make_liquidity(20, meets_minimum=False))

        assert not CashSecuredPutStrategy().should_consider(make_context(balanced_settings, signals=signals))

    def test_dte_outside_window(self, balanced_settings):
        chain = make_chain(expiration=TODAY + timedelta(days=60))

        assert not CashSecuredPutStrategy().should_consider(make_context(balanced_settings, chain=chain))

    def test_thin_open_interest_filtered(self):
        chain = make_chain(open_interest=50)

        assert CashSecuredPutStrategy().find_candidates(make_context(large_account_settings(), chain=chain)) == []


class TestCoveredCall:

    def test_sells_otm_call(self, balanced_settings):
        context = make_context(balanced_settings)
        strategy = CoveredCallStrategy()

        assert strategy.should_consider(context)
        candidates = strategy.find_candidates(context)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.legs[0].contract.strike == Decimal('110')
        assert candidate.net_credit == Decimal('108.50')
        assert candidate.risk_box.max_loss == Decimal('9891.50')
        assert candidate.risk_box.max_profit == Decimal('1108.50')

        print("✅ Covered call sells the 110 call")

    def test_conservative_skips_strong_uptrend(self):
        settings = get_default_settings(RiskPreset.CONSERVATIVE)
        signals = make_signals(trend=TrendRegime.STRONG_UPTREND)

        assert not CoveredCallStrategy().should_consider(make_context(settings, signals=signals))

    def test_packet_carries_run_metadata(self, balanced_settings):
        context = make_context(balanced_settings)
        strategy = CoveredCallStrategy()
        packet = strategy.candidate_to_packet(strategy.find_candidates(context)[0], context)

        assert packet.strategy_type == StrategyType.COVERED_CALL
        assert packet.status == PacketStatus.CANDIDATE
        assert packet.recompute_run_id == "run-fixture"
        assert packet.symbol == "XYZ"
        assert packet.dte == 30
        assert packet.expiration == EXPIRATION
        assert packet.max_loss == packet.risk_box.max_loss

        print("✅ Packet stamped with run metadata")


class TestCreditSpreads:

    def test_put_credit_spread(self, balanced_settings):
        context = make_context(balanced_settings)
        strategy = put_credit_spread()

        assert strategy.should_consider(context)
        candidates = strategy.find_candidates(context)

        assert len(candidates) == 1
        candidate = candidates[0]
        short, long = candidate.legs
        assert (short.action, long.action) == (LegAction.SELL, LegAction.BUY)
        assert (short.contract.strike, long.contract.strike) == (Decimal('90'), Decimal('85'))
        assert candidate.net_credit == Decimal('66.50')
        assert candidate.risk_box.max_loss == Decimal('433.50')
        assert candidate.risk_box.breakeven == Decimal('89.335')

        print("✅ Put credit spread 90/85 for $66.50")

    def test_call_credit_spread(self, balanced_settings):
        context = make_context(balanced_settings, signals=make_signals(trend=TrendRegime.NEUTRAL))
        candidates = call_credit_spread().find_candidates(context)

        assert len(candidates) == 1
        short, long = candidates[0].legs
        assert (short.contract.strike, long.contract.strike) == (Decimal('110'), Decimal('115'))
        assert candidates[0].net_credit == Decimal('61.00')
        assert candidates[0].risk_box.max_loss == Decimal('439.00')

        print("✅ Call credit spread 110/115 for $61.00")

    def test_max_loss_is_width_minus_credit(self, balanced_settings):
        for strategy in (put_credit_spread(), call_credit_spread()):
            for candidate in strategy.find_candidates(make_context(balanced_settings)):
                short, long = candidate.legs
                width = abs(short.contract.strike - long.contract.strike)
                assert candidate.risk_box.max_loss == width * 100 - candidate.net_credit

    def test_min_credit_filter(self, balanced_settings):
        settings = replace(
            balanced_settings,
            put_credit_spread=replace(balanced_settings.put_credit_spread, min_credit=Decimal('0.80')),
        )

        assert put_credit_spread().find_candidates(make_context(settings)) == []

        print("✅ Spreads below the minimum credit rejected")

    def test_missing_long_strike(self, balanced_settings):
        settings = replace(
            balanced_settings,
            put_credit_spread=replace(balanced_settings.put_credit_spread, spread_width=Decimal('3')),
        )

        assert put_credit_spread().find_candidates(make_context(settings)) == []

    def test_avoided_trends(self, balanced_settings):
        strong_down = make_context(balanced_settings, signals=make_signals(trend=TrendRegime.STRONG_DOWNTREND))
        strong_up = make_context(balanced_settings, signals=make_signals(trend=TrendRegime.STRONG_UPTREND))

        assert not put_credit_spread().should_consider(strong_down)
        assert not call_credit_spread().should_consider(strong_up)

    def test_preferred_volatility(self, balanced_settings):
        context = make_context(balanced_settings, signals=make_signals(volatility=VolatilityRegime.LOW))

        assert not put_credit_spread().should_consider(context)

    def test_disabled_in_conservative(self):
        settings = get_default_settings(RiskPreset.CONSERVATIVE)

        assert not call_credit_spread().should_consider(make_context(settings))

        print("✅ Disabled strategy never considered")


class TestStrategyRegistry:

    def test_default_order(self):
        registry = StrategyRegistry()

        assert registry.types == [
            StrategyType.CASH_SECURED_PUT,
            StrategyType.COVERED_CALL,
            StrategyType.PUT_CREDIT_SPREAD,
            StrategyType.CALL_CREDIT_SPREAD,
        ]
        assert len(registry) == 4
        assert registry.get(StrategyType.COVERED_CALL).name == "Covered Call"

    def test_duplicate_registration_rejected(self):
        registry = StrategyRegistry([put_credit_spread()])

        with pytest.raises(ValueError):
            registry.register(put_credit_spread())

        print("✅ Duplicate strategy registration rejected")

    def test_custom_subset(self):
        registry = StrategyRegistry([CoveredCallStrategy()])

        assert [s.strategy_type for s in registry] == [StrategyType.COVERED_CALL]
