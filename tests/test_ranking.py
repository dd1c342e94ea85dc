"""
Test Suite for Trade Scoring and Ranking - Options Trade-Generation Engine
"""

from decimal import Decimal

import pytest

from trade_engine.custom_types import RiskSentiment, TrendRegime
from trade_engine.engine.ranker import RankingOptions, TradeRanker
from trade_engine.engine.scoring import ScoringWeights, TradeScorer
from trade_engine.strategies.base import StrategyType

from market_fixtures import make_packet, make_regime


class TestTradeScorer:

    @pytest.mark.parametrize("strategy_type,trend,risk,expected", [
        (StrategyType.PUT_CREDIT_SPREAD, TrendRegime.UPTREND, RiskSentiment.RISK_ON, 95),
        (StrategyType.CASH_SECURED_PUT, TrendRegime.STRONG_UPTREND, RiskSentiment.RISK_ON, 100),
        (StrategyType.CASH_SECURED_PUT, TrendRegime.STRONG_UPTREND, RiskSentiment.RISK_OFF, 90),
        (StrategyType.CALL_CREDIT_SPREAD, TrendRegime.UPTREND, RiskSentiment.RISK_ON, 20),
        (StrategyType.CALL_CREDIT_SPREAD, TrendRegime.STRONG_DOWNTREND, RiskSentiment.RISK_OFF, 100),
        (StrategyType.COVERED_CALL, TrendRegime.NEUTRAL, RiskSentiment.RISK_ON, 90),
        (StrategyType.COVERED_CALL, TrendRegime.UPTREND, RiskSentiment.NEUTRAL, 75),
    ])
    def test_regime_alignment(self, strategy_type, trend, risk, expected):
        scorer = TradeScorer()

        assert scorer.regime_alignment(strategy_type, trend, make_regime(risk=risk)) == expected

    def test_score_packet(self):
        scored = TradeScorer().score_packet(make_packet(score=70))

        assert [c.name for c in scored.score_components] == [
            "Annualized Return", "Probability of Profit", "Regime Alignment", "Liquidity", "Setup Quality"
        ]
        assert scored.score == 86.0
        assert scored.setup_score == 70

        print(f"✅ Packet scored {scored.score}")

    def test_bearish_structure_scores_lower_in_uptrend(self):
        scorer = TradeScorer()
        bullish = scorer.score_packet(make_packet(strategy_type=StrategyType.PUT_CREDIT_SPREAD))
        bearish = scorer.score_packet(make_packet(strategy_type=StrategyType.CALL_CREDIT_SPREAD))

        assert bullish.score > bearish.score

        print("✅ Regime alignment favors bullish structures in an uptrend")

    def test_custom_weights(self):
        weights = ScoringWeights(annualized_return=1.0, probability_of_profit=0, regime_alignment=0,
                                 liquidity=0, setup_quality=0)
        scored = TradeScorer(weights).score_packet(make_packet())

        assert weights.total == 1.0
        assert scored.score == 100.0

    def test_scores_stay_in_range(self):
        packets = [make_packet(max_loss=str(loss), credit="5") for loss in (50, 500, 5000)]

        assert all(0 <= p.score <= 100 for p in TradeScorer().score_all(packets))


class TestTradeRanker:

    def test_rank_by_score(self):
        packets = [make_packet(score=s) for s in (50, 90, 70)]

        assert [p.score for p in TradeRanker().rank_by_score(packets)] == [90, 70, 50]

    def test_top_per_strategy(self):
        spreads = [make_packet(symbol=f"S{i}", score=s) for i, s in enumerate((90, 80, 70, 60, 50))]
        calls = [make_packet(symbol="CC", strategy_type=StrategyType.COVERED_CALL, score=55)]

        result = TradeRanker().top_per_strategy(spreads + calls, top_n=3)

        assert [p.score for p in result] == [90, 80, 70, 55]

        print("✅ Top N kept per strategy")

    def test_diversify_by_symbol(self):
        packets = [make_packet(symbol="AAPL", score=s) for s in (90, 80, 70)]
        packets.append(make_packet(symbol="MSFT", score=60))

        result = TradeRanker().diversify_by_symbol(packets, max_per_symbol=2)

        assert [(p.symbol, p.score) for p in result] == [("AAPL", 90), ("AAPL", 80), ("MSFT", 60)]

        print("✅ At most two packets per symbol")

    def test_risk_budget_greedy(self, balanced_settings):
        packets = [
            make_packet(symbol="A", score=90, max_loss="9000"),
            make_packet(symbol="B", score=80, max_loss="8000"),
            make_packet(symbol="C", score=70, max_loss="5000"),
        ]

        result = TradeRanker().filter_by_risk_budget(packets, balanced_settings)

        assert [p.symbol for p in result] == ["A", "C"]
        assert sum(p.max_loss for p in result) <= balanced_settings.risk_limits.max_total_risk

        print("✅ Risk budget walk skips packets that would breach the cap")

    def test_apply_all_filters(self, balanced_settings):
        packets = [
            make_packet(symbol="AAPL", score=85),
            make_packet(symbol="AAPL", score=80),
            make_packet(symbol="AAPL", score=75, strategy_type=StrategyType.CALL_CREDIT_SPREAD),
            make_packet(symbol="MSFT", score=35),
            make_packet(symbol="SPY", score=65, strategy_type=StrategyType.COVERED_CALL),
        ]

        result = TradeRanker().apply_all_filters(packets, balanced_settings)

        assert [(p.symbol, p.score) for p in result] == [("AAPL", 85), ("AAPL", 80), ("SPY", 65)]
        assert len(result) <= len(packets)

        print("✅ Filter pipeline applied in order")

    def test_options_disable_risk_budget(self, balanced_settings):
        packets = [make_packet(symbol=s, score=90, max_loss="9000") for s in ("A", "B")]
        options = RankingOptions(apply_risk_budget=False)

        assert len(TradeRanker().apply_all_filters(packets, balanced_settings, options)) == 2
        assert len(TradeRanker().apply_all_filters(packets, balanced_settings)) == 1

    def test_stats(self):
        packets = [
            make_packet(symbol="AAPL", score=80, max_loss="400", credit="100"),
            make_packet(symbol="SPY", score=60, max_loss="600", credit="50",
                        strategy_type=StrategyType.COVERED_CALL),
        ]
        stats = TradeRanker().calculate_stats(packets)

        assert stats.count == 2
        assert stats.avg_score == 70.0
        assert stats.max_score == 80
        assert stats.total_max_loss == Decimal('1000')
        assert stats.total_credit == Decimal('150')
        assert stats.by_strategy == {"put_credit_spread": 1, "covered_call": 1}
        assert stats.by_symbol == {"AAPL": 1, "SPY": 1}

    def test_empty_stats(self):
        stats = TradeRanker().calculate_stats([])

        assert stats.count == 0
        assert stats.total_max_loss == Decimal('0')

    def test_ranking_does_not_mutate_input(self):
        packets = [make_packet(score=s) for s in (10, 20)]
        snapshot = list(packets)

        TradeRanker().rank_by_score(packets)

        assert packets == snapshot
