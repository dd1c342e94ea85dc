"""
Trade Scoring - Options Trade-Generation Engine

Composite 0-100 score for a TradePacket built from:
- annualized return on risk (credit / max loss over DTE)
- probability of profit derived from the short leg delta
- regime alignment: bullish structures favored in uptrends, bearish
  structures in downtrends, the covered call in flat markets
- liquidity quality of the underlying's option market
- setup quality: the strategy's own checklist score

Weights and normalization caps live in ScoringWeights so callers can tune
them without touching the scorer.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Sequence

from ..custom_types import MarketRegime, RiskSentiment, TrendRegime
from ..strategies.base import ScoreComponent, StrategyType, TradePacket, create_score_component, total_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    annualized_return: float = 0.25
    probability_of_profit: float = 0.20
    regime_alignment: float = 0.20
    liquidity: float = 0.15
    setup_quality: float = 0.20
    # annualized return (percent) that earns a full component score
    return_cap_pct: float = 50.0
    # regime bonus/penalty when the market-wide risk read agrees/disagrees
    market_sentiment_adjustment: float = 10.0

    @property
    def total(self) -> float:
        return (
            self.annualized_return + self.probability_of_profit + self.regime_alignment
            + self.liquidity + self.setup_quality
        )


DEFAULT_WEIGHTS = ScoringWeights()

# Alignment of each structure with the symbol's own trend, 0-100
BULLISH_ALIGNMENT = {
    TrendRegime.STRONG_UPTREND: 100,
    TrendRegime.UPTREND: 85,
    TrendRegime.NEUTRAL: 60,
    TrendRegime.DOWNTREND: 30,
    TrendRegime.STRONG_DOWNTREND: 10,
}

BEARISH_ALIGNMENT = {
    TrendRegime.STRONG_DOWNTREND: 100,
    TrendRegime.DOWNTREND: 85,
    TrendRegime.NEUTRAL: 60,
    TrendRegime.UPTREND: 30,
    TrendRegime.STRONG_UPTREND: 10,
}

NEUTRAL_ALIGNMENT = {
    TrendRegime.NEUTRAL: 90,
    TrendRegime.UPTREND: 75,
    TrendRegime.DOWNTREND: 50,
    TrendRegime.STRONG_UPTREND: 40,
    TrendRegime.STRONG_DOWNTREND: 30,
}

STRATEGY_BIAS: Dict[StrategyType, Dict[TrendRegime, int]] = {
    StrategyType.CASH_SECURED_PUT: BULLISH_ALIGNMENT,
    StrategyType.PUT_CREDIT_SPREAD: BULLISH_ALIGNMENT,
    StrategyType.COVERED_CALL: NEUTRAL_ALIGNMENT,
    StrategyType.CALL_CREDIT_SPREAD: BEARISH_ALIGNMENT,
}


class TradeScorer:
    """Scores packets with a weighted blend of return, POP, regime, liquidity and setup"""

    def __init__(self, weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.weights = weights

    def regime_alignment(self, strategy_type: StrategyType, trend: TrendRegime, regime: MarketRegime) -> float:
        """
        Raw 0-100 alignment between a structure and the trend it trades into.

        The symbol trend sets the base; the market-wide risk read nudges
        directional structures up when it agrees and down when it does not.
        """
        alignment = STRATEGY_BIAS[strategy_type][trend]
        bullish = STRATEGY_BIAS[strategy_type] is BULLISH_ALIGNMENT
        bearish = STRATEGY_BIAS[strategy_type] is BEARISH_ALIGNMENT
        adjustment = self.weights.market_sentiment_adjustment

        if regime.risk_on_off == RiskSentiment.RISK_ON:
            alignment += adjustment if bullish else -adjustment if bearish else 0
        elif regime.risk_on_off == RiskSentiment.RISK_OFF:
            alignment += adjustment if bearish else -adjustment if bullish else 0
        return float(max(0, min(100, alignment)))

    def components(self, packet: TradePacket) -> List[ScoreComponent]:
        w = self.weights
        signals = packet.symbol_signals
        return [
            create_score_component(
                "Annualized Return", packet.risk_box.return_on_risk, w.annualized_return, w.return_cap_pct
            ),
            create_score_component(
                "Probability of Profit", packet.risk_box.probability_of_profit, w.probability_of_profit
            ),
            create_score_component(
                "Regime Alignment",
                self.regime_alignment(packet.strategy_type, signals.trend, packet.market_regime),
                w.regime_alignment
            ),
            create_score_component("Liquidity", signals.liquidity.overall_score, w.liquidity),
            create_score_component("Setup Quality", packet.setup_score, w.setup_quality),
        ]

    def score_packet(self, packet: TradePacket) -> TradePacket:
        components = self.components(packet)
        return replace(packet, score=total_score(components), score_components=components)

    def score_all(self, packets: Sequence[TradePacket]) -> List[TradePacket]:
        scored = [self.score_packet(p) for p in packets]
        logger.debug(f"Scored {len(scored)} packets")
        return scored
