"""
Trade Ranker - Options Trade-Generation Engine

Orders and filters scored TradePackets. The filtering pipeline runs in a
fixed order:

1. drop packets below the minimum score
2. keep the top N per strategy type
3. keep at most M per underlying symbol
4. walk the survivors best-first, accepting each one only while the
   cumulative max loss stays inside the portfolio risk budget

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from .scoring import TradeScorer
from .settings import TradingSettings
from ..strategies.base import TradePacket
from ..utils import to_serializable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingOptions:
    min_score: float = 40
    top_per_strategy: int = 3
    max_per_symbol: int = 2
    apply_risk_budget: bool = True


@dataclass(frozen=True)
class RankingStats:
    count: int
    avg_score: float
    max_score: float
    min_score: float
    total_max_profit: Decimal
    total_max_loss: Decimal
    total_credit: Decimal
    avg_conviction: float
    avg_uncertainty: float
    by_strategy: Dict[str, int]
    by_symbol: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


class TradeRanker:
    """Ranks and filters trade packets"""

    def __init__(self, scorer: Optional[TradeScorer] = None):
        self.scorer = scorer or TradeScorer()

    def score_all(self, packets: Sequence[TradePacket]) -> List[TradePacket]:
        return self.scorer.score_all(packets)

    def rank_by_score(self, packets: Sequence[TradePacket]) -> List[TradePacket]:
        # stable sort keeps generation order among ties
        return sorted(packets, key=lambda p: p.score, reverse=True)

    def filter_by_min_score(self, packets: Sequence[TradePacket], min_score: float) -> List[TradePacket]:
        return [p for p in packets if p.score >= min_score]

    def top_per_strategy(self, packets: Sequence[TradePacket], top_n: int = 3) -> List[TradePacket]:
        by_strategy: Dict[str, List[TradePacket]] = defaultdict(list)
        for packet in packets:
            by_strategy[packet.strategy_type.value].append(packet)

        result: List[TradePacket] = []
        for strategy_packets in by_strategy.values():
            result.extend(self.rank_by_score(strategy_packets)[:top_n])
        return self.rank_by_score(result)

    def diversify_by_symbol(self, packets: Sequence[TradePacket], max_per_symbol: int = 2) -> List[TradePacket]:
        counts: Counter = Counter()
        result: List[TradePacket] = []
        for packet in self.rank_by_score(packets):
            if counts[packet.symbol] < max_per_symbol:
                result.append(packet)
                counts[packet.symbol] += 1
        return result

    def filter_by_risk_budget(self, packets: Sequence[TradePacket], settings: TradingSettings) -> List[TradePacket]:
        """Greedy best-first walk under max_total_risk_pct of the account"""
        budget = settings.risk_limits.max_total_risk
        committed = Decimal('0')
        result: List[TradePacket] = []
        for packet in self.rank_by_score(packets):
            if committed + packet.max_loss <= budget:
                result.append(packet)
                committed += packet.max_loss
            else:
                logger.debug(
                    f"Risk budget skip: {packet.symbol} {packet.strategy_type.value} "
                    f"max loss ${packet.max_loss} with ${committed} of ${budget} committed"
                )
        return result

    def apply_all_filters(
        self,
        packets: Sequence[TradePacket],
        settings: TradingSettings,
        options: Optional[RankingOptions] = None
    ) -> List[TradePacket]:
        options = options or RankingOptions()
        result = self.filter_by_min_score(packets, options.min_score)
        result = self.top_per_strategy(result, options.top_per_strategy)
        result = self.diversify_by_symbol(result, options.max_per_symbol)
        if options.apply_risk_budget:
            result = self.filter_by_risk_budget(result, settings)

        logger.info(f"Ranked {len(packets)} candidates down to {len(result)}")
        return result

    def calculate_stats(self, packets: Sequence[TradePacket]) -> RankingStats:
        if not packets:
            return RankingStats(
                count=0, avg_score=0.0, max_score=0.0, min_score=0.0,
                total_max_profit=Decimal('0'), total_max_loss=Decimal('0'), total_credit=Decimal('0'),
                avg_conviction=0.0, avg_uncertainty=0.0, by_strategy={}, by_symbol={},
            )

        scores = [p.score for p in packets]
        count = len(packets)
        return RankingStats(
            count=count,
            avg_score=float(round(sum(scores) / count)),
            max_score=max(scores),
            min_score=min(scores),
            total_max_profit=sum((p.risk_box.max_profit for p in packets), Decimal('0')),
            total_max_loss=sum((p.risk_box.max_loss for p in packets), Decimal('0')),
            total_credit=sum((p.net_credit for p in packets), Decimal('0')),
            avg_conviction=float(round(sum(p.conviction.confidence for p in packets) / count)),
            avg_uncertainty=float(round(sum(p.conviction.uncertainty for p in packets) / count)),
            by_strategy=dict(Counter(p.strategy_type.value for p in packets)),
            by_symbol=dict(Counter(p.symbol for p in packets)),
        )
