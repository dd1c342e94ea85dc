"""
Narrative Generator - Options Trade-Generation Engine

Renders a MarketRegime into a human-readable market brief: title, summary,
trend/volatility/breadth/leadership commentary, strategy implications,
preferred strategies and caution flags.

Pure and deterministic apart from the narrative id and timestamps; makes no
external calls.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..custom_types import (
    BreadthAssessment, DataQualityInfo, MarketRegime, RiskSentiment, TrendRegime, VolatilityRegime
)
from ..strategies.base import StrategyType
from ..utils import to_serializable, utc_now

logger = logging.getLogger(__name__)

# Sector trend score that marks a leader (or, negated, a laggard)
LEADERSHIP_THRESHOLD = 20

TREND_LABELS = {
    TrendRegime.STRONG_UPTREND: "Strong Uptrend",
    TrendRegime.UPTREND: "Uptrend",
    TrendRegime.NEUTRAL: "Range-Bound Market",
    TrendRegime.DOWNTREND: "Downtrend",
    TrendRegime.STRONG_DOWNTREND: "Strong Downtrend",
}

VOLATILITY_LABELS = {
    VolatilityRegime.LOW: "Low Volatility",
    VolatilityRegime.NORMAL: "Normal Volatility",
    VolatilityRegime.ELEVATED: "Elevated Volatility",
    VolatilityRegime.HIGH: "High Volatility",
    VolatilityRegime.PANIC: "Panic Volatility",
}

RISK_LABELS = {
    RiskSentiment.RISK_ON: "Risk-On Environment",
    RiskSentiment.NEUTRAL: "Neutral Environment",
    RiskSentiment.RISK_OFF: "Risk-Off Environment",
}

TREND_ANALYSIS = {
    TrendRegime.STRONG_UPTREND: (
        "{benchmark} is in a strong uptrend, trading well above both the 50-day and 200-day moving "
        "averages. The 50-day MA is above the 200-day MA, confirming the bullish structure. This "
        "environment favors cash-secured puts and bullish credit spreads, as the probability of prices "
        "continuing higher is elevated. However, be cautious of selling calls too aggressively as strong "
        "uptrends can accelerate."
    ),
    TrendRegime.UPTREND: (
        "{benchmark} is in a confirmed uptrend, with price above the 50-day moving average. The trend "
        "structure remains constructive, though momentum may be moderating from recent highs. This is a "
        "supportive environment for income strategies, particularly cash-secured puts on pullbacks to "
        "support levels."
    ),
    TrendRegime.NEUTRAL: (
        "{benchmark} is range-bound, trading between the 50-day and 200-day moving averages. This "
        "consolidation phase can persist, making it suitable for both put credit spreads below support "
        "and call credit spreads above resistance. Focus on mean-reversion strategies and defined-risk "
        "positions."
    ),
    TrendRegime.DOWNTREND: (
        "{benchmark} is in a downtrend, trading below the 50-day moving average. Caution is warranted for "
        "bullish positions. Consider call credit spreads for bearish exposure, or wait for stabilization "
        "before selling puts. Quality and selectivity become paramount."
    ),
    TrendRegime.STRONG_DOWNTREND: (
        "{benchmark} is in a strong downtrend, trading well below both major moving averages. This is a "
        "challenging environment for income strategies. Consider reduced position sizes, wider buffers, "
        "or staying on the sidelines until the trend stabilizes. Capital preservation should be the "
        "priority."
    ),
}

VOLATILITY_ANALYSIS = {
    VolatilityRegime.LOW: (
        "Volatility is compressed (low IV rank), meaning option premiums are relatively cheap. While this "
        "reduces income potential, it also means lower risk of large moves. Consider using strategies "
        "with longer DTE to capture more time value, or wait for a volatility uptick before deploying "
        "new positions."
    ),
    VolatilityRegime.NORMAL: (
        "Volatility is in a normal range, providing balanced risk/reward for option sellers. This is "
        "often the ideal environment for consistent income generation. Standard position sizing and "
        "DTE ranges are appropriate."
    ),
    VolatilityRegime.ELEVATED: (
        "Volatility is elevated, which increases option premiums and income potential. This benefits "
        "option sellers, but also signals increased market uncertainty. Consider tighter risk "
        "management, smaller position sizes, and wider buffers to your short strikes."
    ),
    VolatilityRegime.HIGH: (
        "Volatility is high, with IV rank above the 60th percentile. Premiums are attractive for "
        "sellers, but large price swings are more likely. Use defined-risk strategies (credit spreads) "
        "over naked positions, and maintain strict adherence to position limits."
    ),
    VolatilityRegime.PANIC: (
        "Volatility is at panic levels. While premiums are very rich, this environment carries extreme "
        "risk. Consider staying on the sidelines or using very small position sizes with maximum buffer. "
        "Only the most conservative defined-risk strategies should be considered."
    ),
}


@dataclass(frozen=True)
class MarketNarrative:
    id: str
    workspace_id: str
    date: date
    created_at: datetime
    title: str
    regime: MarketRegime
    summary: str
    trend_analysis: str
    volatility_analysis: str
    breadth_analysis: str
    leadership_analysis: Optional[str]
    strategy_implications: str
    preferred_strategies: List[StrategyType]
    caution_flags: List[str]
    data_quality: DataQualityInfo

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


class NarrativeGenerator:
    """Template-driven market brief from a MarketRegime"""

    def __init__(self, benchmark: str = "SPY"):
        self.benchmark = benchmark

    def generate_narrative(self, regime: MarketRegime, workspace_id: str = "local") -> MarketNarrative:
        now = utc_now()
        narrative = MarketNarrative(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            date=now.date(),
            created_at=now,
            title=self.generate_title(regime),
            regime=regime,
            summary=self.generate_summary(regime),
            trend_analysis=TREND_ANALYSIS[regime.trend].format(benchmark=self.benchmark),
            volatility_analysis=VOLATILITY_ANALYSIS[regime.volatility],
            breadth_analysis=self.analyze_breadth(regime),
            leadership_analysis=self.analyze_leadership(regime),
            strategy_implications=self.analyze_strategy_implications(regime),
            preferred_strategies=self.get_preferred_strategies(regime),
            caution_flags=self.get_caution_flags(regime),
            data_quality=regime.data_quality,
        )
        logger.info(f"Narrative: {narrative.title}")
        return narrative

    def generate_title(self, regime: MarketRegime) -> str:
        return (
            f"{TREND_LABELS[regime.trend]} with {VOLATILITY_LABELS[regime.volatility]} - "
            f"{RISK_LABELS[regime.risk_on_off]}"
        )

    def generate_summary(self, regime: MarketRegime) -> str:
        parts = []
        if regime.trend.is_bullish:
            parts.append(f"Markets are trending higher with {self.benchmark} trading above key moving averages.")
        elif regime.trend == TrendRegime.NEUTRAL:
            parts.append("Markets are consolidating in a range-bound pattern.")
        else:
            parts.append("Markets are facing selling pressure with prices below key moving averages.")

        if regime.volatility in (VolatilityRegime.LOW, VolatilityRegime.NORMAL):
            parts.append("Volatility remains contained, suggesting orderly market conditions.")
        elif regime.volatility == VolatilityRegime.ELEVATED:
            parts.append("Volatility is elevated, which increases option premiums but also risk.")
        else:
            parts.append("Volatility is significantly elevated, indicating heightened uncertainty and risk.")

        assessment = regime.breadth.assessment
        if assessment in (BreadthAssessment.STRONG, BreadthAssessment.HEALTHY):
            parts.append("Market breadth is healthy with broad participation across the universe.")
        elif assessment == BreadthAssessment.MIXED:
            parts.append("Market breadth is mixed, suggesting selective opportunities.")
        else:
            parts.append("Market breadth is weak, indicating limited participation.")

        return " ".join(parts)

    def analyze_breadth(self, regime: MarketRegime) -> str:
        breadth = regime.breadth
        pct = breadth.percent_above_50ma
        assessment = breadth.assessment

        if assessment == BreadthAssessment.STRONG:
            text = "Market breadth is strong, with widespread participation across the universe. "
            if pct is not None:
                text += f"{pct:.0f}% of tracked symbols are above their 50-day moving average. "
            return text + ("This broad strength supports bullish income strategies and suggests lower risk "
                           "of sudden reversals.")
        if assessment == BreadthAssessment.HEALTHY:
            text = "Market breadth is healthy, indicating solid but not exceptional participation. "
            if pct is not None:
                text += f"{pct:.0f}% of symbols are above their 50-day MA. "
            return text + "Continue with normal income strategies but remain selective on individual positions."
        if assessment == BreadthAssessment.MIXED:
            text = "Market breadth is mixed, suggesting a market of stocks rather than a stock market. "
            if breadth.adv_dec_ratio is not None:
                text += f"The advance/decline ratio is {breadth.adv_dec_ratio:.2f}. "
            return text + "Focus on the strongest individual setups and be more selective with position entry."
        if assessment == BreadthAssessment.WEAK:
            text = "Market breadth is weak, with limited participation. "
            if pct is not None:
                text += f"Only {pct:.0f}% of symbols are above their 50-day MA. "
            return text + ("Exercise caution with new positions. The narrow leadership increases risk of "
                           "sudden market-wide selling.")
        return ("Market breadth is very weak, a warning sign for equity positions. Consider reducing "
                "exposure and focusing only on the highest-conviction, most liquid opportunities.")

    def analyze_leadership(self, regime: MarketRegime) -> Optional[str]:
        if not regime.leadership:
            return None

        leaders = [s for s in regime.leadership if s.trend_score > LEADERSHIP_THRESHOLD]
        laggards = [s for s in regime.leadership if s.trend_score < -LEADERSHIP_THRESHOLD]

        text = "Sector Analysis: "
        if leaders:
            text += f"Leading sectors include {', '.join(s.name for s in leaders[:3])}. "
        if laggards:
            text += f"Lagging sectors include {', '.join(s.name for s in laggards[:3])}. "

        if len(leaders) > len(laggards):
            text += ("The leadership pattern suggests a constructive market environment. Focus income "
                     "strategies on leading sectors for higher probability setups.")
        elif len(laggards) > len(leaders):
            text += ("The weak sector rotation suggests defensive positioning. Consider sector ETFs in "
                     "leading groups for income strategies.")
        else:
            text += "Mixed sector performance suggests selective positioning based on individual symbol analysis."
        return text

    def analyze_strategy_implications(self, regime: MarketRegime) -> str:
        parts = []
        vol = regime.volatility
        if regime.trend.is_bullish:
            parts.append("The uptrend favors CASH-SECURED PUTS on quality names, collecting premium while "
                         "potentially acquiring shares at a discount.")
            if vol in (VolatilityRegime.ELEVATED, VolatilityRegime.HIGH):
                parts.append("Elevated volatility in an uptrend creates attractive PUT CREDIT SPREAD "
                             "opportunities with rich premiums.")
        elif regime.trend == TrendRegime.NEUTRAL:
            parts.append("Range-bound conditions favor both PUT CREDIT SPREADS below support and CALL CREDIT "
                         "SPREADS above resistance.")
            parts.append("COVERED CALLS work well in sideways markets for existing positions.")
        else:
            parts.append("The downtrend suggests caution with bullish strategies. CALL CREDIT SPREADS become "
                         "more attractive.")
            parts.append("If selling puts, use wider buffers and smaller sizes. Defined-risk spreads "
                         "preferred over naked positions.")

        if vol == VolatilityRegime.LOW:
            parts.append("Low volatility compresses premiums; consider longer DTE positions (45+ days) to "
                         "capture more time value.")
        elif vol in (VolatilityRegime.HIGH, VolatilityRegime.PANIC):
            parts.append("High volatility inflates premiums but increases risk. Stick to defined-risk "
                         "strategies and maintain strict position limits.")

        if regime.risk_on_off == RiskSentiment.RISK_OFF:
            parts.append("The risk-off environment warrants defensive positioning. Prioritize capital "
                         "preservation over income generation.")
        return " ".join(parts)

    def get_preferred_strategies(self, regime: MarketRegime) -> List[StrategyType]:
        vol = regime.volatility
        if regime.trend.is_bullish:
            strategies = [StrategyType.CASH_SECURED_PUT]
            if vol in (VolatilityRegime.ELEVATED, VolatilityRegime.HIGH):
                strategies.append(StrategyType.PUT_CREDIT_SPREAD)
        elif regime.trend == TrendRegime.NEUTRAL:
            strategies = [
                StrategyType.PUT_CREDIT_SPREAD,
                StrategyType.CALL_CREDIT_SPREAD,
                StrategyType.COVERED_CALL,
            ]
        else:
            strategies = [StrategyType.CALL_CREDIT_SPREAD]
            if vol in (VolatilityRegime.HIGH, VolatilityRegime.PANIC):
                strategies.append(StrategyType.PUT_CREDIT_SPREAD)

        # covered calls stay available to anyone holding shares
        if StrategyType.COVERED_CALL not in strategies:
            strategies.append(StrategyType.COVERED_CALL)
        return strategies

    def get_caution_flags(self, regime: MarketRegime) -> List[str]:
        flags = []
        if regime.trend == TrendRegime.STRONG_DOWNTREND:
            flags.append("Strong downtrend - exercise extreme caution with bullish positions")

        if regime.volatility == VolatilityRegime.PANIC:
            flags.append("Panic volatility - large moves likely, consider staying on sidelines")
        elif regime.volatility == VolatilityRegime.HIGH:
            flags.append("High volatility - use reduced position sizes and wider buffers")
        elif regime.volatility == VolatilityRegime.ELEVATED:
            flags.append("Elevated volatility - reduce position sizes")

        if regime.risk_on_off == RiskSentiment.RISK_OFF:
            flags.append("Risk-off environment - prioritize capital preservation")

        if regime.breadth.assessment == BreadthAssessment.VERY_WEAK:
            flags.append("Very weak breadth - narrow market increases reversal risk")
        elif regime.breadth.assessment == BreadthAssessment.WEAK:
            flags.append("Narrow breadth - few symbols are participating in the move")

        quality = regime.data_quality
        if quality is not None and not quality.has_full_data:
            flags.append(f"Incomplete data - missing: {', '.join(quality.missing_fields)}")
        return flags
