from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .utils import to_serializable


class TrendRegime(Enum):
    STRONG_UPTREND = "strong_uptrend"
    UPTREND = "uptrend"
    NEUTRAL = "neutral"
    DOWNTREND = "downtrend"
    STRONG_DOWNTREND = "strong_downtrend"

    @property
    def is_bullish(self) -> bool:
        return self in (TrendRegime.UPTREND, TrendRegime.STRONG_UPTREND)

    @property
    def is_bearish(self) -> bool:
        return self in (TrendRegime.DOWNTREND, TrendRegime.STRONG_DOWNTREND)


class VolatilityRegime(Enum):
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    PANIC = "panic"


class RiskSentiment(Enum):
    RISK_ON = "risk_on"
    NEUTRAL = "neutral"
    RISK_OFF = "risk_off"


class BreadthAssessment(Enum):
    STRONG = "strong"
    HEALTHY = "healthy"
    MIXED = "mixed"
    WEAK = "weak"
    VERY_WEAK = "very_weak"


@dataclass(frozen=True)
class MarketBreadth:
    adv_dec_ratio: Optional[float]  # None when nothing declined
    percent_above_50ma: Optional[float]
    assessment: BreadthAssessment


@dataclass(frozen=True)
class SectorStrength:
    symbol: str
    name: str
    trend_score: float


@dataclass(frozen=True)
class DataQualityInfo:
    has_full_data: bool
    missing_fields: List[str]
    data_source: str  # provider name
    # "SYMBOL: error" for upstream fetches the regime had to do without
    source_errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MarketRegime:
    trend: TrendRegime
    volatility: VolatilityRegime
    risk_on_off: RiskSentiment
    breadth: MarketBreadth
    leadership: Optional[List[SectorStrength]]  # strongest sector first
    computed_at: datetime
    data_quality: DataQualityInfo
    trend_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class LiquidityScore:
    volume_score: float  # 0-100
    option_oi_score: float
    spread_score: float
    overall_score: float
    meets_minimum: bool


@dataclass(frozen=True)
class EarningsProximity:
    days_to_earnings: Optional[int]
    within_exclusion_window: bool


@dataclass(frozen=True)
class SymbolSignals:
    symbol: str
    trend: TrendRegime
    trend_score: float  # -100..100
    ma50: Optional[float]
    ma200: Optional[float]
    price_vs_ma50_pct: Optional[float]
    price_vs_ma200_pct: Optional[float]
    volatility: VolatilityRegime
    iv_rank: Optional[float]
    hv20: Optional[float]
    liquidity: LiquidityScore
    earnings_proximity: EarningsProximity
    computed_at: datetime
    current_iv: Optional[float] = None
    price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)
