"""
Market Regime Detector - Options Trade-Generation Engine

Classifies the market into a single MarketRegime: trend of a benchmark from
its moving averages, a volatility bucket from a VIX-style proxy (falling back
to IV rank and IV/HV), a risk-on/off read, breadth across a symbol basket and
sector leadership.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
from typing import Awaitable, List, Optional, Sequence, Tuple, TypeVar

from ..concurrency import gather_settled, with_timeout
from ..custom_types import (
    BreadthAssessment, DataQualityInfo, MarketBreadth, MarketRegime, RiskSentiment,
    SectorStrength, TrendRegime, VolatilityRegime
)
from ..data.provider import HistoryRange, MarketDataProvider, ProviderError, Quote, HistoricalPrice
from ..utils import utc_now
from .indicators import (
    DEFAULT_THRESHOLDS, RegimeThresholds, calculate_historical_volatility,
    calculate_moving_averages, determine_trend_regime, determine_volatility_regime,
    volatility_regime_from_vix
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BENCHMARK = "SPY"

SECTOR_ETFS: Tuple[Tuple[str, str], ...] = (
    ("XLK", "Technology"),
    ("XLF", "Financials"),
    ("XLE", "Energy"),
    ("XLV", "Healthcare"),
    ("XLY", "Consumer Discretionary"),
    ("XLP", "Consumer Staples"),
    ("XLI", "Industrials"),
    ("XLU", "Utilities"),
)


def assess_risk_sentiment(trend: TrendRegime, volatility: VolatilityRegime) -> RiskSentiment:
    """Joint trend + volatility read"""
    if trend.is_bullish:
        if volatility in (VolatilityRegime.LOW, VolatilityRegime.NORMAL):
            return RiskSentiment.RISK_ON
        return RiskSentiment.NEUTRAL
    if trend.is_bearish:
        return RiskSentiment.RISK_OFF
    if volatility in (VolatilityRegime.HIGH, VolatilityRegime.PANIC):
        return RiskSentiment.RISK_OFF
    return RiskSentiment.NEUTRAL


def assess_breadth(percent_above_50ma: Optional[float], adv_dec_ratio: Optional[float]) -> BreadthAssessment:
    if percent_above_50ma is not None:
        if percent_above_50ma >= 70:
            return BreadthAssessment.STRONG
        if percent_above_50ma >= 55:
            return BreadthAssessment.HEALTHY
        if percent_above_50ma >= 40:
            return BreadthAssessment.MIXED
        if percent_above_50ma >= 25:
            return BreadthAssessment.WEAK
        return BreadthAssessment.VERY_WEAK

    if adv_dec_ratio is not None:
        if adv_dec_ratio >= 2:
            return BreadthAssessment.STRONG
        if adv_dec_ratio >= 1.2:
            return BreadthAssessment.HEALTHY
        if adv_dec_ratio >= 0.8:
            return BreadthAssessment.MIXED
        if adv_dec_ratio >= 0.5:
            return BreadthAssessment.WEAK
        return BreadthAssessment.VERY_WEAK

    return BreadthAssessment.MIXED


class RegimeDetector:
    """
    Computes the market regime from a benchmark plus a breadth basket.

    Deterministic for identical provider data; performs no writes.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        benchmark: str = DEFAULT_BENCHMARK,
        thresholds: RegimeThresholds = DEFAULT_THRESHOLDS,
        timeout_seconds: Optional[float] = None
    ):
        self._provider = provider
        self._benchmark = benchmark
        self._thresholds = thresholds
        self._timeout = timeout_seconds

    async def compute_market_regime(self, universe_symbols: Sequence[str]) -> MarketRegime:
        """
        Build a MarketRegime.

        A benchmark fetch that fails degrades the affected reading to
        NEUTRAL trend / NORMAL volatility; the gap is listed in
        data_quality.missing_fields and the error in data_quality.source_errors.
        """
        missing_fields: List[str] = []
        source_errors: List[str] = []

        history, quote, vol = await asyncio.gather(
            self._fetch_benchmark(
                "history", self._provider.get_historical_prices(self._benchmark, HistoryRange.ONE_YEAR),
                source_errors
            ),
            self._fetch_benchmark("quote", self._provider.get_quote(self._benchmark), source_errors),
            self._fetch_benchmark("volatility", self._provider.get_volatility_data(self._benchmark), source_errors),
        )

        if history is None or quote is None:
            missing_fields.append("benchmarkTrend")
            trend, trend_score = TrendRegime.NEUTRAL, 0.0
        else:
            mas = calculate_moving_averages(history)
            if mas.ma200 is None:
                missing_fields.append("ma200")
            trend, trend_score = determine_trend_regime(
                float(quote.price), mas.ma50, mas.ma200, self._thresholds
            )

        hv20 = calculate_historical_volatility(history, 20) if history else None
        if vol is not None and vol.vix_proxy is not None:
            volatility = volatility_regime_from_vix(vol.vix_proxy, self._thresholds)
        elif vol is not None:
            missing_fields.append("vixProxy")
            volatility = determine_volatility_regime(
                vol.iv_rank, vol.current_iv, vol.hv20 if vol.hv20 is not None else hv20, self._thresholds
            )
        else:
            missing_fields.append("vixProxy")
            volatility = VolatilityRegime.NORMAL
        if vol is None or vol.iv_rank is None:
            missing_fields.append("ivRank")

        breadth = await self.calculate_breadth(universe_symbols)
        leadership = await self.calculate_leadership()

        regime = MarketRegime(
            trend=trend,
            volatility=volatility,
            risk_on_off=assess_risk_sentiment(trend, volatility),
            breadth=breadth,
            leadership=leadership,
            computed_at=utc_now(),
            data_quality=DataQualityInfo(
                has_full_data=not missing_fields,
                missing_fields=missing_fields,
                data_source=getattr(self._provider, "name", "unknown"),
                source_errors=source_errors,
            ),
            trend_score=round(trend_score, 2),
        )
        logger.info(
            f"Market regime: trend={trend.value} vol={volatility.value} "
            f"risk={regime.risk_on_off.value} breadth={breadth.assessment.value}"
        )
        return regime

    async def _fetch_benchmark(self, what: str, awaitable: Awaitable[T], source_errors: List[str]) -> Optional[T]:
        try:
            return await with_timeout(awaitable, self._timeout, f"{what} {self._benchmark}")
        except ProviderError as e:
            logger.warning(f"Benchmark {what} unavailable for {self._benchmark}: {e}")
            error = f"{self._benchmark}: {e}"
            if error not in source_errors:
                source_errors.append(error)
            return None

    async def _quote_and_history(self, symbol: str, history_range: HistoryRange) -> Tuple[Quote, List[HistoricalPrice]]:
        return await asyncio.gather(
            self._provider.get_quote(symbol),
            self._provider.get_historical_prices(symbol, history_range),
        )

    async def calculate_breadth(self, symbols: Sequence[str]) -> MarketBreadth:
        """Advance/decline and percent above MA50 across the basket; failures are skipped"""
        results = await gather_settled(
            symbols,
            lambda s: self._quote_and_history(s, HistoryRange.THREE_MONTHS),
            timeout_seconds=self._timeout,
        )

        advancing = declining = above_50ma = total = 0
        for result in results:
            if not result.ok:
                logger.warning(f"Breadth skipped {result.key}: {result.error}")
                continue
            quote, history = result.value
            total += 1
            if quote.price > quote.previous_close:
                advancing += 1
            else:
                declining += 1
            ma50 = calculate_moving_averages(history).ma50
            if ma50 is not None and float(quote.price) > ma50:
                above_50ma += 1

        adv_dec_ratio = round(advancing / declining, 2) if declining > 0 else None
        percent_above = round(above_50ma / total * 100, 1) if total > 0 else None
        return MarketBreadth(
            adv_dec_ratio=adv_dec_ratio,
            percent_above_50ma=percent_above,
            assessment=assess_breadth(percent_above, adv_dec_ratio),
        )

    async def calculate_leadership(self) -> Optional[List[SectorStrength]]:
        """Sector ETFs ranked by trend score, strongest first; None when none load"""
        names = dict(SECTOR_ETFS)
        results = await gather_settled(
            list(names),
            lambda s: self._quote_and_history(s, HistoryRange.ONE_YEAR),
            timeout_seconds=self._timeout,
        )

        sectors: List[SectorStrength] = []
        for result in results:
            if not result.ok:
                logger.warning(f"Sector {result.key} skipped: {result.error}")
                continue
            quote, history = result.value
            mas = calculate_moving_averages(history)
            _, score = determine_trend_regime(float(quote.price), mas.ma50, mas.ma200, self._thresholds)
            sectors.append(SectorStrength(symbol=result.key, name=names[result.key], trend_score=round(score, 2)))

        sectors.sort(key=lambda s: s.trend_score, reverse=True)
        return sectors or None
