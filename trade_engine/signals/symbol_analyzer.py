"""
Symbol Analyzer - Options Trade-Generation Engine

Turns one symbol into SymbolSignals: trend from the 50/200-day averages,
volatility regime, option liquidity measured on the at-the-money contracts of
a ~30 DTE expiration, and the earnings-exclusion flag.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
from datetime import date
from typing import Dict, Mapping, Optional, Sequence

from ..concurrency import gather_settled
from ..custom_types import EarningsProximity, LiquidityScore, SymbolSignals
from ..data.provider import HistoryRange, MarketDataProvider, OptionChain, ProviderError, Quote
from ..engine.settings import TradingSettings
from ..utils import DateLike, calculate_dte, is_within_days, to_date, utc_now
from .indicators import (
    DEFAULT_THRESHOLDS, RegimeThresholds, calculate_historical_volatility,
    calculate_moving_averages, determine_trend_regime, determine_volatility_regime, score_liquidity
)

logger = logging.getLogger(__name__)

LIQUIDITY_CHECK_MIN_DTE = 21
LIQUIDITY_CHECK_MAX_DTE = 45
DEFAULT_BATCH_SIZE = 5

NO_LIQUIDITY = LiquidityScore(
    volume_score=0.0, option_oi_score=0.0, spread_score=0.0, overall_score=0.0, meets_minimum=False
)


def evaluate_earnings(earnings_date: Optional[DateLike], exclusion_days: int, today: Optional[date] = None) -> EarningsProximity:
    if earnings_date is None:
        return EarningsProximity(days_to_earnings=None, within_exclusion_window=False)
    today = today or date.today()
    return EarningsProximity(
        days_to_earnings=(to_date(earnings_date) - today).days,
        within_exclusion_window=is_within_days(earnings_date, exclusion_days, today),
    )


def measure_chain_liquidity(chain: OptionChain, quote: Quote, settings: TradingSettings) -> LiquidityScore:
    """
    Score liquidity from the strikes nearest the money.

    Option volume/OI/spread are averaged over the ATM put and call; the volume
    component is then replaced by underlying average volume relative to the
    configured floor.
    """
    filters = settings.liquidity_filters
    atm_put = min(chain.puts, key=lambda c: abs(c.strike - quote.price)) if chain.puts else None
    atm_call = min(chain.calls, key=lambda c: abs(c.strike - quote.price)) if chain.calls else None
    sampled = [c for c in (atm_put, atm_call) if c is not None]
    if not sampled:
        return NO_LIQUIDITY

    count = len(sampled)
    avg_volume = round(sum(c.volume for c in sampled) / count)
    avg_oi = round(sum(c.open_interest for c in sampled) / count)
    avg_spread = sum(c.spread_pct for c in sampled) / count

    scored = score_liquidity(
        avg_volume,
        avg_oi,
        avg_spread,
        filters.min_option_volume,
        filters.min_option_oi,
        filters.max_bid_ask_spread_pct,
    )
    underlying_score = min(100.0, quote.avg_volume / filters.min_underlying_volume * 20)
    return LiquidityScore(
        volume_score=round(underlying_score, 1),
        option_oi_score=scored.option_oi_score,
        spread_score=scored.spread_score,
        overall_score=scored.overall_score,
        meets_minimum=scored.meets_minimum and quote.avg_volume >= filters.min_underlying_volume,
    )


class SymbolAnalyzer:
    """Computes per-symbol signals from the market data provider"""

    def __init__(
        self,
        provider: MarketDataProvider,
        thresholds: RegimeThresholds = DEFAULT_THRESHOLDS,
        timeout_seconds: Optional[float] = None,
        batch_size: int = DEFAULT_BATCH_SIZE
    ):
        self._provider = provider
        self._thresholds = thresholds
        self._timeout = timeout_seconds
        self._batch_size = max(1, batch_size)

    async def analyze_symbol(
        self,
        symbol: str,
        settings: TradingSettings,
        earnings_date: Optional[DateLike] = None
    ) -> SymbolSignals:
        """
        Compute signals for a single symbol.

        Raises:
            ProviderError: When quote, history, volatility or expirations fail
        """
        quote, history, vol, expirations = await asyncio.gather(
            self._provider.get_quote(symbol),
            self._provider.get_historical_prices(symbol, HistoryRange.ONE_YEAR),
            self._provider.get_volatility_data(symbol),
            self._provider.get_option_expirations(symbol),
        )

        price = float(quote.price)
        mas = calculate_moving_averages(history)
        trend, trend_score = determine_trend_regime(price, mas.ma50, mas.ma200, self._thresholds)
        hv20 = calculate_historical_volatility(history, 20)
        volatility = determine_volatility_regime(vol.iv_rank, vol.current_iv, hv20, self._thresholds)

        liquidity = NO_LIQUIDITY
        if expirations:
            target = next(
                (exp for exp in expirations
                 if LIQUIDITY_CHECK_MIN_DTE <= calculate_dte(exp) <= LIQUIDITY_CHECK_MAX_DTE),
                expirations[0],
            )
            try:
                chain = await self._provider.get_option_chain(symbol, target)
                liquidity = measure_chain_liquidity(chain, quote, settings)
            except ProviderError as e:
                logger.warning(f"Liquidity check failed for {symbol}: {e}")

        return SymbolSignals(
            symbol=symbol,
            trend=trend,
            trend_score=round(trend_score, 2),
            ma50=round(mas.ma50, 4) if mas.ma50 is not None else None,
            ma200=round(mas.ma200, 4) if mas.ma200 is not None else None,
            price_vs_ma50_pct=round((price - mas.ma50) / mas.ma50 * 100, 2) if mas.ma50 else None,
            price_vs_ma200_pct=round((price - mas.ma200) / mas.ma200 * 100, 2) if mas.ma200 else None,
            volatility=volatility,
            iv_rank=vol.iv_rank,
            hv20=round(hv20, 2) if hv20 is not None else None,
            liquidity=liquidity,
            earnings_proximity=evaluate_earnings(earnings_date, settings.earnings_exclusion_days),
            computed_at=utc_now(),
            current_iv=vol.current_iv,
            price=price,
        )

    async def analyze_symbols(
        self,
        symbols: Sequence[str],
        settings: TradingSettings,
        earnings_dates: Optional[Mapping[str, Optional[DateLike]]] = None
    ) -> Dict[str, SymbolSignals]:
        """
        Analyze symbols in batches; failed symbols are logged and omitted.
        """
        earnings_dates = earnings_dates or {}
        results: Dict[str, SymbolSignals] = {}
        symbols = list(symbols)

        for start in range(0, len(symbols), self._batch_size):
            batch = symbols[start:start + self._batch_size]
            outcomes = await gather_settled(
                batch,
                lambda s: self.analyze_symbol(s, settings, earnings_dates.get(s)),
                timeout_seconds=self._timeout,
            )
            for outcome in outcomes:
                if outcome.ok:
                    results[outcome.key] = outcome.value
                else:
                    logger.warning(f"Failed to analyze {outcome.key}: {outcome.error}")

        return results
