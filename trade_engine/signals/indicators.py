"""
Technical Indicators - Options Trade-Generation Engine

Moving averages, realized volatility, trend/volatility bucketing, liquidity
scoring and premium return metrics. Bars are converted to a pandas DataFrame
and indicators are computed with pandas rolling windows and numpy.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..custom_types import LiquidityScore, TrendRegime, VolatilityRegime
from ..data.provider import HistoricalPrice
from ..utils import clamp

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252


@dataclass(frozen=True)
class RegimeThresholds:
    """Bucket boundaries for trend score and volatility readings"""
    # trend score (-100..100) lower bounds
    strong_uptrend: float = 50
    uptrend: float = 20
    neutral: float = -20
    downtrend: float = -50
    # IV rank lower bounds
    iv_rank_panic: float = 80
    iv_rank_high: float = 60
    iv_rank_elevated: float = 40
    iv_rank_normal: float = 20
    # IV / HV20 ratio lower bounds
    ratio_panic: float = 1.5
    ratio_high: float = 1.3
    ratio_elevated: float = 1.1
    ratio_normal: float = 0.9
    # VIX-style index lower bounds
    vix_panic: float = 35
    vix_high: float = 25
    vix_elevated: float = 20
    vix_normal: float = 13


DEFAULT_THRESHOLDS = RegimeThresholds()


@dataclass(frozen=True)
class MovingAverages:
    ma50: Optional[float]
    ma200: Optional[float]
    current: float


def bars_to_frame(history: Sequence[HistoricalPrice]) -> pd.DataFrame:
    """
    Convert daily bars to a pandas DataFrame for technical analysis.

    Returns:
        DataFrame with float OHLC and int volume indexed by date
    """
    if not history:
        return pd.DataFrame(columns=['open', 'high', 'low', 'close', 'volume'])

    df = pd.DataFrame([
        {
            'date': bar.date,
            'open': float(bar.open),
            'high': float(bar.high),
            'low': float(bar.low),
            'close': float(bar.close),
            'volume': int(bar.volume)
        }
        for bar in history
    ])
    df.set_index('date', inplace=True)
    df.sort_index(inplace=True)
    return df


def calculate_sma(closes: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the last ``period`` values"""
    if period <= 0 or len(closes) < period:
        return None
    series = pd.Series(closes, dtype=float)
    return float(series.rolling(window=period).mean().iloc[-1])


def calculate_moving_averages(history: Sequence[HistoricalPrice]) -> MovingAverages:
    closes = bars_to_frame(history)['close'].tolist()
    return MovingAverages(
        ma50=calculate_sma(closes, 50),
        ma200=calculate_sma(closes, 200),
        current=closes[-1] if closes else 0.0,
    )


def realized_volatility(closes: Sequence[float], period: int) -> Optional[float]:
    """
    Annualized volatility (percent) of the last ``period`` log returns.

    Uses the population standard deviation; None with fewer than period + 1
    closes.
    """
    if period <= 0 or len(closes) < period + 1:
        return None
    window = np.asarray(closes[-(period + 1):], dtype=float)
    if np.any(window <= 0):
        return None
    log_returns = np.diff(np.log(window))
    return float(np.std(log_returns) * math.sqrt(TRADING_DAYS_PER_YEAR) * 100)


def calculate_historical_volatility(history: Sequence[HistoricalPrice], period: int = 20) -> Optional[float]:
    return realized_volatility([float(bar.close) for bar in history], period)


def calculate_trend_score(price: float, ma50: Optional[float], ma200: Optional[float]) -> float:
    """
    Trend score in [-100, 100] from price versus the 50/200-day averages.

    Components: distance above MA50 (x3, capped 30), above MA200 (x2, capped
    30) and MA50 versus MA200 (x4, capped 40).
    """
    if not ma50 or not ma200:
        return 0.0

    pct_above_50 = (price - ma50) / ma50 * 100
    pct_above_200 = (price - ma200) / ma200 * 100
    ma50_above_200 = (ma50 - ma200) / ma200 * 100

    return (
        clamp(pct_above_50 * 3, -30, 30)
        + clamp(pct_above_200 * 2, -30, 30)
        + clamp(ma50_above_200 * 4, -40, 40)
    )


def classify_trend_score(score: float, thresholds: RegimeThresholds = DEFAULT_THRESHOLDS) -> TrendRegime:
    if score > thresholds.strong_uptrend:
        return TrendRegime.STRONG_UPTREND
    if score > thresholds.uptrend:
        return TrendRegime.UPTREND
    if score > thresholds.neutral:
        return TrendRegime.NEUTRAL
    if score > thresholds.downtrend:
        return TrendRegime.DOWNTREND
    return TrendRegime.STRONG_DOWNTREND


def determine_trend_regime(
    price: float,
    ma50: Optional[float],
    ma200: Optional[float],
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
) -> Tuple[TrendRegime, float]:
    """Neutral with a zero score when either average is unavailable"""
    if not ma50 or not ma200:
        return TrendRegime.NEUTRAL, 0.0
    score = calculate_trend_score(price, ma50, ma200)
    return classify_trend_score(score, thresholds), score


def determine_volatility_regime(
    iv_rank: Optional[float],
    current_iv: Optional[float],
    hv20: Optional[float],
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS
) -> VolatilityRegime:
    """IV rank when available, else the IV/HV20 ratio, else normal"""
    if iv_rank is not None:
        if iv_rank >= thresholds.iv_rank_panic:
            return VolatilityRegime.PANIC
        if iv_rank >= thresholds.iv_rank_high:
            return VolatilityRegime.HIGH
        if iv_rank >= thresholds.iv_rank_elevated:
            return VolatilityRegime.ELEVATED
        if iv_rank >= thresholds.iv_rank_normal:
            return VolatilityRegime.NORMAL
        return VolatilityRegime.LOW

    if current_iv is not None and hv20:
        ratio = current_iv / hv20
        if ratio >= thresholds.ratio_panic:
            return VolatilityRegime.PANIC
        if ratio >= thresholds.ratio_high:
            return VolatilityRegime.HIGH
        if ratio >= thresholds.ratio_elevated:
            return VolatilityRegime.ELEVATED
        if ratio >= thresholds.ratio_normal:
            return VolatilityRegime.NORMAL
        return VolatilityRegime.LOW

    return VolatilityRegime.NORMAL


def volatility_regime_from_vix(vix: float, thresholds: RegimeThresholds = DEFAULT_THRESHOLDS) -> VolatilityRegime:
    if vix >= thresholds.vix_panic:
        return VolatilityRegime.PANIC
    if vix >= thresholds.vix_high:
        return VolatilityRegime.HIGH
    if vix >= thresholds.vix_elevated:
        return VolatilityRegime.ELEVATED
    if vix >= thresholds.vix_normal:
        return VolatilityRegime.NORMAL
    return VolatilityRegime.LOW


def score_liquidity(
    volume: float,
    open_interest: float,
    spread_pct: float,
    min_volume: float,
    min_oi: float,
    max_spread_pct: float
) -> LiquidityScore:
    """
    Score option liquidity on a 0-100 scale.

    Volume and open interest saturate at five times their minimums; the spread
    score halves at the maximum spread and decays to zero at twice it.
    """
    volume_score = min(100.0, volume / (min_volume * 5) * 100) if min_volume > 0 else 100.0
    oi_score = min(100.0, open_interest / (min_oi * 5) * 100) if min_oi > 0 else 100.0

    if max_spread_pct <= 0:
        spread_score = 0.0
    elif spread_pct <= max_spread_pct:
        spread_score = max(0.0, 100 - spread_pct / max_spread_pct * 50)
    else:
        spread_score = max(0.0, 50 - (spread_pct - max_spread_pct) / max_spread_pct * 50)

    overall = volume_score * 0.3 + oi_score * 0.3 + spread_score * 0.4
    return LiquidityScore(
        volume_score=round(volume_score, 1),
        option_oi_score=round(oi_score, 1),
        spread_score=round(spread_score, 1),
        overall_score=float(round(overall)),
        meets_minimum=(
            volume >= min_volume
            and open_interest >= min_oi
            and spread_pct <= max_spread_pct
        ),
    )


def calculate_annualized_return(credit: float, max_loss: float, dte: int) -> float:
    """Credit over max loss, annualized over DTE, as a percent"""
    if max_loss <= 0 or dte <= 0:
        return 0.0
    raw = credit / max_loss * 100
    return round(raw * 365 / dte, 2)


def calculate_return_on_capital(credit: float, buying_power: float) -> float:
    if buying_power <= 0:
        return 0.0
    return round(credit / buying_power * 100, 2)


def estimate_probability_of_profit(short_delta: float) -> float:
    """Short option POP proxy: 1 - |delta|, in percent"""
    return float(round((1 - abs(short_delta)) * 100))


def closes_of(history: Sequence[HistoricalPrice]) -> List[float]:
    return [float(bar.close) for bar in history]
