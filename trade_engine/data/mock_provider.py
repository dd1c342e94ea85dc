"""
Simulated Market Data Provider - Options Trade-Generation Engine

Deterministic market data for development, demos and tests. Quotes come from
a fixed seed table; history, chains and volatility metrics are generated from
per-symbol seeded random streams so repeated calls return identical data.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import math
import zlib
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.stats import norm

from ..signals.indicators import closes_of, realized_volatility
from ..utils import calculate_dte, money
from .occ import build_occ_symbol
from .provider import (
    HistoricalPrice, HistoryRange, OptionChain, OptionContract, OptionType,
    Quote, SymbolNotFoundError, VolatilityData
)

logger = logging.getLogger(__name__)


# symbol: (price, bid, ask, open, high, low, previous_close, volume, avg_volume)
SEED_QUOTES: Dict[str, Tuple[str, str, str, str, str, str, str, int, int]] = {
    "SPY": ("585.42", "585.40", "585.44", "583.50", "586.20", "582.80", "583.15", 45_000_000, 52_000_000),
    "QQQ": ("512.35", "512.32", "512.38", "510.20", "513.80", "509.50", "510.05", 32_000_000, 38_000_000),
    "IWM": ("225.18", "225.15", "225.21", "224.50", "226.30", "223.90", "224.25", 22_000_000, 25_000_000),
    "DIA": ("428.55", "428.52", "428.58", "427.20", "429.40", "426.80", "427.10", 3_500_000, 4_000_000),
    "AAPL": ("242.85", "242.82", "242.88", "241.50", "243.60", "240.90", "241.20", 48_000_000, 55_000_000),
    "MSFT": ("438.22", "438.18", "438.26", "436.80", "439.50", "435.60", "436.50", 18_000_000, 22_000_000),
    "AMZN": ("228.45", "228.42", "228.48", "227.20", "229.80", "226.50", "227.10", 35_000_000, 42_000_000),
    "NVDA": ("142.68", "142.65", "142.71", "141.20", "143.80", "140.50", "141.00", 280_000_000, 320_000_000),
    "META": ("612.35", "612.30", "612.40", "609.80", "614.20", "608.50", "609.50", 12_000_000, 15_000_000),
    "GOOGL": ("198.42", "198.40", "198.44", "197.30", "199.20", "196.80", "197.20", 22_000_000, 28_000_000),
    "TSLA": ("425.80", "425.75", "425.85", "422.50", "428.40", "420.30", "422.20", 85_000_000, 95_000_000),
    # Sector ETFs
    "XLK": ("238.50", "238.48", "238.52", "237.20", "239.40", "236.50", "237.10", 8_000_000, 9_500_000),
    "XLF": ("48.25", "48.24", "48.26", "47.90", "48.50", "47.70", "47.85", 28_000_000, 32_000_000),
    "XLE": ("85.42", "85.40", "85.44", "85.80", "86.20", "84.90", "85.70", 15_000_000, 18_000_000),
    "XLV": ("148.30", "148.28", "148.32", "147.80", "148.90", "147.50", "147.70", 6_000_000, 7_500_000),
    "XLY": ("225.15", "225.12", "225.18", "224.20", "226.00", "223.80", "224.10", 4_500_000, 5_500_000),
    "XLP": ("82.45", "82.44", "82.46", "82.20", "82.70", "82.00", "82.15", 9_000_000, 11_000_000),
    "XLI": ("138.20", "138.18", "138.22", "137.50", "138.80", "137.20", "137.40", 7_000_000, 8_500_000),
    "XLU": ("78.65", "78.64", "78.66", "78.30", "79.00", "78.10", "78.25", 10_000_000, 12_000_000),
}

MOCK_SYMBOLS = list(SEED_QUOTES)

HIGH_VOL_SYMBOLS = {"TSLA", "NVDA"}

# Daily drift of the simulated walk; large enough that the 50/200-day trend
# read does not flip with the noise
DEFAULT_DRIFT = 0.0012
TREND_DRIFT: Dict[str, float] = {
    "XLE": -0.0012,
    "XLU": 0.0,
}

STRIKES_PER_SIDE = 15


def _rng(*parts: str) -> np.random.Generator:
    """Stable per-key generator (crc32 is process independent, unlike hash())"""
    return np.random.default_rng(zlib.crc32(":".join(parts).encode()))


def _base_iv(symbol: str) -> float:
    if symbol in HIGH_VOL_SYMBOLS:
        return 0.45
    if symbol.startswith("X"):
        return 0.18
    return 0.22


def _strike_interval(price: float) -> float:
    if price > 500:
        return 5.0
    if price > 200:
        return 2.5
    if price > 50:
        return 1.0
    return 0.5


def _third_friday(year: int, month: int) -> date:
    first = date(year, month, 1)
    first_friday = first + timedelta(days=(4 - first.weekday()) % 7)
    return first_friday + timedelta(days=14)


def generate_expirations(today: date) -> List[date]:
    """Eight weekly Fridays plus the monthly third Fridays two to five months out"""
    expirations = set()

    next_friday = today + timedelta(days=(4 - today.weekday()) % 7 or 7)
    for week in range(8):
        expirations.add(next_friday + timedelta(weeks=week))

    for offset in range(2, 6):
        month_index = today.month - 1 + offset
        year = today.year + month_index // 12
        expirations.add(_third_friday(year, month_index % 12 + 1))

    return sorted(expirations)


def generate_history(symbol: str, current_price: float, avg_volume: int, days: int, today: date) -> List[HistoricalPrice]:
    """
    Weekday-only random walk that finishes exactly at current_price.

    The walk is generated backwards from today so the latest close always
    matches the seeded quote.
    """
    rng = _rng(symbol, "history", str(days))
    volatility = 0.025 if symbol in HIGH_VOL_SYMBOLS else 0.012
    trend = TREND_DRIFT.get(symbol, DEFAULT_DRIFT)

    dates = [
        today - timedelta(days=offset)
        for offset in range(days, -1, -1)
        if (today - timedelta(days=offset)).weekday() < 5
    ]
    if not dates:
        return []

    returns = rng.uniform(-volatility, volatility, size=len(dates)) + trend
    closes = np.empty(len(dates))
    closes[-1] = current_price
    for i in range(len(dates) - 1, 0, -1):
        closes[i - 1] = closes[i] / (1 + returns[i])

    bars: List[HistoricalPrice] = []
    for i, bar_date in enumerate(dates):
        close = closes[i]
        day_range = close * volatility
        open_price = close + (rng.random() - 0.5) * day_range
        high = max(open_price, close) + rng.random() * day_range * 0.5
        low = min(open_price, close) - rng.random() * day_range * 0.5
        volume = int(avg_volume * (0.7 + rng.random() * 0.6))
        bars.append(HistoricalPrice(
            date=bar_date,
            open=money(open_price),
            high=money(high),
            low=money(low),
            close=money(close) if i < len(dates) - 1 else Decimal(str(current_price)),
            volume=volume,
        ))
    return bars


def price_option(option_type: OptionType, spot: float, strike: float, years: float, iv: float) -> Tuple[float, float, float, float, float]:
    """
    Black-Scholes price and greeks at zero rates.

    Returns:
        (price, delta, gamma, theta per day, vega per vol point)
    """
    sqrt_t = math.sqrt(years)
    d1 = (math.log(spot / strike) + 0.5 * iv * iv * years) / (iv * sqrt_t)
    d2 = d1 - iv * sqrt_t
    density = float(norm.pdf(d1))
    if option_type == OptionType.CALL:
        price = spot * norm.cdf(d1) - strike * norm.cdf(d2)
        delta = norm.cdf(d1)
    else:
        price = strike * norm.cdf(-d2) - spot * norm.cdf(-d1)
        delta = norm.cdf(d1) - 1
    gamma = density / (spot * iv * sqrt_t)
    theta = -spot * density * iv / (2 * sqrt_t) / 365
    vega = spot * density * sqrt_t / 100
    return float(price), float(delta), gamma, theta, vega


def generate_option_chain(symbol: str, underlying_price: float, expiration: date, today: date) -> OptionChain:
    """Black-Scholes chain with an IV smile and liquidity tapering away from the money"""
    rng = _rng(symbol, "chain", expiration.isoformat())
    dte = max(1, calculate_dte(expiration, today))
    years = dte / 365
    interval = _strike_interval(underlying_price)
    base_strike = round(underlying_price / interval) * interval
    base_iv = _base_iv(symbol)
    etf = symbol.startswith("X")
    base_oi = 2000 if etf else 5000
    base_volume = 500 if etf else 1500

    calls: List[OptionContract] = []
    puts: List[OptionContract] = []

    for i in range(-STRIKES_PER_SIDE, STRIKES_PER_SIDE + 1):
        strike = base_strike + i * interval
        if strike <= 0:
            continue
        moneyness = (strike - underlying_price) / underlying_price
        iv = base_iv + abs(moneyness) * 0.5
        spread = 0.08 if abs(moneyness) > 0.1 else 0.04 if abs(moneyness) > 0.05 else 0.02
        liquidity = math.exp(-abs(moneyness) * 10)
        strike_dec = Decimal(str(strike))

        for option_type in (OptionType.CALL, OptionType.PUT):
            mid, delta, gamma, theta, vega = price_option(option_type, underlying_price, strike, years, iv)
            intrinsic = (
                underlying_price - strike if option_type == OptionType.CALL else strike - underlying_price
            )
            contract = OptionContract(
                symbol=build_occ_symbol(symbol, expiration, option_type, strike_dec),
                underlying=symbol,
                expiration=expiration,
                strike=strike_dec,
                option_type=option_type,
                bid=money(max(0.01, mid * (1 - spread / 2))),
                ask=money(max(0.02, mid * (1 + spread / 2))),
                last=money(mid),
                volume=int(base_volume * liquidity * (0.5 + rng.random())),
                open_interest=int(base_oi * liquidity * (0.5 + rng.random())),
                implied_volatility=round(iv, 4),
                delta=round(delta, 2),
                gamma=round(gamma, 4),
                theta=round(theta, 2),
                vega=round(vega, 2),
                in_the_money=intrinsic > 0,
            )
            (calls if option_type == OptionType.CALL else puts).append(contract)

    return OptionChain(underlying=symbol, expiration=expiration, calls=calls, puts=puts)


class MockMarketDataProvider:
    """
    Simulated provider implementing the MarketDataProvider protocol.

    Args:
        today: Fixed "current date" for generated history and expirations;
            defaults to the real date at call time
        extra_quotes: Additional symbol -> Quote entries to serve
    """

    name = "mock"

    def __init__(self, today: Optional[date] = None, extra_quotes: Optional[Dict[str, Quote]] = None):
        self._today = today
        self._extra_quotes = dict(extra_quotes or {})
        self._history_cache: Dict[str, List[HistoricalPrice]] = {}
        self.call_counts: Dict[str, int] = {}

    @property
    def today(self) -> date:
        return self._today or date.today()

    def _count(self, method: str) -> None:
        self.call_counts[method] = self.call_counts.get(method, 0) + 1

    async def get_quote(self, symbol: str) -> Quote:
        self._count("get_quote")
        if symbol in self._extra_quotes:
            return self._extra_quotes[symbol]

        seed = SEED_QUOTES.get(symbol)
        if seed is None:
            raise SymbolNotFoundError(symbol)

        price, bid, ask, open_, high, low, previous_close, volume, avg_volume = seed
        return Quote(
            symbol=symbol,
            price=Decimal(price),
            bid=Decimal(bid),
            ask=Decimal(ask),
            open=Decimal(open_),
            high=Decimal(high),
            low=Decimal(low),
            previous_close=Decimal(previous_close),
            volume=volume,
            avg_volume=avg_volume,
            timestamp=datetime.now(timezone.utc),
        )

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        quotes: Dict[str, Quote] = {}
        for symbol in symbols:
            try:
                quotes[symbol] = await self.get_quote(symbol)
            except SymbolNotFoundError:
                logger.debug(f"Skipping unknown symbol {symbol} in batch quote")
        return quotes

    async def get_historical_prices(
        self,
        symbol: str,
        history_range: HistoryRange = HistoryRange.ONE_YEAR
    ) -> List[HistoricalPrice]:
        self._count("get_historical_prices")
        key = f"{symbol}:{history_range.value}:{self.today.isoformat()}"
        if key not in self._history_cache:
            quote = await self.get_quote(symbol)
            self._history_cache[key] = generate_history(
                symbol, float(quote.price), quote.avg_volume or 10_000_000,
                history_range.calendar_days, self.today
            )
        return self._history_cache[key]

    async def get_option_expirations(self, symbol: str) -> List[date]:
        self._count("get_option_expirations")
        await self.get_quote(symbol)
        return generate_expirations(self.today)

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        self._count("get_option_chain")
        quote = await self.get_quote(symbol)
        return generate_option_chain(symbol, float(quote.price), expiration, self.today)

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        self._count("get_volatility_data")
        history = await self.get_historical_prices(symbol, HistoryRange.THREE_MONTHS)
        closes = closes_of(history)

        def _annualized(window: int) -> Optional[float]:
            hv = realized_volatility(closes, window)
            return round(hv, 2) if hv is not None else None

        rng = _rng(symbol, "volatility", self.today.isoformat())
        iv_rank = float(int(30 + rng.random() * 40))
        return VolatilityData(
            symbol=symbol,
            current_iv=round(_base_iv(symbol) * 100 + (rng.random() - 0.5) * 5, 2),
            iv_rank=iv_rank,
            iv_percentile=float(max(0, min(100, iv_rank + int((rng.random() - 0.5) * 10)))),
            hv20=_annualized(20),
            hv50=_annualized(50),
            vix_proxy=round(16 + rng.random() * 5, 2) if symbol == "SPY" else None,
        )
