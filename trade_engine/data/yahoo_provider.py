"""
Yahoo Finance Market Data Provider - Options Trade-Generation Engine

MarketDataProvider implementation over the ``yfinance`` package. yfinance is
synchronous, so each call runs in a worker thread behind the rate limiter.
Yahoo chains carry implied volatility but no greeks; delta is filled in with
Black-Scholes from the contract's own IV.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
import yfinance as yf
from scipy.stats import norm

from ..signals.indicators import closes_of, realized_volatility
from ..utils import to_decimal
from .cache import TTLCache
from .provider import (
    DataUnavailableError, HistoricalPrice, HistoryRange, OptionChain, OptionContract,
    OptionType, ProviderError, Quote, SymbolNotFoundError, VolatilityData
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RISK_FREE_RATE = 0.045

_PERIODS = {
    HistoryRange.ONE_MONTH: "1mo",
    HistoryRange.THREE_MONTHS: "3mo",
    HistoryRange.SIX_MONTHS: "6mo",
    HistoryRange.ONE_YEAR: "1y",
}


def black_scholes_delta(
    option_type: OptionType,
    spot: float,
    strike: float,
    years: float,
    volatility: float,
    rate: float = RISK_FREE_RATE
) -> Optional[float]:
    """Black-Scholes delta; None when inputs are degenerate"""
    if spot <= 0 or strike <= 0 or years <= 0 or volatility <= 0:
        return None
    d1 = (math.log(spot / strike) + (rate + 0.5 * volatility ** 2) * years) / (volatility * math.sqrt(years))
    if option_type == OptionType.CALL:
        return float(norm.cdf(d1))
    return float(norm.cdf(d1) - 1)


def _num(value: Any, default: float = 0.0) -> float:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return default
    return float(value)


class YahooMarketDataProvider:
    """yfinance-backed provider; no credentials required"""

    name = "yahoo"

    def __init__(self, min_request_interval: float = 0.25):
        self._limiter = RateLimiter(min_request_interval)
        self._history = TTLCache("yahoo.history", 300)
        self._expirations = TTLCache("yahoo.expirations", 300)
        self._chains = TTLCache("yahoo.chains", 60)

    async def _call(self, fn, *args):
        async def _run():
            return await asyncio.to_thread(fn, *args)
        try:
            return await self._limiter.run(_run)
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"yfinance call {getattr(fn, '__name__', fn)} failed: {e}")
            raise DataUnavailableError(f"Yahoo Finance request failed: {e}") from e

    @staticmethod
    def _load_quote(symbol: str) -> Dict[str, Any]:
        info = yf.Ticker(symbol).fast_info
        return {
            "price": info.last_price,
            "open": info.open,
            "high": info.day_high,
            "low": info.day_low,
            "previous_close": info.previous_close,
            "volume": info.last_volume,
            "avg_volume": info.three_month_average_volume,
        }

    async def get_quote(self, symbol: str) -> Quote:
        raw = await self._call(self._load_quote, symbol)
        price = raw.get("price")
        if price is None or (isinstance(price, float) and math.isnan(price)):
            raise SymbolNotFoundError(symbol)
        price_dec = to_decimal(round(float(price), 4))
        return Quote(
            symbol=symbol,
            price=price_dec,
            bid=price_dec,
            ask=price_dec,
            open=to_decimal(round(_num(raw.get("open"), float(price)), 4)),
            high=to_decimal(round(_num(raw.get("high"), float(price)), 4)),
            low=to_decimal(round(_num(raw.get("low"), float(price)), 4)),
            previous_close=to_decimal(round(_num(raw.get("previous_close"), float(price)), 4)),
            volume=int(_num(raw.get("volume"))),
            avg_volume=int(_num(raw.get("avg_volume"))),
            timestamp=datetime.now(timezone.utc),
        )

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        results = await asyncio.gather(*(self.get_quote(s) for s in symbols), return_exceptions=True)
        return {
            symbol: result
            for symbol, result in zip(symbols, results)
            if not isinstance(result, Exception)
        }

    @staticmethod
    def _load_history(symbol: str, period: str) -> pd.DataFrame:
        return yf.Ticker(symbol).history(period=period, interval="1d", auto_adjust=False)

    async def get_historical_prices(
        self,
        symbol: str,
        history_range: HistoryRange = HistoryRange.ONE_YEAR
    ) -> List[HistoricalPrice]:
        async def _fetch() -> List[HistoricalPrice]:
            df = await self._call(self._load_history, symbol, _PERIODS[history_range])
            if df is None or df.empty:
                raise SymbolNotFoundError(symbol)
            return [
                HistoricalPrice(
                    date=index.date(),
                    open=to_decimal(round(float(row["Open"]), 4)),
                    high=to_decimal(round(float(row["High"]), 4)),
                    low=to_decimal(round(float(row["Low"]), 4)),
                    close=to_decimal(round(float(row["Close"]), 4)),
                    volume=int(_num(row["Volume"])),
                )
                for index, row in df.iterrows()
            ]

        return await self._history.memoize(f"{symbol}:{history_range.value}", _fetch)

    @staticmethod
    def _load_expirations(symbol: str) -> List[str]:
        return list(yf.Ticker(symbol).options)

    async def get_option_expirations(self, symbol: str) -> List[date]:
        async def _fetch() -> List[date]:
            raw = await self._call(self._load_expirations, symbol)
            if not raw:
                raise DataUnavailableError(f"No options expirations for {symbol}")
            today = date.today()
            return sorted(exp for exp in map(date.fromisoformat, raw) if exp >= today)

        return await self._expirations.memoize(symbol, _fetch)

    @staticmethod
    def _load_chain(symbol: str, expiration: str):
        chain = yf.Ticker(symbol).option_chain(expiration)
        return chain.calls, chain.puts

    def _frame_to_contracts(
        self,
        frame: pd.DataFrame,
        symbol: str,
        expiration: date,
        option_type: OptionType,
        spot: float
    ) -> List[OptionContract]:
        years = max((expiration - date.today()).days, 1) / 365
        contracts = []
        for _, row in frame.iterrows():
            strike = float(row["strike"])
            iv = _num(row.get("impliedVolatility"), 0.0) or None
            contracts.append(OptionContract(
                symbol=str(row["contractSymbol"]),
                underlying=symbol,
                expiration=expiration,
                strike=to_decimal(strike),
                option_type=option_type,
                bid=to_decimal(round(_num(row.get("bid")), 2)),
                ask=to_decimal(round(_num(row.get("ask")), 2)),
                last=to_decimal(round(_num(row.get("lastPrice")), 2)),
                volume=int(_num(row.get("volume"))),
                open_interest=int(_num(row.get("openInterest"))),
                implied_volatility=iv,
                delta=black_scholes_delta(option_type, spot, strike, years, iv) if iv else None,
                in_the_money=bool(row.get("inTheMoney", False)),
            ))
        contracts.sort(key=lambda c: c.strike)
        return contracts

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        async def _fetch() -> OptionChain:
            quote = await self.get_quote(symbol)
            calls, puts = await self._call(self._load_chain, symbol, expiration.isoformat())
            spot = float(quote.price)
            return OptionChain(
                underlying=symbol,
                expiration=expiration,
                calls=self._frame_to_contracts(calls, symbol, expiration, OptionType.CALL, spot),
                puts=self._frame_to_contracts(puts, symbol, expiration, OptionType.PUT, spot),
            )

        return await self._chains.memoize(f"{symbol}:{expiration.isoformat()}", _fetch)

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        closes = closes_of(await self.get_historical_prices(symbol, HistoryRange.ONE_YEAR))
        hv20 = realized_volatility(closes, 20)
        hv50 = realized_volatility(closes, 50)

        # IV rank against the past year's range of 20-day realized volatility
        rolling = [realized_volatility(closes[:end], 20) for end in range(21, len(closes) + 1)]
        rolling = [v for v in rolling if v is not None]

        current_iv: Optional[float] = None
        iv_rank: Optional[float] = None
        try:
            expirations = await self.get_option_expirations(symbol)
            target = date.today() + timedelta(days=30)
            nearest = min(expirations, key=lambda exp: abs((exp - target).days))
            chain = await self.get_option_chain(symbol, nearest)
            quote = await self.get_quote(symbol)
            if chain.puts:
                atm_put = min(chain.puts, key=lambda c: abs(c.strike - quote.price))
                if atm_put.implied_volatility:
                    current_iv = atm_put.implied_volatility * 100
                    if rolling and max(rolling) > min(rolling):
                        low, high = min(rolling), max(rolling)
                        iv_rank = max(0.0, min(100.0, (current_iv - low) / (high - low) * 100))
        except (ProviderError, ValueError) as e:
            logger.warning(f"Options-implied volatility unavailable for {symbol}: {e}")

        vix_proxy: Optional[float] = None
        if symbol == "SPY":
            try:
                vix_proxy = float((await self.get_quote("^VIX")).price)
            except ProviderError as e:
                logger.warning(f"VIX quote unavailable: {e}")

        return VolatilityData(
            symbol=symbol,
            current_iv=round(current_iv, 2) if current_iv is not None else None,
            iv_rank=round(iv_rank, 1) if iv_rank is not None else None,
            iv_percentile=round(iv_rank, 1) if iv_rank is not None else None,
            hv20=round(hv20, 2) if hv20 is not None else None,
            hv50=round(hv50, 2) if hv50 is not None else None,
            vix_proxy=vix_proxy,
        )
