"""
Polygon.io Market Data Provider - Options Trade-Generation Engine

REST implementation of the MarketDataProvider protocol on top of Polygon's
stock snapshot, aggregates, options reference and options snapshot endpoints.
Requests go through a single FIFO lane spaced 200 ms apart; responses are
cached per data kind.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..signals.indicators import closes_of, realized_volatility
from ..utils import to_decimal
from .cache import TTLCache
from .http import RestClient
from .provider import (
    AuthenticationError, DataUnavailableError, HistoricalPrice, HistoryRange,
    OptionChain, OptionContract, OptionType, ProviderError, Quote,
    SymbolNotFoundError, VolatilityData
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)

POLYGON_BASE_URL = "https://api.polygon.io"
# Index tickers carry the "I:" prefix
VIX_TICKER = "I:VIX"

# Seconds
QUOTE_TTL = 60
HISTORY_TTL = 300
EXPIRATION_TTL = 300
CHAIN_TTL = 60
VOLATILITY_TTL = 120


class PolygonMarketDataProvider:
    """
    Polygon.io provider.

    Args:
        api_key: Polygon key; falls back to POLYGON_API_KEY
        min_request_interval: Seconds between upstream requests
        timeout_seconds: Per-request HTTP timeout
    """

    name = "polygon"

    def __init__(
        self,
        api_key: Optional[str] = None,
        min_request_interval: float = 0.2,
        timeout_seconds: float = 10.0,
        client: Optional[RestClient] = None
    ):
        self._api_key = (api_key or os.environ.get("POLYGON_API_KEY", "")).strip()
        if not self._api_key and client is None:
            raise AuthenticationError("Polygon API key is required (set POLYGON_API_KEY)")

        self._client = client or RestClient(
            POLYGON_BASE_URL,
            default_params={"apiKey": self._api_key},
            rate_limiter=RateLimiter(min_request_interval),
            timeout_seconds=timeout_seconds,
        )
        self._quotes = TTLCache("polygon.quotes", QUOTE_TTL)
        self._history = TTLCache("polygon.history", HISTORY_TTL)
        self._expirations = TTLCache("polygon.expirations", EXPIRATION_TTL)
        self._chains = TTLCache("polygon.chains", CHAIN_TTL)
        self._volatility = TTLCache("polygon.volatility", VOLATILITY_TTL)

    async def close(self) -> None:
        await self._client.close()

    async def clear_caches(self) -> None:
        for cache in (self._quotes, self._history, self._expirations, self._chains, self._volatility):
            await cache.clear()

    async def get_quote(self, symbol: str) -> Quote:
        return await self._quotes.memoize(symbol, lambda: self._fetch_quote(symbol))

    async def _fetch_quote(self, symbol: str) -> Quote:
        try:
            data = await self._client.get(
                f"/v2/snapshot/locale/us/markets/stocks/tickers/{symbol}", symbol=symbol
            )
            ticker = data.get("ticker") if data.get("status") == "OK" else None
            if not ticker:
                raise SymbolNotFoundError(symbol)
            return self._snapshot_to_quote(symbol, ticker)
        except (SymbolNotFoundError, DataUnavailableError) as e:
            # Snapshot needs a paid tier; previous-day aggregate is the fallback
            logger.warning(f"Polygon snapshot unavailable for {symbol}, using previous day: {e}")
            data = await self._client.get(f"/v2/aggs/ticker/{symbol}/prev", symbol=symbol)
            results = data.get("results") or []
            if data.get("status") != "OK" or not results:
                raise SymbolNotFoundError(symbol) from e
            bar = results[0]
            close = to_decimal(bar["c"])
            return Quote(
                symbol=symbol,
                price=close,
                bid=close,
                ask=close,
                open=to_decimal(bar["o"]),
                high=to_decimal(bar["h"]),
                low=to_decimal(bar["l"]),
                previous_close=close,
                volume=int(bar.get("v", 0)),
                avg_volume=int(bar.get("v", 0)),
                timestamp=datetime.now(timezone.utc),
            )

    @staticmethod
    def _snapshot_to_quote(symbol: str, ticker: Dict[str, Any]) -> Quote:
        day = ticker.get("day") or {}
        prev = ticker.get("prevDay") or {}
        minute = ticker.get("min") or {}
        price = day.get("c") or prev.get("c")
        if not price:
            raise DataUnavailableError(f"No price in Polygon snapshot for {symbol}")
        last_quote = ticker.get("lastQuote") or {}
        return Quote(
            symbol=symbol,
            price=to_decimal(price),
            bid=to_decimal(last_quote.get("p") or minute.get("c") or price),
            ask=to_decimal(last_quote.get("P") or minute.get("c") or price),
            open=to_decimal(day.get("o") or prev.get("o") or price),
            high=to_decimal(day.get("h") or prev.get("h") or price),
            low=to_decimal(day.get("l") or prev.get("l") or price),
            previous_close=to_decimal(prev.get("c") or price),
            volume=int(day.get("v") or 0),
            # Polygon has no average volume field; previous day is the estimate
            avg_volume=int((prev.get("v") or 0) * 0.8),
            timestamp=datetime.now(timezone.utc),
        )

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        results = await asyncio.gather(*(self.get_quote(s) for s in symbols), return_exceptions=True)
        return {
            symbol: result
            for symbol, result in zip(symbols, results)
            if not isinstance(result, Exception)
        }

    async def get_historical_prices(
        self,
        symbol: str,
        history_range: HistoryRange = HistoryRange.ONE_YEAR
    ) -> List[HistoricalPrice]:
        return await self._history.memoize(
            f"{symbol}:{history_range.value}", lambda: self._fetch_history(symbol, history_range)
        )

    async def _fetch_history(self, symbol: str, history_range: HistoryRange) -> List[HistoricalPrice]:
        end = date.today()
        start = end - timedelta(days=history_range.calendar_days)
        data = await self._client.get(
            f"/v2/aggs/ticker/{symbol}/range/1/day/{start.isoformat()}/{end.isoformat()}",
            params={"adjusted": "true", "sort": "asc", "limit": "500"},
            symbol=symbol,
        )
        results = data.get("results")
        if data.get("status") not in ("OK", "DELAYED") or not results:
            raise DataUnavailableError(f"No historical data for {symbol}")

        return [
            HistoricalPrice(
                date=datetime.fromtimestamp(bar["t"] / 1000, tz=timezone.utc).date(),
                open=to_decimal(bar["o"]),
                high=to_decimal(bar["h"]),
                low=to_decimal(bar["l"]),
                close=to_decimal(bar["c"]),
                volume=int(bar.get("v", 0)),
            )
            for bar in results
        ]

    async def get_option_expirations(self, symbol: str) -> List[date]:
        return await self._expirations.memoize(symbol, lambda: self._fetch_expirations(symbol))

    async def _fetch_expirations(self, symbol: str) -> List[date]:
        data = await self._client.get(
            "/v3/reference/options/contracts",
            params={"underlying_ticker": symbol, "limit": "250"},
        )
        results = data.get("results")
        if data.get("status") != "OK" or not results:
            raise DataUnavailableError(f"No options data for {symbol}")

        today = date.today()
        expirations = {date.fromisoformat(c["expiration_date"]) for c in results}
        return sorted(exp for exp in expirations if exp >= today)

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        return await self._chains.memoize(
            f"{symbol}:{expiration.isoformat()}", lambda: self._fetch_chain(symbol, expiration)
        )

    async def _fetch_chain(self, symbol: str, expiration: date) -> OptionChain:
        quote = await self.get_quote(symbol)
        data = await self._client.get(
            f"/v3/snapshot/options/{symbol}",
            params={"expiration_date": expiration.isoformat(), "limit": "250"},
            symbol=symbol,
        )
        results = data.get("results")
        if data.get("status") != "OK" or results is None:
            raise DataUnavailableError(f"No options chain for {symbol} expiring {expiration}")

        calls: List[OptionContract] = []
        puts: List[OptionContract] = []
        for item in results:
            details = item.get("details")
            last_quote = item.get("last_quote")
            if not details or not last_quote:
                continue
            contract = self._snapshot_to_contract(symbol, quote.price, details, last_quote, item)
            (calls if contract.option_type == OptionType.CALL else puts).append(contract)

        calls.sort(key=lambda c: c.strike)
        puts.sort(key=lambda c: c.strike)
        return OptionChain(underlying=symbol, expiration=expiration, calls=calls, puts=puts)

    @staticmethod
    def _snapshot_to_contract(
        symbol: str,
        underlying_price: Decimal,
        details: Dict[str, Any],
        last_quote: Dict[str, Any],
        item: Dict[str, Any]
    ) -> OptionContract:
        option_type = OptionType(details["contract_type"])
        strike = to_decimal(details["strike_price"])
        greeks = item.get("greeks") or {}
        day = item.get("day") or {}
        midpoint = last_quote.get("midpoint")
        return OptionContract(
            symbol=details["ticker"].replace("O:", ""),
            underlying=symbol,
            expiration=date.fromisoformat(details["expiration_date"]),
            strike=strike,
            option_type=option_type,
            bid=to_decimal(last_quote.get("bid") or 0),
            ask=to_decimal(last_quote.get("ask") or 0),
            last=to_decimal(midpoint) if midpoint else None,
            volume=int(day.get("volume") or 0),
            open_interest=int(item.get("open_interest") or 0),
            implied_volatility=item.get("implied_volatility"),
            delta=greeks.get("delta"),
            gamma=greeks.get("gamma"),
            theta=greeks.get("theta"),
            vega=greeks.get("vega"),
            in_the_money=strike < underlying_price if option_type == OptionType.CALL else strike > underlying_price,
        )

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        return await self._volatility.memoize(symbol, lambda: self._fetch_volatility(symbol))

    async def _fetch_volatility(self, symbol: str) -> VolatilityData:
        closes = closes_of(await self.get_historical_prices(symbol, HistoryRange.THREE_MONTHS))
        hv20 = realized_volatility(closes, 20)
        hv50 = realized_volatility(closes, 50)

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
                    if hv50:
                        # Rough rank: IV relative to 1.5x the 50-day realized vol
                        iv_rank = float(min(100, max(0, round(current_iv / (hv50 * 1.5) * 50))))
        except (ProviderError, ValueError) as e:
            logger.warning(f"Options-implied volatility unavailable for {symbol}: {e}")

        vix_proxy: Optional[float] = None
        if symbol == "SPY":
            try:
                vix_proxy = await self._fetch_index_level(VIX_TICKER)
            except ProviderError as e:
                logger.warning(f"{VIX_TICKER} level unavailable: {e}")

        return VolatilityData(
            symbol=symbol,
            current_iv=round(current_iv, 2) if current_iv is not None else None,
            iv_rank=iv_rank,
            iv_percentile=iv_rank,
            hv20=round(hv20, 2) if hv20 is not None else None,
            hv50=round(hv50, 2) if hv50 is not None else None,
            vix_proxy=vix_proxy,
        )

    async def _fetch_index_level(self, ticker: str) -> float:
        data = await self._client.get("/v3/snapshot/indices", params={"ticker.any_of": ticker}, symbol=ticker)
        results = data.get("results") or []
        if data.get("status") != "OK" or not results or results[0].get("value") is None:
            raise SymbolNotFoundError(ticker)
        return float(results[0]["value"])
