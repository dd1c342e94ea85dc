"""
Tradier Market Data Provider - Options Trade-Generation Engine

REST implementation of the MarketDataProvider protocol on Tradier's markets
API (quotes, daily history, option expirations and chains with greeks).

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import os
from datetime import date, datetime, timedelta, timezone
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

TRADIER_LIVE_URL = "https://api.tradier.com/v1"
TRADIER_SANDBOX_URL = "https://sandbox.tradier.com/v1"


def tradier_base_url(sandbox: bool) -> str:
    return TRADIER_SANDBOX_URL if sandbox else TRADIER_LIVE_URL


def env_flag(name: str, default: bool = True) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def as_list(value: Any) -> List[Any]:
    """Tradier returns a bare object instead of a one-element list"""
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class TradierMarketDataProvider:
    """
    Tradier provider.

    Args:
        api_key: Bearer token; falls back to TRADIER_API_KEY
        sandbox: Use the sandbox host; falls back to TRADIER_SANDBOX (default on)
    """

    name = "tradier"

    def __init__(
        self,
        api_key: Optional[str] = None,
        sandbox: Optional[bool] = None,
        min_request_interval: float = 0.2,
        timeout_seconds: float = 10.0,
        client: Optional[RestClient] = None
    ):
        api_key = (api_key or os.environ.get("TRADIER_API_KEY", "")).strip()
        if not api_key and client is None:
            raise AuthenticationError("Tradier API key is required (set TRADIER_API_KEY)")

        use_sandbox = env_flag("TRADIER_SANDBOX") if sandbox is None else sandbox
        self._client = client or RestClient(
            tradier_base_url(use_sandbox),
            headers={"Authorization": f"Bearer {api_key}"},
            rate_limiter=RateLimiter(min_request_interval),
            timeout_seconds=timeout_seconds,
        )
        self._history = TTLCache("tradier.history", 300)
        self._expirations = TTLCache("tradier.expirations", 300)
        self._chains = TTLCache("tradier.chains", 60)

    async def close(self) -> None:
        await self._client.close()

    @staticmethod
    def _to_quote(raw: Dict[str, Any]) -> Quote:
        price = raw.get("last") or raw.get("close") or raw.get("prevclose")
        if price is None:
            raise DataUnavailableError(f"No price for {raw.get('symbol')}")
        return Quote(
            symbol=raw["symbol"],
            price=to_decimal(price),
            bid=to_decimal(raw.get("bid") or price),
            ask=to_decimal(raw.get("ask") or price),
            open=to_decimal(raw.get("open") or price),
            high=to_decimal(raw.get("high") or price),
            low=to_decimal(raw.get("low") or price),
            previous_close=to_decimal(raw.get("prevclose") or price),
            volume=int(raw.get("volume") or 0),
            avg_volume=int(raw.get("average_volume") or 0),
            timestamp=datetime.now(timezone.utc),
        )

    async def _fetch_quotes(self, symbols: List[str]) -> List[Dict[str, Any]]:
        data = await self._client.get("/markets/quotes", params={"symbols": ",".join(symbols)})
        quotes = data.get("quotes") or {}
        # Unknown symbols come back under "unmatched_symbols"
        return [q for q in as_list(quotes.get("quote")) if q.get("type") != "unmatched"]

    async def get_quote(self, symbol: str) -> Quote:
        raw = await self._fetch_quotes([symbol])
        if not raw:
            raise SymbolNotFoundError(symbol)
        return self._to_quote(raw[0])

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        if not symbols:
            return {}
        quotes: Dict[str, Quote] = {}
        for raw in await self._fetch_quotes(symbols):
            try:
                quote = self._to_quote(raw)
            except (ProviderError, KeyError) as e:
                logger.warning(f"Skipping malformed Tradier quote: {e}")
                continue
            quotes[quote.symbol] = quote
        return quotes

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
            "/markets/history",
            params={"symbol": symbol, "interval": "daily", "start": start.isoformat(), "end": end.isoformat()},
            symbol=symbol,
        )
        days = as_list((data.get("history") or {}).get("day"))
        if not days:
            raise DataUnavailableError(f"No historical data for {symbol}")
        return [
            HistoricalPrice(
                date=date.fromisoformat(day["date"]),
                open=to_decimal(day["open"]),
                high=to_decimal(day["high"]),
                low=to_decimal(day["low"]),
                close=to_decimal(day["close"]),
                volume=int(day.get("volume") or 0),
            )
            for day in days
        ]

    async def get_option_expirations(self, symbol: str) -> List[date]:
        return await self._expirations.memoize(symbol, lambda: self._fetch_expirations(symbol))

    async def _fetch_expirations(self, symbol: str) -> List[date]:
        data = await self._client.get("/markets/options/expirations", params={"symbol": symbol}, symbol=symbol)
        raw = as_list((data.get("expirations") or {}).get("date"))
        if not raw:
            raise DataUnavailableError(f"No options expirations for {symbol}")
        today = date.today()
        return sorted(exp for exp in map(date.fromisoformat, raw) if exp >= today)

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        return await self._chains.memoize(
            f"{symbol}:{expiration.isoformat()}", lambda: self._fetch_chain(symbol, expiration)
        )

    async def _fetch_chain(self, symbol: str, expiration: date) -> OptionChain:
        quote = await self.get_quote(symbol)
        data = await self._client.get(
            "/markets/options/chains",
            params={"symbol": symbol, "expiration": expiration.isoformat(), "greeks": "true"},
            symbol=symbol,
        )
        options = as_list((data.get("options") or {}).get("option"))
        if not options:
            raise DataUnavailableError(f"No options chain for {symbol} expiring {expiration}")

        calls: List[OptionContract] = []
        puts: List[OptionContract] = []
        for opt in options:
            option_type = OptionType(opt["option_type"])
            strike = to_decimal(opt["strike"])
            greeks = opt.get("greeks") or {}
            contract = OptionContract(
                symbol=opt["symbol"],
                underlying=symbol,
                expiration=date.fromisoformat(opt["expiration_date"]),
                strike=strike,
                option_type=option_type,
                bid=to_decimal(opt.get("bid") or 0),
                ask=to_decimal(opt.get("ask") or 0),
                last=to_decimal(opt["last"]) if opt.get("last") is not None else None,
                volume=int(opt.get("volume") or 0),
                open_interest=int(opt.get("open_interest") or 0),
                implied_volatility=greeks.get("mid_iv"),
                delta=greeks.get("delta"),
                gamma=greeks.get("gamma"),
                theta=greeks.get("theta"),
                vega=greeks.get("vega"),
                in_the_money=strike < quote.price if option_type == OptionType.CALL else strike > quote.price,
            )
            (calls if option_type == OptionType.CALL else puts).append(contract)

        calls.sort(key=lambda c: c.strike)
        puts.sort(key=lambda c: c.strike)
        return OptionChain(underlying=symbol, expiration=expiration, calls=calls, puts=puts)

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
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
            if chain.calls:
                atm_call = min(chain.calls, key=lambda c: abs(c.strike - quote.price))
                if atm_call.implied_volatility:
                    current_iv = atm_call.implied_volatility * 100
                    if hv50:
                        # No IV history from Tradier; rank IV against realized vol
                        iv_rank = min(100.0, max(0.0, (current_iv - hv50) / hv50 * 100 + 50))
        except (ProviderError, ValueError) as e:
            logger.warning(f"Options-implied volatility unavailable for {symbol}: {e}")

        return VolatilityData(
            symbol=symbol,
            current_iv=round(current_iv, 2) if current_iv is not None else None,
            iv_rank=round(iv_rank, 1) if iv_rank is not None else None,
            iv_percentile=round(iv_rank, 1) if iv_rank is not None else None,
            hv20=round(hv20, 2) if hv20 is not None else None,
            hv50=round(hv50, 2) if hv50 is not None else None,
        )
