"""
Market Data Provider Interfaces - Options Trade-Generation Engine

This module defines the market snapshot types and the abstract interface every
market data provider implements. All implementations must conform to these
contracts so the engine stays provider-agnostic.

NO BUSINESS LOGIC - INTERFACES ONLY
"""

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol, Optional, List, Dict, Any

from ..utils import to_serializable


# Core Data Types
class OptionType(Enum):
    """Option right"""
    CALL = "call"
    PUT = "put"


class HistoryRange(Enum):
    """Supported lookback windows for daily bars"""
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"

    @property
    def calendar_days(self) -> int:
        return {"1M": 30, "3M": 90, "6M": 180, "1Y": 365}[self.value]

    @property
    def trading_days(self) -> int:
        return {"1M": 21, "3M": 63, "6M": 126, "1Y": 252}[self.value]


@dataclass(frozen=True)
class Quote:
    """Immutable last-trade snapshot for an underlying"""
    symbol: str
    price: Decimal
    bid: Decimal
    ask: Decimal
    open: Decimal
    high: Decimal
    low: Decimal
    previous_close: Decimal
    volume: int
    avg_volume: int
    timestamp: datetime

    @property
    def change_pct(self) -> float:
        if self.previous_close <= 0:
            return 0.0
        return float((self.price - self.previous_close) / self.previous_close * 100)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class HistoricalPrice:
    """Immutable daily bar"""
    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class OptionContract:
    """Individual option contract data"""
    symbol: str
    underlying: str
    expiration: date
    strike: Decimal
    option_type: OptionType
    bid: Decimal
    ask: Decimal
    volume: int
    open_interest: int
    last: Optional[Decimal] = None
    implied_volatility: Optional[float] = None
    delta: Optional[float] = None
    gamma: Optional[float] = None
    theta: Optional[float] = None
    vega: Optional[float] = None
    in_the_money: bool = False

    @property
    def mid(self) -> Decimal:
        return (self.bid + self.ask) / 2

    @property
    def spread_pct(self) -> float:
        """Bid-ask spread as percent of mid; 100 when there is no bid"""
        if self.bid <= 0:
            return 100.0
        mid = self.mid
        if mid <= 0:
            return 100.0
        return float((self.ask - self.bid) / mid * 100)

    @property
    def is_put(self) -> bool:
        return self.option_type == OptionType.PUT

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class OptionChain:
    """Calls and puts for one underlying and one expiration"""
    underlying: str
    expiration: date
    calls: List[OptionContract] = field(default_factory=list)
    puts: List[OptionContract] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.calls and not self.puts

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class VolatilityData:
    """Implied and realized volatility metrics (percent units)"""
    symbol: str
    current_iv: Optional[float] = None
    iv_rank: Optional[float] = None
    iv_percentile: Optional[float] = None
    hv20: Optional[float] = None
    hv50: Optional[float] = None
    vix_proxy: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


class MarketDataProvider(Protocol):
    """
    Abstract interface for market data providers.

    Quotes, daily history, option chains/expirations and volatility metrics.
    Unknown symbols must raise SymbolNotFoundError so callers can tell them
    apart from transport failures.
    """

    name: str

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote:
        """
        Get the latest quote for a symbol.

        Raises:
            SymbolNotFoundError: When the symbol is unknown
            ProviderError: When the quote cannot be retrieved
        """
        ...

    @abstractmethod
    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        """
        Get quotes for many symbols.

        Returns:
            Mapping of symbol to quote; symbols that fail are omitted
        """
        ...

    @abstractmethod
    async def get_historical_prices(
        self,
        symbol: str,
        history_range: HistoryRange = HistoryRange.ONE_YEAR
    ) -> List[HistoricalPrice]:
        """
        Fetch daily bars covering the requested range.

        Returns:
            Bars sorted by date ascending
        """
        ...

    @abstractmethod
    async def get_option_expirations(self, symbol: str) -> List[date]:
        """
        Get available expirations sorted chronologically.
        """
        ...

    @abstractmethod
    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        """
        Fetch the calls and puts for one expiration.
        """
        ...

    @abstractmethod
    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        """
        Get IV, IV rank/percentile and historical volatility.
        """
        ...


# Exception Types
class ProviderError(Exception):
    """Base exception for data provider errors"""
    pass


class ValidationError(ProviderError):
    """Exception for data validation errors"""
    pass


class RateLimitError(ProviderError):
    """Exception for rate limit violations"""
    pass


class SymbolNotFoundError(ProviderError):
    """Exception for invalid/unknown symbols"""

    def __init__(self, symbol: str, message: Optional[str] = None):
        self.symbol = symbol
        super().__init__(message or f"Unknown symbol: {symbol}")


class DataUnavailableError(ProviderError):
    """Exception for temporarily unavailable data"""
    pass


class ProviderTimeoutError(ProviderError):
    """Exception for provider calls exceeding their time budget"""
    pass


class AuthenticationError(ProviderError):
    """Exception for rejected or missing credentials"""
    pass
