"""
Market Data Module

Market snapshot types, the provider contract, caching and the bundled
providers.

Components:
- provider: snapshot types, MarketDataProvider protocol, provider errors
- cache: TTL cache, single-flight memoizer, cache registry, cached provider
- rate_limit: FIFO minimum-interval request lane
- mock_provider / polygon_provider / tradier_provider / yahoo_provider
- factory: configuration-keyed provider selection
"""

from .provider import (
    HistoricalPrice,
    HistoryRange,
    MarketDataProvider,
    OptionChain,
    OptionContract,
    OptionType,
    ProviderError,
    Quote,
    SymbolNotFoundError,
    VolatilityData,
)
from .cache import CacheRegistry, CachedMarketDataProvider, SingleFlight, TTLCache
from .factory import create_market_data_provider
