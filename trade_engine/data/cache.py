"""
Caching Layer - Options Trade-Generation Engine

TTL key-value cache with lazy expiry, a single-flight async memoizer that
collapses concurrent identical fetches into one upstream call, a registry of
named caches owned by an engine instance, and a provider wrapper that puts the
registry in front of any MarketDataProvider.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .provider import (
    HistoryRange, MarketDataProvider, OptionChain, Quote, HistoricalPrice, VolatilityData
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()

# Seconds; per data kind
DEFAULT_TTLS: Dict[str, float] = {
    "quotes": 30,
    "chains": 60,
    "volatility": 120,
    "expirations": 300,
    "history": 300,
    "regime": 300,
    "signals": 300,
}


class TTLCache:
    """In-memory cache with per-entry TTL and hit/miss statistics"""

    def __init__(
        self,
        name: str = "default",
        default_ttl_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._flights = SingleFlight()
        self._stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'deletes': 0,
            'evictions': 0
        }

    def _lookup(self, key: str) -> Any:
        entry = self._cache.get(key)
        if entry is None:
            self._stats['misses'] += 1
            return _MISSING

        # Expired entries are absent even if the sweeper has not run yet
        if entry['expires_at'] is not None and self._clock() > entry['expires_at']:
            del self._cache[key]
            self._stats['evictions'] += 1
            self._stats['misses'] += 1
            return _MISSING

        self._stats['hits'] += 1
        return entry['value']

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve value from cache, None when absent or expired"""
        value = self._lookup(key)
        return None if value is _MISSING else value

    async def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
        """Store value in cache; a TTL <= 0 never expires"""
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        now = self._clock()
        self._cache[key] = {
            'value': value,
            'expires_at': now + ttl if ttl > 0 else None,
            'created_at': now
        }
        self._stats['sets'] += 1
        return True

    async def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            self._stats['deletes'] += 1
            return True
        return False

    async def clear(self, pattern: Optional[str] = None) -> int:
        """Clear all entries, or those whose key starts with pattern"""
        if pattern is None:
            count = len(self._cache)
            self._cache.clear()
            return count

        keys_to_delete = [k for k in self._cache if k.startswith(pattern)]
        for key in keys_to_delete:
            del self._cache[key]
        return len(keys_to_delete)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed"""
        now = self._clock()
        expired = [
            key for key, entry in self._cache.items()
            if entry['expires_at'] is not None and now > entry['expires_at']
        ]
        for key in expired:
            del self._cache[key]
        self._stats['evictions'] += len(expired)
        return len(expired)

    async def memoize(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        ttl_seconds: Optional[float] = None
    ) -> T:
        """
        Return the cached value for key, or fetch and cache it.

        Concurrent callers for the same key while a fetch is outstanding share
        that fetch. Failed fetches are not cached.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            return value

        async def load() -> T:
            result = await fetch()
            await self.set(key, result, ttl_seconds)
            return result

        return await self._flights.run(key, load)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache performance statistics"""
        total_requests = self._stats['hits'] + self._stats['misses']
        hit_rate = self._stats['hits'] / total_requests if total_requests > 0 else 0

        return {
            **self._stats,
            'name': self.name,
            'total_requests': total_requests,
            'hit_rate': hit_rate,
            'cache_size': len(self._cache),
            'in_flight': self._flights.pending_count,
        }


class SingleFlight:
    """
    Collapses concurrent calls that share a key into one invocation.

    The shared fetch runs in its own task; every caller awaits it through
    asyncio.shield, so a caller that is cancelled or times out leaves the
    fetch running for the others.
    """

    def __init__(self):
        self._pending: Dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._pending.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._fly(key, fn))
            task.add_done_callback(_retrieve_exception)
            self._pending[key] = task
        return await asyncio.shield(task)

    async def _fly(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            self._pending.pop(key, None)


def _retrieve_exception(task: asyncio.Task) -> None:
    # every waiter may have gone away before a failure lands
    if not task.cancelled():
        task.exception()


class CacheRegistry:
    """
    Named caches owned by one engine instance.

    Each engine constructs its own registry, so two engines never share cached
    state. ``close()`` stops the background sweeper and empties every cache.
    """

    def __init__(
        self,
        ttls: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock
        self._caches: Dict[str, TTLCache] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, name: str) -> TTLCache:
        if name not in self._caches:
            self._caches[name] = TTLCache(
                name=name,
                default_ttl_seconds=self._ttls.get(name, 60),
                clock=self._clock,
            )
        return self._caches[name]

    def names(self) -> List[str]:
        return sorted(self._caches)

    def sweep_all(self) -> int:
        return sum(cache.sweep() for cache in self._caches.values())

    def start_sweeper(self, interval_seconds: float = 60) -> None:
        """Periodically drop expired entries on the running loop"""
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _loop():
            while True:
                await asyncio.sleep(interval_seconds)
                removed = self.sweep_all()
                if removed:
                    logger.debug(f"Cache sweep removed {removed} expired entries")

        self._sweeper = asyncio.get_running_loop().create_task(_loop())

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        for cache in self._caches.values():
            await cache.clear()

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: cache.get_stats() for name, cache in self._caches.items()}


class CachedMarketDataProvider:
    """MarketDataProvider decorator backed by a CacheRegistry"""

    def __init__(self, provider: MarketDataProvider, registry: CacheRegistry):
        self._provider = provider
        self._registry = registry
        self.name = getattr(provider, "name", type(provider).__name__)

    @property
    def upstream(self) -> MarketDataProvider:
        return self._provider

    async def get_quote(self, symbol: str) -> Quote:
        return await self._registry.get("quotes").memoize(
            f"quote:{symbol}", lambda: self._provider.get_quote(symbol)
        )

    async def get_batch_quotes(self, symbols: List[str]) -> Dict[str, Quote]:
        results = await asyncio.gather(
            *(self.get_quote(symbol) for symbol in symbols), return_exceptions=True
        )
        quotes: Dict[str, Quote] = {}
        for symbol, result in zip(symbols, results):
            if isinstance(result, Exception):
                logger.warning(f"Quote for {symbol} unavailable: {result}")
                continue
            quotes[symbol] = result
        return quotes

    async def get_historical_prices(
        self,
        symbol: str,
        history_range: HistoryRange = HistoryRange.ONE_YEAR
    ) -> List[HistoricalPrice]:
        return await self._registry.get("history").memoize(
            f"history:{symbol}:{history_range.value}",
            lambda: self._provider.get_historical_prices(symbol, history_range),
        )

    async def get_option_expirations(self, symbol: str) -> List[date]:
        return await self._registry.get("expirations").memoize(
            f"expirations:{symbol}", lambda: self._provider.get_option_expirations(symbol)
        )

    async def get_option_chain(self, symbol: str, expiration: date) -> OptionChain:
        return await self._registry.get("chains").memoize(
            f"chain:{symbol}:{expiration.isoformat()}",
            lambda: self._provider.get_option_chain(symbol, expiration),
        )

    async def get_volatility_data(self, symbol: str) -> VolatilityData:
        return await self._registry.get("volatility").memoize(
            f"volatility:{symbol}", lambda: self._provider.get_volatility_data(symbol)
        )
