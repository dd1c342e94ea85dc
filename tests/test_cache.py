"""
Test Suite for the Caching Layer - Options Trade-Generation Engine

TTL expiry, single-flight memoization, per-engine registries and the cached
provider wrapper.
"""

import asyncio

import pytest

from trade_engine.concurrency import gather_settled, with_timeout
from trade_engine.data.cache import CacheRegistry, CachedMarketDataProvider, SingleFlight, TTLCache
from trade_engine.data.provider import ProviderTimeoutError, SymbolNotFoundError


class TestTTLCache:
    """Basic get/set/expiry behavior"""

    @pytest.mark.asyncio
    async def test_set_and_get(self, fake_clock):
        cache = TTLCache("quotes", default_ttl_seconds=30, clock=fake_clock)
        await cache.set("AAPL", 242.85)

        assert await cache.get("AAPL") == 242.85
        assert await cache.has("AAPL")
        assert await cache.get("MSFT") is None

        print("✅ Set and get working correctly")

    @pytest.mark.asyncio
    async def test_expired_entry_absent_without_sweep(self, fake_clock):
        cache = TTLCache("quotes", default_ttl_seconds=30, clock=fake_clock)
        await cache.set("AAPL", 1)

        fake_clock.advance(31)

        assert await cache.get("AAPL") is None
        assert not await cache.has("AAPL")
        assert cache.get_stats()['evictions'] == 1

        print("✅ Expired entries are absent before any sweep")

    @pytest.mark.asyncio
    async def test_non_positive_ttl_never_expires(self, fake_clock):
        cache = TTLCache(clock=fake_clock)
        await cache.set("pinned", "value", ttl_seconds=0)

        fake_clock.advance(10 ** 6)

        assert await cache.get("pinned") == "value"
        assert cache.sweep() == 0

        print("✅ TTL <= 0 entries never expire")

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, fake_clock):
        cache = TTLCache(default_ttl_seconds=10, clock=fake_clock)
        await cache.set("short", 1, ttl_seconds=5)
        await cache.set("long", 2, ttl_seconds=60)

        fake_clock.advance(6)

        assert cache.sweep() == 1
        assert await cache.get("long") == 2

        print("✅ Sweep removes only expired entries")

    @pytest.mark.asyncio
    async def test_clear_by_prefix(self, fake_clock):
        cache = TTLCache(clock=fake_clock)
        await cache.set("chain:AAPL:1", 1)
        await cache.set("chain:AAPL:2", 2)
        await cache.set("chain:SPY:1", 3)

        assert await cache.clear("chain:AAPL") == 2
        assert await cache.get("chain:SPY:1") == 3
        assert await cache.delete("chain:SPY:1")
        assert not await cache.delete("chain:SPY:1")

        print("✅ Prefix clear and delete working correctly")

    @pytest.mark.asyncio
    async def test_hit_rate_stats(self, fake_clock):
        cache = TTLCache("stats", clock=fake_clock)
        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("b")

        stats = cache.get_stats()
        assert stats['hits'] == 1
        assert stats['misses'] == 1
        assert stats['hit_rate'] == 0.5
        assert stats['name'] == "stats"

        print("✅ Cache statistics tracked correctly")


class TestSingleFlight:
    """Concurrent identical fetches collapse into one upstream call"""

    @pytest.mark.asyncio
    async def test_concurrent_memoize_invokes_fetch_once(self, fake_clock):
        cache = TTLCache(clock=fake_clock)
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "chain"

        results = await asyncio.gather(*(cache.memoize("chain:AAPL", fetch) for _ in range(10)))

        assert results == ["chain"] * 10
        assert calls == 1
        assert await cache.get("chain:AAPL") == "chain"

        print("✅ Single-flight memoization invoked fetch exactly once")

    @pytest.mark.asyncio
    async def test_failed_fetch_shared_and_not_cached(self, fake_clock):
        cache = TTLCache(clock=fake_clock)
        calls = 0

        async def failing():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            raise SymbolNotFoundError("BOGUS")

        results = await asyncio.gather(
            *(cache.memoize("quote:BOGUS", failing) for _ in range(3)), return_exceptions=True
        )

        assert calls == 1
        assert all(isinstance(r, SymbolNotFoundError) for r in results)
        assert not await cache.has("quote:BOGUS")

        print("✅ Failed fetch propagated to all waiters and not cached")

    @pytest.mark.asyncio
    async def test_timed_out_caller_does_not_cancel_other_waiters(self, fake_clock):
        cache = TTLCache(clock=fake_clock)
        calls = 0

        async def slow():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.2)
            return "value"

        first = asyncio.ensure_future(asyncio.wait_for(cache.memoize("k", slow), 0.05))
        second = asyncio.ensure_future(cache.memoize("k", slow))

        with pytest.raises(asyncio.TimeoutError):
            await first
        assert await second == "value"
        assert calls == 1
        assert await cache.get("k") == "value"

        print("✅ Timed-out caller left the shared fetch running for the others")

    @pytest.mark.asyncio
    async def test_shared_fetch_timeout_isolated_in_settled_batch(self, fake_clock):
        cache = TTLCache(clock=fake_clock)

        async def slow():
            await asyncio.sleep(0.2)
            return "chain"

        async def fetch(key):
            if key == "impatient":
                return await with_timeout(cache.memoize("chain:AAPL", slow), 0.05, key)
            return await cache.memoize("chain:AAPL", slow)

        results = await gather_settled(["impatient", "patient"], fetch)

        assert isinstance(results[0].error, ProviderTimeoutError)
        assert results[1].value == "chain"

        print("✅ One timed-out waiter does not cancel the rest of the batch")

    @pytest.mark.asyncio
    async def test_distinct_keys_run_independently(self):
        flights = SingleFlight()
        calls = []

        async def fetch(key):
            calls.append(key)
            await asyncio.sleep(0)
            return key

        results = await asyncio.gather(
            flights.run("a", lambda: fetch("a")), flights.run("b", lambda: fetch("b"))
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]
        assert flights.pending_count == 0

        print("✅ Distinct keys fetched independently")


class TestCacheRegistry:
    """Named caches scoped to one engine instance"""

    @pytest.mark.asyncio
    async def test_registries_are_isolated(self, fake_clock):
        first = CacheRegistry(clock=fake_clock)
        second = CacheRegistry(clock=fake_clock)

        await first.get("quotes").set("AAPL", 1)

        assert await second.get("quotes").get("AAPL") is None
        assert first.get("quotes") is first.get("quotes")

        print("✅ Cache registries do not share state")

    @pytest.mark.asyncio
    async def test_configured_ttls(self, fake_clock):
        registry = CacheRegistry(ttls={"quotes": 5}, clock=fake_clock)
        await registry.get("quotes").set("AAPL", 1)
        await registry.get("chains").set("AAPL:1", 2)

        fake_clock.advance(10)

        assert registry.sweep_all() == 1
        assert await registry.get("chains").get("AAPL:1") == 2
        assert registry.names() == ["chains", "quotes"]

        print("✅ Per-cache TTLs applied")

    @pytest.mark.asyncio
    async def test_close_empties_caches_and_stops_sweeper(self, fake_clock):
        registry = CacheRegistry(clock=fake_clock)
        await registry.get("regime").set("market", "value")
        registry.start_sweeper(interval_seconds=3600)

        await registry.close()

        assert registry.get_stats()["regime"]["cache_size"] == 0

        print("✅ Registry close empties caches")


class TestCachedProvider:
    """Provider wrapper serves repeat calls from cache"""

    @pytest.mark.asyncio
    async def test_repeat_quotes_hit_cache(self, mock_provider, cache_registry):
        cached = CachedMarketDataProvider(mock_provider, cache_registry)

        first = await cached.get_quote("AAPL")
        second = await cached.get_quote("AAPL")

        assert first is second
        assert mock_provider.call_counts["get_quote"] == 1

        print("✅ Cached provider served repeat quote from cache")

    @pytest.mark.asyncio
    async def test_concurrent_chain_requests_share_fetch(self, mock_provider, cache_registry):
        cached = CachedMarketDataProvider(mock_provider, cache_registry)
        expiration = (await cached.get_option_expirations("SPY"))[0]

        chains = await asyncio.gather(*(cached.get_option_chain("SPY", expiration) for _ in range(5)))

        assert all(chain is chains[0] for chain in chains)
        assert mock_provider.call_counts["get_option_chain"] == 1

        print("✅ Concurrent chain requests collapsed into one fetch")

    @pytest.mark.asyncio
    async def test_batch_quotes_skip_unknown(self, mock_provider, cache_registry):
        cached = CachedMarketDataProvider(mock_provider, cache_registry)

        quotes = await cached.get_batch_quotes(["AAPL", "BOGUS", "SPY"])

        assert set(quotes) == {"AAPL", "SPY"}

        print("✅ Batch quotes skip unknown symbols")
