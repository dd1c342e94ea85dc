"""
Test Suite for Rate Limiting and Task Groups - Options Trade-Generation Engine
"""

import asyncio
import time

import pytest

from trade_engine.concurrency import gather_settled, successes, with_timeout
from trade_engine.data.provider import ProviderTimeoutError, SymbolNotFoundError
from trade_engine.data.rate_limit import RateLimiter


class TestRateLimiter:
    """FIFO release and minimum spacing between request starts"""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        limiter = RateLimiter(min_interval_seconds=0.01)
        order = []

        async def call(i):
            order.append(i)
            return i

        results = await asyncio.gather(*(limiter.run(lambda i=i: call(i)) for i in range(5)))

        assert results == [0, 1, 2, 3, 4]
        assert order == [0, 1, 2, 3, 4]
        assert limiter.total_requests == 5
        assert limiter.queue_depth == 0

        print("✅ Rate limiter released callers in FIFO order")

    @pytest.mark.asyncio
    async def test_minimum_spacing(self):
        limiter = RateLimiter(min_interval_seconds=0.05)
        starts = []

        async def call():
            starts.append(time.monotonic())

        await asyncio.gather(*(limiter.run(call) for _ in range(3)))

        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(gap >= 0.045 for gap in gaps), gaps

        print("✅ Request starts spaced by the minimum interval")

    @pytest.mark.asyncio
    async def test_failure_releases_lane(self):
        limiter = RateLimiter(min_interval_seconds=0)

        async def boom():
            raise SymbolNotFoundError("BOGUS")

        async def fine():
            return "ok"

        with pytest.raises(SymbolNotFoundError):
            await limiter.run(boom)
        assert await limiter.run(fine) == "ok"

        print("✅ Failed call released the limiter")


class TestGatherSettled:
    """Per-item failure isolation"""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_siblings(self):
        async def analyze(symbol):
            if symbol == "BOGUS":
                raise SymbolNotFoundError(symbol)
            return symbol.lower()

        results = await gather_settled(["AAPL", "BOGUS", "SPY"], analyze)

        assert [r.key for r in results] == ["AAPL", "BOGUS", "SPY"]
        assert [r.ok for r in results] == [True, False, True]
        assert isinstance(results[1].error, SymbolNotFoundError)
        assert successes(results) == {"AAPL": "aapl", "SPY": "spy"}

        print("✅ Failing item isolated from its siblings")

    @pytest.mark.asyncio
    async def test_slow_item_times_out(self):
        async def work(delay):
            await asyncio.sleep(delay)
            return delay

        results = await gather_settled([0, 1], work, timeout_seconds=0.05)

        assert results[0].ok
        assert isinstance(results[1].error, ProviderTimeoutError)

        print("✅ Slow item surfaced as a timeout")

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        in_flight = 0
        peak = 0

        async def work(_):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await gather_settled(range(10), work, concurrency=3)

        assert peak <= 3

        print("✅ Concurrency cap respected")

    @pytest.mark.asyncio
    async def test_with_timeout_disabled(self):
        async def quick():
            return 1

        assert await with_timeout(quick(), None) == 1
        assert await with_timeout(quick(), 0) == 1

        print("✅ Timeout disabled for None and zero")
