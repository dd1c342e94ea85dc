"""
Request Rate Limiting - Options Trade-Generation Engine

Single-lane FIFO limiter enforcing a minimum interval between upstream vendor
requests. Requests run one at a time in arrival order.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """
    Serializes calls and spaces their start times by ``min_interval_seconds``.

    Waiters are released strictly in the order they called ``run``.
    """

    def __init__(
        self,
        min_interval_seconds: float = 0.2,
        clock: Callable[[], float] = time.monotonic
    ):
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._waiters: Deque[asyncio.Future] = deque()
        self._busy = False
        self._last_request_at: Optional[float] = None
        self.total_requests = 0

    @property
    def queue_depth(self) -> int:
        return len(self._waiters)

    async def _acquire(self) -> None:
        if not self._busy and not self._waiters:
            self._busy = True
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif waiter.done() and not waiter.cancelled():
                # Lane was handed to us after cancellation; pass it on
                self._release()
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._busy = False

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn in its FIFO slot once the minimum interval has elapsed"""
        await self._acquire()
        try:
            if self._last_request_at is not None:
                wait = self.min_interval_seconds - (self._clock() - self._last_request_at)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request_at = self._clock()
            self.total_requests += 1
            return await fn()
        finally:
            self._release()
