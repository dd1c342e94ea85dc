"""
Task Group Helpers - Options Trade-Generation Engine

Fan-out/fan-in with per-item failure isolation: every task yields a
TaskResult, and one failing or slow item never aborts its siblings.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from .data.provider import ProviderTimeoutError

K = TypeVar("K")
T = TypeVar("T")


@dataclass(frozen=True)
class TaskResult(Generic[K, T]):
    key: K
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: Optional[float], label: str = "call") -> T:
    """Await with an upper bound; a timeout surfaces as ProviderTimeoutError"""
    if timeout_seconds is None or timeout_seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(f"{label} timed out after {timeout_seconds:g}s") from e


async def gather_settled(
    keys: Iterable[K],
    fn: Callable[[K], Awaitable[T]],
    timeout_seconds: Optional[float] = None,
    concurrency: Optional[int] = None
) -> List[TaskResult[K, T]]:
    """
    Run fn(key) for every key concurrently and collect per-key results.

    Args:
        keys: Items to process; result order follows input order
        fn: Coroutine function per item
        timeout_seconds: Optional bound per item
        concurrency: Optional cap on items in flight
    """
    keys = list(keys)
    semaphore = asyncio.Semaphore(concurrency) if concurrency else None

    async def _run(key: K) -> T:
        if semaphore is None:
            return await with_timeout(fn(key), timeout_seconds, str(key))
        async with semaphore:
            return await with_timeout(fn(key), timeout_seconds, str(key))

    outcomes = await asyncio.gather(*(_run(key) for key in keys), return_exceptions=True)

    results: List[TaskResult[K, T]] = []
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            results.append(TaskResult(key=key, error=outcome))
        else:
            results.append(TaskResult(key=key, value=outcome))
    return results


def successes(results: Iterable[TaskResult[K, T]]) -> Dict[K, T]:
    return {r.key: r.value for r in results if r.ok}
