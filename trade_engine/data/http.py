"""
Vendor REST Client - Options Trade-Generation Engine

Thin aiohttp wrapper shared by the HTTP market data vendors and the live
broker: one lazily created session, rate-limited requests, a per-request
timeout and HTTP status codes mapped onto the provider exception taxonomy.

BUSINESS LOGIC IMPLEMENTATION
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from .provider import (
    AuthenticationError, DataUnavailableError, ProviderError, ProviderTimeoutError,
    RateLimitError, SymbolNotFoundError
)
from .rate_limit import RateLimiter

logger = logging.getLogger(__name__)


class RestClient:
    """JSON REST client with a FIFO rate-limited lane"""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        default_params: Optional[Dict[str, str]] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._default_params = default_params or {}
        self._rate_limiter = rate_limiter or RateLimiter()
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers, timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        symbol: Optional[str] = None
    ) -> Any:
        """
        Issue a request through the rate limiter and decode the JSON body.

        Raises:
            SymbolNotFoundError: 404 for a symbol-scoped request
            AuthenticationError: 401/403
            RateLimitError: 429
            ProviderTimeoutError: request exceeded the timeout
            ProviderError: any other failure
        """
        url = f"{self.base_url}{path}"
        query = {**self._default_params, **(params or {})}

        async def _send() -> Any:
            session = self._get_session()
            async with session.request(method, url, params=query, data=data) as response:
                if response.status == 404 and symbol:
                    raise SymbolNotFoundError(symbol)
                if response.status in (401, 403):
                    raise AuthenticationError(f"{method} {path} rejected credentials ({response.status})")
                if response.status == 429:
                    raise RateLimitError(f"{method} {path} rate limited by vendor")
                if response.status >= 500:
                    raise DataUnavailableError(f"{method} {path} failed with {response.status}")
                if response.status >= 400:
                    body = await response.text()
                    raise ProviderError(f"{method} {path} failed with {response.status}: {body[:200]}")
                return await response.json(content_type=None)

        try:
            return await self._rate_limiter.run(_send)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            logger.error(f"HTTP error calling {url}: {e}")
            raise ProviderError(f"{method} {path} failed: {e}") from e

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, symbol: Optional[str] = None) -> Any:
        return await self.request("GET", path, params=params, symbol=symbol)

    async def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("POST", path, data=data)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)
