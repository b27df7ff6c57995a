"""
Async HTTP client for upstream market data providers.

Features:
- Connection pooling and keep-alive
- Fast JSON parsing with orjson
- Per-host rate limiting with Retry-After handling
- Latency and error metrics
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlsplit

import aiohttp
import orjson

from pricehub import __version__
from pricehub.config.constants import (
    DEFAULT_PROVIDER_REQUESTS_PER_MINUTE,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_RETRY_AFTER_SECONDS,
)
from pricehub.providers.rate_limiter import HostRateLimiter, RateLimitBlockedError
from pricehub.telemetry.metrics import MetricsCollector
from pricehub.utils.time import LatencyTimer


logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for upstream provider errors."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ProviderRateLimitError(ProviderError):
    """Raised when a provider is rate limiting us."""

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message, status=429)
        self.retry_after = retry_after


def _parse_retry_after(value: str | None) -> float:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(0.0, float(value))
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


class MarketDataClient:
    """
    Async JSON client shared by all provider fetchers.

    A single session serves every host; the rate limiter keeps each
    host under its own budget.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        requests_per_minute: int = DEFAULT_PROVIDER_REQUESTS_PER_MINUTE,
        rate_limiter: HostRateLimiter | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            timeout_seconds: Total timeout per request.
            requests_per_minute: Budget per host when no limiter is given.
            rate_limiter: Optional rate limiter instance.
            metrics: Optional metrics collector.
        """
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._rate_limiter = rate_limiter or HostRateLimiter(requests_per_minute)
        self._metrics = metrics
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=50,
                limit_per_host=10,
                keepalive_timeout=30,
                enable_cleanup_closed=True,
            )

            headers = {
                "Accept": "application/json",
                "User-Agent": f"pricehub/{__version__}",
            }

            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=headers,
                timeout=self._timeout,
                json_serialize=lambda x: orjson.dumps(x).decode(),
            )

        return self._session

    async def close(self) -> None:
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @asynccontextmanager
    async def _request_context(self, host: str) -> AsyncIterator[aiohttp.ClientSession]:
        """Context manager translating transport errors."""
        session = await self._get_session()
        try:
            yield session
        except (aiohttp.ClientError, TimeoutError) as e:
            self._count(f"provider.{host}.errors")
            raise ProviderError(f"Network error from {host}: {e!r}") from e

    def _count(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.increment_counter(name)

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """
        Fetch and decode a JSON document.

        Args:
            url: Absolute URL.
            params: Query parameters.

        Returns:
            Parsed JSON response.

        Raises:
            ProviderRateLimitError: When the host is (or just became) rate limited.
            ProviderError: On network, status or decoding errors.
        """
        host = urlsplit(url).netloc

        try:
            await self._rate_limiter.acquire(host)
        except RateLimitBlockedError as e:
            self._count(f"provider.{host}.throttled")
            raise ProviderRateLimitError(str(e), retry_after=e.wait_seconds) from e

        self._count(f"provider.{host}.requests")
        with LatencyTimer() as timer:
            async with self._request_context(host) as session:
                async with session.get(url, params=params) as response:
                    data = await self._handle_response(host, response)

        if self._metrics is not None:
            self._metrics.record_latency(f"provider.{host}", timer.latency_us)
        return data

    async def _handle_response(self, host: str, response: aiohttp.ClientResponse) -> Any:
        """Parse and validate response."""
        if response.status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            self._rate_limiter.block(host, retry_after)
            self._count(f"provider.{host}.rate_limited")
            logger.warning("%s returned 429, blocking for %.0fs", host, retry_after)
            raise ProviderRateLimitError(f"{host} rate limited", retry_after=retry_after)

        body = await response.read()

        if response.status >= 400:
            self._count(f"provider.{host}.errors")
            snippet = body[:200].decode(errors="replace")
            raise ProviderError(
                f"HTTP {response.status} from {host}: {snippet}",
                status=response.status,
            )

        try:
            return orjson.loads(body)
        except orjson.JSONDecodeError as e:
            self._count(f"provider.{host}.errors")
            raise ProviderError(f"Invalid JSON from {host}: {e}") from e

    async def __aenter__(self) -> "MarketDataClient":
        await self._get_session()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
