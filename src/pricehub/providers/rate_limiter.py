"""
Token bucket rate limiter for upstream provider requests.

Each provider host gets its own bucket sized to its free-tier budget.
A host that answered 429 is blocked until its Retry-After deadline.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from pricehub.config.constants import DEFAULT_PROVIDER_REQUESTS_PER_MINUTE


class RateLimitBlockedError(Exception):
    """Raised when a host is inside a Retry-After window."""

    def __init__(self, host: str, wait_seconds: float) -> None:
        super().__init__(f"{host} rate limited, retry in {wait_seconds:.1f}s")
        self.host = host
        self.wait_seconds = wait_seconds


@dataclass
class TokenBucket:
    """
    Token bucket implementation for rate limiting.

    Tokens are added at a constant rate up to a maximum capacity.
    Each request consumes one or more tokens.
    """

    capacity: int
    refill_rate: float  # tokens per second
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    tokens: float = field(init=False)
    last_refill: float = field(init=False)  # seconds
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize with full bucket."""
        self.tokens = float(self.capacity)
        self.last_refill = self.clock()

    def _refill(self) -> None:
        """Add tokens based on elapsed time."""
        now = self.clock()
        elapsed = now - self.last_refill

        self.tokens = min(
            self.capacity,
            self.tokens + (elapsed * self.refill_rate),
        )
        self.last_refill = now

    async def acquire(self, tokens: int = 1) -> None:
        """
        Acquire tokens, waiting if necessary.

        Args:
            tokens: Number of tokens to acquire.
        """
        async with self._lock:
            self._refill()

            if self.tokens >= tokens:
                self.tokens -= tokens
                return

            wait_seconds = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_seconds)
            self._refill()
            self.tokens -= tokens


class HostRateLimiter:
    """
    Per-host rate limiter for provider APIs.

    Manages:
    - A request bucket per host (requests per minute)
    - Retry-After blocks set after HTTP 429 responses
    """

    def __init__(
        self,
        requests_per_minute: int = DEFAULT_PROVIDER_REQUESTS_PER_MINUTE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            requests_per_minute: Budget per host.
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._requests_per_minute = requests_per_minute
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._blocked_until: dict[str, float] = {}

    def _bucket(self, host: str) -> TokenBucket:
        bucket = self._buckets.get(host)
        if bucket is None:
            bucket = TokenBucket(
                capacity=self._requests_per_minute,
                refill_rate=self._requests_per_minute / 60.0,
                clock=self._clock,
            )
            self._buckets[host] = bucket
        return bucket

    def blocked_for(self, host: str) -> float:
        """Seconds left in the host's Retry-After window (0 if none)."""
        until = self._blocked_until.get(host)
        if until is None:
            return 0.0
        remaining = until - self._clock()
        if remaining <= 0:
            del self._blocked_until[host]
            return 0.0
        return remaining

    async def acquire(self, host: str) -> None:
        """
        Acquire permission for a request to a host.

        Raises:
            RateLimitBlockedError: If the host is inside a Retry-After window.
        """
        remaining = self.blocked_for(host)
        if remaining > 0:
            raise RateLimitBlockedError(host, remaining)
        await self._bucket(host).acquire(1)

    def block(self, host: str, seconds: float) -> None:
        """Block a host for the given number of seconds."""
        self._blocked_until[host] = self._clock() + seconds
