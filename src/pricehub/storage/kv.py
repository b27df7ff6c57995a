"""
Key-value cache with TTL support.

Values are stored as orjson-encoded JSON. Redis is used when a URL is
configured; otherwise, and whenever Redis fails on a plain read or
write, an in-process memory store serves the request. Lock and delete
operations never fall back: a lock held in one process's memory
protects nothing.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import orjson
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from pricehub.config.settings import Settings


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class KVError(Exception):
    """Raised when the backing store cannot complete an operation."""

    pass


class KVStore(Protocol):
    """Protocol for raw byte-level store backends."""

    async def get(self, key: str) -> bytes | None:
        """Get the raw value, or None if absent or expired."""
        ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        """Store a value with an optional expiry."""
        ...

    async def set_if_absent(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Atomically store a value only if the key is free."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


# =============================================================================
# Backends
# =============================================================================


class MemoryStore:
    """
    In-process store with lazy expiry.

    Single-threaded asyncio access makes every method atomic, since
    none of them awaits between reading and writing the dict.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize memory store.

        Args:
            clock: Monotonic clock in seconds, injectable for tests.
        """
        self._clock = clock
        self._data: dict[str, tuple[bytes, float | None]] = {}

    def _live(self, key: str) -> bytes | None:
        entry = self._data.get(key)
        if entry is None:
            return None

        value, deadline = entry
        if deadline is not None and self._clock() >= deadline:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> bytes | None:
        return self._live(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        deadline = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, deadline)

    async def set_if_absent(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def close(self) -> None:
        self._data.clear()


class RedisStore:
    """Redis backend using the asyncio client."""

    def __init__(self, url: str | None = None, client: Redis | None = None) -> None:
        """
        Initialize Redis store.

        Args:
            url: Redis connection URL.
            client: Pre-built client (takes precedence over url).
        """
        if client is None:
            if not url:
                raise ValueError("Either url or client is required")
            client = Redis.from_url(url)
        self._client = client

    async def get(self, key: str) -> bytes | None:
        try:
            value = await self._client.get(key)
        except RedisError as e:
            raise KVError(f"Redis GET {key} failed: {e}") from e
        if isinstance(value, str):
            return value.encode()
        return value  # type: ignore[no-any-return]

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise KVError(f"Redis SET {key} failed: {e}") from e

    async def set_if_absent(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        try:
            acquired = await self._client.set(key, value, nx=True, ex=ttl_seconds)
        except RedisError as e:
            raise KVError(f"Redis SET NX {key} failed: {e}") from e
        return bool(acquired)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise KVError(f"Redis DEL {key} failed: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()


# =============================================================================
# Cache Facade
# =============================================================================


def _encode_default(obj: Any) -> Any:
    """orjson hook for pydantic records."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True, exclude_none=True)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def encode_value(value: Any) -> bytes:
    """Encode a JSON-compatible value (or pydantic record) to bytes."""
    return orjson.dumps(value, default=_encode_default)


def decode_value(raw: bytes) -> Any:
    """Decode stored bytes back into Python objects."""
    return orjson.loads(raw)


class KVCache:
    """
    JSON key-value cache used by every service component.

    Features:
    - Redis primary with memory fallback for reads and writes
    - Atomic set-if-absent for locks (no fallback)
    - Typed reads into pydantic records
    """

    def __init__(
        self,
        redis_store: KVStore | None = None,
        memory_store: MemoryStore | None = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            redis_store: Shared backend, or None for memory only.
            memory_store: Local backend (created if not provided).
        """
        self._redis = redis_store
        self._memory = memory_store if memory_store is not None else MemoryStore()

    @classmethod
    def from_settings(cls, settings: Settings) -> "KVCache":
        """Build a cache from application settings."""
        if settings.uses_redis and settings.redis_url is not None:
            logger.info("KV store: redis")
            return cls(redis_store=RedisStore(settings.redis_url.get_secret_value()))
        logger.info("KV store: memory (REDIS_URL not set)")
        return cls()

    @property
    def is_shared(self) -> bool:
        """Whether values are visible to other processes."""
        return self._redis is not None

    @property
    def backend_name(self) -> str:
        """Name of the primary backend."""
        return "redis" if self._redis is not None else "memory"

    async def get(self, key: str) -> Any | None:
        """
        Get a decoded value.

        Args:
            key: Cache key.

        Returns:
            Stored value, or None if absent or expired.
        """
        raw: bytes | None = None
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
                return decode_value(raw) if raw is not None else None
            except KVError as e:
                logger.warning("Redis get failed, using memory: %s", e)

        raw = await self._memory.get(key)
        return decode_value(raw) if raw is not None else None

    async def get_model(self, key: str, model: type[M]) -> M | None:
        """
        Get a value validated as a pydantic record.

        Malformed entries are logged and treated as absent.
        """
        data = await self.get(key)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding malformed %s at %s: %s", model.__name__, key, e)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key.
            value: JSON-compatible value or pydantic record.
            ttl_seconds: Expiry; None keeps the value until overwritten.
        """
        raw = encode_value(value)
        if self._redis is not None:
            try:
                await self._redis.set(key, raw, ttl_seconds)
                logger.debug("Redis write success: %s", key)
                return
            except KVError as e:
                logger.error("Redis write error for %s, using memory: %s", key, e)

        await self._memory.set(key, raw, ttl_seconds)

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """
        Atomically claim a key.

        Returns:
            True if this caller stored the value.

        Raises:
            KVError: If the shared store fails.
        """
        raw = encode_value(value)
        store = self._redis if self._redis is not None else self._memory
        return await store.set_if_absent(key, raw, ttl_seconds)

    async def delete(self, key: str) -> None:
        """
        Remove a key.

        Raises:
            KVError: If the shared store fails.
        """
        store = self._redis if self._redis is not None else self._memory
        await store.delete(key)

    async def close(self) -> None:
        """Close backends."""
        if self._redis is not None:
            await self._redis.close()
        await self._memory.close()
