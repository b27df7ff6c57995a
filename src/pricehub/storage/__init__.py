"""Key-value storage module."""

from pricehub.storage.kv import KVCache, KVError, KVStore, MemoryStore, RedisStore


__all__ = [
    "KVCache",
    "KVError",
    "KVStore",
    "MemoryStore",
    "RedisStore",
]
