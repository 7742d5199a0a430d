"""
Tally Cache: query result cache with TTL, staleness and pattern invalidation.

Provides:
- **Key derivation**: ``derive_key(query, params)``, whitespace-normalized
- **Two tiers**: in-process dict in front of a durable key-value store
  (memory, SQLite, Redis, or none)
- **TTL policy**: positive TTLs, lazy eviction of expired entries
- **Freshness**: fresh / stale / expired, for background refresh
- **Pattern invalidation**: substring match on keys

Usage::

    from tally.cache import CacheManager, TieredStore, derive_key
    from tally.cache.backends import SQLiteKVStore

    manager = CacheManager(TieredStore(SQLiteKVStore("cache.db")))
    key = derive_key("SELECT * FROM expenses WHERE month = ?", ["2024-05"])
    await manager.set(key, rows, ttl=300)
"""

from .core import (
    CacheEntry,
    CacheStats,
    Clock,
    DurableStore,
    EntrySerializer,
    Freshness,
    default_clock,
)

from .key_builder import QueryKeyBuilder, derive_key, normalize_query, serialize_params
from .serializers import JsonEntrySerializer
from .store import DEFAULT_KEY_PREFIX, TieredStore
from .manager import DEFAULT_TTL, CacheManager, validate_ttl

from .backends import MemoryKVStore, NullKVStore, RedisKVStore, SQLiteKVStore

__all__ = [
    # Core
    "CacheEntry",
    "CacheStats",
    "Clock",
    "DurableStore",
    "EntrySerializer",
    "Freshness",
    "default_clock",
    # Keys
    "QueryKeyBuilder",
    "derive_key",
    "normalize_query",
    "serialize_params",
    # Store / manager
    "JsonEntrySerializer",
    "DEFAULT_KEY_PREFIX",
    "TieredStore",
    "DEFAULT_TTL",
    "CacheManager",
    "validate_ttl",
    # Durable stores
    "MemoryKVStore",
    "NullKVStore",
    "RedisKVStore",
    "SQLiteKVStore",
]
