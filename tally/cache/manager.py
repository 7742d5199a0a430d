"""
Tally Cache: CacheManager, the TTL policy over the tiered store.

Wraps ``TieredStore`` with:
- Positive-TTL enforcement on writes
- Expiry checks on reads, with lazy (on-read) eviction
- Substring pattern invalidation
- Three-way freshness evaluation for callers that refresh in background
- Statistics
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Optional, Set

from .core import CacheEntry, CacheStats, Clock, Freshness, default_clock
from .store import TieredStore
from ..faults import InvalidPatternFault, InvalidTTLFault

logger = logging.getLogger("tally.cache")

DEFAULT_TTL = 300.0  # 5 minutes


def validate_ttl(key: str, ttl: Any) -> float:
    """Return ``ttl`` as a float, or raise ``InvalidTTLFault``."""
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise InvalidTTLFault(key, ttl)
    if not ttl > 0 or math.isinf(ttl):
        raise InvalidTTLFault(key, ttl)
    return float(ttl)


class CacheManager:
    """
    Query-result cache with hard TTL expiry.

    Usage::

        manager = CacheManager(TieredStore(SQLiteKVStore("cache.db")))
        await manager.set(key, rows, ttl=300)
        rows = await manager.get(key)           # None once expired
        await manager.invalidate_pattern("expenses")

    Expired entries are never returned. Reading one schedules its
    removal from both tiers without blocking the reader; there is no
    background sweeper.
    """

    __slots__ = ("_store", "_default_ttl", "_clock", "_stats", "_evictions")

    def __init__(
        self,
        store: Optional[TieredStore] = None,
        *,
        default_ttl: float = DEFAULT_TTL,
        clock: Clock = default_clock,
    ):
        self._store = store if store is not None else TieredStore()
        self._default_ttl = validate_ttl("<default>", default_ttl)
        self._clock = clock
        self._stats = CacheStats()
        self._evictions: Set[asyncio.Task] = set()

    @property
    def store(self) -> TieredStore:
        return self._store

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def now(self) -> float:
        return self._clock()

    # ── Reads ────────────────────────────────────────────────────────

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Live (non-expired) entry for ``key``, or None.

        Callers that need ``stored_at``/``ttl`` to judge staleness use
        this instead of ``get``.
        """
        entry = await self._store.read(key)
        if entry is None:
            self._stats.misses += 1
            logger.debug(f"Cache MISS: {key}")
            return None

        if entry.is_expired(self.now()):
            self._stats.misses += 1
            logger.debug(f"Cache EXPIRED: {key}")
            self._schedule_eviction(key, entry)
            return None

        self._stats.hits += 1
        logger.debug(f"Cache HIT: {key}")
        return entry

    async def get(self, key: str, default: Any = None) -> Any:
        """Cached value for ``key``, or ``default`` when absent or expired."""
        entry = await self.get_entry(key)
        if entry is None:
            return default
        return entry.value

    def freshness(self, entry: CacheEntry, stale_time: float) -> Freshness:
        """Freshness of ``entry`` right now."""
        return entry.freshness(self.now(), stale_time)

    # ── Writes ───────────────────────────────────────────────────────

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> CacheEntry:
        """
        Store ``value`` under ``key`` for ``ttl`` seconds.

        Args:
            key: Cache key (see ``derive_key``)
            value: Query result payload
            ttl: Time-to-live in seconds (uses default if None)

        Raises:
            InvalidTTLFault: ttl is not a positive number
        """
        effective_ttl = self._default_ttl if ttl is None else validate_ttl(key, ttl)
        entry = CacheEntry(key=key, value=value, stored_at=self.now(), ttl=effective_ttl)
        await self._store.write(key, entry)
        self._stats.sets += 1
        return entry

    async def remove(self, key: str) -> bool:
        """Remove ``key``. Removing an absent key is a no-op."""
        removed = await self._store.delete(key)
        if removed:
            self._stats.deletes += 1
        return removed

    async def clear(self) -> int:
        """Drop every entry in both tiers."""
        count = await self._store.clear()
        self._stats.deletes += count
        logger.info(f"Cache cleared ({count} entries)")
        return count

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove every entry whose key contains ``pattern``.

        Plain substring containment: callers build keys so related
        queries share a substring (e.g. a table name).
        """
        if not isinstance(pattern, str) or not pattern:
            raise InvalidPatternFault(pattern)
        count = await self._store.delete_where(lambda key: pattern in key)
        self._stats.invalidations += count
        logger.debug(f"Cache invalidated pattern '{pattern}' ({count} entries)")
        return count

    # ── Lazy eviction ────────────────────────────────────────────────

    def _schedule_eviction(self, key: str, entry: CacheEntry) -> None:
        task = asyncio.ensure_future(self._evict(key, entry))
        self._evictions.add(task)
        task.add_done_callback(self._evictions.discard)

    async def _evict(self, key: str, entry: CacheEntry) -> None:
        if await self._store.evict(key, entry):
            self._stats.evictions += 1

    async def drain(self) -> None:
        """Wait for scheduled evictions and pending tier-2 writes."""
        while self._evictions:
            await asyncio.gather(*list(self._evictions), return_exceptions=True)
        await self._store.flush()

    async def shutdown(self) -> None:
        await self.drain()
        await self._store.durable.shutdown()

    # ── Diagnostics ──────────────────────────────────────────────────

    def stats(self) -> CacheStats:
        self._stats.size = self._store.size
        self._stats.durable_errors = self._store.durable_errors
        return self._stats
