"""
Tally Cache: Core types, protocols, and data structures.

Defines the cache entry, the three-way freshness state, statistics,
and the contract every durable (tier-2) key-value store implements.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)


Clock = Callable[[], float]

# Wall-clock seconds: entries outlive the process through the durable tier
default_clock: Clock = time.time


# ============================================================================
# Freshness
# ============================================================================

class Freshness(str, Enum):
    """Freshness state of an entry relative to its stale time and TTL."""
    FRESH = "fresh"     # age < stale_time
    STALE = "stale"     # stale_time <= age < ttl, still served
    EXPIRED = "expired" # age >= ttl, never served


# ============================================================================
# Cache Entry
# ============================================================================

@dataclass(slots=True)
class CacheEntry:
    """
    Single cache entry: a query result plus when it was stored and for how long.

    ``stored_at`` is a wall-clock timestamp in seconds, ``ttl`` a duration in
    seconds. An entry is expired once ``now - stored_at >= ttl``.
    """
    key: str
    value: Any
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        """Seconds elapsed since the entry was stored."""
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl

    def freshness(self, now: float, stale_time: float) -> Freshness:
        """
        Three-way freshness state.

        ``stale_time`` is the freshness window; it is expected to be
        ``<= ttl``. Expiry always wins over staleness.
        """
        age = self.age(now)
        if age >= self.ttl:
            return Freshness.EXPIRED
        if age >= stale_time:
            return Freshness.STALE
        return Freshness.FRESH

    def __repr__(self) -> str:
        return f"<CacheEntry key={self.key!r} stored_at={self.stored_at:.3f} ttl={self.ttl}>"


# ============================================================================
# Cache Stats
# ============================================================================

@dataclass
class CacheStats:
    """Aggregate cache statistics for diagnostics."""
    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0          # Lazy evictions of expired entries
    invalidations: int = 0      # Entries removed by pattern invalidation
    durable_errors: int = 0     # Swallowed tier-2 failures
    size: int = 0               # Current number of tier-1 entries

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "durable_errors": self.durable_errors,
            "size": self.size,
            "hit_rate": round(self.hit_rate, 2),
        }


# ============================================================================
# Entry Serializer Protocol
# ============================================================================

@runtime_checkable
class EntrySerializer(Protocol):
    """Protocol for encoding cache entries for the durable tier."""

    def dumps(self, entry: CacheEntry) -> str:
        """Encode an entry to a string blob."""
        ...

    def loads(self, key: str, blob: str) -> CacheEntry:
        """Decode a string blob back into an entry for ``key``."""
        ...


# ============================================================================
# Durable Store
# ============================================================================

class DurableStore(ABC):
    """
    Abstract durable key-value store backing tier 2.

    Stores plain string blobs. Durability is an optimization: callers
    treat every failure here as "entry absent" or "write skipped".
    """

    async def initialize(self) -> None:
        """Acquire resources (connections, tables)."""

    async def shutdown(self) -> None:
        """Release resources."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the blob stored under ``key``, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, blob: str) -> None:
        """Store ``blob`` under ``key``, replacing any previous value."""
        ...

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is not an error."""
        ...

    @abstractmethod
    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        """List stored keys, only those starting with ``prefix`` when given."""
        ...

    async def multi_remove(self, keys: Iterable[str]) -> None:
        """
        Remove several keys.

        Default implementation calls remove() for each key.
        """
        for key in keys:
            await self.remove(key)

    @property
    @abstractmethod
    def name(self) -> str:
        """Store name for diagnostics."""
        ...
