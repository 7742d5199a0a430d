"""
Tally Cache: Two-tier entry store.

Implements a two-level store:
- **Tier 1** (in-process dict): authoritative for the process lifetime
- **Tier 2** (``DurableStore``): persistence across restarts

Read path:   tier 1 → tier 2 (promote into tier 1) → miss
Write path:  tier 1 always, tier 2 best-effort (optionally fire-and-forget)
Delete path: both tiers, tier 2 best-effort

Resilience:
- Tier-2 failures on read degrade to "absent"
- Tier-2 failures on write/delete are logged and swallowed
- Malformed persisted records are treated as absent

The store does not judge expiry; that is the manager's policy.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from .core import CacheEntry, DurableStore, EntrySerializer
from .serializers import JsonEntrySerializer
from .backends.null import NullKVStore
from ..faults import CacheSerializationFault, StorageFault

logger = logging.getLogger("tally.cache.store")

DEFAULT_KEY_PREFIX = "@tally:cache:"


class TieredStore:
    """
    Tier-1 dict in front of a tier-2 ``DurableStore``.

    Entry replacement in tier 1 is a single dict assignment, so a
    concurrent reader sees either the old or the new entry, never a
    partial one.
    """

    __slots__ = (
        "_memory",
        "_durable",
        "_prefix",
        "_serializer",
        "_async_durable_write",
        "_pending",
        "_durable_healthy",
        "durable_errors",
    )

    def __init__(
        self,
        durable: Optional[DurableStore] = None,
        *,
        prefix: str = DEFAULT_KEY_PREFIX,
        serializer: Optional[EntrySerializer] = None,
        async_durable_write: bool = False,
    ):
        """
        Args:
            durable: Tier-2 store (defaults to a no-op store)
            prefix: Prefix for keys in the durable store
            serializer: Entry encoder for tier 2
            async_durable_write: Fire-and-forget tier-2 writes
        """
        self._memory: Dict[str, CacheEntry] = {}
        self._durable = durable if durable is not None else NullKVStore()
        self._prefix = prefix
        self._serializer = serializer or JsonEntrySerializer()
        self._async_durable_write = async_durable_write
        self._pending: Set[asyncio.Task] = set()
        self._durable_healthy = True
        self.durable_errors = 0

    @property
    def durable(self) -> DurableStore:
        return self._durable

    @property
    def durable_healthy(self) -> bool:
        """Whether the last tier-2 operation succeeded."""
        return self._durable_healthy

    @property
    def size(self) -> int:
        """Number of tier-1 entries."""
        return len(self._memory)

    def keys(self) -> List[str]:
        """Tier-1 keys."""
        return list(self._memory)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Tier-1 lookup only; never touches tier 2."""
        return self._memory.get(key)

    def _durable_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _durable_failed(self, operation: str, key: str, error: Exception) -> None:
        self._durable_healthy = False
        self.durable_errors += 1
        fault = StorageFault(self._durable.name, operation, str(error))
        logger.warning(f"{fault.message} (key '{key}')")

    # ── Read ─────────────────────────────────────────────────────────

    async def read(self, key: str) -> Optional[CacheEntry]:
        """Read-through: tier 1 → tier 2, promoting tier-2 hits into tier 1."""
        entry = self._memory.get(key)
        if entry is not None:
            return entry

        try:
            blob = await self._durable.get(self._durable_key(key))
        except Exception as e:
            self._durable_failed("GET", key, e)
            return None

        self._durable_healthy = True
        if blob is None:
            return None

        try:
            entry = self._serializer.loads(key, blob)
        except CacheSerializationFault as e:
            logger.warning(f"Ignoring malformed persisted entry for key '{key}': {e.message}")
            return None

        self._memory[key] = entry
        return entry

    # ── Write ────────────────────────────────────────────────────────

    async def write(self, key: str, entry: CacheEntry) -> None:
        """Write-through: tier 1 always, tier 2 best-effort."""
        self._memory[key] = entry

        if self._async_durable_write:
            task = asyncio.ensure_future(self._safe_durable_set(key, entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            await self._safe_durable_set(key, entry)

    async def _safe_durable_set(self, key: str, entry: CacheEntry) -> None:
        try:
            blob = self._serializer.dumps(entry)
            await self._durable.set(self._durable_key(key), blob)
            self._durable_healthy = True
        except Exception as e:
            self._durable_failed("SET", key, e)

    async def flush(self) -> None:
        """Wait for pending fire-and-forget tier-2 writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Delete ───────────────────────────────────────────────────────

    async def delete(self, key: str) -> bool:
        """
        Remove ``key`` from both tiers.

        Returns True if the key was present in tier 1.
        """
        await self.flush()
        existed = self._memory.pop(key, None) is not None
        try:
            await self._durable.remove(self._durable_key(key))
        except Exception as e:
            self._durable_failed("REMOVE", key, e)
        return existed

    async def evict(self, key: str, expected: CacheEntry) -> bool:
        """
        Remove ``key`` only if it still holds ``expected`` (or nothing).

        Used for lazy eviction so a value written after the expired
        read is not thrown away.
        """
        await self.flush()
        current = self._memory.get(key)
        if current is not None and current is not expected:
            return False
        self._memory.pop(key, None)
        try:
            await self._durable.remove(self._durable_key(key))
        except Exception as e:
            self._durable_failed("REMOVE", key, e)
        return True

    async def delete_where(self, predicate: Callable[[str], bool]) -> int:
        """
        Remove every entry whose key satisfies ``predicate`` in both tiers.

        Tier 1 is swept first so a tier-2 failure cannot leave a
        matching in-process entry behind. Returns the number of tier-1
        entries removed.
        """
        await self.flush()
        matched = [key for key in self._memory if predicate(key)]
        for key in matched:
            del self._memory[key]

        try:
            durable_keys = await self._durable.keys(self._prefix)
            prefix_len = len(self._prefix)
            doomed = [
                k for k in durable_keys
                if k.startswith(self._prefix) and predicate(k[prefix_len:])
            ]
            if doomed:
                await self._durable.multi_remove(doomed)
        except Exception as e:
            self._durable_failed("DELETE_WHERE", "*", e)

        return len(matched)

    async def clear(self) -> int:
        """Empty both tiers. Returns the number of tier-1 entries dropped."""
        await self.flush()
        count = len(self._memory)
        self._memory.clear()

        try:
            durable_keys = await self._durable.keys(self._prefix)
            owned = [k for k in durable_keys if k.startswith(self._prefix)]
            if owned:
                await self._durable.multi_remove(owned)
        except Exception as e:
            self._durable_failed("CLEAR", "*", e)

        return count
