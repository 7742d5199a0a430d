"""
Tally Cache: Null (no-op) durable store.

Used when cache persistence should be disabled without changing
application code: every read misses, every write is dropped.
"""

from __future__ import annotations

from typing import List, Optional

from ..core import DurableStore


class NullKVStore(DurableStore):
    """
    No-op durable store.

    Useful for:
    - Disabling persistence in test environments
    - Processes whose cache should never survive a restart
    """

    __slots__ = ()

    @property
    def name(self) -> str:
        return "null"

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, blob: str) -> None:
        pass

    async def remove(self, key: str) -> None:
        pass

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        return []
