"""
Tally Cache: In-memory durable store.

Keeps blobs in a plain dict for the lifetime of the object. It gives
no durability across restarts; it is the default for tests and for
processes that only want the tier-1 behaviour with a real tier-2 path.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..core import DurableStore


class MemoryKVStore(DurableStore):
    """Dict-backed ``DurableStore``."""

    __slots__ = ("_data",)

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    @property
    def name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, blob: str) -> None:
        self._data[key] = blob

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        if prefix is None:
            return list(self._data)
        return [key for key in self._data if key.startswith(prefix)]

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
