"""
Tally Cache: Redis durable store.

Shares the cache tier-2 between processes, or keeps it outside the
device/app data directory. Uses redis-py's asyncio client with a
connection pool; keys are stored as plain string values.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Optional

from ..core import DurableStore

logger = logging.getLogger("tally.cache.redis")

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _glob_escape(text: str) -> str:
    """Escape Redis MATCH glob metacharacters."""
    return _GLOB_SPECIAL.sub(r"\\\1", text)


class RedisKVStore(DurableStore):
    """
    Redis-backed ``DurableStore`` using ``redis.asyncio``.

    Features:
    - Connection pool with configurable size
    - SCAN-based key listing (no blocking KEYS call)
    - Batched ``multi_remove`` via a single DEL
    """

    __slots__ = ("_url", "_max_connections", "_socket_timeout", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        max_connections: int = 10,
        socket_timeout: float = 5.0,
        client: Optional[Any] = None,
    ):
        """
        Args:
            url: Redis connection URL
            max_connections: Pool size
            socket_timeout: Per-command socket timeout in seconds
            client: Pre-built ``redis.asyncio`` client (skips connecting)
        """
        self._url = url
        self._max_connections = max_connections
        self._socket_timeout = socket_timeout
        self._redis = client

    @property
    def name(self) -> str:
        return "redis"

    async def initialize(self) -> None:
        """Connect to Redis and verify with PING."""
        if self._redis is not None:
            return

        try:
            import redis.asyncio as aioredis
        except ImportError:
            raise ImportError(
                "Redis cache store requires 'redis' package. "
                "Install with: pip install tally[redis]"
            )

        self._redis = aioredis.from_url(
            self._url,
            max_connections=self._max_connections,
            socket_timeout=self._socket_timeout,
            decode_responses=True,
        )
        await self._redis.ping()
        logger.info(f"Redis cache store connected: {self._url}")

    async def shutdown(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if self._redis is None:
            await self.initialize()
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        client = await self._client()
        raw = await client.get(key)
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    async def set(self, key: str, blob: str) -> None:
        client = await self._client()
        await client.set(key, blob)

    async def remove(self, key: str) -> None:
        client = await self._client()
        await client.delete(key)

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        client = await self._client()
        match = "*" if prefix is None else f"{_glob_escape(prefix)}*"
        result = []
        async for raw in client.scan_iter(match=match, count=1000):
            result.append(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
        return result

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        client = await self._client()
        await client.delete(*keys)
