"""
Tally Cache: SQLite durable store via aiosqlite.

Persists cache blobs in a single ``kv_store`` table so cached query
results survive process restarts. Uses its own connection, separate
from the application's query executor, so cache writes never land
inside an application transaction.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Optional

import aiosqlite

from ..core import DurableStore

logger = logging.getLogger("tally.cache.sqlite")

_CREATE_TABLE = (
    "CREATE TABLE IF NOT EXISTS kv_store ("
    "key TEXT PRIMARY KEY NOT NULL, "
    "value TEXT NOT NULL)"
)


class SQLiteKVStore(DurableStore):
    """
    Key-value store on top of a SQLite file.

    Features:
    - WAL journal mode so reads do not block the app database
    - Upsert writes (``INSERT ... ON CONFLICT DO UPDATE``)
    - Batched ``multi_remove`` in one statement
    """

    __slots__ = ("_path", "_connection", "_lock", "_initialized")

    def __init__(self, path: str = "tally-cache.db"):
        """
        Args:
            path: SQLite file path, or ``:memory:``
        """
        self._path = path
        self._connection: Any = None
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def name(self) -> str:
        return "sqlite"

    async def initialize(self) -> None:
        """Open the connection and create the table."""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            self._connection = await aiosqlite.connect(self._path, isolation_level=None)
            if self._path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute(_CREATE_TABLE)
            self._initialized = True
            logger.info(f"SQLite cache store opened: {self._path}")

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
            self._initialized = False
            logger.info("SQLite cache store closed")

    async def _conn(self) -> Any:
        if not self._initialized:
            await self.initialize()
        return self._connection

    async def get(self, key: str) -> Optional[str]:
        conn = await self._conn()
        cursor = await conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        await cursor.close()
        return row[0] if row is not None else None

    async def set(self, key: str, blob: str) -> None:
        conn = await self._conn()
        await conn.execute(
            "INSERT INTO kv_store (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, blob),
        )

    async def remove(self, key: str) -> None:
        conn = await self._conn()
        await conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    async def keys(self, prefix: Optional[str] = None) -> List[str]:
        conn = await self._conn()
        if prefix is None:
            cursor = await conn.execute("SELECT key FROM kv_store")
        else:
            cursor = await conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
            )
        rows = await cursor.fetchall()
        await cursor.close()
        return [row[0] for row in rows]

    async def multi_remove(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        conn = await self._conn()
        placeholders = ", ".join("?" for _ in keys)
        await conn.execute(f"DELETE FROM kv_store WHERE key IN ({placeholders})", keys)
