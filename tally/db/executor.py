"""
Tally DB: SQL query executor.

``QueryExecutor`` is the interface the cache and transaction layers run
SQL through. ``SQLiteExecutor`` implements it over aiosqlite.

The SQLite connection is opened in autocommit mode
(``isolation_level=None``): every statement commits on its own unless
the caller has issued ``BEGIN`` through ``run_raw``, which is how
``TransactionRunner`` frames its transactions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import aiosqlite

from ..faults import ExecutorNotConnectedFault, UnsupportedDatabaseFault

logger = logging.getLogger("tally.db")

__all__ = [
    "ExecuteResult",
    "QueryExecutor",
    "SQLiteExecutor",
    "create_executor",
    "parse_sqlite_url",
]

Row = Dict[str, Any]


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a mutation."""
    rows_affected: int
    inserted_id: Optional[int] = None


@runtime_checkable
class QueryExecutor(Protocol):
    """SQL execution surface used by ``CachedQuery`` and ``TransactionRunner``."""

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        ...

    async def query_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        ...

    async def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Row]:
        ...

    async def run_raw(self, sql: str) -> None:
        ...


def parse_sqlite_url(url: str) -> str:
    """Extract the database path from a ``sqlite://`` URL."""
    for prefix in ("sqlite:///", "sqlite://"):
        if url.startswith(prefix):
            path = url[len(prefix):]
            return path or ":memory:"
    return url.replace("sqlite:", "").lstrip("/") or ":memory:"


class SQLiteExecutor:
    """
    ``QueryExecutor`` over a single aiosqlite connection.

    Features:
    - Autocommit connection; explicit transactions via ``run_raw``
    - Foreign key enforcement
    - WAL journal mode for file databases
    - Rows returned as plain dicts
    """

    def __init__(self, url: str = "sqlite:///:memory:"):
        self.url = url
        self.path = parse_sqlite_url(url)
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._connection is not None and self._connection.in_transaction

    async def connect(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is not None:
                return
            conn = await aiosqlite.connect(self.path, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            if self.path != ":memory:":
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            self._connection = conn
            logger.info(f"SQLite connected: {self.path}")

    async def close(self) -> None:
        if self._connection is None:
            return
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
                logger.info("SQLite disconnected")

    async def __aenter__(self) -> "SQLiteExecutor":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise ExecutorNotConnectedFault(self.url)
        return self._connection

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        cursor = await self._conn().execute(sql, list(params or ()))
        try:
            return ExecuteResult(rows_affected=cursor.rowcount, inserted_id=cursor.lastrowid)
        finally:
            await cursor.close()

    async def query_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Row]:
        cursor = await self._conn().execute(sql, list(params or ()))
        try:
            rows = await cursor.fetchall()
        finally:
            await cursor.close()
        return [dict(row) for row in rows]

    async def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Row]:
        cursor = await self._conn().execute(sql, list(params or ()))
        try:
            row = await cursor.fetchone()
        finally:
            await cursor.close()
        return dict(row) if row is not None else None

    async def run_raw(self, sql: str) -> None:
        """Run a single DDL, PRAGMA or transaction-control statement."""
        cursor = await self._conn().execute(sql)
        await cursor.close()

    async def run_script(self, script: str) -> None:
        """
        Run several ``;``-separated statements (schema setup).

        Commits any open transaction first, so it must not be used
        inside ``TransactionRunner.run``.
        """
        await self._conn().executescript(script)

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "closed"
        return f"<SQLiteExecutor {self.path!r} {state}>"


def create_executor(url: str) -> SQLiteExecutor:
    """Build the executor for ``url``. Only SQLite URLs are supported."""
    if url == ":memory:" or url.startswith("sqlite:"):
        return SQLiteExecutor(url)
    raise UnsupportedDatabaseFault(url)
