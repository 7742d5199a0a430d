"""
Tests for the aiosqlite query executor.
"""

from __future__ import annotations

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tally.db.executor import (
    ExecuteResult,
    QueryExecutor,
    SQLiteExecutor,
    create_executor,
    parse_sqlite_url,
)
from tally.faults import ExecutorNotConnectedFault, UnsupportedDatabaseFault


class TestParseSqliteUrl:
    @pytest.mark.parametrize("url, path", [
        ("sqlite:///tally.db", "tally.db"),
        ("sqlite:///:memory:", ":memory:"),
        ("sqlite://", ":memory:"),
        ("sqlite:////var/data/app.db", "/var/data/app.db"),
    ])
    def test_paths(self, url, path):
        assert parse_sqlite_url(url) == path


class TestCreateExecutor:
    def test_sqlite(self):
        assert isinstance(create_executor("sqlite:///x.db"), SQLiteExecutor)

    def test_unsupported(self):
        with pytest.raises(UnsupportedDatabaseFault):
            create_executor("postgresql://localhost/tally")

    def test_protocol(self):
        assert isinstance(SQLiteExecutor(), QueryExecutor)


class TestSQLiteExecutor:

    @pytest.mark.asyncio
    async def test_not_connected(self):
        ex = SQLiteExecutor()
        with pytest.raises(ExecutorNotConnectedFault):
            await ex.query_all("SELECT 1")

    @pytest.mark.asyncio
    async def test_execute_returns_result(self, executor):
        result = await executor.execute(
            "INSERT INTO categories (name) VALUES (?)", ["Food"]
        )
        assert isinstance(result, ExecuteResult)
        assert result.rows_affected == 1
        assert result.inserted_id == 1

    @pytest.mark.asyncio
    async def test_query_all_returns_dicts(self, executor):
        await executor.execute("INSERT INTO categories (name) VALUES (?)", ["Food"])
        await executor.execute("INSERT INTO categories (name) VALUES (?)", ["Fuel"])
        rows = await executor.query_all("SELECT id, name FROM categories ORDER BY id")
        assert rows == [{"id": 1, "name": "Food"}, {"id": 2, "name": "Fuel"}]

    @pytest.mark.asyncio
    async def test_query_one(self, executor):
        await executor.execute("INSERT INTO categories (name) VALUES (?)", ["Food"])
        row = await executor.query_one("SELECT COUNT(*) AS total FROM categories")
        assert row == {"total": 1}
        assert await executor.query_one("SELECT * FROM categories WHERE id = ?", [99]) is None

    @pytest.mark.asyncio
    async def test_autocommit(self, executor):
        await executor.execute("INSERT INTO categories (name) VALUES (?)", ["Food"])
        assert executor.in_transaction is False

    @pytest.mark.asyncio
    async def test_explicit_transaction(self, executor):
        await executor.run_raw("BEGIN")
        assert executor.in_transaction is True
        await executor.execute("INSERT INTO categories (name) VALUES (?)", ["Food"])
        await executor.run_raw("ROLLBACK")
        assert await executor.query_all("SELECT * FROM categories") == []

    @pytest.mark.asyncio
    async def test_run_raw_closes_cursor(self, executor):
        cursor = MagicMock()
        cursor.close = AsyncMock()
        with patch.object(executor._connection, "execute", AsyncMock(return_value=cursor)):
            await executor.run_raw("PRAGMA optimize")
        cursor.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_foreign_keys_enforced(self, executor):
        with pytest.raises(sqlite3.IntegrityError):
            await executor.execute(
                "INSERT INTO expenses (description, amount, category_id) VALUES (?, ?, ?)",
                ["Lunch", 12.0, 404],
            )

    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self, executor):
        with pytest.raises(sqlite3.OperationalError):
            await executor.query_all("SELECT * FROM no_such_table")

    @pytest.mark.asyncio
    async def test_context_manager(self):
        async with SQLiteExecutor("sqlite:///:memory:") as ex:
            assert ex.is_connected
            assert await ex.query_one("SELECT 1 AS one") == {"one": 1}
        assert not ex.is_connected

    @pytest.mark.asyncio
    async def test_close_idempotent(self):
        ex = SQLiteExecutor()
        await ex.connect()
        await ex.close()
        await ex.close()
        assert not ex.is_connected
