"""
End-to-end tests for the Tally container: cached reads, transactional
writes and event-driven invalidation working together.
"""

from __future__ import annotations

import sqlite3
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from tally import AppEvent, Tally, TallyConfig, create_durable_store
from tally.cache.backends import MemoryKVStore, NullKVStore, RedisKVStore, SQLiteKVStore
from tally.db.executor import SQLiteExecutor

EXPENSES_SQL = "SELECT id, description, amount FROM expenses ORDER BY id"


class TestCreateDurableStore:
    @pytest.mark.parametrize("backend, cls", [
        ("memory", MemoryKVStore),
        ("sqlite", SQLiteKVStore),
        ("redis", RedisKVStore),
        ("none", NullKVStore),
    ])
    def test_backends(self, backend, cls):
        assert isinstance(create_durable_store(TallyConfig(cache_durable_backend=backend)), cls)


@pytest_asyncio.fixture
async def tally(clock, expense_schema):
    app = Tally(
        TallyConfig(database_url="sqlite:///:memory:", cache_durable_backend="memory"),
        clock=clock,
    )
    await app.start()
    await app.executor.run_script(expense_schema)
    yield app
    await app.shutdown()


class TestTally:

    def test_defaults_wired_from_config(self):
        app = Tally(TallyConfig(
            database_url="sqlite:///:memory:",
            cache_default_ttl=120,
            cache_key_prefix="test:",
            event_max_listeners=3,
            cache_durable_backend="none",
        ))
        assert app.cache.default_ttl == 120.0
        assert app.bus.max_listeners == 3
        assert isinstance(app.store.durable, NullKVStore)
        assert isinstance(app.executor, SQLiteExecutor)
        assert not app.started

    def test_from_sources(self):
        app = Tally.from_sources(environ={"TALLY_CACHE_DEFAULT_TTL": "90"})
        assert app.config.cache_default_ttl == 90.0

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        app = Tally(TallyConfig(database_url="sqlite:///:memory:"))
        async with app:
            assert app.started
            assert app.executor.is_connected
            assert app.invalidator.attached
        assert not app.started
        assert not app.executor.is_connected
        assert app.bus.event_info() == {}

    @pytest.mark.asyncio
    async def test_injected_executor_not_closed(self):
        executor = SQLiteExecutor()
        await executor.connect()
        try:
            async with Tally(TallyConfig(), executor=executor):
                pass
            assert executor.is_connected
        finally:
            await executor.close()

    @pytest.mark.asyncio
    async def test_query_uses_config_defaults(self, tally):
        query = tally.query(EXPENSES_SQL)
        assert query.options.ttl == tally.config.cache_default_ttl
        assert query.options.stale_time == tally.config.cache_stale_time

    @pytest.mark.asyncio
    async def test_query_option_kwargs(self, tally):
        query = tally.query(EXPENSES_SQL, ttl=60, stale_time=5, enabled=False)
        assert query.options.ttl == 60.0
        assert query.options.enabled is False

    @pytest.mark.asyncio
    async def test_write_invalidates_cached_read(self, tally):
        expenses = tally.query(EXPENSES_SQL)
        assert await expenses.load() == []

        await tally.transactions.batch_insert(
            "expenses",
            [{"description": "Lunch", "amount": 12.5}],
            ["description", "amount"],
            events=[AppEvent.EXPENSE_ADDED],
        )

        assert await tally.cache.get(expenses.key) is None
        rows = await expenses.load()
        assert rows == [{"id": 1, "description": "Lunch", "amount": 12.5}]

    @pytest.mark.asyncio
    async def test_load_right_after_commit_sees_new_rows(self, tally):
        expenses = tally.query(EXPENSES_SQL)
        assert await expenses.load() == []

        await tally.transactions.batch_insert(
            "expenses",
            [{"description": "Taxi", "amount": 30.0}],
            ["description", "amount"],
            events=[AppEvent.EXPENSE_ADDED],
        )

        assert await tally.query(EXPENSES_SQL).load() == [
            {"id": 1, "description": "Taxi", "amount": 30.0}
        ]

    @pytest.mark.asyncio
    async def test_failed_batch_keeps_cache(self, tally):
        expenses = tally.query(EXPENSES_SQL)
        await expenses.load()

        with pytest.raises(sqlite3.IntegrityError):
            await tally.transactions.batch_insert(
                "expenses",
                [{"description": "ok", "amount": 1}, {"description": None, "amount": 2}],
                ["description", "amount"],
                events=[AppEvent.EXPENSE_ADDED],
            )
        await tally.bus.drain()
        assert await tally.cache.get(expenses.key) == []

    @pytest.mark.asyncio
    async def test_dashboard_refetch_on_events(self, tally):
        total = tally.query("SELECT COUNT(*) AS n FROM expenses")
        await total.load()
        total.refetch_on(tally.bus, AppEvent.EXPENSE_ADDED)

        await tally.transactions.batch_insert(
            "expenses",
            [{"description": "a", "amount": 1}, {"description": "b", "amount": 2}],
            ["description", "amount"],
            events=[AppEvent.EXPENSE_ADDED],
        )
        assert total.data == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_durable_failure_does_not_break_reads(self, tally):
        with patch.object(tally.store.durable, "set", AsyncMock(side_effect=OSError("disk full"))):
            rows = await tally.query(EXPENSES_SQL).load()
        assert rows == []
        assert await tally.query(EXPENSES_SQL).load() == []
        assert tally.cache.stats().durable_errors == 1

    @pytest.mark.asyncio
    async def test_logout_clears_cache(self, tally):
        await tally.query(EXPENSES_SQL).load()
        await tally.bus.emit_async(AppEvent.USER_LOGGED_OUT)
        assert tally.store.size == 0

    @pytest.mark.asyncio
    async def test_invalidation_helper(self, tally):
        await tally.query(EXPENSES_SQL).load()
        assert await tally.invalidation.invalidate_queries("expenses") == 1
