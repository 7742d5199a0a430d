"""
Shared test fixtures and helpers for the Tally test suite.
"""

from __future__ import annotations

import logging

import pytest
import pytest_asyncio

from tally.cache.backends import MemoryKVStore
from tally.cache.manager import CacheManager
from tally.cache.store import TieredStore
from tally.db.executor import SQLiteExecutor
from tally.events.bus import EventBus


SCHEMA = """
CREATE TABLE categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE expenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    description TEXT NOT NULL,
    amount REAL NOT NULL,
    category_id INTEGER REFERENCES categories(id)
);
"""


class ManualClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Cache
# ============================================================================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def durable():
    """Fresh dict-backed tier-2 store."""
    return MemoryKVStore()


@pytest.fixture
def store(durable):
    return TieredStore(durable)


@pytest.fixture
def manager(store, clock):
    """CacheManager on a fresh two-tier store with a manual clock."""
    return CacheManager(store, clock=clock)


# ============================================================================
# Events
# ============================================================================


@pytest.fixture
def bus():
    return EventBus()


# ============================================================================
# Database
# ============================================================================


@pytest_asyncio.fixture
async def executor():
    """Connected in-memory SQLite executor with the expense schema."""
    ex = SQLiteExecutor("sqlite:///:memory:")
    await ex.connect()
    await ex.run_script(SCHEMA)
    yield ex
    await ex.close()


@pytest.fixture
def expense_schema():
    return SCHEMA


# ============================================================================
# Logging
# ============================================================================


@pytest.fixture(autouse=True)
def restore_tally_logger():
    """Undo ``configure_logging`` side effects between tests."""
    logger = logging.getLogger("tally")
    level, handlers = logger.level, list(logger.handlers)
    yield
    logger.setLevel(level)
    logger.handlers[:] = handlers
