"""
Tally application container.

Builds every service from a ``TallyConfig`` and wires them together:
the tiered cache, the event bus, the SQL executor, the transaction
runner, and the event → cache invalidation subscriptions.

Usage::

    async with Tally(ConfigLoader.load(env_file=".env")) as tally:
        expenses = tally.query("SELECT * FROM expenses WHERE month = ?", ["2024-05"])
        rows = await expenses.load()

        await tally.transactions.batch_insert(
            "expenses", new_rows, ["amount", "category_id"],
            events=[AppEvent.EXPENSE_ADDED],
        )
        # "expenses" queries are invalidated once the batch commits
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Optional, Sequence

from .cache.backends import MemoryKVStore, NullKVStore, RedisKVStore, SQLiteKVStore
from .cache.core import Clock, DurableStore, default_clock
from .cache.manager import CacheManager
from .cache.store import TieredStore
from .config import ConfigLoader, TallyConfig
from .db.executor import QueryExecutor, create_executor
from .db.transactions import TransactionRunner
from .events.bus import EventBus
from .events.invalidation import CacheInvalidator
from .log import configure_logging
from .query.cached import CachedQuery, QueryInvalidation, QueryOptions

logger = logging.getLogger("tally")


def create_durable_store(config: TallyConfig) -> DurableStore:
    """
    Factory: create the tier-2 store named by ``cache_durable_backend``.
    """
    backend = config.cache_durable_backend
    if backend == "memory":
        return MemoryKVStore()
    if backend == "sqlite":
        return SQLiteKVStore(config.cache_durable_path)
    if backend == "redis":
        return RedisKVStore(url=config.redis_url)
    return NullKVStore()


class Tally:
    """
    Composition root.

    Every collaborator can be injected (tests pass an in-memory
    executor or a failing durable store); the rest are built from
    ``config``. An injected executor is neither connected nor closed
    by the container.
    """

    def __init__(
        self,
        config: Optional[TallyConfig] = None,
        *,
        executor: Optional[QueryExecutor] = None,
        durable: Optional[DurableStore] = None,
        clock: Clock = default_clock,
    ):
        self.config = config if config is not None else TallyConfig()

        self.bus = EventBus(max_listeners=self.config.event_max_listeners)
        self.store = TieredStore(
            durable if durable is not None else create_durable_store(self.config),
            prefix=self.config.cache_key_prefix,
            async_durable_write=self.config.cache_async_durable_write,
        )
        self.cache = CacheManager(
            self.store,
            default_ttl=self.config.cache_default_ttl,
            clock=clock,
        )

        self._owns_executor = executor is None
        self.executor = executor if executor is not None else create_executor(self.config.database_url)
        self.transactions = TransactionRunner(
            self.executor,
            self.bus,
            slow_threshold=self.config.slow_transaction_threshold,
        )

        self.invalidation = QueryInvalidation(self.cache)
        self.invalidator = CacheInvalidator(self.bus, self.cache)

        self._queries: "weakref.WeakSet[CachedQuery]" = weakref.WeakSet()
        self._started = False

    @classmethod
    def from_sources(cls, **loader_kwargs: Any) -> "Tally":
        """Build from ``ConfigLoader.load(**loader_kwargs)``."""
        return cls(ConfigLoader.load(**loader_kwargs))

    @property
    def started(self) -> bool:
        return self._started

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        configure_logging(self.config.log_level)
        await self.store.durable.initialize()
        if self._owns_executor:
            await self.executor.connect()
        self.invalidator.attach()
        self._started = True
        logger.info(
            f"Tally started (durable={self.store.durable.name}, "
            f"database={self.config.database_url})"
        )

    async def shutdown(self) -> None:
        """Drain background work, then close the durable store and executor."""
        if not self._started:
            return
        self.invalidator.detach()
        await self.bus.drain()
        await asyncio.gather(*(query.wait_background() for query in list(self._queries)))
        await self.cache.shutdown()
        if self._owns_executor:
            await self.executor.close()
        self._started = False
        logger.info("Tally shut down")

    async def __aenter__(self) -> "Tally":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ── Factories ────────────────────────────────────────────────────

    def query(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        options: Optional[QueryOptions] = None,
        **option_kwargs: Any,
    ) -> CachedQuery:
        """
        Create a ``CachedQuery`` bound to this container.

        TTL and stale time default to the configured values; keyword
        arguments override individual ``QueryOptions`` fields.
        """
        if options is None:
            option_kwargs.setdefault("ttl", self.config.cache_default_ttl)
            option_kwargs.setdefault("stale_time", self.config.cache_stale_time)
            options = QueryOptions(**option_kwargs)
        elif option_kwargs:
            raise TypeError("pass either options or option keyword arguments, not both")

        query: CachedQuery = CachedQuery(self.cache, self.executor, sql, params, options)
        self._queries.add(query)
        return query

    def __repr__(self) -> str:
        state = "started" if self._started else "stopped"
        return f"<Tally {state} cache={self.cache.stats().size} bus={self.bus!r}>"
