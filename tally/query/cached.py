"""
Tally Query: cached SQL reads with stale-while-revalidate.

A ``CachedQuery`` binds one SQL statement and its parameters to a cache
key. Loading it serves the cached rows when present and refreshes them
in the background once they are older than ``stale_time``; a miss (or
a forced load) runs the statement and caches the result for ``ttl``.

Usage::

    expenses = CachedQuery(
        manager, executor,
        "SELECT * FROM expenses WHERE month = ?", ["2024-05"],
        QueryOptions(ttl=300, stale_time=30),
    )
    rows = await expenses.load()
    unsubscribe = expenses.refetch_on(bus, *EXPENSE_EVENTS)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, Set, TypeVar

from ..cache.core import CacheEntry, Freshness
from ..cache.key_builder import derive_key
from ..cache.manager import DEFAULT_TTL, CacheManager, validate_ttl
from ..db.executor import QueryExecutor
from ..events.bus import EventBus, EventName, Unsubscribe
from ..faults import InvalidStaleTimeFault

logger = logging.getLogger("tally.query")

T = TypeVar("T")

DEFAULT_STALE_TIME = 30.0  # seconds

SuccessHook = Callable[[Any], Any]
ErrorHook = Callable[[BaseException], Any]


@dataclass
class QueryOptions:
    """
    Per-query cache policy.

    Attributes:
        enabled: When False, ``load`` returns None without touching the
            cache or the executor
        ttl: Seconds a cached result lives before it expires
        stale_time: Seconds after which a cached result is served but
            refreshed in the background
        on_success: Called with the rows after every successful refresh
        on_error: Called with the exception after every failed refresh
        dedupe_refresh: Share one pending background refresh between
            overlapping stale loads
    """
    enabled: bool = True
    ttl: float = DEFAULT_TTL
    stale_time: float = DEFAULT_STALE_TIME
    on_success: Optional[SuccessHook] = None
    on_error: Optional[ErrorHook] = None
    dedupe_refresh: bool = True

    def __post_init__(self) -> None:
        self.ttl = validate_ttl("<query>", self.ttl)
        stale_time = self.stale_time
        if (
            isinstance(stale_time, bool)
            or not isinstance(stale_time, (int, float))
            or not 0 <= stale_time <= self.ttl
        ):
            raise InvalidStaleTimeFault(stale_time, self.ttl)
        self.stale_time = float(stale_time)


async def _call_hook(hook: Optional[Callable[[Any], Any]], arg: Any, key: str) -> None:
    if hook is None:
        return
    try:
        result = hook(arg)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.error(
            f"Query hook {getattr(hook, '__qualname__', hook)!r} for '{key}' "
            f"raised {exc.__class__.__name__}: {exc}",
            exc_info=exc,
        )


class CachedQuery(Generic[T]):
    """
    One cached SQL read.

    State mirrors what a screen needs to render: ``data`` holds the last
    rows served, ``error`` the last refresh failure, ``loading`` whether
    a refresh is running.
    """

    def __init__(
        self,
        manager: CacheManager,
        executor: QueryExecutor,
        query: str,
        params: Optional[Sequence[Any]] = None,
        options: Optional[QueryOptions] = None,
    ):
        self._manager = manager
        self._executor = executor
        self.query = query
        self.params: List[Any] = list(params or ())
        self.options = options if options is not None else QueryOptions()
        self.key = derive_key(query, self.params)

        self.data: Optional[T] = None
        self.error: Optional[BaseException] = None
        self.loading = False

        self._background: Set[asyncio.Task] = set()
        self._pending_refresh: Optional[asyncio.Task] = None

    async def load(self, force: bool = False) -> Optional[T]:
        """
        Serve the cached result, or run the query on a miss.

        A cached result older than ``stale_time`` is returned as-is and
        a refresh is scheduled without being awaited. Misses and forced
        loads await ``refresh()``; its failure propagates.
        """
        if not self.options.enabled:
            return None

        if not force:
            entry = await self._manager.get_entry(self.key)
            if entry is not None:
                self.data = entry.value
                self.error = None
                if self._manager.freshness(entry, self.options.stale_time) is Freshness.STALE:
                    self._schedule_refresh(entry)
                return entry.value

        return await self.refresh()

    async def refresh(self) -> T:
        """Run the query, cache its rows and return them."""
        self.loading = True
        try:
            result = await self._executor.query_all(self.query, self.params)
            await self._manager.set(self.key, result, self.options.ttl)
        except Exception as exc:
            self.error = exc
            logger.debug(f"Query refresh failed for '{self.key}': {exc}")
            await _call_hook(self.options.on_error, exc, self.key)
            raise
        finally:
            self.loading = False

        self.data = result
        self.error = None
        await _call_hook(self.options.on_success, result, self.key)
        return result

    async def refetch(self) -> Optional[T]:
        return await self.load(force=True)

    async def invalidate(self) -> bool:
        """Drop this query's cached result. No-op when nothing is cached."""
        return await self._manager.remove(self.key)

    def refetch_on(self, bus: EventBus, *events: EventName) -> Unsubscribe:
        """
        Refetch whenever any of ``events`` is emitted.

        Returns a function that removes every subscription made here.
        """
        async def refetch_listener(*args: Any, **kwargs: Any) -> None:
            await self.refetch()

        refetch_listener.__qualname__ = f"CachedQuery[{self.key}].refetch"
        unsubscribers = [bus.on(event, refetch_listener) for event in events]

        def unsubscribe() -> None:
            for unsub in unsubscribers:
                unsub()

        return unsubscribe

    # ── Background refresh ───────────────────────────────────────────

    def _schedule_refresh(self, entry: CacheEntry) -> asyncio.Task:
        pending = self._pending_refresh
        if self.options.dedupe_refresh and pending is not None and not pending.done():
            logger.debug(f"Refresh already pending for '{self.key}'")
            return pending

        logger.debug(f"Stale entry for '{self.key}' (age {self._manager.now() - entry.stored_at:.1f}s), refreshing")
        task = asyncio.ensure_future(self._background_refresh())
        self._pending_refresh = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except Exception as exc:
            # Served rows stay cached; on_error has already been told.
            logger.warning(f"Background refresh failed for '{self.key}': {exc}")

    async def wait_background(self) -> None:
        """Wait for scheduled background refreshes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def __repr__(self) -> str:
        return f"<CachedQuery key={self.key!r} loading={self.loading}>"


class QueryInvalidation:
    """Invalidates groups of cached queries by key substring."""

    def __init__(self, manager: CacheManager):
        self._manager = manager

    async def invalidate_queries(self, pattern: str) -> int:
        return await self._manager.invalidate_pattern(pattern)

    async def invalidate_all(self) -> int:
        return await self._manager.clear()
