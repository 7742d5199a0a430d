"""
Tally DB: TransactionRunner for all-or-nothing SQL batches.

Wraps caller operations in ``BEGIN`` / ``COMMIT``, rolling back and
re-raising on any error. Domain events and commit hooks fire only once
the commit has succeeded, and ``run`` awaits their listeners before
returning.

Usage:
    runner = TransactionRunner(executor, bus)

    async def add_expense(db):
        result = await db.execute(
            "INSERT INTO expenses (amount, category_id) VALUES (?, ?)", [12.5, 3]
        )
        return result.inserted_id

    expense_id = await runner.run(
        add_expense, events=[(AppEvent.EXPENSE_ADDED, {"id": 1})]
    )

    # Batches
    await runner.batch_insert("expenses", rows, ["amount", "category_id"])
    await runner.batch_update("expenses", [(1, {"amount": 20})])
    await runner.batch_delete("expenses", [4, 5, 6])
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from .executor import ExecuteResult, QueryExecutor
from ..events.bus import EventBus, EventName
from ..faults import InvalidIdentifierFault, TransactionBusyFault, TransactionNestingFault

logger = logging.getLogger("tally.db.transactions")

__all__ = [
    "TransactionRunner",
    "TransactionResult",
    "validate_identifier",
    "DEFAULT_SLOW_THRESHOLD",
]

T = TypeVar("T")

# Table/column names are interpolated into SQL
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_SLOW_THRESHOLD = 1.0  # seconds

Operations = Callable[[QueryExecutor], Awaitable[T]]
EventSpec = Union[EventName, Tuple[EventName, Any]]
UpdateSpec = Union[Tuple[Any, Mapping[str, Any]], Mapping[str, Any]]


def validate_identifier(name: Any, kind: str = "identifier") -> str:
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidIdentifierFault(name, kind)
    return name


@dataclass
class TransactionResult(Generic[T]):
    """Status-flag view of a transaction outcome, returned by ``run_safe``."""
    success: bool
    result: Optional[T] = None
    error: Optional[BaseException] = None


class TransactionRunner:
    """
    Runs operations inside a single SQL transaction.

    Supports:
    - ``on_commit(fn)``: called with the result after every commit
    - ``on_rollback(fn)``: called with the error after every rollback
    - ``events``: domain events emitted on the bus after commit
    - Slow-transaction warnings

    Transactions do not nest: calling ``run`` from inside ``operations``
    raises ``TransactionNestingFault``, and calling it from another task
    while one is active raises ``TransactionBusyFault``.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        bus: Optional[EventBus] = None,
        *,
        slow_threshold: float = DEFAULT_SLOW_THRESHOLD,
    ):
        self._executor = executor
        self._bus = bus
        self._slow_threshold = slow_threshold
        self._active = False
        self._owner: Optional[asyncio.Task] = None
        self._commit_hooks: List[Callable[[Any], Any]] = []
        self._rollback_hooks: List[Callable[[BaseException], Any]] = []

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    @property
    def in_transaction(self) -> bool:
        return self._active

    def on_commit(self, fn: Callable[[Any], Any]) -> None:
        """Register ``fn(result)`` to run after each successful commit."""
        self._commit_hooks.append(fn)

    def on_rollback(self, fn: Callable[[BaseException], Any]) -> None:
        """Register ``fn(error)`` to run after each rollback."""
        self._rollback_hooks.append(fn)

    async def _fire_hooks(self, hooks: List[Callable[[Any], Any]], arg: Any) -> None:
        for hook in hooks:
            try:
                result = hook(arg)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(f"Transaction hook failed: {exc}")

    # ── Core ─────────────────────────────────────────────────────────

    async def run(
        self,
        operations: Operations[T],
        *,
        events: Optional[Sequence[EventSpec]] = None,
    ) -> T:
        """
        Run ``operations(executor)`` inside BEGIN/COMMIT.

        Any error raised by ``operations`` (or by COMMIT) triggers a
        ROLLBACK and is re-raised unchanged. If the ROLLBACK itself
        fails, that failure is logged and the original error still
        propagates.

        Args:
            operations: Coroutine function receiving the executor
            events: Events to emit after commit, each an event name or
                an ``(event, payload)`` pair

        Raises:
            TransactionNestingFault: called from inside ``operations``
            TransactionBusyFault: another task has a transaction open on
                this runner
        """
        if self._active:
            if asyncio.current_task() is self._owner:
                raise TransactionNestingFault()
            raise TransactionBusyFault()
        if events and self._bus is None:
            raise ValueError("events were given but the runner has no event bus")

        self._active = True
        self._owner = asyncio.current_task()
        started = time.perf_counter()
        try:
            await self._executor.run_raw("BEGIN")
            try:
                result = await operations(self._executor)
                await self._executor.run_raw("COMMIT")
            except BaseException as exc:
                await self._rollback(exc)
                raise
        finally:
            self._active = False
            self._owner = None
            self._check_slow(time.perf_counter() - started)

        logger.debug("Transaction committed")
        await self._fire_hooks(self._commit_hooks, result)
        for event in events or ():
            await self._emit(event)
        return result

    async def _rollback(self, error: BaseException) -> None:
        try:
            await self._executor.run_raw("ROLLBACK")
        except Exception as rollback_exc:
            logger.error(
                f"ROLLBACK failed ({rollback_exc.__class__.__name__}: {rollback_exc}) "
                f"while handling {error.__class__.__name__}: {error}"
            )
        else:
            logger.warning(f"Transaction rolled back: {error.__class__.__name__}: {error}")
        await self._fire_hooks(self._rollback_hooks, error)

    async def _emit(self, event: EventSpec) -> None:
        if isinstance(event, tuple):
            name, payload = event
            await self._bus.emit_async(name, payload)
        else:
            await self._bus.emit_async(event)

    def _check_slow(self, elapsed: float) -> None:
        if elapsed > self._slow_threshold:
            logger.warning(f"Slow transaction: {elapsed:.3f}s (threshold {self._slow_threshold}s)")

    async def run_safe(
        self,
        operations: Operations[T],
        *,
        events: Optional[Sequence[EventSpec]] = None,
    ) -> TransactionResult[T]:
        """``run`` returning a ``TransactionResult`` instead of raising."""
        try:
            result = await self.run(operations, events=events)
        except Exception as exc:
            return TransactionResult(success=False, error=exc)
        return TransactionResult(success=True, result=result)

    # ── Batches ──────────────────────────────────────────────────────

    async def batch_insert(
        self,
        table: str,
        records: Sequence[Mapping[str, Any]],
        columns: Sequence[str],
        *,
        events: Optional[Sequence[EventSpec]] = None,
    ) -> List[ExecuteResult]:
        """
        Insert ``records`` one statement per record, all or nothing.

        Values are taken from each record by column name; a missing
        column inserts NULL.
        """
        if not records:
            return []

        validate_identifier(table, "table")
        if not columns:
            raise ValueError("batch_insert requires at least one column")
        for column in columns:
            validate_identifier(column, "column")

        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        rows = [[record.get(column) for column in columns] for record in records]

        async def insert_all(db: QueryExecutor) -> List[ExecuteResult]:
            return [await db.execute(sql, values) for values in rows]

        return await self.run(insert_all, events=events)

    async def batch_update(
        self,
        table: str,
        updates: Sequence[UpdateSpec],
        *,
        events: Optional[Sequence[EventSpec]] = None,
    ) -> List[ExecuteResult]:
        """
        Update rows by ``id``, one statement per update, all or nothing.

        Each update is an ``(id, data)`` pair or a mapping with ``id`` and
        ``data`` keys; ``data`` maps column names to new values.
        """
        if not updates:
            return []

        validate_identifier(table, "table")
        statements = [self._update_statement(table, update) for update in updates]

        async def update_all(db: QueryExecutor) -> List[ExecuteResult]:
            return [await db.execute(sql, values) for sql, values in statements]

        return await self.run(update_all, events=events)

    @staticmethod
    def _update_statement(table: str, update: UpdateSpec) -> Tuple[str, List[Any]]:
        if isinstance(update, Mapping):
            row_id, data = update["id"], update["data"]
        else:
            row_id, data = update
        if not data:
            raise ValueError(f"Update for id {row_id!r} has no columns")
        columns = [validate_identifier(column, "column") for column in data]
        set_clause = ", ".join(f"{column} = ?" for column in columns)
        return (
            f"UPDATE {table} SET {set_clause} WHERE id = ?",
            [data[column] for column in columns] + [row_id],
        )

    async def batch_delete(
        self,
        table: str,
        ids: Iterable[Any],
        *,
        events: Optional[Sequence[EventSpec]] = None,
    ) -> Optional[ExecuteResult]:
        """Delete rows by ``id`` with a single ``IN`` statement."""
        ids = list(ids)
        if not ids:
            return None

        validate_identifier(table, "table")
        placeholders = ", ".join("?" for _ in ids)
        sql = f"DELETE FROM {table} WHERE id IN ({placeholders})"

        async def delete_all(db: QueryExecutor) -> ExecuteResult:
            return await db.execute(sql, ids)

        return await self.run(delete_all, events=events)

    def __repr__(self) -> str:
        return f"<TransactionRunner executor={self._executor!r} active={self._active}>"
