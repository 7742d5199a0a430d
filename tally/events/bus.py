"""
Tally Events: in-process publish/subscribe bus.

Listeners are plain callables or coroutine functions keyed by event
name, invoked in registration order.

Usage:
    bus = EventBus()

    def on_expense(expense_id):
        print(f"expense {expense_id} added")

    unsubscribe = bus.on(AppEvent.EXPENSE_ADDED, on_expense)
    bus.emit(AppEvent.EXPENSE_ADDED, 42)
    unsubscribe()

    # One-shot
    bus.once(AppEvent.DATA_SYNC_NEEDED, start_sync)

    # Scoped subscription
    with bus.subscribed(AppEvent.CATEGORY_CHANGED, reload_categories):
        ...
    # reload_categories is disconnected here
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, Union

from .names import AppEvent

logger = logging.getLogger("tally.events")

__all__ = ["EventBus", "EventName", "Listener", "Unsubscribe", "DEFAULT_MAX_LISTENERS"]

DEFAULT_MAX_LISTENERS = 10

Listener = Callable[..., Any]
Unsubscribe = Callable[[], None]
EventName = Union[str, AppEvent]


def _event_key(event: EventName) -> str:
    if isinstance(event, AppEvent):
        return event.value
    if not isinstance(event, str) or not event:
        raise TypeError(f"Event name must be a non-empty string, got {event!r}")
    return event


def _listener_name(listener: Listener) -> str:
    target = getattr(listener, "__wrapped__", listener)
    return getattr(target, "__qualname__", repr(target))


class EventBus:
    """
    Publish/subscribe registry.

    Features:
        - Registration-order delivery
        - Emission over a snapshot, so listeners may (un)subscribe mid-emit
        - Per-listener error isolation (errors are logged, never raised)
        - Soft listener cap per event: exceeding it logs a likely-leak
          warning but still registers
        - ``once`` listeners that unregister before they run
        - Coroutine listeners, scheduled by ``emit`` or awaited by
          ``emit_async``
    """

    def __init__(self, max_listeners: int = DEFAULT_MAX_LISTENERS):
        """
        Args:
            max_listeners: Soft cap per event (0 disables the warning)
        """
        self._events: Dict[str, List[Listener]] = {}
        self._max_listeners = max_listeners
        self._tasks: Set[asyncio.Task] = set()

    @property
    def max_listeners(self) -> int:
        return self._max_listeners

    # ── Registration ─────────────────────────────────────────────────

    def on(self, event: EventName, callback: Listener) -> Unsubscribe:
        """
        Register ``callback`` for ``event``.

        Returns an unsubscribe function; calling it more than once is a
        no-op.
        """
        if not callable(callback):
            raise TypeError(f"Listener for '{event}' must be callable, got {callback!r}")

        name = _event_key(event)
        listeners = self._events.setdefault(name, [])

        if self._max_listeners > 0 and len(listeners) >= self._max_listeners:
            logger.warning(
                f"Event '{name}' has {len(listeners) + 1} listeners "
                f"(max {self._max_listeners}); possible listener leak"
            )

        listeners.append(callback)
        return self._unsubscriber(name, callback)

    def _unsubscriber(self, name: str, callback: Listener) -> Unsubscribe:
        done = False

        def unsubscribe() -> None:
            nonlocal done
            if done:
                return
            done = True
            listeners = self._events.get(name)
            if listeners is None:
                return
            for i, registered in enumerate(listeners):
                if registered is callback:
                    listeners.pop(i)
                    break
            if not listeners:
                del self._events[name]

        return unsubscribe

    def once(self, event: EventName, callback: Listener) -> Unsubscribe:
        """
        Register ``callback`` for a single delivery.

        The registration is removed before ``callback`` runs, so a
        callback that re-emits the same event is not invoked again.
        """
        if not callable(callback):
            raise TypeError(f"Listener for '{event}' must be callable, got {callback!r}")

        def once_wrapper(*args: Any, **kwargs: Any) -> Any:
            unsubscribe()
            return callback(*args, **kwargs)

        once_wrapper.__wrapped__ = callback  # type: ignore[attr-defined]
        unsubscribe = self.on(event, once_wrapper)
        return unsubscribe

    def off(self, event: EventName, callback: Listener) -> bool:
        """
        Remove ``callback`` (including ``once`` registrations of it).

        The event entry is deleted once its last listener is gone.
        Returns True if anything was removed.
        """
        name = _event_key(event)
        listeners = self._events.get(name)
        if listeners is None:
            return False

        kept = [
            cb for cb in listeners
            if cb is not callback and getattr(cb, "__wrapped__", None) is not callback
        ]
        removed = len(kept) != len(listeners)

        if kept:
            self._events[name] = kept
        else:
            del self._events[name]
        return removed

    def remove_all_listeners(self, event: Optional[EventName] = None) -> None:
        """Drop listeners for one event, or for every event."""
        if event is None:
            self._events.clear()
        else:
            self._events.pop(_event_key(event), None)

    @contextlib.contextmanager
    def subscribed(self, event: EventName, callback: Listener) -> Iterator[Unsubscribe]:
        """
        Context manager for a temporary subscription.

        The listener is automatically removed on exit.
        """
        unsubscribe = self.on(event, callback)
        try:
            yield unsubscribe
        finally:
            unsubscribe()

    # ── Emission ─────────────────────────────────────────────────────

    def emit(self, event: EventName, *args: Any, **kwargs: Any) -> int:
        """
        Invoke every listener registered for ``event``.

        Listeners run in registration order over a snapshot taken before
        the first call. A listener that raises is logged and skipped.
        Coroutine listeners are scheduled on the running loop.

        Returns the number of listeners invoked.
        """
        name = _event_key(event)
        listeners = self._events.get(name)
        if not listeners:
            return 0

        snapshot = list(listeners)
        for callback in snapshot:
            try:
                result = callback(*args, **kwargs)
            except Exception as exc:
                logger.error(
                    f"Listener {_listener_name(callback)} for event '{name}' "
                    f"raised {exc.__class__.__name__}: {exc}",
                    exc_info=exc,
                )
                continue
            if inspect.isawaitable(result):
                self._schedule(name, callback, result)
        return len(snapshot)

    async def emit_async(self, event: EventName, *args: Any, **kwargs: Any) -> int:
        """
        Like ``emit``, but awaits coroutine listeners in order.
        """
        name = _event_key(event)
        listeners = self._events.get(name)
        if not listeners:
            return 0

        snapshot = list(listeners)
        for callback in snapshot:
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    f"Listener {_listener_name(callback)} for event '{name}' "
                    f"raised {exc.__class__.__name__}: {exc}",
                    exc_info=exc,
                )
        return len(snapshot)

    def _schedule(self, name: str, callback: Listener, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.error(
                f"Async listener {_listener_name(callback)} for event '{name}' "
                f"skipped: no running event loop"
            )
            return
        task = loop.create_task(self._run_async(name, callback, awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_async(self, name: str, callback: Listener, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception as exc:
            logger.error(
                f"Async listener {_listener_name(callback)} for event '{name}' "
                f"raised {exc.__class__.__name__}: {exc}",
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for coroutine listeners scheduled by ``emit``."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Introspection ────────────────────────────────────────────────

    def listener_count(self, event: EventName) -> int:
        return len(self._events.get(_event_key(event), ()))

    def event_names(self) -> List[str]:
        return list(self._events)

    def event_info(self) -> Dict[str, int]:
        """Event name → number of listeners."""
        return {name: len(listeners) for name, listeners in self._events.items()}

    def __repr__(self) -> str:
        return f"<EventBus events={len(self._events)} listeners={sum(self.event_info().values())}>"
