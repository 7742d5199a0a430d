"""
Tally Events: event-driven cache invalidation.

Connects domain events to cache pattern invalidation. Query keys embed
the SQL text, so a table name is a natural invalidation pattern: an
``expense:added`` event drops every cached query that mentions
``expenses``.

Usage:
    invalidator = CacheInvalidator(bus, manager)
    invalidator.attach()
    ...
    invalidator.detach()
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

from .bus import EventBus, Unsubscribe
from .names import AppEvent
from ..cache.manager import CacheManager

logger = logging.getLogger("tally.events.invalidation")

# Event → key substrings to drop. ``None`` clears the whole cache.
DEFAULT_INVALIDATION_MAP: Dict[AppEvent, Optional[Sequence[str]]] = {
    AppEvent.EXPENSE_ADDED: ("expenses",),
    AppEvent.EXPENSE_UPDATED: ("expenses",),
    AppEvent.EXPENSE_DELETED: ("expenses",),
    AppEvent.CATEGORY_CHANGED: ("categories", "expenses"),
    AppEvent.PAYMENT_METHOD_CHANGED: ("payment_methods", "expenses"),
    AppEvent.ESTABLISHMENT_CHANGED: ("establishments", "expenses"),
    AppEvent.USER_LOGGED_OUT: None,
    AppEvent.DATA_SYNC_NEEDED: None,
}


class CacheInvalidator:
    """Subscribes to domain events and invalidates the matching cache groups."""

    def __init__(
        self,
        bus: EventBus,
        manager: CacheManager,
        mapping: Optional[Mapping[AppEvent, Optional[Sequence[str]]]] = None,
    ):
        self._bus = bus
        self._manager = manager
        self._mapping = dict(DEFAULT_INVALIDATION_MAP if mapping is None else mapping)
        self._subscriptions: List[Unsubscribe] = []

    @property
    def attached(self) -> bool:
        return bool(self._subscriptions)

    def attach(self) -> Unsubscribe:
        """Subscribe to every mapped event. Returns ``detach``."""
        if self._subscriptions:
            return self.detach
        for event, patterns in self._mapping.items():
            self._subscriptions.append(self._bus.on(event, self._handler(event, patterns)))
        return self.detach

    def detach(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

    def _handler(self, event: AppEvent, patterns: Optional[Sequence[str]]):
        async def invalidate_on_event(*args, **kwargs) -> int:
            return await self.invalidate_for(event, patterns)

        invalidate_on_event.__qualname__ = f"CacheInvalidator[{event.value}]"
        return invalidate_on_event

    async def invalidate_for(self, event: AppEvent, patterns: Optional[Sequence[str]]) -> int:
        if patterns is None:
            count = await self._manager.clear()
        else:
            count = 0
            for pattern in patterns:
                count += await self._manager.invalidate_pattern(pattern)
        logger.debug(f"Event '{event.value}' invalidated {count} cache entries")
        return count
