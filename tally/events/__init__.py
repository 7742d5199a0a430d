"""
Tally Events: in-process publish/subscribe and cache invalidation wiring.
"""

from .names import AppEvent, DATA_CHANGE_EVENTS, EXPENSE_EVENTS
from .bus import DEFAULT_MAX_LISTENERS, EventBus, Listener, Unsubscribe
from .invalidation import DEFAULT_INVALIDATION_MAP, CacheInvalidator

__all__ = [
    "AppEvent",
    "DATA_CHANGE_EVENTS",
    "EXPENSE_EVENTS",
    "DEFAULT_MAX_LISTENERS",
    "EventBus",
    "Listener",
    "Unsubscribe",
    "DEFAULT_INVALIDATION_MAP",
    "CacheInvalidator",
]
