"""
Tally Events: application event names.

``AppEvent`` members are ``str`` subclasses, so ``bus.emit(AppEvent.EXPENSE_ADDED)``
and ``bus.emit("expense:added")`` reach the same listeners.
"""

from __future__ import annotations

from enum import Enum


class AppEvent(str, Enum):
    """Domain events published after data changes."""
    EXPENSE_ADDED = "expense:added"
    EXPENSE_UPDATED = "expense:updated"
    EXPENSE_DELETED = "expense:deleted"
    CATEGORY_CHANGED = "category:changed"
    PAYMENT_METHOD_CHANGED = "payment_method:changed"
    ESTABLISHMENT_CHANGED = "establishment:changed"
    USER_LOGGED_IN = "user:logged_in"
    USER_LOGGED_OUT = "user:logged_out"
    DATA_SYNC_NEEDED = "data:sync_needed"

    def __str__(self) -> str:
        return self.value


EXPENSE_EVENTS = (
    AppEvent.EXPENSE_ADDED,
    AppEvent.EXPENSE_UPDATED,
    AppEvent.EXPENSE_DELETED,
)

# Events that change what a dashboard or list screen shows
DATA_CHANGE_EVENTS = EXPENSE_EVENTS + (
    AppEvent.CATEGORY_CHANGED,
    AppEvent.PAYMENT_METHOD_CHANGED,
    AppEvent.ESTABLISHMENT_CHANGED,
    AppEvent.DATA_SYNC_NEEDED,
)
