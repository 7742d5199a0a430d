"""
Tally Query: cached reads on top of the cache manager and executor.
"""

from .cached import (
    DEFAULT_STALE_TIME,
    CachedQuery,
    QueryInvalidation,
    QueryOptions,
)

__all__ = [
    "DEFAULT_STALE_TIME",
    "CachedQuery",
    "QueryInvalidation",
    "QueryOptions",
]
