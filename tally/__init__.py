"""
Tally - Async data core for expense tracking

Complete integration of:
- Cache: Query result cache with TTL, staleness and pattern invalidation
- Events: In-process publish/subscribe for domain events
- Query: Cached SQL reads with background refresh
- DB: aiosqlite executor and all-or-nothing transaction runner
- Faults: Structured error handling with fault domains
"""

__version__ = "0.1.0"

# ============================================================================
# Core
# ============================================================================

from .app import Tally, create_durable_store
from .config import ConfigLoader, TallyConfig
from .log import configure_logging

# ============================================================================
# Cache
# ============================================================================

from .cache import (
    CacheEntry,
    CacheManager,
    CacheStats,
    Freshness,
    TieredStore,
    derive_key,
)

# ============================================================================
# Events
# ============================================================================

from .events import AppEvent, CacheInvalidator, EventBus

# ============================================================================
# Query / DB
# ============================================================================

from .query import CachedQuery, QueryInvalidation, QueryOptions
from .db import (
    ExecuteResult,
    QueryExecutor,
    SQLiteExecutor,
    TransactionResult,
    TransactionRunner,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import Fault, FaultDomain, Severity, classify_error, handle_error

__all__ = [
    "__version__",
    # Core
    "Tally",
    "create_durable_store",
    "ConfigLoader",
    "TallyConfig",
    "configure_logging",
    # Cache
    "CacheEntry",
    "CacheManager",
    "CacheStats",
    "Freshness",
    "TieredStore",
    "derive_key",
    # Events
    "AppEvent",
    "CacheInvalidator",
    "EventBus",
    # Query / DB
    "CachedQuery",
    "QueryInvalidation",
    "QueryOptions",
    "ExecuteResult",
    "QueryExecutor",
    "SQLiteExecutor",
    "TransactionResult",
    "TransactionRunner",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "classify_error",
    "handle_error",
]
