"""
Tally DB: SQL executor and transaction runner.
"""

from .executor import (
    ExecuteResult,
    QueryExecutor,
    SQLiteExecutor,
    create_executor,
    parse_sqlite_url,
)
from .transactions import (
    DEFAULT_SLOW_THRESHOLD,
    TransactionResult,
    TransactionRunner,
    validate_identifier,
)

__all__ = [
    "ExecuteResult",
    "QueryExecutor",
    "SQLiteExecutor",
    "create_executor",
    "parse_sqlite_url",
    "DEFAULT_SLOW_THRESHOLD",
    "TransactionResult",
    "TransactionRunner",
    "validate_identifier",
]
