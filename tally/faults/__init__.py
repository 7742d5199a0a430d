"""
Tally Faults - typed fault taxonomy.

Errors raised by Tally are typed fault signals with a stable code,
a domain, a severity and retry semantics. ``classify_error`` maps any
exception onto a user-facing error type.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    CacheFault,
    InvalidTTLFault,
    InvalidStaleTimeFault,
    InvalidPatternFault,
    CacheSerializationFault,
    StorageFault,
    ExecutorNotConnectedFault,
    UnsupportedDatabaseFault,
    TransactionFault,
    TransactionBusyFault,
    TransactionNestingFault,
    InvalidIdentifierFault,
)

from .classify import (
    ErrorType,
    ErrorMessage,
    HandledError,
    ERROR_MESSAGES,
    classify_error,
    handle_error,
    log_error,
    with_retry,
)

__all__ = [
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",
    # Domain faults
    "ConfigFault",
    "ConfigInvalidFault",
    "CacheFault",
    "InvalidTTLFault",
    "InvalidStaleTimeFault",
    "InvalidPatternFault",
    "CacheSerializationFault",
    "StorageFault",
    "ExecutorNotConnectedFault",
    "UnsupportedDatabaseFault",
    "TransactionFault",
    "TransactionBusyFault",
    "TransactionNestingFault",
    "InvalidIdentifierFault",
    # Classification
    "ErrorType",
    "ErrorMessage",
    "HandledError",
    "ERROR_MESSAGES",
    "classify_error",
    "handle_error",
    "log_error",
    "with_retry",
]
