"""
Tally Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- CACHE faults
- STORAGE faults
- EXECUTOR faults
- TRANSACTION faults
"""

from typing import Any, Optional

from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason},
        )


# ============================================================================
# CACHE Faults
# ============================================================================

class CacheFault(Fault):
    """Base class for all cache faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.WARN,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CACHE,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class InvalidTTLFault(CacheFault):
    """TTL must be a positive duration."""

    def __init__(self, key: str, ttl: Any):
        super().__init__(
            code="CACHE_INVALID_TTL",
            message=f"TTL for key '{key}' must be a positive number of seconds, got {ttl!r}",
            severity=Severity.ERROR,
            metadata={"key": key, "ttl": ttl},
        )


class InvalidStaleTimeFault(CacheFault):
    """Stale time must fall inside the TTL window."""

    def __init__(self, stale_time: Any, ttl: Any):
        super().__init__(
            code="CACHE_INVALID_STALE_TIME",
            message=f"stale_time ({stale_time!r}) must be >= 0 and <= ttl ({ttl!r})",
            severity=Severity.ERROR,
            metadata={"stale_time": stale_time, "ttl": ttl},
        )


class InvalidPatternFault(CacheFault):
    """Invalidation pattern must be a non-empty string."""

    def __init__(self, pattern: Any):
        super().__init__(
            code="CACHE_INVALID_PATTERN",
            message=f"Invalidation pattern must be a non-empty string, got {pattern!r}",
            severity=Severity.ERROR,
            metadata={"pattern": pattern},
        )


class CacheSerializationFault(CacheFault):
    """Failed to serialize/deserialize a persisted cache entry."""

    def __init__(self, key: str, operation: str, reason: str):
        super().__init__(
            code="CACHE_SERIALIZATION_FAILED",
            message=f"Cache {operation} failed for key '{key}': {reason}",
            metadata={"key": key, "operation": operation, "reason": reason},
        )


# ============================================================================
# STORAGE Faults
# ============================================================================

class StorageFault(Fault):
    """Durable key-value store error."""

    def __init__(self, backend: str, operation: str, reason: str):
        super().__init__(
            code="STORAGE_ERROR",
            message=f"Durable store '{backend}' error during {operation}: {reason}",
            domain=FaultDomain.STORAGE,
            metadata={"backend": backend, "operation": operation, "reason": reason},
        )


# ============================================================================
# EXECUTOR Faults
# ============================================================================

class ExecutorNotConnectedFault(Fault):
    """Executor used before connect() or after close()."""

    def __init__(self, url: str):
        super().__init__(
            code="EXECUTOR_NOT_CONNECTED",
            message=f"Query executor for '{url}' is not connected",
            domain=FaultDomain.EXECUTOR,
            retryable=False,
            metadata={"url": url},
        )


class UnsupportedDatabaseFault(Fault):
    """Database URL scheme has no executor."""

    def __init__(self, url: str):
        super().__init__(
            code="EXECUTOR_UNSUPPORTED_URL",
            message=f"Unsupported database URL: {url}",
            domain=FaultDomain.EXECUTOR,
            severity=Severity.FATAL,
            retryable=False,
            metadata={"url": url},
        )


# ============================================================================
# TRANSACTION Faults
# ============================================================================

class TransactionFault(Fault):
    """Base class for transaction faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.TRANSACTION,
            metadata=metadata,
        )


class TransactionNestingFault(TransactionFault):
    """run() called from inside operations already running on the runner."""

    def __init__(self):
        super().__init__(
            code="TRANSACTION_NESTED",
            message="Transactions cannot be nested on the same runner",
        )


class TransactionBusyFault(TransactionFault):
    """run() called from another task while a transaction is active on the runner."""

    def __init__(self):
        super().__init__(
            code="TRANSACTION_BUSY",
            message="A transaction is already active on this runner",
        )


class InvalidIdentifierFault(TransactionFault):
    """Table or column name is not a plain SQL identifier."""

    def __init__(self, identifier: Any, kind: str = "identifier"):
        super().__init__(
            code="TRANSACTION_INVALID_IDENTIFIER",
            message=f"Invalid {kind} name: {identifier!r}. Use alphanumeric + underscore only.",
            metadata={"identifier": identifier, "kind": kind},
        )
