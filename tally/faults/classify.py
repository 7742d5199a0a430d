"""
Tally Faults - Error classification for callers.

Maps arbitrary exceptions raised out of the cache, executor and
transaction layers onto a small set of user-facing error types, each
with a title, message and suggested recovery action. Nothing inside
the core retries on its own; ``with_retry`` is offered to callers that
want it.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .core import Fault, FaultDomain, Severity

logger = logging.getLogger("tally.faults")

T = TypeVar("T")


class ErrorType(str, Enum):
    """User-facing error categories."""
    NETWORK = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    CONNECTION = "CONNECTION_ERROR"
    AUTH = "AUTH_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    REQUIRED_FIELD = "REQUIRED_FIELD_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT_ERROR"
    DATABASE = "DATABASE_ERROR"
    CONSTRAINT = "CONSTRAINT_ERROR"
    NOT_FOUND = "NOT_FOUND_ERROR"
    PERMISSION = "PERMISSION_ERROR"
    STORAGE = "STORAGE_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class ErrorMessage:
    title: str
    message: str
    recovery: Optional[str] = None


ERROR_MESSAGES: Dict[ErrorType, ErrorMessage] = {
    ErrorType.NETWORK: ErrorMessage(
        "Connection error",
        "Check your internet connection and try again.",
        "Try again",
    ),
    ErrorType.TIMEOUT: ErrorMessage(
        "Timed out",
        "The operation took longer than expected. Try again.",
        "Try again",
    ),
    ErrorType.CONNECTION: ErrorMessage(
        "Connection failed",
        "Could not reach the data source. Try again in a moment.",
        "Try again",
    ),
    ErrorType.AUTH: ErrorMessage(
        "Authentication error",
        "Your credentials are invalid. Check them and try again.",
        "Log in again",
    ),
    ErrorType.VALIDATION: ErrorMessage(
        "Invalid data",
        "Some fields were not filled in correctly.",
        "Fix the data",
    ),
    ErrorType.REQUIRED_FIELD: ErrorMessage(
        "Required field",
        "Please fill in all required fields.",
        "Fill in fields",
    ),
    ErrorType.INVALID_FORMAT: ErrorMessage(
        "Invalid format",
        "The data is not in the expected format.",
        "Fix the format",
    ),
    ErrorType.DATABASE: ErrorMessage(
        "Database error",
        "Something went wrong while saving your data. Try again.",
        "Try again",
    ),
    ErrorType.CONSTRAINT: ErrorMessage(
        "Rule violation",
        "This operation would break a data rule.",
    ),
    ErrorType.NOT_FOUND: ErrorMessage(
        "Not found",
        "The requested item was not found.",
        "Refresh list",
    ),
    ErrorType.PERMISSION: ErrorMessage(
        "Permission denied",
        "The app needs permission to perform this operation.",
        "Grant permission",
    ),
    ErrorType.STORAGE: ErrorMessage(
        "Storage error",
        "There is not enough space or the storage is unavailable.",
        "Free up space",
    ),
    ErrorType.UNKNOWN: ErrorMessage(
        "Unexpected error",
        "Something unexpected happened. Try again.",
        "Try again",
    ),
}

_RETRYABLE = {
    ErrorType.NETWORK,
    ErrorType.TIMEOUT,
    ErrorType.CONNECTION,
    ErrorType.DATABASE,
    ErrorType.STORAGE,
}

# Ordered: first match wins
_MESSAGE_RULES = (
    (("network", "fetch"), ErrorType.NETWORK),
    (("timeout", "timed out"), ErrorType.TIMEOUT),
    (("connection",), ErrorType.CONNECTION),
    (("auth", "login", "token"), ErrorType.AUTH),
    (("required", "not null"), ErrorType.REQUIRED_FIELD),
    (("constraint", "unique"), ErrorType.CONSTRAINT),
    (("format", "invalid"), ErrorType.INVALID_FORMAT),
    (("validation",), ErrorType.VALIDATION),
    (("not found", "no such"), ErrorType.NOT_FOUND),
    (("database", "sql"), ErrorType.DATABASE),
    (("permission",), ErrorType.PERMISSION),
    (("storage", "disk", "space"), ErrorType.STORAGE),
)


@dataclass
class HandledError:
    """Result of ``handle_error``: classification plus user message."""
    type: ErrorType
    original: BaseException
    user_message: ErrorMessage
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return self.type in _RETRYABLE


def classify_error(error: Optional[BaseException]) -> ErrorType:
    """Classify an exception into an ``ErrorType``."""
    if error is None:
        return ErrorType.UNKNOWN

    if isinstance(error, Fault):
        if error.domain == FaultDomain.STORAGE:
            return ErrorType.STORAGE
        if error.domain == FaultDomain.CONFIG:
            return ErrorType.VALIDATION
        if error.domain == FaultDomain.EXECUTOR and error.code == "EXECUTOR_NOT_CONNECTED":
            return ErrorType.CONNECTION

    # sqlite3 hierarchy first: IntegrityError is a DatabaseError
    if isinstance(error, sqlite3.IntegrityError):
        message = str(error).lower()
        if "not null" in message:
            return ErrorType.REQUIRED_FIELD
        return ErrorType.CONSTRAINT
    if isinstance(error, sqlite3.Error):
        return ErrorType.DATABASE
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorType.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorType.CONNECTION
    if isinstance(error, PermissionError):
        return ErrorType.PERMISSION
    if isinstance(error, OSError) and error.errno == errno.ENOSPC:
        return ErrorType.STORAGE
    if isinstance(error, (KeyError, LookupError)):
        return ErrorType.NOT_FOUND

    message = str(error).lower()
    for needles, error_type in _MESSAGE_RULES:
        if any(needle in message for needle in needles):
            return error_type

    if isinstance(error, (ValueError, TypeError)):
        return ErrorType.VALIDATION

    return ErrorType.UNKNOWN


def handle_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> HandledError:
    """
    Classify, log and describe an error for display.

    Faults are logged at the level implied by their severity; any other
    exception is logged as an error.
    """
    error_type = classify_error(error)
    error_context = {
        "type": error_type.value,
        "error": error.__class__.__name__,
        "message": str(error),
        **(context or {}),
    }
    if isinstance(error, Fault):
        error_context["code"] = error.code
        error_context["domain"] = error.domain.value

    log_error(error, error_context)

    return HandledError(
        type=error_type,
        original=error,
        user_message=ERROR_MESSAGES[error_type],
        context=error_context,
    )


def log_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an error at the level its severity implies."""
    level = logging.ERROR
    if isinstance(error, Fault):
        level = {
            Severity.INFO: logging.INFO,
            Severity.WARN: logging.WARNING,
            Severity.ERROR: logging.ERROR,
            Severity.FATAL: logging.CRITICAL,
        }[error.severity]
    logger.log(level, f"Error captured: {error}", extra={"context": context or {}})


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
) -> T:
    """
    Run ``operation`` up to ``max_retries`` times with linear backoff.

    The last error is re-raised once all attempts fail.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {max_retries}")

    last_exc: Optional[BaseException] = None
    for attempt in range(1, max_retries + 1):
        try:
            result = await operation()
            if attempt > 1:
                logger.info(f"Operation succeeded after {attempt} attempts")
            return result
        except Exception as exc:
            last_exc = exc
            if attempt < max_retries:
                logger.warning(
                    f"Attempt {attempt}/{max_retries} failed: {exc}, "
                    f"retrying in {delay * attempt}s..."
                )
                await asyncio.sleep(delay * attempt)
            else:
                logger.warning(f"Attempt {attempt}/{max_retries} failed: {exc}")

    assert last_exc is not None
    raise last_exc
