"""
Tests for the fault taxonomy and error classification.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import sqlite3
from unittest.mock import AsyncMock, patch

import pytest

from tally.faults import (
    ERROR_MESSAGES,
    CacheFault,
    ConfigInvalidFault,
    ErrorType,
    ExecutorNotConnectedFault,
    Fault,
    FaultDomain,
    InvalidIdentifierFault,
    InvalidTTLFault,
    Severity,
    StorageFault,
    TransactionNestingFault,
    classify_error,
    handle_error,
    log_error,
    with_retry,
)


class TestFault:
    def test_fields(self):
        fault = InvalidTTLFault("k", -1)
        assert isinstance(fault, CacheFault)
        assert isinstance(fault, Fault)
        assert fault.code == "CACHE_INVALID_TTL"
        assert fault.domain == FaultDomain.CACHE
        assert fault.severity is Severity.ERROR
        assert fault.retryable is False
        assert fault.metadata == {"key": "k", "ttl": -1}

    def test_str(self):
        assert str(TransactionNestingFault()).startswith("[TRANSACTION_NESTED]")

    def test_to_dict(self):
        d = ConfigInvalidFault("log_level", "bad").to_dict()
        assert d["code"] == "CONFIG_INVALID"
        assert d["domain"] == "config"

    def test_domain_equality_with_string(self):
        assert FaultDomain.STORAGE == "storage"

    def test_identifier_fault(self):
        fault = InvalidIdentifierFault("a b", "table")
        assert fault.domain == FaultDomain.TRANSACTION
        assert "table" in fault.message


class TestClassifyError:
    @pytest.mark.parametrize("error, expected", [
        (sqlite3.IntegrityError("NOT NULL constraint failed: expenses.description"), ErrorType.REQUIRED_FIELD),
        (sqlite3.IntegrityError("UNIQUE constraint failed: categories.name"), ErrorType.CONSTRAINT),
        (sqlite3.OperationalError("database is locked"), ErrorType.DATABASE),
        (asyncio.TimeoutError(), ErrorType.TIMEOUT),
        (ConnectionRefusedError(), ErrorType.CONNECTION),
        (PermissionError(), ErrorType.PERMISSION),
        (OSError(errno.ENOSPC, "No space left on device"), ErrorType.STORAGE),
        (KeyError("missing"), ErrorType.NOT_FOUND),
        (ValueError("bad amount"), ErrorType.VALIDATION),
        (RuntimeError("???"), ErrorType.UNKNOWN),
        (None, ErrorType.UNKNOWN),
    ])
    def test_builtin(self, error, expected):
        assert classify_error(error) is expected

    def test_fault_domains(self):
        assert classify_error(StorageFault("sqlite", "SET", "io")) is ErrorType.STORAGE
        assert classify_error(ConfigInvalidFault("k", "bad")) is ErrorType.VALIDATION
        assert classify_error(ExecutorNotConnectedFault("sqlite://")) is ErrorType.CONNECTION

    def test_every_type_has_message(self):
        assert set(ERROR_MESSAGES) == set(ErrorType)


class TestHandleError:
    def test_handled(self, caplog):
        error = sqlite3.IntegrityError("UNIQUE constraint failed: categories.name")
        with caplog.at_level(logging.ERROR, logger="tally.faults"):
            handled = handle_error(error, {"screen": "categories"})
        assert handled.type is ErrorType.CONSTRAINT
        assert handled.original is error
        assert handled.user_message is ERROR_MESSAGES[ErrorType.CONSTRAINT]
        assert handled.context["screen"] == "categories"
        assert handled.retryable is False
        assert "Error captured" in caplog.text

    def test_timeout_retryable(self):
        assert handle_error(asyncio.TimeoutError()).retryable is True

    def test_fault_context(self):
        handled = handle_error(InvalidTTLFault("k", 0))
        assert handled.context["code"] == "CACHE_INVALID_TTL"
        assert handled.context["domain"] == "cache"


class TestLogError:
    def test_level_from_severity(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="tally.faults"):
            log_error(StorageFault("redis", "GET", "timeout"))
        assert caplog.records[-1].levelno == logging.WARNING

    def test_plain_exception_is_error(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="tally.faults"):
            log_error(RuntimeError("x"))
        assert caplog.records[-1].levelno == logging.ERROR


class TestWithRetry:

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        operation = AsyncMock(side_effect=[ConnectionError(), ConnectionError(), "ok"])
        with patch("tally.faults.classify.asyncio.sleep", AsyncMock()) as sleep:
            assert await with_retry(operation, max_retries=3, delay=0.5) == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        operation = AsyncMock(side_effect=[ValueError("1"), ValueError("2")])
        with patch("tally.faults.classify.asyncio.sleep", AsyncMock()):
            with pytest.raises(ValueError, match="2"):
                await with_retry(operation, max_retries=2, delay=0)

    @pytest.mark.asyncio
    async def test_invalid_max_retries(self):
        with pytest.raises(ValueError):
            await with_retry(AsyncMock(), max_retries=0)
