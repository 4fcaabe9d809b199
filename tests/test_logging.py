"""Tests for the structured logging system (billing_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.exceptions import InvoiceAlreadyExistsError
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured, then put the suite's configuration back."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "billing_kernel.test"
        assert "ts" in record

    def test_extra_does_not_override_context(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(invoice_id="inv-1"):
            get_logger("test").info("msg", extra={"invoice_id": "other"})

        assert _parse_log(stream)["invoice_id"] == "inv-1"

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("invoice_submitted", extra={"entry_count": 2, "total": Decimal("600.00")})

        record = _parse_log(stream)
        assert record["entry_count"] == 2
        assert record["total"] == "600.00"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(actor_id="admin-1", invoice_id="inv-1"):
            get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["actor_id"] == "admin-1"
        assert record["invoice_id"] == "inv-1"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        user_id = uuid4()
        try:
            raise InvoiceAlreadyExistsError(user_id, None, "2024-01-15T07:01:00+00:00")
        except InvoiceAlreadyExistsError:
            get_logger("test").warning("submit_conflict", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "INVOICE_ALREADY_EXISTS"
        assert record["exc_user_id"] == str(user_id)
        assert record["exc_period_start"] == "2024-01-15T07:01:00+00:00"

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info("with_uuid", extra={"entry_id": uid})

        assert _parse_log(stream)["entry_id"] == str(uid)

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_empty_by_default(self):
        assert LogContext.get_all() == {}

    def test_bind_then_exit_clears(self):
        with LogContext.bind(invoice_id="inv-1", user_id="u"):
            assert LogContext.get_all() == {"invoice_id": "inv-1", "user_id": "u"}
        assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        with LogContext.bind(actor_id="outer"):
            with LogContext.bind(actor_id="inner", idempotency_key="k"):
                assert LogContext.get_all() == {"actor_id": "inner", "idempotency_key": "k"}
            assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_stringifies_and_ignores_unknown(self):
        uid = uuid4()
        with LogContext.bind(user_id=uid, operation="submit_invoice", invoice_id=None):
            assert LogContext.get_all() == {"user_id": str(uid)}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(invoice_id="inv-1"):
                raise RuntimeError("boom")

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        assert logging.getLogger("billing_kernel").handlers == [h1]

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.invoice_lifecycle").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "billing_kernel.services.invoice_lifecycle"
