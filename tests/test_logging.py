"""Tests for the structured logging system (pawn_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from pawn_kernel.exceptions import OverpaymentError
from pawn_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test and restore the suite default."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_all_logs(stream)[0]
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "pawn_kernel.test"
        assert "ts" in record

    def test_extra_fields_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        loan_id = uuid4()
        get_logger("test").info(
            "payment_recorded",
            extra={"loan_id": loan_id, "amount": Decimal("12.50")},
        )

        record = _parse_all_logs(stream)[0]
        assert record["loan_id"] == str(loan_id)
        assert record["amount"] == "12.50"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise OverpaymentError(Decimal("20.00"), Decimal("10.00"))
        except OverpaymentError:
            get_logger("test").exception("payment_failed")

        record = _parse_all_logs(stream)[0]
        assert record["exc_type"] == "OverpaymentError"
        assert record["exc_code"] == OverpaymentError.code
        assert record["exc_kind"] == "invalid_amount"
        assert record["exc_payoff_amount"] == "10.00"
        assert "traceback" in record

    def test_configure_is_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)
        get_logger("test").info("once")
        assert len(_parse_all_logs(stream)) == 1


class TestLogContext:

    def test_bind_adds_and_restores_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        loan_id = uuid4()

        with LogContext.bind(loan_id=loan_id, actor_id="clerk"):
            logger.info("inside")
        logger.info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["loan_id"] == str(loan_id)
        assert inside["actor_id"] == "clerk"
        assert "loan_id" not in outside

    def test_nested_bind_restores_outer_value(self):
        with LogContext.bind(branch_id="outer"):
            with LogContext.bind(branch_id="inner"):
                assert LogContext.get_all()["branch_id"] == "inner"
            assert LogContext.get_all()["branch_id"] == "outer"
        assert "branch_id" not in LogContext.get_all()

    def test_set_ignores_none(self):
        LogContext.set(correlation_id="abc", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "abc"}
        LogContext.clear()
        assert LogContext.get_all() == {}
