"""
Tests for structured JSON logging.
"""

import json
import logging
from decimal import Decimal
from io import StringIO

from agency_kernel.exceptions import ForecastLockedError
from agency_kernel.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record_factory):
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("agency_kernel.tests.logging")
    logger.addHandler(handler)
    try:
        record_factory(logger)
    finally:
        logger.removeHandler(handler)
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:
    def test_envelope_and_extra(self):
        records = _format(lambda log: log.info("payout_computed", extra={"amount": Decimal("1.50")}))
        record = records[0]
        assert record["message"] == "payout_computed"
        assert record["level"] == "INFO"
        assert record["logger"] == "agency_kernel.tests.logging"
        assert record["amount"] == "1.50"
        assert "ts" in record

    def test_context_fields(self):
        with LogContext.bind(model_id="recModel", month_key="2024-03"):
            records = _format(lambda log: log.info("inside"))
        records += _format(lambda log: log.info("outside"))
        assert records[0]["model_id"] == "recModel"
        assert records[0]["month_key"] == "2024-03"
        assert "model_id" not in records[1]

    def test_exception_fields(self):
        def emit(log):
            try:
                raise ForecastLockedError("recModel-2024-03-expected")
            except ForecastLockedError:
                log.exception("forecast_write_failed")

        record = _format(emit)[0]
        assert record["exc_type"] == "ForecastLockedError"
        assert record["exc_code"] == "FORECAST_LOCKED"
        assert "traceback" in record


class TestGetLogger:
    def test_namespace(self):
        assert get_logger("engines.pnl").name == "agency_kernel.engines.pnl"
