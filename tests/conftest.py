"""
Pytest fixtures for the agency finance engine test suite.

Provides:
- Structured logging configured once per session, plus a JSON log capture
- An in-memory SQLite database for the derived-row store
- Settings, clock and week fixtures (record builders live in tests/builders.py)
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from agency_config.schema import EngineSettings
from agency_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from agency_kernel.domain.clock import DeterministicClock
from agency_kernel.domain.records import Week
from agency_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from agency_services.fx_rate_service import FxRateCache
from tests.builders import FixedRateSource, make_week

FX_RATE = Decimal("0.92")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture agency_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "fx_rate_fallback_used" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("agency_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def session() -> Generator[Session, None, None]:
    """Fresh in-memory database per test; rolled back and dropped afterwards."""
    init_engine_from_url("sqlite+pysqlite:///:memory:")
    create_tables()
    db = get_session()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
        drop_tables()
        reset_engine()


# =============================================================================
# Settings, clock, rates and weeks
# =============================================================================


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def fx_rate() -> Decimal:
    return FX_RATE


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2024, 3, 15, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fx_cache(clock) -> FxRateCache:
    """Rate cache answering 0.92 without network access."""
    return FxRateCache(FixedRateSource(FX_RATE), fallback_rate=FX_RATE, clock=clock)


@pytest.fixture
def march_weeks() -> list[Week]:
    """Weeks touching 2024-03 (the first and last straddle month ends)."""
    return [
        make_week("w09", date(2024, 2, 26), date(2024, 3, 3)),
        make_week("w10", date(2024, 3, 4), date(2024, 3, 10)),
        make_week("w11", date(2024, 3, 11), date(2024, 3, 17)),
        make_week("w12", date(2024, 3, 18), date(2024, 3, 24)),
        make_week("w13", date(2024, 3, 25), date(2024, 3, 31)),
    ]
