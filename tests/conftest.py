"""
Pytest fixtures for the billing test suite.

Provides:
- Structured logging setup and log capture
- Deterministic clock
- In-memory stores and a PeriodLockGuard wired to them
- SQLite in-memory SQLAlchemy sessions for the persistence adapters
- Engine settings loaded from the packaged defaults
"""

import json
import logging
from collections.abc import Generator
from datetime import UTC, datetime
from io import StringIO

import pytest
from sqlalchemy.orm import Session

from billing_config import get_active_config
from billing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.stores.memory import (
    InMemoryInvoiceLineStore,
    InMemoryInvoiceStore,
    InMemoryOccupancyStore,
    InMemoryPeriodLockStore,
)
from billing_services.period_lock import PeriodLockGuard

TEST_ORG_ID = "org-test"
TEST_ACTOR_ID = "actor-test"


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
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, guard):
            guard.lock_period(...)
            logs = captured_logs()
            assert any(r["message"] == "period_locked" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock, settings and stores
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(datetime(2025, 3, 15, 9, 30, 0, tzinfo=UTC))


@pytest.fixture
def settings():
    return get_active_config()


@pytest.fixture
def period_store() -> InMemoryPeriodLockStore:
    return InMemoryPeriodLockStore()


@pytest.fixture
def invoice_store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def line_store() -> InMemoryInvoiceLineStore:
    return InMemoryInvoiceLineStore()


@pytest.fixture
def occupancy_store() -> InMemoryOccupancyStore:
    return InMemoryOccupancyStore()


@pytest.fixture
def guard(period_store, clock) -> PeriodLockGuard:
    return PeriodLockGuard(period_store, clock)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """
    Fresh SQLite in-memory schema per test.

    The session is rolled back and the schema dropped afterwards; stores
    under test only flush.
    """
    init_engine_from_url("sqlite://", echo=False)
    create_tables()
    session = get_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        drop_tables()
        reset_engine()
