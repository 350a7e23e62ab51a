"""
Pytest fixtures for the payment kernel test suite.

Provides:
- Database sessions, isolated per test by an outer rolled-back transaction
- A deterministic clock and the kernel services wired to it
- Structured-log capture
- Builders for payment envelopes (see tests/support.py)

Environment Variables:
- DATABASE_URL: database to run against.  Defaults to in-memory SQLite;
  set a ``postgresql://`` URL to run the same suite (plus tests marked
  ``postgres``) against PostgreSQL.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from payment_kernel.db.engine import drop_tables, init_engine_from_url, reset_engine
from payment_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from payment_kernel.domain.clock import DeterministicClock
from payment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payment_kernel.messaging.factory import MessageFactory
from payment_kernel.messaging.schemas import PAYMENT_SCHEMA
from payment_kernel.messaging.topology import InMemoryTransport
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.services.ingestion_ledger import IngestionLedger
from payment_kernel.services.payment_event_log import PaymentEventLog
from payment_modules._orm_registry import create_all_tables
from tests.support import FakeFetcher, make_payment_data

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests when running on SQLite."""
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


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
    Capture payment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.ingest(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_ingested" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payment_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Session-scoped engine, created once."""
    engine = init_engine_from_url(get_database_url(), pool_size=5, max_overflow=5)
    yield engine
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; immutability listeners stay active."""
    create_all_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection; any
    ``session.commit()`` inside the test only releases a savepoint, and the
    outer transaction is rolled back at teardown.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock and service fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing (2025-08-24 12:00 UTC)."""
    return DeterministicClock()


@pytest.fixture
def audit_log(session, deterministic_clock):
    return ComplianceAuditLog(session, deterministic_clock)


@pytest.fixture
def event_log(session, deterministic_clock):
    return PaymentEventLog(session, deterministic_clock)


@pytest.fixture
def ledger(session, deterministic_clock, audit_log):
    return IngestionLedger(session, clock=deterministic_clock, audit_log=audit_log)


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def message_factory(deterministic_clock):
    return MessageFactory("test-producer", clock=deterministic_clock)


@pytest.fixture
def payment_envelope(message_factory):
    """Build a ``loanserve.payments.v1`` envelope; kwargs go to make_payment_data."""

    def _build(correlation_id=None, **kwargs):
        return message_factory.create_message(
            PAYMENT_SCHEMA,
            make_payment_data(**kwargs),
            correlation_id=correlation_id,
        )

    return _build
