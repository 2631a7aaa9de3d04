"""
Pytest fixtures for the pawnshop ledger test suite.

Provides:
- A database engine created once per session (SQLite file by default)
- Per-test sessions isolated by an outer transaction that is rolled back
- Seeded chart of accounts, configuration and a deterministic clock
- The loan, payment and cash services with recording collaborators, an
  open cash session and a loan factory
- Structured log capture

Environment Variables:
- DATABASE_URL: connection URL.  When set to a PostgreSQL URL the
  ``postgres``-marked tests (row locks, real concurrency) also run.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from pathlib import Path
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from pawn_config import get_active_config
from pawn_kernel.db.base import Base
from pawn_kernel.db.engine import (
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from pawn_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from pawn_kernel.domain.clock import DeterministicClock
from pawn_kernel.domain.collaborators import Collaborators
from pawn_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pawn_kernel.services.chart_service import ChartOfAccountsService
from pawn_modules._orm_registry import create_all_tables, import_all_orm_models
from pawn_modules.cash.service import CashService
from pawn_modules.loans.models import CreateLoanInput
from pawn_modules.loans.payment_service import PaymentService
from pawn_modules.loans.service import LoanService
from tests.fakes import (
    OPENING_FLOAT,
    TEST_CLERK_ID,
    TEST_CUSTOMER_ID,
    TEST_ITEM_ID,
    TEST_REGISTER_ID,
    RecordingAuditLogger,
    RecordingCustomerService,
    RecordingItemService,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = UUID("00000000-0000-4000-b000-000000000001")
TEST_BRANCH_ID = UUID("00000000-0000-4000-b000-000000000010")


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
    Capture pawn_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, payment_service):
            payment_service.make_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pawn_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def pytest_collection_modifyitems(config, items):
    """Skip ``postgres`` tests unless DATABASE_URL points at PostgreSQL."""
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


_SQLITE_DIR = tempfile.mkdtemp(prefix="pawn_ledger_tests_")


def get_database_url() -> str:
    """Database URL from the environment, or a throwaway SQLite file."""
    return os.environ.get(
        "DATABASE_URL", f"sqlite:///{Path(_SQLITE_DIR) / 'ledger_test.db'}"
    )


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        get_database_url(), echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    import_all_orm_models()
    drop_tables()
    create_all_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine):
    """Remove all data (bypasses ORM listeners).

    Used by concurrency tests that need real commits and therefore cannot
    rely on the rollback isolation pattern.
    """
    with engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Uses the SQLAlchemy 2.0 ``join_transaction_mode`` pattern:
    - Opens a dedicated connection with an outer transaction
    - Creates a session that *joins* the outer transaction
    - Any ``session.commit()`` inside the test releases a savepoint; it
      does NOT actually commit to the database
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
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
# Concurrency testing fixtures (real commits + row cleanup)
# =============================================================================


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Provide a tracked session factory for creating sessions in concurrent threads.

    Each thread should create its own session using this factory.  At
    teardown every tracked session is closed and all rows are deleted.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()

    def tracked_factory():
        with lock:
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    for s in created_sessions:
        if s.in_transaction():
            s.rollback()
        s.close()
    _delete_all_rows(db_engine)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def branch_id() -> UUID:
    return TEST_BRANCH_ID


@pytest.fixture
def deterministic_clock():
    """Deterministic clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger_config():
    """The packaged default configuration."""
    return get_active_config()


@pytest.fixture
def seeded_accounts(session, ledger_config, test_actor_id):
    """Chart of accounts from the default configuration, keyed by code."""
    chart = ChartOfAccountsService(session)
    chart.seed(
        ledger_config.chart_of_accounts,
        actor_id=test_actor_id,
        system_codes=ledger_config.account_roles.values(),
    )
    session.commit()
    return {
        d.code: chart.get_by_code(d.code) for d in ledger_config.chart_of_accounts
    }



# =============================================================================
# Module service fixtures
#
# Every fixture is opt-in.  No autouse.  Each test declares the services and
# parent rows it depends on in its function signature.
# =============================================================================


@pytest.fixture
def collaborators():
    return Collaborators(
        items=RecordingItemService(),
        customers=RecordingCustomerService(),
        audit=RecordingAuditLogger(),
    )


@pytest.fixture
def loan_service(session, ledger_config, deterministic_clock, collaborators, seeded_accounts):
    return LoanService(session, ledger_config, deterministic_clock, collaborators)


@pytest.fixture
def payment_service(session, ledger_config, deterministic_clock, collaborators, seeded_accounts):
    return PaymentService(session, ledger_config, deterministic_clock, collaborators)


@pytest.fixture
def cash_service(session, ledger_config, deterministic_clock, collaborators):
    return CashService(session, ledger_config, deterministic_clock, audit=collaborators.audit)


@pytest.fixture
def approval_config(ledger_config):
    return replace(ledger_config, require_loan_approval=True)


@pytest.fixture
def approval_loan_service(
    session, approval_config, deterministic_clock, collaborators, seeded_accounts
):
    return LoanService(session, approval_config, deterministic_clock, collaborators)


@pytest.fixture
def cash_session(cash_service, branch_id):
    """An open cash session with a 5000.00 float."""
    return cash_service.open_session(
        branch_id=branch_id,
        cash_register_id=TEST_REGISTER_ID,
        user_id=TEST_CLERK_ID,
        opening_amount=OPENING_FLOAT,
        actor_id=TEST_CLERK_ID,
    )


@pytest.fixture
def loan_request(branch_id, test_actor_id, cash_session):
    """
    Factory for loan requests.

    Defaults: 1000.00 at 10 % for 30 days, 1 % late fee per day, disbursed
    in cash from the open cash session.
    """

    def _make(**overrides) -> CreateLoanInput:
        values = dict(
            branch_id=branch_id,
            customer_id=TEST_CUSTOMER_ID,
            item_id=TEST_ITEM_ID,
            loan_amount=Decimal("1000.00"),
            interest_rate=Decimal("10"),
            actor_id=test_actor_id,
            loan_term_days=30,
            late_fee_rate=Decimal("1"),
            cash_session_id=cash_session.id,
        )
        values.update(overrides)
        return CreateLoanInput(**values)

    return _make


@pytest.fixture
def make_loan(loan_service, loan_request):
    """Create a loan through LoanService and return its DTO."""

    def _make(**overrides):
        return loan_service.create_loan(loan_request(**overrides))

    return _make
