"""
Pytest fixtures for the billing engine test suite.

Provides:
- A file-backed SQLite database per test (tables and immutability
  listeners installed)
- Seeded users and tags, committed before the test starts
- Kernel services bound to a single test session
- An InvoiceEngine facade bound to the same database

SQLite transactions start with BEGIN IMMEDIATE, so a test must not keep
the ``session`` fixture inside a transaction while calling the facade.
Service tests use ``session``; facade tests use ``invoice_engine``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import UUID

import pytest

from billing_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.domain.notices import Outbox
from billing_kernel.domain.period import BillingWindowSettings
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.models.user import User, UserRole
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.batch_import_service import BatchImportService
from billing_kernel.services.entry_ledger import EntryLedgerService
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.settings_service import SettingsService
from billing_services.invoice_engine import InvoiceEngine
from billing_services.notifications import LoggingNotifier, NotificationDispatcher

DEFAULT_TAGS = ("Dev", "Bug", "Call", "Meeting", "Research", "Admin", "Testing", "Documentation")

# Work week of the default DeterministicClock (Wed 2024-01-17 12:00 UTC)
MONDAY = date(2024, 1, 15)
WEDNESDAY = date(2024, 1, 17)
SUNDAY = date(2024, 1, 21)
LAST_FRIDAY = date(2024, 1, 12)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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

        def test_something(captured_logs, lifecycle):
            lifecycle.submit_invoice(...)
            logs = captured_logs()
            assert any(r["message"] == "invoice_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables()
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def billing_settings():
    return BillingWindowSettings()


@dataclass(frozen=True)
class SeedData:
    member_id: UUID
    other_member_id: UUID
    no_rate_member_id: UUID
    admin_id: UUID


@pytest.fixture
def seeded(session_factory, deterministic_clock) -> SeedData:
    """Four users and the default tag set, committed."""
    now = deterministic_clock.now()
    with session_scope(session_factory) as s:
        member = User(
            name="Alice Member", email="alice@example.com",
            role=UserRole.MEMBER.value, rate=Decimal("75.00"), created_at=now,
        )
        other = User(
            name="Bob Member", email="bob@example.com",
            role=UserRole.MEMBER.value, rate=Decimal("50.00"), created_at=now,
        )
        no_rate = User(
            name="Carol NoRate", email="carol@example.com",
            role=UserRole.MEMBER.value, rate=None, created_at=now,
        )
        admin = User(
            name="Dana Admin", email="dana@example.com",
            role=UserRole.ADMIN.value, rate=None, created_at=now,
        )
        s.add_all([member, other, no_rate, admin])
        s.flush()
        SettingsService(s, deterministic_clock).ensure_tags(DEFAULT_TAGS)
        seed = SeedData(member.id, other.id, no_rate.id, admin.id)
    return seed


@pytest.fixture
def session(seeded, session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def settings_service(session, deterministic_clock):
    return SettingsService(session, deterministic_clock)


@pytest.fixture
def auditor(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


@pytest.fixture
def ledger(session, deterministic_clock, settings_service):
    return EntryLedgerService(session, deterministic_clock, settings_service)


@pytest.fixture
def outbox():
    return Outbox()


@pytest.fixture
def lifecycle(session, deterministic_clock, outbox, ledger, auditor):
    return InvoiceLifecycleService(session, deterministic_clock, outbox, ledger, auditor)


@pytest.fixture
def batch_import(session, deterministic_clock, settings_service, auditor):
    return BatchImportService(session, deterministic_clock, settings_service, auditor)


@pytest.fixture
def add_entry(ledger):
    """Create an open entry through the ledger and return its TimeEntryInfo."""

    def _add(user_id, work_date=MONDAY, hours="3", task="Build feature", **extra):
        fields = {"date": work_date.isoformat(), "hours": hours, "task": task, **extra}
        return ledger.create_entry(user_id, fields)

    return _add


# =============================================================================
# Facade
# =============================================================================


@pytest.fixture
def notifier():
    return LoggingNotifier(admin_emails=["admin@example.com"])


@pytest.fixture
def invoice_engine(seeded, session_factory, deterministic_clock, notifier):
    """Facade whose dispatcher worker is stopped at teardown."""
    dispatcher = NotificationDispatcher(notifier, session_factory, deterministic_clock)
    engine = InvoiceEngine(session_factory, deterministic_clock, dispatcher=dispatcher)
    yield engine
    engine.close()
