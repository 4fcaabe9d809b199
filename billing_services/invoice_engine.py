"""
billing_services.invoice_engine -- the external interface of the billing engine.

Responsibility:
    Runs every operation in exactly one ``session_scope()`` unit of work,
    wires the kernel services for that session, and hands the notices the
    unit of work produced to the NotificationDispatcher after commit.

Architecture position:
    Services -- outermost layer.  Composes ``billing_kernel`` services and
    ``billing_config``.  Authorization is the caller's job: admin and
    owner ids arrive already checked.

Invariants enforced:
    - One transaction per call; rollback and re-raise on any exception.
    - Notices are published only after a successful commit.
    - Expected errors (validation, conflict, not found) reach the caller
      unchanged.  Anything else is logged with ``logger.exception`` and
      re-raised as InternalError chained from the original.

Usage:
    engine = InvoiceEngine(clock=SystemClock())
    invoice = engine.submit_invoice(user_id)
    ...
    engine.close()
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from billing_config.loader import BillingConfig
from billing_kernel.db.engine import get_session_factory, session_scope
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.deadline import build_deadline_report
from billing_kernel.domain.dtos import BatchImportResult, DeadlineReport, InvoiceInfo, TimeEntryInfo
from billing_kernel.domain.entry_parser import BatchPreview, preview_entries
from billing_kernel.domain.notices import Outbox
from billing_kernel.domain.period import BillingWindowSettings
from billing_kernel.exceptions import BillingKernelError, InternalError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.user_selector import UserSelector
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.batch_import_service import BatchImportService
from billing_kernel.services.entry_ledger import EntryLedgerService
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.settings_service import SettingsService
from billing_services.notifications import NotificationDispatcher, Notifier

logger = get_logger("services.invoice_engine")

T = TypeVar("T")


class KernelServices:
    """Every kernel service for one session, each constructed once."""

    def __init__(self, session: Session, clock: Clock, outbox: Outbox):
        self.session = session
        self.auditor = AuditorService(session, clock)
        self.settings = SettingsService(session, clock)
        self.ledger = EntryLedgerService(session, clock, self.settings)
        self.lifecycle = InvoiceLifecycleService(
            session, clock, outbox, self.ledger, self.auditor,
        )
        self.batch_import = BatchImportService(session, clock, self.settings, self.auditor)
        self.invoices = InvoiceSelector(session)
        self.users = UserSelector(session)


class InvoiceEngine:
    """Facade over the invoice period and lifecycle engine."""

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher or NotificationDispatcher(
            notifier, self._session_factory, self.clock,
        )

    def close(self, timeout: float = 10.0) -> None:
        """Deliver any queued notices, then stop the dispatcher worker."""
        self.dispatcher.stop(timeout)

    # -------------------------------------------------------------------------
    # Deadlines
    # -------------------------------------------------------------------------

    def get_deadline_status(
        self,
        now: datetime | None = None,
        settings: BillingWindowSettings | None = None,
        user_id: UUID | None = None,
    ) -> DeadlineReport:
        """
        Deadline status for one user, or for every user when ``user_id`` is None.

        A user counts as submitted once an invoice for the current period is
        submitted, approved or paid.
        """
        def work(svc: KernelServices) -> DeadlineReport:
            window = settings or svc.settings.get_invoice_settings()
            if user_id is not None:
                users = [svc.users.get(user_id)]
            else:
                users = svc.users.list_users()
            return build_deadline_report(
                now or self.clock.now(),
                window,
                [(u.id, u.name) for u in users],
                svc.invoices.has_submitted,
            )

        return self._execute("get_deadline_status", work, user_id=user_id)

    # -------------------------------------------------------------------------
    # Invoice lifecycle
    # -------------------------------------------------------------------------

    def submit_invoice(
        self,
        user_id: UUID,
        settings: BillingWindowSettings | None = None,
    ) -> InvoiceInfo:
        def work(svc: KernelServices) -> InvoiceInfo:
            window = settings or svc.settings.get_invoice_settings()
            return svc.lifecycle.submit_invoice(user_id, window)

        return self._execute("submit_invoice", work, user_id=user_id)

    def approve_invoice(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        return self._execute(
            "approve_invoice",
            lambda svc: svc.lifecycle.approve_invoice(invoice_id, admin_id),
            invoice_id=invoice_id, actor_id=admin_id,
        )

    def mark_invoice_paid(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        return self._execute(
            "mark_invoice_paid",
            lambda svc: svc.lifecycle.mark_invoice_paid(invoice_id, admin_id),
            invoice_id=invoice_id, actor_id=admin_id,
        )

    def revert_invoice_to_draft(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        return self._execute(
            "revert_invoice_to_draft",
            lambda svc: svc.lifecycle.revert_invoice_to_draft(invoice_id, admin_id),
            invoice_id=invoice_id, actor_id=admin_id,
        )

    def cancel_invoice(self, invoice_id: UUID, actor_id: UUID) -> InvoiceInfo:
        return self._execute(
            "cancel_invoice",
            lambda svc: svc.lifecycle.cancel_invoice(invoice_id, actor_id),
            invoice_id=invoice_id, actor_id=actor_id,
        )

    def withdraw_invoice(self, invoice_id: UUID, user_id: UUID) -> InvoiceInfo:
        return self._execute(
            "withdraw_invoice",
            lambda svc: svc.lifecycle.withdraw_invoice(invoice_id, user_id),
            invoice_id=invoice_id, user_id=user_id,
        )

    def get_invoice(self, invoice_id: UUID, user_id: UUID | None = None) -> InvoiceInfo:
        """``user_id`` scopes the lookup to that owner."""
        return self._execute(
            "get_invoice",
            lambda svc: svc.lifecycle.get_invoice(invoice_id, user_id),
            invoice_id=invoice_id,
        )

    def list_invoices(self, user_id: UUID | None = None) -> list[InvoiceInfo]:
        return self._execute(
            "list_invoices",
            lambda svc: svc.lifecycle.list_invoices(user_id),
            user_id=user_id,
        )

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def import_entries_batch(
        self,
        user_id: UUID,
        idempotency_key: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> BatchImportResult:
        return self._execute(
            "import_entries_batch",
            lambda svc: svc.batch_import.import_batch(user_id, idempotency_key, rows),
            user_id=user_id, idempotency_key=idempotency_key,
        )

    def create_entry(self, user_id: UUID, fields: Mapping[str, Any]) -> TimeEntryInfo:
        return self._execute(
            "create_entry",
            lambda svc: svc.ledger.create_entry(user_id, fields),
            user_id=user_id,
        )

    def update_entry(
        self,
        entry_id: UUID,
        user_id: UUID,
        fields: Mapping[str, Any],
    ) -> TimeEntryInfo:
        return self._execute(
            "update_entry",
            lambda svc: svc.ledger.update_entry(entry_id, user_id, fields),
            user_id=user_id,
        )

    def delete_entry(self, entry_id: UUID, user_id: UUID) -> None:
        self._execute(
            "delete_entry",
            lambda svc: svc.ledger.delete_entry(entry_id, user_id),
            user_id=user_id,
        )

    def list_entries(self, user_id: UUID) -> list[TimeEntryInfo]:
        return self._execute(
            "list_entries",
            lambda svc: svc.ledger.list_entries(user_id),
            user_id=user_id,
        )

    def preview_batch(self, text: str) -> BatchPreview:
        """Parse pasted lines without touching the database."""
        today = self.clock.now().date()
        return preview_entries(text, today)

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_invoice_settings(self) -> BillingWindowSettings:
        return self._execute(
            "get_invoice_settings",
            lambda svc: svc.settings.get_invoice_settings(),
        )

    def set_invoice_settings(self, settings: BillingWindowSettings) -> BillingWindowSettings:
        return self._execute(
            "set_invoice_settings",
            lambda svc: svc.settings.set_invoice_settings(settings),
        )

    def apply_config(self, config: BillingConfig) -> list[UUID]:
        """Store the configured window and create any missing default tags."""
        def work(svc: KernelServices) -> list[UUID]:
            svc.settings.set_invoice_settings(config.window)
            return svc.settings.ensure_tags(config.default_tags)

        return self._execute("apply_config", work)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _execute(
        self,
        operation: str,
        work: Callable[[KernelServices], T],
        **context: Any,
    ) -> T:
        outbox = Outbox()
        bound = {k: v for k, v in context.items() if v is not None}
        with LogContext.bind(**bound):
            try:
                with session_scope(self._session_factory) as session:
                    result = work(KernelServices(session, self.clock, outbox))
            except BillingKernelError:
                outbox.clear()
                raise
            except Exception as exc:
                outbox.clear()
                logger.exception(
                    "engine_operation_failed",
                    extra={"operation": operation, **{k: str(v) for k, v in bound.items()}},
                )
                raise InternalError(operation) from exc

            notices = outbox.drain()
            if notices:
                self.dispatcher.publish(notices)
            return result
