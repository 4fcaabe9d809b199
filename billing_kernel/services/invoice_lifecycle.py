"""
InvoiceLifecycleService -- submit, approve, pay, revert, cancel, withdraw.

Responsibility:
    Moves invoices through the status machine in domain/invoice.py while
    keeping time entries, audit rows and requested notifications
    consistent with the invoice's status.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the engine facade
    owns the transaction.  Notifications are appended to the Outbox and
    dispatched by the facade after commit.

Invariants enforced:
    - At most one non-cancelled invoice per (user, period_start, period_end).
      Checked under a row lock, backed by the partial unique index.
    - An entry is attached to at most one invoice, and only while that
      invoice is submitted/approved/paid.  Revert, withdraw and cancel
      detach every entry in the same transaction.
    - Every status write is a compare-and-swap: the row is loaded
      ``FOR UPDATE`` and the UPDATE is guarded by the version column.
      A stale write raises OptimisticLockError.
    - Every transition writes its audit row in the same transaction.

Failure modes:
    - NoOpenEntriesError, MissingRateError, InvalidHoursError,
      NonFiniteAmountError on submit (nothing is written).
    - InvoiceAlreadyExistsError, InvoiceAlreadyPaidError,
      InvalidInvoiceTransitionError, OptimisticLockError.
    - InvoiceNotFoundError, UserNotFoundError.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import InvoiceInfo
from billing_kernel.domain.invoice import InvoiceStatus, ensure_transition
from billing_kernel.domain.notices import InvoicePaidNotice, InvoiceSubmittedNotice, Outbox
from billing_kernel.domain.period import BillingWindowSettings, Period, current_period
from billing_kernel.domain.pricing import price_entries
from billing_kernel.exceptions import (
    InvalidInvoiceTransitionError,
    InvoiceAlreadyExistsError,
    InvoiceAlreadyPaidError,
    InvoiceNotFoundError,
    NoOpenEntriesError,
    OptimisticLockError,
    UserNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.user import User
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService
from billing_kernel.services.entry_ledger import EntryLedgerService

logger = get_logger("services.invoice_lifecycle")

ZERO = Decimal("0.00")


class InvoiceLifecycleService(BaseService[Invoice]):
    """
    Invoice status transitions.

    Contract:
        Each public method performs one transition (or a documented no-op)
        inside the caller's transaction and returns the resulting
        InvoiceInfo.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        outbox: Outbox | None = None,
        ledger: EntryLedgerService | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self.outbox = outbox if outbox is not None else Outbox()
        self._ledger = ledger or EntryLedgerService(session, self.clock)
        self._auditor = auditor or AuditorService(session, self.clock)
        self._selector = InvoiceSelector(session)

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit_invoice(self, user_id: UUID, settings: BillingWindowSettings) -> InvoiceInfo:
        """
        Bundle the user's open entries for the current period into an invoice.

        A draft invoice left behind by a revert or withdraw is re-used and
        re-submitted; any other active invoice for the period is a conflict.
        """
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        now = self.clock.now()
        period = current_period(now, settings)

        with LogContext.bind(user_id=user_id):
            existing = self._active_invoice_for_period(user_id, period)
            if existing is not None and existing.status != InvoiceStatus.DRAFT:
                raise InvoiceAlreadyExistsError(user_id, existing.id, period.start.isoformat())

            entries = self._ledger.list_open_entries(user_id, period.start_date, period.end_date)
            if not entries:
                raise NoOpenEntriesError(user_id, period.start.isoformat(), period.end.isoformat())

            user_rate = Decimal(user.rate) if user.rate is not None else None
            lines, total = price_entries(entries, user_rate)

            if existing is not None:
                invoice = existing
                ensure_transition(invoice.id, invoice.status, InvoiceStatus.SUBMITTED, "submit")
                invoice.status = InvoiceStatus.SUBMITTED.value
                invoice.total = total
                invoice.submitted_at = now
                invoice.updated_at = now
                self._flush_invoice(invoice)
            else:
                invoice = self._insert_invoice(user_id, period, total, now)

            entry_ids = [line.entry_id for line in lines]
            self._ledger.attach_to_invoice(entry_ids, invoice.id)
            self._auditor.record_invoice_submitted(
                invoice.id, user_id, total, period.start, period.end, entry_ids,
            )

            self.outbox.add(
                InvoiceSubmittedNotice(
                    invoice_id=invoice.id,
                    user_id=user_id,
                    user_name=user.name,
                    user_email=user.email,
                    total=total,
                    submitted_at=now,
                )
            )

            logger.info(
                "invoice_submitted",
                extra={
                    "invoice_id": str(invoice.id),
                    "total": total,
                    "entry_count": len(lines),
                    "period_start": period.start.isoformat(),
                    "resubmitted": existing is not None,
                },
            )
            return InvoiceInfo.from_model(invoice, user.name, lines)

    def _insert_invoice(self, user_id: UUID, period: Period, total: Decimal, now) -> Invoice:
        invoice = Invoice(
            user_id=user_id,
            period_start=period.start,
            period_end=period.end,
            total=total,
            status=InvoiceStatus.SUBMITTED.value,
            submitted_at=now,
            created_at=now,
        )
        try:
            with self.session.begin_nested():
                self.session.add(invoice)
                self.session.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent submit for the same period
            winner = self._active_invoice_for_period(user_id, period)
            raise InvoiceAlreadyExistsError(
                user_id,
                winner.id if winner is not None else None,
                period.start.isoformat(),
            ) from exc
        return invoice

    # -------------------------------------------------------------------------
    # Admin transitions
    # -------------------------------------------------------------------------

    def approve_invoice(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        """
        submitted -> approved.

        Any other current status is left untouched and returned as-is.
        """
        invoice = self._lock_invoice(invoice_id)
        status = invoice.current_status
        if status != InvoiceStatus.SUBMITTED:
            logger.info(
                "invoice_approve_noop",
                extra={"invoice_id": str(invoice_id), "status": status.value},
            )
            return self._selector.to_info(invoice)

        now = self.clock.now()
        invoice.status = InvoiceStatus.APPROVED.value
        invoice.approved_at = now
        invoice.approved_by_id = admin_id
        invoice.updated_at = now
        self._flush_invoice(invoice)
        self._auditor.record_invoice_approved(invoice.id, admin_id)

        logger.info(
            "invoice_approved",
            extra={"invoice_id": str(invoice_id), "actor_id": str(admin_id)},
        )
        return self._selector.to_info(invoice)

    def mark_invoice_paid(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        """submitted | approved -> paid. Approval may be skipped."""
        invoice = self._lock_invoice(invoice_id)
        prior = invoice.current_status
        ensure_transition(invoice.id, prior, InvoiceStatus.PAID, "mark paid")

        now = self.clock.now()
        invoice.status = InvoiceStatus.PAID.value
        invoice.paid_at = now
        invoice.paid_by_id = admin_id
        invoice.updated_at = now
        self._flush_invoice(invoice)
        self._auditor.record_invoice_paid(invoice.id, admin_id, Decimal(invoice.total), prior.value)

        owner = self.session.get(User, invoice.user_id)
        admin = self.session.get(User, admin_id)
        self.outbox.add(
            InvoicePaidNotice(
                invoice_id=invoice.id,
                user_id=invoice.user_id,
                user_name=owner.name if owner is not None else "",
                user_email=owner.email if owner is not None else "",
                total=Decimal(invoice.total),
                paid_at=now,
                paid_by_id=admin_id,
                paid_by_name=admin.name if admin is not None else None,
            )
        )

        logger.info(
            "invoice_paid",
            extra={
                "invoice_id": str(invoice_id),
                "actor_id": str(admin_id),
                "prior_status": prior.value,
                "total": invoice.total,
            },
        )
        return self._selector.to_info(invoice)

    def revert_invoice_to_draft(self, invoice_id: UUID, admin_id: UUID) -> InvoiceInfo:
        """
        submitted | approved | cancelled -> draft, reopening every entry.

        Reverting a draft is a no-op.  A cancelled invoice can only be
        reopened while no other active invoice exists for its period.
        """
        invoice = self._lock_invoice(invoice_id)
        prior = invoice.current_status
        if prior == InvoiceStatus.DRAFT:
            logger.info("invoice_revert_noop", extra={"invoice_id": str(invoice_id)})
            return self._selector.to_info(invoice)
        ensure_transition(invoice.id, prior, InvoiceStatus.DRAFT, "revert")

        if prior == InvoiceStatus.CANCELLED:
            other = self._active_invoice_for_period(
                invoice.user_id,
                Period(invoice.period_start, invoice.period_end, invoice.period_end),
            )
            if other is not None and other.id != invoice.id:
                raise InvoiceAlreadyExistsError(
                    invoice.user_id, other.id, invoice.period_start.isoformat(),
                )

        detached = self._reopen(invoice)
        invoice.cancelled_at = None
        invoice.cancelled_by_id = None
        self._flush_invoice(invoice)
        self._auditor.record_invoice_reverted(invoice.id, admin_id, prior.value, detached)

        logger.info(
            "invoice_reverted",
            extra={
                "invoice_id": str(invoice_id),
                "actor_id": str(admin_id),
                "prior_status": prior.value,
                "detached_entries": detached,
            },
        )
        return self._selector.to_info(invoice)

    def cancel_invoice(self, invoice_id: UUID, actor_id: UUID) -> InvoiceInfo:
        """Any non-paid, non-cancelled status -> cancelled, reopening entries."""
        invoice = self._lock_invoice(invoice_id)
        prior = invoice.current_status
        ensure_transition(invoice.id, prior, InvoiceStatus.CANCELLED, "cancel")

        now = self.clock.now()
        detached = self._ledger.detach_from_invoice(invoice.id)
        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.total = ZERO
        invoice.approved_at = None
        invoice.approved_by_id = None
        invoice.cancelled_at = now
        invoice.cancelled_by_id = actor_id
        invoice.updated_at = now
        self._flush_invoice(invoice)
        self._auditor.record_invoice_cancelled(invoice.id, actor_id, prior.value, detached)

        logger.info(
            "invoice_cancelled",
            extra={
                "invoice_id": str(invoice_id),
                "actor_id": str(actor_id),
                "prior_status": prior.value,
                "detached_entries": detached,
            },
        )
        return self._selector.to_info(invoice)

    # -------------------------------------------------------------------------
    # Member transitions
    # -------------------------------------------------------------------------

    def withdraw_invoice(self, invoice_id: UUID, user_id: UUID) -> InvoiceInfo:
        """Owner pulls back a submitted (not yet approved) invoice to draft."""
        invoice = self._lock_invoice(invoice_id)
        if invoice.user_id != user_id:
            raise InvoiceNotFoundError(invoice_id)

        prior = invoice.current_status
        if prior != InvoiceStatus.SUBMITTED:
            if prior == InvoiceStatus.PAID:
                raise InvoiceAlreadyPaidError(invoice.id, "withdraw")
            raise InvalidInvoiceTransitionError(
                invoice.id, prior.value, InvoiceStatus.DRAFT.value,
            )

        detached = self._reopen(invoice)
        self._flush_invoice(invoice)
        self._auditor.record_invoice_withdrawn(invoice.id, user_id, detached)

        logger.info(
            "invoice_withdrawn",
            extra={"invoice_id": str(invoice_id), "detached_entries": detached},
        )
        return self._selector.to_info(invoice)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_invoice(self, invoice_id: UUID, user_id: UUID | None = None) -> InvoiceInfo:
        return self._selector.get_invoice(invoice_id, user_id)

    def list_invoices(self, user_id: UUID | None = None) -> list[InvoiceInfo]:
        return self._selector.list_invoices(user_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _lock_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    def _active_invoice_for_period(self, user_id: UUID, period: Period) -> Invoice | None:
        return self.session.execute(
            select(Invoice)
            .where(
                Invoice.user_id == user_id,
                Invoice.period_start == period.start,
                Invoice.period_end == period.end,
                Invoice.status != InvoiceStatus.CANCELLED.value,
            )
            .with_for_update()
            .limit(1)
        ).scalar_one_or_none()

    def _reopen(self, invoice: Invoice) -> int:
        """Detach entries and put the invoice back to an empty draft."""
        detached = self._ledger.detach_from_invoice(invoice.id)
        invoice.status = InvoiceStatus.DRAFT.value
        invoice.total = ZERO
        invoice.approved_at = None
        invoice.approved_by_id = None
        invoice.updated_at = self.clock.now()
        return detached

    def _flush_invoice(self, invoice: Invoice) -> None:
        """Flush a status write; a version mismatch becomes OptimisticLockError."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "invoice_version_conflict",
                extra={"invoice_id": str(invoice.id)},
            )
            raise OptimisticLockError("Invoice", str(invoice.id)) from exc
