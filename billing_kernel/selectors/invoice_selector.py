"""
Module: billing_kernel.selectors.invoice_selector
Responsibility: Read access to invoices as InvoiceInfo DTOs with priced
    lines, and the "has this user submitted for the period" check used by
    the deadline report.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Ownership scoping: get_invoice(invoice_id, user_id) treats another
      user's invoice as missing (InvoiceNotFoundError).
    - Lines are priced from the attached entries with the same rules as
      submit, except that an entry with no usable rate shows rate 0
      instead of failing the read.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.db.types import round_hours, round_money
from billing_kernel.domain.dtos import InvoiceInfo, InvoiceLine, TimeEntryInfo
from billing_kernel.domain.invoice import SUBMITTED_STATUSES
from billing_kernel.domain.period import Period
from billing_kernel.domain.pricing import effective_rate
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.time_entry import TimeEntry
from billing_kernel.models.user import User
from billing_kernel.selectors.base import BaseSelector


def _display_line(entry: TimeEntryInfo, user_rate: Decimal | None) -> InvoiceLine:
    rate = effective_rate(entry.rate, user_rate) or Decimal("0")
    hours = round_hours(entry.hours)
    return InvoiceLine(
        entry_id=entry.id,
        work_date=entry.work_date,
        task=entry.task,
        notes=entry.notes,
        tag=entry.tag,
        hours=hours,
        rate=rate,
        amount=round_money(hours * rate),
    )


class InvoiceSelector(BaseSelector[Invoice]):
    """Invoice queries returning InvoiceInfo DTOs."""

    def to_info(self, invoice: Invoice) -> InvoiceInfo:
        """Build the DTO for an already-loaded invoice row."""
        user = self.session.get(User, invoice.user_id)
        user_rate = Decimal(user.rate) if user is not None and user.rate is not None else None
        entries = self.session.execute(
            select(TimeEntry)
            .where(TimeEntry.invoice_id == invoice.id)
            .order_by(TimeEntry.work_date, TimeEntry.id)
        ).scalars().all()
        lines = tuple(
            _display_line(TimeEntryInfo.from_model(entry), user_rate)
            for entry in entries
        )
        return InvoiceInfo.from_model(
            invoice,
            user_name=user.name if user is not None else "",
            lines=lines,
        )

    def get_invoice(self, invoice_id: UUID, user_id: UUID | None = None) -> InvoiceInfo:
        """
        Raises:
            InvoiceNotFoundError: Unknown id, or not owned by ``user_id``
                when one is given.
        """
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None or (user_id is not None and invoice.user_id != user_id):
            raise InvoiceNotFoundError(invoice_id)
        return self.to_info(invoice)

    def list_invoices(self, user_id: UUID | None = None) -> list[InvoiceInfo]:
        """Newest period first; all users when ``user_id`` is None."""
        stmt = select(Invoice).order_by(Invoice.period_start.desc(), Invoice.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(Invoice.user_id == user_id)
        return [self.to_info(invoice) for invoice in self.session.execute(stmt).scalars().all()]

    def has_submitted(self, user_id: UUID, period: Period) -> bool:
        """True if the user has a submitted, approved or paid invoice for the period."""
        found = self.session.execute(
            select(Invoice.id)
            .where(
                Invoice.user_id == user_id,
                Invoice.period_start == period.start,
                Invoice.period_end == period.end,
                Invoice.status.in_([status.value for status in SUBMITTED_STATUSES]),
            )
            .limit(1)
        ).scalar_one_or_none()
        return found is not None

