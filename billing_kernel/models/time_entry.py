"""
Module: billing_kernel.models.time_entry
Responsibility: ORM persistence for a unit of logged work.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - hours is in (0, 24] with 2 decimal places (validated by the ledger).
    - invoice_id is NULL while the entry is open.  While it is set, every
      other field is frozen (ORM listener in db/immutability.py) and the row
      cannot be deleted.

Failure modes:
    - ImmutabilityViolationError on any ORM write to an invoiced entry
      other than detaching it.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString


class TimeEntry(TrackedBase):
    """
    Hours worked by a user on a calendar date.

    Contract:
        Open entries (invoice_id is None) are freely editable by their owner.
        Attaching an entry to an invoice freezes it until the invoice is
        reverted, withdrawn or cancelled.
    """

    __tablename__ = "time_entries"

    __table_args__ = (
        Index("idx_entry_user_date", "user_id", "work_date"),
        Index("idx_entry_invoice", "invoice_id"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    work_date: Mapped[date] = mapped_column(Date, nullable=False)

    hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    task: Mapped[str] = mapped_column(String(120), nullable=False)

    notes: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    tag: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Per-entry rate override; falls back to the user's rate when None
    rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<TimeEntry {self.work_date} {self.hours}h {self.task!r}>"

    @property
    def is_open(self) -> bool:
        return self.invoice_id is None
