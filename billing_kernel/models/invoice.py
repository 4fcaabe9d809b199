"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for a user's weekly invoice and its position
    in the approval/payment workflow.
Architecture position: Kernel > Models.  May import from db/ and the
    status enum in domain/invoice.py.

Invariants enforced:
    - At most one non-cancelled invoice per (user_id, period_start,
      period_end): partial unique index uq_invoice_active_period, backed by
      the check in InvoiceLifecycleService.
    - version is a SQLAlchemy version_id_col.  Every ORM UPDATE is issued as
      ``... WHERE id = :id AND version = :loaded_version``; a stale write
      matches zero rows and raises StaleDataError, which the lifecycle
      service turns into OptimisticLockError.
    - Invoices are never deleted (ORM listener).

Failure modes:
    - IntegrityError on a second active invoice for the same period.
    - StaleDataError on a concurrent status write.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.db.types import UTCDateTime
from billing_kernel.domain.invoice import InvoiceStatus


_ACTIVE_ONLY = text("status <> 'cancelled'")


class Invoice(TrackedBase):
    """
    Bundle of a user's time entries for one work week.

    Guarantees:
        - period_start/period_end are the exact week-boundary instants
          computed by billing_kernel.domain.period, stored in UTC.
        - total equals the sum of per-entry rounded amounts at submit time.
        - approved_* / paid_* / cancelled_* are set only by the transition
          that owns them.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        Index(
            "uq_invoice_active_period",
            "user_id",
            "period_start",
            "period_end",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
        Index("idx_invoice_user", "user_id"),
        Index("idx_invoice_status", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    period_start: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    period_end: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    total: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        default=Decimal("0.00"),
        nullable=False,
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        String(10),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
    )

    submitted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    paid_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Invoice {self.id} {self.status} total={self.total}>"

    @property
    def current_status(self) -> InvoiceStatus:
        """Status as an enum member (String columns load back as plain str)."""
        return InvoiceStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.current_status != InvoiceStatus.CANCELLED
