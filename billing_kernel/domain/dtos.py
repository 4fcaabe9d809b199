"""
DTOs -- Immutable data returned across the service boundary.

Responsibility:
    Frozen dataclasses handed out by services, selectors and the engine
    facade.  Callers never receive ORM instances, so nothing they do can
    reach the session.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model`` converters exist for
    the service/selector layer only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from billing_kernel.domain.invoice import InvoiceStatus

if TYPE_CHECKING:
    from billing_kernel.models.invoice import Invoice as InvoiceModel
    from billing_kernel.models.time_entry import TimeEntry as TimeEntryModel


@dataclass(frozen=True)
class UserInfo:
    id: UUID
    name: str
    email: str
    role: str
    rate: Decimal | None


@dataclass(frozen=True)
class TimeEntryInfo:
    """Read-only view of a time entry."""

    id: UUID
    user_id: UUID
    work_date: date
    hours: Decimal
    task: str
    notes: str
    tag: str | None
    rate: Decimal | None
    invoice_id: UUID | None
    created_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.invoice_id is None

    @classmethod
    def from_model(cls, entry: TimeEntryModel) -> TimeEntryInfo:
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            work_date=entry.work_date,
            hours=Decimal(entry.hours),
            task=entry.task,
            notes=entry.notes or "",
            tag=entry.tag,
            rate=Decimal(entry.rate) if entry.rate is not None else None,
            invoice_id=entry.invoice_id,
            created_at=entry.created_at,
        )


@dataclass(frozen=True)
class InvoiceLine:
    """One priced entry on an invoice."""

    entry_id: UUID
    work_date: date
    task: str
    notes: str
    tag: str | None
    hours: Decimal
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class InvoiceInfo:
    """Read-only view of an invoice with its priced lines."""

    id: UUID
    user_id: UUID
    user_name: str
    period_start: datetime
    period_end: datetime
    total: Decimal
    status: InvoiceStatus
    version: int
    created_at: datetime
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by_id: UUID | None = None
    paid_at: datetime | None = None
    paid_by_id: UUID | None = None
    cancelled_at: datetime | None = None
    cancelled_by_id: UUID | None = None
    lines: tuple[InvoiceLine, ...] = ()

    @property
    def entry_ids(self) -> tuple[UUID, ...]:
        return tuple(line.entry_id for line in self.lines)

    @classmethod
    def from_model(
        cls,
        invoice: InvoiceModel,
        user_name: str,
        lines: tuple[InvoiceLine, ...] = (),
    ) -> InvoiceInfo:
        return cls(
            id=invoice.id,
            user_id=invoice.user_id,
            user_name=user_name,
            period_start=invoice.period_start,
            period_end=invoice.period_end,
            total=Decimal(invoice.total),
            status=InvoiceStatus(invoice.status),
            version=invoice.version,
            created_at=invoice.created_at,
            submitted_at=invoice.submitted_at,
            approved_at=invoice.approved_at,
            approved_by_id=invoice.approved_by_id,
            paid_at=invoice.paid_at,
            paid_by_id=invoice.paid_by_id,
            cancelled_at=invoice.cancelled_at,
            cancelled_by_id=invoice.cancelled_by_id,
            lines=lines,
        )


@dataclass(frozen=True)
class RowError:
    """Why a batch row was skipped. ``index`` is 0-based."""

    index: int
    reason: str


@dataclass(frozen=True)
class BatchImportResult:
    created: int
    skipped: int
    errors: tuple[RowError, ...] = ()
    entry_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class DeadlineStatusItem:
    """Per-user deadline state for the current period."""

    user_id: UUID
    user_name: str
    submitted: bool
    status: str
    deadline_iso: str
    deadline_local: str
    period_start: str
    period_end: str
    message: str | None = None


@dataclass(frozen=True)
class DeadlineReport:
    zone: str
    warn_window_hours: int
    statuses: tuple[DeadlineStatusItem, ...]
    current_period: dict[str, str] = field(default_factory=dict)

    def for_user(self, user_id: UUID) -> DeadlineStatusItem | None:
        for item in self.statuses:
            if item.user_id == user_id:
                return item
        return None

    def as_dict(self) -> dict[str, Any]:
        return {
            "zone": self.zone,
            "warn_window_hours": self.warn_window_hours,
            "statuses": [vars(item).copy() for item in self.statuses],
            "current_period": dict(self.current_period),
        }
