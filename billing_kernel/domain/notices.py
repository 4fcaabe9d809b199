"""
Notices -- side effects requested by a unit of work.

Services never send notifications themselves.  They append a notice to the
Outbox that belongs to the current transaction; the engine facade hands
the collected notices to the dispatcher only after the transaction has
committed, so a rolled-back transition never notifies anyone and a failed
notification never rolls back a committed transition.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class InvoiceSubmittedNotice:
    """Tell the admins that a user submitted an invoice."""

    invoice_id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    total: Decimal
    submitted_at: datetime


@dataclass(frozen=True)
class InvoicePaidNotice:
    """Tell the invoice owner that it was paid."""

    invoice_id: UUID
    user_id: UUID
    user_name: str
    user_email: str
    total: Decimal
    paid_at: datetime
    paid_by_id: UUID
    paid_by_name: str | None = None


Notice = InvoiceSubmittedNotice | InvoicePaidNotice


class Outbox:
    """Per-transaction collection of notices, in emission order."""

    def __init__(self) -> None:
        self._notices: list[Notice] = []

    def add(self, notice: Notice) -> None:
        self._notices.append(notice)

    def drain(self) -> list[Notice]:
        """Return all notices and empty the outbox."""
        notices, self._notices = self._notices, []
        return notices

    def clear(self) -> None:
        self._notices.clear()

    def __iter__(self) -> Iterator[Notice]:
        return iter(list(self._notices))

    def __len__(self) -> int:
        return len(self._notices)
