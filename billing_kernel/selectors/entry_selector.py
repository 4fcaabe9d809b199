"""
Module: billing_kernel.selectors.entry_selector
Responsibility: Read access to time entries (a user's ledger, the open
    entries inside a date window, the entries attached to an invoice).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Ownership scoping: get_entry(entry_id, user_id) treats another
      user's entry as missing (EntryNotFoundError), never as forbidden.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.dtos import TimeEntryInfo
from billing_kernel.exceptions import EntryNotFoundError
from billing_kernel.models.time_entry import TimeEntry
from billing_kernel.selectors.base import BaseSelector


class EntrySelector(BaseSelector[TimeEntry]):
    """Time-entry queries returning TimeEntryInfo DTOs."""

    def get_entry(self, entry_id: UUID, user_id: UUID) -> TimeEntryInfo:
        entry = self.session.get(TimeEntry, entry_id)
        if entry is None or entry.user_id != user_id:
            raise EntryNotFoundError(entry_id)
        return TimeEntryInfo.from_model(entry)

    def list_entries(self, user_id: UUID) -> list[TimeEntryInfo]:
        """All of a user's entries, newest work date first."""
        entries = self.session.execute(
            select(TimeEntry)
            .where(TimeEntry.user_id == user_id)
            .order_by(TimeEntry.work_date.desc(), TimeEntry.created_at.desc())
        ).scalars().all()
        return [TimeEntryInfo.from_model(entry) for entry in entries]

    def list_open_entries(
        self,
        user_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[TimeEntryInfo]:
        """Entries with no invoice whose work date is in [start_date, end_date]."""
        entries = self.session.execute(
            select(TimeEntry)
            .where(
                TimeEntry.user_id == user_id,
                TimeEntry.invoice_id.is_(None),
                TimeEntry.work_date >= start_date,
                TimeEntry.work_date <= end_date,
            )
            .order_by(TimeEntry.work_date, TimeEntry.id)
        ).scalars().all()
        return [TimeEntryInfo.from_model(entry) for entry in entries]
