"""
EntryLedgerService -- create, edit, delete and bind time entries.

Responsibility:
    Owns every write to ``time_entries``: member edits of open entries and
    the bulk attach/detach the invoice lifecycle performs.

Architecture position:
    Kernel > Services -- imperative shell.  Validation rules live in
    domain/entry_validation.py; reads go through EntrySelector.

Invariants enforced:
    - Only open entries (invoice_id IS NULL) can be edited or deleted.
    - attach_to_invoice is all-or-nothing: a guarded bulk UPDATE
      (``WHERE invoice_id IS NULL``) must match every requested entry, or
      the whole unit of work fails with OptimisticLockError.
    - Ownership scoping: another user's entry is EntryNotFoundError.

Failure modes:
    - EntryValidationError / InvalidTagError on bad fields.
    - EntryInvoicedError when editing or deleting an attached entry.
    - EntryNotFoundError, UserNotFoundError.
    - OptimisticLockError when an entry was attached concurrently.
"""

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import TimeEntryInfo
from billing_kernel.domain.entry_validation import validate_entry_fields
from billing_kernel.exceptions import (
    EntryInvoicedError,
    EntryNotFoundError,
    OptimisticLockError,
    UserNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.time_entry import TimeEntry
from billing_kernel.models.user import User
from billing_kernel.selectors.entry_selector import EntrySelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.settings_service import SettingsService

logger = get_logger("services.entry_ledger")

_EDITABLE_FIELDS = ("date", "work_date", "hours", "task", "notes", "tag", "rate")


class EntryLedgerService(BaseService[TimeEntry]):
    """Writes to the time-entry ledger."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings_service: SettingsService | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings_service or SettingsService(session, self.clock)
        self._selector = EntrySelector(session)

    # -------------------------------------------------------------------------
    # Member operations
    # -------------------------------------------------------------------------

    def create_entry(self, user_id: UUID, fields: Mapping[str, Any]) -> TimeEntryInfo:
        if self.session.get(User, user_id) is None:
            raise UserNotFoundError(user_id)

        valid = validate_entry_fields(fields, self._settings.active_tag_names())
        entry = TimeEntry(
            user_id=user_id,
            work_date=valid.work_date,
            hours=valid.hours,
            task=valid.task,
            notes=valid.notes,
            tag=valid.tag,
            rate=valid.rate,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "entry_created",
            extra={
                "entry_id": str(entry.id),
                "user_id": str(user_id),
                "work_date": valid.work_date.isoformat(),
                "hours": valid.hours,
            },
        )
        return TimeEntryInfo.from_model(entry)

    def update_entry(
        self,
        entry_id: UUID,
        user_id: UUID,
        fields: Mapping[str, Any],
    ) -> TimeEntryInfo:
        """
        Merge ``fields`` into an open entry and re-validate the result.

        Keys not present in ``fields`` keep their current value.
        """
        entry = self._load_owned_open(entry_id, user_id, action="edit")

        merged: dict[str, Any] = {
            "date": entry.work_date,
            "hours": entry.hours,
            "task": entry.task,
            "notes": entry.notes,
            "tag": entry.tag,
            "rate": entry.rate,
        }
        for key in _EDITABLE_FIELDS:
            if key in fields:
                merged["date" if key == "work_date" else key] = fields[key]

        valid = validate_entry_fields(merged, self._settings.active_tag_names())
        entry.work_date = valid.work_date
        entry.hours = valid.hours
        entry.task = valid.task
        entry.notes = valid.notes
        entry.tag = valid.tag
        entry.rate = valid.rate
        entry.updated_at = self.clock.now()
        self.session.flush()

        logger.info(
            "entry_updated",
            extra={"entry_id": str(entry_id), "user_id": str(user_id)},
        )
        return TimeEntryInfo.from_model(entry)

    def delete_entry(self, entry_id: UUID, user_id: UUID) -> None:
        entry = self._load_owned_open(entry_id, user_id, action="delete")
        self.session.delete(entry)
        self.session.flush()

        logger.info(
            "entry_deleted",
            extra={"entry_id": str(entry_id), "user_id": str(user_id)},
        )

    def list_entries(self, user_id: UUID) -> list[TimeEntryInfo]:
        return self._selector.list_entries(user_id)

    def list_open_entries(
        self,
        user_id: UUID,
        start_date: date,
        end_date: date,
    ) -> list[TimeEntryInfo]:
        return self._selector.list_open_entries(user_id, start_date, end_date)

    # -------------------------------------------------------------------------
    # Invoice binding
    # -------------------------------------------------------------------------

    def attach_to_invoice(self, entry_ids: Sequence[UUID], invoice_id: UUID) -> int:
        """
        Bind open entries to an invoice in one guarded UPDATE.

        Raises:
            OptimisticLockError: At least one entry is no longer open.
        """
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            return 0

        result = self.session.execute(
            update(TimeEntry)
            .where(
                TimeEntry.id.in_(ids),
                TimeEntry.invoice_id.is_(None),
            )
            .values(invoice_id=invoice_id, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(ids)

        if result.rowcount != len(ids):
            logger.warning(
                "entry_attach_conflict",
                extra={
                    "invoice_id": str(invoice_id),
                    "requested": len(ids),
                    "attached": result.rowcount,
                },
            )
            raise OptimisticLockError("TimeEntry", ",".join(str(i) for i in ids))

        logger.info(
            "entries_attached",
            extra={"invoice_id": str(invoice_id), "count": len(ids)},
        )
        return len(ids)

    def detach_from_invoice(self, invoice_id: UUID) -> int:
        """Reopen every entry attached to ``invoice_id``. Returns the count."""
        ids = list(
            self.session.execute(
                select(TimeEntry.id).where(TimeEntry.invoice_id == invoice_id)
            ).scalars()
        )
        if not ids:
            return 0

        self.session.execute(
            update(TimeEntry)
            .where(TimeEntry.invoice_id == invoice_id)
            .values(invoice_id=None, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(ids)

        logger.info(
            "entries_detached",
            extra={"invoice_id": str(invoice_id), "count": len(ids)},
        )
        return len(ids)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load_owned_open(self, entry_id: UUID, user_id: UUID, action: str) -> TimeEntry:
        entry = self.session.execute(
            select(TimeEntry).where(TimeEntry.id == entry_id).with_for_update()
        ).scalar_one_or_none()
        if entry is None or entry.user_id != user_id:
            raise EntryNotFoundError(entry_id)
        if entry.invoice_id is not None:
            raise EntryInvoicedError(entry_id, entry.invoice_id, action)
        return entry

    def _expire_cached(self, ids: Sequence[UUID]) -> None:
        """Drop stale invoice_id values for entries already in the session."""
        for entry_id in ids:
            cached = self.session.identity_map.get(
                self.session.identity_key(TimeEntry, entry_id)
            )
            if cached is not None:
                self.session.expire(cached, ["invoice_id", "updated_at"])
