"""
BatchImportService -- idempotent bulk creation of time entries.

Responsibility:
    Applies a client-supplied list of entry rows exactly once per
    idempotency key.  Each row is validated and inserted independently;
    bad rows are reported, not fatal.

Architecture position:
    Kernel > Services -- imperative shell.  Flushes only; the engine facade
    owns the transaction.

Invariants enforced:
    - An idempotency key is applied at most once.  A known key fails fast
      with DuplicateImportError before any entry is touched; a key
      recorded concurrently surfaces as DuplicateImportError when this
      import records its own key, rolling back the whole batch.
    - Each row insert runs in its own SAVEPOINT, so a storage failure on
      one row (reason ``database_error``) leaves earlier rows intact.
    - A row identical to an existing entry (same user, date, hours, task,
      notes) is skipped with reason ``duplicate``.

Failure modes:
    - EntryValidationError for an empty key or an empty row list.
    - DuplicateImportError, UserNotFoundError.
"""

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import BatchImportResult, RowError
from billing_kernel.domain.entry_validation import EntryFields, check_tag, collect_entry_errors
from billing_kernel.exceptions import (
    DuplicateImportError,
    EntryValidationError,
    InvalidTagError,
    UserNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.batch_import import BatchImportRecord
from billing_kernel.models.time_entry import TimeEntry
from billing_kernel.models.user import User
from billing_kernel.services.auditor_service import AuditorService
from billing_kernel.services.base import BaseService
from billing_kernel.services.settings_service import SettingsService

logger = get_logger("services.batch_import")

REASON_DUPLICATE = "duplicate"
REASON_DATABASE_ERROR = "database_error"
REASON_INVALID_FORMAT = "Invalid entry format"


class BatchImportService(BaseService[BatchImportRecord]):
    """Idempotent batch import of time entries."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings_service: SettingsService | None = None,
        auditor: AuditorService | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings_service or SettingsService(session, self.clock)
        self._auditor = auditor or AuditorService(session, self.clock)

    def import_batch(
        self,
        user_id: UUID,
        idempotency_key: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> BatchImportResult:
        key = (idempotency_key or "").strip()
        if not key:
            raise EntryValidationError(["Idempotency key is required"])
        if not rows:
            raise EntryValidationError(["No entries to import"])
        if self.session.get(User, user_id) is None:
            raise UserNotFoundError(user_id)

        with LogContext.bind(user_id=user_id, idempotency_key=key):
            if self._key_exists(key):
                logger.info("batch_import_duplicate_key")
                raise DuplicateImportError(key)

            active_tags = self._settings.active_tag_names()
            errors: list[RowError] = []
            created: list[UUID] = []

            for index, row in enumerate(rows):
                checked = self._check_row(user_id, row, active_tags)
                if isinstance(checked, str):
                    errors.append(RowError(index=index, reason=checked))
                    continue
                entry_id = self._insert_row(user_id, checked, index)
                if entry_id is None:
                    errors.append(RowError(index=index, reason=REASON_DATABASE_ERROR))
                else:
                    created.append(entry_id)

            record = self._record_key(user_id, key, len(created), len(errors))
            self._auditor.record_batch_imported(
                record.id, user_id, key, len(created), len(errors),
            )

            logger.info(
                "batch_import_completed",
                extra={
                    "created": len(created),
                    "skipped": len(errors),
                    "rows": len(rows),
                },
            )
            return BatchImportResult(
                created=len(created),
                skipped=len(errors),
                errors=tuple(errors),
                entry_ids=tuple(created),
            )

    def _key_exists(self, key: str) -> bool:
        return self.session.execute(
            select(BatchImportRecord.id).where(BatchImportRecord.idempotency_key == key)
        ).scalar_one_or_none() is not None

    def _check_row(
        self,
        user_id: UUID,
        row: Any,
        active_tags: frozenset[str],
    ) -> EntryFields | str:
        """Validated fields for the row, or the reason it is skipped."""
        if not isinstance(row, Mapping):
            return REASON_INVALID_FORMAT
        fields, problems = collect_entry_errors(row)
        if problems:
            return problems[0]
        try:
            check_tag(fields.tag, active_tags)
        except InvalidTagError as exc:
            return str(exc)
        if self._is_duplicate(user_id, fields):
            return REASON_DUPLICATE
        return fields

    def _is_duplicate(self, user_id: UUID, fields: EntryFields) -> bool:
        return self.session.execute(
            select(TimeEntry.id)
            .where(
                TimeEntry.user_id == user_id,
                TimeEntry.work_date == fields.work_date,
                TimeEntry.hours == fields.hours,
                TimeEntry.task == fields.task,
                TimeEntry.notes == fields.notes,
            )
            .limit(1)
        ).scalar_one_or_none() is not None

    def _insert_row(self, user_id: UUID, fields: EntryFields, index: int) -> UUID | None:
        entry = TimeEntry(
            user_id=user_id,
            work_date=fields.work_date,
            hours=fields.hours,
            task=fields.task,
            notes=fields.notes,
            tag=fields.tag,
            rate=fields.rate,
            created_at=self.clock.now(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(entry)
                self.session.flush()
        except SQLAlchemyError:
            logger.warning(
                "batch_import_row_failed",
                extra={"row_index": index},
                exc_info=True,
            )
            return None
        return entry.id

    def _record_key(self, user_id: UUID, key: str, created: int, skipped: int) -> BatchImportRecord:
        record = BatchImportRecord(
            user_id=user_id,
            idempotency_key=key,
            created_count=created,
            skipped_count=skipped,
            created_at=self.clock.now(),
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except IntegrityError as exc:
            logger.info("batch_import_key_race_lost")
            raise DuplicateImportError(key) from exc
        return record
