"""
Module: billing_kernel.models.batch_import
Responsibility: Append-only record of applied batch imports, keyed by the
    client-supplied idempotency key.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - idempotency_key is globally unique; a second insert of the same key
      fails with IntegrityError and surfaces as DuplicateImportError.
    - Rows are never updated or deleted (ORM listener).
"""

from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString


class BatchImportRecord(TrackedBase):
    """One applied batch import."""

    __tablename__ = "batch_imports"

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("users.id"),
        nullable=False,
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        unique=True,
    )

    created_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<BatchImportRecord {self.idempotency_key!r}>"
