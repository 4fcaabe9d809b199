"""
Module: billing_kernel.models.audit_event
Responsibility: ORM persistence for the append-only audit log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Every invoice transition writes its audit row in the same transaction
      as the transition itself.

Minimum coverage (each action type generates at least one AuditEvent):
    - INVOICE_SUBMITTED, INVOICE_APPROVED, INVOICE_PAID
    - INVOICE_REVERTED, INVOICE_CANCELLED, INVOICE_WITHDRAWN
    - BATCH_IMPORTED
    - NOTIFICATION_FAILED
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString
from billing_kernel.db.types import UTCDateTime


class AuditAction(str, Enum):
    """Types of auditable actions.

    Adding a new action type requires a matching record_* method on
    AuditorService.
    """

    # Invoice lifecycle
    INVOICE_SUBMITTED = "invoice_submitted"
    INVOICE_APPROVED = "invoice_approved"
    INVOICE_PAID = "invoice_paid"
    INVOICE_REVERTED = "invoice_reverted"
    INVOICE_CANCELLED = "invoice_cancelled"
    INVOICE_WITHDRAWN = "invoice_withdrawn"

    # Entries
    BATCH_IMPORTED = "batch_imported"

    # Side effects
    NOTIFICATION_FAILED = "notification_failed"


class AuditEvent(Base):
    """
    Audit log row.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
        ``details`` is a short human-readable sentence; ``payload`` carries
        the structured facts (amounts as strings, ids as strings).
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    # None for system-originated events (e.g. notification worker)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # "Invoice", "BatchImport", ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    details: Mapped[str] = mapped_column(Text, default="", nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"
