"""
AuditorService -- append-only audit trail for invoice workflow actions.

Responsibility:
    Creates immutable AuditEvent rows for every invoice transition, batch
    import and failed notification, and provides trace queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by InvoiceLifecycleService,
    BatchImportService and the notification dispatcher.

Invariants enforced:
    - Append-only: audit events are never modified or deleted (ORM
      listener on the AuditEvent model).
    - Audit rows are flushed in the caller's transaction, so a transition
      and its audit row commit or roll back together.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction, AuditEvent

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    action: AuditAction
    occurred_at: datetime
    actor_id: UUID | None
    details: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    INVOICE = "Invoice"
    BATCH_IMPORT = "BatchImport"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        details: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create and flush a new audit event.

        Public callers use the record_* methods.
        """
        audit_event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            details=details,
            payload=payload or {},
            occurred_at=self._clock.now(),
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return audit_event

    # Invoice lifecycle

    def record_invoice_submitted(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        total: Decimal,
        period_start: datetime,
        period_end: datetime,
        entry_ids: list[UUID],
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_SUBMITTED,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} submitted",
            payload={
                "total": str(total),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "entry_ids": [str(entry_id) for entry_id in entry_ids],
            },
        )

    def record_invoice_approved(self, invoice_id: UUID, actor_id: UUID) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_APPROVED,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} approved",
        )

    def record_invoice_paid(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        total: Decimal,
        prior_status: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_PAID,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} marked paid",
            payload={"total": str(total), "prior_status": prior_status},
        )

    def record_invoice_reverted(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        prior_status: str,
        detached: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_REVERTED,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} reverted to draft",
            payload={"prior_status": prior_status, "detached_entries": detached},
        )

    def record_invoice_cancelled(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        prior_status: str,
        detached: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_CANCELLED,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} cancelled",
            payload={"prior_status": prior_status, "detached_entries": detached},
        )

    def record_invoice_withdrawn(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        detached: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.INVOICE_WITHDRAWN,
            actor_id=actor_id,
            details=f"Invoice {invoice_id} withdrawn by owner",
            payload={"detached_entries": detached},
        )

    # Entries

    def record_batch_imported(
        self,
        batch_id: UUID,
        actor_id: UUID,
        idempotency_key: str,
        created: int,
        skipped: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.BATCH_IMPORT,
            entity_id=batch_id,
            action=AuditAction.BATCH_IMPORTED,
            actor_id=actor_id,
            details=f"Batch import {idempotency_key}: {created} created, {skipped} skipped",
            payload={
                "idempotency_key": idempotency_key,
                "created": created,
                "skipped": skipped,
            },
        )

    # Side effects

    def record_notification_failed(
        self,
        invoice_id: UUID,
        notice_type: str,
        error: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=self.INVOICE,
            entity_id=invoice_id,
            action=AuditAction.NOTIFICATION_FAILED,
            actor_id=None,
            details=f"Failed to send {notice_type} for invoice {invoice_id}: {error}",
            payload={"notice_type": notice_type, "error": error},
        )

    # Queries

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        """All audit events for an entity, oldest first.

        Events sharing the same occurred_at have no defined relative order.
        """
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.occurred_at, AuditEvent.id)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    action=AuditAction(event.action),
                    occurred_at=event.occurred_at,
                    actor_id=event.actor_id,
                    details=event.details,
                    payload=event.payload or {},
                )
                for event in events
            ),
        )

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(
            self._session.execute(
                select(AuditEvent)
                .order_by(AuditEvent.occurred_at.desc())
                .limit(limit)
            ).scalars().all()
        )
