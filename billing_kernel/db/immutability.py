"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

An invoice is only trustworthy if the time entries it bills cannot change
underneath it, and the audit trail is only useful if nobody can rewrite it.
The services already refuse such edits; this module makes the same rules
hold for ANY code path that goes through the SQLAlchemy ORM.

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                    | Mutable fields
--------------------|-----------------------------------|---------------------------
AuditEvent          | ALWAYS (from creation)            | none
BatchImportRecord   | ALWAYS (from creation)            | none
TimeEntry           | While attached to an invoice      | invoice_id, updated_at
Invoice             | never deletable                   | (status rules live in
                    |                                   |  the lifecycle service)

Bulk UPDATE/DELETE statements bypass mapper events; the entry ledger uses a
guarded bulk UPDATE (``WHERE invoice_id IS NULL``) for attachment, which is
itself the enforcement for that path.

===============================================================================
USAGE
===============================================================================

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields that may change on an entry while it is attached to an invoice
TIME_ENTRY_MUTABLE_WHILE_INVOICED = frozenset({
    "invoice_id",
    "updated_at",
})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Append-only records
# =============================================================================


def _check_audit_event_immutability(mapper, connection, target):
    """Audit events are never modified."""
    _blocked(
        "AuditEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    """Audit events are never deleted."""
    _blocked(
        "AuditEvent", target.id, "DELETE",
        "Audit events are immutable and cannot be deleted",
    )


def _check_batch_import_immutability(mapper, connection, target):
    _blocked(
        "BatchImportRecord", target.id, "UPDATE",
        "Batch import records are append-only",
    )


def _check_batch_import_delete(mapper, connection, target):
    _blocked(
        "BatchImportRecord", target.id, "DELETE",
        "Batch import records are append-only",
    )


# =============================================================================
# Time entries
# =============================================================================


def _was_invoiced(target) -> bool:
    """True if the entry was attached to an invoice before this flush."""
    history = get_history(target, "invoice_id")
    if history.deleted:
        return history.deleted[0] is not None
    if history.added:
        # Newly attached in this flush (open -> invoiced)
        return False
    return target.invoice_id is not None


def _check_time_entry_immutability(mapper, connection, target):
    """
    Freeze the content of an entry while it belongs to an invoice.

    Attaching (None -> invoice) and detaching (invoice -> None) both change
    only invoice_id and are allowed; anything else on an attached entry is
    rejected.
    """
    if not _was_invoiced(target):
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in TIME_ENTRY_MUTABLE_WHILE_INVOICED:
            continue
        if attr.history.has_changes():
            _blocked(
                "TimeEntry", target.id, "UPDATE",
                f"Cannot modify field '{attr.key}' on invoiced entry",
                field=attr.key,
            )


def _check_time_entry_delete(mapper, connection, target):
    if _was_invoiced(target):
        _blocked(
            "TimeEntry", target.id, "DELETE",
            "Invoiced entries cannot be deleted",
        )


# =============================================================================
# Invoices
# =============================================================================


def _check_invoice_delete(mapper, connection, target):
    """Invoices are cancelled, never deleted."""
    _blocked(
        "Invoice", target.id, "DELETE",
        "Invoices cannot be deleted; cancel instead",
    )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from billing_kernel.models.audit_event import AuditEvent
    from billing_kernel.models.batch_import import BatchImportRecord
    from billing_kernel.models.invoice import Invoice
    from billing_kernel.models.time_entry import TimeEntry

    return [
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
        (BatchImportRecord, "before_update", _check_batch_import_immutability),
        (BatchImportRecord, "before_delete", _check_batch_import_delete),
        (TimeEntry, "before_update", _check_time_entry_immutability),
        (TimeEntry, "before_delete", _check_time_entry_delete),
        (Invoice, "before_delete", _check_invoice_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """
    Safely remove an event listener, ignoring if not registered.
    """
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
