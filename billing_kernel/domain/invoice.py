"""
Invoice status lifecycle.

``INVOICE_TRANSITIONS`` defines the only valid status moves.  PAID is
terminal.  CANCELLED can only be brought back to DRAFT (reopen).

    draft ------> submitted ------> approved
      |              |  \\              |
      |              |   \\-------------+--> paid
      v              v                  |
    cancelled <------+------------------+
      |
      +--> draft

submitted/approved may also go back to draft (revert / withdraw).
"""

from enum import Enum
from uuid import UUID

from billing_kernel.exceptions import (
    InvalidInvoiceTransitionError,
    InvoiceAlreadyPaidError,
)


class InvoiceStatus(str, Enum):
    """Lifecycle status of an invoice."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({
        InvoiceStatus.SUBMITTED,
        InvoiceStatus.CANCELLED,
    }),
    InvoiceStatus.SUBMITTED: frozenset({
        InvoiceStatus.APPROVED,
        InvoiceStatus.PAID,
        InvoiceStatus.DRAFT,
        InvoiceStatus.CANCELLED,
    }),
    InvoiceStatus.APPROVED: frozenset({
        InvoiceStatus.PAID,
        InvoiceStatus.DRAFT,
        InvoiceStatus.CANCELLED,
    }),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset({
        InvoiceStatus.DRAFT,
    }),
}

TERMINAL_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.PAID,
})

# Statuses that count as "submitted for the period"
SUBMITTED_STATUSES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.SUBMITTED,
    InvoiceStatus.APPROVED,
    InvoiceStatus.PAID,
})


def can_transition(from_status: InvoiceStatus, to_status: InvoiceStatus) -> bool:
    return InvoiceStatus(to_status) in INVOICE_TRANSITIONS[InvoiceStatus(from_status)]


def ensure_transition(
    invoice_id: UUID,
    from_status: InvoiceStatus,
    to_status: InvoiceStatus,
    action: str,
) -> None:
    """
    Raise the appropriate ConflictError if the move is not allowed.

    A paid invoice gets InvoiceAlreadyPaidError so callers can tell
    "already done" apart from "wrong state".
    """
    from_status = InvoiceStatus(from_status)
    to_status = InvoiceStatus(to_status)
    if can_transition(from_status, to_status):
        return
    if from_status == InvoiceStatus.PAID:
        raise InvoiceAlreadyPaidError(invoice_id, action)
    raise InvalidInvoiceTransitionError(invoice_id, from_status.value, to_status.value)
