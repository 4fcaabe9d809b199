"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the invoicing engine (request handlers, jobs, tests) must react to
failures precisely: a duplicate invoice is a 409, a missing task is a 400, an
unknown invoice is a 404.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.submit_invoice(user_id)
    except InvoiceAlreadyExistsError as e:
        return {"error": e.code, "invoice_id": str(e.invoice_id)}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- ValidationError                  (malformed / out-of-range input)
    |   +-- EntryValidationError
    |   +-- InvalidTagError
    |   +-- NoOpenEntriesError
    |   +-- MissingRateError
    |   +-- InvalidHoursError
    |   +-- NonFiniteAmountError
    |   +-- SettingsValidationError
    |
    +-- ConflictError                    (state does not allow the request)
    |   +-- InvoiceAlreadyExistsError
    |   +-- InvoiceAlreadyPaidError
    |   +-- InvalidInvoiceTransitionError
    |   +-- EntryInvoicedError
    |   +-- DuplicateImportError
    |   +-- OptimisticLockError
    |   +-- ImmutabilityViolationError
    |
    +-- NotFoundError                    (missing, or outside caller's scope)
    |   +-- InvoiceNotFoundError
    |   +-- EntryNotFoundError
    |   +-- UserNotFoundError
    |
    +-- InternalError                    (anything unexpected; generic message)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | ENTRY_VALIDATION_FAILED     | Bad hours / task / date / notes / rate
                | INVALID_TAG                 | Tag not in the active tag set
                | NO_OPEN_ENTRIES             | Submit with nothing to invoice
                | MISSING_RATE                | Neither entry nor user rate is finite
                | INVALID_HOURS               | Non-positive hours at pricing time
                | NON_FINITE_AMOUNT           | NaN/Infinity while pricing
                | INVALID_SETTINGS            | Billing window settings out of range
----------------|-----------------------------|-----------------------------------------
Conflict        | INVOICE_ALREADY_EXISTS      | Active invoice exists for the period
                | INVOICE_ALREADY_PAID        | Transition requested on a paid invoice
                | INVALID_INVOICE_TRANSITION  | Status machine forbids the transition
                | ENTRY_INVOICED              | Edit/delete of an invoiced entry
                | DUPLICATE_IMPORT            | Idempotency key already used
                | OPTIMISTIC_LOCK_CONFLICT    | Concurrent modification detected
                | IMMUTABILITY_VIOLATION      | ORM write to an append-only record
----------------|-----------------------------|-----------------------------------------
NotFound        | INVOICE_NOT_FOUND           | Invoice id unknown or out of scope
                | ENTRY_NOT_FOUND             | Entry id unknown or out of scope
                | USER_NOT_FOUND              | User id unknown
----------------|-----------------------------|-----------------------------------------
Internal        | INTERNAL_ERROR              | Storage failure, unexpected exception

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Validation, Conflict and NotFound are expected outcomes.  They are
   surfaced to the caller and never logged as server errors.

2. InternalError wraps anything else.  The engine facade logs the original
   exception with full context, rolls the transaction back, and raises
   InternalError chained from the original.  Its message never contains
   internal details.

3. Notification failures never surface as exceptions at all.
===============================================================================
"""

from collections.abc import Iterable
from uuid import UUID


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(BillingKernelError):
    """Base exception for malformed or out-of-range input."""

    code: str = "VALIDATION_ERROR"


class EntryValidationError(ValidationError):
    """One or more time-entry fields failed validation."""

    code: str = "ENTRY_VALIDATION_FAILED"

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid entry")


class InvalidTagError(ValidationError):
    """Tag is not a member of the active tag set (case-sensitive)."""

    code: str = "INVALID_TAG"

    def __init__(self, tag: str, allowed: Iterable[str]):
        self.tag = tag
        self.allowed = sorted(allowed)
        super().__init__(
            f"Invalid tag '{tag}'. Allowed values: {', '.join(self.allowed) or '(none)'}"
        )


class NoOpenEntriesError(ValidationError):
    """Submit found no open entries inside the current period."""

    code: str = "NO_OPEN_ENTRIES"

    def __init__(self, user_id: UUID, period_start: str, period_end: str):
        self.user_id = user_id
        self.period_start = period_start
        self.period_end = period_end
        super().__init__("No open entries to invoice for current period")


class MissingRateError(ValidationError):
    """Neither the entry override nor the user rate is a finite number."""

    code: str = "MISSING_RATE"

    def __init__(self, user_id: UUID, entry_id: UUID | None = None):
        self.user_id = user_id
        self.entry_id = entry_id
        super().__init__("User rate missing")


class InvalidHoursError(ValidationError):
    """Entry hours are not a positive finite number at pricing time."""

    code: str = "INVALID_HOURS"

    def __init__(self, entry_id: UUID, hours: str):
        self.entry_id = entry_id
        self.hours = hours
        super().__init__(f"Entry has invalid hours: {hours}")


class NonFiniteAmountError(ValidationError):
    """Pricing produced NaN or Infinity; the whole submission is rejected."""

    code: str = "NON_FINITE_AMOUNT"

    def __init__(self, entry_id: UUID | None = None):
        self.entry_id = entry_id
        super().__init__("Invalid hours/rate calculation")


class SettingsValidationError(ValidationError):
    """Billing window settings are out of range."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, errors: Iterable[str]):
        self.errors = list(errors)
        super().__init__("Invalid billing settings: " + "; ".join(self.errors))


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(BillingKernelError):
    """Base exception for requests that conflict with current state."""

    code: str = "CONFLICT"


class InvoiceAlreadyExistsError(ConflictError):
    """An active (non-cancelled) invoice already exists for the period."""

    code: str = "INVOICE_ALREADY_EXISTS"

    def __init__(self, user_id: UUID, invoice_id: UUID | None, period_start: str):
        self.user_id = user_id
        self.invoice_id = invoice_id
        self.period_start = period_start
        super().__init__("Invoice already submitted for this period")


class InvoiceAlreadyPaidError(ConflictError):
    """The requested transition is incompatible with a paid invoice."""

    code: str = "INVOICE_ALREADY_PAID"

    def __init__(self, invoice_id: UUID, action: str):
        self.invoice_id = invoice_id
        self.action = action
        super().__init__(f"Invoice {invoice_id} is already paid; cannot {action}")


class InvalidInvoiceTransitionError(ConflictError):
    """The invoice status machine does not allow this transition."""

    code: str = "INVALID_INVOICE_TRANSITION"

    def __init__(self, invoice_id: UUID, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invoice {invoice_id} cannot move from '{from_status}' to '{to_status}'"
        )


class EntryInvoicedError(ConflictError):
    """Entry is attached to an invoice and cannot be edited or deleted."""

    code: str = "ENTRY_INVOICED"

    def __init__(self, entry_id: UUID, invoice_id: UUID, action: str):
        self.entry_id = entry_id
        self.invoice_id = invoice_id
        self.action = action
        super().__init__(f"Cannot {action} invoiced entry")


class DuplicateImportError(ConflictError):
    """A batch import with this idempotency key was already applied."""

    code: str = "DUPLICATE_IMPORT"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__("Duplicate import")


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class ImmutabilityViolationError(ConflictError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(BillingKernelError):
    """Base exception for missing (or out-of-scope) records."""

    code: str = "NOT_FOUND"


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given ID was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: UUID | str):
        self.invoice_id = invoice_id
        super().__init__("Invoice not found")


class EntryNotFoundError(NotFoundError):
    """Time entry with given ID was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: UUID | str):
        self.entry_id = entry_id
        super().__init__("Entry not found")


class UserNotFoundError(NotFoundError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: UUID | str):
        self.user_id = user_id
        super().__init__("User not found")


# =============================================================================
# Internal
# =============================================================================


class InternalError(BillingKernelError):
    """
    Unrecoverable failure (storage error, unexpected exception).

    The message is deliberately generic; the original exception is chained
    via ``__cause__`` and logged by the engine facade.
    """

    code: str = "INTERNAL_ERROR"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Failed to {operation.replace('_', ' ')}")
