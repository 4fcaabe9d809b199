"""
Pricing -- turns open time entries into invoice lines and a total.

Responsibility:
    Effective-rate selection, per-entry amounts and the invoice total.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats: hours, rates and amounts are Decimal throughout.
    - amount = round_half_up(round_hours(hours) * rate, 2) per entry;
      total = round(sum(amounts), 2).  Lines always sum to the total.
    - A non-finite intermediate rejects the whole batch; there is no
      partial pricing.

Failure modes:
    - MissingRateError when neither the entry override nor the user rate
      is finite.
    - InvalidHoursError when hours are not a positive finite number.
    - NonFiniteAmountError when a computed amount is NaN/Infinity.
"""

from collections.abc import Iterable
from decimal import Decimal

from billing_kernel.db.types import round_hours, round_money
from billing_kernel.domain.dtos import InvoiceLine, TimeEntryInfo
from billing_kernel.exceptions import (
    InvalidHoursError,
    MissingRateError,
    NonFiniteAmountError,
)


def _finite(value: Decimal | None) -> bool:
    return value is not None and Decimal(value).is_finite()


def effective_rate(entry_rate: Decimal | None, user_rate: Decimal | None) -> Decimal | None:
    """Entry override when finite, else the user's rate when finite, else None."""
    if _finite(entry_rate):
        return Decimal(entry_rate)
    if _finite(user_rate):
        return Decimal(user_rate)
    return None


def price_entry(entry: TimeEntryInfo, user_rate: Decimal | None) -> InvoiceLine:
    """Price a single entry."""
    rate = effective_rate(entry.rate, user_rate)
    if rate is None:
        raise MissingRateError(entry.user_id, entry.id)

    if not _finite(entry.hours) or entry.hours <= 0:
        raise InvalidHoursError(entry.id, str(entry.hours))

    hours = round_hours(entry.hours)
    raw_amount = hours * rate
    if not raw_amount.is_finite():
        raise NonFiniteAmountError(entry.id)

    return InvoiceLine(
        entry_id=entry.id,
        work_date=entry.work_date,
        task=entry.task,
        notes=entry.notes,
        tag=entry.tag,
        hours=hours,
        rate=rate,
        amount=round_money(raw_amount),
    )


def price_entries(
    entries: Iterable[TimeEntryInfo],
    user_rate: Decimal | None,
) -> tuple[tuple[InvoiceLine, ...], Decimal]:
    """
    Price every entry and total them.

    Returns:
        (lines ordered by work date then entry id, total)
    """
    ordered = sorted(entries, key=lambda e: (e.work_date, str(e.id)))
    lines = tuple(price_entry(entry, user_rate) for entry in ordered)
    total = round_money(sum((line.amount for line in lines), Decimal("0")))
    if not total.is_finite():
        raise NonFiniteAmountError()
    return lines, total


def lines_total(lines: Iterable[InvoiceLine]) -> Decimal:
    return round_money(sum((line.amount for line in lines), Decimal("0")))

