"""
Entry validation -- field rules for time entries.

Responsibility:
    Turns a raw mapping (request body, batch row, parsed preview line) into
    a normalized EntryFields value, or a list of human-readable errors.
    The same rules apply to create, update, batch import and preview.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The active tag set
    is passed in by the caller.

Rules:
    - hours: finite number, quantized to 2 dp (half up), then 0 < hours <= 24.
      Booleans are rejected even though they are ints.
    - task: required after trimming, at most 120 characters.
    - notes: optional, at most 500 characters after trimming.
    - date: ``YYYY-MM-DD`` text or a ``date``; must be a real calendar day.
    - tag: optional; when present must be in the active tag set
      (case-sensitive).
    - rate: optional override; finite and >= 0.
"""

import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from billing_kernel.db.types import round_hours
from billing_kernel.exceptions import EntryValidationError, InvalidTagError

TASK_MAX_LENGTH = 120
NOTES_MAX_LENGTH = 500
MAX_HOURS = Decimal("24")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

HOURS_ERROR = "Hours must be between 0 and 24"
TASK_REQUIRED_ERROR = "Task is required"
TASK_LENGTH_ERROR = f"Task must be {TASK_MAX_LENGTH} characters or less"
NOTES_LENGTH_ERROR = f"Notes must be {NOTES_MAX_LENGTH} characters or less"
DATE_ERROR = "Invalid date format (use YYYY-MM-DD)"
RATE_ERROR = "Rate must be a non-negative number"
TAG_ERROR = "Tag must be text"


@dataclass(frozen=True)
class EntryFields:
    """Validated, normalized entry content."""

    work_date: date
    hours: Decimal
    task: str
    notes: str = ""
    tag: str | None = None
    rate: Decimal | None = None


def to_decimal(value: Any) -> Decimal | None:
    """Convert a number-ish value to Decimal, or None when impossible."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() gives the shortest round-tripping text (0.1 -> "0.1")
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation:
        return None


def parse_hours(value: Any) -> Decimal | None:
    """
    Hours quantized to 2 dp, or None.

    The range (0, 24] applies to the value as given; a value that rounds
    down to zero is rejected as well.
    """
    hours = to_decimal(value)
    if hours is None or not hours.is_finite():
        return None
    if hours <= 0 or hours > MAX_HOURS:
        return None
    hours = round_hours(hours)
    if hours <= 0:
        return None
    return hours


def parse_work_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _raw_date(raw: Mapping[str, Any]) -> Any:
    if "date" in raw:
        return raw["date"]
    return raw.get("work_date")


def collect_entry_errors(
    raw: Mapping[str, Any],
) -> tuple[EntryFields | None, list[str]]:
    """
    Validate everything except tag membership in the active tag set.

    Returns:
        (fields, []) on success, (None, errors) otherwise.  Errors are in
        a fixed order: hours, task, notes, date, rate, tag.
    """
    errors: list[str] = []

    hours = parse_hours(raw.get("hours"))
    if hours is None:
        errors.append(HOURS_ERROR)

    task = raw.get("task")
    task = task.strip() if isinstance(task, str) else ""
    if not task:
        errors.append(TASK_REQUIRED_ERROR)
    elif len(task) > TASK_MAX_LENGTH:
        errors.append(TASK_LENGTH_ERROR)

    notes = raw.get("notes")
    notes = notes.strip() if isinstance(notes, str) else ""
    if len(notes) > NOTES_MAX_LENGTH:
        errors.append(NOTES_LENGTH_ERROR)

    work_date = parse_work_date(_raw_date(raw))
    if work_date is None:
        errors.append(DATE_ERROR)

    rate = None
    raw_rate = raw.get("rate")
    if raw_rate is not None and raw_rate != "":
        rate = to_decimal(raw_rate)
        if rate is None or not rate.is_finite() or rate < 0:
            errors.append(RATE_ERROR)
            rate = None

    tag = raw.get("tag")
    if isinstance(tag, str):
        tag = tag.strip() or None
    elif tag is not None:
        errors.append(TAG_ERROR)
        tag = None

    if errors:
        return None, errors

    return (
        EntryFields(
            work_date=work_date,
            hours=hours,
            task=task,
            notes=notes,
            tag=tag,
            rate=rate,
        ),
        [],
    )


def check_tag(tag: str | None, active_tags: Collection[str]) -> None:
    """Raise InvalidTagError unless ``tag`` is None or an active tag name."""
    if tag is not None and tag not in active_tags:
        raise InvalidTagError(tag, active_tags)


def validate_entry_fields(
    raw: Mapping[str, Any],
    active_tags: Collection[str],
) -> EntryFields:
    """
    Full validation for a single entry write.

    Raises:
        EntryValidationError: Any field rule failed (all messages attached).
        InvalidTagError: Fields are fine but the tag is not active.
    """
    fields, errors = collect_entry_errors(raw)
    if errors:
        raise EntryValidationError(errors)
    check_tag(fields.tag, active_tags)
    return fields
