"""
Free-text entry parser for batch preview.

Each non-blank line is one entry in one of these shapes::

    2024-01-15,3.5,Fix login bug,notes here      (CSV with date)
    3.5,Fix login bug                            (CSV, date = today)
    3.5h | Fix login bug | notes here            (hours suffix)
    2024-01-15 | 3.5h | Fix login bug            (date prefix + any of the above)

Lines that match none of them are reported as ``Unrecognized format``.
Pure; "today" is injected by the caller.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Any

from billing_kernel.domain.entry_validation import collect_entry_errors, parse_hours, to_decimal

_CSV_LINE = re.compile(r"^(?:(\d{4}-\d{2}-\d{2}),)?(\d+(?:\.\d+)?),([^,]+)(?:,(.+))?$")
_HOURS_LINE = re.compile(r"^(\d+(?:\.\d+)?)h\s*[|,]?\s*([^|,]+)(?:[|,]\s*(.+))?$")
_DATED_LINE = re.compile(r"^(\d{4}-\d{2}-\d{2})\s*[|,]\s*(.+)$")

UNRECOGNIZED_FORMAT = "Unrecognized format"


@dataclass(frozen=True)
class PreviewRow:
    line: int
    parsed: dict[str, Any] | None
    valid: bool
    errors: tuple[str, ...]


@dataclass(frozen=True)
class PreviewSummary:
    valid: int
    invalid: int
    total: int


@dataclass(frozen=True)
class BatchPreview:
    rows: tuple[PreviewRow, ...]
    summary: PreviewSummary


def parse_line(line: str, today: date) -> dict[str, Any] | None:
    """Parse one line into a raw entry mapping, or None."""
    match = _CSV_LINE.match(line)
    if match:
        work_date, hours, task, notes = match.groups()
        return {
            "date": work_date or today.isoformat(),
            "hours": hours,
            "task": task,
            "notes": notes or "",
        }

    match = _HOURS_LINE.match(line)
    if match:
        hours, task, notes = match.groups()
        return {
            "date": today.isoformat(),
            "hours": hours,
            "task": task,
            "notes": notes or "",
        }

    match = _DATED_LINE.match(line)
    if match:
        work_date, rest = match.groups()
        parsed = parse_line(rest.strip(), today)
        if parsed is not None:
            parsed["date"] = work_date
            return parsed

    return None


def _normalized(raw: dict[str, Any]) -> dict[str, Any]:
    hours = parse_hours(raw["hours"])
    if hours is None:
        hours = to_decimal(raw["hours"])
    return {
        "date": raw["date"],
        "hours": hours,
        "task": raw["task"].strip(),
        "notes": raw["notes"].strip(),
    }


def preview_entries(
    text: str,
    today: date,
) -> BatchPreview:
    """
    Parse and validate a block of text without writing anything.

    Line numbers count non-blank lines, starting at 1.
    """
    rows: list[PreviewRow] = []
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    for number, line in enumerate(lines, start=1):
        raw = parse_line(line, today)
        if raw is None:
            rows.append(PreviewRow(number, None, False, (UNRECOGNIZED_FORMAT,)))
            continue
        _, errors = collect_entry_errors(raw)
        rows.append(PreviewRow(number, _normalized(raw), not errors, tuple(errors)))

    valid = sum(1 for row in rows if row.valid)
    return BatchPreview(
        rows=tuple(rows),
        summary=PreviewSummary(valid=valid, invalid=len(rows) - valid, total=len(rows)),
    )
