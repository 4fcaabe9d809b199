"""
Deadline status -- how close a user is to missing the submission deadline.

Responsibility:
    Classifies an instant against a due instant (ok / approaching / late),
    renders the user-facing reminder text, and assembles the per-user
    deadline report for the current period.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Whether a user has
    already submitted is answered by a callable supplied by the caller.

Invariants enforced:
    - status_for is total: late iff now >= due; approaching iff
      due - warn <= now < due; ok otherwise.
    - A user who has submitted for the period is always ``ok`` and gets no
      message.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID
from zoneinfo import ZoneInfo

from billing_kernel.domain.dtos import DeadlineReport, DeadlineStatusItem
from billing_kernel.domain.period import BillingWindowSettings, Period, current_period


class DeadlineStatus(str, Enum):
    OK = "ok"
    APPROACHING = "approaching"
    LATE = "late"


def status_for(now: datetime, due: datetime, warn_window_hours: int = 24) -> DeadlineStatus:
    """
    Classify ``now`` against ``due``.

    The warning window is measured in elapsed hours, so it keeps its length
    across a DST change.
    """
    if now >= due:
        return DeadlineStatus.LATE
    warn_from = due.astimezone(timezone.utc) - timedelta(hours=warn_window_hours)
    if now >= warn_from:
        return DeadlineStatus.APPROACHING
    return DeadlineStatus.OK


def format_due(due: datetime, zone: str) -> str:
    """e.g. ``Tue, Jan 23 @ 11:59 PM MST``."""
    local = due.astimezone(ZoneInfo(zone))
    return f"{local:%a, %b} {local.day} @ {local:%I:%M %p %Z}"


def deadline_message(status: DeadlineStatus, due: datetime, zone: str) -> str | None:
    """Reminder text for an unsubmitted user, or None when nothing to say."""
    if status == DeadlineStatus.APPROACHING:
        return f"Invoice due {format_due(due, zone)}. Please submit."
    if status == DeadlineStatus.LATE:
        return f"Invoice is late (due {format_due(due, zone)}). Payment may be delayed."
    return None


def build_deadline_report(
    now: datetime,
    settings: BillingWindowSettings,
    users: Iterable[tuple[UUID, str]],
    is_submitted: Callable[[UUID, Period], bool],
) -> DeadlineReport:
    """
    Deadline status for each (user_id, user_name) in ``users``.

    ``is_submitted(user_id, period)`` reports whether the user already has
    a submitted invoice for the period.
    """
    period = current_period(now, settings)
    due = period.due
    deadline_iso = due.astimezone(timezone.utc).isoformat()
    deadline_local = due.isoformat()
    period_start = period.start.isoformat()
    period_end = period.end.isoformat()

    statuses = []
    for user_id, user_name in users:
        submitted = is_submitted(user_id, period)
        if submitted:
            status = DeadlineStatus.OK
            message = None
        else:
            status = status_for(now, due, settings.warn_window_hours)
            message = deadline_message(status, due, settings.zone)
        statuses.append(
            DeadlineStatusItem(
                user_id=user_id,
                user_name=user_name,
                submitted=submitted,
                status=status.value,
                deadline_iso=deadline_iso,
                deadline_local=deadline_local,
                period_start=period_start,
                period_end=period_end,
                message=message,
            )
        )

    return DeadlineReport(
        zone=settings.zone,
        warn_window_hours=settings.warn_window_hours,
        statuses=tuple(statuses),
        current_period={
            "start": period_start,
            "end": period_end,
            "due": deadline_local,
        },
    )
