"""
Period -- Weekly billing period and submission deadline.

Responsibility:
    Computes the canonical work week (Monday 00:01:00 through Sunday
    23:59:59, inclusive) containing an instant, and the submission deadline
    that follows it, in a configured IANA time zone.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``now`` is always
    passed in; nothing here reads the system clock.

Invariants enforced:
    - period.start is a Monday 00:01:00 and period.end the following Sunday
      23:59:59, both as local wall-clock times in the configured zone.
      Boundaries are built from wall-clock components, never by adding a
      fixed number of seconds, so DST weeks (167h / 169h) are still correct.
    - due is strictly after period.end.

Weekday convention:
    BillingWindowSettings.weekday uses 0=Sunday ... 6=Saturday, the
    convention of the settings store.  Python's ``date.weekday()`` is
    0=Monday ... 6=Sunday; ``python_weekday`` converts.

Failure modes:
    - SettingsValidationError from BillingWindowSettings.validate() or
      from_mapping() on out-of-range values or an unknown zone.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from billing_kernel.exceptions import SettingsValidationError

WEEKDAY_NAMES = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)

PERIOD_START_TIME = time(0, 1, 0)
PERIOD_END_TIME = time(23, 59, 59)
DUE_SECOND = 59

# Keys used by the settings store
SETTING_WEEKDAY = "invoice_due_weekday"
SETTING_HOUR = "invoice_due_hour"
SETTING_MINUTE = "invoice_due_minute"
SETTING_ZONE = "invoice_due_timezone"
SETTING_WARN_WINDOW = "invoice_warn_window_hours"

SETTING_KEYS = (
    SETTING_WEEKDAY,
    SETTING_HOUR,
    SETTING_MINUTE,
    SETTING_ZONE,
    SETTING_WARN_WINDOW,
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class BillingWindowSettings:
    """
    Where the weekly submission deadline falls.

    Defaults: Tuesday 23:59 America/Denver, warn 24 hours ahead.
    """

    weekday: int = 2
    hour: int = 23
    minute: int = 59
    zone: str = "America/Denver"
    warn_window_hours: int = 24

    def validate(self) -> BillingWindowSettings:
        """Raise SettingsValidationError unless every field is in range."""
        errors: list[str] = []
        if not _is_int(self.weekday) or not 0 <= self.weekday <= 6:
            errors.append("Invalid weekday (0-6 required)")
        if not _is_int(self.hour) or not 0 <= self.hour <= 23:
            errors.append("Invalid hour (0-23 required)")
        if not _is_int(self.minute) or not 0 <= self.minute <= 59:
            errors.append("Invalid minute (0-59 required)")
        if not isinstance(self.zone, str) or not self.zone:
            errors.append("Invalid timezone")
        else:
            try:
                ZoneInfo(self.zone)
            except (ZoneInfoNotFoundError, ValueError):
                errors.append(f"Unknown timezone '{self.zone}'")
        if not _is_int(self.warn_window_hours) or self.warn_window_hours < 0:
            errors.append("Invalid warning window")
        if errors:
            raise SettingsValidationError(errors)
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.zone)

    @property
    def python_weekday(self) -> int:
        """Deadline weekday as Monday=0 ... Sunday=6."""
        return (self.weekday - 1) % 7

    @property
    def weekday_name(self) -> str:
        return WEEKDAY_NAMES[self.weekday]

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> BillingWindowSettings:
        """
        Build settings from settings-store rows (string values allowed).

        Missing keys fall back to the defaults.  Non-integer text for an
        integer field is a SettingsValidationError, as is any out-of-range
        value.
        """
        defaults = cls()
        errors: list[str] = []

        def _int(key: str, default: int) -> int:
            raw = values.get(key)
            if raw is None or raw == "":
                return default
            if _is_int(raw):
                return raw
            try:
                return int(str(raw).strip())
            except ValueError:
                errors.append(f"{key} must be an integer, got {raw!r}")
                return default

        settings = cls(
            weekday=_int(SETTING_WEEKDAY, defaults.weekday),
            hour=_int(SETTING_HOUR, defaults.hour),
            minute=_int(SETTING_MINUTE, defaults.minute),
            zone=str(values.get(SETTING_ZONE) or defaults.zone),
            warn_window_hours=_int(SETTING_WARN_WINDOW, defaults.warn_window_hours),
        )
        if errors:
            raise SettingsValidationError(errors)
        return settings.validate()

    def to_mapping(self) -> dict[str, str]:
        """Settings-store representation (all values as text)."""
        return {
            SETTING_WEEKDAY: str(self.weekday),
            SETTING_HOUR: str(self.hour),
            SETTING_MINUTE: str(self.minute),
            SETTING_ZONE: self.zone,
            SETTING_WARN_WINDOW: str(self.warn_window_hours),
        }


@dataclass(frozen=True)
class Period:
    """One work week and its submission deadline, as zone-aware instants."""

    start: datetime
    end: datetime
    due: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    def contains_date(self, work_date: date) -> bool:
        """Calendar-date inclusive test using the period's local dates."""
        return self.start_date <= work_date <= self.end_date

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


def _week_monday(local_day: date) -> date:
    return local_day - timedelta(days=local_day.weekday())


def _period_for_monday(monday: date, settings: BillingWindowSettings) -> Period:
    tz = settings.tzinfo
    start = datetime.combine(monday, PERIOD_START_TIME, tzinfo=tz)
    end = datetime.combine(monday + timedelta(days=6), PERIOD_END_TIME, tzinfo=tz)
    return Period(start=start, end=end, due=due_for_period(end, settings))


def current_period(now: datetime, settings: BillingWindowSettings) -> Period:
    """
    Work week containing ``now`` in the configured zone.

    Preconditions: ``now`` is timezone-aware.
    Postconditions: start is Monday 00:01:00 local, end is Sunday 23:59:59
        local of the same ISO week, due = due_for_period(end).
    """
    if now.tzinfo is None:
        raise ValueError("current_period requires a timezone-aware datetime")
    local = now.astimezone(settings.tzinfo)
    return _period_for_monday(_week_monday(local.date()), settings)


def period_for_date(work_date: date, settings: BillingWindowSettings) -> Period:
    """Work week whose local calendar dates include ``work_date``."""
    return _period_for_monday(_week_monday(work_date), settings)


def due_for_period(period_end: datetime, settings: BillingWindowSettings) -> datetime:
    """
    Submission deadline for the week ending at ``period_end``.

    The configured weekday/hour/minute (second 59) within the same local
    week as period_end; if that instant is not after period_end, the same
    slot one week later.
    """
    tz = settings.tzinfo
    local_end = period_end.astimezone(tz)
    due_day = _week_monday(local_end.date()) + timedelta(days=settings.python_weekday)
    due_time = time(settings.hour, settings.minute, DUE_SECOND)
    due = datetime.combine(due_day, due_time, tzinfo=tz)
    if due <= period_end:
        due = datetime.combine(due_day + timedelta(weeks=1), due_time, tzinfo=tz)
    return due
