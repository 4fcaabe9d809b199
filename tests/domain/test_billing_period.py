"""
Tests for the weekly billing period and its deadline.

These tests verify:
- The work week is Monday 00:01:00 to Sunday 23:59:59 in the configured zone
- The deadline always falls after the end of the week it belongs to
- Weekday numbering is 0=Sunday ... 6=Saturday
- Settings validation and settings-store round trips
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given, settings as hypothesis_settings
from hypothesis import strategies as st

from billing_kernel.domain.period import (
    SETTING_WEEKDAY,
    SETTING_ZONE,
    BillingWindowSettings,
    current_period,
    due_for_period,
    period_for_date,
)
from billing_kernel.exceptions import SettingsValidationError

DENVER = ZoneInfo("America/Denver")
DEFAULT = BillingWindowSettings()

ZONES = ["America/Denver", "UTC", "Europe/London", "Asia/Tokyo", "Australia/Sydney"]


class TestCurrentPeriod:
    """The canonical work week containing an instant."""

    def test_wednesday_noon_utc(self):
        period = current_period(datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc), DEFAULT)

        assert period.start == datetime(2024, 1, 15, 0, 1, 0, tzinfo=DENVER)
        assert period.end == datetime(2024, 1, 21, 23, 59, 59, tzinfo=DENVER)
        assert period.due == datetime(2024, 1, 23, 23, 59, 59, tzinfo=DENVER)

    def test_sunday_evening_local_is_still_same_week(self):
        # 2024-01-22 05:00 UTC is Sunday 22:00 in Denver
        period = current_period(datetime(2024, 1, 22, 5, 0, tzinfo=timezone.utc), DEFAULT)

        assert period.start_date == date(2024, 1, 15)
        assert period.end_date == date(2024, 1, 21)

    def test_monday_morning_utc_is_previous_local_week(self):
        # Monday 03:00 UTC is still Sunday evening in Denver
        period = current_period(datetime(2024, 1, 22, 3, 0, tzinfo=timezone.utc), DEFAULT)

        assert period.start_date == date(2024, 1, 15)

    def test_week_spanning_dst_start(self):
        period = current_period(datetime(2024, 3, 13, 18, 0, tzinfo=timezone.utc), DEFAULT)

        assert period.start == datetime(2024, 3, 11, 0, 1, tzinfo=DENVER)
        assert period.end == datetime(2024, 3, 17, 23, 59, 59, tzinfo=DENVER)
        assert period.end.utcoffset() == timedelta(hours=-6)

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValueError):
            current_period(datetime(2024, 1, 17, 12, 0), DEFAULT)

    def test_contains(self):
        period = current_period(datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc), DEFAULT)

        assert period.contains_date(date(2024, 1, 15))
        assert period.contains_date(date(2024, 1, 21))
        assert not period.contains_date(date(2024, 1, 22))
        assert period.contains(datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc))

    def test_period_for_date_matches_current_period(self):
        by_date = period_for_date(date(2024, 1, 19), DEFAULT)
        by_instant = current_period(datetime(2024, 1, 19, 20, 0, tzinfo=timezone.utc), DEFAULT)

        assert by_date == by_instant


class TestDueForPeriod:
    """Deadline placement relative to the end of the week."""

    def test_default_is_following_tuesday(self):
        end = datetime(2024, 1, 21, 23, 59, 59, tzinfo=DENVER)

        due = due_for_period(end, DEFAULT)

        assert due == datetime(2024, 1, 23, 23, 59, 59, tzinfo=DENVER)
        assert due.strftime("%A") == "Tuesday"

    def test_weekday_zero_is_sunday(self):
        end = datetime(2024, 1, 21, 23, 59, 59, tzinfo=DENVER)
        window = BillingWindowSettings(weekday=0, hour=23, minute=59)

        due = due_for_period(end, window)

        # Sunday 23:59:59 equals the period end, so it rolls a week forward
        assert due == datetime(2024, 1, 28, 23, 59, 59, tzinfo=DENVER)

    def test_saturday_deadline(self):
        end = datetime(2024, 1, 21, 23, 59, 59, tzinfo=DENVER)
        window = BillingWindowSettings(weekday=6, hour=9, minute=0)

        due = due_for_period(end, window)

        assert due == datetime(2024, 1, 27, 9, 0, 59, tzinfo=DENVER)

    def test_due_uses_configured_zone(self):
        window = BillingWindowSettings(zone="Asia/Tokyo")
        period = current_period(datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc), window)

        assert period.due.tzinfo == ZoneInfo("Asia/Tokyo")
        assert period.due.date() == date(2024, 1, 23)


class TestPeriodProperties:
    """Property-based checks over arbitrary instants and windows."""

    @given(
        instant=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2099, 12, 31),
            timezones=st.just(timezone.utc),
        ),
        zone=st.sampled_from(ZONES),
    )
    @hypothesis_settings(max_examples=200, deadline=None)
    def test_period_shape(self, instant, zone):
        window = BillingWindowSettings(zone=zone)
        period = current_period(instant, window)

        assert period.start.weekday() == 0
        assert period.start.timetz().replace(tzinfo=None) == time(0, 1, 0)
        assert period.end.weekday() == 6
        assert period.end.timetz().replace(tzinfo=None) == time(23, 59, 59)
        assert period.end_date - period.start_date == timedelta(days=6)
        assert period.contains_date(instant.astimezone(ZoneInfo(zone)).date())

    @given(
        instant=st.datetimes(
            min_value=datetime(2000, 1, 1),
            max_value=datetime(2099, 12, 31),
            timezones=st.just(timezone.utc),
        ),
        weekday=st.integers(min_value=0, max_value=6),
        hour=st.integers(min_value=0, max_value=23),
        minute=st.integers(min_value=0, max_value=59),
        zone=st.sampled_from(ZONES),
    )
    @hypothesis_settings(max_examples=300, deadline=None)
    def test_due_is_after_end_and_within_a_week(self, instant, weekday, hour, minute, zone):
        window = BillingWindowSettings(weekday=weekday, hour=hour, minute=minute, zone=zone)
        period = current_period(instant, window)

        assert period.due > period.end
        assert period.due - period.end <= timedelta(days=7, hours=1)
        assert period.due.weekday() == window.python_weekday
        assert period.due.second == 59


class TestBillingWindowSettings:
    """Validation and settings-store representation."""

    def test_defaults(self):
        assert DEFAULT.weekday == 2
        assert DEFAULT.weekday_name == "Tuesday"
        assert DEFAULT.python_weekday == 1
        assert DEFAULT.validate() is DEFAULT

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"weekday": 7}, "Invalid weekday (0-6 required)"),
            ({"hour": 24}, "Invalid hour (0-23 required)"),
            ({"minute": -1}, "Invalid minute (0-59 required)"),
            ({"zone": "Mars/Olympus"}, "Unknown timezone 'Mars/Olympus'"),
            ({"warn_window_hours": -5}, "Invalid warning window"),
        ],
    )
    def test_out_of_range_rejected(self, kwargs, message):
        with pytest.raises(SettingsValidationError) as exc_info:
            BillingWindowSettings(**kwargs).validate()

        assert message in exc_info.value.errors

    def test_mapping_round_trip(self):
        window = BillingWindowSettings(weekday=5, hour=17, minute=30, zone="UTC", warn_window_hours=48)

        assert BillingWindowSettings.from_mapping(window.to_mapping()) == window

    def test_from_mapping_fills_defaults(self):
        window = BillingWindowSettings.from_mapping({SETTING_ZONE: "UTC"})

        assert window.zone == "UTC"
        assert window.weekday == DEFAULT.weekday

    def test_from_mapping_rejects_non_integer_text(self):
        with pytest.raises(SettingsValidationError):
            BillingWindowSettings.from_mapping({SETTING_WEEKDAY: "tuesday"})
