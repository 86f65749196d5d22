"""Tests for schedule expression parsing."""

from datetime import datetime, timedelta

import pytest
import pytz
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from jobs.exceptions import ScheduleValidationError
from services.schedule_parser import parse_duration, parse_schedule, validate_schedule

UTC = pytz.utc


def next_fire(expr: str, now: datetime) -> datetime:
    return parse_schedule(expr).get_next_fire_time(None, now)


class TestValidateSchedule:
    """Test which expressions are accepted."""

    @pytest.mark.parametrize(
        "expr",
        [
            "*/5 * * * *",
            "0 3 * * *",
            "0 9 * * 1-5",
            "15,45 8-18 * * mon-fri",
            "0 0 1 jan,jul *",
            "0 0 * * 7",
            "@daily",
            "@midnight",
            "@hourly",
            "@weekly",
            "@monthly",
            "@yearly",
            "@annually",
            "hourly",
            "daily",
            "@every 1h",
            "@every 1h30m",
            "every 30m",
            "every 10s",
        ],
    )
    def test_valid_expressions(self, expr):
        """Valid expressions pass, and pass again when re-parsed."""
        validate_schedule(expr)
        validate_schedule(expr)

    @pytest.mark.parametrize(
        "expr",
        [
            "",
            "   ",
            "invalid cron",
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "0 24 * * *",
            "0 0 32 * *",
            "0 0 * 13 *",
            "0 0 * * 8",
            "@fortnightly",
            "@every",
            "@every 0s",
            "@every 10",
            "every 1d",
        ],
    )
    def test_invalid_expressions(self, expr):
        """Invalid expressions raise ScheduleValidationError."""
        with pytest.raises(ScheduleValidationError):
            validate_schedule(expr)

    def test_none_is_rejected(self):
        """A missing schedule is rejected."""
        with pytest.raises(ScheduleValidationError, match="required"):
            validate_schedule(None)

    def test_validation_error_is_value_error(self):
        """Validation errors can be caught as ValueError."""
        with pytest.raises(ValueError):
            validate_schedule("invalid cron")

    def test_error_mentions_field_count(self):
        """Wrong field count is explained."""
        with pytest.raises(ScheduleValidationError, match="expected 5 fields"):
            validate_schedule("* * * *")


class TestParseSchedule:
    """Test the triggers produced for each expression family."""

    def test_cron_returns_cron_trigger(self):
        """Five-field expressions produce a CronTrigger."""
        assert isinstance(parse_schedule("0 3 * * *"), CronTrigger)

    def test_descriptor_returns_cron_trigger(self):
        """Descriptors produce a CronTrigger."""
        assert isinstance(parse_schedule("@daily"), CronTrigger)

    def test_every_returns_interval_trigger(self):
        """Interval shortcuts produce an IntervalTrigger with the right interval."""
        trigger = parse_schedule("@every 1h30m")

        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval == timedelta(hours=1, minutes=30)

    def test_every_without_at_sign(self):
        """The "every" prefix works without the @ sign."""
        trigger = parse_schedule("every 30m")

        assert trigger.interval == timedelta(minutes=30)

    def test_daily_fires_at_midnight(self):
        """@daily fires at the next midnight."""
        now = UTC.localize(datetime(2024, 1, 3, 15, 30))

        assert next_fire("@daily", now) == UTC.localize(datetime(2024, 1, 4, 0, 0))

    def test_hourly_fires_on_the_hour(self):
        """@hourly fires at minute zero."""
        now = UTC.localize(datetime(2024, 1, 3, 15, 30))

        assert next_fire("@hourly", now) == UTC.localize(datetime(2024, 1, 3, 16, 0))

    def test_cron_weekday_range_uses_cron_numbering(self):
        """1-5 means Monday to Friday, as in cron."""
        saturday = UTC.localize(datetime(2024, 1, 6, 0, 0))

        assert next_fire("0 9 * * 1-5", saturday) == UTC.localize(
            datetime(2024, 1, 8, 9, 0)
        )

    @pytest.mark.parametrize("sunday", ["0", "7", "sun"])
    def test_cron_sunday_spellings(self, sunday):
        """0, 7 and sun all mean Sunday."""
        wednesday = UTC.localize(datetime(2024, 1, 3, 12, 0))

        assert next_fire(f"0 0 * * {sunday}", wednesday) == UTC.localize(
            datetime(2024, 1, 7, 0, 0)
        )

    def test_weekly_fires_on_sunday(self):
        """@weekly fires at midnight between Saturday and Sunday."""
        wednesday = UTC.localize(datetime(2024, 1, 3, 12, 0))

        assert next_fire("@weekly", wednesday) == UTC.localize(
            datetime(2024, 1, 7, 0, 0)
        )

    def test_step_minutes(self):
        """*/15 fires every quarter hour."""
        now = UTC.localize(datetime(2024, 1, 3, 10, 16))

        assert next_fire("*/15 * * * *", now) == UTC.localize(
            datetime(2024, 1, 3, 10, 30)
        )

    def test_whitespace_is_normalized(self):
        """Extra whitespace between fields is ignored."""
        now = UTC.localize(datetime(2024, 1, 3, 1, 0))

        assert next_fire("  0   3  * *   * ", now) == UTC.localize(
            datetime(2024, 1, 3, 3, 0)
        )

    def test_timezone_is_applied(self):
        """Triggers fire in the requested timezone."""
        trigger = parse_schedule("0 9 * * *", "Europe/Berlin")

        assert str(trigger.timezone) == "Europe/Berlin"

    def test_day_of_month_or_day_of_week(self):
        """With both day fields restricted, either one matching fires."""
        monday = UTC.localize(datetime(2026, 10, 19, 12, 0))
        tuesday = UTC.localize(datetime(2026, 10, 27, 12, 0))

        assert next_fire("0 0 1 * 1", monday) == UTC.localize(datetime(2026, 10, 26, 0, 0))
        assert next_fire("0 0 1 * 1", tuesday) == UTC.localize(datetime(2026, 11, 1, 0, 0))

    def test_both_day_fields_restricted_returns_or_trigger(self):
        """The day-of-month or day-of-week case is one trigger per field."""
        assert isinstance(parse_schedule("0 0 1,15 * mon"), OrTrigger)

    @pytest.mark.parametrize("expr", ["0 0 1 * *", "0 0 * * 1", "0 0 */1 * 1"])
    def test_single_day_field_keeps_cron_trigger(self, expr):
        """A wildcard in either day field keeps plain cron matching."""
        assert isinstance(parse_schedule(expr), CronTrigger)

    def test_wildcard_day_of_month_with_weekday(self):
        """A day-of-month wildcard does not widen a weekday schedule."""
        monday = UTC.localize(datetime(2026, 10, 19, 12, 0))

        assert next_fire("0 0 * * 1", monday) == UTC.localize(datetime(2026, 10, 26, 0, 0))

    def test_parsing_is_deterministic(self):
        """Parsing the same expression twice yields equivalent triggers."""
        now = UTC.localize(datetime(2024, 1, 3, 10, 0))
        first = parse_schedule("30 2 * * mon").get_next_fire_time(None, now)
        second = parse_schedule("30 2 * * mon").get_next_fire_time(None, now)

        assert first == second


class TestParseDuration:
    """Test interval duration parsing."""

    @pytest.mark.parametrize(
        ("text", "seconds"),
        [("1s", 1), ("45s", 45), ("30m", 1800), ("2h", 7200), ("1h30m", 5400), ("1h1m1s", 3661)],
    )
    def test_valid_durations(self, text, seconds):
        """Durations are summed across units."""
        assert parse_duration(text) == seconds

    @pytest.mark.parametrize("text", ["", "0s", "0h0m", "10", "m", "1.5h", "1 h", "-1m"])
    def test_invalid_durations(self, text):
        """Malformed or zero durations are rejected."""
        with pytest.raises(ScheduleValidationError):
            parse_duration(text)
