"""Schedule expression parsing and validation.

Turns the schedule strings admins type into APScheduler triggers:

- 5-field cron: ``minute hour day-of-month month day-of-week``
  (day-of-week uses cron numbering, 0 and 7 are Sunday)
- descriptors: ``@yearly``, ``@annually``, ``@monthly``, ``@weekly``,
  ``@daily``, ``@midnight``, ``@hourly`` (``@`` optional)
- intervals: ``@every 1h30m`` or ``every 30m`` (units h, m, s)
"""

import re
from datetime import tzinfo

from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pytz import timezone as pytz_timezone

from jobs.exceptions import ScheduleValidationError

DESCRIPTORS = {
    "yearly": "0 0 1 1 *",
    "annually": "0 0 1 1 *",
    "monthly": "0 0 1 * *",
    "weekly": "0 0 * * 0",
    "daily": "0 0 * * *",
    "midnight": "0 0 * * *",
    "hourly": "0 * * * *",
}

CRON_FIELD_NAMES = ("minute", "hour", "day", "month", "day_of_week")

# Cron day-of-week order; index is the cron day number
_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")

_DURATION_RE = re.compile(r"(?:\d+[hms])+")
_DURATION_PART_RE = re.compile(r"(\d+)([hms])")
_UNIT_SECONDS = {"h": 3600, "m": 60, "s": 1}


def _resolve_timezone(tz: tzinfo | str | None) -> tzinfo:
    if tz is None:
        return pytz_timezone("UTC")
    if isinstance(tz, str):
        return pytz_timezone(tz)
    return tz


def parse_duration(text: str) -> int:
    """Parse ``1h30m``-style durations into whole seconds."""
    value = text.strip().lower()
    if not _DURATION_RE.fullmatch(value):
        raise ScheduleValidationError(
            f"invalid duration {text!r}: expected e.g. '30m', '1h', '1h30m'"
        )

    seconds = sum(
        int(amount) * _UNIT_SECONDS[unit]
        for amount, unit in _DURATION_PART_RE.findall(value)
    )
    if seconds < 1:
        raise ScheduleValidationError(
            f"invalid duration {text!r}: must be at least 1 second"
        )
    return seconds


def _dow_value(token: str, expr: str) -> int:
    token = token.strip().lower()
    if token in _DOW_NAMES:
        return _DOW_NAMES.index(token)
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token)
    raise ScheduleValidationError(
        f"invalid schedule {expr!r}: day-of-week value {token!r} out of range (0-7)"
    )


def _translate_day_of_week(field: str, expr: str) -> str:
    """Rewrite a cron day-of-week field using APScheduler weekday names.

    APScheduler counts Monday as 0 while cron counts Sunday as 0, so numeric
    values are expanded and emitted as names.
    """
    if field == "*":
        return field

    days: set[int] = set()
    for item in field.split(","):
        base, _, step_text = item.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise ScheduleValidationError(
                    f"invalid schedule {expr!r}: bad day-of-week step {item!r}"
                )
            step = int(step_text)

        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            first, last = base.split("-", 1)
            start, end = _dow_value(first, expr), _dow_value(last, expr)
            if start > end:
                raise ScheduleValidationError(
                    f"invalid schedule {expr!r}: day-of-week range {base!r} is reversed"
                )
        elif base:
            start = _dow_value(base, expr)
            end = 7 if step_text else start
        else:
            raise ScheduleValidationError(
                f"invalid schedule {expr!r}: empty day-of-week value"
            )

        days.update(day % 7 for day in range(start, end + 1, step))

    return ",".join(_DOW_NAMES[day] for day in sorted(days))


def _is_wildcard(field: str) -> bool:
    return field in ("*", "*/1")


def _parse_cron(fields: list[str], expr: str, tz: tzinfo) -> BaseTrigger:
    """Build the trigger for a 5-field cron expression.

    CronTrigger requires both day fields to match. Cron fires when either
    matches once both are restricted, so that case becomes an OrTrigger of
    one trigger per day field.
    """
    values = dict(zip(CRON_FIELD_NAMES, fields, strict=True))
    day_restricted = not _is_wildcard(values["day"])
    weekday_restricted = not _is_wildcard(values["day_of_week"])
    values["day_of_week"] = _translate_day_of_week(values["day_of_week"], expr)
    try:
        if not (day_restricted and weekday_restricted):
            return CronTrigger(timezone=tz, **values)

        return OrTrigger(
            [
                CronTrigger(timezone=tz, **{**values, "day_of_week": "*"}),
                CronTrigger(timezone=tz, **{**values, "day": "*"}),
            ]
        )
    except ValueError as e:
        raise ScheduleValidationError(f"invalid schedule {expr!r}: {e}") from e


def parse_schedule(expr: str, timezone: tzinfo | str | None = None) -> BaseTrigger:
    """Parse a schedule expression into an APScheduler trigger.

    Args:
        expr: Schedule expression
        timezone: Timezone the trigger fires in (defaults to UTC)

    Returns:
        CronTrigger, OrTrigger (cron with both day fields restricted) or
        IntervalTrigger

    Raises:
        ScheduleValidationError: If the expression is not valid
    """
    if expr is None or not expr.strip():
        raise ScheduleValidationError("schedule is required")

    tz = _resolve_timezone(timezone)
    text = " ".join(expr.split())
    lowered = text.lower()

    # Interval shortcuts: "@every 30m" or "every 30m"
    for prefix in ("@every ", "every "):
        if lowered.startswith(prefix):
            seconds = parse_duration(lowered[len(prefix) :])
            return IntervalTrigger(seconds=seconds, timezone=tz)

    descriptor = lowered[1:] if lowered.startswith("@") else lowered
    if descriptor in DESCRIPTORS:
        return _parse_cron(DESCRIPTORS[descriptor].split(), expr, tz)
    if lowered.startswith("@"):
        raise ScheduleValidationError(
            f"invalid schedule {expr!r}: unknown shortcut {text.split()[0]!r}"
        )

    fields = text.split(" ")
    if len(fields) != len(CRON_FIELD_NAMES):
        raise ScheduleValidationError(
            f"invalid schedule {expr!r}: expected 5 fields "
            f"(minute hour day month weekday), got {len(fields)}"
        )
    return _parse_cron(fields, expr, tz)


def validate_schedule(expr: str) -> None:
    """Validate a schedule expression without scheduling anything.

    Raises:
        ScheduleValidationError: If the expression is not valid
    """
    parse_schedule(expr)
