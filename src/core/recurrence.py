"""Recurrence rules for task templates.

Daily and weekly rules are evaluated with croniter; monthly rules are computed
by hand because a day-of-month such as 31 must clamp to the last day of
shorter months instead of skipping them.
"""

import calendar
import re
from datetime import UTC, datetime, timedelta, tzinfo

from croniter import croniter
from pydantic import BaseModel, Field

from src.core.config import constants
from src.core.errors import InvalidScheduleError
from src.domain.task import RecurringPattern


WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class RecurrenceRule(BaseModel):
    """Schedule part of a template."""

    pattern: RecurringPattern = Field(..., description="daily, weekly or monthly")
    time: str = Field(default=constants.DEFAULT_RECURRING_TIME, description="Local time of day (HH:MM)")
    days: list[int] = Field(default_factory=list, description="Weekly: weekdays, 0=Monday .. 6=Sunday")
    day_of_month: int | None = Field(default=None, description="Monthly: 1..31, clamped to month length")

    @classmethod
    def from_record(cls, record: dict) -> "RecurrenceRule":
        return cls(
            pattern=record["recurring_pattern"],
            time=record.get("recurring_time") or constants.DEFAULT_RECURRING_TIME,
            days=record.get("recurring_days") or [],
            day_of_month=record.get("recurring_day_of_month"),
        )

    @property
    def hour_minute(self) -> tuple[int, int]:
        hour, minute = self.time.split(":")
        return int(hour), int(minute)


def validate_rule(rule: RecurrenceRule) -> None:
    """Check the rule is complete for its pattern.

    Raises:
        InvalidScheduleError: If the time or the pattern-specific fields are missing or out of range
    """
    if not _TIME_PATTERN.match(rule.time):
        msg = f"Recurring time must be HH:MM (24h), got '{rule.time}'"
        raise InvalidScheduleError(msg)

    if rule.pattern == RecurringPattern.WEEKLY:
        if not rule.days:
            msg = "Weekly recurring tasks must specify a day of the week"
            raise InvalidScheduleError(msg)
        if any(day < 0 or day > 6 for day in rule.days):  # noqa: PLR2004
            msg = "Weekdays must be between 0 (Monday) and 6 (Sunday)"
            raise InvalidScheduleError(msg)

    if rule.pattern == RecurringPattern.MONTHLY and (
        rule.day_of_month is None or not 1 <= rule.day_of_month <= constants.MAX_DAY_OF_MONTH
    ):
        msg = "Monthly recurring tasks must specify a day of the month between 1 and 31"
        raise InvalidScheduleError(msg)


def to_cron(rule: RecurrenceRule) -> str:
    """Express the rule as a five-field cron expression (cron weekdays start on Sunday)."""
    hour, minute = rule.hour_minute
    if rule.pattern == RecurringPattern.WEEKLY:
        cron_days = ",".join(str(day) for day in sorted({(day + 1) % 7 for day in rule.days}))
        return f"{minute} {hour} * * {cron_days}"
    if rule.pattern == RecurringPattern.MONTHLY:
        return f"{minute} {hour} {rule.day_of_month} * *"
    return f"{minute} {hour} * * *"


def describe(rule: RecurrenceRule) -> str:
    """Human-readable schedule, e.g. "every Monday, Friday at 9:00 AM"."""
    hour, minute = rule.hour_minute
    if hour == 0 and minute == 0:
        time_str = "at midnight"
    elif hour == 12 and minute == 0:  # noqa: PLR2004
        time_str = "at noon"
    else:
        period = "AM" if hour < 12 else "PM"  # noqa: PLR2004
        display_hour = hour % 12 or 12
        time_str = f"at {display_hour}:{minute:02d} {period}"

    if rule.pattern == RecurringPattern.WEEKLY:
        names = ", ".join(WEEKDAY_NAMES[day] for day in sorted(set(rule.days)))
        return f"every {names} {time_str}"
    if rule.pattern == RecurringPattern.MONTHLY:
        dom = rule.day_of_month or 1
        suffix = "th"
        if dom in (1, 21, 31):
            suffix = "st"
        elif dom in (2, 22):
            suffix = "nd"
        elif dom in (3, 23):
            suffix = "rd"
        return f"monthly on the {dom}{suffix} {time_str}"
    return f"daily {time_str}"


def _monthly_occurrence(rule: RecurrenceRule, year: int, month: int, tz: tzinfo) -> datetime:
    hour, minute = rule.hour_minute
    day = min(rule.day_of_month or 1, calendar.monthrange(year, month)[1])
    return datetime(year, month, day, hour, minute, tzinfo=tz)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def current_period_occurrences(rule: RecurrenceRule, now: datetime, tz: tzinfo, count: int) -> list[datetime]:
    """Return the latest ``count`` occurrences of the current period and before it, oldest first.

    The current period is today for daily and weekly rules (an occurrence later
    today still counts) and this month for monthly rules. Results are in UTC.
    """
    local_now = now.astimezone(tz)
    occurrences: list[datetime] = []

    if rule.pattern == RecurringPattern.MONTHLY:
        for back in range(count):
            year, month = _shift_month(local_now.year, local_now.month, -back)
            occurrences.append(_monthly_occurrence(rule, year, month, tz))
    else:
        start_of_tomorrow = datetime.combine(local_now.date() + timedelta(days=1), datetime.min.time(), tzinfo=tz)
        itr = croniter(to_cron(rule), start_of_tomorrow)
        occurrences.extend(itr.get_prev(datetime) for _ in range(count))

    return sorted(occurrence.astimezone(UTC) for occurrence in occurrences)


def next_occurrence_after(rule: RecurrenceRule, after: datetime, tz: tzinfo) -> datetime:
    """First occurrence strictly after ``after``, in UTC."""
    local_after = after.astimezone(tz)

    if rule.pattern == RecurringPattern.MONTHLY:
        candidate = _monthly_occurrence(rule, local_after.year, local_after.month, tz)
        if candidate <= local_after:
            year, month = _shift_month(local_after.year, local_after.month, 1)
            candidate = _monthly_occurrence(rule, year, month, tz)
        return candidate.astimezone(UTC)

    return croniter(to_cron(rule), local_after).get_next(datetime).astimezone(UTC)


def validate_lead_time(rule: RecurrenceRule, now: datetime, tz: tzinfo, min_lead_minutes: int) -> datetime:
    """Validate the rule and make sure its next occurrence is far enough away.

    Returns:
        The next occurrence (UTC)

    Raises:
        InvalidScheduleError: If the rule is malformed or the next occurrence is too soon
    """
    validate_rule(rule)
    upcoming = next_occurrence_after(rule, now, tz)
    lead = upcoming - now
    if lead < timedelta(minutes=min_lead_minutes):
        minutes = int(lead.total_seconds() // 60)
        msg = (
            f"The first recurring task would be due in {minutes} minutes. "
            f"Recurring tasks must be scheduled at least {min_lead_minutes} minutes in advance."
        )
        raise InvalidScheduleError(msg)
    return upcoming
