"""Tests for recurrence rules and occurrence arithmetic."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from src.core.errors import InvalidScheduleError
from src.core.recurrence import (
    RecurrenceRule,
    current_period_occurrences,
    describe,
    next_occurrence_after,
    to_cron,
    validate_lead_time,
    validate_rule,
)
from src.domain.task import RecurringPattern


@pytest.mark.unit
class TestValidateRule:
    """Test rule completeness checks."""

    def test_daily_rule_is_valid(self):
        validate_rule(RecurrenceRule(pattern=RecurringPattern.DAILY, time="07:30"))

    @pytest.mark.parametrize("time", ["7:30", "24:00", "12:60", "noon"])
    def test_bad_time_format(self, time):
        with pytest.raises(InvalidScheduleError, match="HH:MM"):
            validate_rule(RecurrenceRule(pattern=RecurringPattern.DAILY, time=time))

    def test_weekly_requires_days(self):
        with pytest.raises(InvalidScheduleError, match="day of the week"):
            validate_rule(RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="09:00"))

    def test_weekly_day_out_of_range(self):
        with pytest.raises(InvalidScheduleError, match="between 0"):
            validate_rule(RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="09:00", days=[7]))

    @pytest.mark.parametrize("day_of_month", [None, 0, 32])
    def test_monthly_requires_valid_day(self, day_of_month):
        with pytest.raises(InvalidScheduleError, match="day of the month"):
            validate_rule(RecurrenceRule(pattern=RecurringPattern.MONTHLY, time="09:00", day_of_month=day_of_month))


@pytest.mark.unit
class TestCronAndDescribe:
    def test_weekly_cron_uses_sunday_based_weekdays(self):
        rule = RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="18:05", days=[6, 0])
        assert to_cron(rule) == "5 18 * * 0,1"

    def test_weekly_cron_drops_duplicate_days(self):
        rule = RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="07:30", days=[5, 2, 2])
        assert to_cron(rule) == "30 7 * * 3,6"

    def test_monthly_cron(self):
        rule = RecurrenceRule(pattern=RecurringPattern.MONTHLY, time="08:00", day_of_month=15)
        assert to_cron(rule) == "0 8 15 * *"

    def test_describe(self):
        assert describe(RecurrenceRule(pattern=RecurringPattern.DAILY, time="00:00")) == "daily at midnight"
        assert (
            describe(RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="09:00", days=[4, 0]))
            == "every Monday, Friday at 9:00 AM"
        )
        assert (
            describe(RecurrenceRule(pattern=RecurringPattern.MONTHLY, time="15:30", day_of_month=22))
            == "monthly on the 22nd at 3:30 PM"
        )


@pytest.mark.unit
class TestOccurrences:
    """Test current-period and next occurrence computation."""

    def test_daily_current_period_includes_later_today(self):
        rule = RecurrenceRule(pattern=RecurringPattern.DAILY, time="09:00")
        now = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

        occurrences = current_period_occurrences(rule, now, UTC, count=2)

        assert occurrences == [datetime(2026, 3, 1, 9, 0, tzinfo=UTC), datetime(2026, 3, 2, 9, 0, tzinfo=UTC)]

    def test_weekly_current_period_skips_other_days(self):
        # 2026-03-04 is a Wednesday; the rule only fires on Mondays
        rule = RecurrenceRule(pattern=RecurringPattern.WEEKLY, time="09:00", days=[0])
        now = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)

        occurrences = current_period_occurrences(rule, now, UTC, count=2)

        assert occurrences == [datetime(2026, 2, 23, 9, 0, tzinfo=UTC), datetime(2026, 3, 2, 9, 0, tzinfo=UTC)]

    def test_monthly_clamps_to_month_length(self):
        rule = RecurrenceRule(pattern=RecurringPattern.MONTHLY, time="10:00", day_of_month=31)
        now = datetime(2026, 3, 5, tzinfo=UTC)

        occurrences = current_period_occurrences(rule, now, UTC, count=2)

        assert occurrences == [datetime(2026, 2, 28, 10, 0, tzinfo=UTC), datetime(2026, 3, 31, 10, 0, tzinfo=UTC)]

    def test_occurrences_follow_household_timezone(self):
        rule = RecurrenceRule(pattern=RecurringPattern.DAILY, time="09:00")
        tz = ZoneInfo("America/New_York")
        now = datetime(2026, 7, 1, 12, 0, tzinfo=UTC)

        occurrences = current_period_occurrences(rule, now, tz, count=1)

        # 09:00 EDT is 13:00 UTC
        assert occurrences == [datetime(2026, 7, 1, 13, 0, tzinfo=UTC)]

    def test_next_occurrence_is_strictly_after(self):
        rule = RecurrenceRule(pattern=RecurringPattern.DAILY, time="09:00")
        after = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

        assert next_occurrence_after(rule, after, UTC) == datetime(2026, 3, 3, 9, 0, tzinfo=UTC)

    def test_next_monthly_occurrence_rolls_over(self):
        rule = RecurrenceRule(pattern=RecurringPattern.MONTHLY, time="09:00", day_of_month=1)
        after = datetime(2026, 12, 1, 9, 0, tzinfo=UTC)

        assert next_occurrence_after(rule, after, UTC) == datetime(2027, 1, 1, 9, 0, tzinfo=UTC)


@pytest.mark.unit
class TestLeadTime:
    def test_next_occurrence_too_soon(self):
        rule = RecurrenceRule(pattern=RecurringPattern.DAILY, time="09:00")
        now = datetime(2026, 3, 2, 8, 45, tzinfo=UTC)

        with pytest.raises(InvalidScheduleError, match="at least 30 minutes"):
            validate_lead_time(rule, now, UTC, min_lead_minutes=30)

    def test_returns_next_occurrence(self):
        rule = RecurrenceRule(pattern=RecurringPattern.DAILY, time="09:00")
        now = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

        assert validate_lead_time(rule, now, UTC, min_lead_minutes=30) == datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
