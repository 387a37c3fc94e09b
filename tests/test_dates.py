"""Tests for natural-language date resolution."""

from __future__ import annotations

import os
import time
from datetime import date, datetime, timezone

import pytest

from mnemosync.parsers.dates import add_months, resolve, resolve_detailed


@pytest.fixture
def new_york_time():
    """Run the test with the process timezone set to America/New_York."""
    previous = os.environ.get("TZ")
    os.environ["TZ"] = "America/New_York"
    time.tzset()
    yield
    if previous is None:
        os.environ.pop("TZ", None)
    else:
        os.environ["TZ"] = previous
    time.tzset()


# =============================================================================
# Relative Phrases
# =============================================================================


class TestRelativePhrases:
    """Tests for today / tomorrow / next week style phrases."""

    @pytest.mark.parametrize(
        ("phrase", "expected", "rule"),
        [
            ("today", date(2026, 2, 15), "today"),
            ("tonight at seven", date(2026, 2, 15), "today"),
            ("tomorrow", date(2026, 2, 16), "tomorrow"),
            ("TOMORROW morning", date(2026, 2, 16), "tomorrow"),
            ("the day after tomorrow", date(2026, 2, 17), "day_after_tomorrow"),
            ("next week", date(2026, 2, 22), "next_week"),
            ("next month", date(2026, 3, 15), "next_month"),
        ],
    )
    def test_relative_phrases(self, reference_date: date, phrase: str, expected: date, rule: str) -> None:
        """Test each relative phrase resolves against the reference date."""
        resolved = resolve_detailed(phrase, reference_date)

        assert resolved.date == expected
        assert resolved.rule == rule
        assert resolved.confident

    def test_earlier_rule_wins(self, reference_date: date) -> None:
        """Test that "tomorrow" outranks "next week" in the same phrase."""
        assert resolve("tomorrow or next week", reference_date) == date(2026, 2, 16)

    def test_accepts_datetime_reference(self) -> None:
        """Test a datetime reference uses its calendar date."""
        assert resolve("tomorrow", datetime(2026, 2, 15, 23, 59)) == date(2026, 2, 16)

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")
    def test_aware_reference_uses_local_calendar(self, new_york_time) -> None:
        """Test 03:00 UTC on Feb 16 is still the evening of Feb 15 in New York."""
        spoken_at = datetime(2026, 2, 16, 3, 0, tzinfo=timezone.utc)

        assert resolve("today", spoken_at) == date(2026, 2, 15)
        assert resolve("tomorrow", spoken_at) == date(2026, 2, 16)


class TestAddMonths:
    """Tests for calendar month arithmetic."""

    def test_clamps_to_month_end(self) -> None:
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)

    def test_leap_year(self) -> None:
        assert add_months(date(2028, 1, 31), 1) == date(2028, 2, 29)

    def test_rolls_over_year(self) -> None:
        assert add_months(date(2026, 12, 15), 1) == date(2027, 1, 15)

    def test_next_month_from_month_end(self) -> None:
        """Test "next month" on Jan 31 lands on the last day of February."""
        assert resolve("next month", date(2026, 1, 31)) == date(2026, 2, 28)


# =============================================================================
# Weekdays
# =============================================================================


class TestWeekdays:
    """Tests for weekday names (reference date is a Sunday)."""

    def test_next_occurrence(self, reference_date: date) -> None:
        assert resolve("Monday", reference_date) == date(2026, 2, 16)
        assert resolve("see the doctor on Friday", reference_date) == date(2026, 2, 20)

    def test_same_weekday_is_next_week(self, reference_date: date) -> None:
        """Test a weekday never resolves to the reference date itself."""
        assert resolve("Sunday", reference_date) == date(2026, 2, 22)

    def test_next_prefix(self, reference_date: date) -> None:
        resolved = resolve_detailed("next Monday", reference_date)

        assert resolved.date == date(2026, 2, 16)
        assert resolved.rule == "weekday"


# =============================================================================
# Month and Day
# =============================================================================


class TestMonthDay:
    """Tests for explicit month/day mentions."""

    @pytest.mark.parametrize(
        ("phrase", "expected"),
        [
            ("Dentist on Feb 16", date(2026, 2, 16)),
            ("February 20th", date(2026, 2, 20)),
            ("the 16th of March", date(2026, 3, 16)),
            ("3rd April", date(2026, 4, 3)),
            ("sept 5", date(2026, 9, 5)),
        ],
    )
    def test_current_year(self, reference_date: date, phrase: str, expected: date) -> None:
        resolved = resolve_detailed(phrase, reference_date)

        assert resolved.date == expected
        assert resolved.rule == "month_day"

    def test_past_date_rolls_to_next_year(self, reference_date: date) -> None:
        assert resolve("Feb 10", reference_date) == date(2027, 2, 10)

    def test_reference_day_stays_this_year(self, reference_date: date) -> None:
        """Test that a date equal to the reference date is not rolled."""
        assert resolve("February 15", reference_date) == date(2026, 2, 15)


# =============================================================================
# Generic and Fallback
# =============================================================================


class TestGenericAndFallback:
    """Tests for the dateutil rule and the unconfident fallback."""

    def test_iso_date(self, reference_date: date) -> None:
        resolved = resolve_detailed("2026-03-01", reference_date)

        assert resolved.date == date(2026, 3, 1)
        assert resolved.rule == "generic"
        assert resolved.confident

    def test_unparseable_falls_back_to_reference(self, reference_date: date) -> None:
        resolved = resolve_detailed("sometime soon", reference_date)

        assert resolved.date == reference_date
        assert resolved.rule == "fallback"
        assert resolved.confident is False

    def test_impossible_date_falls_back(self, reference_date: date) -> None:
        """Test "Feb 30" never produces an invalid date."""
        resolved = resolve_detailed("Feb 30", reference_date)

        assert resolved.date == reference_date
        assert resolved.confident is False

    def test_empty_text(self, reference_date: date) -> None:
        assert resolve("", reference_date) == reference_date
