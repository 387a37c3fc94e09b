"""Natural-language date resolution.

Turns the short date phrases found in conversations ("tomorrow", "next
Monday", "Feb 16", "the 3rd of March") into concrete calendar dates relative
to a reference moment.

Resolution order (first match wins):

1. "today" / "tonight"
2. "day after tomorrow"
3. "tomorrow"
4. "next week" (+7 days)
5. "next month" (calendar month, day clamped to the month's last day)
6. Weekday name (next occurrence, never today)
7. "Month Day" or "Day Month", rolled to next year when already past
8. Anything python-dateutil can parse
9. Fallback: the reference date, flagged as not confident

Example:
    >>> from datetime import date
    >>> resolve("tomorrow", date(2026, 2, 15))
    datetime.date(2026, 2, 16)
    >>> resolve_detailed("sometime soon", date(2026, 2, 15)).confident
    False
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dateutil import parser as dt_parser
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


# =============================================================================
# Vocabulary
# =============================================================================

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

# Full names and common abbreviations ("sept") all start with the 3-letter key
MONTH_NAME = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sept?(?:ember)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
ORDINAL = r"(?:st|nd|rd|th)?"

_TODAY = re.compile(r"\b(?:today|tonight)\b", re.IGNORECASE)
_DAY_AFTER_TOMORROW = re.compile(r"\bday\s+after\s+tomorrow\b", re.IGNORECASE)
_TOMORROW = re.compile(r"\btomorrow\b", re.IGNORECASE)
_NEXT_WEEK = re.compile(r"\bnext\s+week\b", re.IGNORECASE)
_NEXT_MONTH = re.compile(r"\bnext\s+month\b", re.IGNORECASE)
_WEEKDAY = re.compile(r"\b(" + "|".join(WEEKDAYS) + r")\b", re.IGNORECASE)
_MONTH_DAY = re.compile(
    r"\b(" + MONTH_NAME + r")\.?\s+(\d{1,2})" + ORDINAL + r"\b",
    re.IGNORECASE,
)
_DAY_MONTH = re.compile(
    r"\b(\d{1,2})" + ORDINAL + r"\s+(?:of\s+)?(" + MONTH_NAME + r")\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ResolvedDate:
    """Outcome of resolving a phrase.

    Attributes:
        date: The concrete date.
        rule: Name of the rule that produced it.
        confident: False only when nothing matched and the reference date
            was used as a fallback.
    """

    date: date
    rule: str
    confident: bool = True


def _as_date(reference_now: date | datetime) -> date:
    if isinstance(reference_now, datetime):
        # aware moments count on the local calendar; naive ones are taken as local already
        if reference_now.tzinfo is not None:
            reference_now = reference_now.astimezone()
        return reference_now.date()
    return reference_now


def add_months(day: date, months: int) -> date:
    """Add calendar months, clamping the day to the target month's length.

    Example:
        >>> add_months(date(2026, 1, 31), 1)
        datetime.date(2026, 2, 28)
    """
    return day + relativedelta(months=months)


def _month_number(token: str) -> int:
    return MONTHS[token.lower()[:3]]


def _month_day(text: str, today: date) -> date | None:
    """Resolve "Feb 16" / "16th of February" in the current or next year."""
    candidates: list[tuple[int, int]] = []

    match = _MONTH_DAY.search(text)
    if match:
        candidates.append((_month_number(match.group(1)), int(match.group(2))))
    match = _DAY_MONTH.search(text)
    if match:
        candidates.append((_month_number(match.group(2)), int(match.group(1))))

    for month, day in candidates:
        try:
            resolved = date(today.year, month, day)
        except ValueError:
            # "Feb 30" - try the other ordering, then the generic rule
            continue
        if resolved < today:
            try:
                resolved = resolved.replace(year=today.year + 1)
            except ValueError:
                # Feb 29 with no leap day next year
                continue
        return resolved
    return None


def _generic(text: str, reference: date) -> date | None:
    default = datetime(reference.year, reference.month, reference.day)
    try:
        return dt_parser.parse(text, default=default).date()
    except (ValueError, OverflowError):
        return None


def resolve_detailed(text: str, reference_now: date | datetime) -> ResolvedDate:
    """Resolve a date phrase and report which rule matched.

    Args:
        text: Free-text phrase, e.g. "dentist on Friday".
        reference_now: The moment the phrase was spoken.

    Returns:
        ResolvedDate. Never raises.
    """
    today = _as_date(reference_now)

    if _TODAY.search(text):
        return ResolvedDate(today, "today")
    if _DAY_AFTER_TOMORROW.search(text):
        return ResolvedDate(today + timedelta(days=2), "day_after_tomorrow")
    if _TOMORROW.search(text):
        return ResolvedDate(today + timedelta(days=1), "tomorrow")
    if _NEXT_WEEK.search(text):
        return ResolvedDate(today + timedelta(days=7), "next_week")
    if _NEXT_MONTH.search(text):
        return ResolvedDate(add_months(today, 1), "next_month")

    match = _WEEKDAY.search(text)
    if match:
        days_until = WEEKDAYS.index(match.group(1).lower()) - today.weekday()
        if days_until <= 0:
            days_until += 7
        return ResolvedDate(today + timedelta(days=days_until), "weekday")

    resolved = _month_day(text, today)
    if resolved is not None:
        return ResolvedDate(resolved, "month_day")

    resolved = _generic(text, today)
    if resolved is not None:
        return ResolvedDate(resolved, "generic")

    logger.debug("No date rule matched; falling back to reference date")
    return ResolvedDate(today, "fallback", confident=False)


def resolve(text: str, reference_now: date | datetime) -> date:
    """Resolve a date phrase to a concrete date. See module docstring."""
    return resolve_detailed(text, reference_now).date
