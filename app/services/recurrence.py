"""Date arithmetic for recurring appointment series."""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import TypeVar

from app.schemas.appointments import RecurrenceFrequency

DateT = TypeVar("DateT", date, datetime)

_DAY_STEPS = {
    RecurrenceFrequency.WEEKLY: 7,
    RecurrenceFrequency.BIWEEKLY: 14,
}

_MONTH_STEPS = {
    RecurrenceFrequency.MONTHLY: 1,
    RecurrenceFrequency.QUARTERLY: 3,
    RecurrenceFrequency.YEARLY: 12,
}

# Order matters: "biweekly" also contains "weekly"
_FREQUENCY_PATTERNS: list[tuple[RecurrenceFrequency, re.Pattern[str]]] = [
    (
        RecurrenceFrequency.BIWEEKLY,
        re.compile(r"biweekly|bi-weekly|every two weeks|every 2 weeks", re.IGNORECASE),
    ),
    (RecurrenceFrequency.WEEKLY, re.compile(r"weekly|every week|each week", re.IGNORECASE)),
    (RecurrenceFrequency.MONTHLY, re.compile(r"monthly|every month|each month", re.IGNORECASE)),
    (
        RecurrenceFrequency.QUARTERLY,
        re.compile(r"quarterly|every quarter|every 3 months", re.IGNORECASE),
    ),
    (
        RecurrenceFrequency.YEARLY,
        re.compile(r"yearly|annually|every year|each year", re.IGNORECASE),
    ),
]

_RECURRING_MARKER = re.compile(r"recur", re.IGNORECASE)


def add_months(value: DateT, months: int) -> DateT:
    """
    Shift a date by whole calendar months.

    The day of month is kept when the target month has it and clamped to the
    target month's last day otherwise (Jan 31 + 1 month = Feb 28/29).

    Args:
        value: Date or datetime to shift
        months: Number of months, may be negative

    Returns:
        Shifted value of the same type
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def next_date(last_date: DateT, frequency: RecurrenceFrequency | str) -> DateT:
    """
    Compute the next occurrence of a series.

    Args:
        last_date: Date of the previous occurrence. Datetimes keep their time.
        frequency: Series frequency

    Returns:
        Date of the next occurrence
    """
    frequency = RecurrenceFrequency(frequency)
    if frequency in _DAY_STEPS:
        return last_date + timedelta(days=_DAY_STEPS[frequency])
    return add_months(last_date, _MONTH_STEPS[frequency])


def extract_frequency_from_notes(notes: str | None) -> RecurrenceFrequency | None:
    """Guess a series frequency from free-text appointment notes."""
    if not notes:
        return None
    for frequency, pattern in _FREQUENCY_PATTERNS:
        if pattern.search(notes):
            return frequency
    return None


def looks_recurring(notes: str | None) -> bool:
    """Whether free-text notes mark an appointment as part of a series."""
    return bool(notes) and _RECURRING_MARKER.search(notes) is not None
