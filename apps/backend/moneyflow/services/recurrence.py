"""Recurrence calculator: pure date stepping for recurring rules."""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator

from moneyflow.models import RecurringFrequency


def _add_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    new_year = total // 12
    new_month = total % 12 + 1
    return new_year, new_month


def _clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def add_months(base: date, months: int) -> date:
    """Shift ``base`` by whole months, clamping to the target month's last day.

    2024-01-31 + 1 month is 2024-02-29, never 2024-03-02.
    """
    year, month = _add_month(base.year, base.month, months)
    return _clamp_day(year, month, base.day)


# Terminal cursor: a step that would leave the representable calendar lands
# here, and the series has no further occurrence.
END_OF_CALENDAR = date.max


def _step(frequency: RecurringFrequency, interval: int, from_date: date) -> date:
    if frequency == RecurringFrequency.DAILY:
        return from_date + timedelta(days=interval)
    if frequency == RecurringFrequency.WEEKLY:
        return from_date + timedelta(days=7 * interval)
    if frequency == RecurringFrequency.MONTHLY:
        return add_months(from_date, interval)
    if frequency == RecurringFrequency.YEARLY:
        return add_months(from_date, 12 * interval)
    # custom interval is a day count
    return from_date + timedelta(days=interval)


def next_occurrence(frequency: RecurringFrequency, interval: int, from_date: date) -> date:
    try:
        frequency = RecurringFrequency(frequency)
    except ValueError:
        raise ValueError(f"Invalid frequency: {frequency!r}") from None
    if from_date >= END_OF_CALENDAR:
        return END_OF_CALENDAR
    try:
        return _step(frequency, interval, from_date)
    except (OverflowError, ValueError):
        return END_OF_CALENDAR


def iter_occurrences(
    frequency: RecurringFrequency,
    interval: int,
    cursor: date,
    *,
    until: date,
    end_date: date | None = None,
) -> Iterator[date]:
    """Yield occurrences from ``cursor`` while they are <= ``until`` and <= ``end_date``."""
    limit = until if end_date is None else min(until, end_date)
    current = cursor
    while current <= limit and current != END_OF_CALENDAR:
        yield current
        current = next_occurrence(frequency, interval, current)


def first_occurrence_after(
    frequency: RecurringFrequency,
    interval: int,
    start_date: date,
    after: date | None,
) -> date:
    """First occurrence of the series anchored at ``start_date`` strictly after ``after``.

    With ``after`` unset the series' first occurrence (``start_date``) is returned.
    """
    current = start_date
    if after is None:
        return current
    while current <= after:
        current = next_occurrence(frequency, interval, current)
    return current
