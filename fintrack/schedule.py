"""
Calendar helpers for recurring templates and the projection loop.

Day-of-week numbering follows the Sunday-first convention used by the
recurring templates: 0 = Sunday, 1 = Monday, ... 6 = Saturday.
"""

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional, Union

from fintrack.models.ledger import RecurringFrequency


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def sunday_first_weekday(day: date) -> int:
    """Python's Monday=0 weekday shifted to Sunday=0."""
    return (day.weekday() + 1) % 7


def add_months_clamped(from_date: date, months: int, anchor_day: Optional[int] = None) -> date:
    """
    Move ``months`` calendar months forward.

    Lands on ``anchor_day`` (or the from-date's own day), clamped to the
    target month's last day: anchor 31 in April gives April 30.
    """
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = anchor_day or from_date.day
    return date(year, month, min(day, days_in_month(year, month)))


def next_occurrence(
    from_date: date,
    frequency: Union[RecurringFrequency, str],
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> date:
    """
    Advance a recurring cursor by one period.

    weekly adds 7 days; monthly moves to ``day_of_month`` in the next
    month (clamped); yearly keeps month and day one year on (Feb 29
    becomes Feb 28). ``day_of_week`` is accepted for symmetry with the
    template fields; weekly templates are already anchored by their
    start date.
    """
    frequency = RecurringFrequency(frequency)

    if frequency == RecurringFrequency.WEEKLY:
        return from_date + timedelta(days=7)
    if frequency == RecurringFrequency.MONTHLY:
        return add_months_clamped(from_date, 1, day_of_month)
    return add_months_clamped(from_date, 12)


def first_occurrence(
    start_date: date,
    frequency: Union[RecurringFrequency, str],
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> date:
    """
    First date on or after ``start_date`` that matches the template anchor.

    Used when a template is registered; generation then walks forward
    with :func:`next_occurrence`.
    """
    frequency = RecurringFrequency(frequency)

    if frequency == RecurringFrequency.WEEKLY and day_of_week is not None:
        offset = (day_of_week - sunday_first_weekday(start_date)) % 7
        return start_date + timedelta(days=offset)
    if frequency == RecurringFrequency.MONTHLY and day_of_month:
        candidate = add_months_clamped(start_date, 0, day_of_month)
        if candidate < start_date:
            candidate = add_months_clamped(start_date, 1, day_of_month)
        return candidate
    return start_date


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day from ``start`` to ``end`` inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
