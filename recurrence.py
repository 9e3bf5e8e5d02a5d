from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurringFrequency

DateLike = Union[date, datetime]


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def _as_date(value: DateLike) -> date:
    # datetime subclasses date, so it has to be checked first.
    if isinstance(value, datetime):
        return value.date()
    return value


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Move ``base`` by ``months`` calendar months.

    The day of month is ``desired_day`` (default: ``base.day``), clamped to
    the last day of the target month, so Jan 31 + 1 month is Feb 28/29.
    """
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day if desired_day is not None else base.day
    return date(year, month, min(day, days_in_month(year, month)))


def occurrence(start_date: DateLike, frequency: RecurringFrequency, index: int) -> date:
    """Return the ``index``-th occurrence of a schedule (0 is ``start_date``).

    Every occurrence is computed from the start date, not from the previous
    occurrence, so month-end clamping never shifts later dates.
    """
    start = _as_date(start_date)
    frequency = RecurringFrequency(frequency)
    if frequency == RecurringFrequency.weekly:
        return start + timedelta(weeks=index)
    if frequency == RecurringFrequency.monthly:
        return add_months(start, index, desired_day=start.day)
    return add_months(start, 12 * index, desired_day=start.day)


def _first_index_estimate(
    start: date, frequency: RecurringFrequency, as_of: date
) -> int:
    if frequency == RecurringFrequency.weekly:
        return max(1, -(-(as_of - start).days // 7))
    months = (as_of.year - start.year) * 12 + as_of.month - start.month
    if frequency == RecurringFrequency.monthly:
        # Occurrence months - 1 lands in the month before as_of.
        return max(1, months)
    return max(1, months // 12)


def next_due_date(
    start_date: DateLike,
    frequency: Union[RecurringFrequency, str],
    as_of: Optional[DateLike] = None,
) -> date:
    """Next occurrence of a recurring item on or after ``as_of``.

    A start date that has not passed yet (including one equal to ``as_of``)
    is returned as is. Otherwise the result is the earliest
    ``start_date + k periods`` (k >= 1) that is not before ``as_of``.
    Raises ``ValueError`` for an unknown frequency.
    """
    frequency = RecurringFrequency(frequency)
    start = _as_date(start_date)
    target = _as_date(as_of) if as_of is not None else local_today()
    if start >= target:
        return start

    index = _first_index_estimate(start, frequency, target)
    candidate = occurrence(start, frequency, index)
    while candidate < target:
        index += 1
        candidate = occurrence(start, frequency, index)
    return candidate


def occurrences_between(
    start_date: DateLike,
    frequency: Union[RecurringFrequency, str],
    window_start: DateLike,
    window_end: DateLike,
) -> list[date]:
    frequency = RecurringFrequency(frequency)
    start = _as_date(start_date)
    end = _as_date(window_end)
    current = next_due_date(start, frequency, window_start)
    if current > end:
        return []

    dates: list[date] = []
    if current == start:
        index = 0
    else:
        index = _first_index_estimate(start, frequency, current)
        while occurrence(start, frequency, index) < current:
            index += 1
    while current <= end:
        dates.append(current)
        index += 1
        current = occurrence(start, frequency, index)
    return dates
