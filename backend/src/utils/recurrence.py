"""
Recurrence expansion for availability windows.

Turns one availability record (its first window plus a recurrence pattern)
into the concrete occurrence windows that fall inside a query window.
Each occurrence repeats the first window's time of day and length.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Tuple

from core.constants import MAX_RECURRENCE_PERIODS
from shared_types.recurrence import (
    WEEK_OF_MONTH_INDEX,
    WEEKDAY_INDEX,
    DailyRecurrence,
    EndDateRange,
    MonthlyRecurrence,
    NumberedRange,
    WeeklyRecurrence,
    YearlyRecurrence,
)

logger = logging.getLogger(__name__)

Pattern = DailyRecurrence | WeeklyRecurrence | MonthlyRecurrence | YearlyRecurrence


def _add_months(year: int, month: int, months: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _day_in_month(
    year: int,
    month: int,
    day_of_month: Optional[int],
    week_of_month: Optional[str],
    day_of_week: Optional[str],
) -> Optional[date]:
    """
    Resolve a day selector inside one month.

    Returns None when the month has no such day (e.g. the 31st of April,
    or a fifth weekday).
    """
    days_in_month = calendar.monthrange(year, month)[1]
    if day_of_month is not None:
        if day_of_month > days_in_month:
            return None
        return date(year, month, day_of_month)

    if week_of_month is None or day_of_week is None:
        return None
    target_weekday = WEEKDAY_INDEX[day_of_week]
    nth = WEEK_OF_MONTH_INDEX[week_of_month]
    if nth == -1:
        last = date(year, month, days_in_month)
        return last - timedelta(days=(last.weekday() - target_weekday) % 7)

    first = date(year, month, 1)
    first_match = first + timedelta(days=(target_weekday - first.weekday()) % 7)
    candidate = first_match + timedelta(weeks=nth - 1)
    if candidate.month != month:
        return None
    return candidate


def _iter_daily(pattern: DailyRecurrence, start: date, until: date) -> Iterator[date]:
    current = start
    while current <= until:
        yield current
        current += timedelta(days=pattern.interval)


def _iter_weekly(pattern: WeeklyRecurrence, start: date, until: date) -> Iterator[date]:
    week_start_index = WEEKDAY_INDEX[pattern.first_day_of_week]
    anchor = start - timedelta(days=(start.weekday() - week_start_index) % 7)
    # Offsets of the selected days from the start of the week, in week order
    offsets = sorted({(WEEKDAY_INDEX[d] - week_start_index) % 7 for d in pattern.days_of_week})

    week = anchor
    while week <= until:
        for offset in offsets:
            day = week + timedelta(days=offset)
            if day < start:
                continue
            if day > until:
                return
            yield day
        week += timedelta(weeks=pattern.interval)


def _iter_monthly(pattern: MonthlyRecurrence, start: date, until: date) -> Iterator[date]:
    for period in range(MAX_RECURRENCE_PERIODS):
        year, month = _add_months(start.year, start.month, period * pattern.interval)
        if date(year, month, 1) > until:
            return
        day = _day_in_month(year, month, pattern.day_of_month, pattern.week_of_month, pattern.day_of_week)
        if day is None or day < start:
            continue
        if day > until:
            return
        yield day


def _iter_yearly(pattern: YearlyRecurrence, start: date, until: date) -> Iterator[date]:
    for period in range(MAX_RECURRENCE_PERIODS):
        year = start.year + period * pattern.interval
        if date(year, pattern.month, 1) > until:
            return
        day = _day_in_month(year, pattern.month, pattern.day_of_month, pattern.week_of_month, pattern.day_of_week)
        if day is None or day < start:
            continue
        if day > until:
            return
        yield day


def iter_occurrence_dates(pattern: Pattern, start: date, until: date) -> Iterator[date]:
    """
    Yield the dates on which a pattern occurs, in ascending order.

    Occurrences are counted from ``start`` (the record's first day) and stop
    at the pattern's range policy or at ``until``, whichever comes first.

    Args:
        pattern: Parsed recurrence pattern
        start: Date of the record's first window
        until: Last date the caller is interested in (inclusive)
    """
    pattern_range = pattern.range
    if isinstance(pattern_range, EndDateRange):
        until = min(until, pattern_range.end_date)

    if isinstance(pattern, DailyRecurrence):
        dates = _iter_daily(pattern, start, until)
    elif isinstance(pattern, WeeklyRecurrence):
        dates = _iter_weekly(pattern, start, until)
    elif isinstance(pattern, MonthlyRecurrence):
        dates = _iter_monthly(pattern, start, until)
    else:
        dates = _iter_yearly(pattern, start, until)

    limit = pattern_range.number_of_occurrences if isinstance(pattern_range, NumberedRange) else None
    for count, day in enumerate(dates, start=1):
        if limit is not None and count > limit:
            return
        yield day


def expand_occurrences(
    first_start: datetime,
    first_end: datetime,
    pattern: Optional[Pattern],
    window_start: datetime,
    window_end: datetime,
) -> List[Tuple[datetime, datetime]]:
    """
    Expand a (possibly recurring) window into occurrences clipped to a query window.

    Args:
        first_start: Start of the record's first window
        first_end: End of the record's first window
        pattern: Parsed recurrence pattern, or None for a one-off window
        window_start: Query window start
        window_end: Query window end (exclusive)

    Returns:
        List of (start, end) tuples in ascending order, each clipped to
        [window_start, window_end). Empty when nothing overlaps.

    Example:
        A Monday 00:00-Tuesday 00:00 window with a weekly Monday/Wednesday
        pattern, queried over two weeks starting that Monday, yields four
        one-day occurrences.
    """
    if window_end <= window_start:
        return []

    if pattern is None:
        if first_start < window_end and window_start < first_end:
            return [(max(first_start, window_start), min(first_end, window_end))]
        return []

    duration = first_end - first_start
    time_of_day = first_start.time()
    # Occurrences on window_end.date() may still start before window_end
    until = window_end.date()

    occurrences: List[Tuple[datetime, datetime]] = []
    for day in iter_occurrence_dates(pattern, first_start.date(), until):
        occurrence_start = datetime.combine(day, time_of_day)
        occurrence_end = occurrence_start + duration
        if occurrence_start >= window_end:
            break
        if occurrence_end <= window_start:
            continue
        occurrences.append((max(occurrence_start, window_start), min(occurrence_end, window_end)))
    return occurrences
