"""
Next-occurrence calculation for recurrence rules.

Everything here is a pure function of its arguments. The current date is never
read from the clock; callers that need a fallback anchor pass `today`.
"""
from datetime import date, timedelta
from typing import Optional, Tuple

from board_recurrence.dates import (
    DateLike,
    add_months,
    add_years,
    as_date,
    days_in_month,
    nth_weekday_of_month,
    start_of_week,
    sunday_weekday,
)
from board_recurrence.domain.rule import (
    DailyPattern,
    MonthlyByDayPattern,
    MonthlyByWeekPattern,
    RecurrenceRule,
    WeeklyPattern,
    YearlyPattern,
)


def select_anchor(
    due_date: Optional[DateLike],
    last_recurrence: Optional[DateLike],
    today: Optional[DateLike] = None,
) -> date:
    """
    Pick the date a next-occurrence search starts from.

    The later of last_recurrence and due_date wins when both exist, so the
    result of a search is never on or before either of them.

    Raises:
        ValueError: If no date at all is available.
    """
    candidates = [as_date(d) for d in (last_recurrence, due_date) if d is not None]
    if candidates:
        return max(candidates)
    if today is None:
        raise ValueError("A series without a due date or last recurrence needs an explicit today")
    return as_date(today)


def _next_weekly(anchor: date, interval: int, days_of_week: Tuple[int, ...]) -> date:
    anchor_weekday = sunday_weekday(anchor)
    for day in days_of_week:
        if day > anchor_weekday:
            return anchor + timedelta(days=day - anchor_weekday)
    # Crossing into a later week skips interval - 1 whole weeks.
    week_start = start_of_week(anchor) + timedelta(weeks=interval)
    return week_start + timedelta(days=days_of_week[0])


def _next_monthly_by_day(anchor: date, interval: int, day_of_month: int) -> date:
    target = add_months(anchor, interval)
    day = min(day_of_month, days_in_month(target.year, target.month))
    return target.replace(day=day)


def _next_monthly_by_week(anchor: date, interval: int, week_of_month: int, day_of_week: int) -> date:
    target = add_months(anchor, interval)
    return nth_weekday_of_month(target.year, target.month, day_of_week, week_of_month)


def next_occurrence(
    rule: RecurrenceRule,
    due_date: Optional[DateLike] = None,
    last_recurrence: Optional[DateLike] = None,
    today: Optional[DateLike] = None,
) -> Optional[date]:
    """
    Compute the next occurrence of a series, strictly after its anchor.

    End conditions are not applied here; the series controller owns them.

    Args:
        rule: The series' recurrence rule.
        due_date: The template's due date.
        last_recurrence: The due date of the most recently fired occurrence.
        today: Anchor used when neither date is known.

    Returns:
        The next occurrence date, or None if the rule has no next occurrence,
        which includes occurrences past the last representable date.
    """
    anchor = select_anchor(due_date, last_recurrence, today)
    try:
        return _advance(rule, anchor)
    except (OverflowError, ValueError):
        return None


def _advance(rule: RecurrenceRule, anchor: date) -> date:
    pattern = rule.pattern
    interval = rule.interval

    if isinstance(pattern, DailyPattern):
        return anchor + timedelta(days=interval)
    elif isinstance(pattern, WeeklyPattern):
        return _next_weekly(anchor, interval, pattern.days_of_week)
    elif isinstance(pattern, MonthlyByDayPattern):
        return _next_monthly_by_day(anchor, interval, pattern.day_of_month)
    elif isinstance(pattern, MonthlyByWeekPattern):
        return _next_monthly_by_week(anchor, interval, pattern.week_of_month, pattern.day_of_week)
    elif isinstance(pattern, YearlyPattern):
        return add_years(anchor, interval)
    else:
        raise TypeError(f"Unsupported recurrence pattern: {type(pattern).__name__}")


def next_occurrence_on_or_after(
    rule: RecurrenceRule,
    due_date: Optional[DateLike],
    last_recurrence: Optional[DateLike],
    not_before: DateLike,
) -> Optional[date]:
    """
    Like `next_occurrence`, but skip occurrences that fall before `not_before`.

    Used to catch a stale series up to the present without firing every missed
    occurrence.
    """
    not_before = as_date(not_before)
    candidate = next_occurrence(rule, due_date, last_recurrence, today=not_before)
    while candidate is not None and candidate < not_before:
        candidate = next_occurrence(rule, None, candidate)
    return candidate
