import calendar
from datetime import date, datetime, timedelta
from typing import Union

from dateutil.relativedelta import relativedelta

DateLike = Union[date, datetime]


def as_date(value: DateLike) -> date:
    """
    Truncate a datetime to its calendar date; dates pass through unchanged.
    """
    if isinstance(value, datetime):
        return value.date()
    return value


def sunday_weekday(day: date) -> int:
    """
    Weekday index with 0=Sunday..6=Saturday, the numbering the task board uses.
    """
    return (day.weekday() + 1) % 7


def start_of_week(day: date) -> date:
    return day - timedelta(days=sunday_weekday(day))


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(day: date, months: int) -> date:
    # relativedelta clamps the day to the end of a shorter month
    return day + relativedelta(months=months)


def add_years(day: date, years: int) -> date:
    # Feb 29 clamps to Feb 28 in non-leap years
    return day + relativedelta(years=years)


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    """
    Return the nth occurrence (1-4) of a Sunday-based weekday in a month.
    Any n of 5 or more selects the last occurrence.
    """
    first = date(year, month, 1)
    first_match = first + timedelta(days=(weekday - sunday_weekday(first)) % 7)
    if n < 5:
        return first_match + timedelta(weeks=n - 1)
    last_day = days_in_month(year, month)
    weeks_remaining = (last_day - first_match.day) // 7
    return first_match + timedelta(weeks=weeks_remaining)
