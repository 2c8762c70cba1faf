"""Calendar helpers. Months are 1-based throughout."""

import calendar
from datetime import date, timedelta
from typing import Optional

SATURDAY = 5
SUNDAY = 6


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_day(year: int, month: int, day: int) -> date:
    """Day `day` of the month, pulled back to the month's last day if too large."""
    return date(year, month, min(day, last_day_of_month(year, month)))


def month_index(month: int, year: int) -> int:
    """Absolute month number, so two (month, year) pairs can be subtracted."""
    return year * 12 + (month - 1)


def shift_month(month: int, year: int, offset: int) -> tuple[int, int]:
    idx = month_index(month, year) + offset
    return idx % 12 + 1, idx // 12


def next_month(month: int, year: int) -> tuple[int, int]:
    return shift_month(month, year, 1)


def prev_month(month: int, year: int) -> tuple[int, int]:
    return shift_month(month, year, -1)


def add_months(d: date, months: int, day: Optional[int] = None) -> date:
    """
    Move `d` by `months` calendar months.

    The day of month is kept (or replaced by `day`) and clamped to the
    target month's length, so Jan 31 + 1 month is Feb 28/29.
    """
    month, year = shift_month(d.month, d.year, months)
    return clamp_day(year, month, day if day is not None else d.day)


def month_bounds(month: int, year: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, last_day_of_month(year, month))


def is_weekend(d: date) -> bool:
    return d.weekday() in (SATURDAY, SUNDAY)


def roll_back_to_weekday(d: date) -> date:
    while is_weekend(d):
        d -= timedelta(days=1)
    return d
