"""
Recurrence Rule Resolution

Pure functions answering "when is this source due in month M / year Y".

Resolution order:
1. one_time   - only in the anchor month/year
2. monthly    - every month
3. quarterly / half_yearly / yearly / custom - when the month distance
   from the anchor is a multiple of the interval
4. the concrete day: fixed_day is clamped to the month length,
   salary_day is delegated to the payday rules of the salary profile

Results are lists (0 or 1 element for today's sources) so callers never
special-case "no due date".
"""

from datetime import date, timedelta
from typing import Optional

from obligations.errors import SalaryProfileRequired
from obligations.models.recurrence import (
    CreditCardStatement,
    DueDateType,
    Frequency,
    RecurrenceSourceBase,
)
from obligations.models.salary import SalaryProfile
from obligations.scheduling.payday import predict_payday
from obligations.utils.dates import clamp_day, month_index, prev_month

INTERVAL_MONTHS = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.HALF_YEARLY: 6,
    Frequency.YEARLY: 12,
}

MAX_CUSTOM_INTERVAL_MONTHS = 60
DEFAULT_ANCHOR_MONTH = 1


def interval_months(
    source: RecurrenceSourceBase,
    max_custom: int = MAX_CUSTOM_INTERVAL_MONTHS,
) -> int:
    """
    Months between two occurrences of `source`.

    Raises:
        ValueError: custom frequency without a 1..max_custom interval,
            or a one_time source (it has no interval)
    """
    if source.frequency == Frequency.CUSTOM:
        n = source.custom_interval_months
        if n is None or not 1 <= n <= max_custom:
            raise ValueError(
                f"Custom interval must be between 1 and {max_custom} months, got {n}"
            )
        return n
    if source.frequency == Frequency.ONE_TIME:
        raise ValueError("One-time sources have no interval")
    return INTERVAL_MONTHS[source.frequency]


def occurs_in(
    source: RecurrenceSourceBase,
    month: int,
    year: int,
    max_custom: int = MAX_CUSTOM_INTERVAL_MONTHS,
) -> bool:
    """Does `source` fall due at all in (month, year)?"""
    if source.frequency == Frequency.ONE_TIME:
        if source.start_month is None or source.start_year is None:
            raise ValueError("One-time sources need start_month and start_year")
        return (month, year) == (source.start_month, source.start_year)

    if source.frequency == Frequency.MONTHLY:
        return True

    interval = interval_months(source, max_custom)
    anchor_month = source.start_month or DEFAULT_ANCHOR_MONTH

    if source.start_year is not None:
        # Absolute counting: nothing before the anchor
        delta = month_index(month, year) - month_index(anchor_month, source.start_year)
        if delta < 0:
            return False
    else:
        if 12 % interval != 0:
            raise ValueError(
                f"An interval of {interval} months does not repeat yearly; "
                "start_year is required"
            )
        delta = month - anchor_month

    return delta % interval == 0


def due_dates_in(
    source: RecurrenceSourceBase,
    month: int,
    year: int,
    salary_profile: Optional[SalaryProfile] = None,
    max_custom: int = MAX_CUSTOM_INTERVAL_MONTHS,
) -> list[date]:
    """
    Concrete due dates of `source` within (month, year).

    Raises:
        ValueError: the rule itself is malformed
        SalaryProfileRequired: salary_day rule with no active profile
    """
    if not occurs_in(source, month, year, max_custom):
        return []

    if source.due_date_type == DueDateType.FIXED_DAY:
        if source.due_day is None:
            raise ValueError("fixed_day rules need due_day")
        return [clamp_day(year, month, source.due_day)]

    if salary_profile is None or not salary_profile.is_active:
        raise SalaryProfileRequired(
            f"'{source.name}' is due on salary day but no salary profile is set up"
        )
    return [predict_payday(salary_profile, month, year)]


def statement_window(
    source: CreditCardStatement,
    due_date: date,
) -> tuple[date, date]:
    """
    Spend window of the statement paid on `due_date`.

    The statement is the latest statement date strictly before the due
    date. Its cycle starts the day after the preceding statement date.
    """
    statement = clamp_day(due_date.year, due_date.month, source.statement_day)
    if statement >= due_date:
        m, y = prev_month(due_date.month, due_date.year)
        statement = clamp_day(y, m, source.statement_day)

    m, y = prev_month(statement.month, statement.year)
    previous_statement = clamp_day(y, m, source.statement_day)
    return previous_statement + timedelta(days=1), statement
