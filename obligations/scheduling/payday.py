"""
Payday Prediction

Turns a SalaryProfile rule into calendar dates.

- fixed_day: the given day, clamped to the month length (optionally
  rolled back to the preceding Friday when it lands on a weekend)
- last_working_day: last calendar day, walked back over Sat/Sun.
  There is no holiday calendar.
- nth_weekday: the first matching weekday unless another ordinal is
  configured (ordinal 5 means the last one in the month)
"""

from datetime import date, timedelta
from typing import Optional

from obligations.models.salary import LAST_ORDINAL, PaydayRule, SalaryProfile
from obligations.services.clock import Clock, SystemClock
from obligations.utils.dates import (
    clamp_day,
    last_day_of_month,
    next_month,
    prev_month,
    roll_back_to_weekday,
    shift_month,
)


def last_working_day(year: int, month: int) -> date:
    return roll_back_to_weekday(date(year, month, last_day_of_month(year, month)))


def nth_weekday(year: int, month: int, weekday: int, ordinal: int = 1) -> date:
    """The `ordinal`-th `weekday` (0 = Monday) of the month."""
    if ordinal == LAST_ORDINAL:
        d = date(year, month, last_day_of_month(year, month))
        return d - timedelta(days=(d.weekday() - weekday) % 7)
    first = date(year, month, 1)
    first_match = first + timedelta(days=(weekday - first.weekday()) % 7)
    return first_match + timedelta(weeks=ordinal - 1)


def predict_payday(profile: SalaryProfile, month: int, year: int) -> date:
    """
    Predicted payday for (month, year).

    Raises:
        ValueError: the rule is missing the field it needs
    """
    if profile.payday_rule == PaydayRule.FIXED_DAY:
        if profile.fixed_day is None:
            raise ValueError("fixed_day payday rule needs fixed_day")
        payday = clamp_day(year, month, profile.fixed_day)
        if profile.roll_back_from_weekend:
            payday = roll_back_to_weekday(payday)
        return payday

    if profile.payday_rule == PaydayRule.NTH_WEEKDAY:
        if profile.weekday_preference is None:
            raise ValueError("nth_weekday payday rule needs weekday_preference")
        return nth_weekday(year, month, profile.weekday_preference, profile.weekday_ordinal)

    return last_working_day(year, month)


class PaydayPredictor:
    """
    Payday lookups relative to "today".

    The clock is injected; nothing here reads the system date directly.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        upcoming_count: int = 6,
        past_count: int = 3,
    ):
        self._clock = clock or SystemClock()
        self._upcoming_count = upcoming_count
        self._past_count = past_count

    def predict(self, profile: SalaryProfile, month: int, year: int) -> date:
        return predict_payday(profile, month, year)

    def next_paydays(
        self,
        profile: SalaryProfile,
        count: Optional[int] = None,
    ) -> list[date]:
        """
        `count` consecutive paydays starting with the current month's.

        The current month is included even if its payday has passed.
        """
        today = self._clock.today()
        count = count if count is not None else self._upcoming_count
        return [
            predict_payday(profile, *shift_month(today.month, today.year, offset))
            for offset in range(count)
        ]

    def past_paydays(
        self,
        profile: SalaryProfile,
        count: Optional[int] = None,
    ) -> list[date]:
        """Paydays of the previous `count` months, most recent first."""
        today = self._clock.today()
        count = count if count is not None else self._past_count
        return [
            predict_payday(profile, *shift_month(today.month, today.year, -offset))
            for offset in range(1, count + 1)
        ]

    def cycle_window(
        self,
        profile: SalaryProfile,
        today: Optional[date] = None,
        last_actual_pay_date: Optional[date] = None,
    ) -> tuple[date, date]:
        """
        The salary cycle containing `today` as (first day, last day).

        A cycle runs from one payday up to the day before the next.
        A recorded actual pay date replaces the predicted start when
        today falls between it and the following predicted payday.
        """
        today = today or self._clock.today()

        if last_actual_pay_date is not None and last_actual_pay_date <= today:
            following = predict_payday(
                profile, *next_month(last_actual_pay_date.month, last_actual_pay_date.year)
            )
            if today < following:
                return last_actual_pay_date, following - timedelta(days=1)

        this_payday = predict_payday(profile, today.month, today.year)
        if today >= this_payday:
            following = predict_payday(profile, *next_month(today.month, today.year))
            return this_payday, following - timedelta(days=1)

        previous = predict_payday(profile, *prev_month(today.month, today.year))
        return previous, this_payday - timedelta(days=1)
