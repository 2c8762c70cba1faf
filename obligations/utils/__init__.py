"""Shared date and money helpers."""

from obligations.utils.dates import (
    add_months,
    clamp_day,
    is_weekend,
    last_day_of_month,
    month_bounds,
    month_index,
    next_month,
    prev_month,
    roll_back_to_weekday,
    shift_month,
)
from obligations.utils.money import CENT, ZERO, Money, to_money

__all__ = [
    "add_months",
    "clamp_day",
    "is_weekend",
    "last_day_of_month",
    "month_bounds",
    "month_index",
    "next_month",
    "prev_month",
    "roll_back_to_weekday",
    "shift_month",
    "CENT",
    "ZERO",
    "Money",
    "to_money",
]
