"""
Pure scheduling rules.

Nothing in this package touches storage or the system clock directly;
every function is date and decimal arithmetic over its arguments.
"""

from obligations.scheduling.amortization import (
    AmortizationEngine,
    build_installments,
    emi_for,
    first_period_interest,
    monthly_rate,
    tenure_for,
    verify_closure,
)
from obligations.scheduling.payday import (
    PaydayPredictor,
    last_working_day,
    nth_weekday,
    predict_payday,
)
from obligations.scheduling.premiums import expand_premiums, term_spacing_months
from obligations.scheduling.recurrence import (
    INTERVAL_MONTHS,
    MAX_CUSTOM_INTERVAL_MONTHS,
    due_dates_in,
    interval_months,
    occurs_in,
    statement_window,
)

__all__ = [
    "AmortizationEngine",
    "build_installments",
    "emi_for",
    "first_period_interest",
    "monthly_rate",
    "tenure_for",
    "verify_closure",
    "PaydayPredictor",
    "last_working_day",
    "nth_weekday",
    "predict_payday",
    "expand_premiums",
    "term_spacing_months",
    "INTERVAL_MONTHS",
    "MAX_CUSTOM_INTERVAL_MONTHS",
    "due_dates_in",
    "interval_months",
    "occurs_in",
    "statement_window",
]
