"""Insurance premium expansion into dated terms."""

from obligations.models.insurance import Insurance, InsurancePremium
from obligations.utils.dates import add_months
from obligations.utils.money import to_money


def term_spacing_months(policy: Insurance) -> int:
    """
    Months between two terms of the same period.

    Raises:
        ValueError: terms_per_period does not divide the period evenly
    """
    if policy.period_months % policy.terms_per_period != 0:
        raise ValueError(
            f"{policy.terms_per_period} terms do not divide a "
            f"{policy.period_months}-month premium period"
        )
    return policy.period_months // policy.terms_per_period


def expand_premiums(policy: Insurance) -> list[InsurancePremium]:
    """
    One InsurancePremium per term over the premium payment term.

    Each term is premium / terms_per_period; the last term of a period
    absorbs the rounding residue so every period sums to the premium.
    Due dates keep the day of `start_date`, clamped per month.
    """
    spacing = term_spacing_months(policy)
    terms = policy.terms_per_period
    periods = policy.payment_years * 12 // policy.period_months

    base = to_money(policy.premium_amount / terms)
    last = policy.premium_amount - base * (terms - 1)

    premiums = []
    for period in range(periods):
        period_offset = period * policy.period_months
        period_start = add_months(policy.start_date, period_offset)
        for term in range(terms):
            premiums.append(InsurancePremium(
                insurance_id=policy.id,
                period_number=period + 1,
                period_year=period_start.year,
                term_number=term + 1,
                due_date=add_months(policy.start_date, period_offset + term * spacing),
                amount=last if term == terms - 1 else base,
            ))
    return premiums
