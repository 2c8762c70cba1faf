"""
Reducing-Balance EMI Amortization

For installment i:

    interest_i    = outstanding_(i-1) * monthly_rate
    principal_i   = emi - interest_i
    outstanding_i = outstanding_(i-1) - principal_i

with monthly_rate = annual_rate / 12 / 100. Interest is rounded to the
paisa every period and computed EMIs are rounded up, never down. The
final installment absorbs a rounding residue of up to the tolerance so
a schedule closes at exactly zero. Anything larger means the EMI cannot
repay the balance within the tenure.

Input sanity (tenure > 0, rate >= 0, EMI above the first period's
interest, EMI matching the tenure) is the validator's job. If a schedule
that slipped past it does not close, AmortizationInvariantViolation is
raised - that is a bug, not user error.
"""

from datetime import date
from decimal import ROUND_CEILING, Decimal, getcontext
from typing import Optional
from uuid import UUID

from obligations.errors import AmortizationInvariantViolation
from obligations.models.loan import Loan, LoanInstallment, LoanTerm
from obligations.utils.dates import add_months, month_index
from obligations.utils.money import ZERO, to_money

getcontext().prec = 28  # increase precision for financial calculations

DEFAULT_TOLERANCE = Decimal("1.00")
MAX_TENURE_MONTHS = 1200


def monthly_rate(annual_rate: Decimal) -> Decimal:
    return Decimal(annual_rate) / Decimal(12) / Decimal(100)


def first_period_interest(outstanding: Decimal, annual_rate: Decimal) -> Decimal:
    return to_money(outstanding * monthly_rate(annual_rate))


def emi_for(principal: Decimal, annual_rate: Decimal, tenure_months: int) -> Decimal:
    """Return the equal monthly installment for a loan.

    The formula is:

        emi = P * i * (1 + i)^n / ((1 + i)^n - 1)

    When the rate is zero the EMI is simply P / n. The result is rounded
    up to the paisa so the schedule never falls short over long tenures.
    """
    if tenure_months <= 0:
        raise ValueError("Tenure must be positive")
    rate = monthly_rate(annual_rate)
    if rate == 0:
        return to_money(principal / Decimal(tenure_months), rounding=ROUND_CEILING)
    factor = (1 + rate) ** tenure_months
    return to_money(principal * rate * factor / (factor - 1), rounding=ROUND_CEILING)


def tenure_for(
    outstanding: Decimal,
    annual_rate: Decimal,
    emi: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> int:
    """Number of installments `emi` needs to clear `outstanding`.

    A final balance within `tolerance` is left for the last installment
    to absorb, matching build_installments.
    """
    rate = monthly_rate(annual_rate)
    balance = outstanding
    months = 0
    while balance > tolerance:
        principal = emi - to_money(balance * rate)
        if principal <= 0:
            raise ValueError("EMI does not cover the monthly interest")
        balance -= principal
        months += 1
        if months > MAX_TENURE_MONTHS:
            raise ValueError("EMI too small to repay within 100 years")
    return max(months, 1)


def months_between(earlier: date, later: date) -> int:
    return month_index(later.month, later.year) - month_index(earlier.month, earlier.year)


def build_installments(
    loan_id: UUID,
    opening_balance: Decimal,
    annual_rate: Decimal,
    emi: Decimal,
    tenure_months: int,
    first_due_date: date,
    emi_day: int,
    start_number: int = 1,
    term_id: Optional[UUID] = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> list[LoanInstallment]:
    """
    Expand an opening balance into dated installments.

    Stops early if a generous EMI clears the balance before the tenure
    ends. Due dates keep `emi_day`, clamped to each month's length.
    The last installment takes up at most `tolerance` beyond its natural
    principal; a bigger shortfall raises AmortizationInvariantViolation.
    """
    rate = monthly_rate(annual_rate)
    outstanding = to_money(opening_balance)
    rows: list[LoanInstallment] = []
    shortfall = ZERO

    for i in range(tenure_months):
        if outstanding <= 0:
            break
        interest = to_money(outstanding * rate)
        principal = emi - interest
        if principal >= outstanding:
            principal = outstanding
        elif i == tenure_months - 1:
            shortfall = outstanding - principal
            principal = outstanding
        outstanding -= principal

        rows.append(LoanInstallment(
            loan_id=loan_id,
            term_id=term_id,
            installment_number=start_number + i,
            due_date=add_months(first_due_date, i, day=emi_day),
            emi_amount=principal + interest,
            principal_component=principal,
            interest_component=interest,
            outstanding_after=max(outstanding, ZERO),
        ))

    if shortfall > tolerance:
        raise AmortizationInvariantViolation(
            f"EMI of {emi} leaves {shortfall} unpaid after {tenure_months} installments",
            residue=shortfall,
        )
    verify_closure(rows, opening_balance, tolerance)
    return rows


def verify_closure(
    rows: list[LoanInstallment],
    opening_balance: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> None:
    """
    Raise AmortizationInvariantViolation unless the schedule repays
    `opening_balance` exactly (within `tolerance`).
    """
    if not rows:
        if opening_balance > tolerance:
            raise AmortizationInvariantViolation(
                f"Empty schedule for an outstanding balance of {opening_balance}",
                residue=opening_balance,
            )
        return

    for row in rows:
        if row.principal_component < 0:
            raise AmortizationInvariantViolation(
                f"Installment {row.installment_number} has negative principal "
                f"({row.principal_component}); EMI does not cover interest",
                residue=row.principal_component,
            )

    final = rows[-1].outstanding_after
    repaid = sum((r.principal_component for r in rows), ZERO)
    residue = opening_balance - repaid
    if abs(final) > tolerance or abs(residue) > tolerance:
        raise AmortizationInvariantViolation(
            f"Schedule does not close: final outstanding {final}, unrepaid {residue}",
            residue=residue,
        )


class AmortizationEngine:
    """
    Builds installment schedules for loans and loan terms.

    Stateless apart from the closure tolerance.
    """

    def __init__(self, tolerance: Decimal = DEFAULT_TOLERANCE):
        self._tolerance = tolerance

    @staticmethod
    def first_due_date(loan: Loan) -> date:
        """Existing loans resume at next_emi_date; new ones pay from the month after disbursal."""
        if loan.is_existing_loan and loan.next_emi_date is not None:
            return loan.next_emi_date
        return add_months(loan.start_date, 1, day=loan.emi_day)

    @staticmethod
    def elapsed_installments(loan: Loan) -> int:
        """EMIs already paid before tracking started (0 for new loans)."""
        if not loan.is_existing_loan or loan.next_emi_date is None:
            return 0
        original_first = add_months(loan.start_date, 1, day=loan.emi_day)
        return max(months_between(original_first, loan.next_emi_date), 0)

    def opening_term(self, loan: Loan) -> LoanTerm:
        """The first LoanTerm of a freshly tracked loan."""
        elapsed = self.elapsed_installments(loan)
        return LoanTerm(
            loan_id=loan.id,
            term_number=1,
            effective_from=loan.start_date,
            interest_rate=loan.interest_rate,
            tenure_months=loan.tenure_months - elapsed,
            emi_amount=loan.emi_amount,
            outstanding_at_change=loan.outstanding_amount,
            reason="opening",
        )

    def build_schedule(self, loan: Loan, term: LoanTerm) -> list[LoanInstallment]:
        """
        Full schedule for a loan's opening term.

        A new loan gets installments 1..tenure from the principal. An
        existing loan gets only what is left, numbered after the EMIs
        already paid and starting from its current outstanding.
        """
        return build_installments(
            loan_id=loan.id,
            opening_balance=term.outstanding_at_change,
            annual_rate=term.interest_rate,
            emi=term.emi_amount,
            tenure_months=term.tenure_months,
            first_due_date=self.first_due_date(loan),
            emi_day=loan.emi_day,
            start_number=self.elapsed_installments(loan) + 1,
            term_id=term.id,
            tolerance=self._tolerance,
        )

    def rebuild_from(
        self,
        loan: Loan,
        term: LoanTerm,
        first_due_date: date,
        start_number: int,
    ) -> list[LoanInstallment]:
        """Schedule for the unpaid tail after a term change."""
        return build_installments(
            loan_id=loan.id,
            opening_balance=term.outstanding_at_change,
            annual_rate=term.interest_rate,
            emi=term.emi_amount,
            tenure_months=term.tenure_months,
            first_due_date=first_due_date,
            emi_day=loan.emi_day,
            start_number=start_number,
            term_id=term.id,
            tolerance=self._tolerance,
        )
