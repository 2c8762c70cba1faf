"""
Loan Models

A loan is expanded once into installment rows. Rate, tenure or EMI
revisions are recorded as LoanTerm windows; only unpaid installments are
ever rebuilt. Paid installments are immutable history.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from obligations.utils.money import ZERO, Money


class LoanStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    DEFAULTED = "defaulted"
    PRECLOSED = "preclosed"
    CLOSED_BT = "closed_bt"  # closed by a balance transfer


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class LoanPaymentType(str, Enum):
    EMI = "emi"
    PREPAYMENT = "prepayment"
    PARTIAL = "partial"


class PrepaymentStrategy(str, Enum):
    """What a prepayment shortens."""
    REDUCE_TENURE = "tenure"  # keep the EMI, finish earlier
    REDUCE_EMI = "emi"        # keep the end date, pay less per month


class Loan(BaseModel):
    """
    A loan with reducing-balance EMI repayment.

    Rate/tenure/EMI sanity (tenure > 0, rate >= 0, no negative
    amortization) is enforced by RecurrenceValidator, not here.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    lender: Optional[str] = Field(default=None, max_length=200)

    principal_amount: Money = Field(..., ge=0)
    outstanding_amount: Money = Field(..., ge=0)
    interest_rate: Decimal = Field(
        ...,
        description="Annual interest rate in percent (e.g. 9.5)"
    )
    tenure_months: int
    emi_amount: Money
    emi_day: int = Field(..., ge=1, le=31)
    start_date: date = Field(
        ...,
        description="Disbursal date; the first EMI falls in the following month"
    )

    status: LoanStatus = LoanStatus.ACTIVE
    is_existing_loan: bool = Field(
        default=False,
        description="Loan already running when tracking started"
    )
    next_emi_date: Optional[date] = Field(
        default=None,
        description="For existing loans: due date of the next unpaid EMI"
    )

    account_id: Optional[UUID] = Field(
        default=None,
        description="Default account EMIs are paid from"
    )
    category_id: Optional[UUID] = None
    affect_transaction: bool = True
    affect_account_balance: bool = True

    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_existing_loan(self) -> 'Loan':
        """An existing loan needs to know when its next EMI is due."""
        if self.is_existing_loan and self.next_emi_date is None:
            raise ValueError("Existing loans need next_emi_date")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


class LoanTerm(BaseModel):
    """
    A time window with one rate / tenure / EMI.

    Windows never overlap: the open term has effective_to = None and
    closing it sets effective_to to the change date, which is also the
    next term's effective_from.
    """

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    term_number: int = Field(..., ge=1)
    effective_from: date
    effective_to: Optional[date] = None
    interest_rate: Decimal
    tenure_months: int = Field(
        ...,
        ge=1,
        description="Installments scheduled under this term"
    )
    emi_amount: Money
    outstanding_at_change: Money = Field(
        ...,
        ge=0,
        description="Outstanding balance when this term started"
    )
    reason: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_open(self) -> bool:
        return self.effective_to is None


class LoanInstallment(BaseModel):
    """One EMI with its principal / interest split."""

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    term_id: Optional[UUID] = None
    installment_number: int = Field(..., ge=1)
    due_date: date
    emi_amount: Money
    principal_component: Money
    interest_component: Money
    outstanding_after: Money = Field(..., ge=0)

    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: Optional[date] = None
    paid_amount: Optional[Money] = None

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID


class LoanBtAllocation(BaseModel):
    """
    A balance-transfer loan's disbursal earmarked to close another loan.

    The original outstanding and the allocated amount are both kept so a
    processing fee or shortfall stays visible.
    """

    id: UUID = Field(default_factory=uuid4)
    bt_loan_id: UUID
    target_loan_id: UUID
    original_outstanding_amount: Money
    allocated_amount: Money
    allocation_date: date
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def difference(self) -> Decimal:
        """Allocated minus original; non-zero means fee or shortfall."""
        return self.allocated_amount - self.original_outstanding_amount


class LoanPayment(BaseModel):
    """A payment against a loan outside the plain installment toggle."""

    id: UUID = Field(default_factory=uuid4)
    loan_id: UUID
    installment_id: Optional[UUID] = None
    payment_date: date
    amount: Money = Field(..., gt=0)
    principal_paid: Money = ZERO
    interest_paid: Money = ZERO
    payment_type: LoanPaymentType = LoanPaymentType.EMI
    transaction_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)
