"""
Insurance Models

A policy's premium can be paid in several terms per premium period (an
annual premium split into 4 quarterly terms, say). Premiums are expanded
into dated term rows once, like loan installments.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from obligations.utils.money import Money


class PremiumFrequency(str, Enum):
    ANNUAL = "annual"
    SEMI_ANNUAL = "semi_annual"
    QUARTERLY = "quarterly"
    MONTHLY = "monthly"


PERIOD_MONTHS = {
    PremiumFrequency.ANNUAL: 12,
    PremiumFrequency.SEMI_ANNUAL: 6,
    PremiumFrequency.QUARTERLY: 3,
    PremiumFrequency.MONTHLY: 1,
}


class InsuranceStatus(str, Enum):
    ACTIVE = "active"
    LAPSED = "lapsed"
    MATURED = "matured"
    CANCELLED = "cancelled"


class PremiumStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Insurance(BaseModel):
    """An insurance policy."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    policy_name: str = Field(..., min_length=1, max_length=200)
    provider: Optional[str] = Field(default=None, max_length=200)
    policy_number: Optional[str] = Field(default=None, max_length=100)

    premium_amount: Money = Field(
        ...,
        gt=0,
        description="Premium for one full premium period"
    )
    premium_frequency: PremiumFrequency = PremiumFrequency.ANNUAL
    terms_per_period: int = Field(
        default=1,
        ge=1,
        le=12,
        description="Installments the period's premium is split into"
    )
    start_date: date = Field(..., description="First premium due date")
    policy_term_years: int = Field(..., ge=1, le=100)
    premium_payment_term_years: Optional[int] = Field(
        default=None,
        ge=1,
        le=100,
        description="Years premiums are paid for (defaults to the policy term)"
    )
    sum_assured: Optional[Money] = None

    status: InsuranceStatus = InsuranceStatus.ACTIVE
    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    affect_transaction: bool = True
    affect_account_balance: bool = True

    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def payment_years(self) -> int:
        return self.premium_payment_term_years or self.policy_term_years

    @property
    def period_months(self) -> int:
        return PERIOD_MONTHS[self.premium_frequency]

    @property
    def is_active(self) -> bool:
        return self.status == InsuranceStatus.ACTIVE


class InsurancePremium(BaseModel):
    """One dated premium term."""

    id: UUID = Field(default_factory=uuid4)
    insurance_id: UUID
    period_number: int = Field(..., ge=1, description="1-based premium period")
    period_year: int = Field(..., description="Calendar year the period starts in")
    term_number: int = Field(..., ge=1, description="1-based term within the period")
    due_date: date
    amount: Money = Field(..., gt=0)

    status: PremiumStatus = PremiumStatus.PENDING
    paid_date: Optional[date] = None
    paid_amount: Optional[Money] = None

    @property
    def is_paid(self) -> bool:
        return self.status == PremiumStatus.PAID
