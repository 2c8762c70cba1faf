"""Salary profile and per-month salary cycle models."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from obligations.utils.money import Money


class PaydayRule(str, Enum):
    FIXED_DAY = "fixed_day"
    LAST_WORKING_DAY = "last_working_day"
    NTH_WEEKDAY = "nth_weekday"


LAST_ORDINAL = 5  # weekday_ordinal value meaning "last in the month"


class SalaryProfile(BaseModel):
    """
    How and where salary arrives.

    One active profile per user. Salary-day scheduled payments resolve
    their due date through it.
    """

    id: UUID = Field(default_factory=uuid4)
    payday_rule: PaydayRule = PaydayRule.LAST_WORKING_DAY
    fixed_day: Optional[int] = Field(default=None, ge=1, le=31)
    weekday_preference: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="0 = Monday ... 6 = Sunday (nth_weekday rule)"
    )
    weekday_ordinal: int = Field(
        default=1,
        ge=1,
        le=LAST_ORDINAL,
        description="Which matching weekday; 5 means the last one"
    )
    roll_back_from_weekend: bool = Field(
        default=False,
        description="Move a fixed-day payday landing on a weekend to the Friday before"
    )
    monthly_amount: Optional[Money] = Field(default=None, ge=0)
    account_id: UUID = Field(..., description="Account salary is credited to")
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SalaryCycle(BaseModel):
    """Expected vs actual salary for one month."""

    id: UUID = Field(default_factory=uuid4)
    profile_id: UUID
    month: int = Field(..., ge=1, le=12)
    year: int
    expected_pay_date: date
    expected_amount: Optional[Money] = None
    actual_pay_date: Optional[date] = None
    actual_amount: Optional[Money] = None
    credited_account_id: Optional[UUID] = None
    transaction_id: Optional[UUID] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_credited(self) -> bool:
        return self.actual_pay_date is not None
