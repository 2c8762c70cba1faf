"""
Ledger Models

Accounts and transactions belong to the surrounding finance app; the
engine only talks to them through the Ledger collaborator. These models
are the shape of that contract.

DESIGN DECISION: A transaction created by the engine carries an explicit
LinkRef back to whatever produced it. Unmarking a payment looks the
transaction up by that link - never by guessing from amount or
description.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from obligations.utils.money import ZERO, Money


class AccountType(str, Enum):
    """Kinds of accounts an obligation can be paid from or into."""
    BANK = "bank"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    WALLET = "wallet"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class Account(BaseModel):
    """A balance-carrying account."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    account_type: AccountType = AccountType.BANK
    balance: Money = Field(
        default=ZERO,
        description="Current balance in INR (may go negative for credit cards)"
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class LinkRef(BaseModel):
    """
    Back-reference from a ledger transaction to the record that created it.

    Exactly one of the ids is set.
    """

    payment_occurrence_id: Optional[UUID] = None
    salary_cycle_id: Optional[UUID] = None
    loan_payment_id: Optional[UUID] = None
    savings_contribution_id: Optional[UUID] = None

    @model_validator(mode='after')
    def validate_single_target(self) -> 'LinkRef':
        """A link must point at exactly one record."""
        targets = [
            self.payment_occurrence_id,
            self.salary_cycle_id,
            self.loan_payment_id,
            self.savings_contribution_id,
        ]
        if sum(1 for t in targets if t is not None) != 1:
            raise ValueError("LinkRef must reference exactly one record")
        return self

    def matches(self, other: Optional['LinkRef']) -> bool:
        return other is not None and self.model_dump() == other.model_dump()


class Transaction(BaseModel):
    """A ledger transaction."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    transaction_type: TransactionType
    amount: Money = Field(..., gt=0)
    account_id: UUID
    category_id: Optional[UUID] = None
    description: str = Field(default="", max_length=500)
    transaction_date: date
    link: Optional[LinkRef] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def signed_amount(self):
        """Effect of this transaction on its account's balance."""
        if self.transaction_type == TransactionType.CREDIT:
            return self.amount
        return -self.amount
