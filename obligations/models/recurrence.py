"""
Recurrence and Occurrence Models

A recurrence source is a long-lived rule the user edits ("pay rent on the
5th every month"). An occurrence is one month's materialized instance of a
source, keyed by (source_id, month, year).

DESIGN DECISION: The affect_transaction / affect_account_balance flags are
copied onto the occurrence when it is generated. Editing the source later
does not rewrite months that already exist.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from obligations.utils.money import Money


# =============================================================================
# ENUMS
# =============================================================================

class Frequency(str, Enum):
    """How often a scheduled payment recurs."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"
    ONE_TIME = "one_time"
    CUSTOM = "custom"  # every custom_interval_months


class DueDateType(str, Enum):
    """How the day of month is chosen."""
    FIXED_DAY = "fixed_day"
    SALARY_DAY = "salary_day"  # whenever salary is credited


class SourceKind(str, Enum):
    """The four kinds of recurring obligation."""
    SCHEDULED_PAYMENT = "scheduled_payment"
    LOAN_INSTALLMENT = "loan_installment"
    INSURANCE_PREMIUM = "insurance_premium"
    CREDIT_CARD_STATEMENT = "credit_card_statement"


class OccurrenceStatus(str, Enum):
    """
    Occurrence state.

    pending -> paid and paid -> pending are the only reversible moves.
    skipped is terminal and only reachable from pending.
    """
    PENDING = "pending"
    PAID = "paid"
    SKIPPED = "skipped"


# =============================================================================
# RECURRENCE SOURCES
# =============================================================================

class RecurrenceSourceBase(BaseModel):
    """
    Fields shared by every user-defined recurrence source.

    Cross-field rules (due_day presence, anchors, custom interval) are
    checked by RecurrenceValidator, which reports them instead of
    failing construction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    account_id: UUID = Field(
        ...,
        description="Account the payment is made from"
    )
    category_id: Optional[UUID] = None
    amount: Optional[Money] = Field(
        default=None,
        ge=0,
        description="Amount per occurrence (None = computed at generation time)"
    )

    frequency: Frequency = Frequency.MONTHLY
    custom_interval_months: Optional[int] = Field(default=None, ge=1)
    start_month: Optional[int] = Field(
        default=None,
        ge=1,
        le=12,
        description="Anchor month for interval and one-time frequencies"
    )
    start_year: Optional[int] = Field(
        default=None,
        ge=1900,
        le=9999,
        description="Anchor year; enables absolute month counting"
    )

    due_date_type: DueDateType = DueDateType.FIXED_DAY
    due_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        description="Day of month for fixed_day rules"
    )

    is_active: bool = True
    affect_transaction: bool = Field(
        default=True,
        description="Create a ledger transaction when marked paid"
    )
    affect_account_balance: bool = Field(
        default=True,
        description="Adjust the account balance when marked paid"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ScheduledPayment(RecurrenceSourceBase):
    """A user-defined recurring bill (rent, SIP, subscription...)."""
    kind: Literal[SourceKind.SCHEDULED_PAYMENT] = SourceKind.SCHEDULED_PAYMENT


class CreditCardStatement(RecurrenceSourceBase):
    """
    A credit card's monthly bill.

    When `amount` is None the bill is the sum of debits on the card
    account during the statement cycle.
    """
    kind: Literal[SourceKind.CREDIT_CARD_STATEMENT] = SourceKind.CREDIT_CARD_STATEMENT
    card_account_id: UUID = Field(
        ...,
        description="The credit card account whose spend is billed"
    )
    statement_day: int = Field(
        ...,
        ge=1,
        le=31,
        description="Day of month the statement is generated"
    )


AnySource = Annotated[
    Union[ScheduledPayment, CreditCardStatement],
    Field(discriminator="kind"),
]


# =============================================================================
# OCCURRENCES
# =============================================================================

class DueItem(BaseModel):
    """
    A computed due obligation for one month, not yet persisted.

    The generator turns these into Occurrences; the forecast only
    sums them.
    """

    source_kind: SourceKind
    source_id: UUID
    reference_id: Optional[UUID] = Field(
        default=None,
        description="Installment or premium row behind this item"
    )
    name: str
    month: int = Field(..., ge=1, le=12)
    year: int
    due_date: date
    amount: Optional[Money] = None
    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    affect_transaction: bool = True
    affect_account_balance: bool = True

    @property
    def key(self) -> tuple[UUID, int, int]:
        return (self.source_id, self.month, self.year)

    def to_occurrence(self) -> 'Occurrence':
        return Occurrence(
            source_kind=self.source_kind,
            source_id=self.source_id,
            reference_id=self.reference_id,
            name=self.name,
            month=self.month,
            year=self.year,
            due_date=self.due_date,
            amount=self.amount,
            account_id=self.account_id,
            category_id=self.category_id,
            affect_transaction=self.affect_transaction,
            affect_account_balance=self.affect_account_balance,
        )


class Occurrence(BaseModel):
    """
    One source's obligation for one (month, year).

    Only the ReconciliationEngine mutates an occurrence after creation.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    source_kind: SourceKind
    source_id: UUID
    reference_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=200)

    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    due_date: date = Field(
        ...,
        description="Concrete calendar date (not a day of month)"
    )
    amount: Optional[Money] = Field(
        default=None,
        ge=0,
        description="Expected amount"
    )
    account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None

    status: OccurrenceStatus = OccurrenceStatus.PENDING
    paid_at: Optional[date] = None
    paid_amount: Optional[Money] = None
    paid_from_account_id: Optional[UUID] = None
    transaction_id: Optional[UUID] = None

    # Frozen from the source at generation time
    affect_transaction: bool = True
    affect_account_balance: bool = True

    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_paid_fields(self) -> 'Occurrence':
        """Paid occurrences must say when and how much."""
        if self.status == OccurrenceStatus.PAID:
            if self.paid_at is None or self.paid_amount is None:
                raise ValueError("Paid occurrence needs paid_at and paid_amount")
        return self

    @property
    def key(self) -> tuple[UUID, int, int]:
        return (self.source_id, self.month, self.year)

    @property
    def is_pending(self) -> bool:
        return self.status == OccurrenceStatus.PENDING


class GenerationResult(BaseModel):
    """
    Outcome of one generate(month, year) call.

    Counts are for observability only; callers must not branch on them.
    """

    month: int
    year: int
    created: list[Occurrence] = Field(default_factory=list)
    existing: list[Occurrence] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def existing_count(self) -> int:
        return len(self.existing)

    @property
    def occurrences(self) -> list[Occurrence]:
        """Every occurrence the call touched, ordered by due date."""
        return sorted(self.created + self.existing, key=lambda o: (o.due_date, o.name))
