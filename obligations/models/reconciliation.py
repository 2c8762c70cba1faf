"""Outcome records for mark-paid / unmark style operations."""

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from obligations.models.recurrence import Occurrence
from obligations.models.salary import SalaryCycle


class ReconciliationInconsistency(BaseModel):
    """
    A divergence found and stepped around during reconciliation.

    The typical case: the ledger transaction linked to a paid
    occurrence was deleted by the user before unmarking. Unmark still
    succeeds but the balance restore is skipped and this is reported.
    """

    entity_id: UUID
    kind: str = Field(..., description="e.g. 'missing_transaction'")
    message: str


class ReconciliationResult(BaseModel):
    """
    What a reconciliation call did.

    `changed` is False when the call was a no-op (already paid, lost a
    concurrent race, ...).
    """

    changed: bool
    occurrence: Optional[Occurrence] = None
    cycle: Optional[SalaryCycle] = None
    transaction_id: Optional[UUID] = None
    balance_adjusted: bool = False
    warnings: list[ReconciliationInconsistency] = Field(default_factory=list)
