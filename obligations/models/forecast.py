"""
Read Models for the Dashboard

These are computed on request and never persisted.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from obligations.models.recurrence import DueItem, SourceKind
from obligations.utils.money import ZERO, Money


class KindSummary(BaseModel):
    """Subtotals for one source kind within a month."""

    kind: SourceKind
    count: int = 0
    total: Money = ZERO
    paid_count: int = 0
    paid_total: Money = ZERO
    pending_count: int = 0
    pending_total: Money = ZERO
    skipped_count: int = 0


class MonthSummary(BaseModel):
    """A month's materialized occurrences, grouped by source kind."""

    month: int
    year: int
    groups: dict[SourceKind, KindSummary] = Field(default_factory=dict)
    total: Money = ZERO
    paid_total: Money = ZERO
    pending_total: Money = ZERO
    has_occurrences: bool = False


class ForecastSummary(BaseModel):
    """
    Next month's expected money in and out.

    Built from a dry-run of the generator; nothing here exists in
    storage yet.
    """

    month: int
    year: int
    expected_payday: Optional[date] = None
    salary_income: Money = ZERO
    outflow_by_kind: dict[SourceKind, Decimal] = Field(default_factory=dict)
    total_outflow: Money = ZERO
    net: Money = ZERO
    items: list[DueItem] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class Dashboard(BaseModel):
    current: MonthSummary
    next_month: ForecastSummary
    upcoming_paydays: list[date] = Field(default_factory=list)
