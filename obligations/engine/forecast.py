"""
Forecast and Dashboard Read Models

Read-only. "This month" is summarized from stored occurrences; "next
month" is a dry run of the generator plus the predicted payday, so
opening the dashboard never creates occurrence rows.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from obligations.engine.generator import OccurrenceGenerator
from obligations.models.forecast import (
    Dashboard,
    ForecastSummary,
    KindSummary,
    MonthSummary,
)
from obligations.models.recurrence import OccurrenceStatus, SourceKind
from obligations.scheduling.payday import PaydayPredictor
from obligations.services.clock import Clock, SystemClock
from obligations.services.storage import ObligationStorageInterface, SalaryStorageInterface
from obligations.utils.dates import next_month
from obligations.utils.money import ZERO


class ForecastAggregator:
    """Composes occurrences, due items and paydays into dashboard models."""

    def __init__(
        self,
        obligations: ObligationStorageInterface,
        salary: SalaryStorageInterface,
        generator: OccurrenceGenerator,
        predictor: Optional[PaydayPredictor] = None,
        clock: Optional[Clock] = None,
    ):
        self._obligations = obligations
        self._salary = salary
        self._generator = generator
        self._clock = clock or SystemClock()
        self._predictor = predictor or PaydayPredictor(self._clock)

    def month_summary(self, month: int, year: int) -> MonthSummary:
        """Stored occurrences of (month, year) grouped by source kind."""
        summary = MonthSummary(month=month, year=year)

        for occurrence in self._obligations.list_occurrences(month=month, year=year):
            group = summary.groups.setdefault(
                occurrence.source_kind,
                KindSummary(kind=occurrence.source_kind),
            )
            amount = occurrence.paid_amount if occurrence.status == OccurrenceStatus.PAID \
                else (occurrence.amount or ZERO)
            group.count += 1

            if occurrence.status == OccurrenceStatus.SKIPPED:
                group.skipped_count += 1
                continue

            group.total += amount
            if occurrence.status == OccurrenceStatus.PAID:
                group.paid_count += 1
                group.paid_total += amount
            else:
                group.pending_count += 1
                group.pending_total += amount

        for group in summary.groups.values():
            summary.total += group.total
            summary.paid_total += group.paid_total
            summary.pending_total += group.pending_total
        summary.has_occurrences = bool(summary.groups)
        return summary

    def next_month_forecast(self, today: Optional[date] = None) -> ForecastSummary:
        """
        What next month looks like: expected salary against everything
        that will fall due. Nothing is persisted.
        """
        today = today or self._clock.today()
        month, year = next_month(today.month, today.year)
        items, warnings = self._generator.collect_due_items(month, year)

        forecast = ForecastSummary(month=month, year=year, items=items, warnings=warnings)

        profile = self._salary.get_active_profile()
        if profile is not None:
            forecast.expected_payday = self._predictor.predict(profile, month, year)
            forecast.salary_income = profile.monthly_amount or ZERO

        outflow: dict[SourceKind, Decimal] = {}
        for item in items:
            outflow[item.source_kind] = outflow.get(item.source_kind, ZERO) + (item.amount or ZERO)
        forecast.outflow_by_kind = outflow
        forecast.total_outflow = sum(outflow.values(), ZERO)
        forecast.net = forecast.salary_income - forecast.total_outflow
        return forecast

    def dashboard(self, month: Optional[int] = None, year: Optional[int] = None) -> Dashboard:
        """This month's summary, next month's forecast and upcoming paydays."""
        today = self._clock.today()
        month = month or today.month
        year = year or today.year

        profile = self._salary.get_active_profile()
        paydays = self._predictor.next_paydays(profile) if profile is not None else []

        # Forecast the month after the one being viewed
        anchor = date(year, month, 1)
        return Dashboard(
            current=self.month_summary(month, year),
            next_month=self.next_month_forecast(anchor),
            upcoming_paydays=paydays,
        )
