"""Tests for month summaries, next-month forecast and the dashboard."""

import pytest
from datetime import date
from decimal import Decimal

from obligations.models.recurrence import ScheduledPayment, SourceKind


@pytest.fixture
def march(generator, storage, bank_account, rent, reconciliation):
    """March 2025 with rent paid, internet pending and gym skipped."""
    for name, amount, day in (("Internet", "799", 2), ("Gym", "2000", 10)):
        storage.save_source(ScheduledPayment(
            name=name,
            account_id=bank_account.id,
            amount=Decimal(amount),
            due_day=day,
        ))
    occurrences = {o.name: o for o in generator.generate(3, 2025).created}
    reconciliation.mark_paid(occurrences["Rent"].id, bank_account.id, date(2025, 3, 5))
    reconciliation.skip(occurrences["Gym"].id)
    return occurrences


class TestMonthSummary:
    """Tests for stored-occurrence summaries."""

    def test_groups_and_totals(self, forecast, march):
        """Test paid, pending and skipped accounting."""
        summary = forecast.month_summary(3, 2025)
        group = summary.groups[SourceKind.SCHEDULED_PAYMENT]

        assert summary.has_occurrences
        assert group.count == 3
        assert group.paid_count == 1
        assert group.pending_count == 1
        assert group.skipped_count == 1
        assert summary.paid_total == Decimal("1500.00")
        assert summary.pending_total == Decimal("799.00")
        assert summary.total == Decimal("2299.00")

    def test_paid_amount_counts_over_expected(self, forecast, reconciliation, generator, bank_account, rent):
        """Test that a paid occurrence is summed at what was actually paid."""
        occurrence = generator.generate(3, 2025).created[0]
        reconciliation.mark_paid(
            occurrence.id, bank_account.id, date(2025, 3, 5), amount=Decimal("1550")
        )
        assert forecast.month_summary(3, 2025).paid_total == Decimal("1550.00")

    def test_empty_month(self, forecast):
        """Test a month nothing was generated for."""
        summary = forecast.month_summary(6, 2025)
        assert not summary.has_occurrences
        assert summary.total == Decimal("0.00")


class TestNextMonthForecast:
    """Tests for the dry-run forecast."""

    def test_salary_against_outflow(self, forecast, storage, rent, salary_profile):
        """Test April 2025 seen from 1 March."""
        result = forecast.next_month_forecast(date(2025, 3, 1))

        assert (result.month, result.year) == (4, 2025)
        assert result.expected_payday == date(2025, 4, 30)
        assert result.salary_income == Decimal("85000.00")
        assert result.total_outflow == Decimal("1500.00")
        assert result.outflow_by_kind == {SourceKind.SCHEDULED_PAYMENT: Decimal("1500.00")}
        assert result.net == Decimal("83500.00")
        assert [i.due_date for i in result.items] == [date(2025, 4, 5)]

    def test_forecast_persists_nothing(self, forecast, storage, rent):
        """Test that forecasting never creates occurrences."""
        forecast.next_month_forecast(date(2025, 3, 1))
        assert storage.list_occurrences() == []

    def test_without_salary_profile(self, forecast, rent):
        """Test a forecast with no income side."""
        result = forecast.next_month_forecast(date(2025, 12, 15))
        assert (result.month, result.year) == (1, 2026)
        assert result.expected_payday is None
        assert result.net == Decimal("-1500.00")


class TestDashboard:
    """Tests for the combined dashboard view."""

    def test_dashboard_uses_clock(self, forecast, march, salary_profile):
        """Test that the default month comes from the clock."""
        dashboard = forecast.dashboard()

        assert (dashboard.current.month, dashboard.current.year) == (3, 2025)
        assert dashboard.current.paid_total == Decimal("1500.00")
        assert (dashboard.next_month.month, dashboard.next_month.year) == (4, 2025)
        assert dashboard.upcoming_paydays[0] == date(2025, 3, 31)
        assert len(dashboard.upcoming_paydays) == 6

    def test_dashboard_for_other_month(self, forecast, rent):
        """Test viewing a month other than the current one."""
        dashboard = forecast.dashboard(month=7, year=2025)
        assert dashboard.current.month == 7
        assert dashboard.next_month.month == 8
        assert dashboard.upcoming_paydays == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
