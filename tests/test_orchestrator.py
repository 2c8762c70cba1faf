"""End-to-end tests of the flows wired by create_app_components."""

import pytest
from datetime import date
from decimal import Decimal

from obligations.errors import ValidationError
from obligations.models.audit import AuditEventType
from obligations.models.ledger import Account
from obligations.models.loan import Loan
from obligations.models.recurrence import OccurrenceStatus, ScheduledPayment
from obligations.models.salary import SalaryProfile
from obligations.orchestrator import create_app_components
from obligations.services.clock import FixedClock
from obligations.services.storage import InMemoryStorage


@pytest.fixture
def memory():
    return InMemoryStorage()


@pytest.fixture
def app(memory):
    return create_app_components(
        use_storage=False,
        clock=FixedClock(date(2025, 3, 1)),
        memory_storage=memory,
    )


@pytest.fixture
def account(app):
    return app.ledger.create_account(Account(name="SBI Savings", balance=Decimal("10000")))


class TestChecklistFlow:
    """Tests for opening a month."""

    def test_open_month_generates_once(self, app, memory, account):
        """Test that the first open generates and the second only lists."""
        app.obligations.save_source(ScheduledPayment(
            name="Rent",
            account_id=account.id,
            amount=Decimal("1500"),
            due_day=5,
        ))

        first = app.checklist.get_checklist(3, 2025)
        second = app.checklist.get_checklist(3, 2025)

        assert [o.name for o in first] == ["Rent"]
        assert [o.id for o in second] == [o.id for o in first]
        generated = [
            e for e in memory.get_recent_events()
            if e.event_type == AuditEventType.OCCURRENCES_GENERATED
        ]
        assert len(generated) == 1

    def test_empty_month(self, app):
        """Test a month with no sources."""
        assert app.checklist.get_checklist(3, 2025) == []


class TestPaymentFlow:
    """Tests for the paid toggle through the flow layer."""

    def test_mark_and_unmark(self, app, account):
        """Test the full toggle against the wired ledger."""
        app.obligations.save_source(ScheduledPayment(
            name="Rent",
            account_id=account.id,
            amount=Decimal("1500"),
            due_day=5,
        ))
        occurrence = app.checklist.get_checklist(3, 2025)[0]

        paid = app.payments.mark_paid(occurrence.id, account.id, date(2025, 3, 5))
        assert paid.occurrence.status == OccurrenceStatus.PAID
        assert app.ledger.get_account(account.id).balance == Decimal("8500.00")
        assert app.checklist.month_summary(3, 2025).paid_total == Decimal("1500.00")

        app.payments.unmark(occurrence.id)
        assert app.ledger.get_account(account.id).balance == Decimal("10000.00")

    def test_actions_are_correlated(self, app, memory, account):
        """Test that one mark-paid shares a correlation id across its events."""
        app.obligations.save_source(ScheduledPayment(
            name="Rent",
            account_id=account.id,
            amount=Decimal("1500"),
            due_day=5,
        ))
        occurrence = app.checklist.get_checklist(3, 2025)[0]
        app.payments.mark_paid(occurrence.id, account.id, date(2025, 3, 5))

        paid_event = next(
            e for e in memory.get_recent_events()
            if e.event_type == AuditEventType.OCCURRENCE_PAID
        )
        assert paid_event.correlation_id is not None
        assert memory.get_events_by_correlation_id(paid_event.correlation_id)

    def test_salary_credit(self, app, account):
        """Test crediting salary through the payment flow."""
        app.obligations.save_salary_profile(SalaryProfile(
            account_id=account.id,
            monthly_amount=Decimal("85000"),
        ))
        result = app.payments.mark_salary_credited(3, 2025)

        assert result.cycle.actual_pay_date == date(2025, 3, 31)
        assert app.ledger.get_account(account.id).balance == Decimal("95000.00")
        app.payments.unmark_salary_credited(3, 2025)
        assert app.ledger.get_account(account.id).balance == Decimal("10000.00")


class TestObligationFlow:
    """Tests for validated creation."""

    def test_check_does_not_save(self, app, memory, account):
        """Test that check only reports."""
        source = ScheduledPayment(name="Gym", account_id=account.id, amount=Decimal("2000"))
        result, message = app.obligations.check(source)

        assert not result.is_valid
        assert "can't be saved" in message
        assert memory.get_source(source.id) is None

    def test_check_dispatches_loans(self, app, account):
        """Test that a loan is validated with the loan rules."""
        loan = Loan(
            name="Car loan",
            principal_amount=Decimal("100000"),
            outstanding_amount=Decimal("100000"),
            interest_rate=Decimal("12"),
            tenure_months=12,
            emi_amount=Decimal("500"),
            emi_day=5,
            start_date=date(2025, 1, 15),
            account_id=account.id,
        )
        result, _ = app.obligations.check(loan)
        assert result.entity_type == "loan"
        assert not result.is_valid

    def test_invalid_source_rejected(self, app, account):
        """Test that saving surfaces the validation error."""
        with pytest.raises(ValidationError):
            app.obligations.save_source(ScheduledPayment(
                name="Gym", account_id=account.id, amount=Decimal("2000"),
            ))

    def test_loan_appears_in_checklist(self, app, account):
        """Test a created loan's EMI in the month's checklist."""
        loan, _ = app.obligations.create_loan(Loan(
            name="Car loan",
            principal_amount=Decimal("12000"),
            outstanding_amount=Decimal("12000"),
            interest_rate=Decimal("0"),
            tenure_months=12,
            emi_amount=Decimal("1000"),
            emi_day=10,
            start_date=date(2025, 1, 20),
            account_id=account.id,
        ))

        checklist = app.checklist.get_checklist(3, 2025)
        assert [o.name for o in checklist] == ["Car loan EMI #2"]
        assert len(app.obligations.loan_schedule(loan.id)) == 12


class TestStorageSelection:
    """Tests for backend selection."""

    def test_unconfigured_sheets_falls_back_to_memory(self, monkeypatch):
        """Test that missing Google Sheets settings do not stop the app."""
        monkeypatch.setenv("STORAGE_BACKEND", "google_sheets")
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        app = create_app_components(clock=FixedClock(date(2025, 3, 1)))

        assert app.sheets_client is None
        assert isinstance(app.ledger, InMemoryStorage)
        event = app.ledger.get_recent_events()[0]
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.details["using"] == "memory"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
