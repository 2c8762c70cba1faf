"""
Tests for Obligation Tracker

Test strategy:
1. Unit tests for pure scheduling rules and models
2. Engine tests against InMemoryStorage with a fixed clock
3. No real API calls in tests (Google Sheets is faked)
"""

import pytest
from datetime import date
from decimal import ROUND_CEILING, Decimal
from uuid import uuid4

from pydantic import TypeAdapter

from obligations.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from obligations.models.insurance import Insurance, PremiumFrequency
from obligations.models.ledger import LinkRef
from obligations.models.loan import Loan, LoanBtAllocation
from obligations.models.recurrence import (
    AnySource,
    CreditCardStatement,
    DueItem,
    GenerationResult,
    Occurrence,
    OccurrenceStatus,
    ScheduledPayment,
    SourceKind,
)
from obligations.models.validation import ValidationIssue, ValidationResult
from obligations.utils.money import to_money


class TestRecurrenceModels:
    """Tests for recurrence sources and occurrences."""

    def test_scheduled_payment_strips_whitespace(self):
        """Test that whitespace is stripped from source names."""
        source = ScheduledPayment(name="  Rent  ", account_id=uuid4(), due_day=5)
        assert source.name == "Rent"
        assert source.kind == SourceKind.SCHEDULED_PAYMENT

    def test_amount_is_quantized_to_paise(self):
        """Test that amounts carry exactly two decimal places."""
        source = ScheduledPayment(name="SIP", account_id=uuid4(), amount=Decimal("12.345"), due_day=1)
        assert source.amount == Decimal("12.35")
        assert source.amount.as_tuple().exponent == -2

    def test_rejects_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            ScheduledPayment(name="Rent", account_id=uuid4(), amount=Decimal("-1"), due_day=5)

    def test_rejects_due_day_out_of_range(self):
        """Test that a day of month above 31 is rejected."""
        with pytest.raises(ValueError):
            ScheduledPayment(name="Rent", account_id=uuid4(), due_day=32)

    def test_any_source_discriminates_on_kind(self):
        """Test that stored payloads come back as the right source type."""
        adapter = TypeAdapter(AnySource)
        source = adapter.validate_python({
            "kind": "credit_card_statement",
            "name": "Card bill",
            "account_id": str(uuid4()),
            "card_account_id": str(uuid4()),
            "statement_day": 20,
            "due_day": 8,
        })
        assert isinstance(source, CreditCardStatement)
        assert source.amount is None

    def test_paid_occurrence_needs_paid_fields(self):
        """Test that a paid occurrence must say when and how much."""
        with pytest.raises(ValueError, match="paid_at and paid_amount"):
            Occurrence(
                source_kind=SourceKind.SCHEDULED_PAYMENT,
                source_id=uuid4(),
                name="Rent",
                month=3,
                year=2025,
                due_date=date(2025, 3, 5),
                status=OccurrenceStatus.PAID,
            )

    def test_due_item_freezes_flags_onto_occurrence(self):
        """Test that affect flags are copied at generation time."""
        item = DueItem(
            source_kind=SourceKind.SCHEDULED_PAYMENT,
            source_id=uuid4(),
            name="Gym",
            month=3,
            year=2025,
            due_date=date(2025, 3, 10),
            amount=Decimal("999"),
            affect_transaction=False,
            affect_account_balance=False,
        )
        occurrence = item.to_occurrence()
        assert occurrence.key == item.key
        assert occurrence.status == OccurrenceStatus.PENDING
        assert occurrence.affect_transaction is False
        assert occurrence.affect_account_balance is False

    def test_generation_result_orders_by_due_date(self):
        """Test that created and existing rows are merged by due date."""
        def occ(day, name):
            return Occurrence(
                source_kind=SourceKind.SCHEDULED_PAYMENT,
                source_id=uuid4(),
                name=name,
                month=3,
                year=2025,
                due_date=date(2025, 3, day),
            )

        result = GenerationResult(
            month=3,
            year=2025,
            created=[occ(20, "B")],
            existing=[occ(5, "A")],
        )
        assert [o.name for o in result.occurrences] == ["A", "B"]
        assert result.created_count == 1
        assert result.existing_count == 1


class TestLedgerAndLoanModels:
    """Tests for ledger links and loan models."""

    def test_link_ref_needs_exactly_one_target(self):
        """Test that a link must point at a single record."""
        with pytest.raises(ValueError):
            LinkRef()
        with pytest.raises(ValueError):
            LinkRef(payment_occurrence_id=uuid4(), salary_cycle_id=uuid4())

    def test_link_ref_matches(self):
        """Test link equality used to find transactions."""
        occurrence_id = uuid4()
        link = LinkRef(payment_occurrence_id=occurrence_id)
        assert link.matches(LinkRef(payment_occurrence_id=occurrence_id))
        assert not link.matches(LinkRef(payment_occurrence_id=uuid4()))
        assert not link.matches(None)

    def test_existing_loan_needs_next_emi_date(self):
        """Test that an existing loan must know its next EMI date."""
        with pytest.raises(ValueError, match="next_emi_date"):
            Loan(
                name="Car loan",
                principal_amount=Decimal("500000"),
                outstanding_amount=Decimal("300000"),
                interest_rate=Decimal("9"),
                tenure_months=60,
                emi_amount=Decimal("10379"),
                emi_day=5,
                start_date=date(2023, 1, 1),
                is_existing_loan=True,
            )

    def test_bt_allocation_difference(self):
        """Test that fee or shortfall is allocated minus original."""
        allocation = LoanBtAllocation(
            bt_loan_id=uuid4(),
            target_loan_id=uuid4(),
            original_outstanding_amount=Decimal("480000"),
            allocated_amount=Decimal("500000"),
            allocation_date=date(2025, 3, 1),
        )
        assert allocation.difference == Decimal("20000.00")


class TestInsuranceModels:
    """Tests for insurance policy properties."""

    def test_payment_years_defaults_to_policy_term(self):
        """Test that premiums are paid for the whole term unless limited."""
        policy = Insurance(
            policy_name="Term plan",
            premium_amount=Decimal("24000"),
            start_date=date(2025, 1, 15),
            policy_term_years=20,
        )
        assert policy.payment_years == 20
        assert policy.period_months == 12
        assert policy.is_active

    def test_period_months_per_frequency(self):
        """Test premium period length for each frequency."""
        policy = Insurance(
            policy_name="Health",
            premium_amount=Decimal("6000"),
            premium_frequency=PremiumFrequency.QUARTERLY,
            start_date=date(2025, 1, 1),
            policy_term_years=1,
        )
        assert policy.period_months == 3


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.SOURCE_SAVED,
            description="Saved rent",
        )
        assert event.event_type == AuditEventType.SOURCE_SAVED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.OCCURRENCES_GENERATED,
            description="Generated March",
            details={"created": 3},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "occurrences_generated"
        assert log_dict["details"]["created"] == 3

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.OCCURRENCE_SKIPPED,
            description="Skipped gym",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11  # Expected number of columns
        assert row[2] == "occurrence_skipped"  # event_type
        assert row[10] == "True"  # is_user_action

    def test_audit_event_builder_occurrence_paid(self):
        """Test AuditEventBuilder.occurrence_paid."""
        occurrence_id = uuid4()
        correlation_id = uuid4()

        event = AuditEventBuilder.occurrence_paid(
            occurrence_id=occurrence_id,
            name="Rent",
            amount="1500.00",
            account_id=uuid4(),
            transaction_id=uuid4(),
            correlation_id=correlation_id,
        )

        assert event.event_type == AuditEventType.OCCURRENCE_PAID
        assert event.entity_id == occurrence_id
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_reconciliation_warning_is_warning_severity(self):
        """Test that inconsistencies are audited as warnings."""
        event = AuditEventBuilder.reconciliation_warning(
            entity_id=uuid4(),
            kind="missing_transaction",
            message="Transaction already deleted",
        )
        assert event.severity == AuditSeverity.WARNING


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            entity_type="scheduled_payment",
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="due_day",
                    issue_type="missing",
                    message="Due day required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            entity_type="scheduled_payment",
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="No amount",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0


class TestMoney:
    """Tests for paisa rounding."""

    def test_rounds_half_up(self):
        """Test the default rounding of half a paisa."""
        assert to_money(Decimal("2.005")) == Decimal("2.01")
        assert to_money("7") == Decimal("7.00")

    def test_rounding_override(self):
        """Test rounding up for computed EMIs."""
        assert to_money(Decimal("333.331"), rounding=ROUND_CEILING) == Decimal("333.34")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
