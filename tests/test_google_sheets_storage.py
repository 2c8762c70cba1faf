"""
Tests for the Google Sheets backends against an in-process fake spreadsheet.

The fake mimics the gspread calls the storage makes; no network access.
"""

import re
from datetime import date
from decimal import Decimal
from uuid import uuid4

import gspread
import pytest

from obligations.audit import AuditLogger
from obligations.config import GoogleSheetsSettings
from obligations.engine import OccurrenceGenerator, ReconciliationEngine
from obligations.models.audit import AuditEventBuilder, AuditEventType
from obligations.models.ledger import Account, AccountType, LinkRef, TransactionType
from obligations.models.recurrence import (
    CreditCardStatement,
    OccurrenceStatus,
    ScheduledPayment,
)
from obligations.models.loan import LoanPayment, LoanPaymentType
from obligations.models.salary import SalaryCycle, SalaryProfile
from obligations.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    GoogleSheetsLedger,
    IdempotencyConflict,
    StaleStateError,
)


class FakeWorksheet:
    """Stores cell values as strings, like the Sheets API returns them."""

    def __init__(self, title: str):
        self.title = title
        self.rows: list[list[str]] = []

    @staticmethod
    def _cells(row) -> list[str]:
        return ["" if v is None else str(v) for v in row]

    def get_all_values(self):
        return [list(r) for r in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append(self._cells(row))

    def append_rows(self, rows, value_input_option=None):
        for row in rows:
            self.append_row(row)

    def update(self, values, range_name):
        row_number = int(re.match(r"A(\d+)", range_name).group(1))
        self.rows[row_number - 1] = self._cells(values[0])

    def delete_rows(self, row_number):
        del self.rows[row_number - 1]


class FakeSpreadsheet:
    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title):
        if title not in self.sheets:
            raise gspread.WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title, rows, cols):
        self.sheets[title] = FakeWorksheet(title)
        return self.sheets[title]


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet()


@pytest.fixture
def client(spreadsheet, tmp_path):
    credentials = tmp_path / "service_account.json"
    credentials.write_text("{}")
    settings = GoogleSheetsSettings(
        credentials_path=str(credentials),
        spreadsheet_id="test-spreadsheet",
    )
    return GoogleSheetsClient(settings=settings, spreadsheet=spreadsheet)


@pytest.fixture
def ledger(client):
    return GoogleSheetsLedger(client)


@pytest.fixture
def documents(client):
    return GoogleSheetsDocumentStorage(client)


@pytest.fixture
def audit_storage(client):
    return GoogleSheetsAuditStorage(client)


@pytest.fixture
def account(ledger):
    return ledger.create_account(Account(name="Savings", balance=Decimal("10000")))


class TestWorksheets:
    """Tests for worksheet creation."""

    def test_missing_sheet_created_with_header(self, ledger, spreadsheet, account):
        """Test that the first write creates the sheet and its header row."""
        sheet = spreadsheet.sheets["Accounts"]
        assert sheet.rows[0][0] == "id"
        assert sheet.rows[1][1] == "Savings"


class TestGoogleSheetsLedger:
    """Tests for accounts and transactions."""

    def test_account_round_trip(self, ledger, account):
        """Test reading an account back from its row."""
        loaded = ledger.get_account(account.id)
        assert loaded.name == "Savings"
        assert loaded.account_type == AccountType.BANK
        assert loaded.balance == Decimal("10000.00")

    def test_adjust_balance_rewrites_row(self, ledger, spreadsheet, account):
        """Test that a balance change updates in place."""
        ledger.adjust_account_balance(account.id, Decimal("-1500"))

        assert ledger.get_account(account.id).balance == Decimal("8500.00")
        assert len(spreadsheet.sheets["Accounts"].rows) == 2

    def test_transaction_link_lookup(self, ledger, account):
        """Test finding a transaction by its link reference."""
        occurrence_id = uuid4()
        created = ledger.create_transaction(
            transaction_type=TransactionType.DEBIT,
            amount=Decimal("1500"),
            account_id=account.id,
            description="Payment: Rent",
            transaction_date=date(2025, 3, 5),
            link=LinkRef(payment_occurrence_id=occurrence_id),
        )

        found = ledger.find_transaction_by_link_ref(LinkRef(payment_occurrence_id=occurrence_id))
        assert found.id == created.id
        assert found.amount == Decimal("1500.00")

        assert ledger.delete_transaction(created.id) is True
        assert ledger.find_transaction_by_link_ref(LinkRef(payment_occurrence_id=occurrence_id)) is None
        assert ledger.delete_transaction(created.id) is False

    def test_list_transactions_filters(self, ledger, account):
        """Test the date window filter used for card statements."""
        for day in (1, 15, 28):
            ledger.create_transaction(
                transaction_type=TransactionType.DEBIT,
                amount=Decimal("100"),
                account_id=account.id,
                description="Spend",
                transaction_date=date(2025, 2, day),
            )
        window = ledger.list_transactions(
            account_id=account.id,
            date_from=date(2025, 2, 10),
            date_to=date(2025, 2, 28),
        )
        assert [t.transaction_date.day for t in window] == [15, 28]


class TestGoogleSheetsDocumentStorage:
    """Tests for document-shaped collections."""

    def test_sources_keep_their_kind(self, documents, account):
        """Test that both source kinds parse back to their own model."""
        payment = documents.save_source(ScheduledPayment(
            name="Rent", account_id=account.id, amount=Decimal("1500"), due_day=5,
        ))
        card = documents.save_source(CreditCardStatement(
            name="Card",
            account_id=account.id,
            card_account_id=account.id,
            statement_day=20,
            due_day=8,
        ))

        assert isinstance(documents.get_source(payment.id), ScheduledPayment)
        assert isinstance(documents.get_source(card.id), CreditCardStatement)
        assert len(documents.list_sources()) == 2

    def test_occurrence_insert_is_keyed(self, documents, ledger, audit_storage, account):
        """Test that a second insert for the same month conflicts."""
        documents.save_source(ScheduledPayment(
            name="Rent", account_id=account.id, amount=Decimal("1500"), due_day=5,
        ))
        generator = OccurrenceGenerator(
            documents, documents, documents, documents, ledger,
            AuditLogger(audit_storage), max_custom_interval=60,
        )
        first = generator.generate(3, 2025)
        occurrence = first.created[0]

        with pytest.raises(IdempotencyConflict) as exc_info:
            documents.insert_occurrence(occurrence.model_copy(update={"id": uuid4()}))
        assert exc_info.value.existing.id == occurrence.id

        assert generator.generate(3, 2025).created_count == 0

    def test_compare_and_set(self, documents, ledger, account):
        """Test that updates with a stale expected status are refused."""
        documents.save_source(ScheduledPayment(
            name="Rent", account_id=account.id, amount=Decimal("1500"), due_day=5,
        ))
        generator = OccurrenceGenerator(
            documents, documents, documents, documents, ledger, max_custom_interval=60,
        )
        occurrence = generator.generate(3, 2025).created[0]
        skipped = occurrence.model_copy(update={"status": OccurrenceStatus.SKIPPED})
        documents.update_occurrence(skipped, expected_status=OccurrenceStatus.PENDING)

        with pytest.raises(StaleStateError) as exc_info:
            documents.update_occurrence(occurrence, expected_status=OccurrenceStatus.PENDING)
        assert exc_info.value.current.status == OccurrenceStatus.SKIPPED

    def test_one_active_salary_profile(self, documents, spreadsheet, account):
        """Test that saving a profile deactivates the previous one."""
        documents.save_profile(SalaryProfile(account_id=account.id))
        second = documents.save_profile(SalaryProfile(account_id=account.id, fixed_day=1))

        assert documents.get_active_profile().id == second.id
        payloads = [row[3] for row in spreadsheet.sheets["SalaryProfiles"].rows[1:]]
        assert len(payloads) == 2
        assert sum('"is_active":true' in p for p in payloads) == 1

    def test_cycle_compare_and_set(self, documents, account):
        """Test that a cycle already credited cannot be claimed again."""
        profile = documents.save_profile(SalaryProfile(account_id=account.id))
        cycle = documents.save_cycle(SalaryCycle(
            profile_id=profile.id,
            month=3,
            year=2025,
            expected_pay_date=date(2025, 3, 31),
            expected_amount=Decimal("85000"),
        ))
        credited = cycle.model_copy(update={"actual_pay_date": date(2025, 3, 31)})
        documents.update_cycle(credited, expected_credited=False)

        with pytest.raises(StaleStateError) as exc_info:
            documents.update_cycle(credited, expected_credited=False)
        assert exc_info.value.current.is_credited
        assert documents.find_cycle(profile.id, 3, 2025).actual_pay_date == date(2025, 3, 31)

    def test_delete_loan_payments(self, documents):
        """Test that only the named payment rows are removed."""
        loan_id = uuid4()
        payments = [
            documents.save_loan_payment(LoanPayment(
                loan_id=loan_id,
                payment_date=date(2025, 2, 10),
                amount=Decimal(amount),
                payment_type=kind,
            ))
            for amount, kind in [("1000", LoanPaymentType.EMI), ("4000", LoanPaymentType.PREPAYMENT)]
        ]

        assert documents.delete_loan_payments([payments[1].id]) == 1
        assert [p.id for p in documents.list_loan_payments(loan_id)] == [payments[0].id]


class TestEndToEndOverSheets:
    """Tests for mark-paid with every collaborator on Sheets."""

    def test_mark_and_unmark(self, documents, ledger, audit_storage, account):
        """Test that the toggle works against the sheet backends."""
        documents.save_source(ScheduledPayment(
            name="Rent", account_id=account.id, amount=Decimal("1500"), due_day=5,
        ))
        audit_logger = AuditLogger(audit_storage)
        generator = OccurrenceGenerator(
            documents, documents, documents, documents, ledger, audit_logger,
            max_custom_interval=60,
        )
        engine = ReconciliationEngine(documents, ledger, audit_logger=audit_logger)
        occurrence = generator.generate(3, 2025).created[0]

        paid = engine.mark_paid(occurrence.id, account.id, date(2025, 3, 5))
        assert documents.get_occurrence(occurrence.id).transaction_id == paid.transaction_id
        assert ledger.get_account(account.id).balance == Decimal("8500.00")

        engine.unmark(occurrence.id)
        assert documents.get_occurrence(occurrence.id).status == OccurrenceStatus.PENDING
        assert ledger.get_account(account.id).balance == Decimal("10000.00")
        assert ledger.list_transactions() == []


class TestGoogleSheetsAuditStorage:
    """Tests for the audit sheet."""

    def test_events_round_trip(self, audit_storage, account):
        """Test that appended events are read back with their fields."""
        correlation_id = uuid4()
        event = AuditEventBuilder.reconciliation_warning(
            entity_id=account.id,
            kind="missing_transaction",
            message="Transaction already deleted",
            correlation_id=correlation_id,
        )
        assert audit_storage.append_event(event) is True

        loaded = audit_storage.get_recent_events()[0]
        assert loaded.event_id == event.event_id
        assert loaded.event_type == AuditEventType.RECONCILIATION_WARNING
        assert loaded.details == event.details
        assert audit_storage.get_events_by_correlation_id(correlation_id)[0].event_id == event.event_id
        assert audit_storage.get_events_by_entity("occurrence", account.id)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
