"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the persistent backend because:
1. Non-technical users can view their obligations directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: keyed inserts and compare-and-set updates are a
  read-check-write sequence. This is safe under the engine's one-writer
  assumption, not against two processes writing the same sheet.
- Limited query capabilities (we filter in Python)

Accounts, transactions and the audit log get explicit column layouts so
they stay readable in the sheet. Every other collection is stored as
[id, key, updated_at, payload_json] rows parsed back with pydantic.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import TypeAdapter
from tenacity import retry, stop_after_attempt, wait_exponential

from obligations.config import GoogleSheetsSettings, get_settings
from obligations.models.audit import AuditEvent, AuditEventType, AuditSeverity
from obligations.models.insurance import Insurance, InsurancePremium
from obligations.models.ledger import (
    Account,
    AccountType,
    LinkRef,
    Transaction,
    TransactionType,
)
from obligations.models.loan import (
    Loan,
    LoanBtAllocation,
    LoanInstallment,
    LoanPayment,
    LoanStatus,
    LoanTerm,
)
from obligations.models.recurrence import (
    AnySource,
    Occurrence,
    OccurrenceStatus,
    SourceKind,
)
from obligations.models.salary import SalaryCycle, SalaryProfile
from obligations.services.storage.interface import (
    AuditStorageInterface,
    IdempotencyConflict,
    InsuranceStorageInterface,
    LedgerInterface,
    LoanStorageInterface,
    NotFoundError,
    ObligationStorageInterface,
    SalaryStorageInterface,
    StaleStateError,
    StorageConnectionError,
    StorageError,
)
from obligations.utils.money import to_money


logger = structlog.get_logger(__name__)

ACCOUNT_COLUMNS = [
    "id",
    "name",
    "account_type",
    "balance",
    "is_active",
    "created_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "transaction_type",
    "amount",
    "account_id",
    "category_id",
    "description",
    "transaction_date",
    "link_json",
    "created_at",
]

DOCUMENT_COLUMNS = [
    "id",
    "key",
    "updated_at",
    "payload_json",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication, worksheet creation and provides retry logic
    for API calls.
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        spreadsheet: Optional[gspread.Spreadsheet] = None,
    ):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet = spreadsheet
        self._settings = settings or get_settings().google_sheets
        self._worksheets: dict[str, gspread.Worksheet] = {}

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @sheets_retry
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        if title in self._worksheets:
            return self._worksheets[title]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        self._worksheets[title] = sheet
        return sheet


class SheetTable:
    """
    One worksheet treated as a table with a header row.

    Row numbers are 1-based sheet rows; data starts at row 2.
    """

    def __init__(
        self,
        client: GoogleSheetsClient,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ):
        self._client = client
        self._title = title
        self._columns = columns
        self._rows = rows

    @property
    def sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self._columns, self._rows)

    @sheets_retry
    def read_rows(self) -> list[tuple[int, list]]:
        """All non-empty data rows as (row_number, values)."""
        values = self.sheet.get_all_values()
        return [
            (row_number, row)
            for row_number, row in enumerate(values[1:], start=2)
            if row and row[0]
        ]

    @sheets_retry
    def append(self, row: list) -> None:
        self.sheet.append_row(row, value_input_option="RAW")

    @sheets_retry
    def append_many(self, rows: list[list]) -> None:
        if rows:
            self.sheet.append_rows(rows, value_input_option="RAW")

    @sheets_retry
    def write(self, row_number: int, row: list) -> None:
        self.sheet.update(values=[row], range_name=f"A{row_number}")

    @sheets_retry
    def delete(self, row_number: int) -> None:
        self.sheet.delete_rows(row_number)

    def find(self, column: int, value: str) -> Optional[tuple[int, list]]:
        for row_number, row in self.read_rows():
            if len(row) > column and row[column] == value:
                return row_number, row
        return None


class DocumentCollection:
    """
    A collection of pydantic documents in one worksheet.

    Columns: [id, key, updated_at, payload_json]. `key` is whatever
    the caller uses for uniqueness or lookup (may be blank).
    """

    def __init__(
        self,
        table: SheetTable,
        model_type: Any,
        key_fn: Optional[Callable[[Any], str]] = None,
    ):
        self._table = table
        self._adapter = TypeAdapter(model_type)
        self._key_fn = key_fn or (lambda doc: "")

    def _to_row(self, doc) -> list:
        return [
            str(doc.id),
            self._key_fn(doc),
            datetime.utcnow().isoformat(),
            self._adapter.dump_json(doc).decode(),
        ]

    def _from_row(self, row: list):
        return self._adapter.validate_json(row[3])

    def all(self) -> list:
        docs = []
        for _, row in self._table.read_rows():
            if len(row) < 4 or not row[3]:
                continue
            try:
                docs.append(self._from_row(row))
            except ValueError as e:
                # Skip malformed rows rather than failing the whole read
                logger.warning("malformed_sheet_row", row_id=row[0], error=str(e))
        return docs

    def get(self, doc_id: UUID):
        found = self._table.find(0, str(doc_id))
        return self._from_row(found[1]) if found else None

    def find_by_key(self, key: str) -> Optional[tuple[int, Any]]:
        found = self._table.find(1, key)
        return (found[0], self._from_row(found[1])) if found else None

    def row_of(self, doc_id: UUID) -> Optional[tuple[int, Any]]:
        found = self._table.find(0, str(doc_id))
        return (found[0], self._from_row(found[1])) if found else None

    def append(self, doc) -> None:
        self._table.append(self._to_row(doc))

    def write(self, row_number: int, doc) -> None:
        self._table.write(row_number, self._to_row(doc))

    def upsert(self, doc) -> None:
        self.upsert_many([doc])

    def upsert_many(self, docs: list) -> None:
        row_numbers = {row[0]: n for n, row in self._table.read_rows()}
        new_rows = []
        for doc in docs:
            row_number = row_numbers.get(str(doc.id))
            if row_number:
                self._table.write(row_number, self._to_row(doc))
            else:
                new_rows.append(self._to_row(doc))
        self._table.append_many(new_rows)

    def delete_many(self, doc_ids: list[UUID]) -> int:
        wanted = {str(i) for i in doc_ids}
        rows = [n for n, row in self._table.read_rows() if row[0] in wanted]
        # Bottom-up so earlier deletions don't shift later row numbers
        for row_number in sorted(rows, reverse=True):
            self._table.delete(row_number)
        return len(rows)


def occurrence_key(source_id: UUID, month: int, year: int) -> str:
    return f"{source_id}:{year:04d}-{month:02d}"


class GoogleSheetsLedger(LedgerInterface):
    """
    Google Sheets implementation of the Ledger collaborator.

    Accounts and transactions are stored one per row with explicit columns.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.settings
        self._accounts = SheetTable(self._client, names.accounts_sheet_name, ACCOUNT_COLUMNS)
        self._transactions = SheetTable(
            self._client, names.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def _account_to_row(self, account: Account) -> list:
        """Convert an Account to a spreadsheet row."""
        return [
            str(account.id),
            account.name,
            account.account_type.value,
            str(account.balance),
            str(account.is_active),
            account.created_at.isoformat(),
        ]

    def _row_to_account(self, row: list) -> Account:
        """Convert a spreadsheet row to an Account."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return Account(
            id=UUID(safe_get(0)),
            name=safe_get(1),
            account_type=AccountType(safe_get(2, "bank")),
            balance=Decimal(safe_get(3, "0")),
            is_active=safe_get(4, "True").lower() == "true",
            created_at=datetime.fromisoformat(safe_get(5)) if safe_get(5) else datetime.utcnow(),
        )

    def _transaction_to_row(self, transaction: Transaction) -> list:
        """Convert a Transaction to a spreadsheet row."""
        return [
            str(transaction.id),
            transaction.transaction_type.value,
            str(transaction.amount),
            str(transaction.account_id),
            str(transaction.category_id) if transaction.category_id else "",
            transaction.description,
            transaction.transaction_date.isoformat(),
            transaction.link.model_dump_json(exclude_none=True) if transaction.link else "",
            transaction.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        """Convert a spreadsheet row to a Transaction."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return Transaction(
            id=UUID(safe_get(0)),
            transaction_type=TransactionType(safe_get(1)),
            amount=Decimal(safe_get(2)),
            account_id=UUID(safe_get(3)),
            category_id=UUID(safe_get(4)) if safe_get(4) else None,
            description=safe_get(5),
            transaction_date=date.fromisoformat(safe_get(6)),
            link=LinkRef.model_validate_json(safe_get(7)) if safe_get(7) else None,
            created_at=datetime.fromisoformat(safe_get(8)) if safe_get(8) else datetime.utcnow(),
        )

    def create_account(self, account: Account) -> Account:
        try:
            self._accounts.append(self._account_to_row(account))
            return account
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")

    def get_account(self, account_id: UUID) -> Optional[Account]:
        try:
            found = self._accounts.find(0, str(account_id))
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")
        return self._row_to_account(found[1]) if found else None

    def list_accounts(self) -> list[Account]:
        try:
            return [self._row_to_account(row) for _, row in self._accounts.read_rows()]
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")

    def adjust_account_balance(self, account_id: UUID, delta: Decimal) -> Account:
        try:
            found = self._accounts.find(0, str(account_id))
            if found is None:
                raise NotFoundError(f"Account not found: {account_id}")
            row_number, row = found
            account = self._row_to_account(row)
            account.balance = to_money(account.balance + Decimal(delta))
            self._accounts.write(row_number, self._account_to_row(account))
            return account
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to adjust balance: {e}")

    def create_transaction(
        self,
        transaction_type: TransactionType,
        amount: Decimal,
        account_id: UUID,
        description: str,
        transaction_date: date,
        category_id: Optional[UUID] = None,
        link: Optional[LinkRef] = None,
    ) -> Transaction:
        if self.get_account(account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")
        transaction = Transaction(
            transaction_type=transaction_type,
            amount=amount,
            account_id=account_id,
            category_id=category_id,
            description=description,
            transaction_date=transaction_date,
            link=link,
        )
        try:
            self._transactions.append(self._transaction_to_row(transaction))
            return transaction
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = self._transactions.find(0, str(transaction_id))
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")
        return self._row_to_transaction(found[1]) if found else None

    def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            found = self._transactions.find(0, str(transaction_id))
            if found is None:
                return False
            self._transactions.delete(found[0])
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")

    def find_transaction_by_link_ref(self, link: LinkRef) -> Optional[Transaction]:
        for transaction in self.list_transactions():
            if link.matches(transaction.link):
                return transaction
        return None

    def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        try:
            rows = self._transactions.read_rows()
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for _, row in rows:
            try:
                t = self._row_to_transaction(row)
            except ValueError:
                continue  # Skip malformed rows

            if account_id and t.account_id != account_id:
                continue
            if transaction_type and t.transaction_type != transaction_type:
                continue
            if date_from and t.transaction_date < date_from:
                continue
            if date_to and t.transaction_date > date_to:
                continue
            transactions.append(t)

        transactions.sort(key=lambda t: (t.transaction_date, t.created_at))
        return transactions


class GoogleSheetsDocumentStorage(
    ObligationStorageInterface,
    LoanStorageInterface,
    InsuranceStorageInterface,
    SalaryStorageInterface,
):
    """
    Google Sheets implementation of every document-shaped collection:
    sources, occurrences, loans, insurance and salary.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        names = self._client.settings

        def collection(title: str, model_type, key_fn=None, rows: int = 1000):
            return DocumentCollection(
                SheetTable(self._client, title, DOCUMENT_COLUMNS, rows),
                model_type,
                key_fn,
            )

        self._sources = collection(names.sources_sheet_name, AnySource)
        self._occurrences = collection(
            names.occurrences_sheet_name,
            Occurrence,
            key_fn=lambda o: occurrence_key(o.source_id, o.month, o.year),
            rows=5000,
        )
        self._loans = collection(names.loans_sheet_name, Loan)
        self._terms = collection(names.loan_terms_sheet_name, LoanTerm, lambda t: str(t.loan_id))
        self._installments = collection(
            names.loan_installments_sheet_name,
            LoanInstallment,
            key_fn=lambda i: f"{i.loan_id}:{i.installment_number}",
            rows=5000,
        )
        self._bt_allocations = collection(names.bt_allocations_sheet_name, LoanBtAllocation)
        self._loan_payments = collection(names.loan_payments_sheet_name, LoanPayment)
        self._insurances = collection(names.insurances_sheet_name, Insurance)
        self._premiums = collection(names.premiums_sheet_name, InsurancePremium, rows=5000)
        self._profiles = collection(names.salary_profiles_sheet_name, SalaryProfile)
        self._cycles = collection(
            names.salary_cycles_sheet_name,
            SalaryCycle,
            key_fn=lambda c: f"{c.profile_id}:{c.year:04d}-{c.month:02d}",
        )

    # -------------------------------------------------------------------------
    # Sources and occurrences
    # -------------------------------------------------------------------------

    def save_source(self, source: AnySource) -> AnySource:
        source = source.model_copy(update={"updated_at": datetime.utcnow()})
        try:
            self._sources.upsert(source)
            return source
        except Exception as e:
            raise StorageError(f"Failed to save source: {e}")

    def get_source(self, source_id: UUID) -> Optional[AnySource]:
        return self._sources.get(source_id)

    def list_sources(
        self,
        active_only: bool = False,
        kind: Optional[SourceKind] = None,
    ) -> list[AnySource]:
        return [
            s for s in self._sources.all()
            if (not active_only or s.is_active) and (kind is None or s.kind == kind)
        ]

    def delete_source(self, source_id: UUID) -> bool:
        return self._sources.delete_many([source_id]) > 0

    def insert_occurrence(self, occurrence: Occurrence) -> Occurrence:
        key = occurrence_key(occurrence.source_id, occurrence.month, occurrence.year)
        found = self._occurrences.find_by_key(key)
        if found is not None:
            raise IdempotencyConflict(
                f"Occurrence already exists for {key}",
                existing=found[1],
            )
        try:
            self._occurrences.append(occurrence)
            return occurrence
        except Exception as e:
            raise StorageError(f"Failed to save occurrence: {e}")

    def get_occurrence(self, occurrence_id: UUID) -> Optional[Occurrence]:
        return self._occurrences.get(occurrence_id)

    def find_occurrence(
        self,
        source_id: UUID,
        month: int,
        year: int,
    ) -> Optional[Occurrence]:
        found = self._occurrences.find_by_key(occurrence_key(source_id, month, year))
        return found[1] if found else None

    def list_occurrences(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        source_id: Optional[UUID] = None,
        status: Optional[OccurrenceStatus] = None,
    ) -> list[Occurrence]:
        results = [
            o for o in self._occurrences.all()
            if (month is None or o.month == month)
            and (year is None or o.year == year)
            and (source_id is None or o.source_id == source_id)
            and (status is None or o.status == status)
        ]
        results.sort(key=lambda o: (o.due_date, o.name))
        return results

    def update_occurrence(
        self,
        occurrence: Occurrence,
        expected_status: Optional[OccurrenceStatus] = None,
    ) -> Occurrence:
        found = self._occurrences.row_of(occurrence.id)
        if found is None:
            raise NotFoundError(f"Occurrence not found: {occurrence.id}")
        row_number, current = found
        if expected_status is not None and current.status != expected_status:
            raise StaleStateError(
                f"Occurrence {occurrence.id} is {current.status.value}, "
                f"expected {expected_status.value}",
                current=current,
            )
        occurrence = occurrence.model_copy(update={"updated_at": datetime.utcnow()})
        try:
            self._occurrences.write(row_number, occurrence)
            return occurrence
        except Exception as e:
            raise StorageError(f"Failed to update occurrence: {e}")

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    def save_loan(self, loan: Loan) -> Loan:
        loan = loan.model_copy(update={"updated_at": datetime.utcnow()})
        self._loans.upsert(loan)
        return loan

    def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        return self._loans.get(loan_id)

    def list_loans(self, status: Optional[LoanStatus] = None) -> list[Loan]:
        return [loan for loan in self._loans.all() if status is None or loan.status == status]

    def save_term(self, term: LoanTerm) -> LoanTerm:
        self._terms.upsert(term)
        return term

    def list_terms(self, loan_id: UUID) -> list[LoanTerm]:
        terms = [t for t in self._terms.all() if t.loan_id == loan_id]
        return sorted(terms, key=lambda t: t.term_number)

    def save_installments(self, installments: list[LoanInstallment]) -> None:
        self._installments.upsert_many(installments)

    def get_installment(self, installment_id: UUID) -> Optional[LoanInstallment]:
        return self._installments.get(installment_id)

    def list_installments(
        self,
        loan_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[LoanInstallment]:
        rows = [
            i for i in self._installments.all()
            if (loan_id is None or i.loan_id == loan_id)
            and (date_from is None or i.due_date >= date_from)
            and (date_to is None or i.due_date <= date_to)
        ]
        return sorted(rows, key=lambda i: (str(i.loan_id), i.installment_number))

    def delete_installments(self, installment_ids: list[UUID]) -> int:
        return self._installments.delete_many(installment_ids)

    def save_bt_allocation(self, allocation: LoanBtAllocation) -> LoanBtAllocation:
        self._bt_allocations.upsert(allocation)
        return allocation

    def list_bt_allocations(
        self,
        bt_loan_id: Optional[UUID] = None,
        target_loan_id: Optional[UUID] = None,
    ) -> list[LoanBtAllocation]:
        return [
            a for a in self._bt_allocations.all()
            if (bt_loan_id is None or a.bt_loan_id == bt_loan_id)
            and (target_loan_id is None or a.target_loan_id == target_loan_id)
        ]

    def save_loan_payment(self, payment: LoanPayment) -> LoanPayment:
        self._loan_payments.upsert(payment)
        return payment

    def list_loan_payments(self, loan_id: UUID) -> list[LoanPayment]:
        payments = [p for p in self._loan_payments.all() if p.loan_id == loan_id]
        return sorted(payments, key=lambda p: p.payment_date)

    def delete_loan_payments(self, payment_ids: list[UUID]) -> int:
        return self._loan_payments.delete_many(payment_ids)

    # -------------------------------------------------------------------------
    # Insurance
    # -------------------------------------------------------------------------

    def save_insurance(self, policy: Insurance) -> Insurance:
        self._insurances.upsert(policy)
        return policy

    def get_insurance(self, insurance_id: UUID) -> Optional[Insurance]:
        return self._insurances.get(insurance_id)

    def list_insurances(self, active_only: bool = False) -> list[Insurance]:
        return [p for p in self._insurances.all() if not active_only or p.is_active]

    def save_premiums(self, premiums: list[InsurancePremium]) -> None:
        self._premiums.upsert_many(premiums)

    def get_premium(self, premium_id: UUID) -> Optional[InsurancePremium]:
        return self._premiums.get(premium_id)

    def list_premiums(
        self,
        insurance_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[InsurancePremium]:
        rows = [
            p for p in self._premiums.all()
            if (insurance_id is None or p.insurance_id == insurance_id)
            and (date_from is None or p.due_date >= date_from)
            and (date_to is None or p.due_date <= date_to)
        ]
        return sorted(rows, key=lambda p: (p.due_date, p.term_number))

    # -------------------------------------------------------------------------
    # Salary
    # -------------------------------------------------------------------------

    def save_profile(self, profile: SalaryProfile) -> SalaryProfile:
        changed = [profile]
        if profile.is_active:
            # One active profile per user
            changed += [
                p.model_copy(update={"is_active": False})
                for p in self._profiles.all()
                if p.is_active and p.id != profile.id
            ]
        self._profiles.upsert_many(changed)
        return profile

    def get_active_profile(self) -> Optional[SalaryProfile]:
        return next((p for p in self._profiles.all() if p.is_active), None)

    def save_cycle(self, cycle: SalaryCycle) -> SalaryCycle:
        self._cycles.upsert(cycle)
        return cycle

    def update_cycle(
        self,
        cycle: SalaryCycle,
        expected_credited: Optional[bool] = None,
    ) -> SalaryCycle:
        found = self._cycles.row_of(cycle.id)
        if found is None:
            raise NotFoundError(f"Salary cycle not found: {cycle.id}")
        row_number, current = found
        if expected_credited is not None and current.is_credited != expected_credited:
            raise StaleStateError(
                f"Salary cycle {cycle.id} credited={current.is_credited}, "
                f"expected {expected_credited}",
                current=current,
            )
        try:
            self._cycles.write(row_number, cycle)
            return cycle
        except Exception as e:
            raise StorageError(f"Failed to update salary cycle: {e}")

    def get_cycle(self, cycle_id: UUID) -> Optional[SalaryCycle]:
        return self._cycles.get(cycle_id)

    def find_cycle(
        self,
        profile_id: UUID,
        month: int,
        year: int,
    ) -> Optional[SalaryCycle]:
        found = self._cycles.find_by_key(f"{profile_id}:{year:04d}-{month:02d}")
        return found[1] if found else None

    def list_cycles(self, profile_id: UUID) -> list[SalaryCycle]:
        cycles = [c for c in self._cycles.all() if c.profile_id == profile_id]
        return sorted(cycles, key=lambda c: (c.year, c.month), reverse=True)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._table = SheetTable(
            self._client,
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._table.append(event.to_sheets_row())
            return True
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    def _read_events(self) -> list[AuditEvent]:
        try:
            rows = self._table.read_rows()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for _, row in rows:
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        events = [e for e in self._read_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        events = [
            e for e in self._read_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        events = self._read_events()
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
