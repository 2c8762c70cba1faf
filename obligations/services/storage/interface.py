"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Relations (occurrence -> transaction, loan -> installments) are explicit
lookups, never implicit lazy loading.

CONCURRENCY CONTRACT: Implementations serialize writes. The two
operations the engine relies on for safety are:
- insert_occurrence: keyed insert, raises IdempotencyConflict when the
  (source_id, month, year) key already exists
- update_occurrence(expected_status=...): compare-and-set, raises
  StaleStateError when the stored status differs
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from obligations.models.audit import AuditEvent
from obligations.models.insurance import Insurance, InsurancePremium
from obligations.models.ledger import Account, LinkRef, Transaction, TransactionType
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


class LedgerInterface(ABC):
    """
    The Ledger collaborator: accounts and transactions.

    Owned by the surrounding finance app; the engine only uses these
    operations.
    """

    @abstractmethod
    def create_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    def list_accounts(self) -> list[Account]:
        pass

    @abstractmethod
    def adjust_account_balance(self, account_id: UUID, delta: Decimal) -> Account:
        """
        Add `delta` (may be negative) to an account's balance.

        Returns:
            The updated account

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
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
        """
        Record a transaction. Does NOT touch the account balance.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if it existed and was deleted
        """
        pass

    @abstractmethod
    def find_transaction_by_link_ref(self, link: LinkRef) -> Optional[Transaction]:
        """Find the transaction created for the record `link` points at."""
        pass

    @abstractmethod
    def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """
        List transactions with optional filters (dates inclusive).
        """
        pass


class ObligationStorageInterface(ABC):
    """
    Recurrence sources and their monthly occurrences.
    """

    @abstractmethod
    def save_source(self, source: AnySource) -> AnySource:
        """Insert or replace a source by id."""
        pass

    @abstractmethod
    def get_source(self, source_id: UUID) -> Optional[AnySource]:
        pass

    @abstractmethod
    def list_sources(
        self,
        active_only: bool = False,
        kind: Optional[SourceKind] = None,
    ) -> list[AnySource]:
        pass

    @abstractmethod
    def delete_source(self, source_id: UUID) -> bool:
        pass

    @abstractmethod
    def insert_occurrence(self, occurrence: Occurrence) -> Occurrence:
        """
        Insert a new occurrence.

        Raises:
            IdempotencyConflict: An occurrence with the same
                (source_id, month, year) key exists. The stored row is
                attached as `existing`.
        """
        pass

    @abstractmethod
    def get_occurrence(self, occurrence_id: UUID) -> Optional[Occurrence]:
        pass

    @abstractmethod
    def find_occurrence(
        self,
        source_id: UUID,
        month: int,
        year: int,
    ) -> Optional[Occurrence]:
        pass

    @abstractmethod
    def list_occurrences(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        source_id: Optional[UUID] = None,
        status: Optional[OccurrenceStatus] = None,
    ) -> list[Occurrence]:
        """
        List occurrences, ordered by due date.
        """
        pass

    @abstractmethod
    def update_occurrence(
        self,
        occurrence: Occurrence,
        expected_status: Optional[OccurrenceStatus] = None,
    ) -> Occurrence:
        """
        Replace a stored occurrence.

        Args:
            occurrence: The occurrence with updated fields
            expected_status: If given, only write when the stored row
                still has this status (compare-and-set)

        Raises:
            NotFoundError: If the occurrence doesn't exist
            StaleStateError: If the stored status != expected_status
        """
        pass


class LoanStorageInterface(ABC):
    """Loans with their terms, installments, BT allocations and payments."""

    @abstractmethod
    def save_loan(self, loan: Loan) -> Loan:
        pass

    @abstractmethod
    def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        pass

    @abstractmethod
    def list_loans(self, status: Optional[LoanStatus] = None) -> list[Loan]:
        pass

    @abstractmethod
    def save_term(self, term: LoanTerm) -> LoanTerm:
        pass

    @abstractmethod
    def list_terms(self, loan_id: UUID) -> list[LoanTerm]:
        """Terms of a loan ordered by term_number."""
        pass

    @abstractmethod
    def save_installments(self, installments: list[LoanInstallment]) -> None:
        """Insert or replace installments by id."""
        pass

    @abstractmethod
    def get_installment(self, installment_id: UUID) -> Optional[LoanInstallment]:
        pass

    @abstractmethod
    def list_installments(
        self,
        loan_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[LoanInstallment]:
        """Installments ordered by (loan, installment_number)."""
        pass

    @abstractmethod
    def delete_installments(self, installment_ids: list[UUID]) -> int:
        """Returns the number of rows deleted."""
        pass

    @abstractmethod
    def save_bt_allocation(self, allocation: LoanBtAllocation) -> LoanBtAllocation:
        pass

    @abstractmethod
    def list_bt_allocations(
        self,
        bt_loan_id: Optional[UUID] = None,
        target_loan_id: Optional[UUID] = None,
    ) -> list[LoanBtAllocation]:
        pass

    @abstractmethod
    def save_loan_payment(self, payment: LoanPayment) -> LoanPayment:
        pass

    @abstractmethod
    def list_loan_payments(self, loan_id: UUID) -> list[LoanPayment]:
        pass

    @abstractmethod
    def delete_loan_payments(self, payment_ids: list[UUID]) -> int:
        """Returns the number of payments removed."""
        pass


class InsuranceStorageInterface(ABC):
    """Insurance policies and their expanded premium terms."""

    @abstractmethod
    def save_insurance(self, policy: Insurance) -> Insurance:
        pass

    @abstractmethod
    def get_insurance(self, insurance_id: UUID) -> Optional[Insurance]:
        pass

    @abstractmethod
    def list_insurances(self, active_only: bool = False) -> list[Insurance]:
        pass

    @abstractmethod
    def save_premiums(self, premiums: list[InsurancePremium]) -> None:
        """Insert or replace premiums by id."""
        pass

    @abstractmethod
    def get_premium(self, premium_id: UUID) -> Optional[InsurancePremium]:
        pass

    @abstractmethod
    def list_premiums(
        self,
        insurance_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[InsurancePremium]:
        """Premiums ordered by due date."""
        pass


class SalaryStorageInterface(ABC):
    """Salary profile and monthly cycles."""

    @abstractmethod
    def save_profile(self, profile: SalaryProfile) -> SalaryProfile:
        pass

    @abstractmethod
    def get_active_profile(self) -> Optional[SalaryProfile]:
        pass

    @abstractmethod
    def save_cycle(self, cycle: SalaryCycle) -> SalaryCycle:
        pass

    @abstractmethod
    def update_cycle(
        self,
        cycle: SalaryCycle,
        expected_credited: Optional[bool] = None,
    ) -> SalaryCycle:
        """
        Overwrite a stored cycle.

        With `expected_credited`, the write happens only if the stored
        cycle's credited state still matches; otherwise StaleStateError.
        """
        pass

    @abstractmethod
    def get_cycle(self, cycle_id: UUID) -> Optional[SalaryCycle]:
        pass

    @abstractmethod
    def find_cycle(
        self,
        profile_id: UUID,
        month: int,
        year: int,
    ) -> Optional[SalaryCycle]:
        pass

    @abstractmethod
    def list_cycles(self, profile_id: UUID) -> list[SalaryCycle]:
        """Cycles ordered newest first."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one mark-paid request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class IdempotencyConflict(DuplicateError):
    """
    An occurrence for this (source_id, month, year) already exists.

    Not an error for the generator: the existing row is canonical.
    """

    def __init__(self, message: str, existing: Optional[Occurrence] = None):
        self.existing = existing
        super().__init__(message)


class StaleStateError(StorageError):
    """A compare-and-set write found a different state than expected."""

    def __init__(self, message: str, current: Optional[Union[Occurrence, SalaryCycle]] = None):
        self.current = current
        super().__init__(message)


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
