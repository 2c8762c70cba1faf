"""
In-Memory Storage Implementation

Backs the `memory` storage backend and the test suite. Every collection
is a dict keyed by id; rows are copied on the way in and out so callers
never hold a live reference into storage.

A single lock serializes writes, which is what makes the keyed insert
and the compare-and-set update safe against double submission.
"""

import threading
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
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
from obligations.utils.money import to_money
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
)


def _in_range(d: date, date_from: Optional[date], date_to: Optional[date]) -> bool:
    if date_from and d < date_from:
        return False
    if date_to and d > date_to:
        return False
    return True


class InMemoryStorage(
    LedgerInterface,
    ObligationStorageInterface,
    LoanStorageInterface,
    InsuranceStorageInterface,
    SalaryStorageInterface,
    AuditStorageInterface,
):
    """All storage interfaces over plain dicts."""

    def __init__(self):
        self._lock = threading.RLock()
        self._accounts: dict[UUID, Account] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._sources: dict[UUID, AnySource] = {}
        self._occurrences: dict[UUID, Occurrence] = {}
        self._occurrence_keys: dict[tuple[UUID, int, int], UUID] = {}
        self._loans: dict[UUID, Loan] = {}
        self._terms: dict[UUID, LoanTerm] = {}
        self._installments: dict[UUID, LoanInstallment] = {}
        self._bt_allocations: dict[UUID, LoanBtAllocation] = {}
        self._loan_payments: dict[UUID, LoanPayment] = {}
        self._insurances: dict[UUID, Insurance] = {}
        self._premiums: dict[UUID, InsurancePremium] = {}
        self._profiles: dict[UUID, SalaryProfile] = {}
        self._cycles: dict[UUID, SalaryCycle] = {}
        self._events: list[AuditEvent] = []

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True) if model is not None else None

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def create_account(self, account: Account) -> Account:
        with self._lock:
            self._accounts[account.id] = self._copy(account)
        return self._copy(account)

    def get_account(self, account_id: UUID) -> Optional[Account]:
        return self._copy(self._accounts.get(account_id))

    def list_accounts(self) -> list[Account]:
        return [self._copy(a) for a in self._accounts.values()]

    def adjust_account_balance(self, account_id: UUID, delta: Decimal) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")
            account.balance = to_money(account.balance + Decimal(delta))
            return self._copy(account)

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
        with self._lock:
            if account_id not in self._accounts:
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
            self._transactions[transaction.id] = transaction
            return self._copy(transaction)

    def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        return self._copy(self._transactions.get(transaction_id))

    def delete_transaction(self, transaction_id: UUID) -> bool:
        with self._lock:
            return self._transactions.pop(transaction_id, None) is not None

    def find_transaction_by_link_ref(self, link: LinkRef) -> Optional[Transaction]:
        for transaction in self._transactions.values():
            if link.matches(transaction.link):
                return self._copy(transaction)
        return None

    def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        results = []
        for t in self._transactions.values():
            if account_id and t.account_id != account_id:
                continue
            if transaction_type and t.transaction_type != transaction_type:
                continue
            if not _in_range(t.transaction_date, date_from, date_to):
                continue
            results.append(self._copy(t))
        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    # -------------------------------------------------------------------------
    # Sources and occurrences
    # -------------------------------------------------------------------------

    def save_source(self, source: AnySource) -> AnySource:
        with self._lock:
            stored = self._copy(source)
            stored.updated_at = datetime.utcnow()
            self._sources[source.id] = stored
            return self._copy(stored)

    def get_source(self, source_id: UUID) -> Optional[AnySource]:
        return self._copy(self._sources.get(source_id))

    def list_sources(
        self,
        active_only: bool = False,
        kind: Optional[SourceKind] = None,
    ) -> list[AnySource]:
        return [
            self._copy(s)
            for s in self._sources.values()
            if (not active_only or s.is_active) and (kind is None or s.kind == kind)
        ]

    def delete_source(self, source_id: UUID) -> bool:
        with self._lock:
            return self._sources.pop(source_id, None) is not None

    def insert_occurrence(self, occurrence: Occurrence) -> Occurrence:
        with self._lock:
            existing_id = self._occurrence_keys.get(occurrence.key)
            if existing_id is not None:
                raise IdempotencyConflict(
                    f"Occurrence already exists for {occurrence.key}",
                    existing=self._copy(self._occurrences[existing_id]),
                )
            self._occurrences[occurrence.id] = self._copy(occurrence)
            self._occurrence_keys[occurrence.key] = occurrence.id
            return self._copy(occurrence)

    def get_occurrence(self, occurrence_id: UUID) -> Optional[Occurrence]:
        return self._copy(self._occurrences.get(occurrence_id))

    def find_occurrence(
        self,
        source_id: UUID,
        month: int,
        year: int,
    ) -> Optional[Occurrence]:
        occurrence_id = self._occurrence_keys.get((source_id, month, year))
        return self.get_occurrence(occurrence_id) if occurrence_id else None

    def list_occurrences(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        source_id: Optional[UUID] = None,
        status: Optional[OccurrenceStatus] = None,
    ) -> list[Occurrence]:
        results = []
        for o in self._occurrences.values():
            if month is not None and o.month != month:
                continue
            if year is not None and o.year != year:
                continue
            if source_id is not None and o.source_id != source_id:
                continue
            if status is not None and o.status != status:
                continue
            results.append(self._copy(o))
        results.sort(key=lambda o: (o.due_date, o.name))
        return results

    def update_occurrence(
        self,
        occurrence: Occurrence,
        expected_status: Optional[OccurrenceStatus] = None,
    ) -> Occurrence:
        with self._lock:
            current = self._occurrences.get(occurrence.id)
            if current is None:
                raise NotFoundError(f"Occurrence not found: {occurrence.id}")
            if expected_status is not None and current.status != expected_status:
                raise StaleStateError(
                    f"Occurrence {occurrence.id} is {current.status.value}, "
                    f"expected {expected_status.value}",
                    current=self._copy(current),
                )
            stored = self._copy(occurrence)
            stored.updated_at = datetime.utcnow()
            self._occurrences[occurrence.id] = stored
            return self._copy(stored)

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    def save_loan(self, loan: Loan) -> Loan:
        with self._lock:
            stored = self._copy(loan)
            stored.updated_at = datetime.utcnow()
            self._loans[loan.id] = stored
            return self._copy(stored)

    def get_loan(self, loan_id: UUID) -> Optional[Loan]:
        return self._copy(self._loans.get(loan_id))

    def list_loans(self, status: Optional[LoanStatus] = None) -> list[Loan]:
        return [
            self._copy(loan) for loan in self._loans.values()
            if status is None or loan.status == status
        ]

    def save_term(self, term: LoanTerm) -> LoanTerm:
        with self._lock:
            self._terms[term.id] = self._copy(term)
        return self._copy(term)

    def list_terms(self, loan_id: UUID) -> list[LoanTerm]:
        terms = [self._copy(t) for t in self._terms.values() if t.loan_id == loan_id]
        return sorted(terms, key=lambda t: t.term_number)

    def save_installments(self, installments: list[LoanInstallment]) -> None:
        with self._lock:
            for installment in installments:
                self._installments[installment.id] = self._copy(installment)

    def get_installment(self, installment_id: UUID) -> Optional[LoanInstallment]:
        return self._copy(self._installments.get(installment_id))

    def list_installments(
        self,
        loan_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[LoanInstallment]:
        rows = [
            self._copy(i) for i in self._installments.values()
            if (loan_id is None or i.loan_id == loan_id)
            and _in_range(i.due_date, date_from, date_to)
        ]
        return sorted(rows, key=lambda i: (str(i.loan_id), i.installment_number))

    def delete_installments(self, installment_ids: list[UUID]) -> int:
        with self._lock:
            return sum(
                1 for i in installment_ids
                if self._installments.pop(i, None) is not None
            )

    def save_bt_allocation(self, allocation: LoanBtAllocation) -> LoanBtAllocation:
        with self._lock:
            self._bt_allocations[allocation.id] = self._copy(allocation)
        return self._copy(allocation)

    def list_bt_allocations(
        self,
        bt_loan_id: Optional[UUID] = None,
        target_loan_id: Optional[UUID] = None,
    ) -> list[LoanBtAllocation]:
        return [
            self._copy(a) for a in self._bt_allocations.values()
            if (bt_loan_id is None or a.bt_loan_id == bt_loan_id)
            and (target_loan_id is None or a.target_loan_id == target_loan_id)
        ]

    def save_loan_payment(self, payment: LoanPayment) -> LoanPayment:
        with self._lock:
            self._loan_payments[payment.id] = self._copy(payment)
        return self._copy(payment)

    def list_loan_payments(self, loan_id: UUID) -> list[LoanPayment]:
        payments = [self._copy(p) for p in self._loan_payments.values() if p.loan_id == loan_id]
        return sorted(payments, key=lambda p: p.payment_date)

    def delete_loan_payments(self, payment_ids: list[UUID]) -> int:
        with self._lock:
            return sum(
                1 for i in payment_ids
                if self._loan_payments.pop(i, None) is not None
            )

    # -------------------------------------------------------------------------
    # Insurance
    # -------------------------------------------------------------------------

    def save_insurance(self, policy: Insurance) -> Insurance:
        with self._lock:
            self._insurances[policy.id] = self._copy(policy)
        return self._copy(policy)

    def get_insurance(self, insurance_id: UUID) -> Optional[Insurance]:
        return self._copy(self._insurances.get(insurance_id))

    def list_insurances(self, active_only: bool = False) -> list[Insurance]:
        return [
            self._copy(p) for p in self._insurances.values()
            if not active_only or p.is_active
        ]

    def save_premiums(self, premiums: list[InsurancePremium]) -> None:
        with self._lock:
            for premium in premiums:
                self._premiums[premium.id] = self._copy(premium)

    def get_premium(self, premium_id: UUID) -> Optional[InsurancePremium]:
        return self._copy(self._premiums.get(premium_id))

    def list_premiums(
        self,
        insurance_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[InsurancePremium]:
        rows = [
            self._copy(p) for p in self._premiums.values()
            if (insurance_id is None or p.insurance_id == insurance_id)
            and _in_range(p.due_date, date_from, date_to)
        ]
        return sorted(rows, key=lambda p: (p.due_date, p.term_number))

    # -------------------------------------------------------------------------
    # Salary
    # -------------------------------------------------------------------------

    def save_profile(self, profile: SalaryProfile) -> SalaryProfile:
        with self._lock:
            if profile.is_active:
                # One active profile per user
                for other in self._profiles.values():
                    if other.id != profile.id:
                        other.is_active = False
            self._profiles[profile.id] = self._copy(profile)
        return self._copy(profile)

    def get_active_profile(self) -> Optional[SalaryProfile]:
        for profile in self._profiles.values():
            if profile.is_active:
                return self._copy(profile)
        return None

    def save_cycle(self, cycle: SalaryCycle) -> SalaryCycle:
        with self._lock:
            self._cycles[cycle.id] = self._copy(cycle)
        return self._copy(cycle)

    def update_cycle(
        self,
        cycle: SalaryCycle,
        expected_credited: Optional[bool] = None,
    ) -> SalaryCycle:
        with self._lock:
            current = self._cycles.get(cycle.id)
            if current is None:
                raise NotFoundError(f"Salary cycle not found: {cycle.id}")
            if expected_credited is not None and current.is_credited != expected_credited:
                raise StaleStateError(
                    f"Salary cycle {cycle.id} credited={current.is_credited}, "
                    f"expected {expected_credited}",
                    current=self._copy(current),
                )
            self._cycles[cycle.id] = self._copy(cycle)
            return self._copy(cycle)

    def get_cycle(self, cycle_id: UUID) -> Optional[SalaryCycle]:
        return self._copy(self._cycles.get(cycle_id))

    def find_cycle(
        self,
        profile_id: UUID,
        month: int,
        year: int,
    ) -> Optional[SalaryCycle]:
        for cycle in self._cycles.values():
            if (cycle.profile_id, cycle.month, cycle.year) == (profile_id, month, year):
                return self._copy(cycle)
        return None

    def list_cycles(self, profile_id: UUID) -> list[SalaryCycle]:
        cycles = [self._copy(c) for c in self._cycles.values() if c.profile_id == profile_id]
        return sorted(cycles, key=lambda c: (c.year, c.month), reverse=True)

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(self._copy(event))
        return True

    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [self._copy(e) for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            self._copy(e) for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return [self._copy(e) for e in events[:limit]]
