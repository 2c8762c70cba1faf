"""
Salary Cycles

One SalaryCycle per (profile, month, year) records the expected payday
next to what actually arrived. Marking a cycle credited mirrors
mark-paid in the credit direction: claim the cycle, add a credit
transaction linked to it, then raise the balance. Unmarking claims the
cycle back, deletes the transaction found by that link and only then
lowers the balance. A failure part-way undoes the finished steps and
raises ReconciliationError.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.engine.reconciliation import UndoSteps, compensate
from obligations.errors import ReconciliationError, SalaryProfileRequired
from obligations.models.audit import AuditEventBuilder
from obligations.models.ledger import LinkRef, TransactionType
from obligations.models.reconciliation import (
    ReconciliationInconsistency,
    ReconciliationResult,
)
from obligations.models.salary import SalaryCycle, SalaryProfile
from obligations.scheduling.payday import PaydayPredictor
from obligations.services.clock import Clock, SystemClock
from obligations.services.storage import (
    LedgerInterface,
    SalaryStorageInterface,
    StaleStateError,
)
from obligations.utils.money import to_money
from obligations.validation import RecurrenceValidator

logger = structlog.get_logger(__name__)

UNCREDITED_FIELDS = {
    "actual_pay_date": None,
    "actual_amount": None,
    "credited_account_id": None,
    "transaction_id": None,
}


class SalaryService:
    """Salary profile, cycles and payday lookups."""

    def __init__(
        self,
        salary: SalaryStorageInterface,
        ledger: LedgerInterface,
        validator: RecurrenceValidator,
        predictor: Optional[PaydayPredictor] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._salary = salary
        self._ledger = ledger
        self._validator = validator
        self._clock = clock or SystemClock()
        self._predictor = predictor or PaydayPredictor(self._clock)
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Profile and paydays
    # -------------------------------------------------------------------------

    def save_profile(self, profile: SalaryProfile) -> SalaryProfile:
        """
        Validate and store the profile. It becomes the active one.

        Raises:
            ValidationError: the profile is rejected
        """
        self._validator.ensure_valid_salary_profile(profile)
        return self._salary.save_profile(profile)

    def active_profile(self) -> SalaryProfile:
        profile = self._salary.get_active_profile()
        if profile is None:
            raise SalaryProfileRequired("No salary profile is set up")
        return profile

    def upcoming_paydays(self, count: Optional[int] = None) -> list[date]:
        profile = self._salary.get_active_profile()
        if profile is None:
            return []
        return self._predictor.next_paydays(profile, count)

    def past_paydays(self, count: Optional[int] = None) -> list[date]:
        profile = self._salary.get_active_profile()
        if profile is None:
            return []
        return self._predictor.past_paydays(profile, count)

    def current_cycle_window(self) -> tuple[date, date]:
        """The salary cycle containing today, honouring the last actual credit."""
        profile = self.active_profile()
        today = self._clock.today()
        last_actual = next(
            (
                c.actual_pay_date
                for c in self._salary.list_cycles(profile.id)
                if c.actual_pay_date is not None and c.actual_pay_date <= today
            ),
            None,
        )
        return self._predictor.cycle_window(profile, today, last_actual)

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def ensure_cycle(self, month: int, year: int) -> SalaryCycle:
        """Return the cycle for (month, year), creating it on first use."""
        profile = self.active_profile()
        cycle = self._salary.find_cycle(profile.id, month, year)
        if cycle is not None:
            return cycle

        cycle = SalaryCycle(
            profile_id=profile.id,
            month=month,
            year=year,
            expected_pay_date=self._predictor.predict(profile, month, year),
            expected_amount=profile.monthly_amount,
        )
        return self._salary.save_cycle(cycle)

    def _fail(self, operation: str, cycle: SalaryCycle, error: Exception,
              correlation_id: UUID) -> ReconciliationError:
        logger.error(
            "salary_reconciliation_failed",
            operation=operation,
            cycle_id=str(cycle.id),
            error=str(error),
        )
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.reconciliation_failed(
                entity_id=cycle.id,
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            ))
        return ReconciliationError(
            f"Could not {operation.replace('_', ' ')} for {cycle.month:02d}/{cycle.year}: {error}",
            occurrence_id=cycle.id,
        )

    def _recreate(self, cycle: SalaryCycle, transaction) -> None:
        recreated = self._ledger.create_transaction(
            transaction_type=transaction.transaction_type,
            amount=transaction.amount,
            account_id=transaction.account_id,
            description=transaction.description,
            transaction_date=transaction.transaction_date,
            category_id=transaction.category_id,
            link=transaction.link,
        )
        cycle.transaction_id = recreated.id

    def mark_salary_credited(
        self,
        month: int,
        year: int,
        pay_date: Optional[date] = None,
        amount: Optional[Decimal] = None,
        account_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Record the month's salary as received.

        The cycle is claimed first (compare-and-set on its credited
        state), then the credit transaction and the balance increase
        follow. A cycle that is already credited, or that another call
        claims first, is left untouched.

        Raises:
            ReconciliationError: no amount is known, the account is
                missing, or a ledger write failed; nothing was changed
        """
        correlation_id = correlation_id or create_correlation_id()
        profile = self.active_profile()
        cycle = self.ensure_cycle(month, year)
        if cycle.is_credited:
            return ReconciliationResult(changed=False, cycle=cycle)

        amount = to_money(amount) if amount is not None else cycle.expected_amount
        if amount is None or amount <= 0:
            raise ReconciliationError("Salary amount is required", occurrence_id=cycle.id)
        account_id = account_id or profile.account_id
        if self._ledger.get_account(account_id) is None:
            raise ReconciliationError(f"Account not found: {account_id}", occurrence_id=cycle.id)
        pay_date = pay_date or cycle.expected_pay_date

        # 1. Claim
        try:
            credited = self._salary.update_cycle(
                cycle.model_copy(update={
                    "actual_pay_date": pay_date,
                    "actual_amount": amount,
                    "credited_account_id": account_id,
                }),
                expected_credited=False,
            )
        except StaleStateError as e:
            logger.info("salary_credit_lost_race", cycle_id=str(cycle.id))
            return ReconciliationResult(changed=False, cycle=e.current)

        undo: UndoSteps = [
            ("release_cycle", lambda: self._salary.update_cycle(cycle, expected_credited=True)),
        ]
        try:
            # 2. Transaction
            transaction = self._ledger.create_transaction(
                transaction_type=TransactionType.CREDIT,
                amount=amount,
                account_id=account_id,
                description=f"Salary {month:02d}/{year}",
                transaction_date=pay_date,
                link=LinkRef(salary_cycle_id=cycle.id),
            )
            undo.append(("delete_transaction", lambda: self._ledger.delete_transaction(transaction.id)))

            # 3. Balance
            self._ledger.adjust_account_balance(account_id, amount)
            undo.append(("reverse_balance", lambda: self._ledger.adjust_account_balance(account_id, -amount)))

            # 4. Link
            credited = self._salary.update_cycle(
                credited.model_copy(update={"transaction_id": transaction.id}),
                expected_credited=True,
            )
        except Exception as e:
            compensate(undo, cycle.id)
            raise self._fail("credit_salary", cycle, e, correlation_id) from e

        logger.info("salary_credited", cycle_id=str(cycle.id), amount=str(amount))
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.salary_credited(
                cycle_id=cycle.id,
                amount=str(amount),
                pay_date=pay_date.isoformat(),
                correlation_id=correlation_id,
            ))
        return ReconciliationResult(
            changed=True,
            cycle=credited,
            transaction_id=transaction.id,
            balance_adjusted=True,
        )

    def unmark_salary_credited(
        self,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        Reverse a salary credit.

        The transaction is deleted before the balance is reduced, so a
        failed delete never leaves the account short. If the linked
        transaction was deleted in the meantime the cycle is still reset,
        the balance is left alone and a warning is returned.

        Raises:
            ReconciliationError: a ledger write failed; the cycle is
                credited again and the ledger is as it was
        """
        correlation_id = correlation_id or create_correlation_id()
        profile = self.active_profile()
        cycle = self._salary.find_cycle(profile.id, month, year)
        if cycle is None or not cycle.is_credited:
            return ReconciliationResult(changed=False, cycle=cycle)

        # 1. Claim
        try:
            released = self._salary.update_cycle(
                cycle.model_copy(update=UNCREDITED_FIELDS),
                expected_credited=True,
            )
        except StaleStateError as e:
            logger.info("salary_uncredit_lost_race", cycle_id=str(cycle.id))
            return ReconciliationResult(changed=False, cycle=e.current)

        undo: UndoSteps = [
            ("restore_credit", lambda: self._salary.update_cycle(cycle, expected_credited=False)),
        ]
        warnings = []
        balance_restored = False
        try:
            transaction = self._ledger.find_transaction_by_link_ref(LinkRef(salary_cycle_id=cycle.id))
            if transaction is None:
                warnings.append(ReconciliationInconsistency(
                    entity_id=cycle.id,
                    kind="missing_transaction",
                    message=(
                        f"Salary transaction for {month:02d}/{year} was already deleted; "
                        "account balance was not changed"
                    ),
                ))
            else:
                self._ledger.delete_transaction(transaction.id)
                undo.append(("recreate_transaction", lambda: self._recreate(cycle, transaction)))

                self._ledger.adjust_account_balance(transaction.account_id, -transaction.amount)
                balance_restored = True
        except Exception as e:
            compensate(undo, cycle.id)
            raise self._fail("uncredit_salary", cycle, e, correlation_id) from e

        logger.info("salary_uncredited", cycle_id=str(cycle.id), balance_restored=balance_restored)
        if self._audit_logger:
            self._audit_logger.log_inconsistencies(warnings, correlation_id)
            self._audit_logger.log(AuditEventBuilder.salary_uncredited(
                cycle_id=cycle.id,
                balance_restored=balance_restored,
                correlation_id=correlation_id,
            ))
        return ReconciliationResult(
            changed=True,
            cycle=released,
            balance_adjusted=balance_restored,
            warnings=warnings,
        )
