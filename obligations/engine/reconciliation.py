"""
Reconciliation: Occurrence <-> Ledger

State machine per occurrence:

    pending --mark_paid--> paid --unmark--> pending
    pending --skip-------> skipped (terminal)

DESIGN DECISION: A mark-paid touches three things - the occurrence, a
ledger transaction and an account balance. Storage gives us no
multi-row transaction, so the order is fixed:

1. Claim: compare-and-set the occurrence pending -> paid. Losing the
   race (a double-submitted request) makes the call a no-op.
2. Create the linked transaction (if affect_transaction).
3. Adjust the balance (if affect_account_balance).
4. Update the installment / premium behind the occurrence.
5. Write the transaction id onto the occurrence.

Any failure after the claim undoes the completed steps in reverse and
raises ReconciliationError, so nothing is left half-applied.
Unmark runs the same steps inverted.
"""

from datetime import date
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.engine.insurance import InsuranceService
from obligations.engine.loans import LoanService
from obligations.errors import ReconciliationError
from obligations.models.audit import AuditEventBuilder
from obligations.models.ledger import LinkRef, TransactionType
from obligations.models.reconciliation import (
    ReconciliationInconsistency,
    ReconciliationResult,
)
from obligations.models.recurrence import Occurrence, OccurrenceStatus, SourceKind
from obligations.services.storage import (
    LedgerInterface,
    ObligationStorageInterface,
    StaleStateError,
)
from obligations.utils.money import to_money

logger = structlog.get_logger(__name__)

PENDING_FIELDS = {
    "status": OccurrenceStatus.PENDING,
    "paid_at": None,
    "paid_amount": None,
    "paid_from_account_id": None,
    "transaction_id": None,
}

UndoSteps = list[tuple[str, Callable[[], object]]]


def compensate(undo: UndoSteps, entity_id: UUID) -> None:
    """Run undo steps newest first; a failing step is logged and the rest still run."""
    for name, step in reversed(undo):
        try:
            step()
        except Exception as e:
            logger.error(
                "compensation_failed",
                entity_id=str(entity_id),
                step=name,
                error=str(e),
            )


class ReconciliationEngine:
    """
    Moves occurrences between pending, paid and skipped.

    Loan installments and insurance premiums behind an occurrence are
    kept in step through the optional loan and insurance services.
    """

    def __init__(
        self,
        obligations: ObligationStorageInterface,
        ledger: LedgerInterface,
        loan_service: Optional[LoanService] = None,
        insurance_service: Optional[InsuranceService] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._obligations = obligations
        self._ledger = ledger
        self._loan_service = loan_service
        self._insurance_service = insurance_service
        self._audit_logger = audit_logger

    def _get(self, occurrence_id: UUID) -> Occurrence:
        occurrence = self._obligations.get_occurrence(occurrence_id)
        if occurrence is None:
            raise ReconciliationError(
                f"Occurrence not found: {occurrence_id}",
                occurrence_id=occurrence_id,
            )
        return occurrence

    # -------------------------------------------------------------------------
    # Source hooks
    # -------------------------------------------------------------------------

    def _mark_source_paid(self, occurrence: Occurrence, paid_date: date, amount: Decimal) -> bool:
        """Returns True if a linked installment or premium was updated."""
        if occurrence.reference_id is None:
            return False
        if occurrence.source_kind == SourceKind.LOAN_INSTALLMENT and self._loan_service:
            self._loan_service.mark_installment_paid(occurrence.reference_id, paid_date, amount)
            return True
        if occurrence.source_kind == SourceKind.INSURANCE_PREMIUM and self._insurance_service:
            self._insurance_service.mark_premium_paid(occurrence.reference_id, paid_date, amount)
            return True
        return False

    def _unmark_source_paid(self, occurrence: Occurrence) -> bool:
        if occurrence.reference_id is None:
            return False
        if occurrence.source_kind == SourceKind.LOAN_INSTALLMENT and self._loan_service:
            self._loan_service.unmark_installment_paid(occurrence.reference_id)
            return True
        if occurrence.source_kind == SourceKind.INSURANCE_PREMIUM and self._insurance_service:
            self._insurance_service.unmark_premium_paid(occurrence.reference_id)
            return True
        return False

    def _fail(self, operation: str, occurrence: Occurrence, error: Exception,
              correlation_id: UUID) -> ReconciliationError:
        logger.error(
            "reconciliation_failed",
            operation=operation,
            occurrence_id=str(occurrence.id),
            error=str(error),
        )
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.reconciliation_failed(
                entity_id=occurrence.id,
                operation=operation,
                error_message=str(error),
                correlation_id=correlation_id,
            ))
        return ReconciliationError(
            f"Could not {operation.replace('_', ' ')} '{occurrence.name}': {error}",
            occurrence_id=occurrence.id,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def mark_paid(
        self,
        occurrence_id: UUID,
        account_id: UUID,
        paid_date: date,
        amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        pending -> paid.

        Args:
            amount: Defaults to the occurrence's expected amount

        Returns:
            ReconciliationResult; `changed` is False when the occurrence
            was already paid (e.g. a retried request)

        Raises:
            ReconciliationError: unknown occurrence or account, skipped
                occurrence, no amount, or a side effect failed (all
                completed steps have been undone)
        """
        correlation_id = correlation_id or create_correlation_id()
        occurrence = self._get(occurrence_id)

        if occurrence.status == OccurrenceStatus.PAID:
            return ReconciliationResult(changed=False, occurrence=occurrence)
        if occurrence.status == OccurrenceStatus.SKIPPED:
            raise ReconciliationError(
                f"'{occurrence.name}' was skipped and cannot be paid",
                occurrence_id=occurrence.id,
            )

        amount = to_money(amount) if amount is not None else occurrence.amount
        if amount is None or amount <= 0:
            raise ReconciliationError(
                f"An amount is required to mark '{occurrence.name}' paid",
                occurrence_id=occurrence.id,
            )
        if self._ledger.get_account(account_id) is None:
            raise ReconciliationError(
                f"Account not found: {account_id}",
                occurrence_id=occurrence.id,
            )

        # 1. Claim
        paid = occurrence.model_copy(update={
            "status": OccurrenceStatus.PAID,
            "paid_at": paid_date,
            "paid_amount": amount,
            "paid_from_account_id": account_id,
        })
        try:
            paid = self._obligations.update_occurrence(paid, expected_status=OccurrenceStatus.PENDING)
        except StaleStateError as e:
            logger.info("mark_paid_lost_race", occurrence_id=str(occurrence.id))
            return ReconciliationResult(changed=False, occurrence=e.current)

        undo: UndoSteps = [
            ("release_claim", lambda: self._obligations.update_occurrence(
                occurrence, expected_status=OccurrenceStatus.PAID)),
        ]
        transaction_id = None
        try:
            # 2. Ledger transaction
            if occurrence.affect_transaction:
                transaction = self._ledger.create_transaction(
                    transaction_type=TransactionType.DEBIT,
                    amount=amount,
                    account_id=account_id,
                    description=f"Payment: {occurrence.name}",
                    transaction_date=paid_date,
                    category_id=occurrence.category_id,
                    link=LinkRef(payment_occurrence_id=occurrence.id),
                )
                transaction_id = transaction.id
                undo.append(("delete_transaction",
                             lambda: self._ledger.delete_transaction(transaction.id)))

            # 3. Balance
            if occurrence.affect_account_balance:
                self._ledger.adjust_account_balance(account_id, -amount)
                undo.append(("restore_balance",
                             lambda: self._ledger.adjust_account_balance(account_id, amount)))

            # 4. Installment / premium
            if self._mark_source_paid(occurrence, paid_date, amount):
                undo.append(("unmark_source", lambda: self._unmark_source_paid(occurrence)))

            # 5. Link
            if transaction_id is not None:
                paid = self._obligations.update_occurrence(
                    paid.model_copy(update={"transaction_id": transaction_id}),
                    expected_status=OccurrenceStatus.PAID,
                )
        except Exception as e:
            compensate(undo, occurrence.id)
            raise self._fail("mark_paid", occurrence, e, correlation_id) from e

        logger.info(
            "occurrence_paid",
            occurrence_id=str(occurrence.id),
            amount=str(amount),
            transaction_id=str(transaction_id) if transaction_id else None,
        )
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.occurrence_paid(
                occurrence_id=occurrence.id,
                name=occurrence.name,
                amount=str(amount),
                account_id=account_id,
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            ))

        return ReconciliationResult(
            changed=True,
            occurrence=paid,
            transaction_id=transaction_id,
            balance_adjusted=occurrence.affect_account_balance,
        )

    def unmark(
        self,
        occurrence_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        paid -> pending.

        The transaction is found through its payment_occurrence_id link.
        If it was deleted independently, the occurrence is still reset
        but the balance is not restored, and a ReconciliationInconsistency
        is returned as a warning.
        """
        correlation_id = correlation_id or create_correlation_id()
        occurrence = self._get(occurrence_id)
        if occurrence.status != OccurrenceStatus.PAID:
            return ReconciliationResult(changed=False, occurrence=occurrence)

        # 1. Claim
        try:
            pending = self._obligations.update_occurrence(
                occurrence.model_copy(update=PENDING_FIELDS),
                expected_status=OccurrenceStatus.PAID,
            )
        except StaleStateError as e:
            logger.info("unmark_lost_race", occurrence_id=str(occurrence.id))
            return ReconciliationResult(changed=False, occurrence=e.current)

        undo: UndoSteps = [
            ("restore_paid", lambda: self._obligations.update_occurrence(
                occurrence, expected_status=OccurrenceStatus.PENDING)),
        ]
        warnings: list[ReconciliationInconsistency] = []
        balance_restored = False
        amount = occurrence.paid_amount
        account_id = occurrence.paid_from_account_id

        try:
            transaction = None
            if occurrence.affect_transaction:
                transaction = self._ledger.find_transaction_by_link_ref(
                    LinkRef(payment_occurrence_id=occurrence.id)
                )
                if transaction is None:
                    warnings.append(ReconciliationInconsistency(
                        entity_id=occurrence.id,
                        kind="missing_transaction",
                        message=(
                            f"The transaction for '{occurrence.name}' was already deleted; "
                            "account balance was not restored"
                        ),
                    ))
                else:
                    account_id = transaction.account_id
                    self._ledger.delete_transaction(transaction.id)
                    undo.append(("recreate_transaction", lambda: self._recreate(occurrence, transaction)))

            restore = occurrence.affect_account_balance and not warnings and account_id is not None
            if restore:
                self._ledger.adjust_account_balance(account_id, amount)
                undo.append(("reapply_balance",
                             lambda: self._ledger.adjust_account_balance(account_id, -amount)))
                balance_restored = True

            if self._unmark_source_paid(occurrence):
                undo.append(("remark_source", lambda: self._mark_source_paid(
                    occurrence, occurrence.paid_at, amount)))
                # Rescheduling may have re-pointed the occurrence at a rebuilt row
                pending = self._get(occurrence.id)
        except Exception as e:
            compensate(undo, occurrence.id)
            raise self._fail("unmark", occurrence, e, correlation_id) from e

        logger.info(
            "occurrence_unpaid",
            occurrence_id=str(occurrence.id),
            balance_restored=balance_restored,
            warnings=len(warnings),
        )
        if self._audit_logger:
            self._audit_logger.log_inconsistencies(warnings, correlation_id)
            self._audit_logger.log(AuditEventBuilder.occurrence_unpaid(
                occurrence_id=occurrence.id,
                name=occurrence.name,
                balance_restored=balance_restored,
                correlation_id=correlation_id,
            ))

        return ReconciliationResult(
            changed=True,
            occurrence=pending,
            balance_adjusted=balance_restored,
            warnings=warnings,
        )

    def _recreate(self, occurrence: Occurrence, transaction) -> None:
        """Undo a transaction delete; the occurrence is re-pointed at the new row."""
        recreated = self._ledger.create_transaction(
            transaction_type=transaction.transaction_type,
            amount=transaction.amount,
            account_id=transaction.account_id,
            description=transaction.description,
            transaction_date=transaction.transaction_date,
            category_id=transaction.category_id,
            link=transaction.link,
        )
        occurrence.transaction_id = recreated.id

    def skip(
        self,
        occurrence_id: UUID,
        note: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        """
        pending -> skipped. No ledger effect.

        Raises:
            ReconciliationError: the occurrence is already paid
        """
        correlation_id = correlation_id or create_correlation_id()
        occurrence = self._get(occurrence_id)
        if occurrence.status == OccurrenceStatus.SKIPPED:
            return ReconciliationResult(changed=False, occurrence=occurrence)
        if occurrence.status == OccurrenceStatus.PAID:
            raise ReconciliationError(
                f"'{occurrence.name}' is paid; unmark it before skipping",
                occurrence_id=occurrence.id,
            )

        update = {"status": OccurrenceStatus.SKIPPED}
        if note:
            update["notes"] = note
        try:
            skipped = self._obligations.update_occurrence(
                occurrence.model_copy(update=update),
                expected_status=OccurrenceStatus.PENDING,
            )
        except StaleStateError as e:
            return ReconciliationResult(changed=False, occurrence=e.current)

        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.occurrence_skipped(
                occurrence_id=occurrence.id,
                name=occurrence.name,
                correlation_id=correlation_id,
            ))
        return ReconciliationResult(changed=True, occurrence=skipped)
