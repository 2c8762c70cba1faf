"""
Loan Lifecycle

Everything that changes a loan after it is tracked goes through
LoanService:

- create_loan: validate, persist, open term 1, expand installments
- change_term: rate / tenure / EMI revision, rebuilding unpaid rows only
- record_prepayment, topup: balance changes that end in a term change
- preclose, close_by_balance_transfer: closing a loan early
- mark_installment_paid / unmark_installment_paid

DESIGN DECISION: Paid installments are immutable history. A term change
deletes the unpaid tail and rebuilds it from the first unpaid
installment's number and due date, starting from the loan's current
outstanding. Pending occurrences that pointed at deleted rows are moved
onto the rebuilt ones (or skipped when the new schedule no longer has an
installment that month).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.errors import ObligationError, ValidationError
from obligations.models.audit import AuditEventBuilder, AuditEventType
from obligations.models.ledger import LinkRef, TransactionType
from obligations.models.loan import (
    InstallmentStatus,
    Loan,
    LoanBtAllocation,
    LoanInstallment,
    LoanPayment,
    LoanPaymentType,
    LoanStatus,
    LoanTerm,
    PrepaymentStrategy,
)
from obligations.models.recurrence import OccurrenceStatus
from obligations.models.validation import ValidationIssue
from obligations.scheduling.amortization import (
    AmortizationEngine,
    emi_for,
    first_period_interest,
    tenure_for,
)
from obligations.services.clock import Clock, SystemClock
from obligations.services.storage import (
    LedgerInterface,
    LoanStorageInterface,
    ObligationStorageInterface,
    StaleStateError,
)
from obligations.utils.dates import add_months
from obligations.utils.money import ZERO, to_money
from obligations.validation import RecurrenceValidator

logger = structlog.get_logger(__name__)


class LoanService:
    """Loan creation, revisions, closures and installment state."""

    def __init__(
        self,
        loans: LoanStorageInterface,
        obligations: ObligationStorageInterface,
        ledger: LedgerInterface,
        validator: RecurrenceValidator,
        amortization: Optional[AmortizationEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._loans = loans
        self._obligations = obligations
        self._ledger = ledger
        self._validator = validator
        self._amortization = amortization or AmortizationEngine()
        self._audit_logger = audit_logger
        self._clock = clock or SystemClock()

    def _audit(self, event_type: AuditEventType, loan_id: UUID, description: str,
               details: Optional[dict] = None, correlation_id: Optional[UUID] = None) -> None:
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.loan_event(
                event_type=event_type,
                loan_id=loan_id,
                description=description,
                details=details,
                correlation_id=correlation_id,
            ))

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_loan(self, loan_id: UUID) -> Loan:
        loan = self._loans.get_loan(loan_id)
        if loan is None:
            raise ObligationError(f"Loan not found: {loan_id}")
        return loan

    def _get_active(self, loan_id: UUID) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan.is_active:
            raise ObligationError(f"Loan '{loan.name}' is {loan.status.value}")
        return loan

    def schedule(self, loan_id: UUID) -> list[LoanInstallment]:
        """All installments of a loan ordered by installment number."""
        rows = self._loans.list_installments(loan_id=loan_id)
        return sorted(rows, key=lambda i: i.installment_number)

    def unpaid_installments(self, loan_id: UUID) -> list[LoanInstallment]:
        return [i for i in self.schedule(loan_id) if not i.is_paid]

    def current_term(self, loan_id: UUID) -> LoanTerm:
        open_terms = [t for t in self._loans.list_terms(loan_id) if t.is_open]
        if not open_terms:
            raise ObligationError(f"Loan {loan_id} has no open term")
        return open_terms[-1]

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_loan(
        self,
        loan: Loan,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Loan, list[LoanInstallment]]:
        """
        Validate and persist a loan, open its first term and expand
        its installments.

        Raises:
            ValidationError: the loan definition is rejected
        """
        correlation_id = correlation_id or create_correlation_id()
        self._validator.ensure_valid_loan(loan)

        term = self._amortization.opening_term(loan)
        rows = self._amortization.build_schedule(loan, term)

        self._loans.save_loan(loan)
        self._loans.save_term(term)
        self._loans.save_installments(rows)

        logger.info(
            "loan_schedule_built",
            loan_id=str(loan.id),
            installments=len(rows),
            first_number=rows[0].installment_number if rows else None,
        )
        self._audit(
            AuditEventType.LOAN_SCHEDULE_BUILT,
            loan.id,
            f"Built {len(rows)} installments for {loan.name}",
            {"installments": len(rows), "emi": str(term.emi_amount)},
            correlation_id,
        )
        return loan, rows

    # -------------------------------------------------------------------------
    # Term changes
    # -------------------------------------------------------------------------

    def change_term(
        self,
        loan_id: UUID,
        change_date: Optional[date] = None,
        interest_rate: Optional[Decimal] = None,
        tenure_months: Optional[int] = None,
        emi_amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanTerm:
        """
        Close the open term and reschedule the unpaid installments.

        - only the rate changes: EMI is recomputed over the remaining count
        - tenure given without EMI: EMI is recomputed over the new tenure
        - EMI given without tenure: tenure is however long that EMI takes

        Raises:
            ValidationError: the new terms would not repay the loan
            AmortizationInvariantViolation: the rebuilt schedule does not close
        """
        correlation_id = correlation_id or create_correlation_id()
        change_date = change_date or self._clock.today()
        loan = self._get_active(loan_id)
        current = self.current_term(loan_id)

        unpaid = self.unpaid_installments(loan_id)
        if unpaid:
            first_number, first_due = unpaid[0].installment_number, unpaid[0].due_date
        else:
            # Every row is paid but a short payment left something outstanding
            paid = self.schedule(loan_id)
            if not paid:
                raise ObligationError(f"Loan '{loan.name}' has no installments to reschedule")
            first_number = paid[-1].installment_number + 1
            first_due = add_months(paid[-1].due_date, 1, day=loan.emi_day)

        outstanding = loan.outstanding_amount
        rate = interest_rate if interest_rate is not None else current.interest_rate
        self._check_revision(rate, tenure_months, emi_amount, outstanding)
        if change_date < current.effective_from:
            raise ValidationError(
                f"Change date {change_date} is before the current term started "
                f"({current.effective_from})"
            )

        if emi_amount is not None:
            emi = to_money(emi_amount)
            self._check_covers_interest(emi, outstanding, rate)
            needed = tenure_for(outstanding, rate, emi)
            if tenure_months is not None and needed > tenure_months:
                raise ValidationError(
                    f"An EMI of {emi} needs {needed} installments, not {tenure_months}",
                    issues=[ValidationIssue(
                        field="emi_amount",
                        issue_type="emi_tenure_mismatch",
                        message=f"EMI {emi} does not repay {outstanding} in {tenure_months} months",
                        severity="error",
                        suggested_fix=f"Use an EMI of {emi_for(outstanding, rate, tenure_months)}",
                    )],
                )
            tenure = tenure_months if tenure_months is not None else needed
        else:
            tenure = tenure_months if tenure_months is not None else max(len(unpaid), 1)
            emi = emi_for(outstanding, rate, tenure)
            self._check_covers_interest(emi, outstanding, rate)

        new_term = LoanTerm(
            loan_id=loan.id,
            term_number=current.term_number + 1,
            effective_from=change_date,
            interest_rate=rate,
            tenure_months=tenure,
            emi_amount=emi,
            outstanding_at_change=outstanding,
            reason=reason,
        )
        rows = self._amortization.rebuild_from(
            loan,
            new_term,
            first_due_date=first_due,
            start_number=first_number,
        )

        current.effective_to = change_date
        self._loans.save_term(current)
        self._loans.save_term(new_term)
        self._loans.delete_installments([i.id for i in unpaid])
        self._loans.save_installments(rows)

        loan.interest_rate = rate
        loan.emi_amount = emi
        loan.tenure_months = first_number - 1 + len(rows)
        loan.updated_at = datetime.utcnow()
        self._loans.save_loan(loan)

        self._resync_pending_occurrences(loan, rows)

        logger.info(
            "loan_term_changed",
            loan_id=str(loan.id),
            term_number=new_term.term_number,
            rate=str(rate),
            emi=str(emi),
            tenure=tenure,
        )
        self._audit(
            AuditEventType.LOAN_TERM_CHANGED,
            loan.id,
            f"{loan.name}: term {new_term.term_number} from {change_date.isoformat()}",
            {
                "interest_rate": str(rate),
                "emi_amount": str(emi),
                "tenure_months": tenure,
                "outstanding_at_change": str(outstanding),
                "reason": reason,
            },
            correlation_id,
        )
        return new_term

    @staticmethod
    def _check_revision(
        rate: Decimal,
        tenure_months: Optional[int],
        emi_amount: Optional[Decimal],
        outstanding: Decimal,
    ) -> None:
        issues = []
        if rate < 0:
            issues.append(ValidationIssue(
                field="interest_rate",
                issue_type="invalid_value",
                message="Interest rate cannot be negative",
                severity="error",
            ))
        if tenure_months is not None and tenure_months <= 0:
            issues.append(ValidationIssue(
                field="tenure_months",
                issue_type="invalid_value",
                message="Tenure must be at least one month",
                severity="error",
            ))
        if emi_amount is not None and emi_amount <= 0:
            issues.append(ValidationIssue(
                field="emi_amount",
                issue_type="invalid_value",
                message="EMI must be greater than zero",
                severity="error",
            ))
        if outstanding <= 0:
            issues.append(ValidationIssue(
                field="outstanding_amount",
                issue_type="invalid_value",
                message="Nothing is outstanding on this loan",
                severity="error",
            ))
        if issues:
            raise ValidationError(
                "Invalid loan revision: " + "; ".join(i.message for i in issues),
                issues=issues,
            )

    @staticmethod
    def _check_covers_interest(emi: Decimal, outstanding: Decimal, rate: Decimal) -> None:
        interest = first_period_interest(outstanding, rate)
        if emi <= interest:
            raise ValidationError(
                "The revised EMI does not cover the monthly interest",
                issues=[ValidationIssue(
                    field="emi_amount",
                    issue_type="negative_amortization",
                    message=f"EMI {emi} is not above the first month's interest of {interest}",
                    severity="error",
                )],
            )

    def _resync_pending_occurrences(self, loan: Loan, rows: list[LoanInstallment]) -> None:
        """Point pending occurrences at the rebuilt installment of their month."""
        by_month = {(r.due_date.month, r.due_date.year): r for r in rows}

        for occurrence in self._obligations.list_occurrences(
            source_id=loan.id,
            status=OccurrenceStatus.PENDING,
        ):
            row = by_month.get((occurrence.month, occurrence.year))
            if row is None:
                updated = occurrence.model_copy(update={
                    "status": OccurrenceStatus.SKIPPED,
                    "notes": "No installment after loan reschedule",
                })
            else:
                updated = occurrence.model_copy(update={
                    "reference_id": row.id,
                    "amount": row.emi_amount,
                    "due_date": row.due_date,
                    "name": f"{loan.name} EMI #{row.installment_number}",
                })
            try:
                self._obligations.update_occurrence(updated, expected_status=OccurrenceStatus.PENDING)
            except StaleStateError:
                # Paid in the meantime; its installment was not rebuilt
                logger.info("occurrence_resync_skipped", occurrence_id=str(occurrence.id))

    def _skip_pending_occurrences(self, loan: Loan, note: str) -> int:
        skipped = 0
        for occurrence in self._obligations.list_occurrences(
            source_id=loan.id,
            status=OccurrenceStatus.PENDING,
        ):
            updated = occurrence.model_copy(update={
                "status": OccurrenceStatus.SKIPPED,
                "notes": note,
            })
            try:
                self._obligations.update_occurrence(updated, expected_status=OccurrenceStatus.PENDING)
                skipped += 1
            except StaleStateError:
                logger.info("occurrence_skip_lost_race", occurrence_id=str(occurrence.id))
        return skipped

    def _close(self, loan: Loan, status: LoanStatus, closing_date: date, note: str) -> int:
        """Drop unpaid installments, close the open term, zero outstanding."""
        unpaid = self.unpaid_installments(loan.id)
        deleted = self._loans.delete_installments([i.id for i in unpaid])

        for term in self._loans.list_terms(loan.id):
            if term.is_open:
                term.effective_to = closing_date
                self._loans.save_term(term)

        loan.status = status
        loan.outstanding_amount = ZERO
        loan.updated_at = datetime.utcnow()
        self._loans.save_loan(loan)

        self._skip_pending_occurrences(loan, note)
        return deleted

    # -------------------------------------------------------------------------
    # Payments outside the schedule
    # -------------------------------------------------------------------------

    def _record_debit(
        self,
        loan: Loan,
        payment: LoanPayment,
        account_id: Optional[UUID],
        description: str,
    ) -> None:
        if account_id is None or not loan.affect_transaction:
            return
        if self._ledger.get_account(account_id) is None:
            raise ObligationError(f"Account not found: {account_id}")
        transaction = self._ledger.create_transaction(
            transaction_type=TransactionType.DEBIT,
            amount=payment.amount,
            account_id=account_id,
            description=description,
            transaction_date=payment.payment_date,
            category_id=loan.category_id,
            link=LinkRef(loan_payment_id=payment.id),
        )
        payment.transaction_id = transaction.id
        if loan.affect_account_balance:
            self._ledger.adjust_account_balance(account_id, -payment.amount)

    def record_prepayment(
        self,
        loan_id: UUID,
        amount: Decimal,
        payment_date: Optional[date] = None,
        account_id: Optional[UUID] = None,
        strategy: PrepaymentStrategy = PrepaymentStrategy.REDUCE_TENURE,
        correlation_id: Optional[UUID] = None,
    ) -> LoanPayment:
        """
        Pay down principal outside the EMI schedule.

        REDUCE_TENURE keeps the EMI and finishes earlier; REDUCE_EMI keeps
        the number of remaining installments and lowers the EMI.
        """
        correlation_id = correlation_id or create_correlation_id()
        payment_date = payment_date or self._clock.today()
        loan = self._get_active(loan_id)
        amount = to_money(amount)

        if amount <= 0 or amount >= loan.outstanding_amount:
            raise ValidationError(
                "Prepayment must be positive and less than the outstanding amount "
                "(use preclose to settle the loan)",
                issues=[ValidationIssue(
                    field="amount",
                    issue_type="out_of_range",
                    message=f"Outstanding is {loan.outstanding_amount}",
                    severity="error",
                    suggested_fix="Use preclose for a full settlement",
                )],
            )

        current = self.current_term(loan_id)
        remaining = len(self.unpaid_installments(loan_id))

        payment = LoanPayment(
            loan_id=loan.id,
            payment_date=payment_date,
            amount=amount,
            principal_paid=amount,
            payment_type=LoanPaymentType.PREPAYMENT,
            notes=f"Prepayment ({strategy.value})",
        )
        self._record_debit(loan, payment, account_id, f"Loan prepayment: {loan.name}")
        self._loans.save_loan_payment(payment)

        loan.outstanding_amount = to_money(loan.outstanding_amount - amount)
        self._loans.save_loan(loan)

        if strategy == PrepaymentStrategy.REDUCE_TENURE:
            self.change_term(
                loan_id,
                change_date=payment_date,
                emi_amount=current.emi_amount,
                reason=f"Prepayment of {amount}, tenure reduced",
                correlation_id=correlation_id,
            )
        else:
            self.change_term(
                loan_id,
                change_date=payment_date,
                tenure_months=remaining,
                reason=f"Prepayment of {amount}, EMI reduced",
                correlation_id=correlation_id,
            )

        self._audit(
            AuditEventType.LOAN_PREPAID,
            loan.id,
            f"Prepaid {amount} on {loan.name}",
            {"amount": str(amount), "strategy": strategy.value},
            correlation_id,
        )
        return payment

    def preclose(
        self,
        loan_id: UUID,
        closure_amount: Decimal,
        closure_date: Optional[date] = None,
        account_id: Optional[UUID] = None,
        create_transaction: bool = True,
        correlation_id: Optional[UUID] = None,
    ) -> Loan:
        """Settle the loan in full before its schedule ends."""
        correlation_id = correlation_id or create_correlation_id()
        closure_date = closure_date or self._clock.today()
        loan = self._get_active(loan_id)
        outstanding_before = loan.outstanding_amount

        payment = LoanPayment(
            loan_id=loan.id,
            payment_date=closure_date,
            amount=to_money(closure_amount),
            principal_paid=outstanding_before,
            interest_paid=max(to_money(closure_amount) - outstanding_before, ZERO),
            payment_type=LoanPaymentType.PREPAYMENT,
            notes="Preclosure",
        )
        if create_transaction:
            self._record_debit(loan, payment, account_id, f"Loan preclosure: {loan.name}")
        self._loans.save_loan_payment(payment)

        deleted = self._close(loan, LoanStatus.PRECLOSED, closure_date, "Loan preclosed")

        logger.info("loan_preclosed", loan_id=str(loan.id), installments_removed=deleted)
        self._audit(
            AuditEventType.LOAN_PRECLOSED,
            loan.id,
            f"{loan.name} preclosed for {payment.amount}",
            {
                "closure_amount": str(payment.amount),
                "outstanding_before": str(outstanding_before),
                "installments_removed": deleted,
            },
            correlation_id,
        )
        return loan

    def topup(
        self,
        loan_id: UUID,
        topup_amount: Decimal,
        change_date: Optional[date] = None,
        new_emi: Optional[Decimal] = None,
        additional_tenure: int = 0,
        correlation_id: Optional[UUID] = None,
    ) -> LoanTerm:
        """
        Borrow more on an existing loan.

        With `new_emi` the tenure follows from the EMI; otherwise the EMI
        is recomputed over the remaining installments plus
        `additional_tenure`.
        """
        correlation_id = correlation_id or create_correlation_id()
        loan = self._get_active(loan_id)
        topup_amount = to_money(topup_amount)
        if topup_amount <= 0:
            raise ValidationError("Top-up amount must be positive")

        remaining = len(self.unpaid_installments(loan_id))

        loan.principal_amount = to_money(loan.principal_amount + topup_amount)
        loan.outstanding_amount = to_money(loan.outstanding_amount + topup_amount)
        self._loans.save_loan(loan)

        if new_emi is not None:
            term = self.change_term(
                loan_id,
                change_date=change_date,
                emi_amount=new_emi,
                reason=f"Top-up of {topup_amount}",
                correlation_id=correlation_id,
            )
        else:
            term = self.change_term(
                loan_id,
                change_date=change_date,
                tenure_months=remaining + additional_tenure,
                reason=f"Top-up of {topup_amount}",
                correlation_id=correlation_id,
            )

        self._audit(
            AuditEventType.LOAN_TOPPED_UP,
            loan.id,
            f"Topped up {loan.name} by {topup_amount}",
            {"amount": str(topup_amount), "additional_tenure": additional_tenure},
            correlation_id,
        )
        return term

    def close_by_balance_transfer(
        self,
        bt_loan_id: UUID,
        target_loan_id: UUID,
        allocated_amount: Decimal,
        allocation_date: Optional[date] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanBtAllocation:
        """
        Close `target_loan_id` with money from the balance-transfer loan.

        The allocation row keeps the target's outstanding at transfer
        time next to the amount actually allocated; any difference stays
        visible rather than being discarded.
        """
        correlation_id = correlation_id or create_correlation_id()
        allocation_date = allocation_date or self._clock.today()
        if bt_loan_id == target_loan_id:
            raise ValidationError("A loan cannot balance-transfer onto itself")

        bt_loan = self.get_loan(bt_loan_id)
        target = self._get_active(target_loan_id)

        allocation = LoanBtAllocation(
            bt_loan_id=bt_loan.id,
            target_loan_id=target.id,
            original_outstanding_amount=target.outstanding_amount,
            allocated_amount=to_money(allocated_amount),
            allocation_date=allocation_date,
        )
        self._loans.save_bt_allocation(allocation)

        deleted = self._close(
            target,
            LoanStatus.CLOSED_BT,
            allocation_date,
            f"Closed by balance transfer to {bt_loan.name}",
        )

        if allocation.difference != 0:
            logger.warning(
                "bt_allocation_difference",
                bt_loan_id=str(bt_loan.id),
                target_loan_id=str(target.id),
                difference=str(allocation.difference),
            )
        self._audit(
            AuditEventType.LOAN_BT_CLOSED,
            target.id,
            f"{target.name} closed by balance transfer from {bt_loan.name}",
            {
                "bt_loan_id": str(bt_loan.id),
                "original_outstanding": str(allocation.original_outstanding_amount),
                "allocated": str(allocation.allocated_amount),
                "difference": str(allocation.difference),
                "installments_removed": deleted,
            },
            correlation_id,
        )
        return allocation

    # -------------------------------------------------------------------------
    # Installment state
    # -------------------------------------------------------------------------

    def _installment_payments(self, installment: LoanInstallment) -> list[LoanPayment]:
        return [
            p for p in self._loans.list_loan_payments(installment.loan_id)
            if p.installment_id == installment.id
        ]

    @staticmethod
    def _split_payment(
        installment: LoanInstallment,
        paid_date: date,
        paid: Decimal,
        room: Decimal,
    ) -> list[LoanPayment]:
        """
        Payment rows for one installment.

        Exactly the EMI is one EMI row, less is one PARTIAL row, and more
        is the EMI plus a PREPAYMENT of the excess. `room` caps how much
        of that excess can go to principal.
        """
        common = {
            "loan_id": installment.loan_id,
            "installment_id": installment.id,
            "payment_date": paid_date,
        }
        if paid < installment.emi_amount:
            interest = min(paid, installment.interest_component)
            return [LoanPayment(
                amount=paid,
                principal_paid=paid - interest,
                interest_paid=interest,
                payment_type=LoanPaymentType.PARTIAL,
                **common,
            )]

        payments = [LoanPayment(
            amount=installment.emi_amount,
            principal_paid=installment.principal_component,
            interest_paid=installment.interest_component,
            payment_type=LoanPaymentType.EMI,
            **common,
        )]
        excess = paid - installment.emi_amount
        if excess > 0:
            payments.append(LoanPayment(
                amount=excess,
                principal_paid=min(excess, max(room, ZERO)),
                payment_type=LoanPaymentType.PREPAYMENT,
                notes=f"Paid with EMI #{installment.installment_number}",
                **common,
            ))
        return payments

    @staticmethod
    def _principal_reduction(installment: LoanInstallment, payments: list[LoanPayment]) -> Decimal:
        """Principal repaid, less any interest the payment fell short of (which stays owed)."""
        principal = sum((p.principal_paid for p in payments), ZERO)
        interest = sum((p.interest_paid for p in payments), ZERO)
        return to_money(principal - max(installment.interest_component - interest, ZERO))

    def mark_installment_paid(
        self,
        installment_id: UUID,
        paid_date: Optional[date] = None,
        paid_amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LoanInstallment:
        """
        Mark one EMI paid and record what was actually paid against it.

        Paying the scheduled EMI reduces the outstanding by the row's
        principal and leaves the schedule alone. Paying more or less
        reduces it by what was really repaid and reschedules the unpaid
        tail at the current EMI, so a short payment lengthens the loan
        and an extra one shortens it. The loan closes once nothing is
        outstanding. Marking an already-paid installment is a no-op.

        Raises:
            ValidationError: the paid amount is not positive
        """
        installment = self._loans.get_installment(installment_id)
        if installment is None:
            raise ObligationError(f"Installment not found: {installment_id}")
        if installment.is_paid:
            return installment

        loan = self.get_loan(installment.loan_id)
        paid_date = paid_date or self._clock.today()
        paid = to_money(paid_amount) if paid_amount is not None else installment.emi_amount
        if paid <= 0:
            raise ValidationError(f"Paid amount must be positive, got {paid}")
        on_schedule = paid == installment.emi_amount

        payments = self._split_payment(
            installment,
            paid_date,
            paid,
            room=loan.outstanding_amount - installment.principal_component,
        )
        for payment in payments:
            self._loans.save_loan_payment(payment)

        installment.status = InstallmentStatus.PAID
        installment.paid_date = paid_date
        installment.paid_amount = paid
        self._loans.save_installments([installment])

        reduction = self._principal_reduction(installment, payments)
        loan.outstanding_amount = max(to_money(loan.outstanding_amount - reduction), ZERO)
        loan.updated_at = datetime.utcnow()
        self._loans.save_loan(loan)

        if loan.is_active:
            if loan.outstanding_amount == 0 or (on_schedule and not self.unpaid_installments(loan.id)):
                self._close(loan, LoanStatus.CLOSED, paid_date, "Loan repaid")
            elif not on_schedule:
                current = self.current_term(loan.id)
                self.change_term(
                    loan.id,
                    change_date=max(paid_date, current.effective_from),
                    emi_amount=current.emi_amount,
                    reason=f"Paid {paid} against EMI #{installment.installment_number}",
                    correlation_id=correlation_id,
                )

        self._audit(
            AuditEventType.INSTALLMENT_PAID,
            loan.id,
            f"{loan.name} EMI #{installment.installment_number} paid",
            {
                "installment_id": str(installment.id),
                "paid_amount": str(paid),
                "payment_types": [p.payment_type.value for p in payments],
                "outstanding": str(loan.outstanding_amount),
            },
            correlation_id,
        )
        return installment

    def unmark_installment_paid(
        self,
        installment_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> LoanInstallment:
        """
        Inverse of mark_installment_paid.

        Removes the payment rows, puts the principal back, reopens a loan
        the payment had closed and, if the payment was off-schedule,
        reschedules from this installment again.
        """
        installment = self._loans.get_installment(installment_id)
        if installment is None:
            raise ObligationError(f"Installment not found: {installment_id}")
        if not installment.is_paid:
            return installment

        loan = self.get_loan(installment.loan_id)
        on_schedule = installment.paid_amount == installment.emi_amount
        payments = self._installment_payments(installment)
        if payments:
            reduction = self._principal_reduction(installment, payments)
            self._loans.delete_loan_payments([p.id for p in payments])
        else:
            reduction = installment.principal_component

        installment.status = InstallmentStatus.PENDING
        installment.paid_date = None
        installment.paid_amount = None
        self._loans.save_installments([installment])

        if loan.status == LoanStatus.CLOSED:
            loan.status = LoanStatus.ACTIVE
            self._reopen_last_term(loan.id)
        loan.outstanding_amount = to_money(loan.outstanding_amount + reduction)
        loan.updated_at = datetime.utcnow()
        self._loans.save_loan(loan)

        if not on_schedule and loan.is_active:
            current = self.current_term(loan.id)
            self.change_term(
                loan.id,
                change_date=current.effective_from,
                emi_amount=current.emi_amount,
                reason=f"Payment against EMI #{installment.installment_number} reversed",
                correlation_id=correlation_id,
            )
            # The reschedule replaced this row; hand back its successor
            installment = next(
                (r for r in self.schedule(loan.id) if r.installment_number == installment.installment_number),
                installment,
            )

        logger.info(
            "installment_unpaid",
            installment_id=str(installment.id),
            payments_removed=len(payments),
            rescheduled=not on_schedule,
        )
        return installment

    def _reopen_last_term(self, loan_id: UUID) -> None:
        terms = self._loans.list_terms(loan_id)
        if terms and not any(t.is_open for t in terms):
            last = max(terms, key=lambda t: t.term_number)
            last.effective_to = None
            self._loans.save_term(last)
