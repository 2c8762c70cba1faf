"""
Occurrence Generation

Materializes one month's obligations from every active source:

- scheduled payments (RecurrenceRule + PaydayPredictor)
- loan installments already expanded by the AmortizationEngine
- insurance premium terms already expanded at policy creation
- credit card statements (amount summed from the card's spend)

DESIGN DECISION: Generation is idempotent. Every occurrence is inserted
under its (source_id, month, year) key; an IdempotencyConflict from
storage means the existing row is canonical and is reported as
"existing", never overwritten.

Generation is never triggered implicitly. Callers invoke it for a month
(ChecklistFlow does so when a month with no occurrences is opened).
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.config import get_settings
from obligations.errors import SalaryProfileRequired
from obligations.models.audit import AuditEventBuilder
from obligations.models.ledger import TransactionType
from obligations.models.loan import LoanStatus
from obligations.models.recurrence import (
    CreditCardStatement,
    DueItem,
    GenerationResult,
    SourceKind,
)
from obligations.scheduling.recurrence import due_dates_in, statement_window
from obligations.services.storage import (
    IdempotencyConflict,
    InsuranceStorageInterface,
    LedgerInterface,
    LoanStorageInterface,
    ObligationStorageInterface,
    SalaryStorageInterface,
)
from obligations.utils.dates import month_bounds
from obligations.utils.money import ZERO

logger = structlog.get_logger(__name__)


class OccurrenceGenerator:
    """
    Turns recurrence sources into Occurrence rows for a month.

    `collect_due_items` is the dry run: it computes what is due without
    writing anything, and is what the forecast uses.
    """

    def __init__(
        self,
        obligations: ObligationStorageInterface,
        loans: LoanStorageInterface,
        insurance: InsuranceStorageInterface,
        salary: SalaryStorageInterface,
        ledger: LedgerInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_custom_interval: Optional[int] = None,
    ):
        self._obligations = obligations
        self._loans = loans
        self._insurance = insurance
        self._salary = salary
        self._ledger = ledger
        self._audit_logger = audit_logger
        if max_custom_interval is None:
            max_custom_interval = get_settings().engine.max_custom_interval_months
        self._max_custom = max_custom_interval

    # -------------------------------------------------------------------------
    # Due item collection (no writes)
    # -------------------------------------------------------------------------

    def collect_due_items(self, month: int, year: int) -> tuple[list[DueItem], list[str]]:
        """
        Everything due in (month, year), ordered by due date.

        Returns:
            (items, warnings) - a source that cannot be resolved is
            skipped and explained in `warnings`
        """
        items: list[DueItem] = []
        warnings: list[str] = []

        self._collect_sources(month, year, items, warnings)
        self._collect_loans(month, year, items)
        self._collect_premiums(month, year, items)

        items.sort(key=lambda i: (i.due_date, i.name))
        return items, warnings

    def _collect_sources(
        self,
        month: int,
        year: int,
        items: list[DueItem],
        warnings: list[str],
    ) -> None:
        profile = self._salary.get_active_profile()

        for source in self._obligations.list_sources(active_only=True):
            try:
                due_dates = due_dates_in(source, month, year, profile, self._max_custom)
            except SalaryProfileRequired as e:
                logger.warning("salary_profile_missing", source_id=str(source.id))
                warnings.append(str(e))
                continue
            except ValueError as e:
                logger.error(
                    "recurrence_rule_invalid",
                    source_id=str(source.id),
                    name=source.name,
                    error=str(e),
                )
                warnings.append(f"'{source.name}' skipped: {e}")
                continue

            for due_date in due_dates[:1]:
                amount = source.amount
                if isinstance(source, CreditCardStatement) and amount is None:
                    amount = self.statement_amount(source, due_date)
                    if amount == ZERO:
                        logger.debug(
                            "statement_without_spend",
                            source_id=str(source.id),
                            due_date=due_date.isoformat(),
                        )
                        continue

                items.append(DueItem(
                    source_kind=source.kind,
                    source_id=source.id,
                    name=source.name,
                    month=month,
                    year=year,
                    due_date=due_date,
                    amount=amount,
                    account_id=source.account_id,
                    category_id=source.category_id,
                    affect_transaction=source.affect_transaction,
                    affect_account_balance=source.affect_account_balance,
                ))

    def _collect_loans(self, month: int, year: int, items: list[DueItem]) -> None:
        first, last = month_bounds(month, year)

        for loan in self._loans.list_loans(status=LoanStatus.ACTIVE):
            installments = self._loans.list_installments(
                loan_id=loan.id,
                date_from=first,
                date_to=last,
            )
            if not installments:
                continue
            # Due dates keep one emi_day per month
            installment = installments[0]
            items.append(DueItem(
                source_kind=SourceKind.LOAN_INSTALLMENT,
                source_id=loan.id,
                reference_id=installment.id,
                name=f"{loan.name} EMI #{installment.installment_number}",
                month=month,
                year=year,
                due_date=installment.due_date,
                amount=installment.emi_amount,
                account_id=loan.account_id,
                category_id=loan.category_id,
                affect_transaction=loan.affect_transaction,
                affect_account_balance=loan.affect_account_balance,
            ))

    def _collect_premiums(self, month: int, year: int, items: list[DueItem]) -> None:
        first, last = month_bounds(month, year)

        for policy in self._insurance.list_insurances(active_only=True):
            premiums = self._insurance.list_premiums(
                insurance_id=policy.id,
                date_from=first,
                date_to=last,
            )
            if not premiums:
                continue
            premium = premiums[0]
            name = policy.policy_name
            if policy.terms_per_period > 1:
                name = f"{name} (term {premium.term_number}/{policy.terms_per_period})"
            items.append(DueItem(
                source_kind=SourceKind.INSURANCE_PREMIUM,
                source_id=policy.id,
                reference_id=premium.id,
                name=name,
                month=month,
                year=year,
                due_date=premium.due_date,
                amount=premium.amount,
                account_id=policy.account_id,
                category_id=policy.category_id,
                affect_transaction=policy.affect_transaction,
                affect_account_balance=policy.affect_account_balance,
            ))

    def statement_amount(self, source: CreditCardStatement, due_date) -> Decimal:
        """Sum of debits on the card during the cycle billed on `due_date`."""
        start, end = statement_window(source, due_date)
        spend = self._ledger.list_transactions(
            account_id=source.card_account_id,
            date_from=start,
            date_to=end,
            transaction_type=TransactionType.DEBIT,
        )
        return sum((t.amount for t in spend), ZERO)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate(
        self,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> GenerationResult:
        """
        Insert an occurrence for every due item not yet materialized.

        Safe to call any number of times for the same month.
        """
        correlation_id = correlation_id or create_correlation_id()
        items, warnings = self.collect_due_items(month, year)
        result = GenerationResult(month=month, year=year, warnings=warnings)

        for item in items:
            try:
                created = self._obligations.insert_occurrence(item.to_occurrence())
                result.created.append(created)
            except IdempotencyConflict as e:
                existing = e.existing or self._obligations.find_occurrence(*item.key)
                if existing is not None:
                    result.existing.append(existing)

        logger.info(
            "occurrences_generated",
            month=month,
            year=year,
            created=result.created_count,
            existing=result.existing_count,
            warnings=len(warnings),
        )

        if self._audit_logger:
            for warning in warnings:
                self._audit_logger.log(AuditEventBuilder.generation_warning(
                    source_id=None,
                    message=warning,
                    correlation_id=correlation_id,
                ))
            self._audit_logger.log(AuditEventBuilder.occurrences_generated(
                month=month,
                year=year,
                created=result.created_count,
                existing=result.existing_count,
                correlation_id=correlation_id,
            ))

        return result
