"""
Main Orchestrator for Obligation Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Checklist (open month -> generate if empty -> list / summarize)
2. Payments (mark paid / unmark / skip, salary credited / uncredited)
3. Obligations (validate -> persist -> expand schedules)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is persisted before it passes validation
- Occurrences are only created by explicit generation
- Every user action gets a correlation id and is audited

Every call takes explicit (month, year) arguments; there is no ambient
"current month" state.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, configure_logging, create_correlation_id
from obligations.config import get_settings
from obligations.engine import (
    ForecastAggregator,
    InsuranceService,
    LoanService,
    OccurrenceGenerator,
    ReconciliationEngine,
    SalaryService,
    SourceService,
)
from obligations.models.forecast import Dashboard, ForecastSummary, MonthSummary
from obligations.models.insurance import Insurance, InsurancePremium
from obligations.models.loan import (
    Loan,
    LoanBtAllocation,
    LoanInstallment,
    LoanPayment,
    LoanTerm,
    PrepaymentStrategy,
)
from obligations.models.reconciliation import ReconciliationResult
from obligations.models.recurrence import AnySource, GenerationResult, Occurrence
from obligations.models.salary import SalaryProfile
from obligations.models.validation import ValidationResult
from obligations.scheduling import AmortizationEngine, PaydayPredictor
from obligations.services.clock import Clock, SystemClock
from obligations.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    GoogleSheetsLedger,
    InMemoryStorage,
    InsuranceStorageInterface,
    LedgerInterface,
    LoanStorageInterface,
    ObligationStorageInterface,
    SalaryStorageInterface,
)
from obligations.validation import RecurrenceValidator

logger = structlog.get_logger(__name__)


class ChecklistFlow:
    """
    Orchestrates the monthly checklist.

    Flow:
    1. Open month -> list its occurrences
    2. None yet -> generate (idempotent) and list again
    3. Summaries and forecast are read-only
    """

    def __init__(
        self,
        obligations: ObligationStorageInterface,
        generator: OccurrenceGenerator,
        forecast: ForecastAggregator,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._obligations = obligations
        self._generator = generator
        self._forecast = forecast
        self._audit_logger = audit_logger

    def get_checklist(
        self,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> list[Occurrence]:
        """
        The month's occurrences ordered by due date.

        Generates the month first if nothing has been materialized yet.
        """
        occurrences = self._obligations.list_occurrences(month=month, year=year)
        if not occurrences:
            self.generate(month, year, correlation_id)
            occurrences = self._obligations.list_occurrences(month=month, year=year)
        return occurrences

    def generate(
        self,
        month: int,
        year: int,
        correlation_id: Optional[UUID] = None,
    ) -> GenerationResult:
        correlation_id = correlation_id or create_correlation_id()
        return self._generator.generate(month, year, correlation_id)

    def month_summary(self, month: int, year: int) -> MonthSummary:
        return self._forecast.month_summary(month, year)

    def next_month_forecast(self, today: Optional[date] = None) -> ForecastSummary:
        return self._forecast.next_month_forecast(today)

    def dashboard(self, month: Optional[int] = None, year: Optional[int] = None) -> Dashboard:
        return self._forecast.dashboard(month, year)


class PaymentFlow:
    """
    Orchestrates paid / unpaid toggles.

    Every call is one user action with its own correlation id, so the
    audit trail groups the occurrence, ledger and warning events.
    """

    def __init__(
        self,
        reconciliation: ReconciliationEngine,
        salary: SalaryService,
    ):
        self._reconciliation = reconciliation
        self._salary = salary

    def mark_paid(
        self,
        occurrence_id: UUID,
        account_id: UUID,
        paid_date: date,
        amount: Optional[Decimal] = None,
    ) -> ReconciliationResult:
        return self._reconciliation.mark_paid(
            occurrence_id,
            account_id,
            paid_date,
            amount,
            correlation_id=create_correlation_id(),
        )

    def unmark(self, occurrence_id: UUID) -> ReconciliationResult:
        return self._reconciliation.unmark(occurrence_id, correlation_id=create_correlation_id())

    def skip(self, occurrence_id: UUID, note: Optional[str] = None) -> ReconciliationResult:
        return self._reconciliation.skip(occurrence_id, note, correlation_id=create_correlation_id())

    def mark_salary_credited(
        self,
        month: int,
        year: int,
        pay_date: Optional[date] = None,
        amount: Optional[Decimal] = None,
        account_id: Optional[UUID] = None,
    ) -> ReconciliationResult:
        return self._salary.mark_salary_credited(
            month,
            year,
            pay_date=pay_date,
            amount=amount,
            account_id=account_id,
            correlation_id=create_correlation_id(),
        )

    def unmark_salary_credited(self, month: int, year: int) -> ReconciliationResult:
        return self._salary.unmark_salary_credited(month, year, correlation_id=create_correlation_id())


class ObligationFlow:
    """
    Orchestrates creating and changing obligations.

    Flow:
    1. Validate (two-stage) -> reject with ValidationError on errors
    2. Persist
    3. Expand schedules (loan installments, insurance premiums)
    """

    def __init__(
        self,
        validator: RecurrenceValidator,
        sources: SourceService,
        loans: LoanService,
        insurance: InsuranceService,
        salary: SalaryService,
    ):
        self._validator = validator
        self._sources = sources
        self._loans = loans
        self._insurance = insurance
        self._salary = salary

    def check(self, entity: Union[AnySource, Loan, Insurance, SalaryProfile]) -> tuple[ValidationResult, str]:
        """
        Validate without saving.

        Returns:
            (validation_result, user_message)
        """
        if isinstance(entity, Loan):
            result = self._validator.validate_loan(entity)
        elif isinstance(entity, Insurance):
            result = self._validator.validate_insurance(entity)
        elif isinstance(entity, SalaryProfile):
            result = self._validator.validate_salary_profile(entity)
        else:
            result = self._validator.validate_source(entity)
        return result, self._validator.get_user_friendly_summary(result)

    def save_source(self, source: AnySource) -> AnySource:
        return self._sources.save_source(source, correlation_id=create_correlation_id())

    def deactivate_source(self, source_id: UUID) -> AnySource:
        return self._sources.deactivate_source(source_id, correlation_id=create_correlation_id())

    def save_salary_profile(self, profile: SalaryProfile) -> SalaryProfile:
        return self._salary.save_profile(profile)

    def create_loan(self, loan: Loan) -> tuple[Loan, list[LoanInstallment]]:
        return self._loans.create_loan(loan, correlation_id=create_correlation_id())

    def loan_schedule(self, loan_id: UUID) -> list[LoanInstallment]:
        return self._loans.schedule(loan_id)

    def change_loan_term(
        self,
        loan_id: UUID,
        change_date: Optional[date] = None,
        interest_rate: Optional[Decimal] = None,
        tenure_months: Optional[int] = None,
        emi_amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> LoanTerm:
        return self._loans.change_term(
            loan_id,
            change_date=change_date,
            interest_rate=interest_rate,
            tenure_months=tenure_months,
            emi_amount=emi_amount,
            reason=reason,
            correlation_id=create_correlation_id(),
        )

    def prepay_loan(
        self,
        loan_id: UUID,
        amount: Decimal,
        payment_date: Optional[date] = None,
        account_id: Optional[UUID] = None,
        strategy: PrepaymentStrategy = PrepaymentStrategy.REDUCE_TENURE,
    ) -> LoanPayment:
        return self._loans.record_prepayment(
            loan_id,
            amount,
            payment_date=payment_date,
            account_id=account_id,
            strategy=strategy,
            correlation_id=create_correlation_id(),
        )

    def preclose_loan(
        self,
        loan_id: UUID,
        closure_amount: Decimal,
        closure_date: Optional[date] = None,
        account_id: Optional[UUID] = None,
        create_transaction: bool = True,
    ) -> Loan:
        return self._loans.preclose(
            loan_id,
            closure_amount,
            closure_date=closure_date,
            account_id=account_id,
            create_transaction=create_transaction,
            correlation_id=create_correlation_id(),
        )

    def topup_loan(
        self,
        loan_id: UUID,
        topup_amount: Decimal,
        change_date: Optional[date] = None,
        new_emi: Optional[Decimal] = None,
        additional_tenure: int = 0,
    ) -> LoanTerm:
        return self._loans.topup(
            loan_id,
            topup_amount,
            change_date=change_date,
            new_emi=new_emi,
            additional_tenure=additional_tenure,
            correlation_id=create_correlation_id(),
        )

    def balance_transfer(
        self,
        bt_loan_id: UUID,
        target_loan_id: UUID,
        allocated_amount: Decimal,
        allocation_date: Optional[date] = None,
    ) -> LoanBtAllocation:
        return self._loans.close_by_balance_transfer(
            bt_loan_id,
            target_loan_id,
            allocated_amount,
            allocation_date=allocation_date,
            correlation_id=create_correlation_id(),
        )

    def create_policy(self, policy: Insurance) -> tuple[Insurance, list[InsurancePremium]]:
        return self._insurance.create_policy(policy, correlation_id=create_correlation_id())


@dataclass
class AppComponents:
    """Everything a client needs, wired against one storage backend."""

    checklist: ChecklistFlow
    payments: PaymentFlow
    obligations: ObligationFlow
    ledger: LedgerInterface
    clock: Clock
    sheets_client: Optional[GoogleSheetsClient] = None


def _google_sheets_backends(
    sheets_client: GoogleSheetsClient,
) -> tuple[LedgerInterface, GoogleSheetsDocumentStorage, AuditStorageInterface]:
    sheets_client.get_spreadsheet()  # fail fast when not configured
    return (
        GoogleSheetsLedger(sheets_client),
        GoogleSheetsDocumentStorage(sheets_client),
        GoogleSheetsAuditStorage(sheets_client),
    )


def create_app_components(
    use_storage: bool = True,
    clock: Optional[Clock] = None,
    memory_storage: Optional[InMemoryStorage] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to use the configured storage backend.
                    Set to False for in-memory storage (tests, demos).
        clock: Clock to use (defaults to the system clock)
        memory_storage: In-memory store to use instead of a fresh one

    Returns:
        AppComponents
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    engine_settings = settings.engine
    clock = clock or SystemClock()

    sheets_client = None
    storage_error: Optional[str] = None
    ledger: LedgerInterface
    documents: Union[InMemoryStorage, GoogleSheetsDocumentStorage]
    audit_storage: Optional[AuditStorageInterface]

    if use_storage and settings.app.uses_google_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            ledger, documents, audit_storage = _google_sheets_backends(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e), fallback="memory")
            storage_error = str(e)
            sheets_client = None
            memory = memory_storage or InMemoryStorage()
            ledger, documents, audit_storage = memory, memory, memory
    else:
        memory = memory_storage or InMemoryStorage()
        ledger, documents, audit_storage = memory, memory, memory

    obligations: ObligationStorageInterface = documents
    loans: LoanStorageInterface = documents
    insurance: InsuranceStorageInterface = documents
    salary: SalaryStorageInterface = documents

    audit_logger = AuditLogger(audit_storage)
    if storage_error is not None:
        audit_logger.log_error(
            error_type="storage_fallback",
            error_message=storage_error,
            details={"requested": settings.app.storage_backend, "using": "memory"},
        )
    predictor = PaydayPredictor(
        clock,
        upcoming_count=engine_settings.upcoming_payday_count,
        past_count=engine_settings.past_payday_count,
    )
    validator = RecurrenceValidator(
        ledger=ledger,
        salary_storage=salary,
        max_custom_interval=engine_settings.max_custom_interval_months,
    )

    loan_service = LoanService(
        loans=loans,
        obligations=obligations,
        ledger=ledger,
        validator=validator,
        amortization=AmortizationEngine(engine_settings.amortization_tolerance),
        audit_logger=audit_logger,
        clock=clock,
    )
    insurance_service = InsuranceService(insurance, validator, audit_logger, clock)
    salary_service = SalaryService(salary, ledger, validator, predictor, audit_logger, clock)
    source_service = SourceService(obligations, validator, audit_logger)

    generator = OccurrenceGenerator(
        obligations=obligations,
        loans=loans,
        insurance=insurance,
        salary=salary,
        ledger=ledger,
        audit_logger=audit_logger,
        max_custom_interval=engine_settings.max_custom_interval_months,
    )
    reconciliation = ReconciliationEngine(
        obligations=obligations,
        ledger=ledger,
        loan_service=loan_service,
        insurance_service=insurance_service,
        audit_logger=audit_logger,
    )
    forecast = ForecastAggregator(obligations, salary, generator, predictor, clock)

    return AppComponents(
        checklist=ChecklistFlow(obligations, generator, forecast, audit_logger),
        payments=PaymentFlow(reconciliation, salary_service),
        obligations=ObligationFlow(
            validator,
            source_service,
            loan_service,
            insurance_service,
            salary_service,
        ),
        ledger=ledger,
        clock=clock,
        sheets_client=sheets_client,
    )
