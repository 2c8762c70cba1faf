"""
Data Models Package

This package contains all Pydantic models used by the obligation engine.
All data flowing through the engine must conform to these schemas.
"""

from obligations.models.recurrence import (
    AnySource,
    CreditCardStatement,
    DueDateType,
    DueItem,
    Frequency,
    GenerationResult,
    Occurrence,
    OccurrenceStatus,
    RecurrenceSourceBase,
    ScheduledPayment,
    SourceKind,
)
from obligations.models.ledger import (
    Account,
    AccountType,
    LinkRef,
    Transaction,
    TransactionType,
)
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
from obligations.models.insurance import (
    Insurance,
    InsurancePremium,
    InsuranceStatus,
    PremiumFrequency,
    PremiumStatus,
)
from obligations.models.salary import (
    PaydayRule,
    SalaryCycle,
    SalaryProfile,
)
from obligations.models.forecast import (
    Dashboard,
    ForecastSummary,
    KindSummary,
    MonthSummary,
)
from obligations.models.reconciliation import (
    ReconciliationInconsistency,
    ReconciliationResult,
)
from obligations.models.validation import (
    ValidationIssue,
    ValidationResult,
)
from obligations.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Recurrence models
    "AnySource",
    "CreditCardStatement",
    "DueDateType",
    "DueItem",
    "Frequency",
    "GenerationResult",
    "Occurrence",
    "OccurrenceStatus",
    "RecurrenceSourceBase",
    "ScheduledPayment",
    "SourceKind",
    # Ledger models
    "Account",
    "AccountType",
    "LinkRef",
    "Transaction",
    "TransactionType",
    # Loan models
    "InstallmentStatus",
    "Loan",
    "LoanBtAllocation",
    "LoanInstallment",
    "LoanPayment",
    "LoanPaymentType",
    "LoanStatus",
    "LoanTerm",
    "PrepaymentStrategy",
    # Insurance models
    "Insurance",
    "InsurancePremium",
    "InsuranceStatus",
    "PremiumFrequency",
    "PremiumStatus",
    # Salary models
    "PaydayRule",
    "SalaryCycle",
    "SalaryProfile",
    # Read models
    "Dashboard",
    "ForecastSummary",
    "KindSummary",
    "MonthSummary",
    "ReconciliationInconsistency",
    "ReconciliationResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
