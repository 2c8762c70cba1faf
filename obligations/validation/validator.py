"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence per rule type
- Range checks (custom interval, tenure, rate)
- Cross-field rules (one_time anchors, interval vs anchor year)
- This catches malformed recurrence definitions

STAGE 2 - SEMANTIC VALIDATION:
- Salary-day rules need a salary profile
- EMI must cover the first month's interest and fit the tenure
- Referenced accounts must exist
- This catches definitions that are well-formed but cannot work

Stage 2 only runs if stage 1 passes, and needs storage access.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; ensure_valid_* turns errors into a ValidationError.
"""

from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from obligations.config import get_settings
from obligations.errors import ValidationError
from obligations.models.insurance import Insurance
from obligations.models.loan import Loan
from obligations.models.recurrence import (
    CreditCardStatement,
    DueDateType,
    Frequency,
    RecurrenceSourceBase,
)
from obligations.models.salary import PaydayRule, SalaryProfile
from obligations.models.validation import ValidationIssue, ValidationResult
from obligations.scheduling.amortization import (
    AmortizationEngine,
    emi_for,
    first_period_interest,
    tenure_for,
)
from obligations.scheduling.recurrence import INTERVAL_MONTHS
from obligations.services.storage import LedgerInterface, SalaryStorageInterface

Stage = Callable[[object], list[ValidationIssue]]


def _is_valid(issues: list[ValidationIssue]) -> bool:
    return not any(issue.severity == "error" for issue in issues)


class RecurrenceValidator:
    """
    Validates recurrence sources, loans, policies and salary profiles.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (uses the ledger and salary storage
             when they are given; those checks are skipped otherwise)
    """

    def __init__(
        self,
        ledger: Optional[LedgerInterface] = None,
        salary_storage: Optional[SalaryStorageInterface] = None,
        max_custom_interval: Optional[int] = None,
    ):
        """
        Initialize validator.

        Args:
            ledger: Used to check that referenced accounts exist.
            salary_storage: Used to check salary-day rules have a profile.
            max_custom_interval: Upper bound for custom intervals
                                 (defaults to the engine setting).
        """
        self._ledger = ledger
        self._salary = salary_storage
        if max_custom_interval is None:
            max_custom_interval = get_settings().engine.max_custom_interval_months
        self._max_custom = max_custom_interval

    # -------------------------------------------------------------------------
    # Shared pipeline
    # -------------------------------------------------------------------------

    def _run(
        self,
        entity_type: str,
        entity_id: Optional[UUID],
        entity,
        schema: Stage,
        semantic: Stage,
    ) -> ValidationResult:
        all_issues = schema(entity)
        schema_valid = _is_valid(all_issues)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_issues = semantic(entity)
            all_issues.extend(semantic_issues)
            semantic_valid = _is_valid(semantic_issues)

        warnings = [i.message for i in all_issues if i.severity == "warning"]

        return ValidationResult(
            entity_type=entity_type,
            entity_id=entity_id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def _check_account(self, account_id: Optional[UUID], field: str) -> list[ValidationIssue]:
        if self._ledger is None or account_id is None:
            return []
        if self._ledger.get_account(account_id) is None:
            return [ValidationIssue(
                field=field,
                issue_type="not_found",
                message=f"Account {account_id} does not exist",
                severity="error",
                suggested_fix="Pick one of your existing accounts",
            )]
        return []

    # -------------------------------------------------------------------------
    # Recurrence sources
    # -------------------------------------------------------------------------

    def _validate_source_schema(self, source: RecurrenceSourceBase) -> list[ValidationIssue]:
        """
        Stage 1 for scheduled payments and credit card statements.

        Checks:
        - due_day presence matches due_date_type
        - custom interval range
        - anchors for one_time and non-yearly intervals
        """
        issues = []

        if source.due_date_type == DueDateType.FIXED_DAY and source.due_day is None:
            issues.append(ValidationIssue(
                field="due_day",
                issue_type="missing",
                message="A fixed-day payment needs a day of month (1-31)",
                severity="error",
                suggested_fix="Enter the day of month the payment is due",
            ))
        elif source.due_date_type == DueDateType.SALARY_DAY and source.due_day is not None:
            issues.append(ValidationIssue(
                field="due_day",
                issue_type="unexpected",
                message="A salary-day payment should not have a fixed day of month",
                severity="error",
                suggested_fix="Clear the due day or switch to a fixed-day rule",
            ))

        if isinstance(source, CreditCardStatement):
            if source.due_date_type != DueDateType.FIXED_DAY:
                issues.append(ValidationIssue(
                    field="due_date_type",
                    issue_type="invalid_value",
                    message="Credit card bills must be due on a fixed day",
                    severity="error",
                ))
            if source.card_account_id == source.account_id:
                issues.append(ValidationIssue(
                    field="card_account_id",
                    issue_type="invalid_value",
                    message="The card cannot be paid from itself",
                    severity="error",
                    suggested_fix="Choose the bank account the bill is paid from",
                ))

        if source.frequency == Frequency.CUSTOM:
            n = source.custom_interval_months
            if n is None or not 1 <= n <= self._max_custom:
                issues.append(ValidationIssue(
                    field="custom_interval_months",
                    issue_type="out_of_range",
                    message=(
                        f"Custom interval must be between 1 and {self._max_custom} months"
                    ),
                    severity="error",
                ))
        elif source.custom_interval_months is not None:
            issues.append(ValidationIssue(
                field="custom_interval_months",
                issue_type="ignored",
                message="Custom interval is ignored unless frequency is custom",
                severity="warning",
            ))

        if source.frequency == Frequency.ONE_TIME:
            if source.start_month is None or source.start_year is None:
                issues.append(ValidationIssue(
                    field="start_month",
                    issue_type="missing",
                    message="A one-time payment needs both a month and a year",
                    severity="error",
                ))
        elif source.frequency != Frequency.MONTHLY:
            interval = INTERVAL_MONTHS.get(source.frequency, source.custom_interval_months)
            if interval and 12 % interval != 0 and source.start_year is None:
                issues.append(ValidationIssue(
                    field="start_year",
                    issue_type="missing",
                    message=(
                        f"Every {interval} months does not repeat on the same months "
                        "each year, so a start year is required"
                    ),
                    severity="error",
                ))
            if source.start_month is None:
                issues.append(ValidationIssue(
                    field="start_month",
                    issue_type="defaulted",
                    message="No start month given; the cycle is counted from January",
                    severity="info",
                ))

        if source.amount is None and not isinstance(source, CreditCardStatement):
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="No amount set; occurrences will have no expected amount",
                severity="warning",
            ))

        return issues

    def _validate_source_semantic(self, source: RecurrenceSourceBase) -> list[ValidationIssue]:
        issues = []

        if source.due_date_type == DueDateType.SALARY_DAY and self._salary is not None:
            if self._salary.get_active_profile() is None:
                issues.append(ValidationIssue(
                    field="due_date_type",
                    issue_type="missing_salary_profile",
                    message="Salary-day payments need a salary profile",
                    severity="error",
                    suggested_fix="Set up your salary profile first",
                ))

        issues.extend(self._check_account(source.account_id, "account_id"))
        if isinstance(source, CreditCardStatement):
            issues.extend(self._check_account(source.card_account_id, "card_account_id"))

        return issues

    def validate_source(self, source: RecurrenceSourceBase) -> ValidationResult:
        """
        Run full two-stage validation for a scheduled payment or
        credit card statement.
        """
        return self._run(
            entity_type=source.kind.value,
            entity_id=source.id,
            entity=source,
            schema=self._validate_source_schema,
            semantic=self._validate_source_semantic,
        )

    # -------------------------------------------------------------------------
    # Loans
    # -------------------------------------------------------------------------

    def _validate_loan_schema(self, loan: Loan) -> list[ValidationIssue]:
        issues = []

        if loan.principal_amount <= 0:
            issues.append(ValidationIssue(
                field="principal_amount",
                issue_type="invalid_value",
                message="Principal must be greater than zero",
                severity="error",
            ))
        if loan.tenure_months <= 0:
            issues.append(ValidationIssue(
                field="tenure_months",
                issue_type="invalid_value",
                message="Tenure must be at least one month",
                severity="error",
            ))
        if loan.interest_rate < 0:
            issues.append(ValidationIssue(
                field="interest_rate",
                issue_type="invalid_value",
                message="Interest rate cannot be negative",
                severity="error",
            ))
        elif loan.interest_rate > Decimal("60"):
            issues.append(ValidationIssue(
                field="interest_rate",
                issue_type="suspicious",
                message=f"An annual rate of {loan.interest_rate}% looks unusually high",
                severity="warning",
                suggested_fix="Check the rate is annual, not a total",
            ))
        if loan.emi_amount <= 0:
            issues.append(ValidationIssue(
                field="emi_amount",
                issue_type="invalid_value",
                message="EMI must be greater than zero",
                severity="error",
            ))

        return issues

    def _validate_loan_semantic(self, loan: Loan) -> list[ValidationIssue]:
        """
        Stage 2 for loans.

        Checks:
        - No negative amortization (EMI > first month's interest)
        - The EMI repays the outstanding within the remaining tenure
        - Existing loans: outstanding <= principal, EMIs left to pay
        - Repayment account exists
        """
        issues = []

        interest = first_period_interest(loan.outstanding_amount, loan.interest_rate)
        if loan.outstanding_amount > 0 and loan.emi_amount <= interest:
            issues.append(ValidationIssue(
                field="emi_amount",
                issue_type="negative_amortization",
                message=(
                    f"EMI of {loan.emi_amount} does not cover the first month's "
                    f"interest of {interest}; the loan would never be repaid"
                ),
                severity="error",
                suggested_fix="Check the EMI, rate and outstanding amount",
            ))
        else:
            issues.extend(self._check_emi_matches_tenure(loan))

        if loan.is_existing_loan:
            if loan.outstanding_amount > loan.principal_amount:
                issues.append(ValidationIssue(
                    field="outstanding_amount",
                    issue_type="out_of_range",
                    message="Outstanding cannot exceed the original principal",
                    severity="error",
                ))
            if AmortizationEngine.elapsed_installments(loan) >= loan.tenure_months:
                issues.append(ValidationIssue(
                    field="next_emi_date",
                    issue_type="out_of_range",
                    message="Next EMI date falls after the loan's last installment",
                    severity="error",
                    suggested_fix="Check the start date, tenure and next EMI date",
                ))
        elif loan.outstanding_amount != loan.principal_amount:
            issues.append(ValidationIssue(
                field="outstanding_amount",
                issue_type="mismatch",
                message="A new loan's outstanding should equal its principal",
                severity="warning",
            ))

        issues.extend(self._check_account(loan.account_id, "account_id"))
        return issues

    @staticmethod
    def _check_emi_matches_tenure(loan: Loan) -> list[ValidationIssue]:
        """The EMI has to repay the outstanding within the installments left."""
        remaining = loan.tenure_months - AmortizationEngine.elapsed_installments(loan)
        if loan.outstanding_amount <= 0 or remaining <= 0:
            return []
        try:
            needed = tenure_for(loan.outstanding_amount, loan.interest_rate, loan.emi_amount)
        except ValueError:
            needed = None
        if needed is not None and needed <= remaining:
            return []
        return [ValidationIssue(
            field="emi_amount",
            issue_type="emi_tenure_mismatch",
            message=(
                f"An EMI of {loan.emi_amount} does not repay {loan.outstanding_amount} "
                f"in {remaining} installments"
            ),
            severity="error",
            suggested_fix=(
                f"Use an EMI of {emi_for(loan.outstanding_amount, loan.interest_rate, remaining)} "
                "or a longer tenure"
            ),
        )]

    def validate_loan(self, loan: Loan) -> ValidationResult:
        return self._run(
            entity_type="loan",
            entity_id=loan.id,
            entity=loan,
            schema=self._validate_loan_schema,
            semantic=self._validate_loan_semantic,
        )

    # -------------------------------------------------------------------------
    # Insurance and salary
    # -------------------------------------------------------------------------

    def _validate_insurance_schema(self, policy: Insurance) -> list[ValidationIssue]:
        issues = []
        if policy.period_months % policy.terms_per_period != 0:
            issues.append(ValidationIssue(
                field="terms_per_period",
                issue_type="invalid_value",
                message=(
                    f"{policy.terms_per_period} terms do not divide a "
                    f"{policy.period_months}-month premium period evenly"
                ),
                severity="error",
            ))
        if policy.payment_years > policy.policy_term_years:
            issues.append(ValidationIssue(
                field="premium_payment_term_years",
                issue_type="out_of_range",
                message="Premiums cannot be paid for longer than the policy term",
                severity="error",
            ))
        return issues

    def _validate_insurance_semantic(self, policy: Insurance) -> list[ValidationIssue]:
        return self._check_account(policy.account_id, "account_id")

    def validate_insurance(self, policy: Insurance) -> ValidationResult:
        return self._run(
            entity_type="insurance",
            entity_id=policy.id,
            entity=policy,
            schema=self._validate_insurance_schema,
            semantic=self._validate_insurance_semantic,
        )

    def _validate_profile_schema(self, profile: SalaryProfile) -> list[ValidationIssue]:
        issues = []
        if profile.payday_rule == PaydayRule.FIXED_DAY and profile.fixed_day is None:
            issues.append(ValidationIssue(
                field="fixed_day",
                issue_type="missing",
                message="A fixed payday needs a day of month",
                severity="error",
            ))
        if profile.payday_rule == PaydayRule.NTH_WEEKDAY and profile.weekday_preference is None:
            issues.append(ValidationIssue(
                field="weekday_preference",
                issue_type="missing",
                message="An nth-weekday payday needs a weekday",
                severity="error",
            ))
        return issues

    def _validate_profile_semantic(self, profile: SalaryProfile) -> list[ValidationIssue]:
        return self._check_account(profile.account_id, "account_id")

    def validate_salary_profile(self, profile: SalaryProfile) -> ValidationResult:
        return self._run(
            entity_type="salary_profile",
            entity_id=profile.id,
            entity=profile,
            schema=self._validate_profile_schema,
            semantic=self._validate_profile_semantic,
        )

    # -------------------------------------------------------------------------
    # Raising variants
    # -------------------------------------------------------------------------

    @staticmethod
    def ensure_valid(result: ValidationResult) -> ValidationResult:
        """
        Raise ValidationError unless `result` is valid.

        Warnings never block.
        """
        if not result.is_valid:
            errors = [i for i in result.issues if i.severity == "error"]
            raise ValidationError(
                f"Invalid {result.entity_type.replace('_', ' ')}: "
                + "; ".join(i.message for i in errors),
                issues=errors,
            )
        return result

    def ensure_valid_source(self, source: RecurrenceSourceBase) -> ValidationResult:
        return self.ensure_valid(self.validate_source(source))

    def ensure_valid_loan(self, loan: Loan) -> ValidationResult:
        return self.ensure_valid(self.validate_loan(loan))

    def ensure_valid_insurance(self, policy: Insurance) -> ValidationResult:
        return self.ensure_valid(self.validate_insurance(policy))

    def ensure_valid_salary_profile(self, profile: SalaryProfile) -> ValidationResult:
        return self.ensure_valid(self.validate_salary_profile(profile))

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to non-technical users.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if not result.is_valid:
            lines.append("❌ This can't be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please check the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
