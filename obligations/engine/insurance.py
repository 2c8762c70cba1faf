"""Insurance policies and their premium terms."""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.errors import ObligationError
from obligations.models.audit import AuditEventBuilder
from obligations.models.insurance import Insurance, InsurancePremium, PremiumStatus
from obligations.scheduling.premiums import expand_premiums
from obligations.services.clock import Clock, SystemClock
from obligations.services.storage import InsuranceStorageInterface
from obligations.utils.money import to_money
from obligations.validation import RecurrenceValidator

logger = structlog.get_logger(__name__)


class InsuranceService:
    """
    Creates policies and tracks premium payment state.

    Premiums are expanded once, when the policy is created.
    """

    def __init__(
        self,
        insurance: InsuranceStorageInterface,
        validator: RecurrenceValidator,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self._insurance = insurance
        self._validator = validator
        self._audit_logger = audit_logger
        self._clock = clock or SystemClock()

    def create_policy(
        self,
        policy: Insurance,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Insurance, list[InsurancePremium]]:
        """
        Validate, persist and expand a policy's premiums.

        Raises:
            ValidationError: the policy definition is rejected
        """
        correlation_id = correlation_id or create_correlation_id()
        self._validator.ensure_valid_insurance(policy)

        premiums = expand_premiums(policy)
        self._insurance.save_insurance(policy)
        self._insurance.save_premiums(premiums)

        logger.info("premiums_expanded", insurance_id=str(policy.id), count=len(premiums))
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.premiums_expanded(
                insurance_id=policy.id,
                policy_name=policy.policy_name,
                count=len(premiums),
                correlation_id=correlation_id,
            ))
        return policy, premiums

    def premiums(self, insurance_id: UUID) -> list[InsurancePremium]:
        return self._insurance.list_premiums(insurance_id=insurance_id)

    def _get_premium(self, premium_id: UUID) -> InsurancePremium:
        premium = self._insurance.get_premium(premium_id)
        if premium is None:
            raise ObligationError(f"Premium not found: {premium_id}")
        return premium

    def mark_premium_paid(
        self,
        premium_id: UUID,
        paid_date: Optional[date] = None,
        paid_amount: Optional[Decimal] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InsurancePremium:
        premium = self._get_premium(premium_id)
        if premium.is_paid:
            return premium

        premium.status = PremiumStatus.PAID
        premium.paid_date = paid_date or self._clock.today()
        premium.paid_amount = to_money(paid_amount) if paid_amount is not None else premium.amount
        self._insurance.save_premiums([premium])

        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.premium_paid(
                premium_id=premium.id,
                amount=str(premium.paid_amount),
                correlation_id=correlation_id,
            ))
        return premium

    def unmark_premium_paid(self, premium_id: UUID) -> InsurancePremium:
        premium = self._get_premium(premium_id)
        if not premium.is_paid:
            return premium

        premium.status = PremiumStatus.PENDING
        premium.paid_date = None
        premium.paid_amount = None
        self._insurance.save_premiums([premium])
        logger.info("premium_unpaid", premium_id=str(premium.id))
        return premium
