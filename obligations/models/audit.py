"""
Audit Models for Obligation Tracker

Every state change the engine makes is logged for audit purposes.
This provides:
1. Complete traceability of generated and reconciled obligations
2. Debugging information when a balance looks wrong
3. A history the user can read back

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from typing import Any, Optional
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Definitions
    SOURCE_SAVED = "source_saved"
    SOURCE_DEACTIVATED = "source_deactivated"
    VALIDATION_FAILED = "validation_failed"

    # Generation
    OCCURRENCES_GENERATED = "occurrences_generated"
    GENERATION_WARNING = "generation_warning"

    # Reconciliation
    OCCURRENCE_PAID = "occurrence_paid"
    OCCURRENCE_UNPAID = "occurrence_unpaid"
    OCCURRENCE_SKIPPED = "occurrence_skipped"
    RECONCILIATION_WARNING = "reconciliation_warning"
    RECONCILIATION_FAILED = "reconciliation_failed"

    # Loans
    LOAN_SCHEDULE_BUILT = "loan_schedule_built"
    LOAN_TERM_CHANGED = "loan_term_changed"
    LOAN_PREPAID = "loan_prepaid"
    LOAN_PRECLOSED = "loan_preclosed"
    LOAN_TOPPED_UP = "loan_topped_up"
    LOAN_BT_CLOSED = "loan_bt_closed"
    INSTALLMENT_PAID = "installment_paid"

    # Insurance
    PREMIUMS_EXPANDED = "premiums_expanded"
    PREMIUM_PAID = "premium_paid"

    # Salary
    SALARY_CREDITED = "salary_credited"
    SALARY_UNCREDITED = "salary_uncredited"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'occurrence', 'loan', 'salary_cycle')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one mark-paid request)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.occurrences_generated(3, 2026, 4, 1, correlation_id)
        event = AuditEventBuilder.occurrence_paid(occurrence_id, "Rent", "1500.00", ...)
    """

    @staticmethod
    def source_saved(
        source_id: UUID,
        source_kind: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SOURCE_SAVED,
            entity_type=source_kind,
            entity_id=source_id,
            correlation_id=correlation_id,
            description=f"Saved {source_kind.replace('_', ' ')}: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def source_deactivated(
        source_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SOURCE_DEACTIVATED,
            entity_type="source",
            entity_id=source_id,
            correlation_id=correlation_id,
            description=f"Stopped tracking: {name}",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        entity_id: Optional[UUID],
        stage: str,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{stage.capitalize()} validation failed with {len(issues)} issues",
            details={
                "stage": stage,
                "issues": issues,
            },
        )

    @staticmethod
    def occurrences_generated(
        month: int,
        year: int,
        created: int,
        existing: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCES_GENERATED,
            entity_type="month",
            correlation_id=correlation_id,
            description=f"Generated {month:02d}/{year}: {created} created, {existing} already present",
            details={
                "month": month,
                "year": year,
                "created": created,
                "existing": existing,
            },
        )

    @staticmethod
    def generation_warning(
        source_id: Optional[UUID],
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_WARNING,
            severity=AuditSeverity.WARNING,
            entity_type="source",
            entity_id=source_id,
            correlation_id=correlation_id,
            description=message[:500],
        )

    @staticmethod
    def occurrence_paid(
        occurrence_id: UUID,
        name: str,
        amount: str,
        account_id: UUID,
        transaction_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_PAID,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Marked paid: {name} - ₹{amount}",
            details={
                "amount": amount,
                "account_id": str(account_id),
                "transaction_id": str(transaction_id) if transaction_id else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def occurrence_unpaid(
        occurrence_id: UUID,
        name: str,
        balance_restored: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_UNPAID,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Marked unpaid: {name}",
            details={"balance_restored": balance_restored},
            is_user_action=True,
        )

    @staticmethod
    def occurrence_skipped(
        occurrence_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_SKIPPED,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Skipped: {name}",
            is_user_action=True,
        )

    @staticmethod
    def reconciliation_warning(
        entity_id: UUID,
        kind: str,
        message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_WARNING,
            severity=AuditSeverity.WARNING,
            entity_type="occurrence",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=message[:500],
            details={"kind": kind},
        )

    @staticmethod
    def reconciliation_failed(
        entity_id: UUID,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation} aborted and rolled back",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def loan_event(
        event_type: AuditEventType,
        loan_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """Any of the LOAN_* / INSTALLMENT_* events."""
        return AuditEvent(
            event_type=event_type,
            entity_type="loan",
            entity_id=loan_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=event_type != AuditEventType.LOAN_SCHEDULE_BUILT,
        )

    @staticmethod
    def premiums_expanded(
        insurance_id: UUID,
        policy_name: str,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PREMIUMS_EXPANDED,
            entity_type="insurance",
            entity_id=insurance_id,
            correlation_id=correlation_id,
            description=f"Expanded {count} premium terms for {policy_name}",
            details={"count": count},
        )

    @staticmethod
    def premium_paid(
        premium_id: UUID,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PREMIUM_PAID,
            entity_type="insurance_premium",
            entity_id=premium_id,
            correlation_id=correlation_id,
            description=f"Premium paid - ₹{amount}",
            details={"amount": amount},
        )

    @staticmethod
    def salary_credited(
        cycle_id: UUID,
        amount: str,
        pay_date: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SALARY_CREDITED,
            entity_type="salary_cycle",
            entity_id=cycle_id,
            correlation_id=correlation_id,
            description=f"Salary credited on {pay_date} - ₹{amount}",
            details={"amount": amount, "pay_date": pay_date},
            is_user_action=True,
        )

    @staticmethod
    def salary_uncredited(
        cycle_id: UUID,
        balance_restored: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SALARY_UNCREDITED,
            entity_type="salary_cycle",
            entity_id=cycle_id,
            correlation_id=correlation_id,
            description="Salary credit reversed",
            details={"balance_restored": balance_restored},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
