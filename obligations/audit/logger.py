"""
Audit Logger

DESIGN DECISION: Every state change the engine makes is written twice:
once to the structured process log, once to the audit store. The audit
store is what a user sees as "history"; the process log is for us.

A failing audit store never fails the action that produced the event.
Events from one user action share a correlation ID.
"""

import logging
from typing import Iterable, Optional
from uuid import UUID, uuid4

import structlog

from obligations.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from obligations.models.reconciliation import ReconciliationInconsistency
from obligations.services.storage import AuditStorageInterface


_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog to emit one JSON object per line through stdlib logging.

    Safe to call more than once; the last level wins.
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(default=str),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Writes audit events to the process log and, when configured, to storage.
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("obligations.audit")

    @property
    def persistent(self) -> bool:
        return self._storage is not None

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns True if the storage write succeeded (or no storage is configured).
        """
        level = _LEVELS.get(event.severity, "info")
        getattr(self._logger, level)(event.event_type.value, **event.to_log_dict())

        if self._storage is None:
            return True

        try:
            return self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    def log_inconsistencies(
        self,
        warnings: Iterable[ReconciliationInconsistency],
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Record each reconciliation warning; returns how many were logged."""
        count = 0
        for warning in warnings:
            self.log(AuditEventBuilder.reconciliation_warning(
                entity_id=warning.entity_id,
                kind=warning.kind,
                message=warning.message,
                correlation_id=correlation_id,
            ))
            count += 1
        return count

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a user action (generate, mark paid, unmark)
    and pass it through every call the action makes.
    """
    return uuid4()
