"""Tests for the audit logger."""

import pytest
from uuid import uuid4

from obligations.audit import AuditLogger, create_correlation_id
from obligations.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from obligations.models.reconciliation import ReconciliationInconsistency
from obligations.services.storage import InMemoryStorage


class BrokenAuditStorage(InMemoryStorage):
    def append_event(self, event):
        raise ConnectionError("audit sheet unavailable")


class TestAuditLogger:
    """Tests for logging and persisting events."""

    def test_event_is_persisted(self, storage, audit_logger):
        """Test that a logged event reaches the store."""
        event = AuditEventBuilder.system_error(error_type="boom", error_message="it broke")

        assert audit_logger.log(event) is True
        assert storage.get_recent_events()[0].event_id == event.event_id

    def test_without_storage(self):
        """Test that a logger with no store still accepts events."""
        audit_logger = AuditLogger()
        assert not audit_logger.persistent
        assert audit_logger.log(AuditEventBuilder.system_error("boom", "it broke")) is True

    def test_storage_failure_is_contained(self):
        """Test that a failing store returns False instead of raising."""
        audit_logger = AuditLogger(BrokenAuditStorage())
        assert audit_logger.log(AuditEventBuilder.system_error("boom", "it broke")) is False

    def test_log_inconsistencies(self, storage, audit_logger):
        """Test that each warning becomes its own warning-level event."""
        correlation_id = create_correlation_id()
        warnings = [
            ReconciliationInconsistency(
                entity_id=uuid4(),
                kind="missing_transaction",
                message="Linked transaction no longer exists",
            )
            for _ in range(2)
        ]

        assert audit_logger.log_inconsistencies(warnings, correlation_id) == 2

        events = storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 2
        assert {e.event_type for e in events} == {AuditEventType.RECONCILIATION_WARNING}
        assert {e.severity for e in events} == {AuditSeverity.WARNING}

    def test_log_error(self, storage, audit_logger):
        """Test the system error shortcut."""
        audit_logger.log_error("storage_fallback", "no credentials", details={"using": "memory"})

        event = storage.get_recent_events()[0]
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.error_message == "no credentials"
        assert event.details == {"using": "memory"}

    def test_correlation_ids_are_unique(self):
        """Test that each action gets a fresh id."""
        assert create_correlation_id() != create_correlation_id()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
