"""Saving and retiring scheduled payments and credit card statements."""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from obligations.audit import AuditLogger, create_correlation_id
from obligations.errors import ObligationError
from obligations.models.audit import AuditEventBuilder
from obligations.models.recurrence import AnySource
from obligations.services.storage import ObligationStorageInterface
from obligations.validation import RecurrenceValidator

logger = structlog.get_logger(__name__)


class SourceService:
    """
    Validated writes for user-defined recurrence sources.

    Editing a source never rewrites occurrences that already exist;
    only months generated afterwards see the change.
    """

    def __init__(
        self,
        obligations: ObligationStorageInterface,
        validator: RecurrenceValidator,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._obligations = obligations
        self._validator = validator
        self._audit_logger = audit_logger

    def save_source(
        self,
        source: AnySource,
        correlation_id: Optional[UUID] = None,
    ) -> AnySource:
        """
        Validate then insert or replace a source.

        Raises:
            ValidationError: the definition is rejected; nothing is stored
        """
        correlation_id = correlation_id or create_correlation_id()
        result = self._validator.validate_source(source)

        if not result.is_valid and self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.validation_failed(
                entity_type=result.entity_type,
                entity_id=source.id,
                stage="schema" if not result.schema_valid else "semantic",
                issues=[
                    {"field": i.field, "type": i.issue_type, "message": i.message}
                    for i in result.issues
                ],
                correlation_id=correlation_id,
            ))
        self._validator.ensure_valid(result)

        source.updated_at = datetime.utcnow()
        saved = self._obligations.save_source(source)

        logger.info("source_saved", source_id=str(saved.id), kind=saved.kind.value)
        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.source_saved(
                source_id=saved.id,
                source_kind=saved.kind.value,
                name=saved.name,
                correlation_id=correlation_id,
            ))
        return saved

    def deactivate_source(
        self,
        source_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AnySource:
        """Stop generating new occurrences; existing ones are kept."""
        source = self._obligations.get_source(source_id)
        if source is None:
            raise ObligationError(f"Source not found: {source_id}")
        if not source.is_active:
            return source

        source.is_active = False
        source.updated_at = datetime.utcnow()
        saved = self._obligations.save_source(source)

        if self._audit_logger:
            self._audit_logger.log(AuditEventBuilder.source_deactivated(
                source_id=saved.id,
                name=saved.name,
                correlation_id=correlation_id,
            ))
        return saved

    def list_sources(self, active_only: bool = True) -> list[AnySource]:
        return self._obligations.list_sources(active_only=active_only)
