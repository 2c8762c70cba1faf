"""Validation package."""

from obligations.validation.validator import RecurrenceValidator

__all__ = ["RecurrenceValidator"]
