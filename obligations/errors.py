"""
Domain exceptions for the obligation engine.

Storage failures live with the storage interface
(see obligations.services.storage.interface).
"""

from typing import Optional


class ObligationError(Exception):
    """Base exception for engine errors."""
    pass


class ValidationError(ObligationError):
    """
    A recurrence, loan, insurance or salary definition is malformed.
    
    Raised before anything is persisted or generated. Carries the
    individual issues so callers can show them to the user.
    """
    
    def __init__(self, message: str, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message)


class SalaryProfileRequired(ObligationError):
    """A salary-day rule was resolved without an active salary profile."""
    pass


class ReconciliationError(ObligationError):
    """
    Mark-paid / unmark was aborted.
    
    Any side effect already applied has been compensated, so the
    occurrence, ledger and balances are as they were before the call.
    """
    
    def __init__(self, message: str, occurrence_id=None):
        self.occurrence_id = occurrence_id
        super().__init__(message)


class AmortizationInvariantViolation(ObligationError):
    """
    A built schedule does not close to zero.
    
    This signals a broken formula, never bad user input.
    It must not be swallowed.
    """
    
    def __init__(self, message: str, residue=None):
        self.residue = residue
        super().__init__(message)
