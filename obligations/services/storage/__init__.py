"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Implements an in-memory backend and Google Sheets, designed to be swappable.
"""

from obligations.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    IdempotencyConflict,
    InsuranceStorageInterface,
    LedgerInterface,
    LoanStorageInterface,
    NotFoundError,
    ObligationStorageInterface,
    SalaryStorageInterface,
    StaleStateError,
    StorageConnectionError,
    StorageError,
)
from obligations.services.storage.memory import InMemoryStorage
from obligations.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    GoogleSheetsLedger,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "InsuranceStorageInterface",
    "LedgerInterface",
    "LoanStorageInterface",
    "ObligationStorageInterface",
    "SalaryStorageInterface",
    # Exceptions
    "DuplicateError",
    "IdempotencyConflict",
    "NotFoundError",
    "StaleStateError",
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
    "GoogleSheetsLedger",
]
