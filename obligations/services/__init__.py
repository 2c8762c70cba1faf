"""Services package: the clock and storage collaborators."""

from obligations.services.clock import Clock, FixedClock, SystemClock
from obligations.services.storage import (
    AuditStorageInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    GoogleSheetsLedger,
    IdempotencyConflict,
    InMemoryStorage,
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

__all__ = [
    # Clock
    "Clock",
    "FixedClock",
    "SystemClock",
    # Storage services
    "AuditStorageInterface",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
    "GoogleSheetsLedger",
    "IdempotencyConflict",
    "InMemoryStorage",
    "InsuranceStorageInterface",
    "LedgerInterface",
    "LoanStorageInterface",
    "NotFoundError",
    "ObligationStorageInterface",
    "SalaryStorageInterface",
    "StaleStateError",
    "StorageConnectionError",
    "StorageError",
]
