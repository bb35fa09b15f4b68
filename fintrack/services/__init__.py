"""Services package."""

from fintrack.services.storage import (
    AuditStorageInterface,
    ConcurrencyConflictError,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryStorage,
    LedgerStorageInterface,
    StorageError,
    TrackerStorageInterface,
)

__all__ = [
    "AuditStorageInterface",
    "ConcurrencyConflictError",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryStorage",
    "LedgerStorageInterface",
    "StorageError",
    "TrackerStorageInterface",
]
