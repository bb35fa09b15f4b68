"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements an in-memory backend, but designed to be swappable.
"""

from fintrack.services.storage.interface import (
    AuditStorageInterface,
    ConcurrencyConflictError,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
    TrackerStorageInterface,
)
from fintrack.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    "TrackerStorageInterface",
    # Exceptions
    "ConcurrencyConflictError",
    "DuplicateError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryStorage",
]
