"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
Google Sheets is the persistent backend; the in-memory store backs tests
and demo mode. Both are swappable behind LedgerStoreInterface.
"""

from potledger.services.storage.interface import (
    AuditStorageInterface,
    BufferedTransaction,
    ConnectionError,
    Document,
    DuplicateError,
    LedgerStoreInterface,
    LedgerTransaction,
    NotFoundError,
    StorageError,
    TransactionConflictError,
)
from potledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from potledger.services.storage.cache import LedgerCache
from potledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BufferedTransaction",
    "Document",
    "LedgerStoreInterface",
    "LedgerTransaction",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "TransactionConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    "LedgerCache",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
