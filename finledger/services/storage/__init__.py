"""
Storage Services Package

Abstract interfaces and the SQLite implementation of ledger and audit storage.
"""

from finledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Container,
    LedgerSession,
    LedgerStore,
    StorageError,
)
from finledger.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteLedgerSession,
    SQLiteLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "Container",
    "LedgerSession",
    "LedgerStore",
    # Exceptions
    "ConnectionError",
    "StorageError",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteLedgerSession",
    "SQLiteLedgerStore",
]
