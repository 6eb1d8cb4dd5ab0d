"""Services package."""

from finledger.services.ocr import (
    ExtractionFailedError,
    MindeeStatementOCR,
    OCRError,
    StatementTextExtractor,
)
from finledger.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    LedgerSession,
    LedgerStore,
    SQLiteAuditStorage,
    SQLiteLedgerStore,
    StorageError,
)

__all__ = [
    # OCR services
    "ExtractionFailedError",
    "MindeeStatementOCR",
    "OCRError",
    "StatementTextExtractor",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "LedgerSession",
    "LedgerStore",
    "SQLiteAuditStorage",
    "SQLiteLedgerStore",
    "StorageError",
]
