"""OCR services package."""

from finledger.services.ocr.mindee_service import (
    ExtractionFailedError,
    MindeeStatementOCR,
    OCRError,
    StatementTextExtractor,
)

__all__ = [
    "ExtractionFailedError",
    "MindeeStatementOCR",
    "OCRError",
    "StatementTextExtractor",
]
