"""
OCR Service using Mindee

Turns an uploaded statement (PDF or image) into plain text.
Structuring that text into transactions is the parsing agent's job,
not this service's.

This service handles:
1. Sending the statement file to Mindee
2. Collecting the page-level OCR text
3. Retrying transient failures with exponential backoff

CRITICAL: An empty result is an error. We never hand an empty string
to the parser and pretend the statement had no transactions.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog
from mindee import Client
from mindee.product import FinancialDocumentV1
from tenacity import retry, stop_after_attempt, wait_exponential

from finledger.config import MindeeSettings, get_settings

logger = structlog.get_logger(__name__)


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class ExtractionFailedError(OCRError):
    """Failed to extract text from the statement."""
    pass


class StatementTextExtractor(ABC):
    """Anything that can turn a statement file into text."""

    @abstractmethod
    async def extract_text(self, file_path: str) -> str:
        """
        Extract the full text of a statement.

        Args:
            file_path: Local path of the uploaded file

        Returns:
            Non-empty text

        Raises:
            ExtractionFailedError: If the file is missing or no text came back
        """
        pass


class MindeeStatementOCR(StatementTextExtractor):
    """
    Statement OCR backed by the Mindee financial document API.

    The client is created lazily so that constructing the service
    never needs network access.
    """

    def __init__(self, settings: Optional[MindeeSettings] = None):
        self._settings = settings or get_settings().mindee
        self._client: Optional[Client] = None

    def _get_client(self) -> Client:
        """Get or create Mindee client."""
        if self._client is None:
            self._client = Client(api_key=self._settings.api_key)
        return self._client

    def _parse_file(self, file_path: str) -> str:
        # Blocking SDK call; run in a worker thread
        client = self._get_client()
        input_source = client.source_from_path(file_path)
        result = client.parse(
            FinancialDocumentV1,
            input_source,
            include_words=True,
        )
        ocr = getattr(result.document, "ocr", None)
        return str(ocr) if ocr is not None else ""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _parse_with_retry(self, file_path: str) -> str:
        return await asyncio.to_thread(self._parse_file, file_path)

    async def extract_text(self, file_path: str) -> str:
        if not Path(file_path).is_file():
            raise ExtractionFailedError(f"Statement file not found: {file_path}")

        try:
            text = await self._parse_with_retry(file_path)
        except Exception as e:
            logger.error("ocr_failed", file_path=file_path, error=str(e))
            raise ExtractionFailedError(f"Failed to extract text from statement: {e}") from e

        text = text.strip()
        if not text:
            raise ExtractionFailedError("No text could be extracted from the statement")

        logger.info("ocr_completed", file_path=file_path, characters=len(text))
        return text
