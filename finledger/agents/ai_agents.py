"""
AI Agents for finledger

CRITICAL BOUNDARIES:

1. STATEMENT PARSING AGENT:
   - CAN: Turn OCR text into proposed transaction records
   - CANNOT: Persist anything; every record is validated afterwards
   - CANNOT: Fill in missing fields with guesses

2. CATEGORIZATION AGENT:
   - CAN: Propose ONE of the user's existing categories with a confidence
   - CANNOT: Invent categories
   - The caller decides whether the confidence is high enough to apply

The LLM is a TRANSLATOR, not an ORACLE.
It converts statement text into structured records.
It NEVER makes up financial data.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from finledger.config import GeminiSettings, get_settings
from finledger.models.ledger import Category, ExtractedStatementRecord, Transaction
from finledger.models.money import parse_decimal

logger = structlog.get_logger(__name__)

# Statement text beyond this is cut before prompting
MAX_STATEMENT_CHARS = 30000

_DATE_FORMATS = ["%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%m/%d/%Y", "%Y/%m/%d", "%d %b %Y", "%d %B %Y"]


class AgentError(Exception):
    """The LLM call failed or returned something we cannot read."""
    pass


class CategoryPrediction(BaseModel):
    """AI's suggestion for a transaction's category."""

    category_id: UUID
    category_name: str = ""
    confidence: float = Field(ge=0.0, le=1.0)


def _extract_json(text: str, opener: str = "{", closer: str = "}") -> Any:
    """Find the outermost JSON value in a model response."""
    start = text.find(opener)
    end = text.rfind(closer) + 1
    if start < 0 or end <= start:
        raise AgentError("No JSON found in model response")
    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError as e:
        raise AgentError(f"Model returned invalid JSON: {e}") from e


def _safe_date(value: Any) -> Optional[date]:
    """Safely convert a value to date."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def _safe_decimal(value: Any) -> Optional[Decimal]:
    """Parse an amount, or None if it is not a valid money value."""
    if isinstance(value, str):
        # Currency symbols are common in statement text
        value = value.strip().lstrip("$€£₹").strip()
    try:
        return parse_decimal(value)
    except ValueError:
        return None


def _safe_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "debit", "expense"):
            return True
        if lowered in ("false", "no", "credit", "income"):
            return False
    return None


def record_from_raw(raw: dict) -> ExtractedStatementRecord:
    """
    Convert one raw record from the model into an ExtractedStatementRecord.

    Unreadable fields become None; the validator reports them.
    A negative amount is read as a debit: the amount is made positive
    and is_expense defaults to True.
    """
    amount = _safe_decimal(raw.get("amount"))
    is_expense = _safe_bool(raw.get("is_expense", raw.get("isExpense")))

    if amount is not None and amount < 0:
        amount = -amount
        if is_expense is None:
            is_expense = True

    description = raw.get("description")
    if description is not None:
        description = str(description).strip() or None

    return ExtractedStatementRecord(
        date=_safe_date(raw.get("date")),
        description=description,
        amount=amount,
        is_expense=is_expense,
        raw=raw,
    )


def parse_records_response(text: str) -> list[ExtractedStatementRecord]:
    """
    Parse the statement parsing agent's response.

    Accepts {"transactions": [...]} or a bare JSON array.

    Raises:
        AgentError: If the response has no readable transaction list
    """
    text = text.strip()
    if text.startswith("["):
        data = _extract_json(text, "[", "]")
    else:
        data = _extract_json(text)
        if isinstance(data, dict):
            data = data.get("transactions")

    if not isinstance(data, list):
        raise AgentError("Model response has no transaction list")

    return [record_from_raw(item) for item in data if isinstance(item, dict)]


def parse_category_response(
    text: str,
    categories: list[Category],
) -> Optional[CategoryPrediction]:
    """
    Parse the categorization agent's response.

    Returns None when the model picked nothing usable, including
    a category id that is not in the offered list.
    """
    data = _extract_json(text)
    if not isinstance(data, dict):
        return None

    raw_id = data.get("category_id", data.get("categoryId"))
    try:
        category_id = UUID(str(raw_id))
    except ValueError:
        return None

    offered = {category.id: category for category in categories}
    if category_id not in offered:
        return None

    try:
        confidence = float(data.get("confidence", 0.0))
    except (TypeError, ValueError):
        return None

    return CategoryPrediction(
        category_id=category_id,
        category_name=offered[category_id].name,
        confidence=min(max(confidence, 0.0), 1.0),
    )


class _GeminiAgent:
    """Shared Gemini setup."""

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
        max_output_tokens: Optional[int] = None,
    ):
        if model is not None:
            self._model = model
            return

        self._settings = settings or get_settings().gemini
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": max_output_tokens or self._settings.max_tokens,
            }
        )

    async def _generate(self, prompt: str) -> str:
        try:
            response = await self._model.generate_content_async(prompt)
            return response.text.strip()
        except Exception as e:
            raise AgentError(f"Gemini request failed: {e}") from e


class StatementParsingAgent(_GeminiAgent):
    """
    Turns statement OCR text into proposed transaction records.

    BOUNDARIES:
    - NEVER persists data
    - NEVER fills in missing fields
    """

    async def parse_records(self, text: str) -> list[ExtractedStatementRecord]:
        """
        Extract transaction records from statement text.

        Returns:
            Proposed records, possibly empty

        Raises:
            AgentError: If the model call fails or its answer is unreadable
        """
        statement_text = text[:MAX_STATEMENT_CHARS]

        prompt = f"""You are a financial document processing assistant.

Extract ALL transactions from the bank or credit card statement text below.

For each transaction return:
- "date": the transaction date as YYYY-MM-DD
- "description": the transaction description as printed
- "amount": the amount as a positive number with at most 2 decimals
- "is_expense": true for debits/charges/withdrawals, false for credits/payments/deposits

Rules:
- Do NOT include opening or closing balances, totals, or summaries
- Do NOT guess: if a field is unreadable, use null

Respond with ONLY a JSON object in this exact format:
{{"transactions": [{{"date": "2024-01-31", "description": "...", "amount": 12.34, "is_expense": true}}]}}

Statement text:
{statement_text}"""

        response_text = await self._generate(prompt)
        records = parse_records_response(response_text)
        logger.info("statement_records_parsed", count=len(records))
        return records


class CategorizationAgent(_GeminiAgent):
    """
    Picks the most likely of the user's categories for a transaction.

    BOUNDARIES:
    - ONLY chooses among the categories it is given
    - NEVER applies the category itself
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        super().__init__(settings=settings, model=model, max_output_tokens=256)

    async def predict_category(
        self,
        transaction: Transaction,
        categories: list[Category],
    ) -> Optional[CategoryPrediction]:
        """
        Predict a category for one transaction.

        Returns None when there is nothing to choose from or the model
        gave no usable answer. Failures are logged, not raised, so one
        bad prediction never blocks the rest of a batch.
        """
        if not categories:
            return None

        category_options = "\n".join(
            f"{category.id}: {category.name} ({category.type.value})"
            for category in categories
        )

        prompt = f"""I need help categorizing a financial transaction.

Transaction details:
- Description: {transaction.description}
- Amount: {transaction.amount}
- Date: {transaction.date.isoformat()}
- Is it an expense: {"Yes" if transaction.is_expense else "No"}

Available categories:
{category_options}

Based on the description, amount, and whether it is an expense or income,
which category is the most appropriate?

Respond with ONLY a JSON object in this exact format:
{{"category_id": "id", "category_name": "name", "confidence": 0.85}}

Be conservative - if unsure, give a low confidence."""

        try:
            response_text = await self._generate(prompt)
            return parse_category_response(response_text, categories)
        except AgentError as e:
            logger.warning(
                "category_prediction_failed",
                transaction_id=str(transaction.id),
                error=str(e),
            )
            return None
