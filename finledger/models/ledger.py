"""
Core Data Models for finledger

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep money exact (Decimal, two places, one parser)

DESIGN DECISION: Every money field is parsed by parse_decimal through an
Annotated type, so "100", 100, 100.0 and Decimal("100") all behave the same
and "abc" never turns into zero.
"""

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)

from finledger.models.money import parse_decimal


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Money = Annotated[Decimal, BeforeValidator(parse_decimal)]
PositiveMoney = Annotated[Decimal, BeforeValidator(parse_decimal), Field(gt=0)]
NonNegativeMoney = Annotated[Decimal, BeforeValidator(parse_decimal), Field(ge=0)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ContainerKind(str, Enum):
    """The two kinds of entity whose balance a transaction affects."""
    ACCOUNT = "account"
    CREDIT_CARD = "credit_card"


class CategoryType(str, Enum):
    """Category type."""
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class StatementStatus(str, Enum):
    """
    Statement processing job status.

    PENDING -> PROCESSING -> COMPLETED | FAILED.
    A job never leaves COMPLETED or FAILED.
    """
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    def can_transition_to(self, target: "StatementStatus") -> bool:
        return target in _STATEMENT_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _STATEMENT_TRANSITIONS[self]


_STATEMENT_TRANSITIONS: dict[StatementStatus, frozenset[StatementStatus]] = {
    StatementStatus.PENDING: frozenset({StatementStatus.PROCESSING, StatementStatus.FAILED}),
    StatementStatus.PROCESSING: frozenset({StatementStatus.COMPLETED, StatementStatus.FAILED}),
    StatementStatus.COMPLETED: frozenset(),
    StatementStatus.FAILED: frozenset(),
}


# =============================================================================
# CONTAINERS
# =============================================================================

class ContainerRef(BaseModel):
    """Reference to an Account or CreditCard by kind and id."""
    model_config = ConfigDict(frozen=True)

    kind: ContainerKind
    id: UUID

    @classmethod
    def from_ids(
        cls,
        account_id: Optional[UUID],
        credit_card_id: Optional[UUID],
    ) -> "ContainerRef":
        """
        Build a reference from an (account_id, credit_card_id) pair.

        Raises:
            ValueError: Unless exactly one of the two is set.
        """
        if account_id is not None and credit_card_id is not None:
            raise ValueError("Only one of account_id or credit_card_id may be provided")
        if account_id is not None:
            return cls(kind=ContainerKind.ACCOUNT, id=account_id)
        if credit_card_id is not None:
            return cls(kind=ContainerKind.CREDIT_CARD, id=credit_card_id)
        raise ValueError("Either account_id or credit_card_id must be provided")

    @property
    def account_id(self) -> Optional[UUID]:
        return self.id if self.kind == ContainerKind.ACCOUNT else None

    @property
    def credit_card_id(self) -> Optional[UUID]:
        return self.id if self.kind == ContainerKind.CREDIT_CARD else None

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class Account(BaseModel):
    """
    A bank account.

    INVARIANT: balance == opening_balance + sum of active transaction effects.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(default="", max_length=30)
    opening_balance: Money = Decimal("0.00")
    balance: Money = Decimal("0.00")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = None

    @property
    def ref(self) -> ContainerRef:
        return ContainerRef(kind=ContainerKind.ACCOUNT, id=self.id)

    @property
    def stored_balance(self) -> Decimal:
        return self.balance

    @property
    def baseline_balance(self) -> Decimal:
        return self.opening_balance


class CreditCard(BaseModel):
    """
    A credit card.

    INVARIANT: current_balance == sum of active transaction effects,
    where expenses increase what is owed and payments decrease it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    bank: str = Field(..., min_length=1, max_length=100)
    card_number: str = Field(default="", max_length=30)
    credit_limit: NonNegativeMoney
    current_balance: Money = Decimal("0.00")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = None

    @property
    def ref(self) -> ContainerRef:
        return ContainerRef(kind=ContainerKind.CREDIT_CARD, id=self.id)

    @property
    def stored_balance(self) -> Decimal:
        return self.current_balance

    @property
    def baseline_balance(self) -> Decimal:
        return Decimal("0.00")

    @property
    def available_credit(self) -> Decimal:
        return self.credit_limit - self.current_balance


class Category(BaseModel):
    """A user-defined transaction category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryType
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = None


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single income or expense against exactly one container.

    The container is referenced by id only. Ownership is checked
    against user_id every time the transaction is mutated.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    amount: PositiveMoney
    description: str = Field(..., min_length=1, max_length=255)
    date: dt.date
    is_expense: bool
    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    statement_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    deleted_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_single_container(self) -> 'Transaction':
        # Raises ValueError unless exactly one container id is set
        ContainerRef.from_ids(self.account_id, self.credit_card_id)
        return self

    @property
    def container_ref(self) -> ContainerRef:
        return ContainerRef.from_ids(self.account_id, self.credit_card_id)


class TransactionCreate(BaseModel):
    """
    Validated input for creating a transaction.

    The exactly-one-container rule is NOT enforced here: the validator
    reports it as an invalid reference so callers get one error type.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    amount: PositiveMoney
    description: str = Field(..., min_length=1, max_length=255)
    date: dt.date
    is_expense: bool
    category_id: Optional[UUID] = None
    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None
    statement_id: Optional[UUID] = None


class TransactionPatch(BaseModel):
    """
    Partial update of a transaction.

    Absent fields stay unchanged. category_id may be set to None
    explicitly to clear the category (see model_fields_set).
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    amount: Optional[PositiveMoney] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    date: Optional[dt.date] = None
    is_expense: Optional[bool] = None
    category_id: Optional[UUID] = None
    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None

    @property
    def moves_container(self) -> bool:
        return self.account_id is not None or self.credit_card_id is not None

    @property
    def clears_category(self) -> bool:
        return "category_id" in self.model_fields_set and self.category_id is None


class TransactionFilter(BaseModel):
    """Filters for listing a user's transactions."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[UUID] = None
    is_expense: Optional[bool] = None
    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None
    statement_id: Optional[UUID] = None
    uncategorized_only: bool = False
    limit: int = Field(default=500, ge=1, le=5000)
    offset: int = Field(default=0, ge=0)


# =============================================================================
# CONTAINER AND CATEGORY INPUTS
# =============================================================================

class AccountCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=100)
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(default="", max_length=30)
    balance: Money = Decimal("0.00")


class AccountUpdate(BaseModel):
    """
    Account fields a user may edit.

    The balance is deliberately absent: it only moves through transactions.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bank_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    account_number: Optional[str] = Field(default=None, max_length=30)


class CreditCardCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=100)
    bank: str = Field(..., min_length=1, max_length=100)
    card_number: str = Field(default="", max_length=30)
    credit_limit: NonNegativeMoney


class CreditCardUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bank: Optional[str] = Field(default=None, min_length=1, max_length=100)
    card_number: Optional[str] = Field(default=None, max_length=30)
    credit_limit: Optional[NonNegativeMoney] = None


class CategoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryType


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    type: Optional[CategoryType] = None


class BalanceReconciliation(BaseModel):
    """Stored vs. recomputed balance of one container."""

    container_ref: ContainerRef
    stored_balance: Money
    expected_balance: Money
    active_transactions: int = Field(ge=0)
    checked_at: datetime = Field(default_factory=utc_now)

    @property
    def drift(self) -> Decimal:
        return self.stored_balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


# =============================================================================
# STATEMENTS
# =============================================================================

class Statement(BaseModel):
    """
    An uploaded bank/card statement and its processing job state.

    The file itself is stored by the caller; we only keep its path.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    account_id: Optional[UUID] = None
    credit_card_id: Optional[UUID] = None
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1)
    file_type: str = Field(..., min_length=1, max_length=10)
    processing_status: StatementStatus = StatementStatus.PENDING
    error_message: Optional[str] = Field(default=None, max_length=1000)
    transactions_created: int = Field(default=0, ge=0)
    transactions_failed: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    processed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_single_container(self) -> 'Statement':
        ContainerRef.from_ids(self.account_id, self.credit_card_id)
        return self

    @property
    def container_ref(self) -> ContainerRef:
        return ContainerRef.from_ids(self.account_id, self.credit_card_id)


class ExtractedStatementRecord(BaseModel):
    """
    One transaction line extracted from a statement by the LLM.

    CRITICAL: This is PROPOSED data, NOT verified.
    All fields are optional because extraction might miss them;
    the validator decides whether the record can become a Transaction.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: Optional[dt.date] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    is_expense: Optional[bool] = None
    raw: dict[str, Any] = Field(
        default_factory=dict,
        description="The record as the model returned it, for debugging"
    )


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class RecordValidationResult(BaseModel):
    """
    Result of the two-stage validation of an extracted statement record.

    Stage 1: Schema validation (presence, types)
    Stage 2: Semantic validation (dates, amounts)
    """

    record_index: int = Field(ge=0)
    schema_valid: bool
    semantic_valid: bool
    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    transaction_input: Optional[TransactionCreate] = None

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
