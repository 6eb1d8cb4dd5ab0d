"""
Input Validation and Two-Stage Record Validation

Two jobs live here:

1. INPUT PARSING for every ledger operation:
   raw dicts (or already-built models) become validated pydantic
   models, and pydantic's errors become our ValidationError with
   one ValidationIssue per bad field.

2. TWO-STAGE VALIDATION of records extracted from a statement:

   STAGE 1 - SCHEMA VALIDATION:
   - Required field presence (date, description, amount, direction)
   - Positive amount

   STAGE 2 - SEMANTIC VALIDATION:
   - Future date detection
   - Absurd amount detection
   - Very old dates (warning only)

   Stage 2 only runs when stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
A record with an error is skipped and reported, never patched up.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, TypeVar
from uuid import UUID

import pydantic
from pydantic import BaseModel

from finledger.config import AppSettings, get_settings
from finledger.ledger.errors import InvalidReferenceError, ValidationError
from finledger.models.ledger import (
    ContainerRef,
    ExtractedStatementRecord,
    RecordValidationResult,
    TransactionCreate,
    ValidationIssue,
)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Statements older than this are unusual enough to flag
_OLD_RECORD_DAYS = 365 * 2


def issues_from_pydantic(error: pydantic.ValidationError) -> list[ValidationIssue]:
    """One ValidationIssue per pydantic error."""
    issues = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "input"
        issues.append(ValidationIssue(
            field=field,
            issue_type=detail.get("type", "invalid"),
            message=detail.get("msg", "Invalid value"),
        ))
    return issues


def parse_input(model_cls: type[ModelT], data: object) -> ModelT:
    """
    Validate raw input into a pydantic model.

    Raises:
        ValidationError: With one issue per invalid field
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as e:
        issues = issues_from_pydantic(e)
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        raise ValidationError(f"Invalid {model_cls.__name__}: {summary}", issues=issues) from e


def resolve_container(
    account_id: Optional[UUID],
    credit_card_id: Optional[UUID],
) -> ContainerRef:
    """
    Resolve an (account_id, credit_card_id) pair to a ContainerRef.

    Raises:
        InvalidReferenceError: Unless exactly one of the two is set
    """
    try:
        return ContainerRef.from_ids(account_id, credit_card_id)
    except ValueError as e:
        field = "account_id" if account_id is None else "credit_card_id"
        raise InvalidReferenceError(
            str(e),
            issues=[ValidationIssue(field=field, issue_type="invalid_reference", message=str(e))],
        ) from e


class StatementRecordValidator:
    """
    Validates extracted statement records through a two-stage pipeline.

    Stage 1: Schema validation
    Stage 2: Semantic validation
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        record: ExtractedStatementRecord,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if record.date is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Transaction date is missing or unreadable",
            ))

        if not record.description:
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Transaction description is missing",
            ))
        elif len(record.description) > 255:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message="Transaction description exceeds 255 characters",
            ))

        if record.amount is None:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="Transaction amount is missing or unreadable",
            ))
        elif record.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Transaction amount must be greater than zero",
            ))

        if record.is_expense is None:
            issues.append(ValidationIssue(
                field="is_expense",
                issue_type="missing",
                message="Could not tell whether the transaction is a debit or a credit",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        record: ExtractedStatementRecord,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        today = date.today()

        max_future_date = today + timedelta(days=self._settings.future_date_tolerance_days)
        if record.date > max_future_date:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Transaction date ({record.date}) is in the future",
            ))

        if record.date < today - timedelta(days=_OLD_RECORD_DAYS):
            issues.append(ValidationIssue(
                field="date",
                issue_type="suspicious_date",
                message=f"Transaction date ({record.date}) seems unusually old",
                severity="warning",
            ))

        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if record.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({record.amount:,.2f}) exceeds the maximum of {max_amount:,.2f}",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        record: ExtractedStatementRecord,
        record_index: int,
        container: ContainerRef,
        statement_id: Optional[UUID] = None,
    ) -> RecordValidationResult:
        """
        Run the two-stage pipeline on one record.

        Args:
            record: The extracted record
            record_index: Position of the record in the statement
            container: Where the resulting transaction will be booked
            statement_id: Statement the record came from

        Returns:
            RecordValidationResult; transaction_input is set only when valid
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(record)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(record)
            all_issues.extend(semantic_issues)

        transaction_input = None
        if schema_valid and semantic_valid:
            try:
                transaction_input = TransactionCreate(
                    amount=record.amount,
                    description=record.description,
                    date=record.date,
                    is_expense=record.is_expense,
                    account_id=container.account_id,
                    credit_card_id=container.credit_card_id,
                    statement_id=statement_id,
                )
            except pydantic.ValidationError as e:
                semantic_valid = False
                all_issues.extend(issues_from_pydantic(e))

        return RecordValidationResult(
            record_index=record_index,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            transaction_input=transaction_input,
        )
