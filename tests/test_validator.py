"""Tests for input parsing and the two-stage statement record validator."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from finledger.ledger.errors import InvalidReferenceError, ValidationError
from finledger.models.ledger import (
    ContainerKind,
    ContainerRef,
    ExtractedStatementRecord,
    TransactionCreate,
)
from finledger.validation import StatementRecordValidator
from finledger.validation.validator import parse_input, resolve_container


class TestParseInput:

    def test_returns_model_instance_unchanged(self):
        data = TransactionCreate(
            amount="5", description="x", date=date(2024, 1, 1), is_expense=True
        )
        assert parse_input(TransactionCreate, data) is data

    def test_collects_one_issue_per_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_input(TransactionCreate, {"amount": "abc", "description": ""})

        fields = {issue.field for issue in exc_info.value.issues}
        assert {"amount", "description", "date", "is_expense"} <= fields

    def test_resolve_container(self):
        card_id = uuid4()
        ref = resolve_container(None, card_id)
        assert ref == ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id)

        with pytest.raises(InvalidReferenceError):
            resolve_container(uuid4(), uuid4())
        with pytest.raises(InvalidReferenceError) as exc_info:
            resolve_container(None, None)
        assert exc_info.value.issues[0].issue_type == "invalid_reference"


class TestStatementRecordValidator:

    @pytest.fixture
    def validator(self, app_settings):
        return StatementRecordValidator(app_settings)

    @pytest.fixture
    def container(self):
        return ContainerRef(kind=ContainerKind.ACCOUNT, id=uuid4())

    def _record(self, **overrides):
        data = {
            "date": date.today() - timedelta(days=3),
            "description": "SUPERMARKET",
            "amount": Decimal("42.10"),
            "is_expense": True,
        }
        data.update(overrides)
        return ExtractedStatementRecord(**data)

    def test_valid_record(self, validator, container):
        statement_id = uuid4()
        result = validator.validate(self._record(), 0, container, statement_id)

        assert result.is_valid
        assert result.issues == []
        assert result.transaction_input.account_id == container.id
        assert result.transaction_input.statement_id == statement_id
        assert result.transaction_input.amount == Decimal("42.10")

    @pytest.mark.parametrize("field", ["date", "description", "amount", "is_expense"])
    def test_missing_field(self, validator, container, field):
        result = validator.validate(self._record(**{field: None}), 3, container)

        assert not result.schema_valid
        assert not result.is_valid
        assert result.record_index == 3
        assert result.transaction_input is None
        assert any(i.field == field and i.issue_type == "missing" for i in result.issues)

    def test_non_positive_amount(self, validator, container):
        result = validator.validate(self._record(amount=Decimal("0")), 0, container)
        assert not result.schema_valid

    def test_description_too_long(self, validator, container):
        result = validator.validate(self._record(description="x" * 300), 0, container)
        assert not result.schema_valid

    def test_future_date_is_an_error(self, validator, container):
        result = validator.validate(
            self._record(date=date.today() + timedelta(days=30)), 0, container
        )
        assert result.schema_valid
        assert not result.semantic_valid
        assert any(i.issue_type == "future_date" for i in result.issues)

    def test_small_future_tolerance(self, validator, container):
        result = validator.validate(
            self._record(date=date.today() + timedelta(days=2)), 0, container
        )
        assert result.is_valid

    def test_old_date_is_a_warning(self, validator, container):
        result = validator.validate(
            self._record(date=date.today() - timedelta(days=800)), 0, container
        )
        assert result.is_valid
        assert len(result.warnings) == 1

    def test_absurd_amount(self, validator, container):
        result = validator.validate(self._record(amount=Decimal("20000000")), 0, container)
        assert not result.is_valid
        assert any(i.issue_type == "suspicious_value" for i in result.issues)

    def test_too_many_decimals_rejected(self, validator, container):
        """Extracted amounts still have to be valid money."""
        result = validator.validate(self._record(amount=Decimal("10.005")), 0, container)
        assert not result.is_valid
        assert result.transaction_input is None
