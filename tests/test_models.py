"""
Tests for finledger models

Test strategy:
1. Unit tests for models and audit builders (no storage)
2. Integration tests for the ledger and ingestion flow (real SQLite)
3. No real API calls in tests (use mocks)
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from finledger.models.ledger import (
    Account,
    AccountUpdate,
    BalanceReconciliation,
    CategoryCreate,
    ContainerKind,
    ContainerRef,
    CreditCard,
    ExtractedStatementRecord,
    RecordValidationResult,
    Statement,
    StatementStatus,
    Transaction,
    TransactionPatch,
    ValidationIssue,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestContainerModels:
    """Tests for account and credit card models."""

    def test_container_ref_from_ids(self):
        account_id = uuid4()
        ref = ContainerRef.from_ids(account_id, None)

        assert ref.kind == ContainerKind.ACCOUNT
        assert ref.account_id == account_id
        assert ref.credit_card_id is None
        assert str(ref) == f"account:{account_id}"

    def test_container_ref_rejects_both_and_neither(self):
        with pytest.raises(ValueError):
            ContainerRef.from_ids(uuid4(), uuid4())
        with pytest.raises(ValueError):
            ContainerRef.from_ids(None, None)

    def test_container_ref_is_hashable(self):
        """Refs are used as dict keys when reporting touched balances."""
        card_id = uuid4()
        first = ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id)
        second = ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id)

        assert {first: 1}[second] == 1

    def test_account_strips_whitespace(self):
        account = Account(user_id="u", name="  Checking  ", bank_name="Bank")
        assert account.name == "Checking"
        assert account.balance == Decimal("0.00")

    def test_account_balance_parsed_from_string(self):
        account = Account(user_id="u", name="A", bank_name="B", balance="1,250.5")
        assert account.balance == Decimal("1250.50")

    def test_credit_card_rejects_negative_limit(self):
        with pytest.raises(ValidationError):
            CreditCard(user_id="u", name="Visa", bank="B", credit_limit="-1")

    def test_credit_card_available_credit(self):
        card = CreditCard(
            user_id="u", name="Visa", bank="B", credit_limit="1000", current_balance="250"
        )
        assert card.available_credit == Decimal("750.00")
        assert card.baseline_balance == Decimal("0.00")

    def test_account_update_forbids_balance(self):
        """The balance only moves through transactions."""
        with pytest.raises(ValidationError):
            AccountUpdate(name="New name", balance="100")

    def test_reconciliation_drift(self):
        ref = ContainerRef(kind=ContainerKind.ACCOUNT, id=uuid4())
        consistent = BalanceReconciliation(
            container_ref=ref, stored_balance="400", expected_balance="400.00",
            active_transactions=1,
        )
        drifted = BalanceReconciliation(
            container_ref=ref, stored_balance="410", expected_balance="400",
            active_transactions=1,
        )

        assert consistent.is_consistent
        assert not drifted.is_consistent
        assert drifted.drift == Decimal("10.00")


class TestTransactionModels:
    """Tests for transaction models."""

    def _transaction(self, **overrides):
        data = {
            "user_id": "u",
            "amount": "100",
            "description": "Coffee",
            "date": date(2024, 3, 1),
            "is_expense": True,
            "account_id": uuid4(),
        }
        data.update(overrides)
        return Transaction(**data)

    def test_transaction_creation(self):
        tx = self._transaction()
        assert tx.amount == Decimal("100.00")
        assert tx.container_ref.kind == ContainerKind.ACCOUNT

    def test_transaction_needs_exactly_one_container(self):
        with pytest.raises(ValidationError):
            self._transaction(credit_card_id=uuid4())
        with pytest.raises(ValidationError):
            self._transaction(account_id=None)

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "0.001"])
    def test_transaction_rejects_bad_amounts(self, amount):
        with pytest.raises(ValidationError):
            self._transaction(amount=amount)

    def test_description_length_limit(self):
        with pytest.raises(ValidationError):
            self._transaction(description="x" * 256)

    def test_patch_tracks_category_clearing(self):
        assert TransactionPatch(category_id=None).clears_category
        assert not TransactionPatch(amount="5").clears_category

    def test_patch_moves_container(self):
        assert TransactionPatch(credit_card_id=uuid4()).moves_container
        assert not TransactionPatch(description="x").moves_container


class TestStatementModels:
    """Tests for statement job models."""

    def test_status_transitions(self):
        assert StatementStatus.PENDING.can_transition_to(StatementStatus.PROCESSING)
        assert StatementStatus.PROCESSING.can_transition_to(StatementStatus.COMPLETED)
        assert StatementStatus.PROCESSING.can_transition_to(StatementStatus.FAILED)
        assert not StatementStatus.PENDING.can_transition_to(StatementStatus.COMPLETED)
        assert not StatementStatus.COMPLETED.can_transition_to(StatementStatus.PROCESSING)
        assert not StatementStatus.FAILED.can_transition_to(StatementStatus.PROCESSING)

    def test_terminal_states(self):
        assert StatementStatus.COMPLETED.is_terminal
        assert StatementStatus.FAILED.is_terminal
        assert not StatementStatus.PENDING.is_terminal

    def test_statement_defaults(self):
        statement = Statement(
            user_id="u",
            credit_card_id=uuid4(),
            file_name="march.pdf",
            file_path="/tmp/march.pdf",
            file_type="pdf",
        )
        assert statement.processing_status == StatementStatus.PENDING
        assert statement.transactions_created == 0
        assert statement.container_ref.kind == ContainerKind.CREDIT_CARD

    def test_extracted_record_all_optional(self):
        record = ExtractedStatementRecord()
        assert record.amount is None
        assert record.raw == {}

    def test_record_validation_result_counts(self):
        result = RecordValidationResult(
            record_index=0,
            schema_valid=True,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(field="date", issue_type="future_date", message="future"),
                ValidationIssue(
                    field="date", issue_type="suspicious_date", message="old", severity="warning"
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert result.warnings == ["old"]

    def test_category_type_required(self):
        with pytest.raises(ValidationError):
            CategoryCreate(name="Food", type="SAVINGS")


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Transaction created",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        entity_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            entity_type="category",
            entity_id=entity_id,
            description="Category deleted",
        )
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "category_deleted"
        assert log_dict["entity_id"] == str(entity_id)
        assert log_dict["correlation_id"] is None
        assert isinstance(log_dict["timestamp"], str)

    def test_builder_transaction_created(self):
        tx_id = uuid4()
        event = AuditEventBuilder.transaction_created(
            user_id="u",
            transaction_id=tx_id,
            container="account:1",
            amount="100.00",
            is_expense=True,
            new_balance="400.00",
        )
        assert event.event_type == AuditEventType.TRANSACTION_CREATED
        assert event.entity_id == tx_id
        assert event.details["new_balance"] == "400.00"

    def test_builder_balance_anomaly_is_error(self):
        event = AuditEventBuilder.balance_anomaly(
            user_id="u", container="account:1", reason="missing", details={"operation": "create"}
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.details == {"container": "account:1", "operation": "create"}

    def test_builder_failed_statement_is_warning(self):
        statement_id = uuid4()
        event = AuditEventBuilder.statement_status_changed(
            user_id="u",
            statement_id=statement_id,
            from_status="PROCESSING",
            to_status="FAILED",
            error_message="No text",
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.correlation_id == statement_id
        assert event.error_message == "No text"
