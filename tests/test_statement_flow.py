"""
Integration tests for statement ingestion.

OCR and the LLM agents are mocks; storage and the ledger engine are real.
"""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio

from conftest import OTHER_USER, USER
from finledger.agents import AgentError, CategoryPrediction
from finledger.config import Settings
from finledger.ledger.errors import (
    InvalidReferenceError,
    NotFoundError,
    StatementStateError,
    ValidationError,
)
from finledger.models.audit import AuditEventType
from finledger.models.ledger import ExtractedStatementRecord, StatementStatus
from finledger.orchestrator import (
    StatementIngestionFlow,
    StatementWorker,
    create_app_components,
)
from finledger.services.ocr import ExtractionFailedError

RECENT = date.today() - timedelta(days=5)


def record(amount, description="CARD PURCHASE", is_expense=True, when=RECENT):
    return ExtractedStatementRecord(
        date=when,
        description=description,
        amount=Decimal(amount) if amount is not None else None,
        is_expense=is_expense,
    )


@pytest.fixture
def ocr_service():
    service = MagicMock()
    service.extract_text = AsyncMock(return_value="01/03 COFFEE 4.50\n02/03 SALARY 2000.00")
    return service


@pytest.fixture
def parsing_agent():
    agent = MagicMock()
    agent.parse_records = AsyncMock(return_value=[
        record("4.50", "COFFEE"),
        record("2000.00", "SALARY", is_expense=False),
    ])
    return agent


@pytest.fixture
def categorization_agent():
    agent = MagicMock()
    agent.predict_category = AsyncMock(return_value=None)
    return agent


@pytest.fixture
def flow(store, engine, audit_logger, app_settings, ocr_service, parsing_agent,
         categorization_agent):
    return StatementIngestionFlow(
        store=store,
        engine=engine,
        ocr_service=ocr_service,
        parsing_agent=parsing_agent,
        categorization_agent=categorization_agent,
        audit_logger=audit_logger,
        app_settings=app_settings,
    )


@pytest_asyncio.fixture
async def statement(flow, account, tmp_path):
    path = tmp_path / "march.pdf"
    path.write_bytes(b"%PDF-1.4")
    return await flow.upload_statement(
        USER, "march.pdf", str(path), path.stat().st_size, account_id=account.id
    )


class TestUpload:

    @pytest.mark.asyncio
    async def test_upload_creates_pending_statement(self, flow, statement):
        stored = await flow.get_statement(USER, statement.id)

        assert stored.processing_status == StatementStatus.PENDING
        assert stored.file_type == "pdf"
        assert [s.id for s in await flow.list_statements(USER)] == [statement.id]

    @pytest.mark.asyncio
    async def test_unsupported_format(self, flow, account):
        with pytest.raises(ValidationError, match="Unsupported statement format"):
            await flow.upload_statement(USER, "march.xlsx", "/tmp/march.xlsx", 100,
                                        account_id=account.id)

    @pytest.mark.asyncio
    async def test_too_large(self, flow, account, app_settings):
        with pytest.raises(ValidationError):
            await flow.upload_statement(
                USER, "big.pdf", "/tmp/big.pdf", app_settings.max_upload_size_bytes + 1,
                account_id=account.id,
            )

    @pytest.mark.asyncio
    async def test_needs_exactly_one_container(self, flow, account, card):
        with pytest.raises(InvalidReferenceError):
            await flow.upload_statement(USER, "a.pdf", "/tmp/a.pdf", 10,
                                        account_id=account.id, credit_card_id=card.id)
        with pytest.raises(InvalidReferenceError):
            await flow.upload_statement(USER, "a.pdf", "/tmp/a.pdf", 10)

    @pytest.mark.asyncio
    async def test_foreign_container(self, flow, card):
        with pytest.raises(NotFoundError):
            await flow.upload_statement(OTHER_USER, "a.pdf", "/tmp/a.pdf", 10,
                                        credit_card_id=card.id)

    @pytest.mark.asyncio
    async def test_other_user_cannot_read(self, flow, statement):
        with pytest.raises(NotFoundError):
            await flow.get_statement(OTHER_USER, statement.id)


class TestProcessing:

    @pytest.mark.asyncio
    async def test_happy_path(self, flow, engine, containers, account, statement):
        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.COMPLETED
        assert result.transactions_created == 2
        assert result.transactions_failed == 0
        assert result.processed_at is not None

        created = await engine.list_transactions(USER, {"statement_id": statement.id})
        assert len(created) == 2
        assert (await containers.get_account(USER, account.id)).balance == Decimal("2495.50")

    @pytest.mark.asyncio
    async def test_partial_failure_still_completes(
        self, flow, parsing_agent, engine, statement, audit_storage
    ):
        """Two good records and one without an amount."""
        parsing_agent.parse_records.return_value = [
            record("10.00"),
            record(None),
            record("5.00", when=RECENT - timedelta(days=1)),
        ]

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.COMPLETED
        assert result.transactions_created == 2
        assert result.transactions_failed == 1
        events = await audit_storage.get_events_by_correlation_id(statement.id)
        failed = [e for e in events if e.event_type == AuditEventType.STATEMENT_RECORD_FAILED]
        assert failed[0].details["record_index"] == 1

    @pytest.mark.asyncio
    async def test_unexpected_record_error_fails_only_that_record(
        self, flow, parsing_agent, engine, containers, account, statement, audit_storage,
        monkeypatch,
    ):
        parsing_agent.parse_records.return_value = [
            record("10.00", "FIRST"),
            record("20.00", "SECOND"),
            record("5.00", "THIRD"),
        ]
        create = engine.create_transaction
        calls = []

        async def flaky_create(user_id, data, **kwargs):
            calls.append(data)
            if len(calls) == 2:
                raise RuntimeError("disk hiccup")
            return await create(user_id, data, **kwargs)

        monkeypatch.setattr(engine, "create_transaction", flaky_create)

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.COMPLETED
        assert result.transactions_created == 2
        assert result.transactions_failed == 1
        assert (await containers.get_account(USER, account.id)).balance == Decimal("485.00")
        events = await audit_storage.get_events_by_correlation_id(statement.id)
        failed = [e for e in events if e.event_type == AuditEventType.STATEMENT_RECORD_FAILED]
        assert failed[0].details["record_index"] == 1
        assert "RuntimeError" in failed[0].error_message

    @pytest.mark.asyncio
    async def test_future_dated_record_skipped(self, flow, parsing_agent, statement):
        parsing_agent.parse_records.return_value = [
            record("10.00", when=date.today() + timedelta(days=60)),
            record("5.00"),
        ]

        result = await flow.process_statement(statement.id)

        assert result.transactions_created == 1
        assert result.transactions_failed == 1

    @pytest.mark.asyncio
    async def test_ocr_failure(self, flow, ocr_service, engine, statement, audit_storage):
        ocr_service.extract_text.side_effect = ExtractionFailedError("Mindee is down")

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        assert result.error_message == "Mindee is down"
        assert await engine.list_transactions(USER) == []
        events = await audit_storage.get_events_by_correlation_id(statement.id)
        assert any(e.event_type == AuditEventType.EXTERNAL_SERVICE_ERROR for e in events)

    @pytest.mark.asyncio
    async def test_llm_failure(self, flow, parsing_agent, statement):
        parsing_agent.parse_records.side_effect = AgentError("Model returned invalid JSON")

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        assert "invalid JSON" in result.error_message

    @pytest.mark.asyncio
    async def test_no_records(self, flow, parsing_agent, statement):
        parsing_agent.parse_records.return_value = []

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        assert result.error_message == "No transactions found in the statement"

    @pytest.mark.asyncio
    async def test_empty_text(self, flow, ocr_service, parsing_agent, statement):
        ocr_service.extract_text.return_value = "   "

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        parsing_agent.parse_records.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_job(self, flow, parsing_agent, statement):
        parsing_agent.parse_records.side_effect = KeyError("boom")

        result = await flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        assert result.error_message.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_not_configured(self, store, engine, audit_logger, app_settings, statement):
        bare_flow = StatementIngestionFlow(
            store=store, engine=engine, audit_logger=audit_logger, app_settings=app_settings
        )

        result = await bare_flow.process_statement(statement.id)

        assert result.processing_status == StatementStatus.FAILED
        assert "not configured" in result.error_message

    @pytest.mark.asyncio
    async def test_cannot_process_twice(self, flow, statement):
        await flow.process_statement(statement.id)

        with pytest.raises(StatementStateError):
            await flow.process_statement(statement.id)

    @pytest.mark.asyncio
    async def test_unknown_statement(self, flow):
        with pytest.raises(NotFoundError):
            await flow.process_statement(uuid4())

    @pytest.mark.asyncio
    async def test_status_trail(self, flow, statement, audit_storage):
        await flow.process_statement(statement.id)

        events = await audit_storage.get_events_by_correlation_id(statement.id)
        transitions = [
            (e.details["from"], e.details["to"])
            for e in events
            if e.event_type == AuditEventType.STATEMENT_STATUS_CHANGED
        ]
        assert transitions == [("PENDING", "PROCESSING"), ("PROCESSING", "COMPLETED")]


class TestAutoCategorize:

    @pytest.mark.asyncio
    async def test_confident_predictions_applied(
        self, flow, categorization_agent, engine, categories, statement, groceries
    ):
        salary = await categories.create_category(USER, {"name": "Salary", "type": "INCOME"})

        async def predict(transaction, offered):
            if transaction.is_expense:
                return CategoryPrediction(category_id=groceries.id, confidence=0.9)
            # Exactly at the threshold is not enough
            return CategoryPrediction(category_id=salary.id, confidence=0.7)

        categorization_agent.predict_category.side_effect = predict

        await flow.process_statement(statement.id)

        transactions = await engine.list_transactions(USER, {"statement_id": statement.id})
        by_description = {t.description: t.category_id for t in transactions}
        assert by_description == {"COFFEE": groceries.id, "SALARY": None}

    @pytest.mark.asyncio
    async def test_skipped_without_categories(self, flow, categorization_agent, statement):
        await flow.process_statement(statement.id)
        categorization_agent.predict_category.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_category_ignored(
        self, flow, categorization_agent, categories, engine, statement, groceries
    ):
        foreign = await categories.create_category(OTHER_USER, {"name": "X", "type": "EXPENSE"})
        categorization_agent.predict_category.return_value = CategoryPrediction(
            category_id=foreign.id, confidence=0.99
        )

        await flow.process_statement(statement.id)

        assert all(t.category_id is None for t in await engine.list_transactions(USER))

    @pytest.mark.asyncio
    async def test_not_run_on_failure(self, flow, parsing_agent, categorization_agent,
                                      statement, groceries):
        parsing_agent.parse_records.return_value = []

        await flow.process_statement(statement.id)

        categorization_agent.predict_category.assert_not_awaited()


class TestWorker:

    @pytest.mark.asyncio
    async def test_processes_queue(self, flow, statement, ocr_service, account, tmp_path):
        path = tmp_path / "april.pdf"
        path.write_bytes(b"%PDF-1.4")
        second = await flow.upload_statement(USER, "april.pdf", str(path), 8,
                                             account_id=account.id)
        ocr_service.extract_text.side_effect = [
            "01/03 COFFEE 4.50",
            ExtractionFailedError("unreadable"),
        ]

        worker = StatementWorker(flow)
        worker.start()
        await worker.submit(statement.id)
        await worker.submit(second.id)
        await worker.join()
        await worker.stop()

        assert worker.processed == 2
        assert worker.failures == 1
        assert not worker.is_running
        assert (await flow.get_statement(USER, statement.id)).processing_status == StatementStatus.COMPLETED
        assert (await flow.get_statement(USER, second.id)).processing_status == StatementStatus.FAILED

    @pytest.mark.asyncio
    async def test_submit_requires_start(self, flow):
        worker = StatementWorker(flow)
        with pytest.raises(RuntimeError):
            await worker.submit(uuid4())

    @pytest.mark.asyncio
    async def test_job_error_does_not_stop_worker(self, flow, statement):
        worker = StatementWorker(flow)
        worker.start()

        await worker.submit(uuid4())
        await worker.submit(statement.id)
        await worker.join()
        await worker.stop()

        assert worker.failures == 1
        assert worker.processed == 1


class TestLedgerApp:

    @pytest.mark.asyncio
    async def test_end_to_end(self, tmp_path, ocr_service, parsing_agent, categorization_agent):
        app = create_app_components(
            settings=Settings(),
            db_path=str(tmp_path / "app.db"),
            ocr_service=ocr_service,
            parsing_agent=parsing_agent,
            categorization_agent=categorization_agent,
        )
        path = tmp_path / "statement.png"
        path.write_bytes(b"\x89PNG")

        async with app:
            card = await app.containers.create_credit_card(
                USER, {"name": "Visa", "bank": "B", "credit_limit": "5000"}
            )
            statement = await app.ingest_statement(
                USER, "statement.png", str(path), 4, credit_card_id=card.id
            )
            await app.worker.join()

            processed = await app.statements.get_statement(USER, statement.id)
            stored_card = await app.containers.get_credit_card(USER, card.id)

        assert processed.processing_status == StatementStatus.COMPLETED
        # 4.50 charged, 2000.00 paid
        assert stored_card.current_balance == Decimal("-1995.50")
        assert not app.store.is_open

    @pytest.mark.parametrize("db_path", [":memory:", " "])
    def test_in_memory_database_rejected(self, db_path, ocr_service, parsing_agent,
                                         categorization_agent):
        with pytest.raises(ValueError, match="must point to a file"):
            create_app_components(
                settings=Settings(),
                db_path=db_path,
                ocr_service=ocr_service,
                parsing_agent=parsing_agent,
                categorization_agent=categorization_agent,
            )
