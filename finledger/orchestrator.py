"""
Main Orchestrator for finledger

This module ties together all the components and defines the
end-to-end statement ingestion flow:

    upload → PENDING
    worker picks it up → PROCESSING
    OCR → LLM parsing → validate each record → create transactions
    → COMPLETED (with counts) → auto-categorize
    any failure on the way → FAILED (with the error message)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every transaction goes through the ledger engine, never straight to storage
- One bad record never aborts the batch
- Job state is persisted; nothing is fire-and-forget
- Every step is audited

LedgerApp owns the storage lifecycle. Nothing opens the database
at import time.
"""

import asyncio
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

import pydantic
import structlog

from finledger.agents import AgentError, CategorizationAgent, StatementParsingAgent
from finledger.audit import AuditLogger, configure_logging
from finledger.config import AppSettings, Settings, get_settings
from finledger.ledger.categories import CategoryService
from finledger.ledger.containers import ContainerService
from finledger.ledger.engine import LedgerEngine, require_container
from finledger.ledger.errors import (
    LedgerError,
    NotFoundError,
    StatementStateError,
    ValidationError,
)
from finledger.models.ledger import (
    Statement,
    StatementStatus,
    Transaction,
    utc_now,
)
from finledger.services.ocr import MindeeStatementOCR, OCRError, StatementTextExtractor
from finledger.services.storage import (
    LedgerStore,
    SQLiteAuditStorage,
    SQLiteLedgerStore,
    StorageError,
)
from finledger.validation import StatementRecordValidator, resolve_container

logger = structlog.get_logger(__name__)


class StatementIngestionFlow:
    """
    Orchestrates statement upload and processing.

    Flow:
    1. Upload → validate file and container, persist PENDING statement
    2. Process → PROCESSING, OCR, parse, validate, create transactions
    3. Complete → COMPLETED with created/failed counts
    4. Categorize → apply confident predictions to new transactions
    """

    def __init__(
        self,
        store: LedgerStore,
        engine: LedgerEngine,
        ocr_service: Optional[StatementTextExtractor] = None,
        parsing_agent: Optional[StatementParsingAgent] = None,
        categorization_agent: Optional[CategorizationAgent] = None,
        validator: Optional[StatementRecordValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._store = store
        self._engine = engine
        self._ocr_service = ocr_service
        self._parsing_agent = parsing_agent
        self._categorization_agent = categorization_agent
        self._settings = app_settings or get_settings().app
        self._validator = validator or StatementRecordValidator(self._settings)
        self._audit_logger = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Upload and reads
    # -------------------------------------------------------------------------

    async def upload_statement(
        self,
        user_id: str,
        file_name: str,
        file_path: str,
        file_size: int,
        account_id: Optional[UUID] = None,
        credit_card_id: Optional[UUID] = None,
    ) -> Statement:
        """
        Register an uploaded statement file for processing.

        The file itself must already be stored at file_path.

        Returns:
            The PENDING statement

        Raises:
            InvalidReferenceError: Not exactly one container
            ValidationError: Unsupported file type or file too large
            NotFoundError: Container absent or not owned
        """
        ref = resolve_container(account_id, credit_card_id)

        file_type = Path(file_name).suffix.lower().lstrip(".")
        if file_type not in self._settings.supported_formats_list:
            raise ValidationError.for_field(
                "file_type",
                "unsupported_format",
                f"Unsupported statement format '{file_type or file_name}'. "
                f"Supported: {', '.join(self._settings.supported_formats_list)}",
            )
        if file_size <= 0:
            raise ValidationError.for_field("file_size", "empty", "Statement file is empty")
        if file_size > self._settings.max_upload_size_bytes:
            raise ValidationError.for_field(
                "file_size",
                "too_large",
                f"Statement file exceeds {self._settings.max_upload_size_mb} MB",
            )

        try:
            statement = Statement(
                user_id=user_id,
                account_id=ref.account_id,
                credit_card_id=ref.credit_card_id,
                file_name=file_name,
                file_path=file_path,
                file_type=file_type,
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid statement: {e}") from e

        async with self._store.session() as session:
            await require_container(session, user_id, ref)
            await session.insert_statement(statement)

        await self._audit_logger.log_statement_uploaded(
            user_id=user_id,
            statement_id=statement.id,
            file_name=file_name,
            ref=ref,
        )
        return statement

    async def get_statement(self, user_id: str, statement_id: UUID) -> Statement:
        async with self._store.session(readonly=True) as session:
            statement = await session.get_statement(statement_id, user_id)
        if statement is None:
            raise NotFoundError("statement")
        return statement

    async def list_statements(self, user_id: str) -> list[Statement]:
        async with self._store.session(readonly=True) as session:
            return await session.list_statements(user_id)

    # -------------------------------------------------------------------------
    # Job state
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        statement_id: UUID,
        target: StatementStatus,
        **updates: Any,
    ) -> Statement:
        """
        Move a statement job to a new state.

        The current state is re-read inside the unit of work, so two
        workers can never both move the same job out of PENDING.

        Raises:
            NotFoundError: No such statement
            StatementStateError: The transition is not allowed
        """
        async with self._store.session() as session:
            current = await session.get_statement(statement_id)
            if current is None:
                raise NotFoundError("statement")
            if not current.processing_status.can_transition_to(target):
                raise StatementStateError(
                    f"Statement {statement_id} cannot move from "
                    f"{current.processing_status.value} to {target.value}"
                )
            updated = current.model_copy(update={"processing_status": target, **updates})
            await session.update_statement(updated)

        await self._audit_logger.log_statement_status_changed(
            user_id=updated.user_id,
            statement_id=statement_id,
            from_status=current.processing_status,
            to_status=target,
            details={
                "transactions_created": updated.transactions_created,
                "transactions_failed": updated.transactions_failed,
            },
            error_message=updated.error_message,
        )
        return updated

    async def _fail(self, statement_id: UUID, message: str) -> Statement:
        logger.warning("statement_failed", statement_id=str(statement_id), reason=message)
        return await self._transition(
            statement_id,
            StatementStatus.FAILED,
            error_message=message[:1000],
            processed_at=utc_now(),
        )

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def process_statement(self, statement_id: UUID) -> Statement:
        """
        Process a PENDING statement end to end.

        Returns:
            The statement in its final state (COMPLETED or FAILED)

        Raises:
            NotFoundError: No such statement
            StatementStateError: The statement is not PENDING
        """
        statement = await self._transition(statement_id, StatementStatus.PROCESSING)

        try:
            completed, created = await self._extract_and_create(statement)
        except (OCRError, AgentError) as e:
            await self._audit_logger.log_external_service_error(
                service="ocr" if isinstance(e, OCRError) else "llm",
                error_message=str(e),
                correlation_id=statement_id,
            )
            return await self._fail(statement_id, str(e))
        except Exception as e:
            logger.exception("statement_processing_error", statement_id=str(statement_id))
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                correlation_id=statement_id,
            )
            return await self._fail(statement_id, f"{type(e).__name__}: {e}")

        if completed.processing_status == StatementStatus.COMPLETED:
            await self._auto_categorize(completed, created)
        return completed

    async def _extract_and_create(
        self,
        statement: Statement,
    ) -> tuple[Statement, list[Transaction]]:
        if self._ocr_service is None or self._parsing_agent is None:
            return await self._fail(statement.id, "Statement processing is not configured"), []

        text = await self._ocr_service.extract_text(statement.file_path)
        if not text or not text.strip():
            return await self._fail(statement.id, "No text could be extracted from the statement"), []

        records = await self._parsing_agent.parse_records(text)
        if not records:
            return await self._fail(statement.id, "No transactions found in the statement"), []

        created, failed = await self._create_transactions(statement, records)

        completed = await self._transition(
            statement.id,
            StatementStatus.COMPLETED,
            transactions_created=len(created),
            transactions_failed=failed,
            processed_at=utc_now(),
        )
        logger.info(
            "statement_processed",
            statement_id=str(statement.id),
            created=len(created),
            failed=failed,
        )
        return completed, created

    async def _create_transactions(
        self,
        statement: Statement,
        records: list,
    ) -> tuple[list[Transaction], int]:
        """Create one transaction per valid record. Returns (created, failed_count)."""
        ref = statement.container_ref
        created: list[Transaction] = []
        failed = 0

        for index, record in enumerate(records):
            result = self._validator.validate(record, index, ref, statement.id)
            if not result.is_valid:
                failed += 1
                await self._audit_logger.log_statement_record_failed(
                    user_id=statement.user_id,
                    statement_id=statement.id,
                    record_index=index,
                    reason="Record failed validation",
                    issues=[issue.model_dump() for issue in result.issues],
                )
                continue

            try:
                transaction = await self._engine.create_transaction(
                    statement.user_id,
                    result.transaction_input,
                    correlation_id=statement.id,
                )
            except (LedgerError, StorageError) as e:
                failed += 1
                await self._audit_logger.log_statement_record_failed(
                    user_id=statement.user_id,
                    statement_id=statement.id,
                    record_index=index,
                    reason=str(e),
                )
                continue
            except Exception as e:
                logger.exception(
                    "statement_record_error",
                    statement_id=str(statement.id),
                    record_index=index,
                )
                failed += 1
                await self._audit_logger.log_statement_record_failed(
                    user_id=statement.user_id,
                    statement_id=statement.id,
                    record_index=index,
                    reason=f"{type(e).__name__}: {e}",
                )
                continue

            created.append(transaction)

        return created, failed

    async def _auto_categorize(
        self,
        statement: Statement,
        transactions: list[Transaction],
    ) -> int:
        """
        Apply confident category predictions to uncategorized transactions.

        Only predictions strictly above the configured confidence and
        naming one of the user's own categories are applied.
        """
        uncategorized = [t for t in transactions if t.category_id is None]
        if not uncategorized or self._categorization_agent is None:
            return 0

        try:
            async with self._store.session(readonly=True) as session:
                categories = await session.list_categories(statement.user_id)
        except StorageError as e:
            logger.error("auto_categorize_failed", statement_id=str(statement.id), error=str(e))
            return 0
        if not categories:
            return 0

        owned = {category.id for category in categories}
        threshold = self._settings.auto_categorize_min_confidence
        categorized = 0

        for transaction in uncategorized:
            prediction = await self._categorization_agent.predict_category(transaction, categories)
            if (
                prediction is None
                or prediction.confidence <= threshold
                or prediction.category_id not in owned
            ):
                continue
            try:
                await self._engine.set_category(
                    statement.user_id, transaction.id, prediction.category_id
                )
            except (LedgerError, StorageError) as e:
                logger.warning(
                    "auto_categorize_skipped",
                    transaction_id=str(transaction.id),
                    error=str(e),
                )
                continue
            categorized += 1

        await self._audit_logger.log_transactions_categorized(
            user_id=statement.user_id,
            statement_id=statement.id,
            categorized=categorized,
            considered=len(uncategorized),
        )
        return categorized


class StatementWorker:
    """
    Background worker that processes statements one at a time.

    Usage:
        worker = StatementWorker(flow)
        worker.start()
        await worker.submit(statement.id)
        await worker.join()    # wait for the queue to drain
        await worker.stop()
    """

    def __init__(self, flow: StatementIngestionFlow):
        self._flow = flow
        self._queue: asyncio.Queue[Optional[UUID]] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.processed = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="statement-worker")
        logger.info("statement_worker_started")

    async def submit(self, statement_id: UUID) -> None:
        if not self.is_running:
            raise RuntimeError("Statement worker is not running")
        await self._queue.put(statement_id)

    async def join(self) -> None:
        """Wait until every submitted statement has been handled."""
        await self._queue.join()

    async def stop(self) -> None:
        """Finish queued jobs, then stop."""
        if self._task is None:
            return
        if not self._task.done():
            await self._queue.put(None)
        await self._task
        self._task = None
        logger.info("statement_worker_stopped", processed=self.processed, failures=self.failures)

    async def _run(self) -> None:
        while True:
            statement_id = await self._queue.get()
            try:
                if statement_id is None:
                    return
                statement = await self._flow.process_statement(statement_id)
                self.processed += 1
                if statement.processing_status == StatementStatus.FAILED:
                    self.failures += 1
            except Exception:
                self.failures += 1
                logger.exception("statement_job_failed", statement_id=str(statement_id))
            finally:
                self._queue.task_done()


class LedgerApp:
    """
    All components with an explicit storage lifecycle.

    Usage:
        async with create_app_components() as app:
            account = await app.containers.create_account(user_id, {...})
            await app.engine.create_transaction(user_id, {...})
    """

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: AuditLogger,
        engine: LedgerEngine,
        containers: ContainerService,
        categories: CategoryService,
        statements: StatementIngestionFlow,
        worker: StatementWorker,
    ):
        self.store = store
        self.audit_logger = audit_logger
        self.engine = engine
        self.containers = containers
        self.categories = categories
        self.statements = statements
        self.worker = worker

    async def open(self) -> None:
        await self.store.open()
        self.worker.start()

    async def close(self) -> None:
        try:
            await self.worker.stop()
        finally:
            await self.store.close()

    async def __aenter__(self) -> "LedgerApp":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def ingest_statement(
        self,
        user_id: str,
        file_name: str,
        file_path: str,
        file_size: int,
        account_id: Optional[UUID] = None,
        credit_card_id: Optional[UUID] = None,
    ) -> Statement:
        """Upload a statement and queue it for background processing."""
        statement = await self.statements.upload_statement(
            user_id,
            file_name,
            file_path,
            file_size,
            account_id=account_id,
            credit_card_id=credit_card_id,
        )
        await self.worker.submit(statement.id)
        return statement


def create_app_components(
    settings: Optional[Settings] = None,
    db_path: Optional[str] = None,
    ocr_service: Optional[StatementTextExtractor] = None,
    parsing_agent: Optional[StatementParsingAgent] = None,
    categorization_agent: Optional[CategorizationAgent] = None,
) -> LedgerApp:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        db_path: Overrides the configured database path
        ocr_service: OCR implementation; Mindee when not given
        parsing_agent / categorization_agent: Gemini agents when not given

    Missing OCR or LLM credentials do not stop the ledger from working:
    statements then fail with a clear message and auto-categorization
    is skipped.

    Returns:
        An unopened LedgerApp
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.debug_mode)

    database = settings.database
    store = SQLiteLedgerStore(db_path or database.db_path, database.busy_timeout_ms)
    audit_logger = AuditLogger(SQLiteAuditStorage(store))

    if ocr_service is None:
        try:
            ocr_service = MindeeStatementOCR(settings.mindee)
        except pydantic.ValidationError as e:
            logger.warning("ocr_not_configured", error=str(e))
    if parsing_agent is None or categorization_agent is None:
        try:
            gemini = settings.gemini
            parsing_agent = parsing_agent or StatementParsingAgent(gemini)
            categorization_agent = categorization_agent or CategorizationAgent(gemini)
        except pydantic.ValidationError as e:
            logger.warning("llm_not_configured", error=str(e))

    engine = LedgerEngine(store, audit_logger)
    flow = StatementIngestionFlow(
        store=store,
        engine=engine,
        ocr_service=ocr_service,
        parsing_agent=parsing_agent,
        categorization_agent=categorization_agent,
        audit_logger=audit_logger,
        app_settings=app_settings,
    )

    return LedgerApp(
        store=store,
        audit_logger=audit_logger,
        engine=engine,
        containers=ContainerService(store, audit_logger),
        categories=CategoryService(store, audit_logger),
        statements=flow,
        worker=StatementWorker(flow),
    )
