"""
Audit Logger

Every balance change, container lifecycle event and statement job
transition is logged. The audit trail is what lets us explain a
balance after the fact.

The audit logger:
- Writes a structured JSON line locally for every event
- Persists to audit storage when one is configured
- Never raises: a failed audit write must not undo a committed
  ledger change
- Supports correlation IDs to trace one statement's processing
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finledger.models.ledger import ContainerRef, StatementStatus
from finledger.services.storage.interface import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if debug else logging.INFO,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), if configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: UUID,
        ref: ContainerRef,
        amount: Decimal,
        is_expense: bool,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_created(
            user_id=user_id,
            transaction_id=transaction_id,
            container=str(ref),
            amount=str(amount),
            is_expense=is_expense,
            new_balance=str(new_balance),
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        balances: dict[ContainerRef, Decimal],
    ) -> None:
        """Log an update along with every container balance it touched."""
        await self.log(AuditEventBuilder.transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=changed_fields,
            balances={str(ref): str(value) for ref, value in balances.items()},
        ))

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: UUID,
        ref: ContainerRef,
        new_balance: Decimal,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            container=str(ref),
            new_balance=str(new_balance),
        ))

    async def log_balance_anomaly(
        self,
        user_id: Optional[str],
        ref: ContainerRef,
        reason: str,
        details: Optional[dict] = None,
    ) -> None:
        """Log a balance that could not be applied or does not reconcile."""
        await self.log(AuditEventBuilder.balance_anomaly(
            user_id=user_id,
            container=str(ref),
            reason=reason,
            details=details,
        ))

    async def log_container_created(
        self,
        user_id: str,
        ref: ContainerRef,
        name: str,
    ) -> None:
        await self.log(AuditEventBuilder.container_created(
            user_id=user_id,
            container_id=ref.id,
            kind=ref.kind.value,
            name=name,
        ))

    async def log_container_deleted(self, user_id: str, ref: ContainerRef) -> None:
        await self.log(AuditEventBuilder.container_deleted(
            user_id=user_id,
            container_id=ref.id,
            kind=ref.kind.value,
        ))

    async def log_category_created(
        self,
        user_id: str,
        category_id: UUID,
        name: str,
        category_type: str,
    ) -> None:
        await self.log(AuditEventBuilder.category_created(
            user_id=user_id,
            category_id=category_id,
            name=name,
            category_type=category_type,
        ))

    async def log_category_deleted(self, user_id: str, category_id: UUID) -> None:
        await self.log(AuditEventBuilder.category_deleted(
            user_id=user_id,
            category_id=category_id,
        ))

    async def log_statement_uploaded(
        self,
        user_id: str,
        statement_id: UUID,
        file_name: str,
        ref: ContainerRef,
    ) -> None:
        await self.log(AuditEventBuilder.statement_uploaded(
            user_id=user_id,
            statement_id=statement_id,
            file_name=file_name,
            container=str(ref),
        ))

    async def log_statement_status_changed(
        self,
        user_id: str,
        statement_id: UUID,
        from_status: StatementStatus,
        to_status: StatementStatus,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.statement_status_changed(
            user_id=user_id,
            statement_id=statement_id,
            from_status=from_status.value,
            to_status=to_status.value,
            details=details,
            error_message=error_message,
        ))

    async def log_statement_record_failed(
        self,
        user_id: str,
        statement_id: UUID,
        record_index: int,
        reason: str,
        issues: Optional[list[dict]] = None,
    ) -> None:
        await self.log(AuditEventBuilder.statement_record_failed(
            user_id=user_id,
            statement_id=statement_id,
            record_index=record_index,
            reason=reason,
            issues=issues,
        ))

    async def log_transactions_categorized(
        self,
        user_id: str,
        statement_id: UUID,
        categorized: int,
        considered: int,
    ) -> None:
        await self.log(AuditEventBuilder.transactions_categorized(
            user_id=user_id,
            statement_id=statement_id,
            categorized=categorized,
            considered=considered,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Statement processing uses the statement id itself.
    """
    return uuid4()
