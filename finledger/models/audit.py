"""
Audit Models for finledger

Every balance-affecting action in the system is logged for audit purposes.
This provides:
1. Complete traceability of every balance change
2. Debugging information when a balance drifts
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCE_ANOMALY = "balance_anomaly"

    # Containers and categories
    CONTAINER_CREATED = "container_created"
    CONTAINER_DELETED = "container_deleted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_DELETED = "category_deleted"

    # Statement ingestion
    STATEMENT_UPLOADED = "statement_uploaded"
    STATEMENT_STATUS_CHANGED = "statement_status_changed"
    STATEMENT_RECORD_FAILED = "statement_record_failed"
    TRANSACTIONS_CATEGORIZED = "transactions_categorized"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Whose data and which entity
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the affected data"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'statement')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one statement)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx, "account:...", "400.00")
        event = AuditEventBuilder.statement_status_changed(statement_id, ...)
    """

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: UUID,
        container: str,
        amount: str,
        is_expense: bool,
        new_balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created on {container}",
            details={
                "container": container,
                "amount": amount,
                "is_expense": is_expense,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        transaction_id: UUID,
        changed_fields: list[str],
        balances: dict[str, str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
                "balances": balances,
            },
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: UUID,
        container: str,
        new_balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Transaction deleted from {container}",
            details={
                "container": container,
                "new_balance": new_balance,
            },
        )

    @staticmethod
    def balance_anomaly(
        user_id: Optional[str],
        container: str,
        reason: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ANOMALY,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="container",
            description=f"Balance anomaly on {container}: {reason}",
            details={"container": container, **(details or {})},
        )

    @staticmethod
    def container_created(
        user_id: str,
        container_id: UUID,
        kind: str,
        name: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTAINER_CREATED,
            user_id=user_id,
            entity_type=kind,
            entity_id=container_id,
            description=f"{kind.replace('_', ' ').capitalize()} created: {name}",
            details={"name": name},
        )

    @staticmethod
    def container_deleted(
        user_id: str,
        container_id: UUID,
        kind: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONTAINER_DELETED,
            user_id=user_id,
            entity_type=kind,
            entity_id=container_id,
            description=f"{kind.replace('_', ' ').capitalize()} deleted",
        )

    @staticmethod
    def category_created(
        user_id: str,
        category_id: UUID,
        name: str,
        category_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category created: {name}",
            details={"name": name, "type": category_type},
        )

    @staticmethod
    def category_deleted(
        user_id: str,
        category_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description="Category deleted",
        )

    @staticmethod
    def statement_uploaded(
        user_id: str,
        statement_id: UUID,
        file_name: str,
        container: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_UPLOADED,
            user_id=user_id,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=statement_id,
            description=f"Statement uploaded: {file_name}",
            details={"file_name": file_name, "container": container},
        )

    @staticmethod
    def statement_status_changed(
        user_id: str,
        statement_id: UUID,
        from_status: str,
        to_status: str,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_STATUS_CHANGED,
            severity=AuditSeverity.WARNING if to_status == "FAILED" else AuditSeverity.INFO,
            user_id=user_id,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=statement_id,
            description=f"Statement {from_status} -> {to_status}",
            details={"from": from_status, "to": to_status, **(details or {})},
            error_message=error_message,
        )

    @staticmethod
    def statement_record_failed(
        user_id: str,
        statement_id: UUID,
        record_index: int,
        reason: str,
        issues: Optional[list[dict]] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STATEMENT_RECORD_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=statement_id,
            description=f"Statement record {record_index} skipped",
            details={"record_index": record_index, "issues": issues or []},
            error_message=reason,
        )

    @staticmethod
    def transactions_categorized(
        user_id: str,
        statement_id: UUID,
        categorized: int,
        considered: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_CATEGORIZED,
            user_id=user_id,
            entity_type="statement",
            entity_id=statement_id,
            correlation_id=statement_id,
            description=f"Automatically categorized {categorized} of {considered} transactions",
            details={"categorized": categorized, "considered": considered},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
