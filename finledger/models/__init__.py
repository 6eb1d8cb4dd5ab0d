"""
Data Models Package

This package contains all Pydantic models used in finledger.
All data flowing through the system must conform to these schemas.
"""

from finledger.models.ledger import (
    Account,
    AccountCreate,
    AccountUpdate,
    BalanceReconciliation,
    Category,
    CategoryCreate,
    CategoryType,
    CategoryUpdate,
    ContainerKind,
    ContainerRef,
    CreditCard,
    CreditCardCreate,
    CreditCardUpdate,
    ExtractedStatementRecord,
    RecordValidationResult,
    Statement,
    StatementStatus,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionPatch,
    ValidationIssue,
    utc_now,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finledger.models.money import (
    format_money,
    from_minor_units,
    parse_decimal,
    to_minor_units,
    within_money_range,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountCreate",
    "AccountUpdate",
    "BalanceReconciliation",
    "Category",
    "CategoryCreate",
    "CategoryType",
    "CategoryUpdate",
    "ContainerKind",
    "ContainerRef",
    "CreditCard",
    "CreditCardCreate",
    "CreditCardUpdate",
    "ExtractedStatementRecord",
    "RecordValidationResult",
    "Statement",
    "StatementStatus",
    "Transaction",
    "TransactionCreate",
    "TransactionFilter",
    "TransactionPatch",
    "ValidationIssue",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Money
    "format_money",
    "from_minor_units",
    "parse_decimal",
    "to_minor_units",
    "within_money_range",
]
