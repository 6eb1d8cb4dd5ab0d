"""
Ledger Package

The error taxonomy and balance primitives are re-exported here.
The services live in their own modules:

    finledger.ledger.engine      LedgerEngine (transactions)
    finledger.ledger.containers  ContainerService (accounts, credit cards)
    finledger.ledger.categories  CategoryService
"""

from finledger.ledger.balance import (
    BALANCE_SIGNS,
    apply_delta,
    balance_sign,
    reverse_delta,
    signed_delta,
)
from finledger.ledger.errors import (
    ContainerNotFoundError,
    DuplicateError,
    HasDependentsError,
    InvalidReferenceError,
    LedgerError,
    NotFoundError,
    StatementStateError,
    ValidationError,
)

__all__ = [
    # Balance primitives
    "BALANCE_SIGNS",
    "apply_delta",
    "balance_sign",
    "reverse_delta",
    "signed_delta",
    # Errors
    "ContainerNotFoundError",
    "DuplicateError",
    "HasDependentsError",
    "InvalidReferenceError",
    "LedgerError",
    "NotFoundError",
    "StatementStateError",
    "ValidationError",
]
