"""
Ledger Balance Engine

Creates, updates and deletes transactions while keeping every
container's stored balance equal to its baseline plus the sum of its
active transactions' effects.

DESIGN DECISION: Every public mutation is ONE storage unit of work.
The ownership checks, the transaction row write and the balance
increment(s) either all commit or all roll back. There is no window
in which a transaction exists without its balance effect.

Audit events are written only after the unit of work commits, so a
rolled-back call never leaves a success event behind.
"""

from typing import Any, Optional
from uuid import UUID

import structlog

from finledger.audit import AuditLogger
from finledger.ledger.balance import apply_delta, reverse_delta
from finledger.ledger.errors import (
    ContainerNotFoundError,
    InvalidReferenceError,
    NotFoundError,
)
from finledger.models.ledger import (
    ContainerRef,
    Transaction,
    TransactionCreate,
    TransactionFilter,
    TransactionPatch,
    ValidationIssue,
    utc_now,
)
from finledger.services.storage.interface import Container, LedgerSession, LedgerStore
from finledger.validation.validator import parse_input, resolve_container

logger = structlog.get_logger(__name__)

_PLAIN_FIELDS = ("amount", "description", "date", "is_expense")


async def require_container(
    session: LedgerSession,
    user_id: str,
    ref: ContainerRef,
) -> Container:
    """Load an active container owned by user_id, or raise NotFoundError."""
    container = await session.get_container(user_id, ref)
    if container is None:
        raise NotFoundError(ref.kind.value)
    return container


async def require_category(session: LedgerSession, user_id: str, category_id: UUID) -> None:
    if await session.get_category(user_id, category_id) is None:
        raise NotFoundError("category")


class LedgerEngine:
    """
    Transaction lifecycle with consistent container balances.

    Usage:
        engine = LedgerEngine(store, audit_logger)
        tx = await engine.create_transaction(user_id, {
            "amount": "100.00",
            "description": "Groceries",
            "date": "2024-03-01",
            "is_expense": True,
            "account_id": account.id,
        })
    """

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    async def _report_missing_container(
        self,
        user_id: str,
        error: ContainerNotFoundError,
        operation: str,
        transaction_id: Optional[UUID] = None,
    ) -> None:
        await self._audit.log_balance_anomaly(
            user_id=user_id,
            ref=error.ref,
            reason=f"container missing during {operation}",
            details={
                "operation": operation,
                "transaction_id": str(transaction_id) if transaction_id else None,
            },
        )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        user_id: str,
        data: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Create a transaction and apply its effect to its container.

        Args:
            user_id: Owner
            data: TransactionCreate or a dict of its fields
            correlation_id: Ties the audit event to e.g. a statement run

        Returns:
            The persisted Transaction

        Raises:
            ValidationError: Malformed input
            InvalidReferenceError: Not exactly one of account_id / credit_card_id
            NotFoundError: Container, category or statement absent or not owned
            StorageError: Persistence failed; nothing was written
        """
        tx_input = parse_input(TransactionCreate, data)
        ref = resolve_container(tx_input.account_id, tx_input.credit_card_id)

        try:
            async with self._store.session() as session:
                await require_container(session, user_id, ref)
                if tx_input.category_id is not None:
                    await require_category(session, user_id, tx_input.category_id)
                if tx_input.statement_id is not None:
                    if await session.get_statement(tx_input.statement_id, user_id) is None:
                        raise NotFoundError("statement")

                transaction = Transaction(user_id=user_id, **tx_input.model_dump())
                await session.insert_transaction(transaction)
                new_balance = await apply_delta(
                    session, ref, transaction.amount, transaction.is_expense
                )
        except ContainerNotFoundError as e:
            await self._report_missing_container(user_id, e, "create")
            raise

        await self._audit.log_transaction_created(
            user_id=user_id,
            transaction_id=transaction.id,
            ref=ref,
            amount=transaction.amount,
            is_expense=transaction.is_expense,
            new_balance=new_balance,
            correlation_id=correlation_id,
        )
        return transaction

    async def update_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
        data: Any,
    ) -> Transaction:
        """
        Apply a partial update, moving balance effects when needed.

        When amount, is_expense or the container changes, the original
        effect is reversed on the original container and the new effect
        is applied to the target container. Values are compared after
        parsing, so "100" and "100.00" are the same amount.

        Supplying account_id moves the transaction to that account and
        clears credit_card_id; supplying credit_card_id does the reverse.

        Raises:
            ValidationError: Malformed patch
            InvalidReferenceError: Both account_id and credit_card_id supplied
            NotFoundError: Transaction, target container or category
                absent or not owned
            StorageError: Persistence failed; nothing was written
        """
        patch = parse_input(TransactionPatch, data)
        if patch.account_id is not None and patch.credit_card_id is not None:
            message = "Only one of account_id or credit_card_id may be provided"
            raise InvalidReferenceError(
                message,
                issues=[ValidationIssue(
                    field="credit_card_id",
                    issue_type="invalid_reference",
                    message=message,
                )],
            )

        balances: dict[ContainerRef, Any] = {}
        try:
            async with self._store.session() as session:
                original = await session.get_transaction(user_id, transaction_id)
                if original is None:
                    raise NotFoundError("transaction")

                old_ref = original.container_ref
                new_ref = (
                    ContainerRef.from_ids(patch.account_id, patch.credit_card_id)
                    if patch.moves_container
                    else old_ref
                )

                changes: dict[str, Any] = {}
                for field in _PLAIN_FIELDS:
                    value = getattr(patch, field)
                    if value is not None and value != getattr(original, field):
                        changes[field] = value

                if patch.category_id is not None and patch.category_id != original.category_id:
                    await require_category(session, user_id, patch.category_id)
                    changes["category_id"] = patch.category_id
                elif patch.clears_category and original.category_id is not None:
                    changes["category_id"] = None

                if new_ref != old_ref:
                    await require_container(session, user_id, new_ref)
                    changes["account_id"] = new_ref.account_id
                    changes["credit_card_id"] = new_ref.credit_card_id

                new_amount = changes.get("amount", original.amount)
                new_is_expense = changes.get("is_expense", original.is_expense)
                if (
                    new_amount != original.amount
                    or new_is_expense != original.is_expense
                    or new_ref != old_ref
                ):
                    balances[old_ref] = await reverse_delta(
                        session, old_ref, original.amount, original.is_expense
                    )
                    balances[new_ref] = await apply_delta(
                        session, new_ref, new_amount, new_is_expense
                    )

                if not changes:
                    return original

                updated = original.model_copy(update={**changes, "updated_at": utc_now()})
                await session.update_transaction(updated)
        except ContainerNotFoundError as e:
            await self._report_missing_container(user_id, e, "update", transaction_id)
            raise

        await self._audit.log_transaction_updated(
            user_id=user_id,
            transaction_id=transaction_id,
            changed_fields=sorted(changes),
            balances=balances,
        )
        return updated

    async def delete_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        """
        Reverse a transaction's effect and soft-delete it.

        Returns:
            The transaction as it was deleted (deleted_at set)

        Raises:
            NotFoundError: Transaction absent, already deleted or not owned
            StorageError: Persistence failed; nothing was written
        """
        try:
            async with self._store.session() as session:
                transaction = await session.get_transaction(user_id, transaction_id)
                if transaction is None:
                    raise NotFoundError("transaction")

                ref = transaction.container_ref
                new_balance = await reverse_delta(
                    session, ref, transaction.amount, transaction.is_expense
                )
                deleted_at = utc_now()
                await session.soft_delete_transaction(transaction.id, deleted_at)
        except ContainerNotFoundError as e:
            await self._report_missing_container(user_id, e, "delete", transaction_id)
            raise

        await self._audit.log_transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            ref=ref,
            new_balance=new_balance,
        )
        return transaction.model_copy(update={"deleted_at": deleted_at, "updated_at": deleted_at})

    async def set_category(
        self,
        user_id: str,
        transaction_id: UUID,
        category_id: Optional[UUID],
    ) -> Transaction:
        """Assign (or clear, with None) a transaction's category. No balance effect."""
        async with self._store.session() as session:
            transaction = await session.get_transaction(user_id, transaction_id)
            if transaction is None:
                raise NotFoundError("transaction")
            if category_id is not None:
                await require_category(session, user_id, category_id)
            if transaction.category_id == category_id:
                return transaction

            updated = transaction.model_copy(
                update={"category_id": category_id, "updated_at": utc_now()}
            )
            await session.update_transaction(updated)

        logger.debug(
            "transaction_category_set",
            transaction_id=str(transaction_id),
            category_id=str(category_id) if category_id else None,
        )
        return updated

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def count_active_transactions(self, ref: ContainerRef) -> int:
        """Number of non-deleted transactions referencing the container."""
        async with self._store.session(readonly=True) as session:
            return await session.count_active_transactions(ref)

    async def get_transaction(self, user_id: str, transaction_id: UUID) -> Transaction:
        async with self._store.session(readonly=True) as session:
            transaction = await session.get_transaction(user_id, transaction_id)
        if transaction is None:
            raise NotFoundError("transaction")
        return transaction

    async def list_transactions(
        self,
        user_id: str,
        filters: Any = None,
    ) -> list[Transaction]:
        """
        List a user's active transactions, newest date first.

        Args:
            user_id: Owner
            filters: TransactionFilter, a dict of its fields, or None for all
        """
        parsed = parse_input(TransactionFilter, filters or {})
        async with self._store.session(readonly=True) as session:
            return await session.list_transactions(user_id, parsed)
