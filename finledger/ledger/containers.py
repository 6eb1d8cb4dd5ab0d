"""
Container Service

Accounts and credit cards: creation, edits, guarded deletion and
balance reconciliation.

A container's stored balance is never edited directly. It starts at
the opening balance (accounts) or zero (cards) and afterwards only
moves through the ledger engine.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from finledger.audit import AuditLogger
from finledger.ledger.balance import signed_delta
from finledger.ledger.engine import require_container
from finledger.ledger.errors import HasDependentsError
from finledger.models.ledger import (
    Account,
    AccountCreate,
    AccountUpdate,
    BalanceReconciliation,
    ContainerKind,
    ContainerRef,
    CreditCard,
    CreditCardCreate,
    CreditCardUpdate,
    utc_now,
)
from finledger.services.storage.interface import Container, LedgerStore
from finledger.validation.validator import parse_input


class ContainerService:
    """Accounts and credit cards for one store."""

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def create_account(self, user_id: str, data: Any) -> Account:
        """
        Create an account.

        The optional `balance` input becomes both the opening balance
        and the current balance.
        """
        account_input = parse_input(AccountCreate, data)
        account = Account(
            user_id=user_id,
            name=account_input.name,
            bank_name=account_input.bank_name,
            account_number=account_input.account_number,
            opening_balance=account_input.balance,
            balance=account_input.balance,
        )
        async with self._store.session() as session:
            await session.insert_account(account)

        await self._audit.log_container_created(user_id, account.ref, account.name)
        return account

    async def get_account(self, user_id: str, account_id: UUID) -> Account:
        ref = ContainerRef(kind=ContainerKind.ACCOUNT, id=account_id)
        async with self._store.session(readonly=True) as session:
            return await require_container(session, user_id, ref)

    async def list_accounts(self, user_id: str) -> list[Account]:
        async with self._store.session(readonly=True) as session:
            return await session.list_accounts(user_id)

    async def update_account(self, user_id: str, account_id: UUID, data: Any) -> Account:
        """
        Edit name, bank_name or account_number.

        Raises:
            ValidationError: Includes any attempt to set the balance
            NotFoundError: Account absent or not owned
        """
        changes = parse_input(AccountUpdate, data).model_dump(exclude_none=True)
        ref = ContainerRef(kind=ContainerKind.ACCOUNT, id=account_id)
        async with self._store.session() as session:
            account = await require_container(session, user_id, ref)
            if not changes:
                return account
            updated = account.model_copy(update={**changes, "updated_at": utc_now()})
            await session.update_account(updated)
        return updated

    async def delete_account(self, user_id: str, account_id: UUID) -> None:
        await self._delete(user_id, ContainerRef(kind=ContainerKind.ACCOUNT, id=account_id))

    # -------------------------------------------------------------------------
    # Credit cards
    # -------------------------------------------------------------------------

    async def create_credit_card(self, user_id: str, data: Any) -> CreditCard:
        """Create a credit card. Nothing is owed on a new card."""
        card_input = parse_input(CreditCardCreate, data)
        card = CreditCard(
            user_id=user_id,
            name=card_input.name,
            bank=card_input.bank,
            card_number=card_input.card_number,
            credit_limit=card_input.credit_limit,
        )
        async with self._store.session() as session:
            await session.insert_credit_card(card)

        await self._audit.log_container_created(user_id, card.ref, card.name)
        return card

    async def get_credit_card(self, user_id: str, card_id: UUID) -> CreditCard:
        ref = ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id)
        async with self._store.session(readonly=True) as session:
            return await require_container(session, user_id, ref)

    async def list_credit_cards(self, user_id: str) -> list[CreditCard]:
        async with self._store.session(readonly=True) as session:
            return await session.list_credit_cards(user_id)

    async def update_credit_card(self, user_id: str, card_id: UUID, data: Any) -> CreditCard:
        changes = parse_input(CreditCardUpdate, data).model_dump(exclude_none=True)
        ref = ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id)
        async with self._store.session() as session:
            card = await require_container(session, user_id, ref)
            if not changes:
                return card
            updated = card.model_copy(update={**changes, "updated_at": utc_now()})
            await session.update_credit_card(updated)
        return updated

    async def delete_credit_card(self, user_id: str, card_id: UUID) -> None:
        await self._delete(user_id, ContainerRef(kind=ContainerKind.CREDIT_CARD, id=card_id))

    # -------------------------------------------------------------------------
    # Shared
    # -------------------------------------------------------------------------

    async def _delete(self, user_id: str, ref: ContainerRef) -> None:
        """
        Soft-delete a container that owns no active transactions.

        Raises:
            NotFoundError: Container absent or not owned
            HasDependentsError: Active transactions still reference it
        """
        async with self._store.session() as session:
            await require_container(session, user_id, ref)
            dependents = await session.count_active_transactions(ref)
            if dependents:
                raise HasDependentsError(ref.kind.value, dependents)
            await session.soft_delete_container(ref, utc_now())

        await self._audit.log_container_deleted(user_id, ref)

    async def reconcile(self, user_id: str, ref: ContainerRef) -> BalanceReconciliation:
        """
        Recompute a container's balance from its active transactions.

        Any drift between the stored and expected balance is logged as a
        balance anomaly. Nothing is corrected automatically.
        """
        async with self._store.session(readonly=True) as session:
            container: Container = await require_container(session, user_id, ref)
            totals = await session.sum_active_transactions(ref)
            count = await session.count_active_transactions(ref)

        expected = container.baseline_balance + sum(
            (signed_delta(ref.kind, total, is_expense) for is_expense, total in totals.items()),
            Decimal("0.00"),
        )
        result = BalanceReconciliation(
            container_ref=ref,
            stored_balance=container.stored_balance,
            expected_balance=expected,
            active_transactions=count,
        )

        if not result.is_consistent:
            await self._audit.log_balance_anomaly(
                user_id=user_id,
                ref=ref,
                reason="stored balance does not match transactions",
                details={
                    "stored_balance": str(result.stored_balance),
                    "expected_balance": str(result.expected_balance),
                    "drift": str(result.drift),
                },
            )
        return result
