"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Inject the store instead of reaching for a process-wide client
2. Keep the ledger engine decoupled from SQL
3. Swap SQLite for another backend later

Every read and write happens inside a LedgerSession, which is ONE unit
of work: it commits as a whole when the `async with` block exits cleanly
and rolls back as a whole when anything raises.

Lookups that take a user_id are user-scoped and skip soft-deleted rows.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Account,
    Category,
    ContainerRef,
    CreditCard,
    Statement,
    Transaction,
    TransactionFilter,
)

Container = Union[Account, CreditCard]


class LedgerSession(ABC):
    """
    One unit of work against the ledger store.

    Obtained from LedgerStore.session(); never constructed directly.
    """

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    @abstractmethod
    async def increment_balance(
        self,
        ref: ContainerRef,
        delta: Decimal,
    ) -> Optional[Decimal]:
        """
        Atomically add a signed delta to a container's stored balance.

        This is a single storage-level increment, never a
        read-modify-write in Python.

        Args:
            ref: The account or credit card to change
            delta: Signed amount (two decimal places)

        Returns:
            The new balance, or None if the container does not exist
            or is soft-deleted (nothing is written in that case)
        """
        pass

    @abstractmethod
    async def get_container(
        self,
        user_id: str,
        ref: ContainerRef,
    ) -> Optional[Container]:
        """
        Get an active container owned by user_id.

        Returns None when it is absent, deleted, or owned by someone else.
        """
        pass

    @abstractmethod
    async def count_active_transactions(self, ref: ContainerRef) -> int:
        """Count non-deleted transactions referencing the container."""
        pass

    @abstractmethod
    async def sum_active_transactions(self, ref: ContainerRef) -> dict[bool, Decimal]:
        """
        Sum active transaction amounts of a container, split by is_expense.

        Returns:
            {True: total_expenses, False: total_income}; missing keys mean zero
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        """Get an active transaction owned by user_id."""
        pass

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> None:
        """
        Persist every field of an existing transaction.

        Raises:
            StorageError: If the row does not exist
        """
        pass

    @abstractmethod
    async def soft_delete_transaction(
        self,
        transaction_id: UUID,
        deleted_at: datetime,
    ) -> None:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        user_id: str,
        filters: TransactionFilter,
    ) -> list[Transaction]:
        """
        List a user's active transactions.

        Args:
            user_id: Owner
            filters: Date range, category, direction, container, statement,
                     pagination

        Returns:
            Matching transactions, newest date first
        """
        pass

    @abstractmethod
    async def count_category_transactions(self, category_id: UUID) -> int:
        """Count non-deleted transactions using the category."""
        pass

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_account(self, account: Account) -> None:
        pass

    @abstractmethod
    async def insert_credit_card(self, card: CreditCard) -> None:
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> None:
        """
        Persist the editable fields of an account.

        The balance column is NOT written here: it only changes
        through increment_balance.
        """
        pass

    @abstractmethod
    async def update_credit_card(self, card: CreditCard) -> None:
        """Persist the editable fields of a card (not current_balance)."""
        pass

    @abstractmethod
    async def soft_delete_container(
        self,
        ref: ContainerRef,
        deleted_at: datetime,
    ) -> None:
        pass

    @abstractmethod
    async def list_accounts(self, user_id: str) -> list[Account]:
        pass

    @abstractmethod
    async def list_credit_cards(self, user_id: str) -> list[CreditCard]:
        pass

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_category(
        self,
        user_id: str,
        category_id: UUID,
    ) -> Optional[Category]:
        pass

    @abstractmethod
    async def find_category_by_name(
        self,
        user_id: str,
        name: str,
    ) -> Optional[Category]:
        """Case-insensitive lookup among the user's active categories."""
        pass

    @abstractmethod
    async def insert_category(self, category: Category) -> None:
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> None:
        pass

    @abstractmethod
    async def soft_delete_category(
        self,
        category_id: UUID,
        deleted_at: datetime,
    ) -> None:
        pass

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        """Active categories, ordered by type then name."""
        pass

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_statement(self, statement: Statement) -> None:
        pass

    @abstractmethod
    async def get_statement(
        self,
        statement_id: UUID,
        user_id: Optional[str] = None,
    ) -> Optional[Statement]:
        """
        Get an active statement.

        Args:
            statement_id: The statement
            user_id: When given, the lookup is scoped to this owner.
                     The background worker looks statements up unscoped.
        """
        pass

    @abstractmethod
    async def update_statement(self, statement: Statement) -> None:
        pass

    @abstractmethod
    async def list_statements(self, user_id: str) -> list[Statement]:
        """Active statements, newest first."""
        pass


class LedgerStore(ABC):
    """
    Abstract ledger store with an explicit lifecycle.

    The process entry point owns it: open() once at startup,
    close() once at shutdown. Sessions are only available in between.
    """

    @abstractmethod
    async def open(self) -> None:
        """Prepare the backend (connect, create schema)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def session(
        self,
        readonly: bool = False,
    ) -> AbstractAsyncContextManager[LedgerSession]:
        """
        Start a unit of work.

        A readonly session does not take the write lock up front.

        Usage:
            async with store.session() as session:
                await session.insert_transaction(tx)
                await session.increment_balance(ref, delta)
            # committed here; rolled back if the block raised

        Raises:
            StorageError: If the store is closed or the backend fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one statement's processing).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'transaction', 'statement')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations. Never retried by the ledger."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
