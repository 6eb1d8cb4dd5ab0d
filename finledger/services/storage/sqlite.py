"""
SQLite Storage Implementation

Ledger and audit storage on a single SQLite file, accessed with aiosqlite.

Key design decisions:
1. Money is stored as INTEGER minor units (cents), never as REAL or TEXT
2. Balances change only through `UPDATE ... SET col = col + ?`
3. Every session opens its own connection and runs one explicit
   transaction (BEGIN IMMEDIATE for writers), committed or rolled back
   as a whole
4. WAL journal so readers never block the writer
5. Rows are soft-deleted; deleted rows are invisible to user-scoped reads

SQLite serializes writers at the database level. Two writers on
different containers therefore queue briefly on the lock; busy_timeout
bounds how long one waits before the attempt fails with StorageError.
"""

import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Optional, Union
from uuid import UUID

import aiosqlite
import structlog

from finledger.models.audit import AuditEvent
from finledger.models.ledger import (
    Account,
    Category,
    ContainerKind,
    ContainerRef,
    CreditCard,
    Statement,
    Transaction,
    TransactionFilter,
    utc_now,
)
from finledger.models.money import from_minor_units, to_minor_units
from finledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    Container,
    LedgerSession,
    LedgerStore,
    StorageError,
)

logger = structlog.get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    bank_name TEXT NOT NULL,
    account_number TEXT NOT NULL DEFAULT '',
    opening_balance_minor INTEGER NOT NULL DEFAULT 0,
    balance_minor INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);

CREATE TABLE IF NOT EXISTS credit_cards (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    bank TEXT NOT NULL,
    card_number TEXT NOT NULL DEFAULT '',
    credit_limit_minor INTEGER NOT NULL CHECK (credit_limit_minor >= 0),
    current_balance_minor INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_credit_cards_user ON credit_cards(user_id);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('INCOME', 'EXPENSE')),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_user_name
    ON categories(user_id, lower(name)) WHERE deleted_at IS NULL;

CREATE TABLE IF NOT EXISTS statements (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    account_id TEXT REFERENCES accounts(id),
    credit_card_id TEXT REFERENCES credit_cards(id),
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_type TEXT NOT NULL,
    processing_status TEXT NOT NULL,
    error_message TEXT,
    transactions_created INTEGER NOT NULL DEFAULT 0,
    transactions_failed INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    processed_at TEXT,
    deleted_at TEXT,
    CHECK ((account_id IS NULL) <> (credit_card_id IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_statements_user ON statements(user_id);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    amount_minor INTEGER NOT NULL CHECK (amount_minor > 0),
    description TEXT NOT NULL,
    date TEXT NOT NULL,
    is_expense INTEGER NOT NULL CHECK (is_expense IN (0, 1)),
    account_id TEXT REFERENCES accounts(id),
    credit_card_id TEXT REFERENCES credit_cards(id),
    category_id TEXT REFERENCES categories(id),
    statement_id TEXT REFERENCES statements(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    CHECK ((account_id IS NULL) <> (credit_card_id IS NULL))
);
CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);
CREATE INDEX IF NOT EXISTS idx_transactions_card ON transactions(credit_card_id);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);

CREATE TABLE IF NOT EXISTS audit_events (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    user_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details TEXT NOT NULL DEFAULT '{}',
    error_code TEXT,
    error_message TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_events(correlation_id);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_type, entity_id);
"""

# (table, balance column, transaction foreign key) per container kind
_CONTAINER_TABLES: dict[ContainerKind, tuple[str, str, str]] = {
    ContainerKind.ACCOUNT: ("accounts", "balance_minor", "account_id"),
    ContainerKind.CREDIT_CARD: ("credit_cards", "current_balance_minor", "credit_card_id"),
}


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _id(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


async def create_connection(
    db_path: Union[Path, str],
    busy_timeout_ms: int = 5000,
) -> aiosqlite.Connection:
    """
    Open a connection in autocommit mode.

    Transactions are started explicitly with BEGIN, so the sqlite3
    module never opens one implicitly behind our back.
    """
    try:
        conn = await aiosqlite.connect(str(db_path), isolation_level=None)
    except sqlite3.Error as e:
        raise ConnectionError(f"Cannot open database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row
    try:
        await conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        await conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.Error as e:
        await conn.close()
        raise ConnectionError(f"Cannot configure database {db_path}: {e}") from e
    return conn


class SQLiteLedgerSession(LedgerSession):
    """LedgerSession over one aiosqlite connection inside an open transaction."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    # -------------------------------------------------------------------------
    # SQL helpers
    # -------------------------------------------------------------------------

    async def _execute(self, sql: str, parameters: tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        try:
            return await self._conn.execute(sql, parameters)
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    async def _fetchone(self, sql: str, parameters: tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        cursor = await self._execute(sql, parameters)
        try:
            return await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    async def _fetchall(self, sql: str, parameters: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        cursor = await self._execute(sql, parameters)
        try:
            return list(await cursor.fetchall())
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}") from e

    async def _execute_one(self, sql: str, parameters: tuple[Any, ...], what: str) -> None:
        """Execute a statement that must touch exactly one row."""
        cursor = await self._execute(sql, parameters)
        if cursor.rowcount != 1:
            raise StorageError(f"{what} not found")

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            bank_name=row["bank_name"],
            account_number=row["account_number"],
            opening_balance=from_minor_units(row["opening_balance_minor"]),
            balance=from_minor_units(row["balance_minor"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _row_to_credit_card(row: sqlite3.Row) -> CreditCard:
        return CreditCard(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            bank=row["bank"],
            card_number=row["card_number"],
            credit_limit=from_minor_units(row["credit_limit_minor"]),
            current_balance=from_minor_units(row["current_balance_minor"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            type=row["type"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            user_id=row["user_id"],
            amount=from_minor_units(row["amount_minor"]),
            description=row["description"],
            date=row["date"],
            is_expense=bool(row["is_expense"]),
            account_id=row["account_id"],
            credit_card_id=row["credit_card_id"],
            category_id=row["category_id"],
            statement_id=row["statement_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    @staticmethod
    def _row_to_statement(row: sqlite3.Row) -> Statement:
        return Statement(
            id=row["id"],
            user_id=row["user_id"],
            account_id=row["account_id"],
            credit_card_id=row["credit_card_id"],
            file_name=row["file_name"],
            file_path=row["file_path"],
            file_type=row["file_type"],
            processing_status=row["processing_status"],
            error_message=row["error_message"],
            transactions_created=row["transactions_created"],
            transactions_failed=row["transactions_failed"],
            created_at=row["created_at"],
            processed_at=row["processed_at"],
            deleted_at=row["deleted_at"],
        )

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    async def increment_balance(
        self,
        ref: ContainerRef,
        delta: Decimal,
    ) -> Optional[Decimal]:
        table, column, _ = _CONTAINER_TABLES[ref.kind]
        cursor = await self._execute(
            f"UPDATE {table} SET {column} = {column} + ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (to_minor_units(delta), _ts(utc_now()), str(ref.id)),
        )
        if cursor.rowcount == 0:
            return None

        # Same transaction, write lock held: nobody else changed it since
        row = await self._fetchone(
            f"SELECT {column} FROM {table} WHERE id = ?",
            (str(ref.id),),
        )
        return from_minor_units(row[0])

    async def get_container(
        self,
        user_id: str,
        ref: ContainerRef,
    ) -> Optional[Container]:
        table, _, _ = _CONTAINER_TABLES[ref.kind]
        row = await self._fetchone(
            f"SELECT * FROM {table} WHERE id = ? AND user_id = ? AND deleted_at IS NULL",
            (str(ref.id), user_id),
        )
        if row is None:
            return None
        if ref.kind == ContainerKind.ACCOUNT:
            return self._row_to_account(row)
        return self._row_to_credit_card(row)

    async def count_active_transactions(self, ref: ContainerRef) -> int:
        _, _, fk = _CONTAINER_TABLES[ref.kind]
        row = await self._fetchone(
            f"SELECT COUNT(*) FROM transactions WHERE {fk} = ? AND deleted_at IS NULL",
            (str(ref.id),),
        )
        return row[0]

    async def sum_active_transactions(self, ref: ContainerRef) -> dict[bool, Decimal]:
        _, _, fk = _CONTAINER_TABLES[ref.kind]
        rows = await self._fetchall(
            f"SELECT is_expense, SUM(amount_minor) AS total FROM transactions "
            f"WHERE {fk} = ? AND deleted_at IS NULL GROUP BY is_expense",
            (str(ref.id),),
        )
        return {bool(row["is_expense"]): from_minor_units(row["total"]) for row in rows}

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(
        self,
        user_id: str,
        transaction_id: UUID,
    ) -> Optional[Transaction]:
        row = await self._fetchone(
            "SELECT * FROM transactions WHERE id = ? AND user_id = ? AND deleted_at IS NULL",
            (str(transaction_id), user_id),
        )
        return self._row_to_transaction(row) if row else None

    async def insert_transaction(self, transaction: Transaction) -> None:
        await self._execute(
            "INSERT INTO transactions (id, user_id, amount_minor, description, date, "
            "is_expense, account_id, credit_card_id, category_id, statement_id, "
            "created_at, updated_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(transaction.id),
                transaction.user_id,
                to_minor_units(transaction.amount),
                transaction.description,
                transaction.date.isoformat(),
                int(transaction.is_expense),
                _id(transaction.account_id),
                _id(transaction.credit_card_id),
                _id(transaction.category_id),
                _id(transaction.statement_id),
                _ts(transaction.created_at),
                _ts(transaction.updated_at),
                _ts(transaction.deleted_at),
            ),
        )

    async def update_transaction(self, transaction: Transaction) -> None:
        await self._execute_one(
            "UPDATE transactions SET amount_minor = ?, description = ?, date = ?, "
            "is_expense = ?, account_id = ?, credit_card_id = ?, category_id = ?, "
            "updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (
                to_minor_units(transaction.amount),
                transaction.description,
                transaction.date.isoformat(),
                int(transaction.is_expense),
                _id(transaction.account_id),
                _id(transaction.credit_card_id),
                _id(transaction.category_id),
                _ts(transaction.updated_at),
                str(transaction.id),
            ),
            "Transaction",
        )

    async def soft_delete_transaction(
        self,
        transaction_id: UUID,
        deleted_at: datetime,
    ) -> None:
        await self._execute_one(
            "UPDATE transactions SET deleted_at = ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (_ts(deleted_at), _ts(deleted_at), str(transaction_id)),
            "Transaction",
        )

    async def list_transactions(
        self,
        user_id: str,
        filters: TransactionFilter,
    ) -> list[Transaction]:
        conditions = ["user_id = ?", "deleted_at IS NULL"]
        params: list[Any] = [user_id]

        if filters.start_date is not None:
            conditions.append("date >= ?")
            params.append(filters.start_date.isoformat())
        if filters.end_date is not None:
            conditions.append("date <= ?")
            params.append(filters.end_date.isoformat())
        if filters.uncategorized_only:
            conditions.append("category_id IS NULL")
        elif filters.category_id is not None:
            conditions.append("category_id = ?")
            params.append(str(filters.category_id))
        if filters.is_expense is not None:
            conditions.append("is_expense = ?")
            params.append(int(filters.is_expense))
        if filters.account_id is not None:
            conditions.append("account_id = ?")
            params.append(str(filters.account_id))
        if filters.credit_card_id is not None:
            conditions.append("credit_card_id = ?")
            params.append(str(filters.credit_card_id))
        if filters.statement_id is not None:
            conditions.append("statement_id = ?")
            params.append(str(filters.statement_id))

        params.extend([filters.limit, filters.offset])
        rows = await self._fetchall(
            f"SELECT * FROM transactions WHERE {' AND '.join(conditions)} "
            "ORDER BY date DESC, created_at DESC LIMIT ? OFFSET ?",
            tuple(params),
        )
        return [self._row_to_transaction(row) for row in rows]

    async def count_category_transactions(self, category_id: UUID) -> int:
        row = await self._fetchone(
            "SELECT COUNT(*) FROM transactions WHERE category_id = ? AND deleted_at IS NULL",
            (str(category_id),),
        )
        return row[0]

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def insert_account(self, account: Account) -> None:
        await self._execute(
            "INSERT INTO accounts (id, user_id, name, bank_name, account_number, "
            "opening_balance_minor, balance_minor, created_at, updated_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(account.id),
                account.user_id,
                account.name,
                account.bank_name,
                account.account_number,
                to_minor_units(account.opening_balance),
                to_minor_units(account.balance),
                _ts(account.created_at),
                _ts(account.updated_at),
                _ts(account.deleted_at),
            ),
        )

    async def insert_credit_card(self, card: CreditCard) -> None:
        await self._execute(
            "INSERT INTO credit_cards (id, user_id, name, bank, card_number, "
            "credit_limit_minor, current_balance_minor, created_at, updated_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(card.id),
                card.user_id,
                card.name,
                card.bank,
                card.card_number,
                to_minor_units(card.credit_limit),
                to_minor_units(card.current_balance),
                _ts(card.created_at),
                _ts(card.updated_at),
                _ts(card.deleted_at),
            ),
        )

    async def update_account(self, account: Account) -> None:
        await self._execute_one(
            "UPDATE accounts SET name = ?, bank_name = ?, account_number = ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (
                account.name,
                account.bank_name,
                account.account_number,
                _ts(account.updated_at),
                str(account.id),
            ),
            "Account",
        )

    async def update_credit_card(self, card: CreditCard) -> None:
        await self._execute_one(
            "UPDATE credit_cards SET name = ?, bank = ?, card_number = ?, "
            "credit_limit_minor = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
            (
                card.name,
                card.bank,
                card.card_number,
                to_minor_units(card.credit_limit),
                _ts(card.updated_at),
                str(card.id),
            ),
            "Credit card",
        )

    async def soft_delete_container(
        self,
        ref: ContainerRef,
        deleted_at: datetime,
    ) -> None:
        table, _, _ = _CONTAINER_TABLES[ref.kind]
        await self._execute_one(
            f"UPDATE {table} SET deleted_at = ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (_ts(deleted_at), _ts(deleted_at), str(ref.id)),
            ref.kind.value,
        )

    async def list_accounts(self, user_id: str) -> list[Account]:
        rows = await self._fetchall(
            "SELECT * FROM accounts WHERE user_id = ? AND deleted_at IS NULL "
            "ORDER BY lower(name), created_at",
            (user_id,),
        )
        return [self._row_to_account(row) for row in rows]

    async def list_credit_cards(self, user_id: str) -> list[CreditCard]:
        rows = await self._fetchall(
            "SELECT * FROM credit_cards WHERE user_id = ? AND deleted_at IS NULL "
            "ORDER BY lower(name), created_at",
            (user_id,),
        )
        return [self._row_to_credit_card(row) for row in rows]

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def get_category(
        self,
        user_id: str,
        category_id: UUID,
    ) -> Optional[Category]:
        row = await self._fetchone(
            "SELECT * FROM categories WHERE id = ? AND user_id = ? AND deleted_at IS NULL",
            (str(category_id), user_id),
        )
        return self._row_to_category(row) if row else None

    async def find_category_by_name(
        self,
        user_id: str,
        name: str,
    ) -> Optional[Category]:
        row = await self._fetchone(
            "SELECT * FROM categories WHERE user_id = ? AND lower(name) = lower(?) "
            "AND deleted_at IS NULL",
            (user_id, name.strip()),
        )
        return self._row_to_category(row) if row else None

    async def insert_category(self, category: Category) -> None:
        await self._execute(
            "INSERT INTO categories (id, user_id, name, type, created_at, updated_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                str(category.id),
                category.user_id,
                category.name,
                category.type.value,
                _ts(category.created_at),
                _ts(category.updated_at),
                _ts(category.deleted_at),
            ),
        )

    async def update_category(self, category: Category) -> None:
        await self._execute_one(
            "UPDATE categories SET name = ?, type = ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (category.name, category.type.value, _ts(category.updated_at), str(category.id)),
            "Category",
        )

    async def soft_delete_category(
        self,
        category_id: UUID,
        deleted_at: datetime,
    ) -> None:
        await self._execute_one(
            "UPDATE categories SET deleted_at = ?, updated_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (_ts(deleted_at), _ts(deleted_at), str(category_id)),
            "Category",
        )

    async def list_categories(self, user_id: str) -> list[Category]:
        rows = await self._fetchall(
            "SELECT * FROM categories WHERE user_id = ? AND deleted_at IS NULL "
            "ORDER BY type, lower(name)",
            (user_id,),
        )
        return [self._row_to_category(row) for row in rows]

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    async def insert_statement(self, statement: Statement) -> None:
        await self._execute(
            "INSERT INTO statements (id, user_id, account_id, credit_card_id, file_name, "
            "file_path, file_type, processing_status, error_message, transactions_created, "
            "transactions_failed, created_at, processed_at, deleted_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                str(statement.id),
                statement.user_id,
                _id(statement.account_id),
                _id(statement.credit_card_id),
                statement.file_name,
                statement.file_path,
                statement.file_type,
                statement.processing_status.value,
                statement.error_message,
                statement.transactions_created,
                statement.transactions_failed,
                _ts(statement.created_at),
                _ts(statement.processed_at),
                _ts(statement.deleted_at),
            ),
        )

    async def get_statement(
        self,
        statement_id: UUID,
        user_id: Optional[str] = None,
    ) -> Optional[Statement]:
        sql = "SELECT * FROM statements WHERE id = ? AND deleted_at IS NULL"
        params: tuple[Any, ...] = (str(statement_id),)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)
        row = await self._fetchone(sql, params)
        return self._row_to_statement(row) if row else None

    async def update_statement(self, statement: Statement) -> None:
        await self._execute_one(
            "UPDATE statements SET processing_status = ?, error_message = ?, "
            "transactions_created = ?, transactions_failed = ?, processed_at = ? "
            "WHERE id = ? AND deleted_at IS NULL",
            (
                statement.processing_status.value,
                statement.error_message,
                statement.transactions_created,
                statement.transactions_failed,
                _ts(statement.processed_at),
                str(statement.id),
            ),
            "Statement",
        )

    async def list_statements(self, user_id: str) -> list[Statement]:
        rows = await self._fetchall(
            "SELECT * FROM statements WHERE user_id = ? AND deleted_at IS NULL "
            "ORDER BY created_at DESC",
            (user_id,),
        )
        return [self._row_to_statement(row) for row in rows]


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite-backed ledger store.

    Usage:
        store = SQLiteLedgerStore("finledger.db")
        await store.open()

        async with store.session() as session:
            await session.insert_transaction(tx)

        await store.close()
    """

    def __init__(self, db_path: Union[Path, str], busy_timeout_ms: int = 5000):
        if str(db_path).strip() in ("", ":memory:"):
            # Each session opens its own connection, so the ledger must live in a file
            raise ValueError("Database path must point to a file")
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        """Create the database file and schema if needed."""
        if self._open:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await create_connection(self.db_path, self.busy_timeout_ms)
        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise ConnectionError(f"Cannot initialize schema: {e}") from e
        finally:
            await conn.close()

        self._open = True
        logger.info("ledger_store_opened", db_path=str(self.db_path))

    async def close(self) -> None:
        if self._open:
            self._open = False
            logger.info("ledger_store_closed", db_path=str(self.db_path))

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection and run one transaction on it.

        Commits on success, rolls back on any exception, and always
        closes the connection.
        """
        if not self._open:
            raise StorageError("Ledger store is not open")

        conn = await create_connection(self.db_path, self.busy_timeout_ms)
        try:
            try:
                await conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot start transaction: {e}") from e

            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise

            try:
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise StorageError(f"Commit failed: {e}") from e
        finally:
            await conn.close()

    @asynccontextmanager
    async def session(self, readonly: bool = False) -> AsyncIterator[SQLiteLedgerSession]:
        async with self.transaction(readonly=readonly) as conn:
            yield SQLiteLedgerSession(conn)


class SQLiteAuditStorage(AuditStorageInterface):
    """
    Audit log in the ledger database.

    Each event is appended in its own short transaction, after the
    ledger change it describes has committed.
    """

    def __init__(self, store: SQLiteLedgerStore):
        self._store = store

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> AuditEvent:
        return AuditEvent(
            event_id=row["event_id"],
            timestamp=row["timestamp"],
            event_type=row["event_type"],
            severity=row["severity"],
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=row["correlation_id"],
            description=row["description"],
            details=json.loads(row["details"]),
            error_code=row["error_code"],
            error_message=row["error_message"],
        )

    async def _query(self, sql: str, parameters: tuple[Any, ...]) -> list[AuditEvent]:
        try:
            async with self._store.transaction(readonly=True) as conn:
                cursor = await conn.execute(sql, parameters)
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read audit events: {e}") from e
        return [self._row_to_event(row) for row in rows]

    async def append_event(self, event: AuditEvent) -> bool:
        data = event.to_log_dict()
        try:
            async with self._store.transaction() as conn:
                await conn.execute(
                    "INSERT INTO audit_events (event_id, timestamp, event_type, severity, "
                    "user_id, entity_type, entity_id, correlation_id, description, details, "
                    "error_code, error_message) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        data["event_id"],
                        data["timestamp"],
                        data["event_type"],
                        data["severity"],
                        data["user_id"],
                        data["entity_type"],
                        data["entity_id"],
                        data["correlation_id"],
                        data["description"],
                        json.dumps(data["details"], default=str),
                        data["error_code"],
                        data["error_message"],
                    ),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to append audit event: {e}") from e
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events WHERE correlation_id = ? ORDER BY timestamp",
            (str(correlation_id),),
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events WHERE entity_type = ? AND entity_id = ? "
            "ORDER BY timestamp",
            (entity_type, str(entity_id)),
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return await self._query(
            "SELECT * FROM audit_events ORDER BY timestamp DESC LIMIT ?",
            (limit,),
        )
