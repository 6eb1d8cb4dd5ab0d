"""
Shared fixtures.

Every test that touches storage gets a real SQLite database under
tmp_path. External services (OCR, LLM) are always mocked.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from finledger.audit import AuditLogger
from finledger.config import AppSettings
from finledger.ledger.categories import CategoryService
from finledger.ledger.containers import ContainerService
from finledger.ledger.engine import LedgerEngine
from finledger.models.ledger import CategoryType
from finledger.services.storage import SQLiteAuditStorage, SQLiteLedgerStore

USER = "user-1"
OTHER_USER = "user-2"


@pytest.fixture
def app_settings():
    return AppSettings(_env_file=None)


@pytest_asyncio.fixture
async def store(tmp_path):
    store = SQLiteLedgerStore(tmp_path / "ledger.db", busy_timeout_ms=2000)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def audit_storage(store):
    return SQLiteAuditStorage(store)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(store, audit_logger):
    return LedgerEngine(store, audit_logger)


@pytest.fixture
def containers(store, audit_logger):
    return ContainerService(store, audit_logger)


@pytest.fixture
def categories(store, audit_logger):
    return CategoryService(store, audit_logger)


@pytest_asyncio.fixture
async def account(containers):
    """An account holding 500.00."""
    return await containers.create_account(USER, {
        "name": "Checking",
        "bank_name": "First Bank",
        "balance": "500.00",
    })


@pytest_asyncio.fixture
async def second_account(containers):
    """An account holding 200.00."""
    return await containers.create_account(USER, {
        "name": "Savings",
        "bank_name": "First Bank",
        "balance": Decimal("200"),
    })


@pytest_asyncio.fixture
async def card(containers):
    """A credit card with nothing owed."""
    return await containers.create_credit_card(USER, {
        "name": "Visa",
        "bank": "First Bank",
        "credit_limit": "1000",
    })


@pytest_asyncio.fixture
async def groceries(categories):
    return await categories.create_category(USER, {
        "name": "Groceries",
        "type": CategoryType.EXPENSE,
    })


def expense(container, amount="100.00", **overrides):
    """Build transaction input against an account or a credit card."""
    data = {
        "amount": amount,
        "description": "Groceries",
        "date": "2024-03-01",
        "is_expense": True,
    }
    key = "credit_card_id" if hasattr(container, "credit_limit") else "account_id"
    data[key] = container.id
    data.update(overrides)
    return data
