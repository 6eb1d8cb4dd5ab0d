"""Tests for category management."""

import pytest

from conftest import OTHER_USER, USER, expense
from finledger.ledger.errors import (
    DuplicateError,
    HasDependentsError,
    NotFoundError,
    ValidationError,
)
from finledger.models.ledger import CategoryType


class TestCategories:

    @pytest.mark.asyncio
    async def test_create_and_get(self, categories, groceries):
        stored = await categories.get_category(USER, groceries.id)
        assert stored.name == "Groceries"
        assert stored.type == CategoryType.EXPENSE

    @pytest.mark.asyncio
    async def test_names_unique_ignoring_case(self, categories, groceries):
        with pytest.raises(DuplicateError):
            await categories.create_category(USER, {"name": "  groceries ", "type": "EXPENSE"})

    @pytest.mark.asyncio
    async def test_same_name_for_other_user(self, categories, groceries):
        other = await categories.create_category(OTHER_USER, {"name": "Groceries", "type": "EXPENSE"})
        assert other.id != groceries.id

    @pytest.mark.asyncio
    async def test_invalid_type(self, categories):
        with pytest.raises(ValidationError):
            await categories.create_category(USER, {"name": "Misc", "type": "OTHER"})

    @pytest.mark.asyncio
    async def test_list_grouped_by_type(self, categories, groceries):
        await categories.create_category(USER, {"name": "Salary", "type": "INCOME"})
        await categories.create_category(USER, {"name": "bills", "type": "EXPENSE"})

        listed = [(c.type.value, c.name) for c in await categories.list_categories(USER)]

        assert listed == [("EXPENSE", "bills"), ("EXPENSE", "Groceries"), ("INCOME", "Salary")]

    @pytest.mark.asyncio
    async def test_rename(self, categories, groceries):
        await categories.create_category(USER, {"name": "Dining", "type": "EXPENSE"})

        renamed = await categories.update_category(USER, groceries.id, {"name": "GROCERIES"})
        assert renamed.name == "GROCERIES"

        with pytest.raises(DuplicateError):
            await categories.update_category(USER, groceries.id, {"name": "dining"})

    @pytest.mark.asyncio
    async def test_other_user_cannot_touch(self, categories, groceries):
        with pytest.raises(NotFoundError):
            await categories.get_category(OTHER_USER, groceries.id)
        with pytest.raises(NotFoundError):
            await categories.delete_category(OTHER_USER, groceries.id)

    @pytest.mark.asyncio
    async def test_delete_blocked_while_in_use(self, categories, engine, account, groceries):
        tx = await engine.create_transaction(USER, expense(account, category_id=groceries.id))

        with pytest.raises(HasDependentsError):
            await categories.delete_category(USER, groceries.id)

        await engine.set_category(USER, tx.id, None)
        await categories.delete_category(USER, groceries.id)

        assert await categories.list_categories(USER) == []
        recreated = await categories.create_category(USER, {"name": "Groceries", "type": "EXPENSE"})
        assert recreated.id != groceries.id
