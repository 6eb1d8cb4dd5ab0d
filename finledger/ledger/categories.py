"""
Category Service

User-defined INCOME / EXPENSE categories. Names are unique per user,
ignoring case. A category in use by an active transaction cannot be
deleted.
"""

from typing import Any, Optional
from uuid import UUID

from finledger.audit import AuditLogger
from finledger.ledger.errors import DuplicateError, HasDependentsError, NotFoundError
from finledger.models.ledger import Category, CategoryCreate, CategoryUpdate, utc_now
from finledger.services.storage.interface import LedgerSession, LedgerStore
from finledger.validation.validator import parse_input


class CategoryService:

    def __init__(
        self,
        store: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    @staticmethod
    async def _require(session: LedgerSession, user_id: str, category_id: UUID) -> Category:
        category = await session.get_category(user_id, category_id)
        if category is None:
            raise NotFoundError("category")
        return category

    @staticmethod
    async def _check_name_free(
        session: LedgerSession,
        user_id: str,
        name: str,
        exclude_id: Optional[UUID] = None,
    ) -> None:
        existing = await session.find_category_by_name(user_id, name)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateError(f"Category '{existing.name}' already exists")

    async def create_category(self, user_id: str, data: Any) -> Category:
        """
        Raises:
            ValidationError: Missing name or unknown type
            DuplicateError: The user already has a category with this name
        """
        category_input = parse_input(CategoryCreate, data)
        category = Category(
            user_id=user_id,
            name=category_input.name,
            type=category_input.type,
        )
        async with self._store.session() as session:
            await self._check_name_free(session, user_id, category.name)
            await session.insert_category(category)

        await self._audit.log_category_created(
            user_id, category.id, category.name, category.type.value
        )
        return category

    async def get_category(self, user_id: str, category_id: UUID) -> Category:
        async with self._store.session(readonly=True) as session:
            return await self._require(session, user_id, category_id)

    async def list_categories(self, user_id: str) -> list[Category]:
        async with self._store.session(readonly=True) as session:
            return await session.list_categories(user_id)

    async def update_category(self, user_id: str, category_id: UUID, data: Any) -> Category:
        changes = parse_input(CategoryUpdate, data).model_dump(exclude_none=True)
        async with self._store.session() as session:
            category = await self._require(session, user_id, category_id)
            if not changes:
                return category
            if "name" in changes:
                await self._check_name_free(session, user_id, changes["name"], exclude_id=category_id)
            updated = category.model_copy(update={**changes, "updated_at": utc_now()})
            await session.update_category(updated)
        return updated

    async def delete_category(self, user_id: str, category_id: UUID) -> None:
        """
        Raises:
            NotFoundError: Category absent or not owned
            HasDependentsError: Active transactions still use it
        """
        async with self._store.session() as session:
            await self._require(session, user_id, category_id)
            dependents = await session.count_category_transactions(category_id)
            if dependents:
                raise HasDependentsError("category", dependents)
            await session.soft_delete_category(category_id, utc_now())

        await self._audit.log_category_deleted(user_id, category_id)
