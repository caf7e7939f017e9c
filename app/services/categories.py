from typing import Iterable, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import NotFoundError
from app.models.category import Category
from app.schemas.category import CategoryRef


class CategoryService:
    """Read-only view of the category catalog as seen by one user."""

    @staticmethod
    def visible_to(user_id: int):
        return or_(Category.user_id == user_id, Category.user_id.is_(None))

    @staticmethod
    async def get_visible(db: AsyncSession, category_id: int, user_id: int) -> Category:
        query = select(Category).where(Category.id == category_id, CategoryService.visible_to(user_id))
        result = await db.execute(query)
        category = result.scalar_one_or_none()
        if category is None:
            raise NotFoundError("Category not found")
        return category

    @staticmethod
    async def find_fallback(db: AsyncSession, user_id: int) -> Optional[Category]:
        # A user's own category shadows the global one with the same name
        query = (
            select(Category)
            .where(Category.name == settings.FALLBACK_CATEGORY_NAME, CategoryService.visible_to(user_id))
            .order_by(Category.user_id.is_(None), Category.id)
            .limit(1)
        )
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_fallback(db: AsyncSession, user_id: int) -> CategoryRef:
        category = await CategoryService.find_fallback(db, user_id)
        if category is None:
            raise NotFoundError(f'Fallback category "{settings.FALLBACK_CATEGORY_NAME}" not found')
        return CategoryRef(id=category.id, name=category.name)

    @staticmethod
    async def get_classifications(db: AsyncSession, category_ids: Iterable[int]) -> dict[int, Optional[str]]:
        ids = {i for i in category_ids if i is not None}
        if not ids:
            return {}
        result = await db.execute(select(Category.id, Category.classification).where(Category.id.in_(ids)))
        return {row.id: row.classification for row in result.all()}
