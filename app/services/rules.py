from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import unit_of_work
from app.core.errors import InvalidInputError, NotFoundError
from app.intelligence.matcher import RuleSnapshot, order_rules
from app.models.category import Category, CategoryRule
from app.schemas.category import RuleCreate, RuleResponse, RuleUpdate
from app.services.categories import CategoryService


def to_rule_response(rule: CategoryRule, category_name: Optional[str]) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        pattern=rule.pattern,
        category_id=rule.category_id,
        category_name=category_name,
        priority=rule.priority,
        is_active=rule.is_active,
        created_at=rule.created_at,
    )


class RuleService:
    @staticmethod
    async def get_active_rules(db: AsyncSession, user_id: int) -> list[RuleSnapshot]:
        """Snapshot of the user's active rules in match order."""
        query = (
            select(CategoryRule, Category.name)
            .join(Category, Category.id == CategoryRule.category_id)
            .where(CategoryRule.user_id == user_id, CategoryRule.is_active.is_(True))
        )
        result = await db.execute(query)
        return order_rules(
            RuleSnapshot(
                id=rule.id,
                pattern=rule.pattern,
                category_id=rule.category_id,
                priority=rule.priority,
                category_name=name,
                created_at=rule.created_at,
            )
            for rule, name in result.all()
        )

    @staticmethod
    async def list_rules(db: AsyncSession, user_id: int, include_inactive: bool = False) -> list[RuleResponse]:
        query = (
            select(CategoryRule, Category.name)
            .join(Category, Category.id == CategoryRule.category_id)
            .where(CategoryRule.user_id == user_id)
            .order_by(CategoryRule.priority.desc(), CategoryRule.created_at, CategoryRule.id)
        )
        if not include_inactive:
            query = query.where(CategoryRule.is_active.is_(True))
        result = await db.execute(query)
        return [to_rule_response(rule, name) for rule, name in result.all()]

    @staticmethod
    async def _get_owned(db: AsyncSession, rule_id: int, user_id: int) -> CategoryRule:
        result = await db.execute(
            select(CategoryRule).where(CategoryRule.id == rule_id, CategoryRule.user_id == user_id)
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundError("Rule not found")
        return rule

    @staticmethod
    async def _ensure_unique(db: AsyncSession, user_id: int, pattern: str, category_id: int, rule_id: Optional[int] = None):
        query = select(CategoryRule.id).where(
            CategoryRule.user_id == user_id,
            CategoryRule.pattern == pattern,
            CategoryRule.category_id == category_id,
        )
        if rule_id is not None:
            query = query.where(CategoryRule.id != rule_id)
        result = await db.execute(query.limit(1))
        if result.scalar_one_or_none() is not None:
            raise InvalidInputError("A rule with this pattern already exists for the category")

    @staticmethod
    async def add_rule(db: AsyncSession, user_id: int, data: RuleCreate) -> RuleResponse:
        pattern = (data.pattern or "").strip()
        if not pattern:
            raise InvalidInputError("Pattern cannot be empty")
        category = await CategoryService.get_visible(db, data.category_id, user_id)
        await RuleService._ensure_unique(db, user_id, pattern, category.id)

        async with unit_of_work(db):
            rule = CategoryRule(
                user_id=user_id,
                pattern=pattern,
                category_id=category.id,
                priority=data.priority,
                is_active=True,
            )
            db.add(rule)

        return to_rule_response(rule, category.name)

    @staticmethod
    async def update_rule(db: AsyncSession, rule_id: int, user_id: int, changes: RuleUpdate) -> RuleResponse:
        rule = await RuleService._get_owned(db, rule_id, user_id)
        updates = changes.model_dump(exclude_unset=True)

        if "pattern" in updates:
            updates["pattern"] = (updates["pattern"] or "").strip()
            if not updates["pattern"]:
                raise InvalidInputError("Pattern cannot be empty")

        if updates.get("category_id") is not None:
            await CategoryService.get_visible(db, updates["category_id"], user_id)
        else:
            updates.pop("category_id", None)

        if updates.get("priority") is None:
            updates.pop("priority", None)
        if updates.get("is_active") is None:
            updates.pop("is_active", None)

        await RuleService._ensure_unique(
            db, user_id,
            updates.get("pattern", rule.pattern),
            updates.get("category_id", rule.category_id),
            rule_id=rule.id,
        )

        async with unit_of_work(db):
            for field, value in updates.items():
                setattr(rule, field, value)

        category = await CategoryService.get_visible(db, rule.category_id, user_id)
        return to_rule_response(rule, category.name)

    @staticmethod
    async def delete_rule(db: AsyncSession, rule_id: int, user_id: int) -> RuleResponse:
        rule = await RuleService._get_owned(db, rule_id, user_id)
        category = await db.get(Category, rule.category_id)
        response = to_rule_response(rule, category.name if category else None)

        async with unit_of_work(db):
            await db.delete(rule)

        return response
