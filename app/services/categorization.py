import logging
from typing import List, Optional

from sqlalchemy import select, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import unit_of_work
from app.core.errors import InvalidInputError, NotFoundError
from app.intelligence.matcher import (
    Suggestion,
    clean_pattern,
    extract_pattern,
    match_rule,
    score_rules,
)
from app.models.category import Category, CategoryRule
from app.models.transaction import Transaction
from app.schemas.category import (
    ApplySimilarResponse,
    AutoCategorizeResponse,
    BulkAssignResponse,
    CategorizationDetail,
    CategoryRef,
    LearnedRuleResponse,
    SimilarTransactionsResponse,
    SuggestionResponse,
    UncategorizedTransaction,
)
from app.schemas.transaction import TransactionResponse
from app.services.categories import CategoryService
from app.services.rules import RuleService, to_rule_response

logger = logging.getLogger(__name__)

MAX_LEARNED_PRIORITY = 20


class CategorizationService:
    @staticmethod
    async def suggest_category(db: AsyncSession, description: str, user_id: int) -> Optional[Suggestion]:
        """Best rule for a description with a confidence score.

        Substring hits on the cleaned rule pattern score 0.9 plus a small bonus
        for pattern length and priority. When nothing matches literally, each
        word of the description is compared to each pattern by edit distance
        and close words score at 70% of their similarity.
        """
        rules = await RuleService.get_active_rules(db, user_id)
        return score_rules(description, rules)

    @staticmethod
    async def get_category_by_description(db: AsyncSession, description: Optional[str], user_id: int) -> CategoryRef:
        if description and description.strip():
            rules = await RuleService.get_active_rules(db, user_id)
            rule = match_rule(description, rules)
            if rule is not None:
                return CategoryRef(id=rule.category_id, name=rule.category_name)
        return await CategoryService.get_fallback(db, user_id)

    @staticmethod
    async def _get_transaction(db: AsyncSession, transaction_id: int, user_id: int) -> Transaction:
        result = await db.execute(
            select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction not found")
        return transaction

    @staticmethod
    async def auto_assign_category(db: AsyncSession, transaction_id: int, user_id: int) -> CategoryRef:
        transaction = await CategorizationService._get_transaction(db, transaction_id, user_id)
        category = await CategorizationService.get_category_by_description(db, transaction.description, user_id)

        async with unit_of_work(db):
            transaction.category_id = category.id

        return category

    @staticmethod
    async def bulk_assign_categories(
        db: AsyncSession, user_id: int, transaction_ids: Optional[List[int]] = None
    ) -> BulkAssignResponse:
        """Re-run rule matching over uncategorized (or fallback-categorized) transactions.

        With explicit ids, rows that already carry a real category are
        counted as skipped instead of being overwritten.
        """
        if transaction_ids is not None and not transaction_ids:
            return BulkAssignResponse(total_processed=0, updated=0, unchanged=0, skipped=0)

        fallback = await CategoryService.get_fallback(db, user_id)
        rules = await RuleService.get_active_rules(db, user_id)

        query = select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id)
        if transaction_ids is not None:
            query = query.where(Transaction.id.in_(transaction_ids))
        else:
            query = query.where(or_(Transaction.category_id.is_(None), Transaction.category_id == fallback.id))
        result = await db.execute(query)
        transactions = result.scalars().all()

        updated = unchanged = skipped = 0
        async with unit_of_work(db):
            for transaction in transactions:
                if transaction.category_id not in (None, fallback.id):
                    logger.debug("Transaction %s already categorized, skipping", transaction.id)
                    skipped += 1
                    continue

                rule = match_rule(transaction.description, rules)
                category_id = rule.category_id if rule else fallback.id
                if transaction.category_id == category_id:
                    logger.debug("Transaction %s unchanged", transaction.id)
                    unchanged += 1
                else:
                    logger.debug("Transaction %s assigned category %s", transaction.id, category_id)
                    transaction.category_id = category_id
                    updated += 1

        logger.info("Bulk assign for user %s: %s updated, %s unchanged, %s skipped",
                    user_id, updated, unchanged, skipped)
        return BulkAssignResponse(
            total_processed=len(transactions),
            updated=updated,
            unchanged=unchanged,
            skipped=skipped,
        )

    @staticmethod
    async def _learn_rule(
        db: AsyncSession, description: str, category_id: int, user_id: int
    ) -> tuple[CategoryRule, Category, bool]:
        """Insert-or-get the rule for (user, pattern, category). Flushes only.

        Returns the rule, its category and whether an active rule already
        existed. An inactive rule for the same pair is switched back on.
        """
        pattern = extract_pattern(description)
        if pattern is None:
            raise InvalidInputError("Could not extract pattern from description")

        category = await CategoryService.get_visible(db, category_id, user_id)
        priority = min(len(clean_pattern(pattern)) * 2, MAX_LEARNED_PRIORITY)

        stmt = (
            sqlite_insert(CategoryRule)
            .values(user_id=user_id, pattern=pattern, category_id=category.id, priority=priority, is_active=True)
            .on_conflict_do_nothing(index_elements=["user_id", "pattern", "category_id"])
        )
        inserted = (await db.execute(stmt)).rowcount == 1

        result = await db.execute(
            select(CategoryRule).where(
                CategoryRule.user_id == user_id,
                CategoryRule.pattern == pattern,
                CategoryRule.category_id == category.id,
            )
        )
        rule = result.scalar_one()

        existing = not inserted
        if existing and not rule.is_active:
            rule.is_active = True
            existing = False
            await db.flush()

        if not existing:
            logger.info("Learned rule %s -> %s for user %s", pattern, category.name, user_id)
        return rule, category, existing

    @staticmethod
    async def learn_from_categorization(
        db: AsyncSession, description: str, category_id: int, user_id: int
    ) -> LearnedRuleResponse:
        async with unit_of_work(db):
            rule, category, existing = await CategorizationService._learn_rule(db, description, category_id, user_id)

        return LearnedRuleResponse(
            **to_rule_response(rule, category.name).model_dump(),
            existing=existing,
        )

    @staticmethod
    async def auto_categorize(
        db: AsyncSession, user_id: int, transaction_ids: Optional[List[int]] = None
    ) -> AutoCategorizeResponse:
        if transaction_ids is not None and not transaction_ids:
            return AutoCategorizeResponse(categorized=0, skipped=0, details=[])

        rules = await RuleService.get_active_rules(db, user_id)

        query = select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id)
        if transaction_ids is not None:
            query = query.where(Transaction.id.in_(transaction_ids))
        else:
            query = query.where(Transaction.category_id.is_(None))
        result = await db.execute(query)
        found = {t.id: t for t in result.scalars().all()}

        order = list(dict.fromkeys(transaction_ids)) if transaction_ids is not None else list(found)
        threshold = settings.AUTO_CATEGORIZE_MIN_CONFIDENCE
        categorized = skipped = 0
        details = []

        async with unit_of_work(db):
            for transaction_id in order:
                transaction = found.get(transaction_id)
                if transaction is None:
                    skipped += 1
                    details.append(CategorizationDetail(
                        transaction_id=transaction_id, status="skipped", reason="not_found",
                    ))
                    continue

                if transaction.category_id is not None:
                    skipped += 1
                    details.append(CategorizationDetail(
                        transaction_id=transaction.id,
                        description=transaction.description,
                        category_id=transaction.category_id,
                        status="skipped",
                        reason="has_category",
                    ))
                    continue

                suggestion = score_rules(transaction.description, rules)
                if suggestion is None or suggestion.confidence < threshold:
                    skipped += 1
                    details.append(CategorizationDetail(
                        transaction_id=transaction.id,
                        description=transaction.description,
                        category_id=suggestion.category_id if suggestion else None,
                        category_name=suggestion.category_name if suggestion else None,
                        confidence=suggestion.confidence if suggestion else 0.0,
                        status="skipped",
                        reason="low_confidence" if suggestion else "no_match",
                    ))
                    continue

                transaction.category_id = suggestion.category_id
                categorized += 1
                details.append(CategorizationDetail(
                    transaction_id=transaction.id,
                    description=transaction.description,
                    category_id=suggestion.category_id,
                    category_name=suggestion.category_name,
                    confidence=suggestion.confidence,
                    status="categorized",
                ))

        for detail in details:
            logger.debug("Transaction %s %s: %s", detail.transaction_id, detail.status,
                         detail.reason or detail.category_name)
        logger.info("Auto-categorized %s transactions for user %s (%s skipped)", categorized, user_id, skipped)
        return AutoCategorizeResponse(categorized=categorized, skipped=skipped, details=details)

    @staticmethod
    async def get_uncategorized_transactions(
        db: AsyncSession, user_id: int, limit: int = 50
    ) -> List[UncategorizedTransaction]:
        rules = await RuleService.get_active_rules(db, user_id)
        query = (
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.category_id.is_(None))
            .order_by(Transaction.trx_date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        result = await db.execute(query)

        items = []
        for transaction in result.scalars().all():
            suggestion = score_rules(transaction.description, rules)
            items.append(UncategorizedTransaction(
                **TransactionResponse.model_validate(transaction).model_dump(),
                suggestion=SuggestionResponse.model_validate(suggestion) if suggestion else None,
            ))
        return items

    @staticmethod
    async def _similar_transactions(
        db: AsyncSession,
        pattern: str,
        user_id: int,
        exclude_id: Optional[int] = None,
        only_uncategorized: bool = False,
    ) -> List[Transaction]:
        query = (
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.description.ilike(f"%{clean_pattern(pattern)}%"),
            )
            .order_by(Transaction.trx_date.desc(), Transaction.id.desc())
        )
        if exclude_id is not None:
            query = query.where(Transaction.id != exclude_id)
        if only_uncategorized:
            fallback = await CategoryService.find_fallback(db, user_id)
            if fallback is not None:
                query = query.where(or_(Transaction.category_id.is_(None), Transaction.category_id == fallback.id))
            else:
                query = query.where(Transaction.category_id.is_(None))

        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def find_similar_transactions(
        db: AsyncSession,
        description: str,
        user_id: int,
        exclude_id: Optional[int] = None,
        only_uncategorized: bool = False,
    ) -> SimilarTransactionsResponse:
        pattern = extract_pattern(description)
        if pattern is None:
            return SimilarTransactionsResponse(pattern=None, count=0, transactions=[])

        transactions = await CategorizationService._similar_transactions(
            db, pattern, user_id, exclude_id=exclude_id, only_uncategorized=only_uncategorized
        )
        return SimilarTransactionsResponse(
            pattern=pattern,
            count=len(transactions),
            transactions=[TransactionResponse.model_validate(t) for t in transactions],
        )

    @staticmethod
    async def apply_to_similar_transactions(
        db: AsyncSession,
        description: str,
        category_id: int,
        user_id: int,
        exclude_id: Optional[int] = None,
        only_uncategorized: bool = False,
    ) -> ApplySimilarResponse:
        """Learn a rule from the description and recategorize every matching transaction.

        The rule insert and the transaction updates commit together.
        """
        async with unit_of_work(db):
            rule, category, existing = await CategorizationService._learn_rule(db, description, category_id, user_id)
            transactions = await CategorizationService._similar_transactions(
                db, rule.pattern, user_id, exclude_id=exclude_id, only_uncategorized=only_uncategorized
            )
            for transaction in transactions:
                transaction.category_id = category.id

        updated = len(transactions)
        if updated:
            message = f"Applied {category.name} to {updated} similar transactions"
        else:
            message = "No similar transactions found"

        logger.info("Applied %s to %s transactions matching %s for user %s", category.name, updated, rule.pattern, user_id)
        return ApplySimilarResponse(
            pattern=rule.pattern,
            category_id=category.id,
            category_name=category.name,
            updated=updated,
            rule=LearnedRuleResponse(**to_rule_response(rule, category.name).model_dump(), existing=existing),
            message=message,
        )
