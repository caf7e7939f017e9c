import logging
from typing import List, Optional

import pandas as pd
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import unit_of_work
from app.core.errors import InvalidInputError, NotFoundError
from app.intelligence.recurrence import Frequency, RecurringPatternAnalyzer, frequency_bucket
from app.models.recurring import RecurringPattern
from app.models.transaction import Transaction
from app.schemas.recurring import (
    DeletePatternResponse,
    DetectedPatternResponse,
    PatternCreate,
    PatternResponse,
    PatternUpdate,
    RegularPaymentsResponse,
)
from app.schemas.transaction import TransactionResponse
from app.services.categories import CategoryService

logger = logging.getLogger(__name__)

VALID_FREQUENCIES = [f.value for f in Frequency]


def _validate_frequency(frequency: Optional[str]) -> Optional[str]:
    if frequency is None:
        return None
    if frequency not in VALID_FREQUENCIES:
        raise InvalidInputError(f"Invalid frequency. Must be one of: {', '.join(VALID_FREQUENCIES)}")
    return frequency


class RecurringService:
    @staticmethod
    async def _get_pattern(db: AsyncSession, pattern_id: int, user_id: int) -> RecurringPattern:
        result = await db.execute(
            select(RecurringPattern).where(RecurringPattern.id == pattern_id, RecurringPattern.user_id == user_id)
        )
        pattern = result.scalar_one_or_none()
        if pattern is None:
            raise NotFoundError("Pattern not found")
        return pattern

    @staticmethod
    async def _refresh_stats(db: AsyncSession, pattern: RecurringPattern):
        """Recount linked transactions and move last_seen forward. Flushes first."""
        await db.flush()
        result = await db.execute(
            select(func.count(Transaction.id), func.max(Transaction.trx_date))
            .where(Transaction.recurring_group_id == pattern.id)
        )
        count, latest = result.one()
        pattern.occurrence_count = count
        if latest is not None and (pattern.last_seen is None or latest > pattern.last_seen):
            pattern.last_seen = latest

    @staticmethod
    async def _link(db: AsyncSession, pattern: RecurringPattern, transaction_ids: List[int], user_id: int) -> int:
        result = await db.execute(
            select(Transaction).where(Transaction.id.in_(transaction_ids), Transaction.user_id == user_id)
        )
        transactions = result.scalars().all()
        await RecurringService._attach(db, pattern, transactions)
        return len(transactions)

    @staticmethod
    async def _attach(db: AsyncSession, pattern: RecurringPattern, transactions):
        """Point transactions at a pattern and recount any pattern they leave."""
        previous = {
            t.recurring_group_id for t in transactions
            if t.recurring_group_id is not None and t.recurring_group_id != pattern.id
        }
        for transaction in transactions:
            transaction.is_recurring = True
            transaction.recurring_group_id = pattern.id
        for pattern_id in sorted(previous):
            left = await db.get(RecurringPattern, pattern_id)
            if left is not None:
                await RecurringService._refresh_stats(db, left)

    @staticmethod
    async def detect_recurring_patterns(
        db: AsyncSession, user_id: int, account_id: Optional[int] = None
    ) -> List[DetectedPatternResponse]:
        """Scan transaction history for recurring payments and persist what is found.

        Transactions are grouped by exact description. A group qualifies with
        at least three rows, amounts varying by no more than 10% (coefficient
        of variation) and an average gap that falls in one of the frequency
        bands. Patterns are upserted on description; a pattern the user has
        deactivated is left alone.
        """
        query = select(Transaction).where(Transaction.user_id == user_id, Transaction.is_transfer.is_(False))
        if account_id is not None:
            query = query.where(Transaction.account_id == account_id)
        result = await db.execute(query.order_by(Transaction.trx_date, Transaction.id))
        transactions = result.scalars().all()
        if not transactions:
            return []

        df = pd.DataFrame([
            {
                "id": t.id,
                "trx_date": t.trx_date,
                "description": t.description,
                "debit": t.debit,
                "credit": t.credit,
                "category_id": t.category_id,
            }
            for t in transactions
        ])
        candidates = RecurringPatternAnalyzer(df).candidates()
        if not candidates:
            return []

        classifications = await CategoryService.get_classifications(db, (c.category_id for c in candidates))
        subscription_groups = {c.lower() for c in settings.SUBSCRIPTION_CLASSIFICATIONS}
        by_id = {t.id: t for t in transactions}

        detected = []
        async with unit_of_work(db):
            for candidate in candidates:
                result = await db.execute(
                    select(RecurringPattern).where(
                        RecurringPattern.user_id == user_id,
                        RecurringPattern.description_pattern == candidate.description,
                    ).order_by(RecurringPattern.id)
                )
                pattern = result.scalars().first()
                if pattern is not None and not pattern.is_active:
                    logger.debug("Skipping deactivated pattern %s", pattern.id)
                    continue

                if pattern is None:
                    pattern = RecurringPattern(user_id=user_id, description_pattern=candidate.description)
                    db.add(pattern)

                classification = (classifications.get(candidate.category_id) or "").lower()
                pattern.merchant_name = candidate.merchant_name
                pattern.typical_amount = candidate.typical_amount
                pattern.typical_day = candidate.typical_day
                pattern.frequency = candidate.frequency.value
                pattern.category_id = candidate.category_id
                pattern.occurrence_count = candidate.occurrence_count
                pattern.last_seen = candidate.last_seen
                pattern.is_subscription = classification in subscription_groups
                await db.flush()

                await RecurringService._attach(db, pattern, [by_id[i] for i in candidate.transaction_ids])

                detected.append(DetectedPatternResponse(
                    **PatternResponse.model_validate(pattern).model_dump(),
                    transaction_ids=candidate.transaction_ids,
                ))

        logger.info("Detected %s recurring patterns for user %s", len(detected), user_id)
        return detected

    @staticmethod
    async def get_regular_payments(db: AsyncSession, user_id: int) -> RegularPaymentsResponse:
        result = await db.execute(
            select(RecurringPattern)
            .where(RecurringPattern.user_id == user_id, RecurringPattern.is_active.is_(True))
            .order_by(RecurringPattern.typical_amount.desc(), RecurringPattern.id)
        )

        buckets = {"weekly": [], "monthly": [], "annual": []}
        for pattern in result.scalars().all():
            bucket = frequency_bucket(pattern.frequency)
            if bucket is not None:
                buckets[bucket].append(PatternResponse.model_validate(pattern))
        return RegularPaymentsResponse(**buckets)

    @staticmethod
    async def mark_as_recurring(db: AsyncSession, transaction_ids: List[int], pattern_id: int, user_id: int) -> int:
        pattern = await RecurringService._get_pattern(db, pattern_id, user_id)
        if not transaction_ids:
            return 0

        async with unit_of_work(db):
            changes = await RecurringService._link(db, pattern, transaction_ids, user_id)
            await RecurringService._refresh_stats(db, pattern)
        return changes

    @staticmethod
    async def list_patterns(db: AsyncSession, user_id: int, include_inactive: bool = False) -> List[PatternResponse]:
        query = (
            select(RecurringPattern)
            .where(RecurringPattern.user_id == user_id)
            .order_by(RecurringPattern.last_seen.desc(), RecurringPattern.id)
        )
        if not include_inactive:
            query = query.where(RecurringPattern.is_active.is_(True))
        result = await db.execute(query)
        return [PatternResponse.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def get_pattern(db: AsyncSession, pattern_id: int, user_id: int) -> PatternResponse:
        pattern = await RecurringService._get_pattern(db, pattern_id, user_id)
        return PatternResponse.model_validate(pattern)

    @staticmethod
    async def get_pattern_transactions(db: AsyncSession, pattern_id: int, user_id: int) -> List[TransactionResponse]:
        pattern = await RecurringService._get_pattern(db, pattern_id, user_id)
        result = await db.execute(
            select(Transaction)
            .where(Transaction.recurring_group_id == pattern.id, Transaction.user_id == user_id)
            .order_by(Transaction.trx_date.desc(), Transaction.id.desc())
        )
        return [TransactionResponse.model_validate(t) for t in result.scalars().all()]

    @staticmethod
    async def create_pattern(db: AsyncSession, user_id: int, data: PatternCreate) -> PatternResponse:
        description = (data.description_pattern or "").strip()
        if not description:
            raise InvalidInputError("Description pattern cannot be empty")
        frequency = _validate_frequency(data.frequency)
        if data.category_id is not None:
            await CategoryService.get_visible(db, data.category_id, user_id)

        async with unit_of_work(db):
            pattern = RecurringPattern(
                user_id=user_id,
                description_pattern=description,
                merchant_name=data.merchant_name,
                typical_amount=data.typical_amount,
                typical_day=data.typical_day,
                frequency=frequency,
                category_id=data.category_id,
                is_subscription=data.is_subscription,
                occurrence_count=0,
                is_active=True,
            )
            db.add(pattern)
            await db.flush()
            if data.transaction_ids:
                await RecurringService._link(db, pattern, data.transaction_ids, user_id)
                await RecurringService._refresh_stats(db, pattern)

        return PatternResponse.model_validate(pattern)

    @staticmethod
    async def update_pattern(db: AsyncSession, pattern_id: int, user_id: int, changes: PatternUpdate) -> PatternResponse:
        """Apply partial updates. A category change is copied onto every linked transaction."""
        pattern = await RecurringService._get_pattern(db, pattern_id, user_id)
        updates = {k: v for k, v in changes.model_dump(exclude_unset=True).items() if v is not None}

        if "frequency" in updates:
            _validate_frequency(updates["frequency"])
        if "category_id" in updates:
            await CategoryService.get_visible(db, updates["category_id"], user_id)

        async with unit_of_work(db):
            for field, value in updates.items():
                setattr(pattern, field, value)

            if "category_id" in updates:
                result = await db.execute(
                    select(Transaction).where(Transaction.recurring_group_id == pattern.id)
                )
                for transaction in result.scalars().all():
                    transaction.category_id = updates["category_id"]

        return PatternResponse.model_validate(pattern)

    @staticmethod
    async def delete_pattern(db: AsyncSession, pattern_id: int, user_id: int) -> DeletePatternResponse:
        """Deactivate a pattern and unlink its transactions. The row is kept."""
        pattern = await RecurringService._get_pattern(db, pattern_id, user_id)

        async with unit_of_work(db):
            result = await db.execute(select(Transaction).where(Transaction.recurring_group_id == pattern.id))
            linked = result.scalars().all()
            for transaction in linked:
                transaction.is_recurring = False
                transaction.recurring_group_id = None
            pattern.is_active = False

        logger.info("Deactivated pattern %s, unlinked %s transactions", pattern.id, len(linked))
        return DeletePatternResponse(deleted=True, pattern_id=pattern.id, transactions_unlinked=len(linked))

    @staticmethod
    async def unlink_transaction(db: AsyncSession, transaction_id: int, user_id: int) -> TransactionResponse:
        result = await db.execute(
            select(Transaction).where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction not found")

        async with unit_of_work(db):
            previous_id = transaction.recurring_group_id
            transaction.is_recurring = False
            transaction.recurring_group_id = None
            if previous_id is not None:
                pattern = await db.get(RecurringPattern, previous_id)
                if pattern is not None:
                    await RecurringService._refresh_stats(db, pattern)

        return TransactionResponse.model_validate(transaction)
