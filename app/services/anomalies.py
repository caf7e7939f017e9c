import logging
from datetime import date, timedelta
from typing import List, Optional

import pandas as pd
from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import unit_of_work
from app.core.errors import InvalidInputError, NotFoundError
from app.intelligence.anomaly import DetectedAnomaly, TransactionAnomalyDetector, detect_category_spikes
from app.models.anomaly import Anomaly
from app.models.category import Category
from app.models.transaction import Transaction
from app.schemas.anomaly import (
    AnomalyActionResponse,
    AnomalyItem,
    AnomalyStatsResponse,
    DetectedAnomalyItem,
    DetectResponse,
)

logger = logging.getLogger(__name__)


class AnomalyService:
    @staticmethod
    def get_system_date() -> date:
        """Reference 'today'. Pinned by REFERENCE_DATE for demos against fixed data."""
        return settings.REFERENCE_DATE or date.today()

    @staticmethod
    async def _window(db: AsyncSession, user_id: int, start: date, end: date) -> pd.DataFrame:
        query = (
            select(
                Transaction.id,
                Transaction.trx_date,
                Transaction.description,
                Transaction.debit,
                Transaction.category_id,
                Category.name.label("category_name"),
            )
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(
                Transaction.user_id == user_id,
                Transaction.trx_date >= start,
                Transaction.trx_date <= end,
                Transaction.debit > 0,
                Transaction.is_transfer.is_(False),
            )
        )
        result = await db.execute(query)
        return pd.DataFrame([row._asdict() for row in result.all()])

    @staticmethod
    async def _history(db: AsyncSession, user_id: int, end: date) -> pd.DataFrame:
        result = await db.execute(
            select(Transaction.id, Transaction.trx_date, Transaction.description)
            .where(Transaction.user_id == user_id, Transaction.trx_date <= end)
        )
        return pd.DataFrame([row._asdict() for row in result.all()])

    @staticmethod
    async def _category_spikes(db: AsyncSession, user_id: int, reference: date) -> List[DetectedAnomaly]:
        current_month = reference.strftime("%Y-%m")
        month = func.strftime("%Y-%m", Transaction.trx_date)
        spending = and_(
            Transaction.user_id == user_id,
            Transaction.debit > 0,
            Transaction.is_transfer.is_(False),
            Transaction.category_id.isnot(None),
        )

        history = await db.execute(
            select(Transaction.category_id, month.label("month"), func.sum(Transaction.debit).label("total"))
            .where(spending, month < current_month)
            .group_by(Transaction.category_id, month)
        )
        current = await db.execute(
            select(Transaction.category_id, Category.name.label("category_name"),
                   func.sum(Transaction.debit).label("total"))
            .join(Category, Category.id == Transaction.category_id)
            .where(spending, month == current_month)
            .group_by(Transaction.category_id, Category.name)
        )
        return detect_category_spikes(
            pd.DataFrame([row._asdict() for row in history.all()]),
            pd.DataFrame([row._asdict() for row in current.all()]),
        )

    @staticmethod
    async def _persist(db: AsyncSession, anomalies: List[DetectedAnomaly], user_id: int) -> int:
        """Insert anomalies not already recorded. Dismissed records still block re-insertion."""
        inserted = 0
        async with unit_of_work(db):
            for anomaly in anomalies:
                query = select(Anomaly.id).where(
                    Anomaly.user_id == user_id,
                    Anomaly.anomaly_type == anomaly.anomaly_type.value,
                )
                if anomaly.transaction_id is not None:
                    query = query.where(Anomaly.transaction_id == anomaly.transaction_id)
                else:
                    query = query.where(Anomaly.transaction_id.is_(None), Anomaly.category_id == anomaly.category_id)

                result = await db.execute(query.limit(1))
                if result.scalar_one_or_none() is not None:
                    continue

                db.add(Anomaly(
                    user_id=user_id,
                    transaction_id=anomaly.transaction_id,
                    category_id=anomaly.category_id,
                    anomaly_type=anomaly.anomaly_type.value,
                    severity=anomaly.severity.value,
                    description=anomaly.description,
                ))
                inserted += 1
        return inserted

    @staticmethod
    async def detect_anomalies(
        db: AsyncSession,
        user_id: int,
        days: Optional[int] = None,
        reference_date: Optional[date] = None,
    ) -> DetectResponse:
        """Run every detection pass over the trailing window and record new findings.

        The window is [reference - days, reference]. Unusual amounts, new
        merchants and duplicates look at window debits; category spikes
        compare the reference month against earlier monthly totals.
        """
        days = settings.ANOMALY_WINDOW_DAYS if days is None else days
        if days <= 0:
            raise InvalidInputError("days must be a positive integer")

        reference = reference_date or AnomalyService.get_system_date()
        start = reference - timedelta(days=days)

        window = await AnomalyService._window(db, user_id, start, reference)
        history = await AnomalyService._history(db, user_id, reference)

        detector = TransactionAnomalyDetector(window)
        anomalies = detector.unusual_amounts()
        anomalies += detector.new_merchants(history)
        anomalies += detector.potential_duplicates()
        anomalies += await AnomalyService._category_spikes(db, user_id, reference)

        inserted = await AnomalyService._persist(db, anomalies, user_id)
        logger.info("Anomaly detection for user %s: %s found, %s new", user_id, len(anomalies), inserted)

        return DetectResponse(
            count=len(anomalies),
            inserted=inserted,
            anomalies=[DetectedAnomalyItem.model_validate(a) for a in anomalies],
        )

    @staticmethod
    async def get_anomalies(
        db: AsyncSession, user_id: int, include_dismissed: bool = False, limit: int = 50
    ) -> List[AnomalyItem]:
        query = (
            select(
                Anomaly,
                Transaction.description.label("transaction_description"),
                Transaction.debit.label("transaction_amount"),
                Transaction.trx_date.label("transaction_date"),
            )
            .outerjoin(Transaction, Transaction.id == Anomaly.transaction_id)
            .where(Anomaly.user_id == user_id)
            .order_by(Anomaly.detected_at.desc(), Anomaly.id.desc())
            .limit(limit)
        )
        if not include_dismissed:
            query = query.where(Anomaly.is_dismissed.is_(False))

        result = await db.execute(query)
        items = []
        for anomaly, description, amount, trx_date in result.all():
            item = AnomalyItem.model_validate(anomaly)
            items.append(item.model_copy(update={
                "transaction_description": description,
                "transaction_amount": amount,
                "transaction_date": trx_date,
            }))
        return items

    @staticmethod
    async def _get_owned(db: AsyncSession, anomaly_id: int, user_id: int) -> Anomaly:
        result = await db.execute(select(Anomaly).where(Anomaly.id == anomaly_id, Anomaly.user_id == user_id))
        anomaly = result.scalar_one_or_none()
        if anomaly is None:
            raise NotFoundError("Anomaly not found")
        return anomaly

    @staticmethod
    async def dismiss(db: AsyncSession, anomaly_id: int, user_id: int) -> AnomalyActionResponse:
        anomaly = await AnomalyService._get_owned(db, anomaly_id, user_id)
        async with unit_of_work(db):
            anomaly.is_dismissed = True
        return AnomalyActionResponse(id=anomaly.id, dismissed=True, confirmed_fraud=anomaly.is_confirmed_fraud)

    @staticmethod
    async def confirm_fraud(db: AsyncSession, anomaly_id: int, user_id: int) -> AnomalyActionResponse:
        anomaly = await AnomalyService._get_owned(db, anomaly_id, user_id)
        async with unit_of_work(db):
            anomaly.is_confirmed_fraud = True
        logger.warning("Anomaly %s confirmed as fraud by user %s", anomaly.id, user_id)
        return AnomalyActionResponse(id=anomaly.id, dismissed=anomaly.is_dismissed, confirmed_fraud=True)

    @staticmethod
    async def get_anomaly_stats(db: AsyncSession, user_id: int) -> AnomalyStatsResponse:
        by_type = await db.execute(
            select(Anomaly.anomaly_type, func.count(Anomaly.id))
            .where(Anomaly.user_id == user_id)
            .group_by(Anomaly.anomaly_type)
        )
        by_severity = await db.execute(
            select(Anomaly.severity, func.count(Anomaly.id))
            .where(Anomaly.user_id == user_id)
            .group_by(Anomaly.severity)
        )
        totals = await db.execute(
            select(
                func.count(Anomaly.id),
                func.sum(case((Anomaly.is_dismissed.is_(True), 1), else_=0)),
                func.sum(case((Anomaly.is_confirmed_fraud.is_(True), 1), else_=0)),
                func.sum(case((and_(Anomaly.is_dismissed.is_(False), Anomaly.is_confirmed_fraud.is_(False)), 1),
                              else_=0)),
            ).where(Anomaly.user_id == user_id)
        )
        total, dismissed, fraud, pending = totals.one()

        return AnomalyStatsResponse(
            by_type={t: c for t, c in by_type.all()},
            by_severity={s: c for s, c in by_severity.all()},
            total=total or 0,
            dismissed=dismissed or 0,
            confirmed_fraud=fraud or 0,
            pending=pending or 0,
        )
