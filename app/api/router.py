from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.database import get_db
from app.config import settings
from app.schemas.transaction import TransactionResponse
from app.schemas.category import (
    ApplySimilarRequest, ApplySimilarResponse, AutoCategorizeRequest, AutoCategorizeResponse, BulkAssignResponse,
    CategoryRef, DescriptionRequest, FindSimilarRequest, LearnedRuleResponse, LearnRequest,
    RuleCreate, RuleResponse, RuleUpdate, SimilarTransactionsResponse, SuggestionResponse,
    UncategorizedTransaction,
)
from app.schemas.recurring import (
    DeletePatternResponse, DetectedPatternResponse, DetectRecurringRequest, MarkRecurringRequest,
    MarkRecurringResponse, PatternCreate, PatternResponse, PatternUpdate, RegularPaymentsResponse,
)
from app.schemas.anomaly import (
    AnomalyActionResponse, AnomalyItem, AnomalyStatsResponse, DetectRequest, DetectResponse,
)
from app.services.categorization import CategorizationService
from app.services.rules import RuleService
from app.services.recurring import RecurringService
from app.services.anomalies import AnomalyService

api_router = APIRouter()


def get_user_id(x_user_id: Optional[int] = Header(None)) -> int:
    return x_user_id if x_user_id is not None else settings.DEFAULT_USER_ID


# --- Categorization ---

@api_router.post("/categories/suggest", response_model=Optional[SuggestionResponse], tags=["Categorization"])
async def suggest_category(req: DescriptionRequest, user_id: int = Depends(get_user_id),
                           db: AsyncSession = Depends(get_db)):
    return await CategorizationService.suggest_category(db, req.description, user_id)


@api_router.get("/categories/match", response_model=CategoryRef, tags=["Categorization"])
async def match_category(description: str = Query(""), user_id: int = Depends(get_user_id),
                         db: AsyncSession = Depends(get_db)):
    return await CategorizationService.get_category_by_description(db, description, user_id)


@api_router.post("/categories/learn", response_model=LearnedRuleResponse, tags=["Categorization"])
async def learn_category(req: LearnRequest, user_id: int = Depends(get_user_id),
                         db: AsyncSession = Depends(get_db)):
    return await CategorizationService.learn_from_categorization(db, req.description, req.category_id, user_id)


@api_router.post("/categories/auto-categorize", response_model=AutoCategorizeResponse, tags=["Categorization"])
async def auto_categorize(req: AutoCategorizeRequest, user_id: int = Depends(get_user_id),
                          db: AsyncSession = Depends(get_db)):
    return await CategorizationService.auto_categorize(db, user_id, req.transaction_ids)


@api_router.post("/categories/auto-assign/{transaction_id}", response_model=CategoryRef, tags=["Categorization"])
async def auto_assign(transaction_id: int, user_id: int = Depends(get_user_id),
                      db: AsyncSession = Depends(get_db)):
    return await CategorizationService.auto_assign_category(db, transaction_id, user_id)


@api_router.post("/categories/bulk-assign", response_model=BulkAssignResponse, tags=["Categorization"])
async def bulk_assign(req: AutoCategorizeRequest, user_id: int = Depends(get_user_id),
                      db: AsyncSession = Depends(get_db)):
    return await CategorizationService.bulk_assign_categories(db, user_id, req.transaction_ids)


@api_router.get("/categories/uncategorized", response_model=List[UncategorizedTransaction],
                tags=["Categorization"])
async def get_uncategorized(limit: int = Query(50, gt=0, le=500), user_id: int = Depends(get_user_id),
                            db: AsyncSession = Depends(get_db)):
    return await CategorizationService.get_uncategorized_transactions(db, user_id, limit)


@api_router.post("/categories/find-similar", response_model=SimilarTransactionsResponse, tags=["Categorization"])
async def find_similar(req: FindSimilarRequest, user_id: int = Depends(get_user_id),
                       db: AsyncSession = Depends(get_db)):
    return await CategorizationService.find_similar_transactions(
        db, req.description, user_id, exclude_id=req.exclude_id, only_uncategorized=req.only_uncategorized
    )


@api_router.post("/categories/apply-to-similar", response_model=ApplySimilarResponse, tags=["Categorization"])
async def apply_to_similar(req: ApplySimilarRequest, user_id: int = Depends(get_user_id),
                           db: AsyncSession = Depends(get_db)):
    return await CategorizationService.apply_to_similar_transactions(
        db, req.description, req.category_id, user_id,
        exclude_id=req.exclude_id, only_uncategorized=req.only_uncategorized,
    )


# --- Category rules ---

@api_router.get("/category-rules", response_model=List[RuleResponse], tags=["Category Rules"])
async def list_rules(include_inactive: bool = False, user_id: int = Depends(get_user_id),
                     db: AsyncSession = Depends(get_db)):
    return await RuleService.list_rules(db, user_id, include_inactive)


@api_router.post("/category-rules", response_model=RuleResponse, status_code=201, tags=["Category Rules"])
async def add_rule(rule: RuleCreate, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await RuleService.add_rule(db, user_id, rule)


@api_router.put("/category-rules/{rule_id}", response_model=RuleResponse, tags=["Category Rules"])
async def update_rule(rule_id: int, changes: RuleUpdate, user_id: int = Depends(get_user_id),
                      db: AsyncSession = Depends(get_db)):
    return await RuleService.update_rule(db, rule_id, user_id, changes)


@api_router.delete("/category-rules/{rule_id}", response_model=RuleResponse, tags=["Category Rules"])
async def delete_rule(rule_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await RuleService.delete_rule(db, rule_id, user_id)


# --- Recurring payments ---

@api_router.post("/recurring/detect", response_model=List[DetectedPatternResponse], tags=["Recurring"])
async def detect_recurring(req: DetectRecurringRequest, user_id: int = Depends(get_user_id),
                           db: AsyncSession = Depends(get_db)):
    return await RecurringService.detect_recurring_patterns(db, user_id, req.account_id)


@api_router.get("/recurring", response_model=List[PatternResponse], tags=["Recurring"])
async def list_patterns(include_inactive: bool = False, user_id: int = Depends(get_user_id),
                        db: AsyncSession = Depends(get_db)):
    return await RecurringService.list_patterns(db, user_id, include_inactive)


@api_router.get("/recurring/regular-payments", response_model=RegularPaymentsResponse, tags=["Recurring"])
async def regular_payments(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await RecurringService.get_regular_payments(db, user_id)


@api_router.post("/recurring", response_model=PatternResponse, status_code=201, tags=["Recurring"])
async def create_pattern(data: PatternCreate, user_id: int = Depends(get_user_id),
                         db: AsyncSession = Depends(get_db)):
    return await RecurringService.create_pattern(db, user_id, data)


@api_router.delete("/recurring/transactions/{transaction_id}", response_model=TransactionResponse,
                   tags=["Recurring"])
async def unlink_transaction(transaction_id: int, user_id: int = Depends(get_user_id),
                             db: AsyncSession = Depends(get_db)):
    return await RecurringService.unlink_transaction(db, transaction_id, user_id)


@api_router.get("/recurring/{pattern_id}", response_model=PatternResponse, tags=["Recurring"])
async def get_pattern(pattern_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await RecurringService.get_pattern(db, pattern_id, user_id)


@api_router.put("/recurring/{pattern_id}", response_model=PatternResponse, tags=["Recurring"])
async def update_pattern(pattern_id: int, changes: PatternUpdate, user_id: int = Depends(get_user_id),
                         db: AsyncSession = Depends(get_db)):
    return await RecurringService.update_pattern(db, pattern_id, user_id, changes)


@api_router.delete("/recurring/{pattern_id}", response_model=DeletePatternResponse, tags=["Recurring"])
async def delete_pattern(pattern_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await RecurringService.delete_pattern(db, pattern_id, user_id)


@api_router.get("/recurring/{pattern_id}/transactions", response_model=List[TransactionResponse],
                tags=["Recurring"])
async def pattern_transactions(pattern_id: int, user_id: int = Depends(get_user_id),
                               db: AsyncSession = Depends(get_db)):
    return await RecurringService.get_pattern_transactions(db, pattern_id, user_id)


@api_router.post("/recurring/{pattern_id}/transactions", response_model=MarkRecurringResponse, tags=["Recurring"])
async def mark_recurring(pattern_id: int, req: MarkRecurringRequest, user_id: int = Depends(get_user_id),
                         db: AsyncSession = Depends(get_db)):
    changes = await RecurringService.mark_as_recurring(db, req.transaction_ids, pattern_id, user_id)
    return MarkRecurringResponse(pattern_id=pattern_id, changes=changes)


# --- Anomalies ---

@api_router.post("/anomalies/detect", response_model=DetectResponse, tags=["Anomalies"])
async def detect_anomalies(req: DetectRequest, user_id: int = Depends(get_user_id),
                           db: AsyncSession = Depends(get_db)):
    return await AnomalyService.detect_anomalies(db, user_id, req.days, req.reference_date)


@api_router.get("/anomalies", response_model=List[AnomalyItem], tags=["Anomalies"])
async def list_anomalies(include_dismissed: bool = False, limit: int = Query(50, gt=0, le=500),
                         user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnomalyService.get_anomalies(db, user_id, include_dismissed, limit)


@api_router.get("/anomalies/stats", response_model=AnomalyStatsResponse, tags=["Anomalies"])
async def anomaly_stats(user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnomalyService.get_anomaly_stats(db, user_id)


@api_router.post("/anomalies/{anomaly_id}/dismiss", response_model=AnomalyActionResponse, tags=["Anomalies"])
async def dismiss_anomaly(anomaly_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnomalyService.dismiss(db, anomaly_id, user_id)


@api_router.post("/anomalies/{anomaly_id}/fraud", response_model=AnomalyActionResponse, tags=["Anomalies"])
async def confirm_fraud(anomaly_id: int, user_id: int = Depends(get_user_id), db: AsyncSession = Depends(get_db)):
    return await AnomalyService.confirm_fraud(db, anomaly_id, user_id)
