from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import date

from app.intelligence.recurrence import Frequency


class PatternResponse(BaseModel):
    id: int
    description_pattern: str
    merchant_name: Optional[str] = None
    typical_amount: Optional[float] = None
    typical_day: Optional[int] = None
    frequency: Optional[Frequency] = None
    category_id: Optional[int] = None
    occurrence_count: int
    last_seen: Optional[date] = None
    is_subscription: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class DetectedPatternResponse(PatternResponse):
    transaction_ids: List[int] = []


class RegularPaymentsResponse(BaseModel):
    weekly: List[PatternResponse] = []
    monthly: List[PatternResponse] = []
    annual: List[PatternResponse] = []


class DetectRecurringRequest(BaseModel):
    account_id: Optional[int] = None


class MarkRecurringRequest(BaseModel):
    transaction_ids: List[int]


class MarkRecurringResponse(BaseModel):
    pattern_id: int
    changes: int


class PatternCreate(BaseModel):
    description_pattern: str
    merchant_name: Optional[str] = None
    typical_amount: Optional[float] = None
    typical_day: Optional[int] = None
    frequency: Optional[str] = None
    category_id: Optional[int] = None
    is_subscription: bool = False
    transaction_ids: List[int] = []


# Frequency stays a plain string so the service can report invalid values itself
class PatternUpdate(BaseModel):
    merchant_name: Optional[str] = None
    typical_amount: Optional[float] = None
    typical_day: Optional[int] = None
    frequency: Optional[str] = None
    category_id: Optional[int] = None
    is_subscription: Optional[bool] = None
    is_active: Optional[bool] = None


class DeletePatternResponse(BaseModel):
    deleted: bool
    pattern_id: int
    transactions_unlinked: int
