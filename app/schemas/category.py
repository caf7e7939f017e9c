from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import List, Optional
from datetime import datetime

from app.schemas.transaction import TransactionResponse


class DescriptionRequest(BaseModel):
    description: str = Field(..., min_length=1)


class CategoryRef(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class SuggestionResponse(BaseModel):
    category_id: int
    category_name: Optional[str] = None
    confidence: float = Field(..., ge=0, le=1)
    matched_rule: str

    model_config = ConfigDict(from_attributes=True, json_schema_extra={
        "example": {
            "category_id": 3,
            "category_name": "Groceries",
            "confidence": 1.0,
            "matched_rule": "%TESCO%"
        }
    })


class LearnRequest(BaseModel):
    description: str
    category_id: int


class RuleResponse(BaseModel):
    id: int
    pattern: str
    category_id: int
    category_name: Optional[str] = None
    priority: int
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LearnedRuleResponse(RuleResponse):
    existing: bool


class RuleCreate(BaseModel):
    pattern: str
    category_id: int
    priority: int = 0

    @field_validator('pattern')
    @classmethod
    def pattern_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Pattern cannot be empty')
        return v.strip()


class RuleUpdate(BaseModel):
    pattern: Optional[str] = None
    category_id: Optional[int] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class AutoCategorizeRequest(BaseModel):
    transaction_ids: Optional[List[int]] = None


class CategorizationDetail(BaseModel):
    transaction_id: int
    description: Optional[str] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    confidence: float = 0.0
    status: str
    reason: Optional[str] = None


class AutoCategorizeResponse(BaseModel):
    categorized: int
    skipped: int
    details: List[CategorizationDetail] = []


class BulkAssignResponse(BaseModel):
    total_processed: int
    updated: int
    unchanged: int
    skipped: int


class FindSimilarRequest(BaseModel):
    description: str = Field(..., min_length=1)
    exclude_id: Optional[int] = None
    only_uncategorized: bool = False


class SimilarTransactionsResponse(BaseModel):
    pattern: Optional[str] = None
    count: int
    transactions: List[TransactionResponse] = []


class ApplySimilarRequest(FindSimilarRequest):
    category_id: int


class ApplySimilarResponse(BaseModel):
    pattern: str
    category_id: int
    category_name: str
    updated: int
    rule: LearnedRuleResponse
    message: str


class UncategorizedTransaction(TransactionResponse):
    suggestion: Optional[SuggestionResponse] = None
