from pydantic import BaseModel, Field, ConfigDict
from typing import Dict, List, Optional
from datetime import date, datetime

from app.intelligence.anomaly import AnomalyType, Severity


class TransactionSummary(BaseModel):
    id: int
    description: str
    amount: float
    date: date
    category: Optional[str] = None


class DetectedAnomalyItem(BaseModel):
    transaction: Optional[TransactionSummary] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    anomaly_type: AnomalyType
    severity: Severity
    description: str

    model_config = ConfigDict(from_attributes=True)


class DetectRequest(BaseModel):
    days: int = Field(30, gt=0)
    reference_date: Optional[date] = None


class DetectResponse(BaseModel):
    count: int
    inserted: int
    anomalies: List[DetectedAnomalyItem]


class AnomalyItem(BaseModel):
    id: int
    transaction_id: Optional[int] = None
    category_id: Optional[int] = None
    anomaly_type: AnomalyType
    severity: Severity
    description: Optional[str] = None
    is_dismissed: bool
    is_confirmed_fraud: bool
    detected_at: datetime
    transaction_description: Optional[str] = None
    transaction_amount: Optional[float] = None
    transaction_date: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class AnomalyActionResponse(BaseModel):
    id: int
    dismissed: bool
    confirmed_fraud: bool


class AnomalyStatsResponse(BaseModel):
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    total: int
    dismissed: int
    confirmed_fraud: int
    pending: int

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "by_type": {"potential_duplicate": 2, "unusual_amount": 1},
            "by_severity": {"high": 2, "medium": 1},
            "total": 3,
            "dismissed": 1,
            "confirmed_fraud": 0,
            "pending": 2
        }
    })
