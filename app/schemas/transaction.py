from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import date


class TransactionResponse(BaseModel):
    id: int
    account_id: int
    trx_date: date
    description: str
    debit: float
    credit: float
    category_id: Optional[int] = None
    is_transfer: bool
    is_recurring: bool
    recurring_group_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)
