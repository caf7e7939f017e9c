from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey
from app.core.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, default=1, index=True, nullable=False)
    account_id = Column(Integer, index=True, nullable=False, default=1)

    trx_date = Column(Date, index=True, nullable=False)
    description = Column(String, index=True, nullable=False)

    # Magnitudes; exactly one is non-zero for non-transfer rows
    debit = Column(Float, nullable=False, default=0.0)
    credit = Column(Float, nullable=False, default=0.0)

    category_id = Column(Integer, ForeignKey("categories.id"), index=True, nullable=True)

    is_transfer = Column(Boolean, default=False, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurring_group_id = Column(Integer, ForeignKey("recurring_patterns.id"), index=True, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def amount(self) -> float:
        return self.debit if (self.debit or 0) > 0 else (self.credit or 0.0)
