from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Boolean, ForeignKey
from app.core.database import Base


class RecurringPattern(Base):
    __tablename__ = "recurring_patterns"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, default=1, index=True, nullable=False)

    description_pattern = Column(String, index=True, nullable=False)
    merchant_name = Column(String, nullable=True)
    typical_amount = Column(Float, nullable=True)
    typical_day = Column(Integer, nullable=True)
    # weekly | fortnightly | monthly | quarterly | yearly, NULL when irregular
    frequency = Column(String, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    occurrence_count = Column(Integer, nullable=False, default=0)
    last_seen = Column(Date, nullable=True)

    is_subscription = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
