from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey
from app.core.database import Base


class Anomaly(Base):
    __tablename__ = "anomalies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, default=1, index=True, nullable=False)

    # NULL for category-level anomalies
    transaction_id = Column(Integer, ForeignKey("transactions.id"), index=True, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)

    anomaly_type = Column(String, index=True, nullable=False)
    severity = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    is_dismissed = Column(Boolean, default=False, index=True, nullable=False)
    is_confirmed_fraud = Column(Boolean, default=False, nullable=False)

    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)
