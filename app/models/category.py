from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from app.core.database import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    # NULL user_id marks a global category visible to every user
    user_id = Column(Integer, index=True, nullable=True)

    name = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False, default="expense")
    classification = Column(String, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)


class CategoryRule(Base):
    __tablename__ = "category_rules"
    __table_args__ = (
        UniqueConstraint("user_id", "pattern", "category_id", name="uq_category_rules_pattern"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, default=1, index=True, nullable=False)

    pattern = Column(String, nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
