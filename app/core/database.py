from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.config import settings

engine = create_async_engine(settings.DATABASE_URL, echo=False)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def init_db():
    # Register every model on Base.metadata before create_all
    from app.models import anomaly, category, recurring, transaction  # noqa: F401

    if settings.DATABASE_URL.startswith("sqlite"):
        settings.DATA_DIR.mkdir(parents=True, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit everything written inside the block, or nothing.

    Service methods that issue several dependent writes (rule upsert followed
    by a bulk update, batch categorization, pattern persistence) wrap them in
    this block. Helpers called inside it only flush.
    """
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
