import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.models.anomaly import Anomaly  # noqa: F401
from app.models.category import Category
from app.models.recurring import RecurringPattern  # noqa: F401
from app.models.transaction import Transaction  # noqa: F401


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def categories(db):
    """Global catalog: name -> Category."""
    catalog = {
        "Groceries": Category(name="Groceries", classification="essentials"),
        "Shopping": Category(name="Shopping", classification="lifestyle"),
        "Transport": Category(name="Transport", classification="essentials"),
        "Streaming": Category(name="Streaming", classification="entertainment"),
        "Salary": Category(name="Salary", type="income", classification="income"),
        "Other": Category(name="Other"),
    }
    db.add_all(catalog.values())
    await db.commit()
    return catalog


@pytest.fixture
async def client(session_factory):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
