from sqlalchemy import func, select

from app.core.seed import DEFAULT_CATEGORIES, STARTER_RULES, seed_data
from app.models.category import Category, CategoryRule
from app.services.categorization import CategorizationService


async def test_seed_populates_empty_database(db):
    await seed_data(db)

    categories = (await db.execute(select(func.count(Category.id)))).scalar()
    rules = (await db.execute(select(func.count(CategoryRule.id)))).scalar()
    assert categories == len(DEFAULT_CATEGORIES)
    assert rules == len(STARTER_RULES)

    fallback = await CategorizationService.get_category_by_description(db, "NOTHING KNOWN", 1)
    assert fallback.name == "Other"
    spotify = await CategorizationService.get_category_by_description(db, "SPOTIFY P0123", 1)
    assert spotify.name == "Streaming"


async def test_seed_skips_populated_database(db, categories):
    await seed_data(db)
    count = (await db.execute(select(func.count(Category.id)))).scalar()
    assert count == len(categories)
