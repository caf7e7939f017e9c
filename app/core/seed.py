import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.category import Category, CategoryRule

logger = logging.getLogger(__name__)

# name, type, classification
DEFAULT_CATEGORIES = [
    ("Groceries", "expense", "essentials"),
    ("Eating Out", "expense", "lifestyle"),
    ("Transport", "expense", "essentials"),
    ("Utilities", "expense", "bills"),
    ("Rent", "expense", "bills"),
    ("Streaming", "expense", "entertainment"),
    ("News & Magazines", "expense", "media"),
    ("Shopping", "expense", "lifestyle"),
    ("Salary", "income", "income"),
    (settings.FALLBACK_CATEGORY_NAME, "expense", None),
]

# pattern, category name, priority
STARTER_RULES = [
    ("%TESCO%", "Groceries", 10),
    ("%SAINSBURY%", "Groceries", 10),
    ("%NETFLIX%", "Streaming", 10),
    ("%SPOTIFY%", "Streaming", 10),
    ("%UBER%", "Transport", 5),
    ("%SALARY%", "Salary", 10),
]


async def seed_data(db: AsyncSession):
    """Create the global category catalog and starter rules for the default user on an empty database."""
    result = await db.execute(select(func.count(Category.id)))
    count = result.scalar()
    if count > 0:
        logger.info("Database already has %s categories. Skipping seed.", count)
        return

    categories = {
        name: Category(user_id=None, name=name, type=kind, classification=classification, is_default=True)
        for name, kind, classification in DEFAULT_CATEGORIES
    }
    db.add_all(categories.values())
    await db.flush()

    db.add_all([
        CategoryRule(
            user_id=settings.DEFAULT_USER_ID,
            pattern=pattern,
            category_id=categories[name].id,
            priority=priority,
            is_active=True,
        )
        for pattern, name, priority in STARTER_RULES
    ])
    await db.commit()
    logger.info("Seeded %s categories and %s rules.", len(categories), len(STARTER_RULES))
