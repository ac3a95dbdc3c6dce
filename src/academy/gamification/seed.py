"""Achievement catalog seed data."""

from __future__ import annotations

import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Achievement

logger = logging.getLogger(__name__)

ACHIEVEMENT_SEED_DATA: list[dict] = [
    # Learning
    {
        "code": "first_lesson",
        "name": "First Steps",
        "description": "Complete your first lesson",
        "category": "learning",
        "threshold": 1,
        "sort_order": 1,
    },
    {
        "code": "course_complete",
        "name": "Graduate",
        "description": "Complete every lesson of a course",
        "category": "learning",
        "threshold": None,
        "sort_order": 2,
    },
    # XP
    {
        "code": "xp_100",
        "name": "Centurion",
        "description": "Earn 100 XP",
        "category": "xp",
        "threshold": 100,
        "sort_order": 10,
    },
    {
        "code": "xp_500",
        "name": "Rising Star",
        "description": "Earn 500 XP",
        "category": "xp",
        "threshold": 500,
        "sort_order": 11,
    },
    {
        "code": "xp_1000",
        "name": "Scholar",
        "description": "Earn 1,000 XP",
        "category": "xp",
        "threshold": 1000,
        "sort_order": 12,
    },
    # Streaks
    {
        "code": "streak_3",
        "name": "On a Roll",
        "description": "Stay active 3 days in a row",
        "category": "streak",
        "threshold": 3,
        "sort_order": 20,
    },
    {
        "code": "streak_7",
        "name": "Week Warrior",
        "description": "Stay active 7 days in a row",
        "category": "streak",
        "threshold": 7,
        "sort_order": 21,
    },
    {
        "code": "streak_30",
        "name": "Unstoppable",
        "description": "Stay active 30 days in a row",
        "category": "streak",
        "threshold": 30,
        "sort_order": 22,
    },
]


def _insert_for(db: AsyncSession):  # noqa: ANN202
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert the achievement catalog. Returns number of achievements seeded."""
    insert = _insert_for(db)
    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        stmt = insert(Achievement).values(**data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["code"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "category": stmt.excluded.category,
                "threshold": stmt.excluded.threshold,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d achievement definitions", seeded)
    return seeded
