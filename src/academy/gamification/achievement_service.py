"""Achievement award service with duplicate prevention."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Achievement, UserAchievement

logger = structlog.get_logger()

XP_ACHIEVEMENTS = {
    100: "xp_100",
    500: "xp_500",
    1000: "xp_1000",
}

STREAK_ACHIEVEMENTS = {
    3: "streak_3",
    7: "streak_7",
    30: "streak_30",
}


async def get_achievement_by_code(db: AsyncSession, code: str) -> Achievement | None:
    """Fetch an achievement definition by code."""
    result = await db.execute(select(Achievement).where(Achievement.code == code))
    return result.scalar_one_or_none()


async def has_achievement(db: AsyncSession, user_id: str, achievement_id: str) -> bool:
    """Check if user already holds a specific achievement."""
    result = await db.execute(
        select(UserAchievement.id).where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == achievement_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def award_achievement(db: AsyncSession, user_id: str, code: str) -> bool:
    """Award an achievement to a user.

    Returns True if newly awarded, False if already held or unknown.
    Awarding an achievement the user already holds is a no-op.
    """
    achievement = await get_achievement_by_code(db, code)
    if achievement is None:
        logger.warning("achievement_not_found", code=code)
        return False

    if await has_achievement(db, user_id, achievement.id):
        return False

    try:
        async with db.begin_nested():
            db.add(UserAchievement(user_id=user_id, achievement_id=achievement.id))
    except IntegrityError:
        # Concurrent award already landed
        return False

    logger.info("achievement_awarded", user_id=user_id, code=code)
    return True


async def check_thresholds(
    db: AsyncSession,
    user_id: str,
    value: int,
    thresholds: dict[int, str],
) -> list[str]:
    """Award every achievement whose threshold ``value`` has reached. Returns new codes."""
    awarded = []
    for threshold, code in sorted(thresholds.items()):
        if value >= threshold and await award_achievement(db, user_id, code):
            awarded.append(code)
    return awarded


async def list_user_achievements(db: AsyncSession, user_id: str) -> list[tuple[Achievement, UserAchievement]]:
    """Achievements held by a user, oldest unlock first."""
    result = await db.execute(
        select(Achievement, UserAchievement)
        .join(UserAchievement, UserAchievement.achievement_id == Achievement.id)
        .where(UserAchievement.user_id == user_id)
        .order_by(UserAchievement.awarded_at.asc(), Achievement.sort_order.asc())
    )
    return [(row[0], row[1]) for row in result.all()]
