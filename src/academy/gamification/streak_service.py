"""Daily streak tracking on UTC calendar days."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import UserProgress
from academy.gamification.achievement_service import STREAK_ACHIEVEMENTS, check_thresholds
from academy.gamification.xp_service import get_or_create_progress, utc_today

logger = logging.getLogger(__name__)


def next_streak(last_activity: date | None, today: date, current: int) -> int:
    """Streak value after activity on ``today``.

    Activity on consecutive days extends the streak. A gap of more than one
    day, or no prior activity, starts over at 1.
    """
    if last_activity is None:
        return 1
    delta = (today - last_activity).days
    if delta == 0:
        return current
    if delta == 1:
        return current + 1
    return 1


async def update_streak(db: AsyncSession, user_id: str, today: date | None = None) -> UserProgress:
    """Advance the user's streak for activity today and award streak achievements."""
    today = today or utc_today()
    progress = await get_or_create_progress(db, user_id)

    previous = progress.current_streak
    progress.current_streak = next_streak(progress.last_activity_date, today, previous)
    progress.longest_streak = max(progress.longest_streak, progress.current_streak)
    progress.last_activity_date = today
    progress.updated_at = datetime.now(timezone.utc)
    await db.flush()

    if progress.current_streak != previous:
        logger.info("User %s streak %d -> %d", user_id, previous, progress.current_streak)
        await check_thresholds(db, user_id, progress.current_streak, STREAK_ACHIEVEMENTS)
    return progress
