"""Daily check-in: one streak tick and a fixed XP award per UTC day."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from academy.config import get_settings
from academy.gamification.streak_service import update_streak
from academy.gamification.xp_service import get_or_create_progress, grant_xp, utc_today

logger = logging.getLogger(__name__)


async def daily_check_in(db: AsyncSession, user_id: str, today: date | None = None) -> dict:
    """Check the user in for today.

    Returns ``{"checked_in": bool, "xp_awarded": int}``. A second call on the
    same UTC day is a no-op.
    """
    today = today or utc_today()
    progress = await get_or_create_progress(db, user_id)
    if progress.last_activity_date == today:
        return {"checked_in": False, "xp_awarded": 0}

    xp = get_settings().check_in_xp
    await update_streak(db, user_id, today=today)
    granted = await grant_xp(
        db,
        user_id,
        xp,
        source="check_in",
        idempotency_key=f"checkin:{user_id}:{today.isoformat()}",
        description="Daily check-in",
        today=today,
    )
    logger.info("User %s checked in for %s", user_id, today.isoformat())
    return {"checked_in": True, "xp_awarded": xp if granted else 0}
