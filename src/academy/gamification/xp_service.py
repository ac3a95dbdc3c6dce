"""XP grant service with idempotency and level recomputation."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import UserProgress, XPLedger
from academy.errors import ValidationError
from academy.gamification.achievement_service import XP_ACHIEVEMENTS, check_thresholds
from academy.gamification.level_thresholds import compute_level

logger = logging.getLogger(__name__)


def utc_today() -> date:
    """Current calendar day in UTC."""
    return datetime.now(timezone.utc).date()


async def get_or_create_progress(db: AsyncSession, user_id: str) -> UserProgress:
    """Get or create the denormalized progress row for a user."""
    result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
    progress = result.scalar_one_or_none()
    if progress is not None:
        return progress

    try:
        async with db.begin_nested():
            progress = UserProgress(
                user_id=user_id,
                total_xp=0,
                level=1,
                current_streak=0,
                longest_streak=0,
                updated_at=datetime.now(timezone.utc),
            )
            db.add(progress)
    except IntegrityError:
        # Created concurrently; read the winner
        result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
        progress = result.scalar_one()
    return progress


async def grant_xp(
    db: AsyncSession,
    user_id: str,
    amount: int,
    source: str,
    idempotency_key: str,
    description: str | None = None,
    today: date | None = None,
) -> bool:
    """Grant XP to a user. Returns True if granted, False if duplicate.

    After granting:
    1. Insert into xp_ledger
    2. Update user_progress.total_xp and last_activity_date
    3. Recompute level from total_xp
    4. Award XP threshold achievements
    """
    if amount < 0:
        msg = "XP amount must be non-negative"
        raise ValidationError(msg)

    existing = await db.execute(
        select(XPLedger.id).where(XPLedger.idempotency_key == idempotency_key)
    )
    if existing.scalar_one_or_none():
        return False

    try:
        async with db.begin_nested():
            db.add(
                XPLedger(
                    user_id=user_id,
                    amount=amount,
                    source=source,
                    description=description,
                    idempotency_key=idempotency_key,
                )
            )
    except IntegrityError:
        return False

    progress = await get_or_create_progress(db, user_id)
    old_level = progress.level
    progress.total_xp += amount
    progress.level = compute_level(progress.total_xp)
    progress.last_activity_date = today or utc_today()
    progress.updated_at = datetime.now(timezone.utc)
    await db.flush()

    if progress.level > old_level:
        logger.info("User %s leveled up: %d -> %d", user_id, old_level, progress.level)

    await check_thresholds(db, user_id, progress.total_xp, XP_ACHIEVEMENTS)
    return True
