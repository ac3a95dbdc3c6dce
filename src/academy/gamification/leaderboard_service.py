"""XP leaderboard, user rank and per-user stats.

Rankings are read straight from ``user_progress`` ordered by total XP.
Leaderboard positions are sequential; a user's own rank is the number of
users with strictly more XP plus one, so tied users share a rank.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.db.models import Certificate, Profile, UserProgress
from academy.gamification.level_thresholds import compute_level


async def get_profiles_batch(db: AsyncSession, user_ids: list[str]) -> dict[str, Profile]:
    """Batch-load profiles for leaderboard enrichment."""
    if not user_ids:
        return {}
    result = await db.execute(select(Profile).where(Profile.id.in_(user_ids)))
    return {p.id: p for p in result.scalars()}


async def get_leaderboard(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 10,
    current_user_id: str | None = None,
) -> dict:
    """Users ordered by total XP, enriched with their profile."""
    start = (page - 1) * per_page
    total = (await db.execute(select(func.count()).select_from(UserProgress))).scalar_one()

    result = await db.execute(
        select(UserProgress)
        .order_by(UserProgress.total_xp.desc(), UserProgress.user_id.asc())
        .offset(start)
        .limit(per_page)
    )
    rows = list(result.scalars())
    if not rows:
        return {"entries": [], "total": total, "page": page, "per_page": per_page}

    profiles = await get_profiles_batch(db, [row.user_id for row in rows])

    entries = []
    for rank_offset, row in enumerate(rows):
        profile = profiles.get(row.user_id)
        entries.append({
            "rank": start + rank_offset + 1,
            "user_id": row.user_id,
            "username": profile.username if profile else None,
            "wallet_address": profile.wallet_address if profile else None,
            "total_xp": row.total_xp,
            "level": compute_level(row.total_xp),
            "current_streak": row.current_streak,
            "is_current_user": row.user_id == current_user_id,
        })

    return {"entries": entries, "total": total, "page": page, "per_page": per_page}


async def get_user_rank(db: AsyncSession, user_id: str) -> dict:
    """A user's XP rank. Users with no progress row are unranked (rank 0)."""
    total = (await db.execute(select(func.count()).select_from(UserProgress))).scalar_one()
    xp = (
        await db.execute(select(UserProgress.total_xp).where(UserProgress.user_id == user_id))
    ).scalar_one_or_none()
    if xp is None:
        return {"rank": 0, "total_xp": 0, "total": total, "percentile": 0}

    ahead = (
        await db.execute(select(func.count()).select_from(UserProgress).where(UserProgress.total_xp > xp))
    ).scalar_one()
    rank = ahead + 1
    return {
        "rank": rank,
        "total_xp": xp,
        "total": total,
        "percentile": round(100 - (rank / total * 100), 2) if total > 0 else 0,
    }


async def get_user_stats(db: AsyncSession, user_id: str) -> dict:
    """Total XP and the number of certificates recorded on the ledger for a user."""
    xp = (
        await db.execute(select(UserProgress.total_xp).where(UserProgress.user_id == user_id))
    ).scalar_one_or_none()
    verified = (
        await db.execute(select(func.count()).select_from(Certificate).where(Certificate.user_id == user_id))
    ).scalar_one()
    return {"xp": xp or 0, "verified": verified}
