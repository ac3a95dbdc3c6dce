"""Gamification endpoints: check-in, progress, leaderboard, rank and the achievement catalog."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user_id
from academy.database import get_session
from academy.db.models import Achievement
from academy.gamification.achievement_service import list_user_achievements
from academy.gamification.checkin_service import daily_check_in
from academy.gamification.leaderboard_service import get_leaderboard, get_user_rank, get_user_stats
from academy.gamification.level_thresholds import level_info
from academy.gamification.schemas import (
    AchievementDefinitionResponse,
    AllAchievementsResponse,
    CheckInResponse,
    EarnedAchievementResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
    LevelInfo,
    ProgressSummaryResponse,
    UserRankResponse,
    UserStatsResponse,
)
from academy.gamification.xp_service import get_or_create_progress

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


# ── Public endpoints ──


@router.get("/achievements", response_model=AllAchievementsResponse)
async def list_achievements(db: AsyncSession = Depends(get_session)) -> AllAchievementsResponse:
    """All achievement definitions."""
    result = await db.execute(select(Achievement).order_by(Achievement.sort_order))
    return AllAchievementsResponse(
        achievements=[
            AchievementDefinitionResponse(
                code=a.code,
                name=a.name,
                description=a.description,
                category=a.category,
                threshold=a.threshold,
            )
            for a in result.scalars().all()
        ]
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def leaderboard(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    """Learners ranked by total XP."""
    data = await get_leaderboard(db, page, per_page)
    return LeaderboardResponse(
        entries=[LeaderboardEntryResponse(**e) for e in data["entries"]],
        total=data["total"],
        page=data["page"],
        per_page=data["per_page"],
    )


# ── Authenticated endpoints ──


@router.post("/check-in", response_model=CheckInResponse)
async def check_in(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> CheckInResponse:
    """Daily check-in. Only the first call of a UTC day awards XP."""
    result = await daily_check_in(db, user_id)
    await db.commit()
    return CheckInResponse(**result)


@router.get("/me/progress", response_model=ProgressSummaryResponse)
async def my_progress(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProgressSummaryResponse:
    """XP, level, streak and unlocked achievements."""
    progress = await get_or_create_progress(db, user_id)
    earned = await list_user_achievements(db, user_id)
    await db.commit()
    return ProgressSummaryResponse(
        total_xp=progress.total_xp,
        level=LevelInfo(**level_info(progress.total_xp)),
        current_streak=progress.current_streak,
        longest_streak=progress.longest_streak,
        last_activity_date=progress.last_activity_date,
        achievements=[
            EarnedAchievementResponse(
                code=a.code,
                name=a.name,
                description=a.description,
                category=a.category,
                awarded_at=ua.awarded_at,
            )
            for a, ua in earned
        ],
    )


@router.get("/me/rank", response_model=UserRankResponse)
async def my_rank(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> UserRankResponse:
    """Position on the XP leaderboard. 0 until the user has any progress."""
    return UserRankResponse(**await get_user_rank(db, user_id))


@router.get("/me/stats", response_model=UserStatsResponse)
async def my_stats(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> UserStatsResponse:
    """Total XP and verified certificate count."""
    return UserStatsResponse(**await get_user_stats(db, user_id))
