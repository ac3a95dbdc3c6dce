"""Pydantic response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class LevelInfo(BaseModel):
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level_xp: int


class EarnedAchievementResponse(BaseModel):
    code: str
    name: str
    description: str
    category: str
    awarded_at: datetime | None = None


class AchievementDefinitionResponse(BaseModel):
    code: str
    name: str
    description: str
    category: str
    threshold: int | None = None


class AllAchievementsResponse(BaseModel):
    achievements: list[AchievementDefinitionResponse]


class ProgressSummaryResponse(BaseModel):
    total_xp: int
    level: LevelInfo
    current_streak: int
    longest_streak: int
    last_activity_date: date | None = None
    achievements: list[EarnedAchievementResponse] = []


class CheckInResponse(BaseModel):
    ok: bool = True
    checked_in: bool
    xp_awarded: int


class LeaderboardEntryResponse(BaseModel):
    rank: int
    user_id: str
    username: str | None = None
    wallet_address: str | None = None
    total_xp: int
    level: int
    current_streak: int
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    total: int
    page: int
    per_page: int


class UserRankResponse(BaseModel):
    rank: int
    total_xp: int
    total: int
    percentile: float


class UserStatsResponse(BaseModel):
    ok: bool = True
    xp: int
    verified: int
