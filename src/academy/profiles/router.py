"""Profile endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.dependencies import get_current_user_id
from academy.database import get_session
from academy.profiles.service import get_profile, link_wallet

router = APIRouter(prefix="/api/v1", tags=["Profiles"])


class LinkWalletRequest(BaseModel):
    wallet_address: str


class ProfileResponse(BaseModel):
    id: str
    username: str | None = None
    wallet_address: str | None = None


@router.post("/wallet/link", response_model=ProfileResponse)
async def link_wallet_endpoint(
    body: LinkWalletRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    """Link a wallet address to the current user."""
    profile = await link_wallet(db, user_id, body.wallet_address)
    await db.commit()
    return ProfileResponse(id=profile.id, username=profile.username, wallet_address=profile.wallet_address)


@router.get("/me/profile", response_model=ProfileResponse)
async def my_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    profile = await get_profile(db, user_id)
    if profile is None:
        return ProfileResponse(id=user_id)
    return ProfileResponse(id=profile.id, username=profile.username, wallet_address=profile.wallet_address)
