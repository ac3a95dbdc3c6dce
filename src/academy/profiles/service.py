"""Learner profile and wallet linking."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from academy.db.models import Profile
from academy.errors import ConflictError, ValidationError
from academy.ledger.keys import is_valid_public_key

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    return await db.get(Profile, user_id)


async def get_or_create_profile(db: AsyncSession, user_id: str) -> Profile:
    profile = await get_profile(db, user_id)
    if profile is None:
        profile = Profile(id=user_id, username=f"user_{user_id[:8]}")
        db.add(profile)
        await db.flush()
    return profile


async def link_wallet(db: AsyncSession, user_id: str, wallet_address: str) -> Profile:
    """
    Link a ledger wallet to the user's profile.

    Raises:
        ValidationError: If the address is not a 32-byte base58 public key.
        ConflictError: If the wallet is already linked to another user.
    """
    wallet_address = (wallet_address or "").strip()
    if not wallet_address:
        msg = "wallet_address is required"
        raise ValidationError(msg)
    if not is_valid_public_key(wallet_address):
        msg = "Invalid wallet address"
        raise ValidationError(msg)

    result = await db.execute(select(Profile.id).where(Profile.wallet_address == wallet_address))
    owner = result.scalar_one_or_none()
    if owner is not None and owner != user_id:
        msg = "Wallet already linked to another user"
        raise ConflictError(msg)

    profile = await get_or_create_profile(db, user_id)
    if profile.wallet_address == wallet_address:
        return profile

    previous = profile.wallet_address
    try:
        async with db.begin_nested():
            profile.wallet_address = wallet_address
    except IntegrityError as e:
        msg = "Wallet already linked to another user"
        raise ConflictError(msg) from e

    logger.info("wallet_linked", user_id=user_id, wallet_address=wallet_address, previous=previous)
    return profile
