"""
User identity dependencies for FastAPI routes.

Extracts user identity from the X-User-Id header (set by the frontend).
Identity is trusted as given; verifying it is the frontend's job.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.database_models import Guide, User

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: str = Header(..., alias="X-User-Id"),
) -> str:
    """Extract the authenticated user ID from the request header. Raises 401 if missing."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return x_user_id


async def get_or_create_user(
    user_id: str = Depends(get_current_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Ensure the user exists in the local users table. Creates if needed."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            id=user_id,
            email=x_user_email or f"{user_id}@nicheai.local",
            name=x_user_name,
        )
        db.add(user)
        await db.flush()
        logger.info("Created new user: id=%s email=%s", user_id, user.email)

    return user


async def get_owned_guide(
    guide_id: int,
    user_id: str,
    db: AsyncSession,
) -> Guide:
    """
    Load a guide that belongs to *user_id*.
    Raises 404 when it does not exist or belongs to someone else.
    """
    result = await db.execute(
        select(Guide).where(
            Guide.id == guide_id,
            Guide.user_id == user_id,
        )
    )
    guide = result.scalar_one_or_none()

    if guide is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Guide not found",
        )

    return guide
