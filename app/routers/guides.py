"""
Saved guide endpoints, scoped to the requesting user.

Route summary
-------------
GET    /api/guides          : list guides (pinned first, newest first)
POST   /api/guides          : save a guide
PUT    /api/guides          : toggle a guide's pinned flag ({guideId})
DELETE /api/guides?id=...   : delete a guide
"""
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import (
    get_current_user_id,
    get_or_create_user,
    get_owned_guide,
)
from app.models.database_models import Guide, User
from app.models.schemas import (
    GuideCreate,
    GuideEnvelope,
    GuideListResponse,
    GuidePinRequest,
    GuideResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=GuideListResponse)
async def list_guides(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> GuideListResponse:
    """List the user's saved guides, pinned ones first."""
    result = await db.execute(
        select(Guide)
        .where(Guide.user_id == user_id)
        .order_by(Guide.is_pinned.desc(), Guide.created_at.desc(), Guide.id.desc())
    )
    guides = result.scalars().all()
    return GuideListResponse(
        guides=[GuideResponse.model_validate(g) for g in guides]
    )


@router.post("", response_model=GuideEnvelope, status_code=status.HTTP_201_CREATED)
async def save_guide(
    body: GuideCreate,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
) -> GuideEnvelope:
    """Save a generated guide for the authenticated user."""
    guide = Guide(
        user_id=user.id,
        niche=body.niche,
        problem=body.problem,
        solution=body.solution,
        is_pinned=False,
    )
    db.add(guide)
    await db.flush()
    await db.refresh(guide)

    logger.info("Saved guide id=%d for user=%s", guide.id, user.id)
    return GuideEnvelope(guide=GuideResponse.model_validate(guide))


@router.put("", response_model=GuideEnvelope)
async def toggle_pin(
    body: GuidePinRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> GuideEnvelope:
    """Flip the pinned flag on one of the user's guides."""
    guide = await get_owned_guide(body.guide_id, user_id, db)
    guide.is_pinned = not guide.is_pinned
    await db.flush()

    logger.info("Guide id=%d pinned=%s", guide.id, guide.is_pinned)
    return GuideEnvelope(guide=GuideResponse.model_validate(guide))


@router.delete("", response_model=MessageResponse)
async def delete_guide(
    guide_id: int = Query(..., alias="id"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    """Delete one of the user's guides."""
    guide = await get_owned_guide(guide_id, user_id, db)
    await db.delete(guide)
    await db.flush()

    logger.info("Deleted guide id=%d for user=%s", guide_id, user_id)
    return MessageResponse(message="Guide deleted successfully")
