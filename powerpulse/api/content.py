"""
Daily content endpoints for the signed-in subscriber.
"""

import datetime as dt
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db, require_subscriber
from ..core.errors import GenerationError
from ..models.content import DailyContent
from ..models.user import User, UserProfile
from ..services.content_service import (
    generate_content_for_user,
    get_content_for_date,
    record_feedback,
)
from ..services.user_context import local_now

logger = logging.getLogger(__name__)

content_router = APIRouter(tags=["content"])


class ContentResponse(BaseModel):
    id: str
    date: dt.date
    title: Optional[str] = None
    script: str
    audio_url: Optional[str] = None
    duration: Optional[int] = None
    key_points: list[str] = []
    stage: Optional[str] = None
    tone: Optional[str] = None
    prompt_type: Optional[str] = None
    listened: bool = False
    feedback: Optional[str] = None

    @classmethod
    def of(cls, content: DailyContent) -> "ContentResponse":
        return cls(
            id=content.id,
            date=content.date,
            title=content.title,
            script=content.script,
            audio_url=content.audio_url,
            duration=content.duration,
            key_points=content.key_points or [],
            stage=content.stage,
            tone=content.tone,
            prompt_type=content.prompt_type,
            listened=content.listened,
            feedback=content.feedback,
        )


class GenerateRequest(BaseModel):
    regenerate: bool = False
    date: Optional[dt.date] = None


class FeedbackRequest(BaseModel):
    feedback: Literal["positive", "neutral", "negative"]


async def _user_today(db: AsyncSession, user: User) -> dt.date:
    """Today's date in the subscriber's own timezone."""
    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))
    ).scalar_one_or_none()
    return local_now(profile.timezone if profile else None).date()


@content_router.post("/content/generate", response_model=ContentResponse)
async def generate_content(
    body: GenerateRequest,
    user: User = Depends(require_subscriber),
    db: AsyncSession = Depends(get_db),
):
    """Generate (or fetch) the day's script. regenerate=true replaces it."""
    target = body.date or await _user_today(db, user)

    try:
        content = await generate_content_for_user(db, user.id, target, regenerate=body.regenerate)
    except GenerationError as e:
        logger.error("Content generation failed for user %s: %s", user.id, e)
        raise HTTPException(status_code=502, detail="Content generation failed")
    except LookupError:
        raise HTTPException(status_code=404, detail="User not found")

    return ContentResponse.of(content)


@content_router.get("/content/today", response_model=ContentResponse)
async def today_content(
    user: User = Depends(require_subscriber),
    db: AsyncSession = Depends(get_db),
):
    content = await get_content_for_date(db, user.id, await _user_today(db, user))
    if content is None:
        raise HTTPException(status_code=404, detail="No content for today yet")
    return ContentResponse.of(content)


@content_router.post("/content/{content_id}/feedback", response_model=ContentResponse)
async def content_feedback(
    content_id: str,
    body: FeedbackRequest,
    user: User = Depends(require_subscriber),
    db: AsyncSession = Depends(get_db),
):
    try:
        content = await record_feedback(db, user.id, content_id, body.feedback)
    except LookupError:
        raise HTTPException(status_code=404, detail="Content not found")
    return ContentResponse.of(content)
