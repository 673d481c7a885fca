"""
Audio endpoints: render today's script, browse voices, preview a voice, inspect the queue.
"""

import base64
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db, require_subscriber
from ..core.errors import TTSError, ValidationError
from ..core.storage import AUDIO_CONTENT_TYPES
from ..models.audio_queue import AudioGenerationJob
from ..models.content import DailyContent
from ..models.user import User, UserProfile
from ..services.batch_processor import get_audio_batch_processor
from ..services.tts import get_tts_service
from ..services.user_context import profile_voice_settings

logger = logging.getLogger(__name__)

audio_router = APIRouter(prefix="/audio", tags=["audio"])


class GenerateAudioRequest(BaseModel):
    content_id: str
    voice_settings: Optional[dict] = None
    use_ssml: bool = True


class GenerateAudioResponse(BaseModel):
    content_id: str
    audio_url: str
    duration: int
    size: int


class PreviewRequest(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    voice_name: Optional[str] = None
    voice_settings: Optional[dict] = None


class VoiceResponse(BaseModel):
    name: str
    language_code: str
    ssml_gender: str
    natural_sample_rate_hertz: int
    description: str
    category: str


class QueueJobResponse(BaseModel):
    id: str
    content_id: Optional[str] = None
    status: str
    attempts: int
    error: Optional[str] = None
    audio_url: Optional[str] = None


@audio_router.post("/generate", response_model=GenerateAudioResponse)
async def generate_audio(
    body: GenerateAudioRequest,
    user: User = Depends(require_subscriber),
    db: AsyncSession = Depends(get_db),
):
    """Render audio for one of the user's content rows right now, bypassing the queue."""
    content = await db.get(DailyContent, body.content_id)
    if content is None or content.user_id != user.id:
        raise HTTPException(status_code=404, detail="Content not found")

    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user.id))
    ).scalar_one_or_none()
    voice = {**profile_voice_settings(profile), **(body.voice_settings or {})}

    try:
        rendered = await get_audio_batch_processor().render_content_audio(
            content, voice or None, use_ssml=body.use_ssml
        )
    except TTSError as e:
        logger.error("Audio render failed for content %s: %s", content.id, e)
        raise HTTPException(status_code=502, detail="Audio generation failed")
    except ValidationError as e:
        logger.warning("Audio for content %s rejected: %s", content.id, e)
        raise HTTPException(status_code=422, detail="Generated audio failed validation")

    return GenerateAudioResponse(
        content_id=content.id,
        audio_url=rendered.url,
        duration=rendered.duration,
        size=rendered.stored.size,
    )


@audio_router.get("/voices", response_model=list[VoiceResponse])
async def list_voices(language_code: Optional[str] = Query(default="en-US")):
    try:
        voices = await get_tts_service().list_voices(language_code)
    except TTSError as e:
        logger.error("Voice listing failed: %s", e)
        raise HTTPException(status_code=502, detail="Voice listing failed")
    return [VoiceResponse(**vars(v)) for v in voices]


@audio_router.post("/preview")
async def preview_voice(body: PreviewRequest):
    """Synthesize a short sample and return it inline as a data URL."""
    tts = get_tts_service()
    voice = dict(body.voice_settings or {})
    if body.voice_name:
        voice["name"] = body.voice_name

    try:
        result = await tts.synthesize_speech(body.text, voice or None)
    except TTSError as e:
        logger.error("Voice preview failed: %s", e)
        raise HTTPException(status_code=502, detail="Voice preview failed")
    except ValidationError:
        raise HTTPException(status_code=422, detail="Invalid voice settings")

    encoded = base64.b64encode(result.audio_content).decode()
    return {
        "audio": f"data:{AUDIO_CONTENT_TYPES[result.format]};base64,{encoded}",
        "format": result.format,
        "estimated_duration": tts.estimate_duration(body.text),
    }


@audio_router.get("/queue")
async def audio_queue(
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(require_subscriber),
    db: AsyncSession = Depends(get_db),
):
    """The user's recent audio jobs plus counts per status."""
    processor = get_audio_batch_processor()
    result = await db.execute(
        select(AudioGenerationJob)
        .where(AudioGenerationJob.user_id == user.id)
        .order_by(AudioGenerationJob.scheduled_for.desc())
        .limit(limit)
    )
    jobs = [
        QueueJobResponse(
            id=j.id,
            content_id=j.content_id,
            status=j.status,
            attempts=j.attempts,
            error=j.error,
            audio_url=j.audio_url,
        )
        for j in result.scalars().all()
    ]
    return {
        "jobs": jobs,
        "counts": await processor.queue.status_counts(db, user.id),
    }
