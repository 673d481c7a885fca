"""
Daily content persistence — generate, upsert, and queue audio for subscribers.

Used by the cron trigger (all users, tomorrow), the user routes (one user, today)
and pre-generation of the coming week for a single user.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .content_generator import ContentGenerator, GeneratedContent
from .job_queue import AudioJobQueue
from .user_context import build_user_context, profile_voice_settings
from ..core.config import get_settings
from ..core.database import get_session_factory, session_scope
from ..core.errors import GenerationError
from ..models.base import utcnow
from ..models.content import DailyContent
from ..models.user import User, UserProfile

logger = logging.getLogger(__name__)

FEEDBACK_VALUES = ("positive", "neutral", "negative")


@dataclass
class ContentGenerationResult:
    user_id: str
    success: bool
    content_id: Optional[str] = None
    error: Optional[str] = None


async def get_content_for_date(
    db: AsyncSession, user_id: str, target_date: date
) -> Optional[DailyContent]:
    result = await db.execute(
        select(DailyContent).where(
            DailyContent.user_id == user_id,
            DailyContent.date == target_date,
        )
    )
    return result.scalar_one_or_none()


async def generate_content_for_user(
    db: AsyncSession,
    user_id: str,
    target_date: date,
    regenerate: bool = False,
    generator: Optional[ContentGenerator] = None,
    queue: Optional[AudioJobQueue] = None,
    now: Optional[datetime] = None,
) -> DailyContent:
    """
    Today's (or target_date's) content for a user. Existing content is returned as-is
    unless regenerate is set. New scripts are upserted and queued for audio.
    """
    existing = await get_content_for_date(db, user_id, target_date)
    if existing is not None and not regenerate:
        return existing

    context = await build_user_context(db, user_id, now=now)
    if context is None:
        raise LookupError(f"User {user_id} not found")

    generator = generator or ContentGenerator()
    if regenerate and existing is not None:
        generated = await generator.regenerate_content(context, existing.feedback)
    else:
        generated = await generator.generate_daily_content(context)

    content = _upsert(db, existing, user_id, target_date, generated)
    await db.flush()

    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    ).scalar_one_or_none()
    queue = queue or AudioJobQueue.from_settings()
    if existing is not None:
        await queue.supersede(db, content.id)
    await queue.enqueue(
        db,
        user_id,
        content.script,
        content_id=content.id,
        voice_settings=profile_voice_settings(profile),
    )

    logger.info(
        "Content %s for user %s on %s (%s)",
        "regenerated" if existing is not None else "generated",
        user_id, target_date, generated.template_name,
    )
    return content


def _upsert(
    db: AsyncSession,
    existing: Optional[DailyContent],
    user_id: str,
    target_date: date,
    generated: GeneratedContent,
) -> DailyContent:
    content = existing or DailyContent(user_id=user_id, date=target_date)
    content.title = generated.title
    content.script = generated.script
    content.duration = generated.duration
    content.key_points = generated.key_points
    content.stage = generated.stage
    content.tone = generated.tone
    content.prompt_type = generated.template_name
    # New script means the old audio no longer matches
    content.audio_url = None
    if existing is None:
        db.add(content)
    return content


async def active_user_ids(db: AsyncSession, now: Optional[datetime] = None) -> list[str]:
    """Subscribers who are active and not paused."""
    now = now or utcnow()
    result = await db.execute(
        select(User.id)
        .where(
            User.subscription_status == "active",
            or_(User.paused_until.is_(None), User.paused_until <= now),
        )
        .order_by(User.created_at)
    )
    return list(result.scalars().all())


async def _generate_isolated(
    factory: async_sessionmaker[AsyncSession],
    user_id: str,
    target_date: date,
    generator: ContentGenerator,
) -> ContentGenerationResult:
    try:
        async with session_scope(factory) as db:
            content = await generate_content_for_user(db, user_id, target_date, generator=generator)
            return ContentGenerationResult(user_id=user_id, success=True, content_id=content.id)
    except (GenerationError, LookupError) as e:
        logger.warning("Content generation failed for user %s: %s", user_id, e)
        return ContentGenerationResult(user_id=user_id, success=False, error=str(e))
    except Exception as e:
        logger.exception("Unexpected content generation failure for user %s", user_id)
        return ContentGenerationResult(user_id=user_id, success=False, error=str(e))


async def generate_content_for_all_users(
    target_date: date,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    generator: Optional[ContentGenerator] = None,
    batch_size: Optional[int] = None,
    batch_delay: Optional[float] = None,
) -> list[ContentGenerationResult]:
    """Every active subscriber, in batches with a pause between them. Failures are per user."""
    settings = get_settings()
    factory = session_factory or get_session_factory()
    generator = generator or ContentGenerator()
    batch_size = batch_size or settings.content_batch_size
    batch_delay = settings.content_batch_delay if batch_delay is None else batch_delay

    async with session_scope(factory) as db:
        user_ids = await active_user_ids(db)

    results: list[ContentGenerationResult] = []
    for i in range(0, len(user_ids), batch_size):
        batch = user_ids[i:i + batch_size]
        results.extend(await asyncio.gather(
            *(_generate_isolated(factory, uid, target_date, generator) for uid in batch)
        ))
        if i + batch_size < len(user_ids):
            await asyncio.sleep(batch_delay)

    succeeded = sum(1 for r in results if r.success)
    logger.info(
        "Content generation for %s complete: %d successful, %d failed",
        target_date, succeeded, len(results) - succeeded,
    )
    return results


async def generate_upcoming_content(
    db: AsyncSession,
    user_id: str,
    days_ahead: int = 7,
    start: Optional[date] = None,
    generator: Optional[ContentGenerator] = None,
    delay: Optional[float] = None,
) -> list[ContentGenerationResult]:
    """Pre-generate the next `days_ahead` days starting at `start` (today), one day at a time."""
    start = start or utcnow().date()
    generator = generator or ContentGenerator()
    delay = get_settings().content_batch_delay if delay is None else delay

    results: list[ContentGenerationResult] = []
    for offset in range(days_ahead):
        target = start + timedelta(days=offset)
        try:
            content = await generate_content_for_user(db, user_id, target, generator=generator)
            results.append(ContentGenerationResult(user_id=user_id, success=True, content_id=content.id))
        except (GenerationError, LookupError) as e:
            logger.warning("Upcoming content for user %s on %s failed: %s", user_id, target, e)
            results.append(ContentGenerationResult(user_id=user_id, success=False, error=str(e)))

        # Spaces out LLM calls
        if offset + 1 < days_ahead:
            await asyncio.sleep(delay)

    return results


async def record_feedback(
    db: AsyncSession, user_id: str, content_id: str, feedback: str
) -> DailyContent:
    if feedback not in FEEDBACK_VALUES:
        raise ValueError(f"feedback must be one of {', '.join(FEEDBACK_VALUES)}")

    content = await db.get(DailyContent, content_id)
    if content is None or content.user_id != user_id:
        raise LookupError(f"Content {content_id} not found")

    content.feedback = feedback
    content.listened = True
    await db.flush()
    return content
