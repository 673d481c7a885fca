"""
Audio batch runner — turns queued scripts and audio-less daily content into stored audio.

Triggered by cron. Work runs in windows of `max_concurrent`; windows are strictly
sequential. Each job gets its own DB session so concurrent jobs never share one.
Per-job failures are recorded on the queue row and never propagate.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .audio_processor import AudioProcessor, ProcessedAudio, get_audio_processor
from .job_queue import AudioJobQueue
from .tts import TextToSpeechService, get_tts_service
from .user_context import profile_voice_settings
from ..core.config import get_settings
from ..core.database import get_session_factory, session_scope
from ..core.flags import get_flags
from ..core.redis import notify_user
from ..core.storage import AudioFileMetadata, StorageBackend, StoredAudio, get_storage, store_audio
from ..models.audio_queue import AudioGenerationJob
from ..models.base import utcnow
from ..models.content import DailyContent
from ..models.user import User, UserProfile

logger = logging.getLogger(__name__)

SENTENCE_PAUSE = "400ms"
PARAGRAPH_PAUSE = "1s"


@dataclass
class RenderedAudio:
    processed: ProcessedAudio
    stored: StoredAudio

    @property
    def url(self) -> str:
        return self.stored.url

    @property
    def duration(self) -> int:
        return self.processed.metadata.duration


class AudioBatchProcessor:
    def __init__(
        self,
        max_concurrent: int = 3,
        max_retries: int = 3,
        batch_size: int = 10,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        tts: Optional[TextToSpeechService] = None,
        processor: Optional[AudioProcessor] = None,
        storage: Optional[StorageBackend] = None,
        queue: Optional[AudioJobQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.batch_size = batch_size
        self._session_factory = session_factory
        self._tts = tts
        self._processor = processor
        self._storage = storage
        self.queue = queue or AudioJobQueue.from_settings(max_retries=max_retries)
        self.clock = clock
        self._is_processing = False

    # Collaborators resolve lazily so constructing the singleton touches nothing external

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    @property
    def tts(self) -> TextToSpeechService:
        return self._tts or get_tts_service()

    @property
    def processor(self) -> AudioProcessor:
        return self._processor or get_audio_processor()

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    # ── Rendering ────────────────────────────────────────────────────

    async def render_audio(
        self,
        user_id: str,
        script: str,
        voice_settings: Optional[dict] = None,
        content_id: Optional[str] = None,
        day: Optional[date] = None,
        use_ssml: bool = True,
        emphasis_keywords: tuple[str, ...] = (),
    ) -> RenderedAudio:
        """Script → (SSML) → TTS → validation → storage. Nothing is stored if validation fails."""
        text = script
        if use_ssml:
            text = self.tts.enhance_script_with_ssml(
                script,
                pause_after_sentence=SENTENCE_PAUSE,
                pause_after_paragraph=PARAGRAPH_PAUSE,
                emphasis_keywords=emphasis_keywords,
            )

        result = await self.tts.synthesize_speech(text, voice_settings, ssml=use_ssml)
        processed = self.processor.process_audio(result.audio_content, result.format)
        stored = await store_audio(
            self.storage,
            processed.buffer,
            AudioFileMetadata(
                user_id=user_id,
                format=processed.metadata.format,
                content_id=content_id,
                day=day or self.clock().date(),
            ),
        )
        return RenderedAudio(processed=processed, stored=stored)

    async def render_content_audio(
        self,
        content: DailyContent,
        voice_settings: Optional[dict] = None,
        use_ssml: Optional[bool] = None,
    ) -> RenderedAudio:
        """Render one DailyContent row and attach url + duration to it. Caller commits."""
        if use_ssml is None:
            use_ssml = get_flags().use_ssml
        rendered = await self.render_audio(
            content.user_id,
            content.script,
            voice_settings=voice_settings,
            content_id=content.id,
            day=content.date,
            use_ssml=use_ssml,
            emphasis_keywords=tuple(content.key_points or ()),
        )
        content.audio_url = rendered.url
        content.duration = rendered.duration
        return rendered

    # ── Queue ────────────────────────────────────────────────────────

    async def process_pending_jobs(self) -> dict[str, int]:
        """
        Claim and process due jobs. Returns {processed, failed, skipped}.
        Re-entry while a run is in progress returns zeros.
        """
        stats = {"processed": 0, "failed": 0, "skipped": 0}
        if self._is_processing:
            logger.info("Audio batch processor already running")
            return stats

        self._is_processing = True
        try:
            async with session_scope(self.session_factory) as db:
                candidates = await self.queue.due(db, self.batch_size, now=self.clock())

            if not candidates:
                logger.info("No pending audio generation jobs")
                return stats

            logger.info("Processing %d audio generation jobs", len(candidates))

            for i in range(0, len(candidates), self.max_concurrent):
                window = candidates[i:i + self.max_concurrent]
                outcomes = await asyncio.gather(
                    *(self._process_job(job_id, status) for job_id, status in window),
                    return_exceptions=True,
                )
                for (job_id, _), outcome in zip(window, outcomes):
                    if isinstance(outcome, Exception):
                        logger.error("Audio job %s crashed: %s", job_id, outcome)
                        stats["failed"] += 1
                    else:
                        stats[outcome] += 1

            logger.info(
                "Audio batch done: processed=%d failed=%d skipped=%d",
                stats["processed"], stats["failed"], stats["skipped"],
            )
            return stats
        finally:
            self._is_processing = False

    async def _process_job(self, job_id: str, seen_status: str) -> str:
        async with session_scope(self.session_factory) as db:
            if not await self.queue.claim(db, job_id, seen_status, now=self.clock()):
                return "skipped"
            await db.commit()

            job = await db.get(AudioGenerationJob, job_id)
            user_id, content_id, attempts = job.user_id, job.content_id, job.attempts
            script = job.script
            attached = False

            try:
                rendered = await self.render_audio(
                    user_id,
                    script,
                    voice_settings=job.voice_settings or None,
                    content_id=content_id,
                    use_ssml=get_flags().use_ssml,
                )

                await self.queue.ack(db, job_id, rendered.url, now=self.clock())
                if content_id:
                    content = await db.get(DailyContent, content_id)
                    # A regenerated script makes this audio stale
                    if content is not None and content.script == script:
                        content.audio_url = rendered.url
                        content.duration = rendered.duration
                        attached = True
                    else:
                        logger.info("Audio job %s no longer matches content %s", job_id, content_id)
                await db.commit()

            except Exception as e:
                await db.rollback()
                failures = await self.queue.nack(db, job_id, attempts, str(e), now=self.clock())
                logger.error(
                    "Audio job %s failed (attempt %d/%d): %s",
                    job_id, failures, self.max_retries, e,
                )
                return "failed"

        logger.info("Processed audio job %s", job_id)
        if content_id and not attached:
            return "processed"
        await notify_user(user_id, "audio.ready", {
            "job_id": job_id,
            "content_id": content_id,
            "audio_url": rendered.url,
            "duration": rendered.duration,
        })
        return "processed"

    # ── Daily content sweep ──────────────────────────────────────────

    async def generate_missing_audio(self, day: Optional[date] = None) -> dict[str, int]:
        """Render audio for the day's content rows that have none. Returns {generated, failed}."""
        day = day or self.clock().date()
        results = {"generated": 0, "failed": 0}

        async with session_scope(self.session_factory) as db:
            stmt = (
                select(DailyContent.id, DailyContent.user_id, UserProfile)
                .join(User, User.id == DailyContent.user_id)
                .outerjoin(UserProfile, UserProfile.user_id == DailyContent.user_id)
                .where(
                    DailyContent.date == day,
                    or_(DailyContent.audio_url.is_(None), DailyContent.audio_url == ""),
                )
                .limit(self.batch_size)
            )
            rows = [
                (row[0], row[1], profile_voice_settings(row[2]))
                for row in (await db.execute(stmt)).all()
            ]

        if not rows:
            logger.info("All content for %s has audio", day)
            return results

        logger.info("Generating audio for %d content items", len(rows))

        for i in range(0, len(rows), self.max_concurrent):
            window = rows[i:i + self.max_concurrent]
            outcomes = await asyncio.gather(
                *(self._render_missing(content_id, voice) for content_id, _, voice in window),
                return_exceptions=True,
            )
            for (content_id, _, _), outcome in zip(window, outcomes):
                if outcome is True:
                    results["generated"] += 1
                else:
                    if isinstance(outcome, Exception):
                        logger.error("Audio for content %s crashed: %s", content_id, outcome)
                    results["failed"] += 1

        return results

    async def _render_missing(self, content_id: str, voice_settings: dict) -> bool:
        async with session_scope(self.session_factory) as db:
            content = await db.get(DailyContent, content_id)
            user_id, script = content.user_id, content.script
            try:
                await self.render_content_audio(content, voice_settings or None)
                await db.commit()
                return True
            except Exception as e:
                await db.rollback()
                logger.error("Audio for content %s failed: %s", content_id, e)
                await self.record_failure(db, user_id, script, str(e), content_id, voice_settings)
                return False

    async def record_failure(
        self,
        db: AsyncSession,
        user_id: str,
        script: str,
        error: str,
        content_id: Optional[str] = None,
        voice_settings: Optional[dict] = None,
    ) -> AudioGenerationJob:
        """Park a failed render on the queue; the maintenance sweep retries it."""
        return await self.queue.record_failed(
            db, user_id, script, error,
            content_id=content_id, voice_settings=voice_settings, now=self.clock(),
        )

    # ── Maintenance ──────────────────────────────────────────────────

    async def cleanup_old_jobs(self, older_than_days: Optional[int] = None) -> int:
        days = older_than_days if older_than_days is not None else get_settings().audio_job_retention_days
        async with session_scope(self.session_factory) as db:
            deleted = await self.queue.purge_completed(db, days, now=self.clock())
        logger.info("Cleaned up %d completed audio jobs older than %d days", deleted, days)
        return deleted

    async def retry_failed_jobs(self) -> int:
        async with session_scope(self.session_factory) as db:
            count = await self.queue.retry_failed(db, now=self.clock())
        logger.info("Rescheduled %d failed audio jobs", count)
        return count


# Singleton
_batch_processor: Optional[AudioBatchProcessor] = None


def get_audio_batch_processor() -> AudioBatchProcessor:
    global _batch_processor
    if _batch_processor is None:
        settings = get_settings()
        _batch_processor = AudioBatchProcessor(
            max_concurrent=settings.audio_max_concurrent,
            max_retries=settings.audio_max_retries,
            batch_size=settings.audio_batch_size,
        )
    return _batch_processor
