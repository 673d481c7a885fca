"""
AudioJobQueue — the audio_generation_queue table behind a small queue interface.

enqueue / supersede / claim / ack / nack / retry_failed / purge_completed. Claims are a
compare-and-swap on status plus a lease, so two runners never process the same
row and a crashed runner's rows come back after the lease expires.

All time comparisons happen in SQL; SQLite hands back naive datetimes.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.flags import get_flags
from ..models.audio_queue import AudioGenerationJob, JobStatus
from ..models.base import utcnow

logger = logging.getLogger(__name__)


class AudioJobQueue:
    def __init__(
        self,
        max_retries: int = 3,
        lease_seconds: int = 600,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
        rng=random,
    ):
        self.max_retries = max_retries
        self.lease_seconds = lease_seconds
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.rng = rng

    @classmethod
    def from_settings(cls, max_retries: Optional[int] = None) -> "AudioJobQueue":
        settings = get_settings()
        return cls(
            max_retries=max_retries if max_retries is not None else settings.audio_max_retries,
            lease_seconds=settings.audio_job_lease_seconds,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    # ── Backoff ──────────────────────────────────────────────────────

    def backoff_delay(self, attempts: int) -> float:
        """Seconds until the next try after `attempts` failures, with up to 10% jitter."""
        delay = min(self.max_delay, self.base_delay * (2 ** max(attempts - 1, 0)))
        return delay + self.rng.uniform(0, delay * 0.1)

    def next_attempt_at(self, attempts: int, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) + timedelta(seconds=self.backoff_delay(attempts))

    # ── Producer side ────────────────────────────────────────────────

    async def enqueue(
        self,
        db: AsyncSession,
        user_id: str,
        script: str,
        content_id: Optional[str] = None,
        voice_settings: Optional[dict] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> AudioGenerationJob:
        job = AudioGenerationJob(
            user_id=user_id,
            content_id=content_id,
            script=script,
            voice_settings=voice_settings or {},
            scheduled_for=scheduled_for or utcnow(),
            status=JobStatus.PENDING,
            attempts=0,
        )
        db.add(job)
        await db.flush()
        logger.info("Enqueued audio job %s for user %s", job.id, user_id)
        return job

    async def supersede(self, db: AsyncSession, content_id: str) -> int:
        """Drop unfinished jobs for a content row whose script was replaced."""
        stmt = (
            delete(AudioGenerationJob)
            .where(
                AudioGenerationJob.content_id == content_id,
                AudioGenerationJob.status != JobStatus.COMPLETED,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        count = result.rowcount or 0
        if count:
            logger.info("Superseded %d audio jobs for content %s", count, content_id)
        return count

    async def record_failed(
        self,
        db: AsyncSession,
        user_id: str,
        script: str,
        error: str,
        content_id: Optional[str] = None,
        voice_settings: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> AudioGenerationJob:
        """Insert a job that already failed once, so the retry sweep picks it up."""
        now = now or utcnow()
        job = AudioGenerationJob(
            user_id=user_id,
            content_id=content_id,
            script=script,
            voice_settings=voice_settings or {},
            scheduled_for=now,
            status=JobStatus.FAILED,
            attempts=1,
            error=error[:2000],
            next_attempt_at=self.next_attempt_at(1, now),
        )
        db.add(job)
        await db.flush()
        return job

    # ── Consumer side ────────────────────────────────────────────────

    async def due(
        self, db: AsyncSession, limit: int, now: Optional[datetime] = None
    ) -> list[tuple[str, str]]:
        """
        (id, status) of jobs ready to run, oldest schedule first: pending and due,
        or processing with an expired lease. Rows at max_retries are left alone.
        """
        now = now or utcnow()
        stmt = (
            select(AudioGenerationJob.id, AudioGenerationJob.status)
            .where(
                AudioGenerationJob.attempts < self.max_retries,
                or_(
                    and_(
                        AudioGenerationJob.status == JobStatus.PENDING,
                        AudioGenerationJob.scheduled_for <= now,
                    ),
                    and_(
                        AudioGenerationJob.status == JobStatus.PROCESSING,
                        AudioGenerationJob.lease_expires_at < now,
                    ),
                ),
            )
            .order_by(AudioGenerationJob.scheduled_for)
            .limit(limit)
        )
        result = await db.execute(stmt)
        return [(row.id, row.status) for row in result]

    async def claim(
        self,
        db: AsyncSession,
        job_id: str,
        seen_status: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """CAS pending/expired → processing with a fresh lease. False if another runner won."""
        now = now or utcnow()
        conditions = [
            AudioGenerationJob.id == job_id,
            AudioGenerationJob.status == seen_status,
        ]
        if seen_status == JobStatus.PROCESSING:
            conditions.append(AudioGenerationJob.lease_expires_at < now)

        stmt = (
            update(AudioGenerationJob)
            .where(*conditions)
            .values(
                status=JobStatus.PROCESSING,
                lease_expires_at=now + timedelta(seconds=self.lease_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        claimed = result.rowcount == 1
        if not claimed:
            logger.info("Audio job %s already claimed elsewhere", job_id)
        return claimed

    async def ack(
        self,
        db: AsyncSession,
        job_id: str,
        audio_url: str,
        now: Optional[datetime] = None,
    ) -> None:
        stmt = (
            update(AudioGenerationJob)
            .where(AudioGenerationJob.id == job_id)
            .values(
                status=JobStatus.COMPLETED,
                audio_url=audio_url,
                processed_at=now or utcnow(),
                error=None,
                lease_expires_at=None,
                next_attempt_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)

    async def nack(
        self,
        db: AsyncSession,
        job_id: str,
        attempts: int,
        error: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Mark failed, bump attempts, compute the backoff target. Returns the new attempt count."""
        now = now or utcnow()
        failures = attempts + 1
        stmt = (
            update(AudioGenerationJob)
            .where(AudioGenerationJob.id == job_id)
            .values(
                status=JobStatus.FAILED,
                attempts=failures,
                error=error[:2000],
                lease_expires_at=None,
                next_attempt_at=self.next_attempt_at(failures, now),
            )
            .execution_options(synchronize_session=False)
        )
        await db.execute(stmt)
        return failures

    # ── Maintenance ──────────────────────────────────────────────────

    async def retry_failed(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """
        Reset failed jobs with attempts <= max_retries to pending, attempts 0.
        They become due at their backoff time (or now when backoff is off).
        """
        now = now or utcnow()
        if get_flags().use_retry_backoff:
            scheduled = func.coalesce(AudioGenerationJob.next_attempt_at, now)
        else:
            scheduled = now

        stmt = (
            update(AudioGenerationJob)
            .where(
                AudioGenerationJob.status == JobStatus.FAILED,
                AudioGenerationJob.attempts <= self.max_retries,
            )
            .values(
                status=JobStatus.PENDING,
                attempts=0,
                error=None,
                scheduled_for=scheduled,
                next_attempt_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def purge_completed(
        self, db: AsyncSession, older_than_days: int, now: Optional[datetime] = None
    ) -> int:
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        stmt = (
            delete(AudioGenerationJob)
            .where(
                AudioGenerationJob.status == JobStatus.COMPLETED,
                AudioGenerationJob.processed_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount or 0

    async def status_counts(self, db: AsyncSession, user_id: str) -> dict[str, int]:
        stmt = (
            select(AudioGenerationJob.status, func.count())
            .where(AudioGenerationJob.user_id == user_id)
            .group_by(AudioGenerationJob.status)
        )
        counts = {s: 0 for s in (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED)}
        for status, count in (await db.execute(stmt)).all():
            counts[status] = count
        return counts
