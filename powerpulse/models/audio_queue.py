"""
Audio generation queue — one row per pending TTS + storage task.
"""

from datetime import datetime

from sqlalchemy import String, Text, JSON, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AudioGenerationJob(RecordBase):
    __tablename__ = "audio_generation_queue"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    content_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    script: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    voice_settings: Mapped[dict] = mapped_column(JSON, nullable=True, default=dict)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=JobStatus.PENDING, index=True
    )  # pending, processing, completed, failed
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str] = mapped_column(String, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    # Claim lease; a processing row past this time is reclaimable
    lease_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    # Backoff target computed on failure
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
