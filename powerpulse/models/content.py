"""
Daily content — one generated script (and later its audio) per user per day.
"""

import datetime as dt

from sqlalchemy import String, Text, JSON, Integer, Boolean, Date, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class DailyContent(RecordBase):
    __tablename__ = "daily_content"
    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_content_user_date"),)

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String, nullable=True)
    script: Mapped[str] = mapped_column(Text, nullable=False)
    audio_url: Mapped[str] = mapped_column(String, nullable=True)
    duration: Mapped[int] = mapped_column(Integer, nullable=True)  # seconds
    key_points: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    stage: Mapped[str] = mapped_column(String, nullable=True)  # awareness, consideration, decision, retention
    tone: Mapped[str] = mapped_column(String, nullable=True)  # motivational, educational, celebratory, supportive
    prompt_type: Mapped[str] = mapped_column(String, nullable=True)  # template used
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    listened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    feedback: Mapped[str] = mapped_column(String, nullable=True)  # positive, neutral, negative
