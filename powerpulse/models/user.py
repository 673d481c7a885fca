"""
Subscribers, their quiz-derived profile, and streak counters.
"""

from datetime import date, datetime

from sqlalchemy import String, Integer, JSON, Date, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class User(RecordBase):
    __tablename__ = "users"

    auth_subject: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=True)
    subscription_status: Mapped[str] = mapped_column(
        String, nullable=False, default="inactive"
    )  # active, inactive, canceled, past_due
    paused_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)


class UserProfile(RecordBase):
    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    pain_points: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    goals: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    learning_style: Mapped[str] = mapped_column(String, nullable=True)  # direct, gentle, tough, story
    current_level: Mapped[int] = mapped_column(Integer, nullable=True, default=5)  # 1-10
    starting_level: Mapped[int] = mapped_column(Integer, nullable=True, default=5)
    triggers: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    blockers: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    timezone: Mapped[str] = mapped_column(String, nullable=True)
    preferred_language: Mapped[str] = mapped_column(String, nullable=True, default="en-US")
    preferred_voice: Mapped[str] = mapped_column(String, nullable=True)
    voice_settings: Mapped[dict] = mapped_column(JSON, nullable=True, default=dict)


class UserStreak(RecordBase):
    __tablename__ = "user_streaks"

    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_days_active: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_active_date: Mapped[date] = mapped_column(Date, nullable=True)
