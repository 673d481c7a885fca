"""
UserContext — the per-generation snapshot of who the listener is and where they are.

Recomputed for every generation from User + UserProfile + UserStreak; never stored.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.user import User, UserProfile, UserStreak

logger = logging.getLogger(__name__)


@dataclass
class UserContext:
    user_id: str
    name: Optional[str] = None
    pain_points: list[str] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)
    learning_style: Optional[str] = None  # direct, gentle, tough, story
    current_level: int = 5
    starting_level: int = 5
    progress_stage: str = "beginner"
    current_streak: int = 0
    longest_streak: int = 0
    total_days_active: int = 0
    time_of_day: str = "morning"
    triggers: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)

    @property
    def is_returning(self) -> bool:
        """Had a streak before, lost it."""
        return self.current_streak == 0 and self.longest_streak > 0


def time_of_day(now: datetime) -> str:
    if now.hour < 12:
        return "morning"
    if now.hour < 18:
        return "afternoon"
    return "evening"


def progress_stage(total_days_active: int) -> str:
    if total_days_active < 7:
        return "beginner"
    if total_days_active < 30:
        return "intermediate"
    if total_days_active < 90:
        return "advanced"
    return "mastery"


def user_stage(total_days_active: int) -> str:
    """Funnel stage stamped onto generated content."""
    if total_days_active < 3:
        return "awareness"
    if total_days_active < 7:
        return "consideration"
    if total_days_active < 30:
        return "decision"
    return "retention"


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Wall clock in the user's timezone. Unknown zones fall back to UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if not tz_name:
        return now
    try:
        return now.astimezone(ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", tz_name)
        return now


def profile_voice_settings(profile: Optional[UserProfile]) -> dict:
    """Voice overrides from the quiz profile. Empty dict means service defaults."""
    if profile is None:
        return {}
    settings: dict = {}
    if profile.preferred_language:
        settings["language_code"] = profile.preferred_language
    if profile.preferred_voice:
        settings["name"] = profile.preferred_voice
    settings.update(profile.voice_settings or {})
    return settings


async def build_user_context(
    db: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> Optional[UserContext]:
    """Load a user's profile and streak into a fresh context. None if the user is missing."""
    user = await db.get(User, user_id)
    if user is None:
        return None

    profile = (
        await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    ).scalar_one_or_none()
    streak = (
        await db.execute(select(UserStreak).where(UserStreak.user_id == user_id))
    ).scalar_one_or_none()

    total_days = streak.total_days_active if streak else 0
    clock = local_now(profile.timezone if profile else None, now)

    return UserContext(
        user_id=user.id,
        name=user.name,
        pain_points=list(profile.pain_points or []) if profile else [],
        goals=list(profile.goals or []) if profile else [],
        learning_style=profile.learning_style if profile else None,
        current_level=(profile.current_level or 5) if profile else 5,
        starting_level=(profile.starting_level or 5) if profile else 5,
        progress_stage=progress_stage(total_days),
        current_streak=streak.current_streak if streak else 0,
        longest_streak=streak.longest_streak if streak else 0,
        total_days_active=total_days,
        time_of_day=time_of_day(clock),
        triggers=list(profile.triggers or []) if profile else [],
        blockers=list(profile.blockers or []) if profile else [],
    )
