"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .user import User, UserProfile, UserStreak
from .content import DailyContent
from .audio_queue import AudioGenerationJob, JobStatus

__all__ = [
    "RecordBase",
    "User", "UserProfile", "UserStreak",
    "DailyContent",
    "AudioGenerationJob", "JobStatus",
]
