import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from powerpulse.core.config import get_settings
from powerpulse.core.database import Base
from powerpulse.core.flags import get_flags
from powerpulse.core.errors import TTSError
from powerpulse.models import User, UserProfile, UserStreak
from powerpulse.services.tts import TTSResult, enhance_script_with_ssml

# 300 s of 128 kbps mp3 by the processor's size heuristic
FIVE_MINUTES_MP3 = 16384 * 300


@pytest.fixture(autouse=True)
def local_env(monkeypatch, tmp_path):
    """Every external dependency off; settings re-read per test."""
    monkeypatch.setenv("FF_USE_AUTH0", "false")
    monkeypatch.setenv("FF_USE_S3", "false")
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setenv("LOCAL_STORAGE_PATH", str(tmp_path / "storage"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'app.db'}")
    get_settings.cache_clear()
    get_flags.cache_clear()
    yield
    get_settings.cache_clear()
    get_flags.cache_clear()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def create_user():
    async def _create(
        db,
        name="Sam",
        subscription_status="active",
        paused_until=None,
        current_streak=3,
        longest_streak=3,
        total_days_active=3,
        timezone=None,
        **profile,
    ):
        user = User(
            auth_subject=f"auth|{name.lower()}",
            email=f"{name.lower()}@example.com",
            name=name,
            subscription_status=subscription_status,
            paused_until=paused_until,
        )
        db.add(user)
        await db.flush()
        db.add(UserProfile(
            user_id=user.id,
            pain_points=profile.get("pain_points", ["afternoon slumps"]),
            goals=profile.get("goals", ["steady energy"]),
            learning_style=profile.get("learning_style", "direct"),
            current_level=profile.get("current_level", 4),
            starting_level=profile.get("starting_level", 3),
            timezone=timezone,
            preferred_voice=profile.get("preferred_voice"),
        ))
        db.add(UserStreak(
            user_id=user.id,
            current_streak=current_streak,
            longest_streak=longest_streak,
            total_days_active=total_days_active,
        ))
        await db.flush()
        return user

    return _create


class FakeTTS:
    """Stands in for TextToSpeechService. Records calls; fails on demand."""

    def __init__(self, size=FIVE_MINUTES_MP3, fail=False):
        self.size = size
        self.fail = fail
        self.calls = []

    enhance_script_with_ssml = staticmethod(enhance_script_with_ssml)

    async def synthesize_speech(self, text, voice_settings=None, ssml=False, audio_encoding="MP3"):
        self.calls.append({"text": text, "voice_settings": voice_settings, "ssml": ssml})
        if self.fail:
            raise TTSError("quota exceeded")
        return TTSResult(audio_content=b"\x00" * self.size, format="mp3")


@pytest.fixture
def fake_tts():
    return FakeTTS()


def script_of(words: int) -> str:
    sentences = []
    remaining = words
    while remaining > 0:
        n = min(10, remaining)
        sentences.append(" ".join(["energy"] * n) + ".")
        remaining -= n
    return " ".join(sentences)


@pytest.fixture
def make_script():
    return script_of
