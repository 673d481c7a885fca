from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from powerpulse.core.errors import GenerationError
from powerpulse.models import AudioGenerationJob, DailyContent, JobStatus
from powerpulse.services.content_generator import GeneratedContent
from powerpulse.services.content_service import (
    active_user_ids,
    generate_content_for_all_users,
    generate_content_for_user,
    generate_upcoming_content,
    record_feedback,
)

DAY = date(2026, 5, 11)


def generated(template="building_habits", title="Small Wins"):
    return GeneratedContent(
        script="A fresh script.",
        title=title,
        duration=300,
        key_points=["one", "two"],
        stage="consideration",
        tone="educational",
        template_name=template,
    )


class StubGenerator:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.generate_daily_content = AsyncMock(side_effect=self._daily)
        self.regenerate_content = AsyncMock(return_value=generated("supportive_recovery", "Gentle Restart"))

    async def _daily(self, context):
        if context.name in self.fail_for:
            raise GenerationError("script out of range")
        return generated()


@pytest.mark.asyncio
async def test_generate_content_for_user_persists_and_enqueues(session_factory, create_user):
    generator = StubGenerator()
    async with session_factory() as db:
        user = await create_user(db, preferred_voice="en-US-Neural2-C")
        content = await generate_content_for_user(db, user.id, DAY, generator=generator)
        await db.commit()

        jobs = (await db.execute(select(AudioGenerationJob))).scalars().all()

    assert content.title == "Small Wins"
    assert content.prompt_type == "building_habits"
    assert content.date == DAY
    assert content.key_points == ["one", "two"]
    assert len(jobs) == 1
    assert jobs[0].content_id == content.id
    assert jobs[0].status == JobStatus.PENDING
    assert jobs[0].voice_settings["name"] == "en-US-Neural2-C"


@pytest.mark.asyncio
async def test_existing_content_is_returned_without_generating(session_factory, create_user):
    generator = StubGenerator()
    async with session_factory() as db:
        user = await create_user(db)
        first = await generate_content_for_user(db, user.id, DAY, generator=generator)
        second = await generate_content_for_user(db, user.id, DAY, generator=generator)

    assert first.id == second.id
    assert generator.generate_daily_content.await_count == 1


@pytest.mark.asyncio
async def test_regenerate_after_negative_feedback(session_factory, create_user):
    generator = StubGenerator()
    async with session_factory() as db:
        user = await create_user(db)
        first = await generate_content_for_user(db, user.id, DAY, generator=generator)
        first.audio_url = "old.mp3"
        await record_feedback(db, user.id, first.id, "negative")

        again = await generate_content_for_user(db, user.id, DAY, regenerate=True, generator=generator)
        jobs = (
            await db.execute(select(AudioGenerationJob).where(AudioGenerationJob.content_id == first.id))
        ).scalars().all()

    assert [j.script for j in jobs] == [again.script]
    assert again.id == first.id
    assert again.title == "Gentle Restart"
    assert again.prompt_type == "supportive_recovery"
    assert again.audio_url is None
    assert generator.regenerate_content.call_args.args[1] == "negative"


@pytest.mark.asyncio
async def test_missing_user_raises_lookup_error(session_factory):
    async with session_factory() as db:
        with pytest.raises(LookupError):
            await generate_content_for_user(db, "ghost", DAY, generator=StubGenerator())


@pytest.mark.asyncio
async def test_active_user_ids_skip_inactive_and_paused(session_factory, create_user):
    now = datetime(2026, 5, 10, tzinfo=timezone.utc)
    async with session_factory() as db:
        active = await create_user(db, name="Ana")
        await create_user(db, name="Ben", subscription_status="canceled")
        await create_user(db, name="Cy", paused_until=now + timedelta(days=3))
        pause_over = await create_user(db, name="Di", paused_until=now - timedelta(days=1))
        await db.commit()

        ids = await active_user_ids(db, now=now)

    assert set(ids) == {active.id, pause_over.id}


@pytest.mark.asyncio
async def test_generate_for_all_users_captures_per_user_failures(session_factory, create_user):
    async with session_factory() as db:
        for name in ("Ana", "Ben", "Cy"):
            await create_user(db, name=name)
        await db.commit()

    results = await generate_content_for_all_users(
        DAY,
        session_factory=session_factory,
        generator=StubGenerator(fail_for={"Ben"}),
        batch_size=2,
        batch_delay=0,
    )

    assert len(results) == 3
    assert sum(r.success for r in results) == 2
    failed = [r for r in results if not r.success]
    assert "out of range" in failed[0].error

    async with session_factory() as db:
        stored = (await db.execute(select(DailyContent))).scalars().all()
    assert len(stored) == 2


@pytest.mark.asyncio
async def test_record_feedback_rules(session_factory, create_user):
    async with session_factory() as db:
        user = await create_user(db)
        other = await create_user(db, name="Zed")
        content = await generate_content_for_user(db, user.id, DAY, generator=StubGenerator())

        updated = await record_feedback(db, user.id, content.id, "positive")
        assert updated.feedback == "positive"
        assert updated.listened is True

        with pytest.raises(ValueError):
            await record_feedback(db, user.id, content.id, "meh")
        with pytest.raises(LookupError):
            await record_feedback(db, other.id, content.id, "positive")


@pytest.mark.asyncio
async def test_generate_upcoming_content_fills_consecutive_days(session_factory, create_user):
    generator = StubGenerator()
    async with session_factory() as db:
        user = await create_user(db)
        existing = await generate_content_for_user(db, user.id, DAY + timedelta(days=1), generator=generator)

        results = await generate_upcoming_content(
            db, user.id, days_ahead=3, start=DAY, generator=generator, delay=0
        )
        await db.commit()

        stored = (
            await db.execute(select(DailyContent).order_by(DailyContent.date))
        ).scalars().all()

    assert [r.success for r in results] == [True, True, True]
    assert [c.date for c in stored] == [DAY, DAY + timedelta(days=1), DAY + timedelta(days=2)]
    assert results[1].content_id == existing.id
    # The day that already had content is reused, not regenerated
    assert generator.generate_daily_content.await_count == 3


@pytest.mark.asyncio
async def test_generate_upcoming_content_pauses_between_days(session_factory, create_user, monkeypatch):
    sleep = AsyncMock()
    monkeypatch.setattr("powerpulse.services.content_service.asyncio.sleep", sleep)

    async with session_factory() as db:
        user = await create_user(db)
        await generate_upcoming_content(
            db, user.id, days_ahead=3, start=DAY, generator=StubGenerator(), delay=1.5
        )

    assert sleep.await_count == 2
    assert sleep.call_args.args[0] == 1.5


@pytest.mark.asyncio
async def test_generate_upcoming_content_records_failed_days(session_factory, create_user):
    async with session_factory() as db:
        user = await create_user(db, name="Ben")
        results = await generate_upcoming_content(
            db, user.id, days_ahead=2, start=DAY, generator=StubGenerator(fail_for={"Ben"}), delay=0
        )

    assert [r.success for r in results] == [False, False]
    assert all("out of range" in r.error for r in results)
