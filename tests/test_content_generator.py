from unittest.mock import AsyncMock, patch

import pytest

from powerpulse.core.errors import GenerationError
from powerpulse.services.content_generator import (
    TARGET_DURATION,
    ContentGenerator,
    validate_script,
)
from powerpulse.services.user_context import UserContext


class FixedRng:
    def random(self):
        return 0.0


def context(**kw):
    defaults = dict(
        user_id="u1", name="Jo", goals=["more energy"], pain_points=["fatigue"],
        current_streak=4, longest_streak=4, total_days_active=4, time_of_day="afternoon",
    )
    defaults.update(kw)
    return UserContext(**defaults)


def llm_reply(script, **kw):
    reply = {
        "title": "Small Wins",
        "script": script,
        "keyPoints": ["start small", "stack habits"],
        "tone": "educational",
    }
    reply.update(kw)
    return reply


@pytest.mark.parametrize("words, ok", [(697, False), (698, True), (775, True), (852, True), (853, False)])
def test_validate_script_window(make_script, words, ok):
    assert validate_script(make_script(words)) is ok


@pytest.mark.asyncio
async def test_generate_daily_content(make_script):
    mock = AsyncMock(return_value=llm_reply(make_script(775)))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        content = await ContentGenerator(rng=FixedRng()).generate_daily_content(context())

    assert content.title == "Small Wins"
    assert content.duration == TARGET_DURATION
    assert content.key_points == ["start small", "stack habits"]
    assert content.stage == "consideration"
    assert content.template_name == "building_habits"

    kwargs = mock.call_args.kwargs
    assert kwargs["retries"] == 0
    assert kwargs["fallback"] is False
    assert kwargs["temperature"] == 0.7
    assert "Jo" in mock.call_args.args[0]


@pytest.mark.asyncio
async def test_short_script_raises(make_script):
    mock = AsyncMock(return_value=llm_reply(make_script(300)))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        with pytest.raises(GenerationError):
            await ContentGenerator(rng=FixedRng()).generate_daily_content(context())
    assert mock.await_count == 1


@pytest.mark.asyncio
async def test_transport_failure_raises_generation_error():
    mock = AsyncMock(side_effect=RuntimeError("503 upstream"))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        with pytest.raises(GenerationError):
            await ContentGenerator().generate_daily_content(context())
    assert mock.await_count == 1


@pytest.mark.asyncio
async def test_bad_json_raises_generation_error():
    mock = AsyncMock(side_effect=ValueError("Expecting value"))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        with pytest.raises(GenerationError):
            await ContentGenerator().generate_daily_content(context())


@pytest.mark.asyncio
async def test_missing_script_raises_generation_error():
    mock = AsyncMock(return_value={"title": "Empty"})
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        with pytest.raises(GenerationError):
            await ContentGenerator().generate_daily_content(context())


@pytest.mark.asyncio
async def test_regenerate_uses_supportive_recovery_on_negative_feedback(make_script):
    mock = AsyncMock(return_value=llm_reply(make_script(775), tone=None))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        negative = await ContentGenerator().regenerate_content(context(), "negative")
        neutral = await ContentGenerator().regenerate_content(context(), "neutral")

    assert negative.template_name == "supportive_recovery"
    assert negative.tone == "supportive"
    assert neutral.template_name == "standard_daily"


@pytest.mark.asyncio
async def test_preview_content_rejects_unknown_template():
    with pytest.raises(GenerationError):
        await ContentGenerator().preview_content(context(), "does_not_exist")


@pytest.mark.asyncio
async def test_preview_content_uses_requested_template(make_script):
    mock = AsyncMock(return_value=llm_reply(make_script(780)))
    with patch("powerpulse.services.content_generator.llm.chat_json", mock):
        content = await ContentGenerator().preview_content(context(), "evening_reflection")
    assert content.template_name == "evening_reflection"
