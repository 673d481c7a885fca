import json
from unittest.mock import patch

import httpx
import pytest

from powerpulse.core.config import get_settings
from powerpulse.core.flags import get_flags
from powerpulse.services import llm


@pytest.fixture
def providers(monkeypatch):
    def configure(primary="openai", **keys):
        monkeypatch.setenv("FF_LLM_PROVIDER", primary)
        for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "AIML_API_KEY"):
            monkeypatch.setenv(name, keys.get(name.split("_")[0].lower(), ""))
        get_settings.cache_clear()
        get_flags.cache_clear()

    return configure


def mock_client(handler):
    return patch.object(
        llm, "_get_client", return_value=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


def openai_reply(text):
    return httpx.Response(200, json={
        "choices": [{"message": {"content": text}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    })


@pytest.mark.asyncio
async def test_openai_json_mode_request(providers):
    providers("openai", openai="sk-test")
    seen = []

    def handler(request):
        seen.append(request)
        return openai_reply('{"title": "Day One"}')

    with mock_client(handler):
        result = await llm.chat_json("Write it", system="You coach.")

    assert result == {"title": "Day One"}
    request = seen[0]
    assert request.url.path.endswith("/chat/completions")
    assert request.headers["authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0] == {"role": "system", "content": "You coach."}


@pytest.mark.asyncio
async def test_anthropic_request_shape(providers):
    providers("anthropic", anthropic="ak-test")
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={
            "content": [{"type": "text", "text": '```json\n{"title": "Fenced"}\n```'}],
            "usage": {"input_tokens": 3, "output_tokens": 4},
        })

    with mock_client(handler):
        result = await llm.chat_json("Write it", system="You coach.")

    assert result == {"title": "Fenced"}
    request = seen[0]
    assert request.url.path.endswith("/messages")
    assert request.headers["x-api-key"] == "ak-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert body["system"] == "You coach."
    assert [m["role"] for m in body["messages"]] == ["user"]
    assert "response_format" not in body


@pytest.mark.asyncio
async def test_retries_zero_makes_single_attempt(providers):
    providers("openai", openai="sk-test", anthropic="ak-test")
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    with mock_client(handler):
        with pytest.raises(httpx.HTTPStatusError):
            await llm.chat_json("Write it", retries=0, fallback=False)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retryable_status_is_retried(providers):
    providers("openai", openai="sk-test")
    responses = iter([
        httpx.Response(429, headers={"retry-after": "0"}),
        openai_reply("hello"),
    ])

    with mock_client(lambda request: next(responses)):
        text = await llm.chat([{"role": "user", "content": "hi"}], retries=1)

    assert text == "hello"


@pytest.mark.asyncio
async def test_fallback_to_next_configured_provider(providers):
    providers("openai", openai="sk-test", gemini="g-test")
    hosts = []

    def handler(request):
        hosts.append(request.url.host)
        if request.url.host == "api.openai.com":
            return httpx.Response(400, text="bad request")
        return openai_reply("from gemini")

    with mock_client(handler):
        text = await llm.chat([{"role": "user", "content": "hi"}])

    assert text == "from gemini"
    assert hosts == ["api.openai.com", "generativelanguage.googleapis.com"]


@pytest.mark.asyncio
async def test_non_object_json_is_rejected(providers):
    providers("openai", openai="sk-test")
    with mock_client(lambda request: openai_reply("[1, 2]")):
        with pytest.raises(ValueError):
            await llm.chat_json("Write it", retries=0, fallback=False)


@pytest.mark.asyncio
async def test_missing_key_raises(providers):
    providers("openai")
    with pytest.raises(ValueError, match="No API key"):
        await llm.chat([{"role": "user", "content": "hi"}])


def test_strip_fences():
    assert llm._strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert llm._strip_fences('  {"a": 1} ') == '{"a": 1}'
