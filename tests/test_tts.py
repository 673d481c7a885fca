from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from powerpulse.core.errors import TTSError, ValidationError
from powerpulse.services.tts import (
    SSMLBuilder,
    TextToSpeechService,
    categorize_voice,
    describe_voice,
    enhance_script_with_ssml,
    estimate_duration,
)


def service_with(client):
    return TextToSpeechService(client=client)


# ── SSML ─────────────────────────────────────────────────────────────

def test_enhance_script_adds_sentence_and_paragraph_breaks():
    ssml = enhance_script_with_ssml("One. Two!\n\nThree?")
    assert ssml == (
        '<speak>One. <break time="300ms"/> Two! <break time="1s"/> Three?</speak>'
    )


def test_enhance_script_keeps_trailing_text_without_punctuation():
    ssml = enhance_script_with_ssml("First sentence. and a tail")
    assert "and a tail" in ssml


def test_enhance_script_escapes_xml():
    ssml = enhance_script_with_ssml("Rest & recover <now>.")
    assert "Rest &amp; recover &lt;now&gt;." in ssml
    assert "<now>" not in ssml


def test_enhance_script_emphasis_keeps_original_case():
    ssml = enhance_script_with_ssml(
        "Energy is a skill. Build your energy daily.", emphasis_keywords=("energy",)
    )
    assert '<emphasis level="moderate">Energy</emphasis>' in ssml
    assert '<emphasis level="moderate">energy</emphasis>' in ssml


def test_enhance_script_custom_pauses():
    ssml = enhance_script_with_ssml("A. B.", pause_after_sentence="400ms")
    assert '<break time="400ms"/>' in ssml


def test_ssml_builder():
    ssml = (
        SSMLBuilder()
        .add_text("Hi")
        .add_pause("500ms")
        .add_emphasis("now", level="strong")
        .add_prosody("slowly", rate="slow")
        .add_say_as("2026-01-01", "date", format="ymd")
        .build()
    )
    assert ssml == (
        '<speak>Hi <break time="500ms"/> <emphasis level="strong">now</emphasis> '
        '<prosody rate="slow">slowly</prosody> '
        '<say-as interpret-as="date" format="ymd">2026-01-01</say-as></speak>'
    )


# ── Voice helpers ────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "name, category",
    [("en-US-Neural2-F", "neural"), ("en-US-Wavenet-D", "wavenet"), ("en-US-Standard-B", "standard")],
)
def test_categorize_voice(name, category):
    assert categorize_voice(name) == category


def test_describe_voice():
    assert describe_voice("en-US-Neural2-F", "FEMALE") == "Natural female voice with enhanced clarity (variant F)"
    assert describe_voice("en-US-Wavenet-D", "MALE") == "High-quality male voice (variant D)"
    assert describe_voice("en-US-Standard-B", "NEUTRAL") == "Standard neutral voice (variant B)"


def test_estimate_duration():
    text = " ".join(["word"] * 150)
    assert estimate_duration(text) == 60
    assert estimate_duration(text, speaking_rate=2.0) == 30


# ── Settings ─────────────────────────────────────────────────────────

def test_merge_settings_applies_overrides_over_defaults():
    tts = service_with(MagicMock())
    merged = tts.merge_settings({"speakingRate": 1.2, "name": "en-US-Wavenet-D"})
    assert merged.speaking_rate == 1.2
    assert merged.name == "en-US-Wavenet-D"
    assert merged.language_code == "en-US"
    assert merged.gender == "FEMALE"


@pytest.mark.parametrize("override", [{"speaking_rate": 5}, {"pitch": -21}, {"volume_gain_db": 17}])
def test_merge_settings_rejects_out_of_range(override):
    with pytest.raises(ValidationError):
        service_with(MagicMock()).merge_settings(override)


# ── Synthesis ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_synthesize_speech_builds_request():
    client = MagicMock()
    client.synthesize_speech.return_value = SimpleNamespace(audio_content=b"ID3audio")

    result = await service_with(client).synthesize_speech(
        "<speak>Hi</speak>", {"speaking_rate": 0.9}, ssml=True, audio_encoding="OGG_OPUS"
    )

    assert result.audio_content == b"ID3audio"
    assert result.format == "ogg"
    kwargs = client.synthesize_speech.call_args.kwargs
    assert kwargs["input"].ssml == "<speak>Hi</speak>"
    assert kwargs["voice"].language_code == "en-US"
    assert list(kwargs["audio_config"].effects_profile_id) == ["headphone-class-device"]
    assert kwargs["audio_config"].speaking_rate == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_linear16_maps_to_wav():
    client = MagicMock()
    client.synthesize_speech.return_value = SimpleNamespace(audio_content=b"RIFF")
    result = await service_with(client).synthesize_speech("hi", audio_encoding="LINEAR16")
    assert result.format == "wav"


@pytest.mark.asyncio
async def test_empty_audio_raises():
    client = MagicMock()
    client.synthesize_speech.return_value = SimpleNamespace(audio_content=b"")
    with pytest.raises(TTSError):
        await service_with(client).synthesize_speech("hi")


@pytest.mark.asyncio
async def test_api_failure_raises():
    client = MagicMock()
    client.synthesize_speech.side_effect = RuntimeError("permission denied")
    with pytest.raises(TTSError):
        await service_with(client).synthesize_speech("hi")


@pytest.mark.asyncio
async def test_voice_preview_uses_requested_voice():
    client = MagicMock()
    client.synthesize_speech.return_value = SimpleNamespace(audio_content=b"x")
    await service_with(client).generate_voice_preview("en-US-Wavenet-D")
    assert client.synthesize_speech.call_args.kwargs["voice"].name == "en-US-Wavenet-D"


@pytest.mark.asyncio
async def test_batch_synthesize_drops_failures():
    client = MagicMock()

    def synth(input, voice, audio_config):
        if input.text == "bad":
            raise RuntimeError("boom")
        return SimpleNamespace(audio_content=input.text.encode())

    client.synthesize_speech.side_effect = synth
    items = [{"id": str(i), "text": t} for i, t in enumerate(["a", "bad", "c", "d"])]

    results = await service_with(client).batch_synthesize(items, max_concurrent=2)

    assert sorted(results) == ["0", "2", "3"]
    assert results["3"].audio_content == b"d"


@pytest.mark.asyncio
async def test_list_voices():
    client = MagicMock()
    client.list_voices.return_value = SimpleNamespace(voices=[
        SimpleNamespace(
            name="en-US-Neural2-F", language_codes=["en-US"],
            ssml_gender="FEMALE", natural_sample_rate_hertz=24000,
        ),
        SimpleNamespace(
            name="en-US-Standard-B", language_codes=["en-US"],
            ssml_gender="MALE", natural_sample_rate_hertz=0,
        ),
    ])

    voices = await service_with(client).list_voices("en-US")

    assert [v.category for v in voices] == ["neural", "standard"]
    assert voices[0].description.startswith("Natural female voice")
    assert voices[1].natural_sample_rate_hertz == 24000
    client.list_voices.assert_called_once_with(language_code="en-US")
