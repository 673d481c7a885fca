"""
Text-to-Speech adapter over Google Cloud Text-to-Speech.

The SDK client is synchronous, so every call runs in a worker thread
(asyncio.to_thread). Voice settings are validated by pydantic before a request
is built; API failures and empty payloads surface as TTSError.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Literal, Optional, Union
from xml.sax.saxutils import escape, quoteattr

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.config import get_settings
from ..core.errors import TTSError, ValidationError

logger = logging.getLogger(__name__)

# Google encoding name → file format
ENCODING_FORMATS = {
    "MP3": "mp3",
    "LINEAR16": "wav",
    "OGG_OPUS": "ogg",
}

EFFECTS_PROFILE = "headphone-class-device"
WORDS_PER_MINUTE = 150
PREVIEW_TEXT = (
    "Hello! This is a preview of my voice. "
    "I'll be guiding you through your daily motivation sessions."
)


class VoiceSettings(BaseModel):
    """Accepts snake_case or the camelCase keys stored on profiles and queue rows."""

    model_config = ConfigDict(populate_by_name=True)

    language_code: str = Field(default="en-US", alias="languageCode")
    name: Optional[str] = None
    gender: Literal["MALE", "FEMALE", "NEUTRAL"] = "FEMALE"
    speaking_rate: float = Field(default=1.0, ge=0.25, le=4.0, alias="speakingRate")
    pitch: float = Field(default=0.0, ge=-20, le=20)
    volume_gain_db: float = Field(default=0.0, ge=-96, le=16, alias="volumeGainDb")


VoiceOverrides = Union[VoiceSettings, dict, None]


@dataclass
class TTSResult:
    audio_content: bytes
    format: str  # mp3, wav, ogg
    duration: Optional[int] = None


@dataclass
class VoiceOption:
    name: str
    language_code: str
    ssml_gender: str
    natural_sample_rate_hertz: int
    description: str
    category: str  # neural, wavenet, standard


# ── SSML ─────────────────────────────────────────────────────────────

class SSMLBuilder:
    """Fluent builder for <speak> documents. Text arguments are escaped."""

    def __init__(self):
        self._parts: list[str] = []

    def add_text(self, text: str, raw: bool = False) -> "SSMLBuilder":
        self._parts.append(text if raw else escape(text))
        return self

    def add_pause(self, duration: str) -> "SSMLBuilder":
        self._parts.append(f"<break time={quoteattr(duration)}/>")
        return self

    def add_emphasis(self, text: str, level: str = "moderate") -> "SSMLBuilder":
        self._parts.append(f"<emphasis level={quoteattr(level)}>{escape(text)}</emphasis>")
        return self

    def add_prosody(
        self,
        text: str,
        rate: Optional[str] = None,
        pitch: Optional[str] = None,
        volume: Optional[str] = None,
    ) -> "SSMLBuilder":
        attrs = " ".join(
            f"{key}={quoteattr(value)}"
            for key, value in (("rate", rate), ("pitch", pitch), ("volume", volume))
            if value
        )
        self._parts.append(f"<prosody {attrs}>{escape(text)}</prosody>")
        return self

    def add_say_as(self, text: str, interpret_as: str, format: Optional[str] = None) -> "SSMLBuilder":
        fmt = f" format={quoteattr(format)}" if format else ""
        self._parts.append(
            f"<say-as interpret-as={quoteattr(interpret_as)}{fmt}>{escape(text)}</say-as>"
        )
        return self

    def build(self) -> str:
        return f"<speak>{' '.join(self._parts)}</speak>"


_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")
_SENTENCE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


def enhance_script_with_ssml(
    script: str,
    pause_after_sentence: str = "300ms",
    pause_after_paragraph: str = "1s",
    emphasis_keywords: tuple[str, ...] = (),
) -> str:
    """Wrap a plain script in SSML: sentence and paragraph breaks, keyword emphasis."""
    builder = SSMLBuilder()
    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(script) if p.strip()]

    keyword_patterns = [
        re.compile(rf"\b{re.escape(escape(k))}\b", re.IGNORECASE)
        for k in emphasis_keywords
        if k
    ]

    for p_index, paragraph in enumerate(paragraphs):
        sentences = [s.strip() for s in _SENTENCE.findall(paragraph) if s.strip()]
        if not sentences:
            sentences = [paragraph.strip()]

        for s_index, sentence in enumerate(sentences):
            marked = escape(sentence)
            for pattern in keyword_patterns:
                marked = pattern.sub(
                    lambda m: f'<emphasis level="moderate">{m.group(0)}</emphasis>', marked
                )
            builder.add_text(marked, raw=True)

            if s_index < len(sentences) - 1:
                builder.add_pause(pause_after_sentence)

        if p_index < len(paragraphs) - 1:
            builder.add_pause(pause_after_paragraph)

    return builder.build()


# ── Voice helpers ────────────────────────────────────────────────────

def categorize_voice(voice_name: str) -> str:
    if "Neural" in voice_name:
        return "neural"
    if "Wavenet" in voice_name:
        return "wavenet"
    return "standard"


def describe_voice(voice_name: str, gender: str) -> str:
    """'en-US-Neural2-F', 'FEMALE' → 'Natural female voice with enhanced clarity (variant F)'."""
    parts = voice_name.split("-")
    voice_type = parts[-2] if len(parts) >= 2 else ""
    variant = parts[-1] if parts else ""

    description = f"{gender.lower()} voice"
    if "Neural" in voice_type:
        description = f"Natural {description} with enhanced clarity"
    elif "Wavenet" in voice_type:
        description = f"High-quality {description}"
    else:
        description = f"Standard {description}"

    letter = re.search(r"[A-Z]", variant)
    if letter:
        description += f" (variant {letter.group(0)})"
    return description


def estimate_duration(text: str, speaking_rate: float = 1.0) -> int:
    """Rough spoken length in seconds at ~150 wpm. UI display only."""
    words = len(text.split())
    minutes = words / WORDS_PER_MINUTE / speaking_rate
    return round(minutes * 60)


def _enum_name(value) -> str:
    return getattr(value, "name", None) or str(value)


# ── Service ──────────────────────────────────────────────────────────

class TextToSpeechService:
    def __init__(self, client=None, default_settings: VoiceOverrides = None):
        self._client = client
        settings = get_settings()
        base = {"language_code": settings.tts_language_code, "name": settings.tts_voice_name or None}
        self.default_settings = VoiceSettings(**base)
        if default_settings:
            self.default_settings = self.merge_settings(default_settings)

    def _get_client(self):
        if self._client is None:
            from google.cloud import texttospeech

            settings = get_settings()
            # Bills API quota to our project rather than the credential's
            options = (
                {"quota_project_id": settings.google_cloud_project_id}
                if settings.google_cloud_project_id else None
            )
            if settings.google_cloud_keyfile:
                self._client = texttospeech.TextToSpeechClient.from_service_account_file(
                    settings.google_cloud_keyfile, client_options=options
                )
            else:
                self._client = texttospeech.TextToSpeechClient(client_options=options)
            logger.info("Google TTS client initialized")
        return self._client

    def merge_settings(self, overrides: VoiceOverrides = None) -> VoiceSettings:
        """Defaults with per-call overrides on top. Invalid values raise ValidationError."""
        if not overrides:
            return self.default_settings
        try:
            if isinstance(overrides, VoiceSettings):
                patch = overrides.model_dump(exclude_unset=True)
            else:
                patch = VoiceSettings.model_validate(overrides).model_dump(exclude_unset=True)
            return self.default_settings.model_copy(update=patch)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid voice settings: {e}") from e

    # ── Synthesis ────────────────────────────────────────────────────

    def _sync_synthesize(self, text: str, voice: VoiceSettings, ssml: bool, audio_encoding: str):
        from google.cloud import texttospeech

        synthesis_input = (
            texttospeech.SynthesisInput(ssml=text) if ssml else texttospeech.SynthesisInput(text=text)
        )
        voice_params = texttospeech.VoiceSelectionParams(
            language_code=voice.language_code,
            name=voice.name or "",
            ssml_gender=texttospeech.SsmlVoiceGender[voice.gender],
        )
        audio_config = texttospeech.AudioConfig(
            audio_encoding=texttospeech.AudioEncoding[audio_encoding],
            speaking_rate=voice.speaking_rate,
            pitch=voice.pitch,
            volume_gain_db=voice.volume_gain_db,
            effects_profile_id=[EFFECTS_PROFILE],
        )
        response = self._get_client().synthesize_speech(
            input=synthesis_input,
            voice=voice_params,
            audio_config=audio_config,
        )
        return response.audio_content

    async def synthesize_speech(
        self,
        text: str,
        voice_settings: VoiceOverrides = None,
        ssml: bool = False,
        audio_encoding: str = "MP3",
    ) -> TTSResult:
        if audio_encoding not in ENCODING_FORMATS:
            raise ValidationError(f"Unsupported audio encoding: {audio_encoding}")
        voice = self.merge_settings(voice_settings)

        try:
            audio = await asyncio.to_thread(
                self._sync_synthesize, text, voice, ssml, audio_encoding
            )
        except Exception as e:
            logger.error("TTS synthesis failed (voice=%s): %s", voice.name, e)
            raise TTSError(f"Failed to synthesize speech: {e}") from e

        if not audio:
            raise TTSError("No audio content received from Google TTS")

        logger.info(
            "TTS synthesized %d bytes (%s, voice=%s, ssml=%s)",
            len(audio), audio_encoding, voice.name, ssml,
        )
        return TTSResult(audio_content=bytes(audio), format=ENCODING_FORMATS[audio_encoding])

    async def generate_voice_preview(
        self, voice_name: str, sample_text: Optional[str] = None
    ) -> TTSResult:
        return await self.synthesize_speech(sample_text or PREVIEW_TEXT, {"name": voice_name})

    async def batch_synthesize(
        self,
        items: list[dict],
        ssml: bool = False,
        audio_encoding: str = "MP3",
        max_concurrent: int = 3,
    ) -> dict[str, TTSResult]:
        """
        items: [{"id", "text", "voice_settings"?}]. Runs in windows of max_concurrent.
        Failed items are logged and left out of the result.
        """
        results: dict[str, TTSResult] = {}

        for i in range(0, len(items), max_concurrent):
            window = items[i:i + max_concurrent]
            outcomes = await asyncio.gather(
                *(
                    self.synthesize_speech(
                        item["text"], item.get("voice_settings"), ssml, audio_encoding
                    )
                    for item in window
                ),
                return_exceptions=True,
            )
            for item, outcome in zip(window, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning("Batch TTS item %s failed: %s", item["id"], outcome)
                    continue
                results[item["id"]] = outcome

        return results

    # ── Voices ───────────────────────────────────────────────────────

    def _sync_list_voices(self, language_code: Optional[str]):
        if language_code:
            return self._get_client().list_voices(language_code=language_code).voices
        return self._get_client().list_voices().voices

    async def list_voices(self, language_code: Optional[str] = None) -> list[VoiceOption]:
        try:
            voices = await asyncio.to_thread(self._sync_list_voices, language_code)
        except Exception as e:
            logger.error("Listing TTS voices failed: %s", e)
            raise TTSError(f"Failed to list voices: {e}") from e

        options = []
        for voice in voices or []:
            name = voice.name or ""
            gender = _enum_name(voice.ssml_gender)
            options.append(VoiceOption(
                name=name,
                language_code=voice.language_codes[0] if voice.language_codes else "",
                ssml_gender=gender,
                natural_sample_rate_hertz=voice.natural_sample_rate_hertz or 24000,
                description=describe_voice(name, gender),
                category=categorize_voice(name),
            ))
        return options

    # Convenience passthroughs so callers only need the service object
    enhance_script_with_ssml = staticmethod(enhance_script_with_ssml)
    estimate_duration = staticmethod(estimate_duration)
    categorize_voice = staticmethod(categorize_voice)


# Singleton
_tts_service: Optional[TextToSpeechService] = None


def get_tts_service() -> TextToSpeechService:
    global _tts_service
    if _tts_service is None:
        _tts_service = TextToSpeechService()
    return _tts_service
