"""
Audio post-processing: validate synthesized audio before it is stored.

Duration is estimated from byte length and a typical bitrate per format when the
caller has no better number. The estimate is approximate; it gates obviously
truncated or runaway output, not exact timing.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.config import get_settings
from ..core.errors import ValidationError

logger = logging.getLogger(__name__)

AudioFormat = Literal["mp3", "wav", "ogg"]

DURATION_TOLERANCE = 30  # seconds either side of target

# Typical bytes/second: 128 kbps mp3, 44.1 kHz 16-bit mono wav, 96 kbps ogg
BYTES_PER_SECOND = {
    "mp3": 128 * 1024 // 8,
    "wav": 44100 * 2 * 1,
    "ogg": 96 * 1024 // 8,
}

DEFAULT_SAMPLE_RATES = {
    "mp3": 44100,
    "wav": 44100,
    "ogg": 48000,
}


class AudioProcessingOptions(BaseModel):
    target_duration: int = Field(default=300, ge=240, le=360)
    max_size: int = Field(default=10 * 1024 * 1024, gt=0)
    compress: bool = True
    normalize: bool = True


@dataclass
class AudioMetadata:
    duration: int
    format: str
    sample_rate: int
    size: int
    bitrate: int = 0
    channels: int = 1


@dataclass
class ProcessedAudio:
    buffer: bytes
    metadata: AudioMetadata
    compressed: bool = False


def estimate_duration(size: int, format: str) -> int:
    return round(size / BYTES_PER_SECOND[format])


def estimate_bitrate(size: int, duration: float) -> int:
    if not duration:
        return 0
    return round(size * 8 / duration)


class AudioProcessor:
    def __init__(self, options: Optional[dict] = None, **overrides):
        try:
            self.options = AudioProcessingOptions(**{**(options or {}), **overrides})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid audio processing options: {e}") from e

    @property
    def min_duration(self) -> int:
        return self.options.target_duration - DURATION_TOLERANCE

    @property
    def max_duration(self) -> int:
        return self.options.target_duration + DURATION_TOLERANCE

    def process_audio(
        self,
        buffer: bytes,
        format: str,
        hints: Optional[dict] = None,
    ) -> ProcessedAudio:
        """
        Validate a synthesized buffer and attach metadata.

        hints may carry duration, sample_rate, bitrate, channels; falsy values
        are ignored and estimated instead.
        """
        hints = hints or {}

        if not buffer:
            raise ValidationError("Invalid audio buffer: empty")

        if format not in BYTES_PER_SECOND:
            raise ValidationError(f"Unsupported audio format: {format}")

        size = len(buffer)
        if size > self.options.max_size:
            raise ValidationError(
                f"Audio file too large: {size} bytes (max: {self.options.max_size})"
            )

        duration = hints.get("duration") or estimate_duration(size, format)
        self._validate_duration(duration)

        metadata = AudioMetadata(
            duration=duration,
            format=format,
            sample_rate=hints.get("sample_rate") or DEFAULT_SAMPLE_RATES[format],
            bitrate=hints.get("bitrate") or estimate_bitrate(size, duration),
            size=size,
            channels=hints.get("channels") or 1,
        )

        # mp3 arrives already compressed; nothing to re-encode
        compressed = self.options.compress and format == "mp3"

        return ProcessedAudio(buffer=buffer, metadata=metadata, compressed=compressed)

    def _validate_duration(self, duration: float) -> None:
        if duration < self.min_duration:
            raise ValidationError(
                f"Audio duration too short: {duration}s (minimum: {self.min_duration}s)"
            )
        if duration > self.max_duration:
            raise ValidationError(
                f"Audio duration too long: {duration}s (maximum: {self.max_duration}s)"
            )

    # ── Placeholders ─────────────────────────────────────────────────
    # No codec library is wired in; these return their input unchanged.

    def convert_format(self, buffer: bytes, from_format: str, to_format: str) -> bytes:
        logger.warning("Format conversion %s → %s not implemented; returning input", from_format, to_format)
        return buffer

    def optimize_for_web(self, buffer: bytes, format: str) -> bytes:
        if len(buffer) > 5 * 1024 * 1024:
            logger.warning("Audio file is large (%d bytes), consider compression", len(buffer))
        return buffer

    def add_metadata_tags(self, buffer: bytes, format: str, tags: dict) -> bytes:
        logger.warning("Metadata tagging not implemented; tags %s not written", sorted(tags))
        return buffer

    def create_preview_clip(
        self, buffer: bytes, format: str, start: float = 0, duration: float = 30
    ) -> bytes:
        """Proportional byte slice of the clip window, assuming a full-length buffer."""
        logger.warning("Preview clip is a byte slice, not a decoded cut")
        total = self.options.target_duration
        start_byte = int(start / total * len(buffer))
        end_byte = int((start + duration) / total * len(buffer))
        return buffer[start_byte:end_byte]

    def analyze_quality(self, buffer: bytes, format: str) -> dict:
        logger.warning("Quality analysis not implemented; returning nominal metrics")
        return {
            "silence_ratio": 0.05,
            "peak_level": 0.95,
            "average_level": 0.7,
            "dynamic_range": 12,
        }


# Singleton
_processor: Optional[AudioProcessor] = None


def get_audio_processor() -> AudioProcessor:
    global _processor
    if _processor is None:
        settings = get_settings()
        _processor = AudioProcessor(
            target_duration=settings.audio_target_duration,
            max_size=settings.audio_max_size,
        )
    return _processor
