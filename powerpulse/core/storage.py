"""
File storage abstraction. S3 OR local filesystem. Controlled by FF_USE_S3 flag.

Audio objects live under audio/user/{user_id}/content/{content_id|queue}/{date}_{ms}.{fmt}.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Optional

from .config import get_settings
from .errors import ValidationError
from .flags import get_flags

logger = logging.getLogger(__name__)

MAX_OBJECT_SIZE = 50 * 1024 * 1024

AUDIO_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}


class StorageBackend(ABC):
    @abstractmethod
    async def upload(self, file_bytes: bytes, key: str, content_type: str) -> str:
        """Store bytes under key. Returns the URL/path to the stored file."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def get_url(self, key: str) -> str:
        """Get public/accessible URL for a stored file."""
        ...


class S3Storage(StorageBackend):
    def __init__(self):
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3

            settings = get_settings()
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    async def upload(self, file_bytes: bytes, key: str, content_type: str) -> str:
        settings = get_settings()
        client = self._get_client()
        await asyncio.to_thread(
            client.put_object,
            Bucket=settings.s3_bucket_name,
            Key=key,
            Body=file_bytes,
            ContentType=content_type,
            CacheControl="public, max-age=31536000",
        )
        logger.info("Uploaded to S3: %s (%d bytes)", key, len(file_bytes))
        return await self.get_url(key)

    async def delete(self, key: str) -> None:
        settings = get_settings()
        await asyncio.to_thread(
            self._get_client().delete_object, Bucket=settings.s3_bucket_name, Key=key
        )
        logger.info("Deleted from S3: %s", key)

    async def get_url(self, key: str) -> str:
        settings = get_settings()
        return f"https://{settings.s3_bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"


class LocalStorage(StorageBackend):
    def __init__(self, base_path: Optional[str] = None):
        self.base_path = Path(base_path or get_settings().local_storage_path)

    async def upload(self, file_bytes: bytes, key: str, content_type: str) -> str:
        file_path = self.base_path / key
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(file_bytes)

        logger.info("Saved locally: %s", file_path)
        return str(file_path)

    async def delete(self, key: str) -> None:
        (self.base_path / key).unlink(missing_ok=True)

    async def get_url(self, key: str) -> str:
        return str(self.base_path / key)


def get_storage() -> StorageBackend:
    """Return the active storage backend based on feature flags."""
    flags = get_flags()
    if flags.use_s3:
        return S3Storage()
    return LocalStorage()


# ── Audio objects ────────────────────────────────────────────────────

@dataclass
class AudioFileMetadata:
    user_id: str
    format: str  # mp3, wav, ogg
    content_id: Optional[str] = None
    day: Optional[date] = None


@dataclass
class StoredAudio:
    url: str
    key: str
    size: int
    content_type: str


def audio_key(meta: AudioFileMetadata, now_ms: Optional[int] = None) -> str:
    day = (meta.day or date.today()).isoformat()
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    slot = meta.content_id or "queue"
    return f"audio/user/{meta.user_id}/content/{slot}/{day}_{ms}.{meta.format}"


async def store_audio(
    storage: StorageBackend, audio: bytes, meta: AudioFileMetadata
) -> StoredAudio:
    """Upload synthesized audio under the per-user key layout."""
    if meta.format not in AUDIO_CONTENT_TYPES:
        raise ValidationError(f"Unsupported audio format: {meta.format}")
    if len(audio) > MAX_OBJECT_SIZE:
        raise ValidationError(
            f"Audio object too large: {len(audio)} bytes (max: {MAX_OBJECT_SIZE})"
        )

    key = audio_key(meta)
    content_type = AUDIO_CONTENT_TYPES[meta.format]
    url = await storage.upload(audio, key, content_type)
    return StoredAudio(url=url, key=key, size=len(audio), content_type=content_type)
