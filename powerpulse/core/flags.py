"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Auth ─────────────────────────────────────────────────────────
    use_auth0: bool = Field(default=True, alias="FF_USE_AUTH0")
    # ON  → JWT validated via Auth0 JWKS. Needs AUTH0_DOMAIN, AUTH0_AUDIENCE.
    # OFF → Dev user injected (subject="dev-user"). No token needed.

    # ── Storage ──────────────────────────────────────────────────────
    use_s3: bool = Field(default=True, alias="FF_USE_S3")
    # ON  → Audio goes to AWS S3. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Audio saved under LOCAL_STORAGE_PATH. Returns local paths.

    # ── Realtime ─────────────────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub "audio.ready" events. Needs REDIS_URL.
    # OFF → Notifications silently skipped.

    # ── LLM Provider ─────────────────────────────────────────────────
    llm_provider: str = Field(default="openai", alias="FF_LLM_PROVIDER")
    # "openai"    → Direct OpenAI. Needs OPENAI_API_KEY.
    # "anthropic" → Anthropic Messages API. Needs ANTHROPIC_API_KEY.
    # "gemini"    → Gemini OpenAI-compatible endpoint. Needs GEMINI_API_KEY.
    # "aiml"      → AIML API proxy. Needs AIML_API_KEY.

    # ── Speech ───────────────────────────────────────────────────────
    use_ssml: bool = Field(default=True, alias="FF_USE_SSML")
    # ON  → Queued scripts get SSML pauses/emphasis before synthesis.
    # OFF → Plain text goes to TTS.

    # ── Queue ────────────────────────────────────────────────────────
    use_retry_backoff: bool = Field(default=True, alias="FF_USE_RETRY_BACKOFF")
    # ON  → Failed jobs are rescheduled with exponential backoff + jitter.
    # OFF → retry_failed_jobs makes them due immediately.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
