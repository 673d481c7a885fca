"""
LLM client for script generation.

Features:
  - OpenAI-compatible chat completions (openai, gemini, aiml)
  - Anthropic Messages API (anthropic)
  - Retry with exponential backoff + jitter (handles 429, 500, 502, 503, 504)
  - Provider fallback (primary → next configured provider)
  - JSON response mode
  - Reusable client (connection pooling)

Callers that must fail fast (daily script generation) pass retries=0, fallback=False.
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=120, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Provider config ──────────────────────────────────────────────────

PROVIDERS = ("openai", "anthropic", "gemini", "aiml")


def _get_provider_config(provider: Optional[str] = None) -> tuple[str, str, str]:
    """Returns (base_url, api_key, default_model) for a provider."""
    settings = get_settings()
    p = (provider or get_flags().llm_provider).lower()

    if p == "gemini":
        return (
            "https://generativelanguage.googleapis.com/v1beta/openai",
            settings.gemini_api_key,
            settings.default_llm_model,
        )
    elif p == "anthropic":
        return settings.anthropic_base_url, settings.anthropic_api_key, settings.default_llm_model
    elif p == "aiml":
        return settings.aiml_base_url, settings.aiml_api_key, settings.default_llm_model
    else:  # openai (fallback)
        return settings.openai_base_url, settings.openai_api_key, settings.default_llm_model


def _get_fallback_provider(primary: str) -> Optional[str]:
    """First other provider with a key configured. None if there is none."""
    settings = get_settings()
    keys = {
        "openai": settings.openai_api_key,
        "anthropic": settings.anthropic_api_key,
        "gemini": settings.gemini_api_key,
        "aiml": settings.aiml_api_key,
    }
    for candidate in PROVIDERS:
        if candidate != primary and keys[candidate]:
            return candidate
    return None


# ── Retry logic ──────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0


async def _retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retries: int = MAX_RETRIES,
    **kwargs,
) -> httpx.Response:
    """Execute request with exponential backoff + jitter. retries=0 means a single attempt."""
    last_exc: Optional[Exception] = None

    for attempt in range(retries + 1):
        final = attempt == retries
        try:
            resp = await client.request(method, url, **kwargs)

            if resp.status_code not in RETRYABLE_STATUS or final:
                if resp.status_code >= 400:
                    logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
                resp.raise_for_status()
                return resp

            retry_after = resp.headers.get("retry-after")
            delay = float(retry_after) if retry_after else min(
                MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1)
            )
            logger.warning(
                "LLM %d (attempt %d/%d), retrying in %.1fs",
                resp.status_code, attempt + 1, retries + 1, delay,
            )
            await asyncio.sleep(delay)

        except httpx.TimeoutException as e:
            last_exc = e
            if final:
                break
            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))
            logger.warning(
                "LLM timeout (attempt %d/%d), retrying in %.1fs",
                attempt + 1, retries + 1, delay,
            )
            await asyncio.sleep(delay)

        except httpx.HTTPStatusError:
            raise  # Non-retryable HTTP errors

    raise last_exc or RuntimeError("LLM request failed after retries")


# ── Request building ─────────────────────────────────────────────────

def _build_request(
    provider: str,
    base_url: str,
    api_key: str,
    messages: list[dict],
    model: str,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
) -> tuple[str, dict, dict]:
    """Returns (url, headers, payload) in the provider's wire format."""
    if provider == "anthropic":
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m for m in messages if m["role"] != "system"],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            payload["system"] = system
        headers = {
            "x-api-key": api_key,
            "anthropic-version": get_settings().anthropic_version,
            "Content-Type": "application/json",
        }
        return f"{base_url.rstrip('/')}/messages", headers, payload

    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    return f"{base_url.rstrip('/')}/chat/completions", headers, payload


def _extract_text(provider: str, data: dict) -> str:
    if provider == "anthropic":
        blocks = data.get("content") or []
        return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
    return data["choices"][0]["message"]["content"] or ""


def _extract_usage(provider: str, data: dict) -> tuple[int, int]:
    usage = data.get("usage", {})
    if provider == "anthropic":
        return usage.get("input_tokens", 0), usage.get("output_tokens", 0)
    return usage.get("prompt_tokens", 0), usage.get("completion_tokens", 0)


# ── Main chat function ───────────────────────────────────────────────

async def chat(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    provider: Optional[str] = None,
    json_mode: bool = False,
    retries: int = MAX_RETRIES,
    fallback: bool = True,
) -> str:
    """
    Chat completion with retry + optional provider fallback.
    Returns the assistant text.
    """
    settings = get_settings()
    active_provider = (provider or get_flags().llm_provider).lower()
    base_url, api_key, default_model = _get_provider_config(active_provider)

    if not api_key:
        raise ValueError(
            f"No API key for LLM provider '{active_provider}'. "
            "Set OPENAI_API_KEY, ANTHROPIC_API_KEY, GEMINI_API_KEY, or AIML_API_KEY."
        )

    url, headers, payload = _build_request(
        active_provider,
        base_url,
        api_key,
        messages,
        model or default_model,
        temperature if temperature is not None else settings.default_llm_temperature,
        max_tokens or settings.default_llm_max_tokens,
        json_mode,
    )

    start = time.monotonic()
    client = _get_client()

    try:
        resp = await _retry_request(
            client, "POST", url, retries=retries, json=payload, headers=headers
        )
        data = resp.json()
        elapsed = time.monotonic() - start

        tokens_in, tokens_out = _extract_usage(active_provider, data)
        logger.info(
            "LLM %s: %dms | in=%d out=%d tokens | model=%s",
            active_provider, int(elapsed * 1000), tokens_in, tokens_out, payload["model"],
        )
        return _extract_text(active_provider, data)

    except Exception as e:
        elapsed = time.monotonic() - start
        logger.error("LLM failed after %.1fs: %s", elapsed, e)

        if fallback and not provider:  # Only fallback once
            alternate = _get_fallback_provider(active_provider)
            if alternate:
                logger.info("Falling back to %s", alternate)
                return await chat(
                    messages=messages, temperature=temperature, max_tokens=max_tokens,
                    provider=alternate, json_mode=json_mode, retries=retries, fallback=False,
                )
        raise


# ── Convenience functions ────────────────────────────────────────────

async def chat_json(
    prompt: str,
    system: str = "",
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    retries: int = MAX_RETRIES,
    fallback: bool = True,
) -> dict:
    """
    Send a prompt, parse the reply as a JSON object.
    Raises ValueError when the reply is not a JSON object.
    """
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    text = await chat(
        messages=messages, temperature=temperature, max_tokens=max_tokens,
        json_mode=True, retries=retries, fallback=fallback,
    )
    parsed = json.loads(_strip_fences(text))
    if not isinstance(parsed, dict):
        raise ValueError("LLM reply is not a JSON object")
    return parsed


def _strip_fences(text: str) -> str:
    """Anthropic has no JSON mode and sometimes wraps replies in ```json fences."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
