"""
Content Generator — one personalized ~5 minute script per call.

Template selection → fill → single LLM call (JSON mode) → parse → spoken-length check.
No retry and no provider fallback: a failed generation surfaces as GenerationError and
the caller decides what to do.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional

from . import llm
from .prompt_templates import (
    PromptTemplate,
    fill_template,
    get_prompt_template,
    select_template,
    template_variables,
)
from .user_context import UserContext, user_stage
from ..core.errors import GenerationError

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 155
MIN_MINUTES = 4.5
MAX_MINUTES = 5.5
TARGET_DURATION = 300  # seconds

RESPONSE_FORMAT = """

Respond with a single JSON object:
{
  "title": "string",
  "script": "string (the full spoken script, about 775 words)",
  "keyPoints": ["string", "string", "string"],
  "tone": "motivational | educational | celebratory | supportive"
}"""


@dataclass
class GeneratedContent:
    script: str
    title: str
    duration: int
    key_points: list[str] = field(default_factory=list)
    stage: str = "awareness"
    tone: str = "motivational"
    template_name: str = "standard_daily"


def word_count(script: str) -> int:
    return len(script.split())


def validate_script(script: str) -> bool:
    """True if the script reads aloud in 4.5–5.5 minutes at 155 wpm."""
    minutes = word_count(script) / WORDS_PER_MINUTE
    return MIN_MINUTES <= minutes <= MAX_MINUTES


class ContentGenerator:
    def __init__(self, rng=random, temperature: float = 0.7):
        self.rng = rng
        self.temperature = temperature

    async def generate_daily_content(self, context: UserContext) -> GeneratedContent:
        template_name = select_template(context, rng=self.rng)
        return await self._generate(context, template_name)

    async def regenerate_content(
        self, context: UserContext, feedback: Optional[str] = None
    ) -> GeneratedContent:
        """Fresh script for today. Negative feedback switches to the supportive template."""
        template_name = "supportive_recovery" if feedback == "negative" else "standard_daily"
        return await self._generate(context, template_name)

    async def preview_content(self, context: UserContext, template_name: str) -> GeneratedContent:
        """Generate with an explicit template. Nothing is persisted."""
        if get_prompt_template(template_name) is None:
            raise GenerationError(f"Unknown template: {template_name}")
        return await self._generate(context, template_name)

    async def _generate(self, context: UserContext, template_name: str) -> GeneratedContent:
        template = get_prompt_template(template_name)
        if template is None:
            raise GenerationError(f"Unknown template: {template_name}")

        prompt = fill_template(template.user_prompt, template_variables(context))

        try:
            data = await llm.chat_json(
                prompt,
                system=template.system_prompt + RESPONSE_FORMAT,
                temperature=self.temperature,
                retries=0,
                fallback=False,
            )
        except Exception as e:
            logger.error("Generation failed for user %s (%s): %s", context.user_id, template_name, e)
            raise GenerationError(f"Content generation failed: {e}") from e

        content = self._parse(data, context, template, template_name)

        if not validate_script(content.script):
            words = word_count(content.script)
            logger.warning(
                "Script for user %s out of range: %d words (%s)",
                context.user_id, words, template_name,
            )
            raise GenerationError(
                f"Generated script has {words} words; expected roughly 697-852"
            )

        logger.info(
            "Generated '%s' for user %s: %d words, template=%s",
            content.title, context.user_id, word_count(content.script), template_name,
        )
        return content

    @staticmethod
    def _parse(
        data: dict, context: UserContext, template: PromptTemplate, template_name: str
    ) -> GeneratedContent:
        script = data.get("script")
        if not isinstance(script, str) or not script.strip():
            raise GenerationError("LLM reply is missing a script")

        key_points = data.get("keyPoints") or []
        if not isinstance(key_points, list):
            key_points = [str(key_points)]

        return GeneratedContent(
            script=script.strip(),
            title=str(data.get("title") or template.name),
            duration=TARGET_DURATION,
            key_points=[str(p) for p in key_points],
            stage=user_stage(context.total_days_active),
            tone=data.get("tone") or template.tone,
            template_name=template_name,
        )
