"""smart_replies task — short follow-up prompts the user can tap."""

from __future__ import annotations

import re

from nano_orchestrator.engine.models import SamplingConfig
from nano_orchestrator.tasks.base import OneShotTask

SMART_REPLY_LIMIT = 3
SMART_REPLY_CONTEXT_CHARS = 600
SMART_REPLY_MAX_LENGTH = 120
SMART_REPLY_SYSTEM_PROMPT = "You propose short, helpful follow-up prompts for the user to click."

_LEADING_MARKER = re.compile(r"^\s*[-*\d.]+\s*")


def normalize_smart_replies(raw_text: str | None, limit: int = SMART_REPLY_LIMIT) -> list[str]:
    """One suggestion per line, bullets/numbering stripped, blanks dropped."""
    if not raw_text:
        return []
    lines = (_LEADING_MARKER.sub("", line, count=1).strip() for line in raw_text.split("\n"))
    return [line[:SMART_REPLY_MAX_LENGTH] for line in lines if line][:limit]


def _trim(value: str) -> str:
    if len(value) > SMART_REPLY_CONTEXT_CHARS:
        return value[:SMART_REPLY_CONTEXT_CHARS] + "..."
    return value


def build_smart_reply_prompt(user_text: str, ai_text: str, limit: int = SMART_REPLY_LIMIT) -> str:
    return (
        f"Suggest {limit} concise, actionable follow-up prompts the user might tap next. "
        "Write each as something the user would send to the assistant (commands/questions to the assistant), "
        "not as questions from the assistant to the user. Avoid yes/no confirmations, avoid repeating the last "
        "answer, and keep each under 12 words. Return one suggestion per line with no numbering or bullets.\n\n"
        f"User: {_trim(user_text or '')}\nAssistant: {_trim(ai_text or '')}"
    )


class SmartReplyGenerator(OneShotTask):
    name = "smart_replies"

    async def generate(
        self,
        user_text: str,
        ai_text: str,
        sampling: SamplingConfig | None = None,
        limit: int = SMART_REPLY_LIMIT,
    ) -> list[str]:
        if not self.available:
            return []
        base = sampling or SamplingConfig()
        config = base.model_copy(update={
            "temperature": max(0.3, base.temperature - 0.2),
            "top_k": 32,
            "system_prompt": SMART_REPLY_SYSTEM_PROMPT,
        })
        raw = await self._prompt_once(config, build_smart_reply_prompt(user_text, ai_text, limit))
        return normalize_smart_replies(raw, limit)
