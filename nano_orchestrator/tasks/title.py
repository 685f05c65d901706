"""title task — concise conversation titles."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable

from nano_orchestrator.engine.models import SamplingConfig
from nano_orchestrator.tasks.base import OneShotTask

logger = logging.getLogger(__name__)

TITLE_GENERATION_PROMPT = (
    "Based on the following conversation, generate a concise, descriptive title (3-6 words max).\n"
    "The title should capture the main topic or question.\n"
    "Return ONLY the title, nothing else. No quotes, no punctuation at the end.\n"
    "\n"
    "Conversation:\n"
    "{conversation}\n"
    "\n"
    "Title:"
)
TITLE_CONFIG = SamplingConfig(
    temperature=0.3,
    top_k=10,
    system_prompt="You generate concise, descriptive titles for conversations.",
)
TITLE_SOURCE_MAX_CHARS = 500
TITLE_MAX_LENGTH = 50
GENERIC_TERMS = ("conversation", "chat", "question", "help", "discussion")
GENERIC_TITLE_MAX_LENGTH = 30

_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")
_TRAILING_PUNCT = re.compile(r"[.!?]$")


def clean_title(raw: str, now: datetime) -> str:
    """Strip quotes and final punctuation, cap length, and disambiguate short
    generic titles with the time so they do not collapse into duplicates."""
    title = _EDGE_QUOTES.sub("", raw.strip())
    title = _TRAILING_PUNCT.sub("", title)[:TITLE_MAX_LENGTH]

    lowered = title.lower()
    if any(term in lowered for term in GENERIC_TERMS) and len(title) < GENERIC_TITLE_MAX_LENGTH:
        title = f"{title} ({now.hour}:{now.minute:02d})"
    return title


class TitleGenerator(OneShotTask):
    name = "title"

    def __init__(self, provider, now: Callable[[], datetime] = datetime.now) -> None:
        super().__init__(provider)
        self._now = now

    async def generate(self, user_text: str, ai_text: str) -> str | None:
        """Return a title, or None when the engine is missing or the call fails."""
        if not self.available:
            return None
        conversation = (
            f"User: {user_text[:TITLE_SOURCE_MAX_CHARS]}\n"
            f"AI: {ai_text[:TITLE_SOURCE_MAX_CHARS]}"
        )
        try:
            raw = await self._prompt_once(
                TITLE_CONFIG, TITLE_GENERATION_PROMPT.replace("{conversation}", conversation)
            )
        except Exception as exc:
            logger.warning("Title generation failed: %s", exc)
            return None
        if not raw or not raw.strip():
            return None
        return clean_title(raw, self._now())
