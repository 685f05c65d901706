"""Prompt assembly: rules, page context, attachment text, history, user question."""

from __future__ import annotations

import logging
import re
from datetime import datetime

from nano_orchestrator.engine.models import GenerationRequest

logger = logging.getLogger(__name__)

ASSISTANT_RULES = (
    "You run inside a browser side panel.\n"
    "You have access to the active tab's text content AND the conversation history.\n"
    "If the user asks about a previous topic or summary, LOOK AT THE CHAT HISTORY.\n"
    "Do not mention browsing limitations.\n"
    "Keep answers concise but helpful."
)

CHARS_PER_TOKEN = 4
CONTEXT_CHAR_LIMIT = 6_000 * CHARS_PER_TOKEN
ATTACHMENT_CHAR_LIMIT = 1_500 * CHARS_PER_TOKEN
TRUNCATION_MARKER = "\n\n[...Content truncated...]"

_TIME_INTENT = re.compile(r"time|date|today|now")


def estimate_tokens(text: str) -> int:
    return -(-len(text) // CHARS_PER_TOKEN)


def smart_truncate(text: str, limit: int) -> str:
    """Cut at *limit*, preferring a sentence end within the last 20%."""
    if len(text) <= limit:
        return text
    truncated = text[:limit]
    last_period = truncated.rfind(".")
    if last_period > limit * 0.8:
        return truncated[: last_period + 1] + TRUNCATION_MARKER
    return truncated + TRUNCATION_MARKER


def build_prompt(
    request: GenerationRequest,
    history_window: int = 8,
    token_budget: int = 28_000,
    now: datetime | None = None,
) -> tuple[str, int]:
    """Return ``(prompt, token_estimate)`` for *request*."""
    parts = [ASSISTANT_RULES]

    context = request.context_text.strip()
    if context:
        parts.append("Context:\n" + smart_truncate(context, CONTEXT_CHAR_LIMIT))

    if request.attachments:
        names = "\n".join(
            f"[Attachment {i}: {att.name}]" for i, att in enumerate(request.attachments, start=1)
        )
        parts.append("Attachments:\n" + names)
        budget = ATTACHMENT_CHAR_LIMIT
        for att in request.attachments:
            if not att.is_text or budget <= 0:
                continue
            text = smart_truncate(str(att.data).strip(), budget)
            budget -= len(text)
            parts.append(f"Content of {att.name}:\n{text}")

    if _TIME_INTENT.search(request.prompt_text.lower()):
        parts.append(f"Time: {(now or datetime.now()).strftime('%Y-%m-%d %H:%M:%S')}")

    if history_window > 0 and request.history:
        turns = request.history[-history_window:]
        lines = [f"{'User' if t.role == 'user' else 'Assistant'}: {t.text}" for t in turns]
        parts.append("Conversation so far:\n" + "\n".join(lines))

    parts.append("User question:\n" + request.prompt_text)
    prompt = "\n\n".join(p for p in parts if p)

    tokens = estimate_tokens(prompt)
    if tokens > token_budget * 0.8:
        logger.warning(
            "conversation=%s high token usage (%d/%d)",
            request.conversation_id, tokens, token_budget,
        )
    return prompt, tokens
