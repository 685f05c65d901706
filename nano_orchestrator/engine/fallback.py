"""Fallback path — runs the prompt across an execution boundary.

Only JSON-safe data crosses the boundary: binary attachments travel as
base64 ``data:`` URLs (``AttachmentTransport``) and are decoded on the far
side. The boundary keeps its own session per conversation and always tears
it down after the call.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlparse

from nano_orchestrator.engine.attachments import AttachmentPreprocessor
from nano_orchestrator.engine.errors import (
    AttachmentSerializationError,
    EngineUnavailable,
    FallbackFailure,
    GenerationCancelled,
    InvalidConversationId,
    RestrictedContext,
)
from nano_orchestrator.engine.guard import CancellationToken
from nano_orchestrator.engine.models import (
    Attachment,
    GenerationRequest,
    PreparedPrompt,
    PromptInput,
    SamplingConfig,
)
from nano_orchestrator.engine.provider import ModelProvider, ModelSession
from nano_orchestrator.engine.session import destroy_quietly
from nano_orchestrator.engine.strategy import GenerationStrategy, TextCallback

logger = logging.getLogger(__name__)

ALLOWED_ORIGIN_SCHEMES = ("http", "https")


def is_restricted_origin(origin: str | None) -> bool:
    """Pages other than http(s) (``chrome://``, ``edge://``, ``about:``, ...) forbid fallback.

    No origin at all (headless callers) is not restricted.
    """
    if not origin:
        return False
    return urlparse(origin).scheme.lower() not in ALLOWED_ORIGIN_SCHEMES


# ---------------------------------------------------------------------------
# Transport adapter
# ---------------------------------------------------------------------------

class AttachmentTransport:
    """binary ↔ transport-safe form."""

    @staticmethod
    def serialize(attachments: tuple[Attachment, ...] | list[Attachment]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for att in attachments:
            if isinstance(att.data, bytes):
                try:
                    encoded = base64.b64encode(att.data).decode("ascii")
                except (TypeError, ValueError) as exc:
                    raise AttachmentSerializationError(f"cannot encode {att.name}: {exc}") from exc
                data = f"data:{att.mime_type};base64,{encoded}"
            else:
                data = att.data
            out.append({"name": att.name, "mime_type": att.mime_type, "data": data})
        return out

    @staticmethod
    def decode_images(payload: list[dict[str, Any]]) -> list[bytes]:
        """Image bytes back from ``data:`` URLs. Text attachments are skipped;
        their content is already in the prompt."""
        images: list[bytes] = []
        for att in payload:
            mime_type = att.get("mime_type") or ""
            data = att.get("data")
            if not mime_type.startswith("image/") or not isinstance(data, str):
                continue
            header, sep, encoded = data.partition(",")
            if not sep or not header.startswith("data:") or not header.endswith(";base64"):
                raise AttachmentSerializationError(f"malformed data url for {att.get('name')!r}")
            try:
                images.append(base64.b64decode(encoded, validate=True))
            except (binascii.Error, ValueError) as exc:
                raise AttachmentSerializationError(f"cannot decode {att.get('name')!r}: {exc}") from exc
        return images


# ---------------------------------------------------------------------------
# Boundary
# ---------------------------------------------------------------------------

class ExecutionBoundary(ABC):
    """An alternate execution context reachable only with JSON-safe payloads."""

    @abstractmethod
    async def run(self, payload: dict[str, Any]) -> str: ...

    @abstractmethod
    async def clear(self, conversation_id: str | None = None) -> None: ...


class LocalBoundary(ExecutionBoundary):
    """Boundary backed by its own provider and session bookkeeping.

    The payload is round-tripped through JSON so nothing that could not
    cross a real context switch reaches the far side.
    """

    def __init__(self, provider: ModelProvider, preprocessor: AttachmentPreprocessor | None = None) -> None:
        self._provider = provider
        self._preprocessor = preprocessor or AttachmentPreprocessor()
        self._store: dict[str, ModelSession] = {}

    @property
    def session_count(self) -> int:
        return len(self._store)

    async def run(self, payload: dict[str, Any]) -> str:
        try:
            payload = json.loads(json.dumps(payload))
        except (TypeError, ValueError) as exc:
            raise AttachmentSerializationError(f"payload is not transport-safe: {exc}") from exc

        conversation_id = payload.get("conversation_id")
        if not conversation_id:
            raise InvalidConversationId("missing conversation id at boundary")
        if not self._provider.is_present:
            raise EngineUnavailable("no engine in boundary context")

        try:
            session = self._store.get(conversation_id)
            if session is None:
                config = SamplingConfig.model_validate(payload.get("sampling") or {})
                session = await self._provider.create_session(config)
                self._store[conversation_id] = session

            images = []
            for data in AttachmentTransport.decode_images(payload.get("attachments") or []):
                images.append(await self._preprocessor.to_pixel_buffer(data))
            return await session.prompt(PromptInput(text=payload["prompt"], images=tuple(images)))
        finally:
            stale = self._store.pop(conversation_id, None)
            if stale is not None:
                await destroy_quietly(stale, f"boundary conversation={conversation_id}")

    async def clear(self, conversation_id: str | None = None) -> None:
        if conversation_id is not None:
            targets = [(conversation_id, self._store.pop(conversation_id, None))]
        else:
            targets = list(self._store.items())
            self._store.clear()
        for cid, session in targets:
            if session is not None:
                await destroy_quietly(session, f"boundary conversation={cid}")


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------

class FallbackStrategy(GenerationStrategy):
    """Non-streaming generation through an ``ExecutionBoundary``. Has no fallback of its own."""

    name = "fallback"

    def __init__(self, boundary: ExecutionBoundary) -> None:
        self._boundary = boundary

    @property
    def boundary(self) -> ExecutionBoundary:
        return self._boundary

    @staticmethod
    def ensure_allowed(request: GenerationRequest) -> None:
        if is_restricted_origin(request.origin):
            raise RestrictedContext(f"fallback refused for origin {request.origin!r}")

    async def generate(
        self,
        request: GenerationRequest,
        prepared: PreparedPrompt,
        token: CancellationToken,
        on_text: TextCallback | None = None,
    ) -> str:
        self.ensure_allowed(request)
        payload = {
            "conversation_id": request.conversation_id,
            "prompt": prepared.text,
            "sampling": request.sampling.model_dump(mode="json"),
            "attachments": AttachmentTransport.serialize(request.attachments),
        }
        logger.info("conversation=%s running fallback", request.conversation_id)
        try:
            text = await token.guard(self._boundary.run(payload))
        except (GenerationCancelled, AttachmentSerializationError):
            raise
        except Exception as exc:
            logger.error("conversation=%s fallback failed: %s", request.conversation_id, exc)
            raise FallbackFailure(str(exc)) from exc

        if not text or not text.strip():
            raise FallbackFailure("fallback returned an empty response")
        return text
