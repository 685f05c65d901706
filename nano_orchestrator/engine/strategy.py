"""Generation strategies — ABC and the primary streaming path."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from nano_orchestrator.engine.errors import OrchestratorError, TransientEngineFault
from nano_orchestrator.engine.guard import CancellationToken
from nano_orchestrator.engine.models import GenerationRequest, PreparedPrompt
from nano_orchestrator.engine.provider import ModelSession
from nano_orchestrator.engine.session import SessionPool
from nano_orchestrator.engine.streaming import StreamAccumulator

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], None]


class GenerationStrategy(ABC):
    """One way of turning a prepared prompt into text."""

    name: str = "strategy"

    @abstractmethod
    async def generate(
        self,
        request: GenerationRequest,
        prepared: PreparedPrompt,
        token: CancellationToken,
        on_text: TextCallback | None = None,
    ) -> str:
        """Return the final text. ``on_text`` receives the full text so far."""


class PrimaryStreamingStrategy(GenerationStrategy):
    """Streams from the pooled conversation session.

    On any failure (cancel included) the session is evicted and destroyed;
    the fallback never reuses it. Engine exceptions surface as
    ``TransientEngineFault``.
    """

    name = "primary"

    def __init__(self, pool: SessionPool) -> None:
        self._pool = pool

    async def generate(
        self,
        request: GenerationRequest,
        prepared: PreparedPrompt,
        token: CancellationToken,
        on_text: TextCallback | None = None,
    ) -> str:
        conversation_id = request.conversation_id
        accumulator = StreamAccumulator()
        session = None
        try:
            session = await token.guard(self._pool.get_or_create(conversation_id, request.sampling))
            stream = session.prompt_streaming(prepared.as_input())
            async for chunk in token.iterate(stream):
                if accumulator.push(chunk) and on_text is not None:
                    on_text(accumulator.full_text)
                    accumulator.mark_delivered()
            return accumulator.full_text
        except OrchestratorError:
            await self._release(conversation_id, session, accumulator)
            raise
        except Exception as exc:
            await self._release(conversation_id, session, accumulator)
            raise TransientEngineFault(f"{type(exc).__name__}: {exc}") from exc

    async def _release(
        self,
        conversation_id: str,
        session: ModelSession | None,
        accumulator: StreamAccumulator,
    ) -> None:
        logger.debug(
            "conversation=%s primary stream ended early after %d chars",
            conversation_id, len(accumulator.full_text),
        )
        if session is not None:
            await self._pool.discard(conversation_id, session)
