"""Session pool — conversation id → live engine session."""

from __future__ import annotations

import asyncio
import logging

from nano_orchestrator.engine.errors import EngineUnavailable, InvalidConversationId
from nano_orchestrator.engine.guard import SingleFlightGuard
from nano_orchestrator.engine.models import SamplingConfig
from nano_orchestrator.engine.provider import ModelProvider, ModelSession

logger = logging.getLogger(__name__)


async def destroy_quietly(session: ModelSession, label: str = "") -> None:
    """Destroy *session*, logging instead of raising. For teardown paths."""
    try:
        await session.destroy()
    except Exception as exc:
        logger.warning("session destroy failed %s: %s", label, exc)


class SessionPool:
    """Creates sessions lazily, at most one per conversation id.

    Creation is serialized per id so two callers racing across the
    ``create_session`` suspension point still share one session.
    """

    def __init__(self, provider: ModelProvider, guard: SingleFlightGuard | None = None) -> None:
        self._provider = provider
        self._guard = guard
        self._sessions: dict[str, ModelSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, conversation_id: str) -> ModelSession | None:
        return self._sessions.get(conversation_id)

    async def get_or_create(self, conversation_id: str | None, config: SamplingConfig) -> ModelSession:
        if not conversation_id:
            raise InvalidConversationId("conversation id must be a non-empty string")
        existing = self._sessions.get(conversation_id)
        if existing is not None:
            return existing
        if not self._provider.is_present:
            raise EngineUnavailable(f"engine {self._provider.name!r} not present")

        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            existing = self._sessions.get(conversation_id)
            if existing is not None:
                return existing
            session = await self._provider.create_session(config)
            self._sessions[conversation_id] = session
            logger.info("conversation=%s session created (pool size=%d)", conversation_id, len(self._sessions))
            return session

    async def destroy(self, conversation_id: str | None = None, abort: bool = True) -> None:
        """Destroy one session (or all) and abort the matching in-flight generation.

        Safe to call repeatedly; never raises.
        """
        if abort and self._guard is not None:
            self._guard.cancel(conversation_id)

        if conversation_id is not None:
            session = self._sessions.pop(conversation_id, None)
            self._locks.pop(conversation_id, None)
            if session is not None:
                await destroy_quietly(session, f"conversation={conversation_id}")
                logger.info("conversation=%s session destroyed", conversation_id)
            return

        sessions = list(self._sessions.items())
        self._sessions.clear()
        self._locks.clear()
        for cid, session in sessions:
            await destroy_quietly(session, f"conversation={cid}")
        if sessions:
            logger.info("destroyed %d sessions", len(sessions))

    async def discard(self, conversation_id: str, session: ModelSession) -> None:
        """Evict and destroy *session* if it is still the pooled one; no abort."""
        if self._sessions.get(conversation_id) is session:
            del self._sessions[conversation_id]
        await destroy_quietly(session, f"conversation={conversation_id}")
