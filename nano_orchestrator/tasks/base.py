"""Short-lived task sessions — create, prompt once, always destroy."""

from __future__ import annotations

import logging

from nano_orchestrator.engine.errors import EngineUnavailable
from nano_orchestrator.engine.models import PromptInput, SamplingConfig
from nano_orchestrator.engine.provider import ModelProvider
from nano_orchestrator.engine.session import destroy_quietly

logger = logging.getLogger(__name__)


class OneShotTask:
    """Base for auxiliary runners. Each call gets its own session."""

    name: str = "task"

    def __init__(self, provider: ModelProvider) -> None:
        self._provider = provider

    @property
    def available(self) -> bool:
        return self._provider.is_present

    async def _prompt_once(self, config: SamplingConfig, prompt: str) -> str:
        if not self._provider.is_present:
            raise EngineUnavailable(f"{self.name}: no engine")
        session = await self._provider.create_session(config)
        try:
            return await session.prompt(PromptInput(text=prompt))
        finally:
            await destroy_quietly(session, self.name)
