"""Host engine surface — capability ABCs, OpenAI-compatible implementation, and mocks."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable

from nano_orchestrator.engine.errors import EngineUnavailable
from nano_orchestrator.engine.models import AvailabilityStatus, PromptInput, SamplingConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Any, Any], None]


class ReplaceChunk(str):
    """Marks a streamed chunk as a full replacement of the text so far.

    Engines that emit plain ``str`` chunks get prefix-sniffing instead.
    """


class ModelSession(ABC):
    """One conversation's inference context."""

    @abstractmethod
    async def prompt(self, prompt_input: PromptInput) -> str: ...

    async def prompt_streaming(self, prompt_input: PromptInput) -> AsyncIterator[str]:
        """Default for engines without streaming: one chunk with the whole reply."""
        yield await self.prompt(prompt_input)

    @abstractmethod
    async def destroy(self) -> None: ...


class ModelProvider(ABC):
    """Capability object for the local engine, resolved once per controller.

    ``is_present`` False is a normal runtime state (no engine on this host),
    not a programming error.
    """

    name: str = "engine"

    @property
    def is_present(self) -> bool:
        return True

    @abstractmethod
    async def availability(self) -> Any:
        """Raw host status; normalized by ``AvailabilityStatus.normalize``."""

    @abstractmethod
    async def create_session(
        self,
        config: SamplingConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ModelSession: ...


# ---------------------------------------------------------------------------
# OpenAI-compatible local server (Ollama, llama.cpp server, LM Studio, ...)
# ---------------------------------------------------------------------------

class OpenAIChatSession(ModelSession):
    """Keeps its own message history; each prompt extends it."""

    def __init__(self, client: Any, model: str, config: SamplingConfig) -> None:
        self._client = client
        self._model = model
        self._config = config
        self._messages: list[dict[str, Any]] = [
            {"role": "system", "content": config.system_prompt},
        ]
        self._destroyed = False

    def _user_message(self, prompt_input: PromptInput) -> dict[str, Any]:
        if not prompt_input.images:
            return {"role": "user", "content": prompt_input.text}

        from nano_orchestrator.engine.attachments import encode_png_data_url

        content: list[dict[str, Any]] = [{"type": "text", "text": prompt_input.text}]
        for image in prompt_input.images:
            content.append({"type": "image_url", "image_url": {"url": encode_png_data_url(image)}})
        return {"role": "user", "content": content}

    def _request_kwargs(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        if self._destroyed:
            raise RuntimeError("session destroyed")
        return {
            "model": self._model,
            "messages": messages,
            "temperature": self._config.temperature,
            "extra_body": {"top_k": self._config.top_k},
        }

    async def prompt(self, prompt_input: PromptInput) -> str:
        messages = [*self._messages, self._user_message(prompt_input)]
        response = await self._client.chat.completions.create(**self._request_kwargs(messages))
        text = response.choices[0].message.content or ""
        self._messages = [*messages, {"role": "assistant", "content": text}]
        return text

    async def prompt_streaming(self, prompt_input: PromptInput) -> AsyncIterator[str]:
        messages = [*self._messages, self._user_message(prompt_input)]
        stream = await self._client.chat.completions.create(
            stream=True, **self._request_kwargs(messages)
        )
        parts: list[str] = []
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta:
                parts.append(delta)
                yield delta
        self._messages = [*messages, {"role": "assistant", "content": "".join(parts)}]

    async def destroy(self) -> None:
        self._destroyed = True
        self._messages = []


class OpenAICompatibleProvider(ModelProvider):
    name = "openai-compatible"

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        model: str = "gemma3:1b",
        api_key: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(base_url=base_url, api_key=api_key or "local")
        self._model = model

    async def availability(self) -> AvailabilityStatus:
        try:
            models = await self._client.models.list()
        except Exception as exc:
            logger.warning("Local inference server unreachable: %s", exc)
            return AvailabilityStatus.UNSUPPORTED
        ids = {m.id for m in models.data}
        if self._model in ids:
            return AvailabilityStatus.READY
        # The OpenAI surface has no pull endpoint; an unlisted model cannot be fetched from here
        logger.warning("Model %r not served by the local server (has: %s)", self._model, ", ".join(sorted(ids)))
        return AvailabilityStatus.UNSUPPORTED

    async def create_session(
        self,
        config: SamplingConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ModelSession:
        # The OpenAI surface exposes no download progress; servers load lazily.
        return OpenAIChatSession(self._client, self._model, config)


class NullModelProvider(ModelProvider):
    """Stands in when no engine exists on this host."""

    name = "none"

    @property
    def is_present(self) -> bool:
        return False

    async def availability(self) -> AvailabilityStatus:
        return AvailabilityStatus.UNSUPPORTED

    async def create_session(
        self,
        config: SamplingConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ModelSession:
        raise EngineUnavailable("no local engine on this host")


# ---------------------------------------------------------------------------
# Test mock — deterministic, scripted sessions
# ---------------------------------------------------------------------------

class MockModelSession(ModelSession):
    """Streams a scripted list of chunks. An ``Exception`` in the script is raised
    at that position; an ``asyncio.Event`` in the script blocks until set."""

    def __init__(
        self,
        chunks: list[Any] | None = None,
        prompt_response: str | Exception | None = None,
        destroy_error: Exception | None = None,
    ) -> None:
        self._chunks = list(chunks or [])
        self._prompt_response = prompt_response
        self._destroy_error = destroy_error
        self.prompts: list[PromptInput] = []
        self.destroy_calls = 0

    @property
    def destroyed(self) -> bool:
        return self.destroy_calls > 0

    async def prompt(self, prompt_input: PromptInput) -> str:
        self.prompts.append(prompt_input)
        if isinstance(self._prompt_response, Exception):
            raise self._prompt_response
        if self._prompt_response is not None:
            return self._prompt_response
        return "".join(c for c in self._chunks if isinstance(c, str))

    async def prompt_streaming(self, prompt_input: PromptInput) -> AsyncIterator[str]:
        self.prompts.append(prompt_input)
        for item in self._chunks:
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, Exception):
                raise item
            await asyncio.sleep(0)
            yield item

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self._destroy_error is not None:
            raise self._destroy_error


class MockModelProvider(ModelProvider):
    """Hands out pre-configured sessions in order. Used in unit tests.

    ``sessions`` entries may be ``MockModelSession`` instances, chunk lists,
    or exceptions (raised from ``create_session``).
    """

    name = "mock"

    def __init__(
        self,
        sessions: list[Any] | None = None,
        availability: Any = "readily",
        present: bool = True,
        download_progress: list[tuple[Any, Any]] | None = None,
    ) -> None:
        self._queue = list(sessions or [])
        self.status = availability
        self._present = present
        self._download_progress = list(download_progress or [])
        self.availability_calls = 0
        self.created: list[MockModelSession] = []
        self.throwaway: list[MockModelSession] = []
        self.configs: list[SamplingConfig] = []

    @property
    def is_present(self) -> bool:
        return self._present

    async def availability(self) -> Any:
        self.availability_calls += 1
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    async def create_session(
        self,
        config: SamplingConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ModelSession:
        if not self._present:
            raise EngineUnavailable("mock engine absent")
        self.configs.append(config)
        if on_progress is not None and self._download_progress:
            for loaded, total in self._download_progress:
                on_progress(loaded, total)
            self.status = "readily"

        # Throwaway sessions (priming, download) don't consume the script
        if config == SamplingConfig.minimal():
            session = MockModelSession()
            self.throwaway.append(session)
            return session

        item = self._queue.pop(0) if self._queue else MockModelSession(["[mock sessions exhausted]"])
        if isinstance(item, Exception):
            raise item
        session = item if isinstance(item, MockModelSession) else MockModelSession(item)
        self.created.append(session)
        return session

    @property
    def create_count(self) -> int:
        return len(self.created)


# ---------------------------------------------------------------------------
# Demo mock — for running adapters without a local server
# ---------------------------------------------------------------------------

class DemoModelSession(ModelSession):
    """Echoes the user's question back word by word, alternating chunk conventions."""

    async def prompt(self, prompt_input: PromptInput) -> str:
        question = prompt_input.text.rsplit("User question:\n", 1)[-1].strip()
        return f"This is a demo response to: {question}. Set NANO_BASE_URL for real model output."

    async def prompt_streaming(self, prompt_input: PromptInput) -> AsyncIterator[str]:
        words = (await self.prompt(prompt_input)).split(" ")
        so_far = ""
        for i, word in enumerate(words):
            piece = word if i == len(words) - 1 else word + " "
            so_far += piece
            await asyncio.sleep(0.02)
            # Even chunks as deltas, odd chunks as full text so far
            yield piece if i % 2 == 0 else so_far

    async def destroy(self) -> None:
        return None


class DemoModelProvider(ModelProvider):
    name = "demo"

    async def availability(self) -> AvailabilityStatus:
        return AvailabilityStatus.READY

    async def create_session(
        self,
        config: SamplingConfig,
        on_progress: ProgressCallback | None = None,
    ) -> ModelSession:
        return DemoModelSession()
