"""GenerationController — the core runtime: one owned object per process."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable
from urllib.parse import urlparse

import httpx

from nano_orchestrator.engine.attachments import AttachmentPreprocessor, fetch_image
from nano_orchestrator.engine.availability import AvailabilityTracker
from nano_orchestrator.engine.diagnostics import DiagnosticsStore, InMemoryDiagnosticsStore
from nano_orchestrator.engine.errors import (
    EmptyResponseError,
    GenerationCancelled,
    TransientEngineFault,
    to_user_message,
)
from nano_orchestrator.engine.fallback import ExecutionBoundary, FallbackStrategy, LocalBoundary
from nano_orchestrator.engine.guard import CancellationToken, SingleFlightGuard
from nano_orchestrator.engine.models import (
    Attachment,
    AvailabilityReport,
    ControllerSettings,
    DiagnosticsRecord,
    DownloadResult,
    GenerationEvent,
    GenerationEventType,
    GenerationOutcome,
    GenerationRequest,
    PreparedPrompt,
    WarmupResult,
)
from nano_orchestrator.engine.prompting import build_prompt
from nano_orchestrator.engine.provider import ModelProvider
from nano_orchestrator.engine.session import SessionPool
from nano_orchestrator.engine.strategy import GenerationStrategy, PrimaryStreamingStrategy
from nano_orchestrator.engine.streaming import Throttle
from nano_orchestrator.tasks.smart_replies import SmartReplyGenerator
from nano_orchestrator.tasks.speech import SpeechRunner
from nano_orchestrator.tasks.title import TitleGenerator
from nano_orchestrator.tasks.translation import TranslationService, model_translation_service

logger = logging.getLogger(__name__)


class GenerationHandle:
    """Caller's view of one generation.

    ``events()`` yields chunk/fallback events followed by exactly one
    terminal event (complete, error or abort). ``result()`` resolves to a
    ``GenerationOutcome``.
    """

    def __init__(self, conversation_id: str, token: CancellationToken) -> None:
        self.conversation_id = conversation_id
        self._token = token
        self._queue: asyncio.Queue[GenerationEvent] = asyncio.Queue()
        self._task: asyncio.Task[GenerationOutcome] | None = None

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        self._token.cancel()

    async def result(self) -> GenerationOutcome:
        if self._task is None:
            raise RuntimeError("generation handle was never started")
        return await self._task

    async def events(self) -> AsyncIterator[GenerationEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

    # -- emission (controller side) -------------------------------------------

    def _emit(self, type_: GenerationEventType, text: str = "", error: str | None = None) -> None:
        self._queue.put_nowait(GenerationEvent(
            type=type_, conversation_id=self.conversation_id, text=text, error=error,
        ))

    def _emit_chunk(self, text: str) -> None:
        # Nothing reaches the caller after the cancel signal
        if self._token.cancelled:
            return
        self._emit(GenerationEventType.CHUNK, text=text)


class GenerationController:
    """Public API: ``async for event in controller.generate(request): ...``

    Owns the session pool, single-flight guard, availability tracker and
    diagnostics. Construct once, ``await init()``, inject where needed,
    ``await shutdown()`` on exit.
    """

    def __init__(
        self,
        provider: ModelProvider,
        diagnostics: DiagnosticsStore | None = None,
        boundary: ExecutionBoundary | None = None,
        settings: ControllerSettings | None = None,
        speech: SpeechRunner | None = None,
        translation: TranslationService | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider
        self._settings = settings or ControllerSettings()
        self._diagnostics = diagnostics or InMemoryDiagnosticsStore()
        self._guard = SingleFlightGuard()
        self._pool = SessionPool(provider, self._guard)
        self._tracker = AvailabilityTracker(
            provider, self._diagnostics, prime_ttl=self._settings.prime_ttl, clock=clock,
        )
        self._preprocessor = AttachmentPreprocessor(self._settings.image_max_width)
        self._primary: GenerationStrategy = PrimaryStreamingStrategy(self._pool)
        self._fallback = FallbackStrategy(boundary or LocalBoundary(provider, self._preprocessor))
        self._handles: set[GenerationHandle] = set()
        self.titles = TitleGenerator(provider)
        self.smart_replies = SmartReplyGenerator(provider)
        self.speech = speech or SpeechRunner(None)
        self.translation = translation or model_translation_service(provider)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def provider(self) -> ModelProvider:
        return self._provider

    @property
    def settings(self) -> ControllerSettings:
        return self._settings

    @property
    def pool(self) -> SessionPool:
        return self._pool

    @property
    def guard(self) -> SingleFlightGuard:
        return self._guard

    @property
    def tracker(self) -> AvailabilityTracker:
        return self._tracker

    @property
    def preprocessor(self) -> AttachmentPreprocessor:
        return self._preprocessor

    @property
    def is_generating(self) -> bool:
        return self._guard.is_busy

    @property
    def is_something_running(self) -> bool:
        return self.is_generating or self.speech.is_speaking

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> DiagnosticsRecord:
        diag = await self._diagnostics.load()
        logger.info(
            "Controller ready (engine=%s present=%s, last availability=%s)",
            self._provider.name, self._provider.is_present, diag.availability.value,
        )
        return diag

    async def shutdown(self) -> None:
        self.cancel()
        pending = [h._task for h in self._handles if h._task is not None and not h._task.done()]
        if pending:
            await asyncio.wait(pending)
        await self.reset()
        logger.info("Controller shut down")

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def start(self, request: GenerationRequest) -> GenerationHandle:
        """Begin a generation, cancelling any in flight. Needs a running loop."""
        token, previous = self._guard.begin(request.conversation_id)
        handle = GenerationHandle(request.conversation_id, token)
        handle._task = asyncio.create_task(self._execute(request, handle, previous))
        self._handles.add(handle)
        handle._task.add_done_callback(lambda _t: self._handles.discard(handle))
        return handle

    async def generate(self, request: GenerationRequest) -> AsyncIterator[GenerationEvent]:
        handle = self.start(request)
        async for event in handle.events():
            yield event

    async def run(self, request: GenerationRequest) -> GenerationOutcome:
        return await self.start(request).result()

    def cancel(self, conversation_id: str | None = None) -> bool:
        return self._guard.cancel(conversation_id)

    async def reset(self, conversation_id: str | None = None) -> None:
        """Destroy pooled and boundary sessions (one conversation or all)."""
        await self._pool.destroy(conversation_id)
        await self._fallback.boundary.clear(conversation_id)

    async def _execute(
        self,
        request: GenerationRequest,
        handle: GenerationHandle,
        previous: CancellationToken | None,
    ) -> GenerationOutcome:
        conversation_id = request.conversation_id
        token = handle.token
        t_start = time.time()
        try:
            if previous is not None:
                await token.guard(previous.wait_released())
            text, used_fallback = await self._generate(request, handle)
            handle._emit(GenerationEventType.COMPLETE, text=text)
            logger.info(
                "conversation=%s generation done via %s in %.0fms (%d chars)",
                conversation_id, "fallback" if used_fallback else "primary",
                (time.time() - t_start) * 1000, len(text),
            )
            return GenerationOutcome(conversation_id=conversation_id, text=text, used_fallback=used_fallback)
        except GenerationCancelled:
            logger.info("conversation=%s generation aborted", conversation_id)
            handle._emit(GenerationEventType.ABORT)
            return GenerationOutcome(conversation_id=conversation_id, aborted=True)
        except Exception as exc:
            logger.error("conversation=%s generation failed: %r", conversation_id, exc)
            await self._pool.destroy(conversation_id, abort=False)
            await self._fallback.boundary.clear(conversation_id)
            message = to_user_message(exc)
            handle._emit(GenerationEventType.ERROR, error=message)
            return GenerationOutcome(conversation_id=conversation_id, error=message)
        finally:
            self._guard.release(token)

    async def _generate(self, request: GenerationRequest, handle: GenerationHandle) -> tuple[str, bool]:
        token = handle.token
        await self._consult_engine(token)
        prepared = await self._prepare(request, token)

        throttle = Throttle(handle._emit_chunk, self._settings.throttle_interval)
        try:
            try:
                text = await self._primary.generate(request, prepared, token, throttle.push)
                if not text.strip():
                    raise EmptyResponseError("primary path returned no text")
                throttle.flush()
                return text, False
            except TransientEngineFault as exc:
                # Deliver what already streamed; no chunk events after this point
                throttle.flush()
                token.raise_if_cancelled()
                self._fallback.ensure_allowed(request)
                logger.warning(
                    "conversation=%s primary path failed (%s); switching to fallback",
                    request.conversation_id, exc,
                )
                handle._emit(GenerationEventType.FALLBACK)
                text = await self._fallback.generate(request, prepared, token)
                return text, True
        finally:
            throttle.cancel()

    async def _consult_engine(self, token: CancellationToken) -> None:
        """Finish a pending download and prime before the real request. Failures here
        are not fatal; the session pool reports a missing engine itself."""
        try:
            await token.guard(self._tracker.ensure_downloaded())
            await token.guard(self._tracker.prime())
        except GenerationCancelled:
            raise
        except Exception as exc:
            logger.debug("Pre-generation download/prime skipped: %s", exc)

    async def _prepare(self, request: GenerationRequest, token: CancellationToken) -> PreparedPrompt:
        text, tokens = build_prompt(
            request,
            history_window=self._settings.history_window,
            token_budget=self._settings.token_budget,
        )
        images = await token.guard(self._preprocessor.prepare_images(request.attachments))
        return PreparedPrompt(text=text, token_estimate=tokens, images=tuple(images))

    async def fetch_image_attachment(
        self,
        url: str,
        name: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> Attachment:
        """Download an image by URL as an attachment for a later request."""
        data, mime_type = await fetch_image(url, timeout=self._settings.fetch_timeout, client=client)
        filename = name or urlparse(url).path.rsplit("/", 1)[-1] or "image"
        logger.info("Fetched image %s (%d bytes)", filename, len(data))
        return Attachment(name=filename, mime_type=mime_type, data=data)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def check_availability(self, force_check: bool = False) -> AvailabilityReport:
        return await self._tracker.check_availability(force_check)

    async def ensure_downloaded(
        self,
        on_progress: Callable[[float, float], None] | None = None,
    ) -> DownloadResult:
        return await self._tracker.ensure_downloaded(on_progress)

    async def prime(self) -> bool:
        return await self._tracker.prime()

    async def warm_up(self) -> WarmupResult:
        return await self._tracker.warm_up()

    async def get_diagnostics(self) -> DiagnosticsRecord:
        return await self._tracker.get_diagnostics()
