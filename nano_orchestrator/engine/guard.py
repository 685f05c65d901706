"""Cancellation tokens and the process-wide single-flight guard."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterable, AsyncIterator, Awaitable, TypeVar

from nano_orchestrator.engine.errors import GenerationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cancel signal for one generation.

    Every suspension point of a generation goes through ``guard()`` or
    ``iterate()`` so a cancel is observed within one scheduling tick.
    """

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self._cancelled = asyncio.Event()
        self._released = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def released(self) -> bool:
        return self._released.is_set()

    def cancel(self) -> None:
        if not self._cancelled.is_set():
            logger.debug("conversation=%s cancellation signalled", self.conversation_id)
        self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise GenerationCancelled(f"generation for {self.conversation_id} was cancelled")

    async def wait_released(self) -> None:
        await self._released.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancel the inner task is cancelled and awaited, then
        ``GenerationCancelled`` is raised.
        """
        if self._cancelled.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if self._cancelled.is_set():
            if not task.cancelled():
                task.exception()  # mark retrieved; the result is discarded
            raise GenerationCancelled(f"generation for {self.conversation_id} was cancelled")
        return task.result()

    async def iterate(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from *source*, guarding each ``__anext__``."""
        iterator = source.__aiter__()

        async def _next() -> tuple[bool, T | None]:
            try:
                return False, await iterator.__anext__()
            except StopAsyncIteration:
                return True, None

        try:
            while True:
                exhausted, item = await self.guard(_next())
                if exhausted:
                    return
                yield item  # type: ignore[misc]
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as exc:
                    logger.warning("conversation=%s stream close failed: %s", self.conversation_id, exc)


class SingleFlightGuard:
    """At most one generation in flight per process.

    ``begin()`` cancels the current owner (of any conversation) before the
    new token is stored. The new generation should await
    ``previous.wait_released()`` before touching shared sessions.
    """

    def __init__(self) -> None:
        self._active: CancellationToken | None = None

    @property
    def active(self) -> CancellationToken | None:
        return self._active

    @property
    def is_busy(self) -> bool:
        """True while a generation runs that has not been cancelled."""
        return self._active is not None and not self._active.cancelled

    def begin(self, conversation_id: str) -> tuple[CancellationToken, CancellationToken | None]:
        previous = self._active
        if previous is not None:
            logger.info(
                "conversation=%s superseding in-flight generation for %s",
                conversation_id, previous.conversation_id,
            )
            previous.cancel()
        token = CancellationToken(conversation_id)
        self._active = token
        return token, previous

    def cancel(self, conversation_id: str | None = None) -> bool:
        """Cancel the active generation; with an id, only if it belongs to that conversation."""
        token = self._active
        if token is None or token.cancelled:
            return False
        if conversation_id is not None and token.conversation_id != conversation_id:
            return False
        # Ownership is kept until release() so the next begin() can await teardown.
        token.cancel()
        return True

    def release(self, token: CancellationToken) -> None:
        token._released.set()
        if self._active is token:
            self._active = None
