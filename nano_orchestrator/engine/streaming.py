"""Streaming reconciliation and rate-bounded delivery."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from nano_orchestrator.engine.provider import ReplaceChunk

logger = logging.getLogger(__name__)


class StreamAccumulator:
    """Rebuilds "full text so far" from an engine stream.

    Engines differ: some emit deltas, some emit the whole text each time.
    A chunk that starts with the accumulated text replaces it; anything else
    is appended, including a shorter non-prefix chunk. A ``ReplaceChunk``
    always replaces.
    """

    def __init__(self) -> None:
        self.full_text = ""
        self.last_delivered_length = 0

    def push(self, chunk: str) -> bool:
        """Apply *chunk*; return True if the full text changed."""
        if not chunk:
            return False
        previous = self.full_text
        if isinstance(chunk, ReplaceChunk):
            self.full_text = str(chunk)
        elif previous and chunk.startswith(previous):
            self.full_text = chunk
        else:
            self.full_text = previous + chunk
        return self.full_text != previous

    def mark_delivered(self) -> None:
        self.last_delivered_length = len(self.full_text)

    @property
    def has_undelivered(self) -> bool:
        return len(self.full_text) != self.last_delivered_length


class Throttle:
    """Delivers the latest value at most once per *interval* seconds.

    ``flush()`` delivers a pending value immediately (use on completion);
    ``cancel()`` drops it. Must be used from inside a running event loop.
    """

    def __init__(self, deliver: Callable[[str], None], interval: float = 0.1) -> None:
        self._deliver = deliver
        self._interval = interval
        self._last_call: float | None = None
        self._pending: str | None = None
        self._last_value: str | None = None
        self._handle: asyncio.TimerHandle | None = None

    def __call__(self, value: str) -> None:
        self.push(value)

    def push(self, value: str) -> None:
        loop = asyncio.get_running_loop()
        self._pending = value
        now = loop.time()
        remaining = 0.0 if self._last_call is None else self._interval - (now - self._last_call)
        if remaining <= 0:
            self._clear_timer()
            self._invoke()
        elif self._handle is None:
            self._handle = loop.call_later(remaining, self._invoke)

    def flush(self) -> None:
        if self._pending is not None:
            self._clear_timer()
            self._invoke()

    def cancel(self) -> None:
        self._clear_timer()
        self._pending = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def _clear_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _invoke(self) -> None:
        self._handle = None
        self._last_call = asyncio.get_running_loop().time()
        value, self._pending = self._pending, None
        if value is None or value == self._last_value:
            return
        self._last_value = value
        self._deliver(value)
