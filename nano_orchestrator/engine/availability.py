"""Engine availability tracking, download orchestration, priming and warmup."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from nano_orchestrator.engine.diagnostics import DiagnosticsStore
from nano_orchestrator.engine.errors import EngineUnavailable
from nano_orchestrator.engine.models import (
    AvailabilityReport,
    AvailabilityStatus,
    DiagnosticsRecord,
    DownloadResult,
    SamplingConfig,
    WarmupResult,
    WarmupStatus,
)
from nano_orchestrator.engine.provider import ModelProvider
from nano_orchestrator.engine.session import destroy_quietly

logger = logging.getLogger(__name__)

_DOWNLOAD_STATES = frozenset({AvailabilityStatus.NEEDS_DOWNLOAD, AvailabilityStatus.DOWNLOADING})


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


class AvailabilityTracker:
    """Caches the engine's status; the cache expires only on a forced check."""

    def __init__(
        self,
        provider: ModelProvider,
        diagnostics: DiagnosticsStore,
        prime_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._provider = provider
        self._diagnostics = diagnostics
        self._prime_ttl = prime_ttl
        self._clock = clock
        self.status = AvailabilityStatus.UNKNOWN
        self.checked_at: float | None = None
        self.last_primed_at: float = 0.0

    # -- status -------------------------------------------------------------

    async def query(self) -> AvailabilityStatus:
        """Live engine query; the cached status is left alone. Host errors
        count as unsupported."""
        if not self._provider.is_present:
            return AvailabilityStatus.UNSUPPORTED
        try:
            return AvailabilityStatus.normalize(await self._provider.availability())
        except Exception as exc:
            logger.warning("Availability query failed: %s", exc)
            return AvailabilityStatus.UNSUPPORTED

    async def _record(self, status: AvailabilityStatus) -> DiagnosticsRecord:
        # Status and timestamp change only alongside the persisted record
        self.status = status
        self.checked_at = self._clock()
        return await self._diagnostics.patch(
            availability=status,
            availability_checked_at=self.checked_at,
        )

    async def check_availability(self, force_check: bool = False) -> AvailabilityReport:
        has_cached = self.status is not AvailabilityStatus.UNKNOWN and self.checked_at is not None
        if has_cached and not force_check:
            diag = await self._diagnostics.load()
            return AvailabilityReport(status=self.status, checked_at=self.checked_at, diagnostics=diag)

        status = await self.query()
        diag = await self._record(status)
        logger.info("Engine availability: %s", status.value)
        return AvailabilityReport(status=status, checked_at=self.checked_at, diagnostics=diag)

    async def get_diagnostics(self) -> DiagnosticsRecord:
        diag = await self._diagnostics.load()
        if self.checked_at is None:
            return diag
        return diag.model_copy(update={
            "availability": self.status,
            "availability_checked_at": self.checked_at,
        })

    # -- download -----------------------------------------------------------

    async def ensure_downloaded(
        self,
        on_progress: Callable[[float, float], None] | None = None,
    ) -> DownloadResult:
        """Drive a pending model download to completion.

        No-op unless the engine reports needs-download/downloading. The
        throwaway session that carries the progress monitor is always torn
        down.
        """
        if not self._provider.is_present:
            raise EngineUnavailable(f"engine {self._provider.name!r} not present")

        status = await self.query()
        if status not in _DOWNLOAD_STATES:
            return DownloadResult(status=status, downloaded=False)

        def _progress(loaded: Any, total: Any) -> None:
            if on_progress is not None:
                on_progress(_number(loaded, 0), _number(total, 1))

        logger.info("Model download required (status=%s); starting", status.value)
        session = None
        try:
            session = await self._provider.create_session(SamplingConfig.minimal(), on_progress=_progress)
        finally:
            if session is not None:
                await destroy_quietly(session, "download")

        status = await self.query()
        await self._record(status)
        if status is not AvailabilityStatus.READY:
            logger.warning("Engine still reports %s after download session", status.value)
            return DownloadResult(status=status, downloaded=False)
        logger.info("Model download complete")
        return DownloadResult(status=status, downloaded=True)

    # -- priming ------------------------------------------------------------

    def needs_priming(self) -> bool:
        return self._clock() - self.last_primed_at > self._prime_ttl

    async def prime(self) -> bool:
        """Create and drop a minimal session to cut first-token latency.

        Returns True when a priming pass ran.
        """
        if not self._provider.is_present or not self.needs_priming():
            return False
        status = await self.query()
        if status is not AvailabilityStatus.READY:
            return False

        session = None
        try:
            session = await self._provider.create_session(SamplingConfig.minimal())
            self.last_primed_at = self._clock()
            logger.debug("Engine primed")
            return True
        finally:
            if session is not None:
                await destroy_quietly(session, "prime")

    async def warm_up(self) -> WarmupResult:
        """User-triggered warmup; records the outcome in diagnostics."""
        now = self._clock()
        status = await self.query()
        warmup_status = WarmupStatus.UNAVAILABLE
        warmup_error = ""

        if not self._provider.is_present or status is AvailabilityStatus.UNSUPPORTED:
            warmup_error = "Local model is not available on this host."
        elif status in _DOWNLOAD_STATES:
            try:
                status = (await self.ensure_downloaded()).status
                if status is AvailabilityStatus.READY:
                    await self.prime()
                    warmup_status = WarmupStatus.SUCCESS
                else:
                    warmup_status = WarmupStatus.AWAITING_DOWNLOAD
                    warmup_error = "Model is still downloading."
            except Exception as exc:
                logger.warning("Warmup waiting on model download: %s", exc)
                warmup_status = WarmupStatus.AWAITING_DOWNLOAD
                warmup_error = str(exc) or "Model is still downloading."
        else:
            try:
                await self.prime()
                warmup_status = WarmupStatus.SUCCESS
            except Exception as exc:
                logger.warning("Warmup failed: %s", exc)
                warmup_status = WarmupStatus.ERROR
                warmup_error = str(exc) or "Warmup failed"

        self.status = status
        self.checked_at = now
        diag = await self._diagnostics.patch(
            availability=status,
            availability_checked_at=now,
            last_warmup_at=now,
            last_warmup_status=warmup_status,
            last_warmup_error=warmup_error,
        )
        return WarmupResult(
            status=status,
            checked_at=now,
            warmup_status=warmup_status,
            warmup_error=warmup_error,
            diagnostics=diag,
        )
