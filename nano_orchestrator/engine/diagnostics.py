"""Diagnostics store — ABC, JSON-file and in-memory implementations."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from nano_orchestrator.engine.models import DiagnosticsRecord

logger = logging.getLogger(__name__)

DIAGNOSTICS_KEY = "nanoPrompt.diagnostics"


class DiagnosticsStore(ABC):
    """Lazily loaded, merge-patched record of last-known engine state.

    Every ``patch`` persists immediately. Read-modify-write is not atomic
    across processes: last writer wins.
    """

    def __init__(self) -> None:
        self._cache: DiagnosticsRecord | None = None

    @abstractmethod
    async def _read(self) -> dict[str, Any] | None: ...

    @abstractmethod
    async def _write(self, data: dict[str, Any]) -> None: ...

    async def load(self) -> DiagnosticsRecord:
        if self._cache is not None:
            return self._cache
        try:
            raw = await self._read()
            self._cache = DiagnosticsRecord.model_validate(raw or {})
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Diagnostics load failed, starting empty: %s", exc)
            self._cache = DiagnosticsRecord()
        return self._cache

    async def patch(self, **fields: Any) -> DiagnosticsRecord:
        current = await self.load()
        self._cache = current.model_copy(update=fields)
        try:
            await self._write(self._cache.model_dump(mode="json"))
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Diagnostics persist failed: %s", exc)
        return self._cache


class JSONFileDiagnosticsStore(DiagnosticsStore):
    """Persists to a JSON file under ``{DIAGNOSTICS_KEY: record}``.

    Other keys in the file are preserved.
    """

    def __init__(self, path: str = "./.nano_diagnostics.json") -> None:
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read_file(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path) as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    async def _read(self) -> dict[str, Any] | None:
        return self._read_file().get(DIAGNOSTICS_KEY)

    async def _write(self, data: dict[str, Any]) -> None:
        try:
            stored = self._read_file()
        except ValueError:
            stored = {}
        stored[DIAGNOSTICS_KEY] = data
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump(stored, f, indent=2)
        tmp.replace(self._path)


class InMemoryDiagnosticsStore(DiagnosticsStore):
    """Dict-backed store — suitable for tests and ephemeral processes."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.saved: dict[str, Any] | None = initial
        self.write_count = 0

    async def _read(self) -> dict[str, Any] | None:
        return self.saved

    async def _write(self, data: dict[str, Any]) -> None:
        self.write_count += 1
        self.saved = data
