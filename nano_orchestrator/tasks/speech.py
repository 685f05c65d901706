"""speech task — wraps platform text-to-speech."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from nano_orchestrator.engine.errors import SpeechError

logger = logging.getLogger(__name__)

SPEECH_LANGUAGE = "en-US"

# User actions, not failures
EXPECTED_ERROR_CODES = frozenset({"canceled", "interrupted"})


class SpeechSynthesizer(ABC):
    """Platform TTS. ``speak`` returns when the utterance ends and raises
    ``SpeechError`` with the platform's error code otherwise."""

    @property
    @abstractmethod
    def speaking(self) -> bool: ...

    @abstractmethod
    async def speak(self, text: str, language: str) -> None: ...

    @abstractmethod
    def cancel(self) -> None: ...


class SpeechRunner:
    def __init__(self, synthesizer: SpeechSynthesizer | None, language: str = SPEECH_LANGUAGE) -> None:
        self._synth = synthesizer
        self._language = language

    @property
    def is_speaking(self) -> bool:
        return self._synth is not None and self._synth.speaking

    async def speak(self, text: str) -> bool:
        """Speak *text*. Returns False when interrupted by the user."""
        if self._synth is None:
            raise SpeechError("not-supported", "Speech synthesis not supported")
        if self._synth.speaking:
            self._synth.cancel()
        try:
            await self._synth.speak(text, self._language)
        except SpeechError as exc:
            if exc.code in EXPECTED_ERROR_CODES:
                logger.debug("Speech ended by user (%s)", exc.code)
                return False
            logger.warning("Speech synthesis error: %s", exc.code)
            raise
        return True

    def stop(self) -> None:
        if self.is_speaking:
            self._synth.cancel()  # type: ignore[union-attr]
