"""translation task — detect, check capability, download, translate; model-backed engines."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable

from pydantic import BaseModel

from nano_orchestrator.engine.errors import TranslationUnavailable
from nano_orchestrator.engine.models import (
    LANGUAGE_NAMES,
    SUPPORTED_LANGUAGES,
    AvailabilityStatus,
    SamplingConfig,
    TranslationResult,
)
from nano_orchestrator.engine.provider import ModelProvider
from nano_orchestrator.tasks.base import OneShotTask

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_LANGUAGE = "en"

StatusCallback = Callable[[str], None]


class DetectedLanguage(BaseModel):
    language: str
    confidence: float = 0.0


# ---------------------------------------------------------------------------
# Host capability engines
# ---------------------------------------------------------------------------

class LanguageDetector(ABC):
    @abstractmethod
    async def detect(self, text: str) -> list[DetectedLanguage]: ...

    async def destroy(self) -> None:
        return None


class LanguageDetectorEngine(ABC):
    @abstractmethod
    async def availability(self) -> Any: ...

    @abstractmethod
    async def create(self) -> LanguageDetector: ...


class Translator(ABC):
    @abstractmethod
    async def translate(self, text: str) -> str: ...

    async def destroy(self) -> None:
        return None


class TranslatorEngine(ABC):
    @abstractmethod
    async def availability(self, source: str, target: str) -> Any: ...

    @abstractmethod
    async def create(
        self,
        source: str,
        target: str,
        on_progress: Callable[[float, float], None] | None = None,
    ) -> Translator: ...


async def _destroy(resource: LanguageDetector | Translator, label: str) -> None:
    try:
        await resource.destroy()
    except Exception as exc:
        logger.warning("%s destroy failed: %s", label, exc)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class TranslationService:
    """Translate text into a target language using host capability engines.

    A missing detector is tolerated (source defaults to English); a missing
    translator is not.
    """

    def __init__(
        self,
        translator_engine: TranslatorEngine | None,
        detector_engine: LanguageDetectorEngine | None = None,
        default_source: str = DEFAULT_SOURCE_LANGUAGE,
    ) -> None:
        self._translators = translator_engine
        self._detectors = detector_engine
        self._default_source = default_source

    async def detect_language(self, text: str) -> str:
        if self._detectors is None:
            return self._default_source
        detector = None
        try:
            status = AvailabilityStatus.normalize(await self._detectors.availability())
            if status is AvailabilityStatus.UNSUPPORTED:
                return self._default_source
            detector = await self._detectors.create()
            results = await detector.detect(text)
            if results:
                return results[0].language
        except Exception as exc:
            logger.warning("Language detection failed, assuming %s: %s", self._default_source, exc)
        finally:
            if detector is not None:
                await _destroy(detector, "detector")
        return self._default_source

    async def translate(
        self,
        text: str,
        target_lang: str,
        on_status: StatusCallback | None = None,
    ) -> TranslationResult:
        def _status(message: str) -> None:
            if on_status is not None:
                on_status(message)

        if self._translators is None:
            raise TranslationUnavailable("translation engine not present")

        _status("Detecting language...")
        source_lang = await self.detect_language(text)

        if source_lang == target_lang:
            return TranslationResult(
                translated_text=text,
                source_lang=source_lang,
                target_lang=target_lang,
                same_language=True,
            )

        _status("Preparing translator...")
        status = AvailabilityStatus.normalize(await self._translators.availability(source_lang, target_lang))
        if status is AvailabilityStatus.UNSUPPORTED:
            raise TranslationUnavailable(f"translation from {source_lang} to {target_lang} is not supported")

        def _progress(loaded: float, total: float) -> None:
            pct = round(loaded / total * 100) if total else 0
            _status(f"Downloading translation model... {pct}%")

        _status("Translating...")
        translator = await self._translators.create(source_lang, target_lang, on_progress=_progress)
        try:
            translated = await translator.translate(text)
        finally:
            await _destroy(translator, "translator")

        logger.info("Translated %d chars %s->%s", len(text), source_lang, target_lang)
        return TranslationResult(
            translated_text=translated,
            source_lang=source_lang,
            target_lang=target_lang,
            same_language=False,
        )


# ---------------------------------------------------------------------------
# Engines backed by the local model
# ---------------------------------------------------------------------------

DETECT_PROMPT = (
    "Identify the language of the text below.\n"
    "Reply with ONLY its two-letter ISO 639-1 code (for example: en), nothing else.\n"
    "\n"
    "Text:\n"
    "{text}"
)
DETECT_CONFIG = SamplingConfig(
    temperature=0.0,
    top_k=1,
    system_prompt="You identify the language of a text.",
)
DETECT_SOURCE_MAX_CHARS = 500

TRANSLATE_PROMPT = (
    "Translate the text below from {source} to {target}.\n"
    "Reply with ONLY the translation. Keep formatting, do not add notes.\n"
    "\n"
    "Text:\n"
    "{text}"
)

_LEADING_CODE = re.compile(r"^[\"'`\s]*([a-z]{2})\b")


def parse_language_code(reply: str) -> str | None:
    """Pull a language code out of a model reply ("es", "'ja'." or "Spanish")."""
    lowered = reply.strip().lower()
    match = _LEADING_CODE.match(lowered)
    if match:
        return match.group(1)
    for code, name in LANGUAGE_NAMES.items():
        if name.lower() in lowered:
            return code
    return None


def _language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


async def _provider_status(provider: ModelProvider) -> AvailabilityStatus:
    if not provider.is_present:
        return AvailabilityStatus.UNSUPPORTED
    try:
        return AvailabilityStatus.normalize(await provider.availability())
    except Exception as exc:
        logger.warning("Engine availability query failed: %s", exc)
        return AvailabilityStatus.UNSUPPORTED


class ModelLanguageDetector(OneShotTask, LanguageDetector):
    name = "detect"

    async def detect(self, text: str) -> list[DetectedLanguage]:
        reply = await self._prompt_once(
            DETECT_CONFIG, DETECT_PROMPT.replace("{text}", text[:DETECT_SOURCE_MAX_CHARS])
        )
        code = parse_language_code(reply)
        if code is None:
            logger.debug("Unrecognized language reply: %r", reply[:40])
            return []
        return [DetectedLanguage(language=code)]


class ModelLanguageDetectorEngine(LanguageDetectorEngine):
    """Language detection by prompting the local model."""

    def __init__(self, provider: ModelProvider) -> None:
        self._provider = provider

    async def availability(self) -> AvailabilityStatus:
        return await _provider_status(self._provider)

    async def create(self) -> LanguageDetector:
        return ModelLanguageDetector(self._provider)


class ModelTranslator(OneShotTask, Translator):
    name = "translate"

    def __init__(self, provider: ModelProvider, source: str, target: str) -> None:
        super().__init__(provider)
        self._source = source
        self._target = target
        self._config = SamplingConfig(
            temperature=0.2,
            top_k=16,
            system_prompt="You are a precise translator.",
            expected_language=target if target in SUPPORTED_LANGUAGES else "en",
        )

    async def translate(self, text: str) -> str:
        prompt = (
            TRANSLATE_PROMPT
            .replace("{source}", _language_name(self._source))
            .replace("{target}", _language_name(self._target))
            .replace("{text}", text)
        )
        return (await self._prompt_once(self._config, prompt)).strip()


class ModelTranslatorEngine(TranslatorEngine):
    """Translation by prompting the local model. Every language pair the model
    is ready for counts as supported; there is nothing separate to download."""

    def __init__(self, provider: ModelProvider) -> None:
        self._provider = provider

    async def availability(self, source: str, target: str) -> AvailabilityStatus:
        return await _provider_status(self._provider)

    async def create(
        self,
        source: str,
        target: str,
        on_progress: Callable[[float, float], None] | None = None,
    ) -> Translator:
        return ModelTranslator(self._provider, source, target)


def model_translation_service(provider: ModelProvider) -> TranslationService:
    """TranslationService whose detector and translator both run on *provider*."""
    return TranslationService(
        ModelTranslatorEngine(provider),
        ModelLanguageDetectorEngine(provider),
    )
