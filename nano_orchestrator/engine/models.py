"""Core data models — only Pydantic + stdlib + the error taxonomy."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from nano_orchestrator.engine.errors import ConfigValidationError

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Provide thorough, detailed responses."
SUPPORTED_LANGUAGES = ("en", "es", "ja")
OUTPUT_FORMATS = ("plain-text", "markdown")
LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "es": "Spanish",
    "ja": "Japanese",
}


# ---------------------------------------------------------------------------
# Engine status
# ---------------------------------------------------------------------------

class AvailabilityStatus(str, Enum):
    UNKNOWN = "unknown"
    UNSUPPORTED = "unsupported"
    NEEDS_DOWNLOAD = "needs-download"
    DOWNLOADING = "downloading"
    READY = "ready"

    @classmethod
    def normalize(cls, raw: Any) -> AvailabilityStatus:
        """Map the host's status vocabulary (which varies across versions) onto ours."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, dict):
            raw = raw.get("availability")
        if not isinstance(raw, str):
            return cls.UNKNOWN
        return _RAW_STATUS.get(raw.strip().lower(), cls.UNKNOWN)


_RAW_STATUS: dict[str, AvailabilityStatus] = {
    "ready": AvailabilityStatus.READY,
    "readily": AvailabilityStatus.READY,
    "available": AvailabilityStatus.READY,
    "needs-download": AvailabilityStatus.NEEDS_DOWNLOAD,
    "after-download": AvailabilityStatus.NEEDS_DOWNLOAD,
    "downloadable": AvailabilityStatus.NEEDS_DOWNLOAD,
    "downloading": AvailabilityStatus.DOWNLOADING,
    "unsupported": AvailabilityStatus.UNSUPPORTED,
    "unavailable": AvailabilityStatus.UNSUPPORTED,
    "no": AvailabilityStatus.UNSUPPORTED,
}


class WarmupStatus(str, Enum):
    SUCCESS = "success"
    AWAITING_DOWNLOAD = "awaiting-download"
    ERROR = "error"
    UNAVAILABLE = "unavailable"


class DiagnosticsRecord(BaseModel):
    """Last-known engine state; persisted across restarts."""
    availability: AvailabilityStatus = AvailabilityStatus.UNKNOWN
    availability_checked_at: float | None = None
    last_warmup_at: float | None = None
    last_warmup_status: WarmupStatus | None = None
    last_warmup_error: str = ""


class AvailabilityReport(BaseModel):
    status: AvailabilityStatus
    checked_at: float | None = None
    diagnostics: DiagnosticsRecord = Field(default_factory=DiagnosticsRecord)


class DownloadResult(BaseModel):
    status: AvailabilityStatus
    downloaded: bool = False


class WarmupResult(BaseModel):
    status: AvailabilityStatus
    checked_at: float
    warmup_status: WarmupStatus
    warmup_error: str = ""
    diagnostics: DiagnosticsRecord


# ---------------------------------------------------------------------------
# Sampling configuration
# ---------------------------------------------------------------------------

class SamplingConfig(BaseModel):
    """Per-session sampling settings, validated against the engine's domain."""

    model_config = ConfigDict(frozen=True)

    temperature: float = 1.0
    top_k: int = 64
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    expected_language: str = "en"
    expected_output_format: str = "plain-text"

    @model_validator(mode="before")
    @classmethod
    def _check_types(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        temperature = data.get("temperature", 1.0)
        if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
            raise ConfigValidationError(f"temperature must be a number, got {temperature!r}")
        top_k = data.get("top_k", 64)
        if isinstance(top_k, float) and top_k.is_integer():
            top_k = int(top_k)
            data = {**data, "top_k": top_k}
        if isinstance(top_k, bool) or not isinstance(top_k, int):
            raise ConfigValidationError(f"top_k must be an integer, got {top_k!r}")
        for field in ("system_prompt", "expected_language", "expected_output_format"):
            if field in data and not isinstance(data[field], str):
                raise ConfigValidationError(f"{field} must be a string, got {data[field]!r}")
        return data

    @model_validator(mode="after")
    def _check_domain(self) -> SamplingConfig:
        if not 0.0 <= self.temperature <= 2.0:
            raise ConfigValidationError(f"temperature must be between 0.0 and 2.0, got {self.temperature}")
        if not 1 <= self.top_k <= 128:
            raise ConfigValidationError(f"top_k must be between 1 and 128, got {self.top_k}")
        if self.expected_language not in SUPPORTED_LANGUAGES:
            raise ConfigValidationError(
                f"expected_language must be one of {', '.join(SUPPORTED_LANGUAGES)}, "
                f"got {self.expected_language!r}"
            )
        if self.expected_output_format not in OUTPUT_FORMATS:
            raise ConfigValidationError(
                f"expected_output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
                f"got {self.expected_output_format!r}"
            )
        return self

    @classmethod
    def from_settings(cls, settings: dict[str, Any] | None = None) -> SamplingConfig:
        """Derive from user settings.

        Missing keys take defaults and an unsupported UI language falls back
        to English; numeric values are validated, not clamped.
        """
        settings = settings or {}
        language = settings.get("language") or "en"
        if language not in SUPPORTED_LANGUAGES:
            language = "en"
        return cls(
            temperature=settings.get("temperature", 1.0),
            top_k=settings.get("topK", settings.get("top_k", 64)),
            system_prompt=settings.get("systemPrompt") or settings.get("system_prompt") or DEFAULT_SYSTEM_PROMPT,
            expected_language=language,
        )

    @classmethod
    def minimal(cls) -> SamplingConfig:
        """Config for throwaway sessions (priming, download)."""
        return cls(system_prompt=" ")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class Attachment(BaseModel):
    """Binary blob (``bytes``) or pre-extracted text (``str``, e.g. PDF)."""

    model_config = ConfigDict(frozen=True)

    name: str
    mime_type: str
    data: bytes | str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/") and isinstance(self.data, bytes)

    @property
    def is_text(self) -> bool:
        return isinstance(self.data, str)


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str  # user | assistant
    text: str


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    prompt_text: str
    context_text: str = ""
    attachments: tuple[Attachment, ...] = ()
    sampling: SamplingConfig = Field(default_factory=SamplingConfig)
    history: tuple[ConversationTurn, ...] = ()
    origin: str | None = None  # URL of the active page, if any


class PixelBuffer(BaseModel):
    """Decoded, resized image in the layout the engine accepts."""

    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    mode: str = "RGBA"
    data: bytes


class PromptInput(BaseModel):
    """What a session is actually prompted with."""

    model_config = ConfigDict(frozen=True)

    text: str
    images: tuple[PixelBuffer, ...] = ()


class PreparedPrompt(BaseModel):
    """Request after prompt assembly and image preprocessing."""

    model_config = ConfigDict(frozen=True)

    text: str
    token_estimate: int = 0
    images: tuple[PixelBuffer, ...] = ()

    def as_input(self) -> PromptInput:
        return PromptInput(text=self.text, images=self.images)


# ---------------------------------------------------------------------------
# Outbound events (controller → caller)
# ---------------------------------------------------------------------------

class GenerationEventType(str, Enum):
    CHUNK = "chunk"
    FALLBACK = "fallback"
    COMPLETE = "complete"
    ERROR = "error"
    ABORT = "abort"


TERMINAL_EVENTS = frozenset({
    GenerationEventType.COMPLETE,
    GenerationEventType.ERROR,
    GenerationEventType.ABORT,
})


class GenerationEvent(BaseModel):
    type: GenerationEventType
    conversation_id: str
    text: str = ""
    error: str | None = None
    timestamp: float = Field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS


class GenerationOutcome(BaseModel):
    """Final result of one generation: text, or aborted, or an error message."""
    conversation_id: str
    text: str = ""
    aborted: bool = False
    error: str | None = None
    used_fallback: bool = False


class TranslationResult(BaseModel):
    translated_text: str
    source_lang: str
    target_lang: str
    same_language: bool = False


# ---------------------------------------------------------------------------
# Controller tunables
# ---------------------------------------------------------------------------

class ControllerSettings(BaseModel):
    throttle_interval: float = 0.1      # seconds between streamed chunk deliveries
    prime_ttl: float = 300.0            # seconds before a new priming pass is useful
    image_max_width: int = 1024
    fetch_timeout: float = 5.0          # network fetches only
    history_window: int = 8             # prior turns included in the prompt
    token_budget: int = 28_000
