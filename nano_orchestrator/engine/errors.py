"""Error taxonomy for the generation controller — no internal deps."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class. ``user_message`` is safe to show in a UI."""

    user_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class EngineUnavailable(OrchestratorError):
    user_message = "The local model is not available on this device."


class InvalidConversationId(OrchestratorError):
    user_message = "Missing conversation id."


class GenerationCancelled(OrchestratorError):
    """Raised when a generation is superseded or stopped. Never shown as an error."""

    user_message = "Generation stopped."


class RestrictedContext(OrchestratorError):
    user_message = "The local model is disabled on system pages for security."


class TransientEngineFault(OrchestratorError):
    user_message = "The local model failed to respond. Try again."


class FallbackFailure(OrchestratorError):
    user_message = "Failed to create a model session. Try refreshing the page."


class EmptyResponseError(TransientEngineFault):
    user_message = "The model returned an empty response."


class ImageDecodeError(OrchestratorError):
    user_message = "Failed to process image. The image might be too large or corrupted."


class ImageFetchError(OrchestratorError):
    user_message = "Could not download image. Please try again or check your connection."


class AttachmentSerializationError(OrchestratorError):
    user_message = "Failed to prepare attachments for the fallback model."


class ConfigValidationError(OrchestratorError):
    """Sampling settings outside the engine's accepted domain.

    Not a ``ValueError``: raised inside pydantic validators it propagates
    unwrapped.
    """

    user_message = "Invalid model settings."


class TranslationUnavailable(OrchestratorError):
    user_message = "Translation is not available for this language pair."


class SpeechError(OrchestratorError):
    user_message = "Speech synthesis failed."

    def __init__(self, code: str, message: str | None = None) -> None:
        super().__init__(message or f"Speech synthesis error: {code}")
        self.code = code


def to_user_message(exc: BaseException) -> str:
    """Map any exception to a human-readable message.

    Orchestrator errors carry their own message; raw engine exceptions are
    never surfaced verbatim.
    """
    if isinstance(exc, ConfigValidationError):
        return f"{exc.user_message} {exc}"
    if isinstance(exc, OrchestratorError):
        return exc.user_message
    return OrchestratorError.user_message
