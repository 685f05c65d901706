"""nano_orchestrator — generation session controller for a local language model.

Usage::

    from nano_orchestrator import create_controller

    controller = create_controller()
    await controller.init()
    async for event in controller.generate(request):
        print(event)
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()  # reads .env into os.environ (no-op if file missing)

from nano_orchestrator.engine.controller import GenerationController, GenerationHandle
from nano_orchestrator.engine.diagnostics import JSONFileDiagnosticsStore
from nano_orchestrator.engine.models import (
    Attachment,
    ControllerSettings,
    GenerationEvent,
    GenerationEventType,
    GenerationRequest,
    SamplingConfig,
)
from nano_orchestrator.engine.provider import (
    DemoModelProvider,
    ModelProvider,
    NullModelProvider,
    OpenAICompatibleProvider,
)
from nano_orchestrator.tasks.speech import SpeechRunner
from nano_orchestrator.tasks.translation import TranslationService

__all__ = [
    "Attachment",
    "GenerationController",
    "GenerationEvent",
    "GenerationEventType",
    "GenerationHandle",
    "GenerationRequest",
    "SamplingConfig",
    "create_controller",
    "resolve_provider",
]


def resolve_provider(
    *,
    base_url: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    use_mock_engine: bool | None = None,
) -> ModelProvider:
    """Pick the engine capability once. Absence is a normal state, not an error."""
    mock = use_mock_engine if use_mock_engine is not None else os.environ.get("USE_MOCK_ENGINE") == "1"
    if mock:
        return DemoModelProvider()

    base_url = base_url or os.environ.get("NANO_BASE_URL")
    if not base_url:
        return NullModelProvider()
    return OpenAICompatibleProvider(
        base_url=base_url,
        model=model or os.environ.get("NANO_MODEL", "gemma3:1b"),
        api_key=api_key or os.environ.get("NANO_API_KEY"),
    )


def create_controller(
    *,
    base_url: str | None = None,
    model: str | None = None,
    api_key: str | None = None,
    diagnostics_path: str | None = None,
    use_mock_engine: bool | None = None,
    settings: ControllerSettings | None = None,
    provider: ModelProvider | None = None,
    translation: TranslationService | None = None,
    speech: SpeechRunner | None = None,
) -> GenerationController:
    """Wire all components and return a ready-to-init GenerationController.

    *provider* overrides engine resolution. Translation defaults to the local
    model; speech stays unsupported unless a ``SpeechRunner`` is passed.

    Environment variables (all optional):
      NANO_BASE_URL          — OpenAI-compatible local server, e.g. ``http://localhost:11434/v1``
      NANO_MODEL             — default ``gemma3:1b``
      NANO_API_KEY           — only if the server wants one
      NANO_DIAGNOSTICS_PATH  — default ``./.nano_diagnostics.json``
      USE_MOCK_ENGINE        — set to ``1`` to use the demo engine
    """
    provider = provider or resolve_provider(
        base_url=base_url, model=model, api_key=api_key, use_mock_engine=use_mock_engine,
    )
    diagnostics = JSONFileDiagnosticsStore(
        diagnostics_path or os.environ.get("NANO_DIAGNOSTICS_PATH", "./.nano_diagnostics.json")
    )
    return GenerationController(
        provider,
        diagnostics=diagnostics,
        settings=settings,
        speech=speech,
        translation=translation,
    )
