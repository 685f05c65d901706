from nano_orchestrator.engine.errors import (
    AttachmentSerializationError,
    ConfigValidationError,
    EmptyResponseError,
    EngineUnavailable,
    FallbackFailure,
    GenerationCancelled,
    ImageDecodeError,
    ImageFetchError,
    InvalidConversationId,
    OrchestratorError,
    RestrictedContext,
    SpeechError,
    TransientEngineFault,
    TranslationUnavailable,
)
from nano_orchestrator.engine.models import (
    Attachment,
    AvailabilityStatus,
    ControllerSettings,
    ConversationTurn,
    DiagnosticsRecord,
    GenerationEvent,
    GenerationEventType,
    GenerationOutcome,
    GenerationRequest,
    SamplingConfig,
    WarmupStatus,
)
from nano_orchestrator.engine.provider import (
    DemoModelProvider,
    MockModelProvider,
    MockModelSession,
    ModelProvider,
    ModelSession,
    NullModelProvider,
    OpenAICompatibleProvider,
    ReplaceChunk,
)
from nano_orchestrator.engine.diagnostics import (
    DiagnosticsStore,
    InMemoryDiagnosticsStore,
    JSONFileDiagnosticsStore,
)
from nano_orchestrator.engine.guard import CancellationToken, SingleFlightGuard
from nano_orchestrator.engine.session import SessionPool
from nano_orchestrator.engine.streaming import StreamAccumulator, Throttle
from nano_orchestrator.engine.strategy import GenerationStrategy, PrimaryStreamingStrategy
from nano_orchestrator.engine.attachments import AttachmentPreprocessor
from nano_orchestrator.engine.availability import AvailabilityTracker
from nano_orchestrator.engine.fallback import ExecutionBoundary, FallbackStrategy, LocalBoundary
from nano_orchestrator.engine.controller import GenerationController, GenerationHandle

__all__ = [
    "Attachment",
    "AttachmentPreprocessor",
    "AttachmentSerializationError",
    "AvailabilityStatus",
    "AvailabilityTracker",
    "CancellationToken",
    "ConfigValidationError",
    "ControllerSettings",
    "ConversationTurn",
    "DemoModelProvider",
    "DiagnosticsRecord",
    "DiagnosticsStore",
    "EmptyResponseError",
    "EngineUnavailable",
    "ExecutionBoundary",
    "FallbackFailure",
    "FallbackStrategy",
    "GenerationCancelled",
    "GenerationController",
    "GenerationEvent",
    "GenerationEventType",
    "GenerationHandle",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationStrategy",
    "ImageDecodeError",
    "ImageFetchError",
    "InMemoryDiagnosticsStore",
    "InvalidConversationId",
    "JSONFileDiagnosticsStore",
    "LocalBoundary",
    "MockModelProvider",
    "MockModelSession",
    "ModelProvider",
    "ModelSession",
    "NullModelProvider",
    "OpenAICompatibleProvider",
    "OrchestratorError",
    "PrimaryStreamingStrategy",
    "ReplaceChunk",
    "RestrictedContext",
    "SamplingConfig",
    "SessionPool",
    "SingleFlightGuard",
    "SpeechError",
    "StreamAccumulator",
    "Throttle",
    "TransientEngineFault",
    "TranslationUnavailable",
    "WarmupStatus",
]
