from nano_orchestrator.tasks.base import OneShotTask
from nano_orchestrator.tasks.smart_replies import SmartReplyGenerator, normalize_smart_replies
from nano_orchestrator.tasks.speech import SpeechRunner, SpeechSynthesizer
from nano_orchestrator.tasks.title import TitleGenerator, clean_title
from nano_orchestrator.tasks.translation import (
    LanguageDetector,
    LanguageDetectorEngine,
    ModelLanguageDetectorEngine,
    ModelTranslatorEngine,
    TranslationService,
    Translator,
    TranslatorEngine,
    model_translation_service,
)

__all__ = [
    "LanguageDetector",
    "LanguageDetectorEngine",
    "ModelLanguageDetectorEngine",
    "ModelTranslatorEngine",
    "OneShotTask",
    "SmartReplyGenerator",
    "SpeechRunner",
    "SpeechSynthesizer",
    "TitleGenerator",
    "TranslationService",
    "Translator",
    "TranslatorEngine",
    "clean_title",
    "model_translation_service",
    "normalize_smart_replies",
]
