"""Tests for sampling config validation and the user-facing error mapping."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from nano_orchestrator.engine.errors import (
    ConfigValidationError,
    EngineUnavailable,
    GenerationCancelled,
    OrchestratorError,
    to_user_message,
)
from nano_orchestrator.engine.models import DEFAULT_SYSTEM_PROMPT, GenerationRequest, SamplingConfig


class TestSamplingConfig:

    @pytest.mark.parametrize("kwargs, match", [
        ({"temperature": 2.5}, "temperature"),
        ({"temperature": -0.1}, "temperature"),
        ({"top_k": 0}, "top_k"),
        ({"top_k": 500}, "top_k"),
        ({"expected_language": "fr"}, "expected_language"),
        ({"expected_output_format": "html"}, "expected_output_format"),
        ({"temperature": None}, "temperature"),
        ({"temperature": "hot"}, "temperature"),
        ({"temperature": True}, "temperature"),
        ({"top_k": 3.5}, "top_k"),
        ({"top_k": "many"}, "top_k"),
        ({"system_prompt": None}, "system_prompt"),
    ])
    def test_out_of_domain_values_fail_fast(self, kwargs, match):
        with pytest.raises(ConfigValidationError, match=match):
            SamplingConfig(**kwargs)

    def test_nested_in_request(self):
        with pytest.raises(ConfigValidationError):
            GenerationRequest(conversation_id="c1", prompt_text="hi", sampling={"temperature": 9})

    def test_from_settings_defaults(self):
        config = SamplingConfig.from_settings({})
        assert config.temperature == 1.0
        assert config.top_k == 64
        assert config.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert config.expected_language == "en"

    def test_from_settings_maps_keys(self):
        config = SamplingConfig.from_settings({
            "temperature": 0.7,
            "topK": 40,
            "systemPrompt": "Be brief.",
            "language": "ja",
        })
        assert (config.temperature, config.top_k) == (0.7, 40)
        assert config.system_prompt == "Be brief."
        assert config.expected_language == "ja"

    def test_unsupported_language_falls_back_to_english(self):
        assert SamplingConfig.from_settings({"language": "de"}).expected_language == "en"

    @pytest.mark.parametrize("settings, match", [
        ({"temperature": None}, "temperature"),
        ({"temperature": "hot"}, "temperature"),
        ({"topK": 3.5}, "top_k"),
    ])
    def test_from_settings_rejects_wrong_types(self, settings, match):
        with pytest.raises(ConfigValidationError, match=match):
            SamplingConfig.from_settings(settings)

    def test_integral_float_top_k_is_accepted(self):
        assert SamplingConfig.from_settings({"topK": 40.0}).top_k == 40

    def test_frozen(self):
        config = SamplingConfig()
        with pytest.raises(ValidationError):
            config.temperature = 0.1  # type: ignore[misc]


class TestUserMessages:

    def test_engine_exceptions_are_not_leaked(self):
        assert to_user_message(RuntimeError("segfault at 0xdeadbeef")) == OrchestratorError.user_message

    def test_typed_errors_use_their_message(self):
        assert to_user_message(EngineUnavailable("no engine")) == EngineUnavailable.user_message
        assert to_user_message(GenerationCancelled()) == "Generation stopped."

    def test_config_errors_include_detail(self):
        message = to_user_message(ConfigValidationError("top_k must be between 1 and 128, got 0"))
        assert message.startswith(ConfigValidationError.user_message)
        assert "top_k" in message

    def test_per_instance_override(self):
        exc = EngineUnavailable(user_message="Enable the local model in settings.")
        assert to_user_message(exc) == "Enable the local model in settings."
        assert EngineUnavailable.user_message != exc.user_message
