"""Shared fixtures for nano_orchestrator tests."""

from __future__ import annotations

import pytest

from nano_orchestrator.engine.controller import GenerationController
from nano_orchestrator.engine.diagnostics import InMemoryDiagnosticsStore
from nano_orchestrator.engine.models import ControllerSettings
from nano_orchestrator.engine.provider import MockModelProvider


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def diagnostics():
    return InMemoryDiagnosticsStore()


@pytest.fixture
def provider():
    return MockModelProvider()


@pytest.fixture
def make_controller(diagnostics):
    """Controller factory with unthrottled chunk delivery."""

    def _make(provider, **kwargs) -> GenerationController:
        kwargs.setdefault("settings", ControllerSettings(throttle_interval=0.0))
        return GenerationController(provider, diagnostics=diagnostics, **kwargs)

    return _make
