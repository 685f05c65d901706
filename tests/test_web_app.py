"""Tests for the FastAPI SSE adapter, running against the demo engine."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from nano_orchestrator.adapters.web_fastapi.app import create_app


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("USE_MOCK_ENGINE", "1")
    monkeypatch.setenv("NANO_DIAGNOSTICS_PATH", str(tmp_path / "diag.json"))
    with TestClient(create_app()) as test_client:
        yield test_client


class TestWebApp:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "generating": False}

    def test_generate_streams_sse(self, client):
        response = client.post("/generate", json={"conversation_id": "web-1", "prompt_text": "ping"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(response.text)
        names = [name for name, _ in events]
        assert names[-1] == "complete"
        assert names.count("complete") == 1
        assert "chunk" in names
        assert "demo response to: ping" in events[-1][1]["text"]

    def test_invalid_sampling_is_rejected(self, client):
        response = client.post("/generate", json={
            "conversation_id": "web-1",
            "prompt_text": "ping",
            "sampling": {"temperature": 7},
        })
        assert response.status_code == 422
        assert "temperature" in response.json()["error"]

    def test_availability_and_diagnostics(self, client, tmp_path):
        report = client.get("/availability", params={"force": True}).json()
        assert report["status"] == "ready"

        diag = client.get("/diagnostics").json()
        assert diag["availability"] == "ready"
        assert (tmp_path / "diag.json").exists()

    def test_warmup(self, client):
        result = client.post("/warmup").json()
        assert result["warmup_status"] == "success"

    def test_cancel_when_idle(self, client):
        assert client.post("/cancel").json() == {"cancelled": False}

    def test_reset(self, client):
        client.post("/generate", json={"conversation_id": "web-2", "prompt_text": "hello"})
        assert client.post("/reset", params={"conversation_id": "web-2"}).json() == {"status": "ok"}
