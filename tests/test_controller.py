"""Tests for GenerationController — streaming, fallback, cancellation and supersede."""

from __future__ import annotations

import asyncio
import io

import pytest
from PIL import Image

from nano_orchestrator.engine.controller import GenerationHandle
from nano_orchestrator.engine.errors import (
    EngineUnavailable,
    FallbackFailure,
    ImageDecodeError,
    RestrictedContext,
)
from nano_orchestrator.engine.guard import CancellationToken
from nano_orchestrator.engine.models import (
    Attachment,
    ConversationTurn,
    GenerationEventType,
    GenerationRequest,
)
from nano_orchestrator.engine.provider import MockModelProvider, MockModelSession, NullModelProvider
from nano_orchestrator.tasks.speech import SpeechRunner, SpeechSynthesizer

CHUNK = GenerationEventType.CHUNK
FALLBACK = GenerationEventType.FALLBACK
COMPLETE = GenerationEventType.COMPLETE
ERROR = GenerationEventType.ERROR
ABORT = GenerationEventType.ABORT


def _request(conversation_id: str = "c1", text: str = "Say hello", **kwargs) -> GenerationRequest:
    return GenerationRequest(conversation_id=conversation_id, prompt_text=text, **kwargs)


def _png(width: int, height: int) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(out, format="PNG")
    return out.getvalue()


class TestPrimaryPath:

    async def test_streams_full_text_and_completes_once(self, make_controller):
        provider = MockModelProvider([MockModelSession(["Hel", "Hello", "Hello, wor", "ld"])])
        controller = make_controller(provider)

        events = [e async for e in controller.generate(_request())]
        types = [e.type for e in events]

        assert types.count(COMPLETE) == 1
        assert types[-1] == COMPLETE
        assert events[-1].text == "Hello, world"

        chunks = [e.text for e in events if e.type == CHUNK]
        assert chunks[-1] == "Hello, world"
        for earlier, later in zip(chunks, chunks[1:]):
            assert later.startswith(earlier)

    async def test_session_is_reused_across_generations(self, make_controller):
        session = MockModelSession(["Hi"])
        provider = MockModelProvider([session])
        controller = make_controller(provider)

        first = await controller.run(_request(text="one"))
        second = await controller.run(_request(text="two"))

        assert first.text == second.text == "Hi"
        assert provider.create_count == 1
        assert len(session.prompts) == 2

    async def test_prompt_carries_history_and_context(self, make_controller):
        session = MockModelSession(["ok"])
        controller = make_controller(MockModelProvider([session]))

        await controller.run(_request(
            text="And now?",
            context_text="Page about tides.",
            history=(ConversationTurn(role="user", text="What are tides?"),),
        ))

        prompt = session.prompts[0].text
        assert "Page about tides." in prompt
        assert "User: What are tides?" in prompt
        assert prompt.endswith("User question:\nAnd now?")

    async def test_images_are_resized_before_prompting(self, make_controller):
        session = MockModelSession(["A red square."])
        controller = make_controller(MockModelProvider([session]))
        attachment = Attachment(name="photo.png", mime_type="image/png", data=_png(2048, 1024))

        outcome = await controller.run(_request(attachments=(attachment,)))

        assert outcome.text == "A red square."
        image = session.prompts[0].images[0]
        assert (image.width, image.height) == (1024, 512)

    async def test_priming_happens_before_generation(self, make_controller):
        provider = MockModelProvider([MockModelSession(["Hi"])])
        controller = make_controller(provider)

        await controller.run(_request())

        assert len(provider.throwaway) == 1
        assert provider.throwaway[0].destroyed

    async def test_reset_destroys_pooled_session(self, make_controller):
        session = MockModelSession(["Hi"])
        controller = make_controller(MockModelProvider([session]))
        await controller.run(_request())
        assert "c1" in controller.pool

        await controller.reset("c1")

        assert "c1" not in controller.pool
        assert session.destroyed


class TestFallback:

    async def test_fault_after_partial_output_falls_back(self, make_controller):
        primary = MockModelSession(["Hello", RuntimeError("engine crashed")])
        boundary_session = MockModelSession(prompt_response="Hello, world")
        provider = MockModelProvider([primary, boundary_session])
        controller = make_controller(provider)

        events = [e async for e in controller.generate(_request())]
        types = [e.type for e in events]

        assert types == [CHUNK, FALLBACK, COMPLETE]
        assert events[0].text == "Hello"
        assert events[-1].text == "Hello, world"
        assert primary.destroyed
        assert boundary_session.destroyed
        assert "c1" not in controller.pool

    async def test_no_chunk_after_fallback_begins(self, make_controller):
        provider = MockModelProvider([
            MockModelSession(["a", "ab", RuntimeError("boom")]),
            MockModelSession(prompt_response="abc"),
        ])
        controller = make_controller(provider)

        types = [e.type async for e in controller.generate(_request())]

        after = types[types.index(FALLBACK):]
        assert CHUNK not in after

    async def test_outcome_marks_fallback(self, make_controller):
        provider = MockModelProvider([
            MockModelSession([RuntimeError("boom")]),
            MockModelSession(prompt_response="from fallback"),
        ])
        outcome = await make_controller(provider).run(_request())
        assert outcome.text == "from fallback"
        assert outcome.used_fallback is True

    async def test_empty_primary_response_falls_back(self, make_controller):
        provider = MockModelProvider([
            MockModelSession([]),
            MockModelSession(prompt_response="Recovered"),
        ])
        events = [e async for e in make_controller(provider).generate(_request())]
        assert [e.type for e in events] == [FALLBACK, COMPLETE]
        assert events[-1].text == "Recovered"

    async def test_restricted_origin_skips_fallback(self, make_controller):
        provider = MockModelProvider([
            MockModelSession([RuntimeError("boom")]),
            MockModelSession(prompt_response="never used"),
        ])
        controller = make_controller(provider)

        events = [e async for e in controller.generate(_request(origin="chrome://settings"))]

        assert [e.type for e in events] == [ERROR]
        assert events[0].error == RestrictedContext.user_message
        assert provider.create_count == 1

    async def test_fallback_failure_is_terminal(self, make_controller):
        provider = MockModelProvider([
            MockModelSession([RuntimeError("boom")]),
            MockModelSession(prompt_response=RuntimeError("also broken")),
        ])
        controller = make_controller(provider)

        events = [e async for e in controller.generate(_request())]

        assert [e.type for e in events] == [FALLBACK, ERROR]
        assert events[-1].error == FallbackFailure.user_message
        assert "also broken" not in events[-1].error


class TestErrors:

    async def test_missing_engine(self, make_controller):
        events = [e async for e in make_controller(NullModelProvider()).generate(_request())]
        assert [e.type for e in events] == [ERROR]
        assert events[0].error == EngineUnavailable.user_message

    async def test_corrupt_image(self, make_controller):
        provider = MockModelProvider([MockModelSession(["never"])])
        controller = make_controller(provider)
        attachment = Attachment(name="broken.png", mime_type="image/png", data=b"definitely not a png")

        outcome = await controller.run(_request(attachments=(attachment,)))

        assert outcome.error == ImageDecodeError.user_message
        assert provider.create_count == 0

    async def test_controller_is_idle_after_error(self, make_controller):
        controller = make_controller(NullModelProvider())
        await controller.run(_request())
        assert not controller.is_generating
        assert controller.guard.active is None

    async def test_unstarted_handle_result(self):
        handle = GenerationHandle("c1", CancellationToken("c1"))
        with pytest.raises(RuntimeError, match="never started"):
            await handle.result()


class TestCancellation:

    async def test_cancel_emits_abort(self, make_controller):
        gate = asyncio.Event()
        session = MockModelSession(["Hi", gate, " there"])
        controller = make_controller(MockModelProvider([session]))

        handle = controller.start(_request())
        events = handle.events()
        first = await events.__anext__()
        assert first.type == CHUNK
        assert controller.is_generating

        assert controller.cancel("c1") is True
        rest = [e async for e in events]

        assert [e.type for e in rest] == [ABORT]
        outcome = await handle.result()
        assert outcome.aborted is True
        assert outcome.error is None
        assert session.destroyed
        assert "c1" not in controller.pool
        assert not controller.is_generating

    async def test_cancel_other_conversation_is_ignored(self, make_controller):
        gate = asyncio.Event()
        controller = make_controller(MockModelProvider([MockModelSession(["Hi", gate, "!"])]))

        handle = controller.start(_request())
        events = handle.events()
        await events.__anext__()

        assert controller.cancel("someone-else") is False
        gate.set()
        rest = [e async for e in events]
        assert rest[-1].type == COMPLETE
        assert rest[-1].text == "Hi!"

    async def test_new_generation_supersedes_running_one(self, make_controller):
        gate = asyncio.Event()
        session_a = MockModelSession(["A1", gate, "A2"])
        session_b = MockModelSession(["B1"])
        controller = make_controller(MockModelProvider([session_a, session_b]))

        handle_a = controller.start(_request("conv-a"))
        events_a = handle_a.events()
        assert (await events_a.__anext__()).text == "A1"

        handle_b = controller.start(_request("conv-b"))
        events_b = []
        async for event in handle_b.events():
            if event.type == CHUNK and not any(e.type == CHUNK for e in events_b):
                # A must be fully aborted before B's first chunk
                assert handle_a.done
            events_b.append(event)

        rest_a = [e async for e in events_a]
        assert [e.type for e in rest_a] == [ABORT]
        assert (await handle_a.result()).aborted
        assert [e.type for e in events_b] == [CHUNK, COMPLETE]
        assert events_b[-1].text == "B1"
        assert session_a.destroyed
        assert "conv-a" not in controller.pool

    async def test_shutdown_aborts_in_flight_generation(self, make_controller):
        gate = asyncio.Event()
        session = MockModelSession(["Hi", gate])
        controller = make_controller(MockModelProvider([session]))
        handle = controller.start(_request())
        await handle.events().__anext__()

        await controller.shutdown()

        assert (await handle.result()).aborted
        assert len(controller.pool) == 0


class FakeSynthesizer(SpeechSynthesizer):
    def __init__(self, speaking: bool = False) -> None:
        self._speaking = speaking

    @property
    def speaking(self) -> bool:
        return self._speaking

    async def speak(self, text: str, language: str) -> None:
        return None

    def cancel(self) -> None:
        self._speaking = False


class TestStatusFlags:

    async def test_something_running_includes_speech(self, make_controller):
        controller = make_controller(
            MockModelProvider(), speech=SpeechRunner(FakeSynthesizer(speaking=True)),
        )
        assert not controller.is_generating
        assert controller.is_something_running

        controller.speech.stop()
        assert not controller.is_something_running

    async def test_availability_passthrough(self, make_controller):
        controller = make_controller(MockModelProvider(availability="after-download"))
        await controller.init()

        report = await controller.check_availability()

        assert report.status.value == "needs-download"
        assert (await controller.get_diagnostics()).availability.value == "needs-download"
