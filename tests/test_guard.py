"""Tests for cancellation tokens and the single-flight guard."""

from __future__ import annotations

import asyncio

import pytest

from nano_orchestrator.engine.errors import GenerationCancelled, TransientEngineFault
from nano_orchestrator.engine.guard import CancellationToken, SingleFlightGuard


class TestCancellationToken:

    async def test_guard_returns_result(self):
        token = CancellationToken("c1")

        async def work():
            return 42

        assert await token.guard(work()) == 42

    async def test_guard_refuses_when_already_cancelled(self):
        token = CancellationToken("c1")
        token.cancel()

        async def work():
            return 42

        with pytest.raises(GenerationCancelled):
            await token.guard(work())

    async def test_guard_interrupts_pending_await(self):
        token = CancellationToken("c1")
        never = asyncio.Event()

        task = asyncio.create_task(token.guard(never.wait()))
        await asyncio.sleep(0)
        token.cancel()

        with pytest.raises(GenerationCancelled):
            await task

    async def test_guard_propagates_inner_errors(self):
        token = CancellationToken("c1")

        async def boom():
            raise RuntimeError("engine fault")

        with pytest.raises(RuntimeError, match="engine fault"):
            await token.guard(boom())

    async def test_iterate_stops_and_closes_source_on_cancel(self):
        token = CancellationToken("c1")
        closed = []

        async def source():
            try:
                yield "a"
                yield "b"
                yield "c"
            finally:
                closed.append(True)

        received = []
        with pytest.raises(GenerationCancelled):
            async for item in token.iterate(source()):
                received.append(item)
                token.cancel()

        assert received == ["a"]
        assert closed == [True]

    def test_cancellation_is_its_own_error_kind(self):
        assert not issubclass(GenerationCancelled, TransientEngineFault)


class TestSingleFlightGuard:

    async def test_begin_cancels_previous_token(self):
        guard = SingleFlightGuard()
        first, previous = guard.begin("a")
        assert previous is None

        second, previous = guard.begin("b")
        assert previous is first
        assert first.cancelled
        assert not second.cancelled
        assert guard.active is second

    async def test_cancel_matches_conversation(self):
        guard = SingleFlightGuard()
        token, _ = guard.begin("a")

        assert guard.cancel("b") is False
        assert not token.cancelled
        assert guard.cancel("a") is True
        assert token.cancelled
        assert guard.cancel("a") is False

    async def test_cancelled_owner_is_not_busy_until_released(self):
        guard = SingleFlightGuard()
        token, _ = guard.begin("a")
        assert guard.is_busy

        guard.cancel()
        assert not guard.is_busy
        assert guard.active is token

        guard.release(token)
        assert guard.active is None
        assert token.released

    async def test_release_of_stale_token_keeps_new_owner(self):
        guard = SingleFlightGuard()
        first, _ = guard.begin("a")
        second, _ = guard.begin("b")

        guard.release(first)
        assert guard.active is second
        await asyncio.wait_for(first.wait_released(), timeout=1)
