"""Tests for SessionPool — lazy creation, at-most-one per id, safe teardown."""

from __future__ import annotations

import asyncio

import pytest

from nano_orchestrator.engine.errors import EngineUnavailable, InvalidConversationId
from nano_orchestrator.engine.guard import SingleFlightGuard
from nano_orchestrator.engine.models import SamplingConfig
from nano_orchestrator.engine.provider import MockModelProvider, MockModelSession, NullModelProvider
from nano_orchestrator.engine.session import SessionPool


class SlowProvider(MockModelProvider):
    """Suspends inside create_session so callers can race."""

    async def create_session(self, config, on_progress=None):
        await asyncio.sleep(0.01)
        return await super().create_session(config, on_progress)


class TestGetOrCreate:

    async def test_reuses_session_for_same_conversation(self):
        provider = MockModelProvider([MockModelSession(["x"]), MockModelSession(["y"])])
        pool = SessionPool(provider)

        first = await pool.get_or_create("c1", SamplingConfig())
        second = await pool.get_or_create("c1", SamplingConfig())

        assert first is second
        assert provider.create_count == 1
        assert "c1" in pool

    async def test_concurrent_callers_share_one_session(self):
        provider = SlowProvider()
        pool = SessionPool(provider)

        sessions = await asyncio.gather(*(
            pool.get_or_create("c1", SamplingConfig()) for _ in range(3)
        ))

        assert all(s is sessions[0] for s in sessions)
        assert provider.create_count == 1
        assert len(pool) == 1

    async def test_separate_conversations_get_separate_sessions(self):
        pool = SessionPool(MockModelProvider())
        a = await pool.get_or_create("a", SamplingConfig())
        b = await pool.get_or_create("b", SamplingConfig())
        assert a is not b
        assert len(pool) == 2

    @pytest.mark.parametrize("conversation_id", ["", None])
    async def test_rejects_missing_conversation_id(self, conversation_id):
        pool = SessionPool(MockModelProvider())
        with pytest.raises(InvalidConversationId):
            await pool.get_or_create(conversation_id, SamplingConfig())

    async def test_missing_engine(self):
        pool = SessionPool(NullModelProvider())
        with pytest.raises(EngineUnavailable):
            await pool.get_or_create("c1", SamplingConfig())
        assert len(pool) == 0


class TestDestroy:

    async def test_double_destroy_is_safe(self):
        session = MockModelSession(["x"])
        pool = SessionPool(MockModelProvider([session]))
        await pool.get_or_create("c1", SamplingConfig())

        await pool.destroy("c1")
        await pool.destroy("c1")

        assert session.destroy_calls == 1
        assert "c1" not in pool

    async def test_teardown_errors_are_swallowed(self):
        session = MockModelSession(["x"], destroy_error=RuntimeError("already gone"))
        pool = SessionPool(MockModelProvider([session]))
        await pool.get_or_create("c1", SamplingConfig())

        await pool.destroy("c1")

        assert session.destroyed
        assert len(pool) == 0

    async def test_destroy_all(self):
        sessions = [MockModelSession(["a"]), MockModelSession(["b"], destroy_error=RuntimeError("x"))]
        pool = SessionPool(MockModelProvider(list(sessions)))
        await pool.get_or_create("a", SamplingConfig())
        await pool.get_or_create("b", SamplingConfig())

        await pool.destroy()

        assert len(pool) == 0
        assert all(s.destroyed for s in sessions)

    async def test_destroy_aborts_matching_generation(self):
        guard = SingleFlightGuard()
        pool = SessionPool(MockModelProvider(), guard)
        token, _ = guard.begin("c1")

        await pool.destroy("other")
        assert not token.cancelled

        await pool.destroy("c1")
        assert token.cancelled

    async def test_destroy_without_abort_leaves_token(self):
        guard = SingleFlightGuard()
        pool = SessionPool(MockModelProvider(), guard)
        token, _ = guard.begin("c1")
        await pool.get_or_create("c1", SamplingConfig())

        await pool.destroy("c1", abort=False)

        assert not token.cancelled
        assert "c1" not in pool

    async def test_discard_only_evicts_the_same_session(self):
        pool = SessionPool(MockModelProvider())
        pooled = await pool.get_or_create("c1", SamplingConfig())
        stray = MockModelSession()

        await pool.discard("c1", stray)
        assert pool.get("c1") is pooled
        assert stray.destroyed

        await pool.discard("c1", pooled)
        assert "c1" not in pool
        assert pooled.destroyed
