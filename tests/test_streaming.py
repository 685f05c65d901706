"""Tests for chunk reconciliation and throttled delivery."""

from __future__ import annotations

import asyncio

from nano_orchestrator.engine.provider import ReplaceChunk
from nano_orchestrator.engine.streaming import StreamAccumulator, Throttle


class TestStreamAccumulator:

    def test_deltas_are_concatenated(self):
        acc = StreamAccumulator()
        for chunk in ["Hel", "lo", ", world"]:
            acc.push(chunk)
        assert acc.full_text == "Hello, world"

    def test_cumulative_chunks_replace(self):
        acc = StreamAccumulator()
        seen = []
        for chunk in ["Hel", "Hello", "Hello, wor", "Hello, world"]:
            acc.push(chunk)
            seen.append(acc.full_text)
        assert seen == ["Hel", "Hello", "Hello, wor", "Hello, world"]

    def test_mixed_conventions_grow_monotonically(self):
        acc = StreamAccumulator()
        previous = ""
        for chunk in ["The ", "The quick", " brown", "The quick brown fox"]:
            acc.push(chunk)
            assert acc.full_text.startswith(previous)
            previous = acc.full_text
        assert acc.full_text == "The quick brown fox"

    def test_shorter_non_prefix_chunk_is_appended(self):
        acc = StreamAccumulator()
        acc.push("Hello")
        acc.push("lo")
        assert acc.full_text == "Hellolo"

    def test_replace_chunk_overrides_text(self):
        acc = StreamAccumulator()
        acc.push("Hello wrld")
        changed = acc.push(ReplaceChunk("Hello world"))
        assert changed is True
        assert acc.full_text == "Hello world"

    def test_unchanged_text_reports_no_change(self):
        acc = StreamAccumulator()
        assert acc.push("Hello") is True
        assert acc.push("Hello") is False
        assert acc.push("") is False

    def test_delivery_bookkeeping(self):
        acc = StreamAccumulator()
        acc.push("abc")
        assert acc.has_undelivered
        acc.mark_delivered()
        assert acc.last_delivered_length == 3
        assert not acc.has_undelivered


class TestThrottle:

    async def test_first_value_is_delivered_immediately(self):
        delivered = []
        throttle = Throttle(delivered.append, interval=10)
        throttle.push("a")
        assert delivered == ["a"]

    async def test_flush_delivers_latest_pending_value(self):
        delivered = []
        throttle = Throttle(delivered.append, interval=10)
        throttle.push("a")
        throttle.push("ab")
        throttle.push("abc")
        assert delivered == ["a"]
        assert throttle.pending

        throttle.flush()
        assert delivered == ["a", "abc"]
        assert not throttle.pending

    async def test_cancel_drops_pending_value(self):
        delivered = []
        throttle = Throttle(delivered.append, interval=0.01)
        throttle.push("a")
        throttle.push("ab")
        throttle.cancel()
        await asyncio.sleep(0.03)
        assert delivered == ["a"]

    async def test_timer_delivers_after_interval(self):
        delivered = []
        throttle = Throttle(delivered.append, interval=0.01)
        throttle.push("a")
        throttle.push("ab")
        await asyncio.sleep(0.05)
        assert delivered == ["a", "ab"]

    async def test_identical_values_are_not_redelivered(self):
        delivered = []
        throttle = Throttle(delivered.append, interval=0.0)
        throttle.push("a")
        throttle.push("a")
        throttle.flush()
        assert delivered == ["a"]
