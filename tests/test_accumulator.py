"""Tests for fragment accumulation, throttled flushing and cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Iterable
import json
import math
import unittest

from agent_bridge.accumulator import StreamAccumulator
from agent_bridge.fragments import (
    Fragment,
    StopSignal,
    TextDelta,
    ToolCallDelta,
    ToolCallRequest,
)


async def _fragments(items: Iterable[Fragment]) -> AsyncGenerator[Fragment, None]:
    for item in items:
        yield item


class _Clock:
    """Monotonic clock advancing by ``step`` on every reading."""

    def __init__(self, step: float) -> None:
        self.step = step
        self.now = -step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class _Recorder:
    def __init__(self) -> None:
        self.writes: list[str] = []

    async def __call__(self, text: str) -> None:
        self.writes.append(text)


class StreamAccumulatorTests(unittest.IsolatedAsyncioTestCase):
    """Validate accumulation semantics independent of provider."""

    async def test_final_text_is_concatenation_of_deltas(self) -> None:
        recorder = _Recorder()
        accumulator = StreamAccumulator(recorder, asyncio.Event(), clock=_Clock(0.1))
        outcome = await accumulator.consume(
            _fragments(
                [TextDelta("Hel"), TextDelta("lo"), TextDelta(" world"), StopSignal("stop")]
            )
        )

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(outcome.text, "Hello world")
        self.assertEqual(recorder.writes[0], "Hel")
        self.assertEqual(recorder.writes[-1], "Hello world")

    async def test_partial_flushes_are_throttled(self) -> None:
        recorder = _Recorder()
        clock = _Clock(0.25)
        accumulator = StreamAccumulator(
            recorder, asyncio.Event(), flush_interval_seconds=1.0, clock=clock
        )
        deltas = [TextDelta("x") for _ in range(10)]
        outcome = await accumulator.consume(_fragments(deltas))

        # Readings at 0.0, 0.25 ... 2.25: flushes at 0.0 and 1.25 only.
        self.assertEqual(accumulator.partial_flushes, 2)
        self.assertLessEqual(accumulator.partial_flushes, math.ceil(clock.now / 1.0))
        self.assertEqual(recorder.writes, ["x", "xxxxxx", "x" * 10])
        self.assertEqual(outcome.text, "x" * 10)

    async def test_interleaved_tool_calls_reassemble_per_index(self) -> None:
        recorder = _Recorder()
        accumulator = StreamAccumulator(recorder, asyncio.Event())
        outcome = await accumulator.consume(
            _fragments(
                [
                    ToolCallDelta(0, call_id="call_a", name="web_", arguments='{"qu'),
                    ToolCallDelta(1, call_id="call_b", name="web_search", arguments="{"),
                    ToolCallDelta(0, name="search", arguments='ery": "cats"}'),
                    ToolCallDelta(1, arguments='"query": "dogs"}'),
                    StopSignal("tool_calls"),
                ]
            )
        )

        self.assertEqual(outcome.status, "tool_calls")
        self.assertEqual([call.id for call in outcome.tool_calls], ["call_a", "call_b"])
        self.assertEqual([call.name for call in outcome.tool_calls], ["web_search"] * 2)
        self.assertEqual(outcome.tool_calls[0].parse_arguments(), {"query": "cats"})
        self.assertEqual(outcome.tool_calls[1].parse_arguments(), {"query": "dogs"})
        # Tool-call rounds never write a final text.
        self.assertEqual(recorder.writes, [])

    async def test_arguments_split_across_three_fragments_parse(self) -> None:
        accumulator = StreamAccumulator(_Recorder(), asyncio.Event())
        outcome = await accumulator.consume(
            _fragments(
                [
                    ToolCallDelta(0, call_id="call_1", name="web_search", arguments='{"que'),
                    ToolCallDelta(0, arguments='ry": "latest rust rel'),
                    ToolCallDelta(0, arguments='ease"}'),
                    StopSignal("tool_calls"),
                ]
            )
        )

        self.assertEqual(len(outcome.tool_calls), 1)
        self.assertEqual(
            json.loads(outcome.tool_calls[0].arguments),
            {"query": "latest rust release"},
        )

    async def test_tool_calls_without_finish_reason(self) -> None:
        accumulator = StreamAccumulator(_Recorder(), asyncio.Event())
        outcome = await accumulator.consume(
            _fragments([ToolCallDelta(0, call_id="c", name="web_search", arguments="{}")])
        )
        self.assertEqual(outcome.status, "tool_calls")

    async def test_cancel_before_stream_writes_nothing(self) -> None:
        recorder = _Recorder()
        token = asyncio.Event()
        token.set()
        accumulator = StreamAccumulator(recorder, token)
        started: list[bool] = []

        async def stream() -> AsyncGenerator[Fragment, None]:
            started.append(True)
            yield TextDelta("never")

        outcome = await accumulator.consume(stream())

        self.assertEqual(outcome.status, "cancelled")
        self.assertEqual(recorder.writes, [])
        self.assertEqual(started, [])

    async def test_cancel_mid_stream_stops_and_closes_stream(self) -> None:
        recorder = _Recorder()
        token = asyncio.Event()
        closed: list[bool] = []

        async def stream() -> AsyncGenerator[Fragment, None]:
            try:
                yield TextDelta("a")
                token.set()
                yield TextDelta("b")
                yield TextDelta("c")
            finally:
                closed.append(True)

        accumulator = StreamAccumulator(recorder, token, clock=_Clock(0.1))
        outcome = await accumulator.consume(stream())
        await asyncio.sleep(0)

        self.assertEqual(outcome.status, "cancelled")
        self.assertEqual(outcome.text, "a")
        self.assertEqual(closed, [True])
        self.assertNotIn("abc", recorder.writes)
        self.assertNotIn("ab", recorder.writes)

    async def test_owner_stop_condition_cancels(self) -> None:
        recorder = _Recorder()
        disposed = [False]

        async def stream() -> AsyncGenerator[Fragment, None]:
            yield TextDelta("a")
            disposed[0] = True
            yield TextDelta("b")

        accumulator = StreamAccumulator(
            recorder, asyncio.Event(), should_stop=lambda: disposed[0]
        )
        outcome = await accumulator.consume(stream())
        self.assertEqual(outcome.status, "cancelled")

    async def test_failed_partial_flush_does_not_abort_stream(self) -> None:
        writes: list[str] = []

        async def flaky(text: str) -> None:
            if not writes:
                writes.append("failed")
                raise RuntimeError("rate limited")
            writes.append(text)

        accumulator = StreamAccumulator(flaky, asyncio.Event(), clock=_Clock(0.1))
        with self.assertLogs("agent_bridge.task_manager", level="WARNING"):
            outcome = await accumulator.consume(
                _fragments([TextDelta("one "), TextDelta("two")])
            )

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(writes, ["failed", "one two"])


class ToolCallRequestTests(unittest.TestCase):
    """Validate tool-call assembly helpers."""

    def test_parse_arguments_rejects_non_objects(self) -> None:
        with self.assertRaises(ValueError):
            ToolCallRequest(arguments="[1, 2]").parse_arguments()
        with self.assertRaises(ValueError):
            ToolCallRequest(arguments='{"query": ').parse_arguments()

    def test_stop_signal_requests_tools(self) -> None:
        self.assertTrue(StopSignal("tool_calls").requests_tools)
        self.assertFalse(StopSignal("stop").requests_tools)


if __name__ == "__main__":
    unittest.main()
