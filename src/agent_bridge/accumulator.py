"""Accumulate a fragment stream into message text and tool-call requests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
import logging
import time
from typing import Literal

from .fragments import Fragment, StopSignal, TextDelta, ToolCallDelta, ToolCallRequest
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 1.0


@dataclass
class StreamOutcome:
    """How a stream ended and what it produced."""

    status: Literal["completed", "tool_calls", "cancelled"]
    text: str = ""
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


class StreamAccumulator:
    """Consume fragments, flushing partial text to the message store.

    Partial flushes are throttled: the first text delta flushes right away,
    later ones only once more than ``flush_interval_seconds`` has passed since
    the previous flush. Each flush carries the whole text accumulated so far
    and runs as a background task, so a slow write never stalls consumption.

    ``cancel`` is polled before each fragment and before each flush; once
    it is set nothing else is written and the outcome is ``cancelled``.
    ``should_stop`` lets the owner add its own stop condition (disposal).
    """

    def __init__(
        self,
        flush: Callable[[str], Awaitable[None]],
        cancel: asyncio.Event,
        *,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        should_stop: Callable[[], bool] | None = None,
        tasks: TaskManager | None = None,
    ) -> None:
        self._flush = flush
        self._cancel = cancel
        self._flush_interval_seconds = max(0.0, flush_interval_seconds)
        self._clock = clock
        self._should_stop = should_stop
        self._tasks = tasks or TaskManager("flush")
        self._text = ""
        self._slots: dict[int, ToolCallRequest] = {}
        self._last_flush_ts: float | None = None
        self.partial_flushes = 0

    @property
    def text(self) -> str:
        return self._text

    @property
    def tool_calls(self) -> list[ToolCallRequest]:
        """Assembled tool calls in index order."""
        return [self._slots[index] for index in sorted(self._slots)]

    @property
    def stopped(self) -> bool:
        if self._cancel.is_set():
            return True
        return self._should_stop is not None and self._should_stop()

    def handle_text(self, text: str) -> None:
        self._text += text
        now = self._clock()
        if (
            self._last_flush_ts is None
            or now - self._last_flush_ts > self._flush_interval_seconds
        ):
            self._last_flush_ts = now
            self._schedule_partial_flush()

    def handle_tool_call(self, delta: ToolCallDelta) -> None:
        slot = self._slots.get(delta.index)
        if slot is None:
            slot = self._slots[delta.index] = ToolCallRequest()
        slot.merge(delta)

    def _schedule_partial_flush(self) -> None:
        if self.stopped:
            return
        self.partial_flushes += 1
        self._tasks.spawn(self._flush(self._text))

    def _cancelled(self) -> StreamOutcome:
        LOGGER.info(
            "stream.cancelled",
            extra={"event": "stream.cancelled", "chars": len(self._text)},
        )
        return StreamOutcome(status="cancelled", text=self._text)

    async def consume(self, fragments: AsyncGenerator[Fragment, None]) -> StreamOutcome:
        """Drain ``fragments`` until the stream ends, asks for tools or is cancelled."""
        async with aclosing(fragments) as stream:
            if self.stopped:
                return self._cancelled()
            async for fragment in stream:
                if self.stopped:
                    return self._cancelled()
                if isinstance(fragment, TextDelta):
                    self.handle_text(fragment.text)
                elif isinstance(fragment, ToolCallDelta):
                    self.handle_tool_call(fragment)
                elif isinstance(fragment, StopSignal):
                    if fragment.requests_tools and self._slots:
                        return StreamOutcome(
                            status="tool_calls",
                            text=self._text,
                            tool_calls=self.tool_calls,
                        )

        if self.stopped:
            return self._cancelled()
        if self._slots:
            # Some providers end the stream without a tool_calls finish reason.
            return StreamOutcome(
                status="tool_calls", text=self._text, tool_calls=self.tool_calls
            )

        # A partial flush still in flight must not land after the final one.
        await self._tasks.wait_idle()
        if self.stopped:
            return self._cancelled()
        await self._flush(self._text)
        return StreamOutcome(status="completed", text=self._text)
