"""Chat agent: turns inbound chat messages into streamed model replies.

One ``ChatAgent`` serves one channel. It owns the conversation buffer, the
set of in-flight generations and the two event subscriptions, and releases
all of them in ``dispose``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import json
import logging
import time
from typing import Any

from .accumulator import DEFAULT_FLUSH_INTERVAL_SECONDS, StreamAccumulator
from .cancellation import CancellationCoordinator
from .chat_service import ChatService, MessageIdentity
from .completions import FragmentSource, build_fragment_source
from .conversation import DEFAULT_HISTORY_WINDOW, ConversationBuffer, ConversationTurn
from .events import Event
from .exceptions import AgentDisposedError
from .fragments import ToolCallRequest
from .indicator import AIState, IndicatorSignaler
from .prompts import writing_assistant_prompt, writing_task_context
from .search import ToolInvoker, WebSearch
from .state import AgentState, StateManager
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

MESSAGE_NEW = "message.new"
AI_INDICATOR_STOP = "ai_indicator.stop"
GENERIC_ERROR_TEXT = "Error generating the message"


def _writing_task(message: dict[str, Any]) -> str | None:
    """Return the writing-task hint attached to an inbound message, if any."""
    custom = message.get("custom")
    task = custom.get("writingTask") if isinstance(custom, dict) else None
    task = task or message.get("writingTask")
    if isinstance(task, str) and task.strip():
        return task.strip()
    return None


class ChatAgent:
    """Writing assistant bound to one chat channel."""

    def __init__(
        self,
        chat: ChatService,
        *,
        model_options: dict[str, Any] | None = None,
        web_search: WebSearch | None = None,
        source: FragmentSource | None = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._chat = chat
        self._model_options = dict(model_options or {})
        self._source = source
        self._tools = ToolInvoker(web_search or WebSearch())
        self._indicator = IndicatorSignaler(chat)
        self._cancellation = CancellationCoordinator()
        self._flush_tasks = TaskManager("flush")
        self._flush_interval_seconds = flush_interval_seconds
        self._clock = clock
        self._disposed = False
        self._subscribed = False
        self.state = StateManager()
        self.conversation = ConversationBuffer(window=history_window)
        self.last_interaction = time.time()

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def active_generations(self) -> int:
        return self._cancellation.active_count

    async def init(self) -> None:
        """Validate credentials, set the system prompt and subscribe to events.

        Raises:
            MissingCredentialError: the model provider needs an API key that
                is not configured. Nothing is subscribed in that case.
            AgentDisposedError: the agent was already disposed.
        """
        if self._disposed:
            raise AgentDisposedError("Agent has been disposed.")
        if self._source is None:
            self._source = build_fragment_source(**self._model_options)

        self.conversation.replace_system_prompt(writing_assistant_prompt())
        await self._chat.connect()
        self._chat.on(MESSAGE_NEW, self.handle_message)
        self._chat.on(AI_INDICATOR_STOP, self.handle_stop_generating)
        self._subscribed = True
        await self.state.transition_to(AgentState.READY)
        LOGGER.info("agent.ready", extra={"event": "agent.ready"})

    async def handle_message(self, event: Event) -> None:
        """React to ``message.new``: record the turn and stream a reply."""
        if self._disposed or not await self.state.can_accept_messages():
            LOGGER.debug(
                "agent.message.ignored",
                extra={"event": "agent.message.ignored", "reason": "not_ready"},
            )
            return

        message = event.data.get("message")
        if not isinstance(message, dict) or message.get("ai_generated"):
            return
        text = message.get("text")
        if not text:
            return

        self.last_interaction = time.time()
        LOGGER.info(
            "agent.message.received",
            extra={"event": "agent.message.received", "message_id": message.get("id")},
        )

        task = _writing_task(message)
        if task:
            self.conversation.replace_system_prompt(
                writing_assistant_prompt(writing_task_context(task))
            )
        self.conversation.append(ConversationTurn(role="user", content=text))

        placeholder = await self._chat.send_message({"text": "", "ai_generated": True})
        if self._disposed:
            return
        identity = MessageIdentity.from_message(placeholder)

        await self.state.transition_to(AgentState.THINKING)
        await self._indicator.update(identity, AIState.THINKING)
        await self._generate(identity)

    async def _write_text(self, identity: MessageIdentity, text: str) -> None:
        if self._disposed:
            return
        await self._chat.partial_update_message(
            identity.message_id, {"set": {"text": text}}
        )

    async def _generate(self, identity: MessageIdentity) -> None:
        """Run one streamed completion round against ``identity``."""
        if self._disposed or self._source is None:
            return

        token = self._cancellation.register(identity)
        LOGGER.info(
            "agent.generation.start",
            extra={
                "event": "agent.generation.start",
                "message_id": identity.message_id,
                "history": len(self.conversation),
            },
        )
        try:
            await self.state.transition_to(AgentState.GENERATING)
            await self._indicator.update(identity, AIState.GENERATING)
            if token.is_set() or self._disposed:
                return

            async def flush(text: str) -> None:
                await self._write_text(identity, text)

            accumulator = StreamAccumulator(
                flush,
                token,
                flush_interval_seconds=self._flush_interval_seconds,
                clock=self._clock,
                should_stop=lambda: self._disposed,
                tasks=self._flush_tasks,
            )
            outcome = await accumulator.consume(
                self._source.stream(
                    self.conversation.messages, self._tools.tools, cancel=token
                )
            )

            if outcome.status == "tool_calls":
                await self.handle_tool_calls(outcome.tool_calls, identity, token)
            elif outcome.status == "completed":
                if token.is_set() or self._disposed:
                    return
                self.conversation.append(
                    ConversationTurn(role="assistant", content=outcome.text)
                )
                await self._indicator.clear(identity)
                await self._settle(token)
                LOGGER.info(
                    "agent.generation.complete",
                    extra={
                        "event": "agent.generation.complete",
                        "message_id": identity.message_id,
                        "chars": len(outcome.text),
                        "partial_flushes": accumulator.partial_flushes,
                    },
                )
        except Exception as exc:
            if token.is_set() or self._disposed:
                LOGGER.info(
                    "agent.generation.aborted",
                    extra={
                        "event": "agent.generation.aborted",
                        "message_id": identity.message_id,
                        "error_type": type(exc).__name__,
                    },
                )
                return
            LOGGER.error(
                "agent.generation.failed",
                extra={
                    "event": "agent.generation.failed",
                    "message_id": identity.message_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            await self.handle_stream_error(exc, identity, token)
        finally:
            self._cancellation.retire(token)

    async def handle_tool_calls(
        self,
        requests: list[ToolCallRequest],
        identity: MessageIdentity,
        token: asyncio.Event,
    ) -> None:
        """Run requested tools, record their results and continue generating.

        The assistant turn carrying the raw requests goes into history first
        so the model sees its own call next to the results. Every call id gets
        exactly one tool turn, even when the user stops halfway through.
        """
        await self.state.transition_to(AgentState.TOOL_CALL_PENDING)
        self.conversation.append(
            ConversationTurn(role="assistant", content=None, tool_calls=list(requests))
        )
        for request in requests:
            if token.is_set():
                result = json.dumps({"error": "Tool call cancelled"})
            else:
                result = await self._tools.invoke(request)
            self.conversation.append(
                ConversationTurn(role="tool", content=result, tool_call_id=request.id)
            )

        if token.is_set() or self._disposed:
            return
        self._cancellation.retire(token)
        await self._generate(identity)

    async def _settle(self, token: asyncio.Event | None) -> None:
        """Retire ``token`` and go back to READY once nothing else is generating."""
        if token is not None:
            self._cancellation.retire(token)
        if self._cancellation.active_count == 0:
            await self.state.transition_to(AgentState.READY)

    async def handle_stop_generating(self, event: Event) -> None:
        """React to ``ai_indicator.stop`` for a message this agent is writing."""
        if self._disposed:
            return
        message_id = event.data.get("message_id")
        if not message_id or not self._cancellation.is_tracking(str(message_id)):
            return

        LOGGER.info(
            "agent.stop",
            extra={"event": "agent.stop", "message_id": message_id},
        )
        stopped = self._cancellation.stop_all()
        identity = next(
            (item for item in stopped if item.message_id == message_id),
            MessageIdentity(cid=str(event.data.get("cid", "")), message_id=message_id),
        )
        await self.state.transition_to(AgentState.READY)
        await self._indicator.clear(identity)

    async def handle_stream_error(
        self,
        error: BaseException,
        identity: MessageIdentity,
        token: asyncio.Event | None = None,
    ) -> None:
        """Show a failed generation as an error indicator plus the error text."""
        if self._disposed:
            return
        # Partial writes still in flight must not overwrite the error text.
        await self._flush_tasks.wait_idle()
        if self._disposed:
            return
        await self._settle(token)
        await self._indicator.update(identity, AIState.ERROR)
        await self._write_text(identity, str(error) or GENERIC_ERROR_TEXT)

    async def dispose(self) -> None:
        """Unsubscribe, stop all generations and disconnect. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True
        if self._subscribed:
            self._chat.off(MESSAGE_NEW, self.handle_message)
            self._chat.off(AI_INDICATOR_STOP, self.handle_stop_generating)
            self._subscribed = False

        self._cancellation.stop_all()
        await self._flush_tasks.cancel_all()
        await self._chat.disconnect()
        await self.state.transition_to(AgentState.DISPOSED)
        LOGGER.info("agent.disposed", extra={"event": "agent.disposed"})
        LOGGER.debug(
            "agent.history",
            extra={"event": "agent.history", "history": self.conversation.export_json()},
        )
