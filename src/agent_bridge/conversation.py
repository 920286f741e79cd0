"""Bounded conversation history with a pinned system prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Literal

from .fragments import ToolCallRequest

Role = Literal["system", "user", "assistant", "tool"]

DEFAULT_HISTORY_WINDOW = 20


@dataclass
class ConversationTurn:
    """One entry of the conversation sent to the model."""

    role: Role
    content: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    tool_call_id: str | None = None

    def as_payload(self) -> dict[str, Any]:
        """Return the chat-completions message dict for this turn."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.as_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


class ConversationBuffer:
    """Conversation history trimmed to the system prompt plus a trailing window.

    Element 0 is always the current system prompt. ``trim`` keeps it and the
    most recent ``window`` other turns, in insertion order.
    """

    def __init__(
        self, system_prompt: str = "", window: int = DEFAULT_HISTORY_WINDOW
    ) -> None:
        self.window = max(1, window)
        self._turns: list[ConversationTurn] = [
            ConversationTurn(role="system", content=system_prompt)
        ]

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def system_prompt(self) -> str:
        return self._turns[0].content or ""

    @property
    def turns(self) -> list[ConversationTurn]:
        """Return a shallow copy of the stored turns."""
        return list(self._turns)

    @property
    def messages(self) -> list[dict[str, Any]]:
        """Return wire payloads for every turn, system prompt first."""
        return [turn.as_payload() for turn in self._turns]

    def replace_system_prompt(self, content: str) -> None:
        """Swap the system prompt wholesale, keeping the rest of history."""
        self._turns[0] = ConversationTurn(role="system", content=content)

    def append(self, turn: ConversationTurn) -> None:
        """Append a non-system turn and enforce the window."""
        self._turns.append(turn)
        self.trim()

    def trim(self) -> None:
        """Drop the oldest turns beyond the window in a single slice.

        Tool results whose assistant tool-call turn fell out of the window are
        dropped too, since providers reject a tool turn without its call.
        """
        if len(self._turns) <= self.window + 1:
            return
        kept = self._turns[-self.window :]
        while kept and kept[0].role == "tool":
            kept.pop(0)
        self._turns = [self._turns[0], *kept]

    def export_json(self) -> str:
        """Export history with stable field ordering, for debug logging."""
        return json.dumps(self.messages, ensure_ascii=False, separators=(",", ":"))
