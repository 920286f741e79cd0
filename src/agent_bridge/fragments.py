"""Typed fragments of a streamed model response and reassembled tool calls."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Union

TOOL_CALLS_REASON = "tool_calls"


@dataclass(frozen=True)
class TextDelta:
    """A piece of display text."""

    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    """A fragment of a tool call, keyed by its position in the response.

    ``name`` and ``arguments`` are partial strings that must be concatenated
    with earlier fragments carrying the same ``index``.
    """

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class StopSignal:
    """Terminal marker carrying the provider's finish reason."""

    reason: str

    @property
    def requests_tools(self) -> bool:
        return self.reason == TOOL_CALLS_REASON


Fragment = Union[TextDelta, ToolCallDelta, StopSignal]


@dataclass
class ToolCallRequest:
    """A tool call assembled from one or more ``ToolCallDelta`` fragments."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    def merge(self, delta: ToolCallDelta) -> None:
        """Fold one fragment into this request."""
        if delta.call_id:
            self.id = delta.call_id
        if delta.name:
            self.name += delta.name
        if delta.arguments:
            self.arguments += delta.arguments

    def parse_arguments(self) -> dict[str, Any]:
        """Decode the argument string; raises ``ValueError`` when malformed."""
        parsed = json.loads(self.arguments or "{}")
        if not isinstance(parsed, dict):
            raise ValueError("Tool call arguments must be a JSON object.")
        return parsed

    def as_payload(self) -> dict[str, Any]:
        """Return the OpenAI-style wire form used in conversation history."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }
