"""Top-level package for agent-bridge."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .agent import ChatAgent
    from .chat_service import ChatService, MessageIdentity, StreamChatService
    from .config import load_config
    from .exceptions import (
        AgentBridgeError,
        AgentDisposedError,
        ConfigValidationError,
        MissingCredentialError,
        ModelStreamError,
    )
    from .search import WebSearch
    from .state import AgentState, StateManager
    from .webhook import create_app

__all__ = [
    "AgentBridgeError",
    "AgentDisposedError",
    "AgentState",
    "ChatAgent",
    "ChatService",
    "ConfigValidationError",
    "MessageIdentity",
    "MissingCredentialError",
    "ModelStreamError",
    "StateManager",
    "StreamChatService",
    "WebSearch",
    "create_app",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """Lazily import symbols so the SDK clients load only when used."""
    if name == "ChatAgent":
        from .agent import ChatAgent

        return ChatAgent
    if name in {"ChatService", "MessageIdentity", "StreamChatService"}:
        from .chat_service import ChatService, MessageIdentity, StreamChatService

        return {
            "ChatService": ChatService,
            "MessageIdentity": MessageIdentity,
            "StreamChatService": StreamChatService,
        }[name]
    if name == "load_config":
        from .config import load_config

        return load_config
    if name in {
        "AgentBridgeError",
        "AgentDisposedError",
        "ConfigValidationError",
        "MissingCredentialError",
        "ModelStreamError",
    }:
        from . import exceptions

        return getattr(exceptions, name)
    if name in {"AgentState", "StateManager"}:
        from .state import AgentState, StateManager

        return {"AgentState": AgentState, "StateManager": StateManager}[name]
    if name == "WebSearch":
        from .search import WebSearch

        return WebSearch
    if name == "create_app":
        from .webhook import create_app

        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
