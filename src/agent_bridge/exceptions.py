"""Domain exception hierarchy for the chat agent bridge."""

from __future__ import annotations


class AgentBridgeError(RuntimeError):
    """Base class for all domain-level bridge errors."""


class ConfigValidationError(AgentBridgeError):
    """Raised when configuration cannot be validated safely."""


class MissingCredentialError(AgentBridgeError):
    """Raised at startup when a required API credential is not configured."""


class ModelStreamError(AgentBridgeError):
    """Raised when the model completion stream fails."""


class AgentDisposedError(AgentBridgeError):
    """Raised when a disposed agent is asked to start again."""
