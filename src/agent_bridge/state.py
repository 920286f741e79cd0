"""Agent lifecycle state machine and lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum


class AgentState(str, Enum):
    """Finite state machine for one agent instance."""

    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"
    THINKING = "THINKING"
    GENERATING = "GENERATING"
    TOOL_CALL_PENDING = "TOOL_CALL_PENDING"
    DISPOSED = "DISPOSED"


class StateManager:
    """Manage state transitions with async lock semantics.

    ``DISPOSED`` is absorbing: once reached, every further transition is
    refused and the current state is returned unchanged.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = AgentState.UNINITIALIZED

    @property
    def current(self) -> AgentState:
        """Return the current state without waiting for the lock."""
        return self._state

    async def get_state(self) -> AgentState:
        """Return the current state under lock."""
        async with self._lock:
            return self._state

    async def transition_to(self, new_state: AgentState) -> AgentState:
        """Transition to a new state and return the resulting state."""
        async with self._lock:
            if self._state is not AgentState.DISPOSED:
                self._state = new_state
            return self._state

    async def transition_if(
        self,
        expected_state: AgentState,
        new_state: AgentState,
    ) -> bool:
        """Transition only when current state matches expected state."""
        async with self._lock:
            if self._state != expected_state or self._state is AgentState.DISPOSED:
                return False
            self._state = new_state
            return True

    async def can_accept_messages(self) -> bool:
        """Return True once initialized and until disposed."""
        async with self._lock:
            return self._state not in {
                AgentState.UNINITIALIZED,
                AgentState.DISPOSED,
            }
