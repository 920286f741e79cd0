"""Tracking and cooperative cancellation of in-flight generations."""

from __future__ import annotations

import asyncio
import logging

from .chat_service import MessageIdentity

LOGGER = logging.getLogger(__name__)


class CancellationCoordinator:
    """Hold one cancellation token per outstanding generation.

    A single chat message can spawn a sequence of generations through tool
    calls; ``stop_all`` reaches whichever of them is currently running.
    Tokens are plain ``asyncio.Event`` objects that generations poll at each
    suspension point.
    """

    def __init__(self) -> None:
        self._active: dict[asyncio.Event, MessageIdentity] = {}

    @property
    def active_count(self) -> int:
        return len(self._active)

    def register(self, identity: MessageIdentity) -> asyncio.Event:
        """Create and track a token for a generation targeting ``identity``."""
        token = asyncio.Event()
        self._active[token] = identity
        return token

    def retire(self, token: asyncio.Event) -> None:
        """Stop tracking ``token``. Retiring twice is a no-op."""
        self._active.pop(token, None)

    def is_tracking(self, message_id: str) -> bool:
        """Return whether any active generation targets ``message_id``."""
        return any(
            identity.message_id == message_id for identity in self._active.values()
        )

    def stop_all(self) -> list[MessageIdentity]:
        """Signal every active token, clear the set and return their targets."""
        stopped = list(self._active.items())
        self._active.clear()
        for token, _ in stopped:
            token.set()
        if stopped:
            LOGGER.info(
                "cancellation.stop_all",
                extra={"event": "cancellation.stop_all", "count": len(stopped)},
            )
        return [identity for _, identity in stopped]
