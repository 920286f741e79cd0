"""Publish/subscribe dispatch for inbound chat events.

Usage:
    bus = EventBus()

    async def on_message(event):
        print(event.data["message"]["text"])

    bus.subscribe("message.new", on_message)
    await bus.publish("message.new", payload, source="webhook")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import inspect
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass
class Event:
    """Event data container. ``data`` is the raw chat payload."""

    name: str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """Route events by name to the handlers subscribed to that name."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable]] = {}

    def subscribe(self, event_name: str, handler: Callable) -> None:
        """Subscribe to an event.

        Args:
            event_name: Event type to listen for (e.g., "message.new")
            handler: Sync or async callable receiving an ``Event``
        """
        self._subscribers.setdefault(event_name, []).append(handler)
        LOGGER.debug(
            "bus.subscribe", extra={"event": "bus.subscribe", "name": event_name}
        )

    def unsubscribe(self, event_name: str, handler: Callable) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._subscribers.get(event_name)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._subscribers[event_name]
        LOGGER.debug(
            "bus.unsubscribe", extra={"event": "bus.unsubscribe", "name": event_name}
        )

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        """Deliver an event to every current subscriber, in subscription order.

        A failing handler is logged and does not stop delivery to the others.
        """
        event = Event(name=event_name, data=data, source=source)
        # Copy so handlers may unsubscribe while being called.
        handlers = list(self._subscribers.get(event_name, []))

        if not handlers:
            LOGGER.debug(
                "bus.publish.unhandled",
                extra={"event": "bus.publish.unhandled", "name": event_name},
            )
            return

        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as exc:
                LOGGER.error(
                    "bus.handler.failed",
                    extra={
                        "event": "bus.handler.failed",
                        "name": event_name,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )

    def clear(self, event_name: str | None = None) -> None:
        """Clear subscribers for one event, or for all events."""
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()
