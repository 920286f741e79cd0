"""Inbound chat event dispatch."""

from .bus import Event, EventBus

__all__ = ["EventBus", "Event"]
