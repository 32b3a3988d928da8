"""Artify event system."""

from artify.events.bus import EventBus
from artify.events.types import EventType

__all__ = ["EventBus", "EventType"]
