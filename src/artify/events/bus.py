"""Async event bus for Artify."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import Callable, Coroutine
from typing import Any

from artify.events.types import EventType

logger = logging.getLogger(__name__)

Listener = Callable[[EventType, dict[str, Any]], Coroutine[Any, Any, None]]


class EventBus:
    """Async pub/sub bus that also keeps a short history of emitted events.

    Listener failures are logged and never reach the emitter, so a broken
    subscriber cannot fail a save or a debit that already committed.
    """

    def __init__(self, *, history_size: int = 50) -> None:
        self._listeners: dict[EventType, list[Listener]] = defaultdict(list)
        self._global_listeners: list[Listener] = []
        self._history: deque[tuple[EventType, dict[str, Any]]] = deque(maxlen=history_size)

    def on(self, event_type: EventType, listener: Listener) -> None:
        self._listeners[event_type].append(listener)

    def on_all(self, listener: Listener) -> None:
        self._global_listeners.append(listener)

    def off(self, event_type: EventType, listener: Listener) -> None:
        if listener in self._listeners[event_type]:
            self._listeners[event_type].remove(listener)

    async def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        data = data or {}
        self._history.append((event_type, data))
        listeners = self._listeners.get(event_type, []) + self._global_listeners

        for listener in listeners:
            try:
                await listener(event_type, data)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in event listener for %s", event_type)

    def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent events, newest first."""
        items = list(self._history)[-limit:]
        return [{"event": str(t), **d} for t, d in reversed(items)]

    def clear(self) -> None:
        self._listeners.clear()
        self._global_listeners.clear()
        self._history.clear()
