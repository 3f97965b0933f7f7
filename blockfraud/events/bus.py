from __future__ import annotations

import logging
from collections import defaultdict
from threading import RLock
from typing import Any, Callable, Protocol

from blockfraud.config import settings


logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]


class EventBus(Protocol):
    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        ...

    def publish(self, event_type: str, envelope: dict[str, Any]) -> None:
        ...


class InMemoryEventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            self._subscribers[event_type].append(handler)

    def publish(self, event_type: str, envelope: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event_type, []))
            # Wildcard subscribers
            handlers.extend(self._subscribers.get("*", []))
        for handler in handlers:
            handler(envelope)


def build_event_bus() -> EventBus:
    backend = settings.event_bus_backend
    if backend != "inmemory":
        logger.warning("Unknown event bus backend %r, using in-memory bus", backend)
    return InMemoryEventBus()
