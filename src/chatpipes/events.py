"""Typed publish/subscribe notifications for dialogues and the memory store.

Delivery is synchronous on the emitting thread. An observer that raises is
logged and skipped; the remaining observers still receive the event.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TURN_START = "turn_start"
    TURN_END = "turn_end"
    INTERJECTION_ADDED = "interjection_added"
    DIALOGUE_STARTED = "dialogue_started"
    DIALOGUE_PAUSED = "dialogue_paused"
    DIALOGUE_RESUMED = "dialogue_resumed"
    DIALOGUE_STOPPED = "dialogue_stopped"
    DIALOGUE_COMPLETED = "dialogue_completed"
    ERROR = "error"
    MEMORY_CAPTURED = "memory_captured"
    MEMORIES_REINFORCED = "memories_reinforced"
    MOTIF_CREATED = "motif_created"
    SNAPSHOT_BUILT = "snapshot_built"


@dataclass(frozen=True)
class Event:
    type: EventType
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


Observer = Callable[[Event], None]


class EventBus:
    """Fan-out of events to subscribed observers."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[Observer, frozenset[EventType] | None]] = []
        self._lock = threading.Lock()

    def subscribe(
        self, observer: Observer, types: Iterable[EventType] | None = None
    ) -> Callable[[], None]:
        """Register an observer, optionally filtered by event type.

        Returns a callable that removes the subscription.
        """
        entry = (observer, frozenset(types) if types is not None else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, type: EventType, source: str, **payload: Any) -> Event:
        event = Event(type=type, source=source, payload=payload)
        with self._lock:
            targets = list(self._subscribers)
        for observer, types in targets:
            if types is not None and type not in types:
                continue
            try:
                observer(event)
            except Exception:
                logger.exception("Observer %r failed on %s", observer, type.value)
        return event
