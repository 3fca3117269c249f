"""Notification bus for persistence events."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events emitted by the persistence engine."""

    STATE_SAVED = "state_saved"
    STATE_SAVE_FAILED = "state_save_failed"
    STATE_LOADED = "state_loaded"
    STATE_CLEARED = "state_cleared"
    FILE_SAVED = "file_saved"
    FILE_LOADED = "file_loaded"
    FILE_ERROR = "file_error"
    ERROR_OCCURRED = "error_occurred"


@dataclass(frozen=True, slots=True)
class Event:
    """A delivered notification.

    Attributes:
        type: The event type.
        timestamp: Unix timestamp of emission.
        source: Name of the emitting component.
        data: Event payload.
    """

    type: EventType
    timestamp: float
    source: str
    data: dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[Event], None]


class EventBus:
    """Synchronous publish/subscribe bus.

    Handlers run in registration order on the emitting thread. A failing
    handler is logged and does not stop the remaining handlers or reach the
    emitter.

    Example:
        ```python
        bus = EventBus()
        bus.register(EventType.STATE_SAVED, lambda event: print(event.data))
        bus.emit(EventType.STATE_SAVED, {"source": "engine", "data": {"size": 12}})
        ```
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[EventHandler]] = {}

    def register(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe `handler` to `event_type`."""
        self._listeners.setdefault(event_type, []).append(handler)

    def unregister(self, event_type: EventType, handler: EventHandler) -> None:
        """Remove one subscription. Unknown handlers are ignored."""
        handlers = self._listeners.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def unregister_all(self, event_type: EventType) -> None:
        """Remove every handler for `event_type`."""
        self._listeners.pop(event_type, None)

    def clear(self) -> None:
        """Remove all handlers."""
        self._listeners.clear()

    def registered_event_types(self) -> list[EventType]:
        """List event types with at least one handler."""
        return [event_type for event_type, handlers in self._listeners.items() if handlers]

    def emit(self, event_type: EventType, payload: dict[str, Any] | None = None) -> None:
        """Deliver an event to every handler of `event_type`.

        Args:
            event_type: The event type.
            payload: Optional mapping with `source` and `data` keys.
        """
        handlers = self._listeners.get(event_type)
        if not handlers:
            return

        payload = payload or {}
        event = Event(
            type=event_type,
            timestamp=time.time(),
            source=payload.get("source", "unknown"),
            data=payload.get("data") or {},
        )
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error(f"Error in event handler for {event_type.value}: {exc}")
