"""Notification and failure-reporting collaborators."""

from state_persistence.observability.error_handler import ErrorHandler, OperationResult
from state_persistence.observability.events import Event, EventBus, EventHandler, EventType

__all__ = [
    "ErrorHandler",
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "OperationResult",
]
