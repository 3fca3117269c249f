"""Pytest configuration and fixtures for state-persistence tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from state_persistence.observability.events import Event, EventBus, EventType
from state_persistence.serialization.protocol import handle_message
from state_persistence.storage.memory import MemoryStorage


class FakeWorker:
    """In-process worker double that can answer, stay silent or fail on demand."""

    def __init__(self, auto_respond: bool = False) -> None:
        self.auto_respond = auto_respond
        self.posted: list[dict[str, Any]] = []
        self.terminated = False
        self._alive = False
        self._on_message: Callable[[dict[str, Any]], None] | None = None
        self._on_error: Callable[[BaseException], None] | None = None

    @property
    def is_alive(self) -> bool:
        return self._alive

    def start(self, on_message, on_error) -> None:
        self._on_message = on_message
        self._on_error = on_error
        self._alive = True

    def post_message(self, message: dict[str, Any]) -> None:
        if not self._alive:
            raise RuntimeError("Worker is not running")
        self.posted.append(message)
        if self.auto_respond:
            asyncio.get_running_loop().call_soon(self.respond, handle_message(message))

    def terminate(self) -> None:
        self._alive = False
        self.terminated = True

    def respond(self, response: dict[str, Any]) -> None:
        assert self._on_message is not None
        self._on_message(response)

    def fail(self, exc: BaseException) -> None:
        self._alive = False
        assert self._on_error is not None
        self._on_error(exc)


@pytest.fixture()
def memory_storage() -> MemoryStorage:
    """Provide an empty in-memory store with a generous quota."""
    return MemoryStorage(quota_chars=10 * 1024 * 1024)


@pytest.fixture()
def event_bus() -> EventBus:
    """Provide a fresh event bus."""
    return EventBus()


@pytest.fixture()
def recorded_events(event_bus: EventBus) -> list[Event]:
    """Record every event emitted on `event_bus`."""
    events: list[Event] = []
    for event_type in EventType:
        event_bus.register(event_type, events.append)
    return events


@pytest.fixture()
def silent_worker() -> FakeWorker:
    """A worker that accepts requests and never answers."""
    return FakeWorker(auto_respond=False)


@pytest.fixture()
def echo_worker() -> FakeWorker:
    """A worker that answers every request on the next loop iteration."""
    return FakeWorker(auto_respond=True)


@pytest.fixture()
def sample_state() -> dict[str, Any]:
    """A small state in the current schema."""
    return {
        "projects": [{"id": "p1", "name": "Checkout", "sections": [{"id": "s1", "content": "draft"}]}],
        "metadata": {"projectGroupName": "Q3 Roadmap"},
    }


@pytest.fixture()
def make_large_state() -> Callable[[int], dict[str, Any]]:
    """Factory for states larger than a given number of characters."""
    return _large_state


def _large_state(min_chars: int) -> dict[str, Any]:
    """Build a current-schema state whose encoding exceeds `min_chars`."""
    chunk = "x" * 1024
    count = min_chars // 1024 + 1
    return {"projects": [{"id": f"p{i}", "content": chunk} for i in range(count)]}
