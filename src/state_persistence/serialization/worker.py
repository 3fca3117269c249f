"""Isolated execution context for large-payload (de)serialization."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
from collections.abc import Callable
from concurrent.futures import BrokenExecutor, Executor, Future, ProcessPoolExecutor
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from state_persistence.serialization.protocol import ResponseType, handle_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]
FaultHandler = Callable[[BaseException], None]


@runtime_checkable
class Worker(Protocol):
    """Protocol for a message-passing serialization worker.

    Responses and faults are delivered through the callbacks given to
    `start()`, always on the event loop thread that started the worker.
    """

    @property
    def is_alive(self) -> bool:
        """Whether the worker accepts messages."""
        ...

    def start(self, on_message: MessageHandler, on_error: FaultHandler) -> None:
        """Bind the response and fault callbacks and start accepting messages."""
        ...

    def post_message(self, message: dict[str, Any]) -> None:
        """Submit a request message without waiting for its response."""
        ...

    def terminate(self) -> None:
        """Stop the worker. Pending responses are dropped."""
        ...


class SerializationWorker(Worker):
    """Runs `handle_message` on a dedicated executor.

    By default a single-process `ProcessPoolExecutor` is created on `start()`,
    so encoding a large state never holds the caller's interpreter. Any
    `concurrent.futures.Executor` may be injected instead; an injected executor
    is not shut down by `terminate()`.

    Responses are posted back to the owning event loop in completion order,
    which may differ from submission order. A broken executor is reported once
    through the fault callback, after which the worker is dead.

    Example:
        ```python
        worker = SerializationWorker()
        worker.start(on_message=print, on_error=print)
        worker.post_message({"type": "serialize", "data": {"state": {}, "requestId": 1}})
        ```
    """

    def __init__(self, executor: Executor | None = None) -> None:
        self._executor = executor
        self._owns_executor = executor is None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_message: MessageHandler | None = None
        self._on_error: FaultHandler | None = None
        self._alive = False
        self._terminated = False

    @property
    def is_alive(self) -> bool:
        return self._alive

    def start(self, on_message: MessageHandler, on_error: FaultHandler) -> None:
        """Bind callbacks to the running event loop.

        Raises:
            RuntimeError: If the worker was already started or terminated, or if
                no event loop is running.
        """
        if self._alive or self._terminated:
            raise RuntimeError("Worker cannot be started twice")

        self._loop = asyncio.get_running_loop()
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=1)
        self._on_message = on_message
        self._on_error = on_error
        self._alive = True
        logger.info("Serialization worker started")

    def post_message(self, message: dict[str, Any]) -> None:
        if not self._alive or self._executor is None or self._loop is None:
            raise RuntimeError("Worker is not running")

        try:
            future = self._executor.submit(handle_message, message)
        except RuntimeError as exc:
            # BrokenExecutor is a RuntimeError; so is submitting after shutdown.
            self._loop.call_soon(self._report_fault, exc)
            return
        request_id = (message.get("data") or {}).get("requestId")
        future.add_done_callback(functools.partial(self._on_done, request_id))

    def terminate(self) -> None:
        if self._terminated:
            return
        self._alive = False
        self._terminated = True
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Serialization worker terminated")

    def _on_done(self, request_id: Any, future: Future[dict[str, Any]]) -> None:
        """Executor callback; runs on an executor-owned thread.

        Only a broken executor is a worker fault. Any other failure, such as a
        request that cannot be pickled, fails just that request.
        """
        if future.cancelled():
            return
        exc = future.exception()
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        with contextlib.suppress(RuntimeError):
            if isinstance(exc, BrokenExecutor):
                loop.call_soon_threadsafe(self._report_fault, exc)
            elif exc is not None:
                response = {
                    "type": ResponseType.ERROR.value,
                    "error": f"{type(exc).__name__}: {exc}",
                    "requestId": request_id,
                }
                loop.call_soon_threadsafe(self._deliver, response)
            else:
                loop.call_soon_threadsafe(self._deliver, future.result())

    def _deliver(self, response: dict[str, Any]) -> None:
        if self._alive and self._on_message is not None:
            self._on_message(response)

    def _report_fault(self, exc: BaseException) -> None:
        if not self._alive:
            return
        self._alive = False
        log_entry = {
            "event": "serialization_worker_fault",
            "error": f"{type(exc).__name__}: {exc}",
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.error(json.dumps(log_entry))
        if self._on_error is not None:
            self._on_error(exc)
