"""Inline-or-worker serialization with request correlation and timeouts."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from state_persistence.errors import SerializationFaultError, SerializationTimeoutError
from state_persistence.serialization.protocol import (
    RequestType,
    ResponseType,
    build_request,
    compress_payload,
    dumps_compact,
)
from state_persistence.serialization.worker import Worker

logger = logging.getLogger(__name__)

DEFAULT_LARGE_PAYLOAD_THRESHOLD = 1024 * 1024
DEFAULT_WORKER_TIMEOUT = 30.0

_EXPECTED_RESPONSE = {
    RequestType.SERIALIZE: ResponseType.SERIALIZED,
    RequestType.PARSE: ResponseType.PARSED,
    RequestType.COMPRESS: ResponseType.COMPRESSED,
}


def estimate_size(value: Any, limit: int | None = None) -> int:
    """Estimate the length of the compact JSON encoding of `value`.

    Walks the structure without encoding it. When `limit` is given the walk
    stops as soon as the running total exceeds it. Containers are counted
    once even when referenced from several places, so cyclic input
    terminates.

    Args:
        value: The value to measure.
        limit: Optional early-exit bound.

    Returns:
        Estimated encoded length in characters.
    """
    total = 0
    seen: set[int] = set()
    stack: list[Any] = [value]

    while stack:
        item = stack.pop()
        if isinstance(item, str):
            total += len(item) + 2
        elif item is None or isinstance(item, bool):
            total += 5
        elif isinstance(item, int | float):
            total += len(repr(item))
        elif isinstance(item, dict):
            if id(item) in seen:
                continue
            seen.add(id(item))
            total += 2 + 2 * len(item)
            for key, child in item.items():
                total += len(str(key)) + 2
                stack.append(child)
        elif isinstance(item, list | tuple):
            if id(item) in seen:
                continue
            seen.add(id(item))
            total += 2 + len(item)
            stack.extend(item)
        else:
            total += len(str(item))

        if limit is not None and total > limit:
            break

    return total


@dataclass
class SerializationJob:
    """A request handed to the worker and awaiting its response.

    Attributes:
        request_id: Correlation id echoed by the worker.
        request_type: What the worker was asked to do.
        future: Resolved with the response payload, or failed.
        timer: Armed timeout for this job.
        created_at: Monotonic creation time.
    """

    request_id: int
    request_type: RequestType
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle
    created_at: float


@dataclass
class DispatcherMetrics:
    """Counters describing which path each serialization took."""

    inline_count: int
    worker_count: int
    timeout_count: int
    discarded_responses: int
    pending_requests: int
    worker_alive: bool
    worker_faults: int = 0


class SerializationDispatcher:
    """Chooses between inline serialization and the worker, per call.

    Payloads whose estimated size exceeds `large_payload_threshold` are sent to
    the worker when one is available; everything else is encoded on the
    caller's thread. Each worker job gets a fresh request id, an entry in the
    pending table and its own timeout.

    A late response, or a timeout for an id that is no longer pending, is
    discarded silently. When the worker's fault channel fires, every pending
    job fails and the worker is retired; later calls run inline. The worker
    is never re-spawned.

    Args:
        worker: Optional serialization worker. Started lazily on first use.
        large_payload_threshold: Size in characters above which payloads are
            offloaded. Default 1 MiB.
        timeout: Seconds to wait for a worker response. Default 30.

    Example:
        ```python
        dispatcher = SerializationDispatcher(worker=SerializationWorker())
        text = await dispatcher.serialize({"projects": []})
        ```
    """

    def __init__(
        self,
        worker: Worker | None = None,
        large_payload_threshold: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._worker = worker
        self._threshold = (
            large_payload_threshold
            if large_payload_threshold is not None
            else int(
                os.getenv(
                    "STATE_PERSISTENCE_LARGE_PAYLOAD_THRESHOLD",
                    str(DEFAULT_LARGE_PAYLOAD_THRESHOLD),
                )
            )
        )
        self._timeout = (
            timeout
            if timeout is not None
            else float(os.getenv("STATE_PERSISTENCE_WORKER_TIMEOUT", str(DEFAULT_WORKER_TIMEOUT)))
        )
        if self._timeout <= 0:
            raise ValueError("timeout must be positive")

        self._ids = itertools.count(1)
        self._pending: dict[int, SerializationJob] = {}
        self._worker_started = False
        self._worker_dead = False
        self._closed = False

        self._inline_count = 0
        self._worker_count = 0
        self._timeout_count = 0
        self._discarded_responses = 0
        self._worker_faults = 0

    @property
    def large_payload_threshold(self) -> int:
        """Offload threshold in characters."""
        return self._threshold

    @property
    def timeout(self) -> float:
        """Worker round-trip timeout in seconds."""
        return self._timeout

    @property
    def pending_count(self) -> int:
        """Number of jobs awaiting a worker response."""
        return len(self._pending)

    @property
    def worker_available(self) -> bool:
        """Whether large payloads would currently be offloaded."""
        if self._worker is None or self._worker_dead or self._closed:
            return False
        return not self._worker_started or self._worker.is_alive

    def is_pending(self, request_id: int) -> bool:
        """Check whether `request_id` is still awaiting a response."""
        return request_id in self._pending

    async def serialize(self, state: Any) -> str:
        """Encode `state` as compact JSON text.

        Raises:
            SerializationFaultError: If the state is not JSON-representable or
                the worker failed.
            SerializationTimeoutError: If the worker did not answer in time.
        """
        if self._should_offload(estimate_size(state, limit=self._threshold)):
            result: str = await self._dispatch(RequestType.SERIALIZE, state)
            return result
        return self._run_inline(dumps_compact, state)

    async def parse(self, text: str) -> Any:
        """Decode JSON text.

        Raises:
            SerializationFaultError: If the text is not valid JSON or the worker
                failed.
            SerializationTimeoutError: If the worker did not answer in time.
        """
        if self._should_offload(len(text)):
            return await self._dispatch(RequestType.PARSE, text)
        return self._run_inline(json.loads, text)

    async def compress(self, state: Any) -> str:
        """Encode `state` as compressed base64 text.

        Raises:
            SerializationFaultError: On encode or worker failure.
            SerializationTimeoutError: If the worker did not answer in time.
        """
        if self._should_offload(estimate_size(state, limit=self._threshold)):
            result: str = await self._dispatch(RequestType.COMPRESS, state)
            return result
        return self._run_inline(compress_payload, state)

    def get_metrics(self) -> DispatcherMetrics:
        """Get current dispatch counters.

        Returns:
            DispatcherMetrics: Snapshot of the counters.
        """
        return DispatcherMetrics(
            inline_count=self._inline_count,
            worker_count=self._worker_count,
            timeout_count=self._timeout_count,
            discarded_responses=self._discarded_responses,
            pending_requests=len(self._pending),
            worker_alive=self.worker_available,
            worker_faults=self._worker_faults,
        )

    def close(self) -> None:
        """Terminate the worker and fail any pending jobs. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._fail_pending("Serialization dispatcher closed")
        if self._worker is not None and self._worker_started:
            self._worker.terminate()

    def _should_offload(self, estimated_size: int) -> bool:
        return estimated_size > self._threshold and self.worker_available

    def _run_inline(self, func: Callable[[Any], Any], payload: Any) -> Any:
        self._inline_count += 1
        try:
            return func(payload)
        except (TypeError, ValueError, RecursionError) as exc:
            raise SerializationFaultError(f"Inline serialization failed: {exc}") from exc

    def _ensure_worker_started(self) -> Worker:
        if self._worker is None:
            raise SerializationFaultError("No serialization worker configured")
        if not self._worker_started:
            self._worker.start(on_message=self._on_response, on_error=self._on_worker_error)
            self._worker_started = True
        return self._worker

    async def _dispatch(self, request_type: RequestType, payload: Any) -> Any:
        loop = asyncio.get_running_loop()
        worker = self._ensure_worker_started()

        request_id = next(self._ids)
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(self._timeout, self._on_timeout, request_id)
        self._pending[request_id] = SerializationJob(
            request_id=request_id,
            request_type=request_type,
            future=future,
            timer=timer,
            created_at=time.monotonic(),
        )
        self._worker_count += 1
        logger.debug(f"Dispatching {request_type.value} request {request_id} to worker")

        try:
            worker.post_message(build_request(request_type, payload, request_id))
        except RuntimeError as exc:
            self._drop(request_id)
            raise SerializationFaultError(f"Failed to post to worker: {exc}") from exc

        try:
            return await future
        finally:
            self._drop(request_id)

    def _drop(self, request_id: int) -> None:
        job = self._pending.pop(request_id, None)
        if job is not None:
            job.timer.cancel()

    def _on_response(self, message: dict[str, Any]) -> None:
        request_id = message.get("requestId")
        job = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if job is None:
            self._discarded_responses += 1
            logger.debug(f"Discarding response for unknown request {request_id!r}")
            return

        job.timer.cancel()
        if job.future.done():
            return

        response_type = message.get("type")
        if response_type == ResponseType.ERROR.value:
            job.future.set_exception(
                SerializationFaultError(f"Worker {job.request_type.value} failed: {message.get('error')}")
            )
        elif response_type != _EXPECTED_RESPONSE[job.request_type].value:
            job.future.set_exception(
                SerializationFaultError(
                    f"Unexpected response type {response_type!r} for request {request_id}"
                )
            )
        else:
            job.future.set_result(message.get("data"))

    def _on_timeout(self, request_id: int) -> None:
        job = self._pending.pop(request_id, None)
        if job is None:
            return

        self._timeout_count += 1
        log_entry = {
            "event": "serialization_timeout",
            "request_id": request_id,
            "request_type": job.request_type.value,
            "timeout_seconds": self._timeout,
            "elapsed_seconds": round(time.monotonic() - job.created_at, 3),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.warning(json.dumps(log_entry))
        if not job.future.done():
            job.future.set_exception(SerializationTimeoutError(request_id, self._timeout))

    def _on_worker_error(self, exc: BaseException) -> None:
        self._worker_dead = True
        self._worker_faults += 1
        log_entry = {
            "event": "serialization_worker_retired",
            "error": str(exc),
            "failed_requests": len(self._pending),
            "fallback": "inline",
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.error(json.dumps(log_entry))
        self._fail_pending(f"Serialization worker failed: {exc}")
        if self._worker is not None:
            self._worker.terminate()

    def _fail_pending(self, message: str) -> None:
        jobs = list(self._pending.values())
        self._pending.clear()
        for job in jobs:
            job.timer.cancel()
            if not job.future.done():
                job.future.set_exception(SerializationFaultError(message))
