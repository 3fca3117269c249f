"""Debounced save scheduling with last-write-wins coalescing."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_DELAY = 0.5


@dataclass(frozen=True, slots=True)
class SaveRequest:
    """A state waiting for the debounce timer.

    Attributes:
        state: The caller's state, captured by reference.
        requested_at: Unix timestamp of the `schedule()` call.
    """

    state: Any
    requested_at: float


@dataclass
class SchedulerMetrics:
    """Counters for the debounced save scheduler."""

    scheduled_count: int
    coalesced_count: int
    commit_count: int
    in_flight: int
    is_pending: bool


class DebouncedSaveScheduler:
    """Coalesces bursts of save requests into one trailing commit.

    Each `schedule()` replaces the pending request and re-arms the timer.
    When the timer fires without another `schedule()` in between, only the
    most recent state is committed. Commits run as tasks, one at a time and
    in the order they were started, so an older state can never land after
    a newer one.

    Args:
        commit: Async callable that persists a state. Its return value is
            delivered to the futures returned by `schedule()`.
        delay: Debounce window in seconds. Defaults to the
            `STATE_PERSISTENCE_DEBOUNCE_DELAY` environment variable or 0.5.

    Example:
        ```python
        scheduler = DebouncedSaveScheduler(commit=engine_commit, delay=0.5)
        scheduler.schedule({"a": 1})
        scheduler.schedule({"a": 2})  # replaces {"a": 1}
        await scheduler.flush()       # commits {"a": 2} now
        ```
    """

    def __init__(
        self,
        commit: Callable[[Any], Awaitable[Any]],
        delay: float | None = None,
    ) -> None:
        self._commit = commit
        self._delay = (
            delay
            if delay is not None
            else float(os.getenv("STATE_PERSISTENCE_DEBOUNCE_DELAY", str(DEFAULT_DEBOUNCE_DELAY)))
        )
        if self._delay < 0:
            raise ValueError("delay must be non-negative")

        self._pending: SaveRequest | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._waiters: list[asyncio.Future[Any]] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._commit_lock = asyncio.Lock()

        self._scheduled_count = 0
        self._coalesced_count = 0
        self._commit_count = 0

    @property
    def delay(self) -> float:
        """Debounce window in seconds."""
        return self._delay

    @property
    def in_flight(self) -> int:
        """Number of commits started and not yet finished."""
        return len(self._tasks)

    def is_pending(self) -> bool:
        """Check whether a save is buffered and waiting for the timer."""
        return self._pending is not None

    def schedule(self, state: Any) -> asyncio.Future[Any]:
        """Buffer `state` and restart the debounce timer.

        Must be called from a running event loop.

        Args:
            state: The state to commit. Replaces any pending state.

        Returns:
            A future resolved with the commit result once the commit covering
            this request has finished. Cancelled if the request is dropped by
            `cancel()`.
        """
        loop = asyncio.get_running_loop()
        if self._pending is not None:
            self._coalesced_count += 1
        self._pending = SaveRequest(state=state, requested_at=time.time())
        self._scheduled_count += 1

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self._delay, self._fire)

        waiter: asyncio.Future[Any] = loop.create_future()
        self._waiters.append(waiter)
        return waiter

    def flush(self) -> asyncio.Task[Any] | None:
        """Commit the pending state immediately.

        Returns:
            The commit task, or None when nothing was pending.
        """
        if self._pending is None:
            return None
        return self._fire()

    def cancel(self) -> bool:
        """Drop the pending state without committing it.

        Returns:
            True if a pending state was dropped.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is None:
            return False

        self._pending = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.cancel()
        logger.debug("Pending save cancelled")
        return True

    def set_delay(self, delay: float) -> None:
        """Change the debounce window, re-arming the timer if a save is pending."""
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self._delay = delay
        if self._pending is not None:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = asyncio.get_running_loop().call_later(self._delay, self._fire)

    async def wait_idle(self) -> None:
        """Wait until every started commit has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def get_metrics(self) -> SchedulerMetrics:
        """Get current scheduler counters.

        Returns:
            SchedulerMetrics: Snapshot of the counters.
        """
        return SchedulerMetrics(
            scheduled_count=self._scheduled_count,
            coalesced_count=self._coalesced_count,
            commit_count=self._commit_count,
            in_flight=len(self._tasks),
            is_pending=self._pending is not None,
        )

    def _fire(self) -> asyncio.Task[Any] | None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        request = self._pending
        if request is None:
            return None
        self._pending = None
        waiters, self._waiters = self._waiters, []
        self._commit_count += 1

        task = asyncio.get_running_loop().create_task(self._run_commit(request, waiters))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_commit(self, request: SaveRequest, waiters: list[asyncio.Future[Any]]) -> Any:
        try:
            async with self._commit_lock:
                result = await self._commit(request.state)
        except asyncio.CancelledError:
            for waiter in waiters:
                waiter.cancel()
            raise
        except Exception as exc:
            log_entry = {
                "event": "debounced_commit_failed",
                "error": f"{type(exc).__name__}: {exc}",
                "requested_at": request.requested_at,
                "timestamp": datetime.now(UTC).isoformat(),
            }
            logger.error(json.dumps(log_entry))
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(exc)
            return None

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)
        return result
