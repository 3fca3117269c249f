"""Persistence engine: debounced local saves plus validated import/export.

This module composes the storage backend, the serialization dispatcher and
the debounced save scheduler behind one object:

- save_state() is fire-and-forget; failures surface as STATE_SAVE_FAILED
  notifications, never as exceptions to the caller
- load_state() is synchronous and treats a corrupt record like a cold start
- import/export and the default-file variants go through the exchange
  collaborator and raise on failure
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Self

from state_persistence.engine.models import (
    LegacyState,
    PersistenceConfig,
    SaveOutcome,
    SaveStatus,
    StateDocument,
    detect_schema,
)
from state_persistence.errors import (
    ErrorCode,
    ExchangeError,
    SerializationFaultError,
    ValidationFaultError,
)
from state_persistence.exchange.base import ExchangeInterface
from state_persistence.observability.error_handler import ErrorHandler
from state_persistence.observability.events import EventBus, EventType
from state_persistence.patterns.debounce import DebouncedSaveScheduler
from state_persistence.serialization.dispatcher import SerializationDispatcher
from state_persistence.serialization.worker import SerializationWorker, Worker
from state_persistence.storage.base import StorageBackend

logger = logging.getLogger(__name__)

SOURCE = "PersistenceEngine"


@dataclass(frozen=True, slots=True)
class _Snapshot:
    """A scheduled state tagged with the clear generation it was saved under."""

    state: Any
    generation: int


class PersistenceEngine:
    """Saves and restores the application state.

    The engine exclusively owns `config.storage_key` in the storage backend.
    States passed to `save_state()` are captured by reference and must not be
    mutated until their commit has finished.

    Args:
        storage: Key/value backend for the persisted record.
        exchange: File exchange collaborator for import/export. Optional when
            only the local save path is used.
        events: Notification bus. A private bus is created when omitted.
        error_handler: Failure normalizer. Defaults to one bound to `events`.
        config: Engine configuration.
        worker: Serialization worker. When omitted and `config.use_worker` is
            set, a process-backed SerializationWorker is created.
        dispatcher: Fully configured dispatcher, overriding `worker`.

    Example:
        ```python
        async with PersistenceEngine(MemoryStorage()) as engine:
            engine.save_state({"projects": []})
            await engine.flush_pending_save()
            assert engine.load_state() == {"projects": []}
        ```
    """

    def __init__(
        self,
        storage: StorageBackend,
        exchange: ExchangeInterface | None = None,
        events: EventBus | None = None,
        error_handler: ErrorHandler | None = None,
        config: PersistenceConfig | None = None,
        worker: Worker | None = None,
        dispatcher: SerializationDispatcher | None = None,
    ) -> None:
        self._config = config or PersistenceConfig()
        self._storage = storage
        self._exchange = exchange
        self._events = events or EventBus()
        self._errors = error_handler or ErrorHandler(self._events)

        if dispatcher is None:
            if worker is None and self._config.use_worker:
                worker = SerializationWorker()
            dispatcher = SerializationDispatcher(
                worker=worker,
                large_payload_threshold=self._config.large_payload_threshold,
                timeout=self._config.worker_timeout,
            )
        self._dispatcher = dispatcher
        self._scheduler = DebouncedSaveScheduler(self._commit, delay=self._config.debounce_delay)

        self._generation = 0
        self._committing = 0
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def config(self) -> PersistenceConfig:
        """Engine configuration."""
        return self._config

    @property
    def events(self) -> EventBus:
        """Notification bus the engine emits on."""
        return self._events

    @property
    def dispatcher(self) -> SerializationDispatcher:
        """Serialization dispatcher used by commits and imports."""
        return self._dispatcher

    @property
    def scheduler(self) -> DebouncedSaveScheduler:
        """Debounced save scheduler."""
        return self._scheduler

    @property
    def status(self) -> SaveStatus:
        """Current position of the save path."""
        if self._scheduler.is_pending():
            return SaveStatus.PENDING
        if self._committing:
            return SaveStatus.COMMITTING
        return SaveStatus.IDLE

    def is_save_pending(self) -> bool:
        """Check whether a save is buffered and not yet committing."""
        return self._scheduler.is_pending()

    # -- local save path ---------------------------------------------------

    def save_state(self, state: Any) -> asyncio.Future[SaveOutcome]:
        """Schedule `state` for a debounced write.

        Returns immediately. The returned future may be awaited for the
        commit's `SaveOutcome`; it is cancelled if `clear_state()` drops the
        pending save.

        Raises:
            RuntimeError: If the engine is closed.
        """
        if self._closed:
            raise RuntimeError("Cannot save with a closed engine")
        return self._scheduler.schedule(_Snapshot(state, self._generation))

    def flush_pending_save(self) -> asyncio.Task[SaveOutcome] | None:
        """Start committing the buffered save now.

        Does not wait for the commit; await the returned task for that.

        Returns:
            The commit task, or None if nothing was pending.
        """
        return self._scheduler.flush()

    async def wait_for_saves(self) -> None:
        """Wait until every started commit has finished."""
        await self._scheduler.wait_idle()

    async def _commit(self, snapshot: _Snapshot) -> SaveOutcome:
        """Serialize and write a snapshot, reporting the outcome as an event."""
        self._committing += 1
        try:
            result = await self._errors.handle_async(
                lambda: self._serialize_and_write(snapshot),
                {"source": SOURCE, "operation": "saveState"},
            )
        finally:
            self._committing -= 1

        if not result.success:
            self._events.emit(
                EventType.STATE_SAVE_FAILED,
                {
                    "source": SOURCE,
                    "data": {
                        "error": result.error,
                        "code": result.code.value if result.code else None,
                        "operation": "saveState",
                    },
                },
            )
            return SaveOutcome(success=False, code=result.code, message=result.error)

        outcome: SaveOutcome = result.data
        if outcome.discarded:
            logger.info("Discarded a commit invalidated by clear_state()")
            return outcome

        self._events.emit(
            EventType.STATE_SAVED,
            {"source": SOURCE, "data": {"key": self._config.storage_key, "size": outcome.size}},
        )
        return outcome

    async def _serialize_and_write(self, snapshot: _Snapshot) -> SaveOutcome:
        text = await self._dispatcher.serialize(snapshot.state)
        # No await between this check and the write, so clear_state() cannot interleave.
        if snapshot.generation != self._generation:
            return SaveOutcome(success=False, discarded=True)
        self._storage.write(self._config.storage_key, text)
        return SaveOutcome(success=True, size=len(text))

    def load_state(self) -> Any | None:
        """Read the persisted state.

        Returns:
            The stored state, or None when nothing is stored or the record
            cannot be parsed.
        """
        raw = self._storage.read(self._config.storage_key)
        if raw is None:
            return None

        result = self._errors.handle_sync(
            lambda: _decode_record(raw),
            {"source": SOURCE, "operation": "loadState"},
        )
        if not result.success:
            return None

        self._events.emit(
            EventType.STATE_LOADED,
            {"source": SOURCE, "data": {"key": self._config.storage_key, "size": len(raw)}},
        )
        return result.data

    def load_document(self) -> StateDocument | None:
        """Read the persisted state and classify its schema.

        Returns:
            A CurrentState or LegacyState, or None when nothing usable is stored.
        """
        state = self.load_state()
        if state is None:
            return None
        result = self._errors.handle_sync(
            lambda: detect_schema(state),
            {"source": SOURCE, "operation": "loadDocument"},
        )
        return result.data if result.success else None

    def clear_state(self) -> None:
        """Remove the persisted record.

        Any buffered save is dropped and any commit already in progress is
        invalidated, so no earlier save can resurrect the cleared state.

        Raises:
            StorageError: If the backend fails to remove the record.
        """
        # Remove first so a failing backend leaves the buffered save untouched.
        self._storage.remove(self._config.storage_key)
        dropped = self._scheduler.cancel()
        self._generation += 1
        self._events.emit(
            EventType.STATE_CLEARED,
            {"source": SOURCE, "data": {"key": self._config.storage_key, "dropped_pending": dropped}},
        )

    # -- exchange path -----------------------------------------------------

    async def export_to_file(self, state: Any, filename: str | None = None) -> Path:
        """Write `state` as pretty-printed JSON through the exchange collaborator.

        Args:
            state: State to export. Must hold a `projects` or `pages` list.
            filename: Target name. Derived from `metadata.projectGroupName`
                or a timestamp when omitted; `.json` is appended if missing.

        Returns:
            Where the file was written.

        Raises:
            ValidationFaultError: If `state` has neither container.
            SerializationFaultError: If `state` cannot be encoded.
            ExchangeError: If the exchange collaborator fails.
        """
        operation = "exportToFile"
        try:
            detect_schema(state)
            exchange = self._require_exchange()
            name = export_filename(state, filename)
            path = await exchange.write_file(_encode_pretty(state), name)
        except Exception as exc:
            self._report_file_error(exc, operation)
            raise

        self._events.emit(
            EventType.FILE_SAVED,
            {"source": SOURCE, "data": {"filename": path.name, "path": str(path)}},
        )
        return path

    async def import_from_file(self, path: str | Path) -> StateDocument:
        """Read, parse and validate a user-chosen file.

        Nothing is written to storage; installing the returned document is the
        caller's decision.

        Raises:
            ValidationFaultError: If the document has neither container.
            SerializationFaultError: If the file is not valid JSON.
            SerializationTimeoutError: If worker parsing timed out.
            ExchangeError: If the file cannot be read.
        """
        operation = "importFromFile"
        try:
            content = await self._require_exchange().read_file(path)
            document = await self._parse_document(content)
        except Exception as exc:
            self._report_file_error(exc, operation)
            raise

        self._events.emit(
            EventType.FILE_LOADED,
            {"source": SOURCE, "data": {"filename": Path(path).name, "schema": _schema_name(document)}},
        )
        return document

    async def save_as_default(self, state: Any) -> None:
        """Upload `state` to the well-known default resource.

        Raises:
            ValidationFaultError: If `state` has neither container.
            SerializationFaultError: If `state` cannot be encoded.
            ExchangeError: If the upload fails.
        """
        resource = self._config.default_resource
        try:
            detect_schema(state)
            await self._require_exchange().post_file(resource, _encode_pretty(state))
        except Exception as exc:
            self._report_file_error(exc, "saveAsDefault")
            raise

        self._events.emit(EventType.FILE_SAVED, {"source": SOURCE, "data": {"filename": resource}})

    async def load_default_file(self) -> StateDocument:
        """Download and validate the well-known default resource.

        Raises:
            ValidationFaultError: If the document has neither container.
            SerializationFaultError: If the content is not valid JSON.
            ExchangeError: If the download fails.
        """
        resource = self._config.default_resource
        try:
            content = await self._require_exchange().fetch_file(resource)
            document = await self._parse_document(content)
        except Exception as exc:
            self._report_file_error(exc, "loadDefaultFile")
            raise

        self._events.emit(
            EventType.FILE_LOADED,
            {"source": SOURCE, "data": {"filename": resource, "schema": _schema_name(document)}},
        )
        return document

    async def close(self) -> None:
        """Flush the buffered save, wait for commits and stop the worker.

        Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        self._scheduler.flush()
        await self._scheduler.wait_idle()
        self._dispatcher.close()

    def _require_exchange(self) -> ExchangeInterface:
        if self._exchange is None:
            raise ExchangeError("No exchange collaborator configured", ErrorCode.UNKNOWN_ERROR)
        return self._exchange

    async def _parse_document(self, content: str) -> StateDocument:
        if not content.strip():
            raise ValidationFaultError("Invalid file format: empty state")
        try:
            state = await self._dispatcher.parse(content)
        except SerializationFaultError as exc:
            raise SerializationFaultError(f"Invalid JSON format: {exc}") from exc
        return detect_schema(state)

    def _report_file_error(self, exc: Exception, operation: str) -> None:
        result = self._errors.handle_error(exc, {"source": SOURCE, "operation": operation})
        self._events.emit(
            EventType.FILE_ERROR,
            {
                "source": SOURCE,
                "data": {
                    "error": result.error,
                    "code": result.code.value if result.code else None,
                    "operation": operation,
                },
            },
        )


def export_filename(state: Any, filename: str | None = None) -> str:
    """Choose the export filename for `state`.

    Uses `filename` when given, else the sanitized
    `metadata.projectGroupName`, else a timestamped backup name. The result
    always ends in `.json`.
    """
    if not filename:
        metadata = state.get("metadata") if isinstance(state, dict) else None
        group_name = metadata.get("projectGroupName") if isinstance(metadata, dict) else None
        if isinstance(group_name, str) and group_name.strip():
            filename = f"{re.sub(r'[^a-z0-9]', '_', group_name.strip(), flags=re.IGNORECASE)}.json"
        else:
            filename = f"feat-spec-backup-{datetime.now().strftime('%Y-%m-%d-%H-%M-%S')}.json"

    if not filename.lower().endswith(".json"):
        filename = f"{filename}.json"
    return filename


def _decode_record(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise SerializationFaultError(f"Stored state is not valid JSON: {exc}") from exc


def _encode_pretty(state: Any) -> str:
    try:
        return json.dumps(state, indent=2, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError, RecursionError) as exc:
        raise SerializationFaultError(f"State cannot be encoded: {exc}") from exc


def _schema_name(document: StateDocument) -> str:
    return "legacy" if isinstance(document, LegacyState) else "current"
