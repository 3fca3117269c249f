"""Domain models for the persistence engine.

This module defines the configuration, save-path status, save outcome and the
schema-tagged document types produced at the load/import boundary.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self

from state_persistence.errors import ErrorCode, ValidationFaultError

DEFAULT_STORAGE_KEY = "prompt-spec-data"
DEFAULT_RESOURCE = "default.json"


class SaveStatus(str, Enum):
    """Position of the engine's save path.

    Attributes:
        IDLE: Nothing buffered or committing.
        PENDING: A state is buffered waiting for the debounce timer.
        COMMITTING: A commit is serializing or writing.
    """

    IDLE = "idle"
    PENDING = "pending"
    COMMITTING = "committing"


@dataclass(frozen=True, slots=True)
class SaveOutcome:
    """Result of one commit.

    Attributes:
        success: Whether the state reached storage.
        code: Error code when the commit failed.
        message: Error message when the commit failed.
        size: Length of the written record on success.
        discarded: True when `clear_state()` invalidated the commit before it wrote.
    """

    success: bool
    code: ErrorCode | None = None
    message: str | None = None
    size: int = 0
    discarded: bool = False


@dataclass(frozen=True, slots=True)
class PersistenceConfig:
    """Configuration for PersistenceEngine.

    Attributes:
        storage_key: Key of the single persisted record.
        debounce_delay: Seconds to wait for further saves before committing.
        large_payload_threshold: Estimated size in characters above which
            serialization is offloaded to the worker.
        worker_timeout: Seconds to wait for a worker response.
        default_resource: Well-known remote resource for default files.
        use_worker: Whether to create a serialization worker when none is given.
    """

    storage_key: str = DEFAULT_STORAGE_KEY
    debounce_delay: float = 0.5
    large_payload_threshold: int = 1024 * 1024
    worker_timeout: float = 30.0
    default_resource: str = DEFAULT_RESOURCE
    use_worker: bool = True

    @classmethod
    def from_env(cls, **overrides: Any) -> Self:
        """Build a config from `STATE_PERSISTENCE_*` environment variables.

        Keyword arguments take precedence over the environment.
        """
        values: dict[str, Any] = {
            "storage_key": os.getenv("STATE_PERSISTENCE_STORAGE_KEY", DEFAULT_STORAGE_KEY),
            "debounce_delay": float(os.getenv("STATE_PERSISTENCE_DEBOUNCE_DELAY", "0.5")),
            "large_payload_threshold": int(
                os.getenv("STATE_PERSISTENCE_LARGE_PAYLOAD_THRESHOLD", str(1024 * 1024))
            ),
            "worker_timeout": float(os.getenv("STATE_PERSISTENCE_WORKER_TIMEOUT", "30.0")),
            "default_resource": os.getenv("STATE_PERSISTENCE_DEFAULT_RESOURCE", DEFAULT_RESOURCE),
            "use_worker": os.getenv("STATE_PERSISTENCE_USE_WORKER", "true").lower()
            not in {"0", "false", "no"},
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class CurrentState:
    """A document in the current schema, holding a `projects` list."""

    projects: list[Any]
    data: dict[str, Any] = field(repr=False)


@dataclass(frozen=True, slots=True)
class LegacyState:
    """A document in the legacy schema, holding a `pages` list."""

    pages: list[Any]
    data: dict[str, Any] = field(repr=False)


StateDocument = CurrentState | LegacyState


def detect_schema(obj: Any) -> StateDocument:
    """Classify a parsed document by its top-level container.

    A `projects` list marks the current schema and wins over `pages`.

    Raises:
        ValidationFaultError: If `obj` is not a mapping with a `projects`
            list or a `pages` list.
    """
    if not isinstance(obj, dict):
        raise ValidationFaultError(
            f"Invalid file format: expected an object, got {type(obj).__name__}"
        )
    if isinstance(obj.get("projects"), list):
        return CurrentState(projects=obj["projects"], data=obj)
    if isinstance(obj.get("pages"), list):
        return LegacyState(pages=obj["pages"], data=obj)
    raise ValidationFaultError("Invalid file format: missing projects or pages array")
