"""Base protocol and JSON helpers for the key/value storage layer."""

import json
import logging
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for synchronous, bounded key/value stores.

    Implementations raise `QuotaExceededError` when a write would exceed the
    store's capacity and `StorageError` for any other write fault. Reads never
    raise for missing or corrupt values; they return None instead.
    """

    def write(self, key: str, value: str) -> None:
        """Store `value` under `key`, replacing any previous value."""
        ...

    def read(self, key: str) -> str | None:
        """Return the value stored under `key`, or None if absent or corrupt."""
        ...

    def remove(self, key: str) -> None:
        """Delete `key`. Removing a missing key is a no-op."""
        ...

    def clear(self) -> None:
        """Delete every key in the store."""
        ...

    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with `prefix`."""
        ...


def save_json(storage: StorageBackend, key: str, value: Any) -> None:
    """Serialize `value` as compact JSON and write it under `key`.

    Raises:
        TypeError: If `value` is not JSON-serializable.
        QuotaExceededError: If the store is full.
        StorageError: On any other backend failure.
    """
    storage.write(key, json.dumps(value, separators=(",", ":"), ensure_ascii=False))


def load_json(storage: StorageBackend, key: str, default: Any = None) -> Any:
    """Read and parse the JSON value under `key`.

    Returns:
        The parsed value, or `default` when the key is missing or does not
        hold valid JSON.
    """
    raw = storage.read(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning(f"Failed to parse stored value for key {key!r}: {exc}")
        return default
