"""In-process bounded key/value store."""

import os

from state_persistence.errors import QuotaExceededError
from state_persistence.storage.base import StorageBackend

DEFAULT_QUOTA_CHARS = 5 * 1024 * 1024


class MemoryStorage(StorageBackend):
    """Dictionary-backed store with a fixed character quota.

    Usage is counted as the total length of keys plus values, which mirrors
    how browser local storage accounts for its quota.

    Args:
        quota_chars: Capacity in characters. Defaults to the
            `STATE_PERSISTENCE_MEMORY_QUOTA` environment variable or 5 MiB.

    Example:
        ```python
        storage = MemoryStorage(quota_chars=1024)
        storage.write("state", '{"projects": []}')
        assert storage.read("state") == '{"projects": []}'
        ```
    """

    def __init__(self, quota_chars: int | None = None) -> None:
        self._quota = (
            quota_chars
            if quota_chars is not None
            else int(os.getenv("STATE_PERSISTENCE_MEMORY_QUOTA", str(DEFAULT_QUOTA_CHARS)))
        )
        if self._quota < 1:
            raise ValueError("quota_chars must be at least 1")
        self._data: dict[str, str] = {}
        self._used = 0

    @property
    def quota(self) -> int:
        """Capacity in characters."""
        return self._quota

    @property
    def used(self) -> int:
        """Characters currently in use."""
        return self._used

    def write(self, key: str, value: str) -> None:
        previous = self._data.get(key)
        released = len(key) + len(previous) if previous is not None else 0
        required = self._used - released + len(key) + len(value)
        if required > self._quota:
            raise QuotaExceededError(
                f"Storage quota exceeded writing {key!r}: "
                f"{required} chars needed, quota is {self._quota}"
            )
        self._data[key] = value
        self._used = required

    def read(self, key: str) -> str | None:
        return self._data.get(key)

    def remove(self, key: str) -> None:
        value = self._data.pop(key, None)
        if value is not None:
            self._used -= len(key) + len(value)

    def clear(self) -> None:
        self._data.clear()
        self._used = 0

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]
