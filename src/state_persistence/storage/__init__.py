"""Key/value storage backends."""

from state_persistence.storage.base import StorageBackend, load_json, save_json
from state_persistence.storage.memory import MemoryStorage
from state_persistence.storage.sqlite import SqliteStorage, SqliteStorageConfig

__all__ = [
    "MemoryStorage",
    "SqliteStorage",
    "SqliteStorageConfig",
    "StorageBackend",
    "load_json",
    "save_json",
]
