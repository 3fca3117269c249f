"""State persistence and serialization engine.

Durably saves and restores a single large, frequently mutated application
state to a local key/value store and to exchanged files, without blocking the
asyncio event loop that owns it.
"""

from state_persistence.engine import (
    ChatStore,
    CurrentState,
    LegacyState,
    PersistenceConfig,
    PersistenceEngine,
    SaveOutcome,
    SaveStatus,
)
from state_persistence.errors import (
    ErrorCode,
    ExchangeError,
    PersistenceError,
    QuotaExceededError,
    SerializationFaultError,
    SerializationTimeoutError,
    StorageError,
    ValidationFaultError,
)
from state_persistence.observability import ErrorHandler, EventBus, EventType
from state_persistence.serialization import SerializationDispatcher, SerializationWorker
from state_persistence.storage import MemoryStorage, SqliteStorage, SqliteStorageConfig

__version__ = "0.1.0"

__all__ = [
    "ChatStore",
    "CurrentState",
    "ErrorCode",
    "ErrorHandler",
    "EventBus",
    "EventType",
    "ExchangeError",
    "LegacyState",
    "MemoryStorage",
    "PersistenceConfig",
    "PersistenceEngine",
    "PersistenceError",
    "QuotaExceededError",
    "SaveOutcome",
    "SaveStatus",
    "SerializationDispatcher",
    "SerializationFaultError",
    "SerializationTimeoutError",
    "SerializationWorker",
    "SqliteStorage",
    "SqliteStorageConfig",
    "StorageError",
    "ValidationFaultError",
]
