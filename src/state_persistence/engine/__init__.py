"""Persistence engine, its models and the chat history lane."""

from state_persistence.engine.chat_store import ChatStore
from state_persistence.engine.models import (
    CurrentState,
    LegacyState,
    PersistenceConfig,
    SaveOutcome,
    SaveStatus,
    StateDocument,
    detect_schema,
)
from state_persistence.engine.persistence_engine import PersistenceEngine, export_filename

__all__ = [
    "ChatStore",
    "CurrentState",
    "LegacyState",
    "PersistenceConfig",
    "PersistenceEngine",
    "SaveOutcome",
    "SaveStatus",
    "StateDocument",
    "detect_schema",
    "export_filename",
]
