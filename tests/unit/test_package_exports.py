"""Tests for package-level exports."""

from __future__ import annotations


class TestPackageExports:
    """Test cases for top-level package imports."""

    def test_import_engine(self) -> None:
        """PersistenceEngine should be importable from state_persistence."""
        from state_persistence import PersistenceEngine

        assert PersistenceEngine is not None

    def test_import_chat_store(self) -> None:
        """ChatStore should be importable from state_persistence."""
        from state_persistence import ChatStore

        assert ChatStore is not None

    def test_import_storage_backends(self) -> None:
        """Both storage backends should be importable from state_persistence."""
        from state_persistence import MemoryStorage, SqliteStorage

        assert MemoryStorage is not None
        assert SqliteStorage is not None

    def test_import_error_taxonomy(self) -> None:
        """Error classes share the PersistenceError base."""
        from state_persistence import (
            PersistenceError,
            QuotaExceededError,
            SerializationTimeoutError,
            ValidationFaultError,
        )

        assert issubclass(QuotaExceededError, PersistenceError)
        assert issubclass(SerializationTimeoutError, PersistenceError)
        assert issubclass(ValidationFaultError, PersistenceError)

    def test_all_exports_match_declared(self) -> None:
        """All items in __all__ should be importable."""
        import state_persistence

        for name in state_persistence.__all__:
            assert hasattr(state_persistence, name), f"{name} not found in state_persistence"
