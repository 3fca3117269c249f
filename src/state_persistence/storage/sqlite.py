"""SQLite-backed key/value store."""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Self

from state_persistence.errors import QuotaExceededError, StorageError
from state_persistence.storage.base import StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class SqliteStorageConfig:
    """Configuration for SqliteStorage.

    Attributes:
        db_path: Path to the SQLite database file.
        table_name: Name of the key/value table.
        max_bytes: Optional cap on the total size of stored values in bytes.
    """

    db_path: Path
    table_name: str = "kv_store"
    max_bytes: int | None = None


class SqliteStorage(StorageBackend):
    """Synchronous key/value store persisted in a single SQLite file.

    Values are stored as UTF-8 encoded blobs. A blob that no longer decodes is
    reported as absent rather than raised.

    Example:
        ```python
        with SqliteStorage(SqliteStorageConfig(Path("state.db"))) as storage:
            storage.write("prompt-spec-data", '{"projects": []}')
        ```
    """

    def __init__(self, config: SqliteStorageConfig) -> None:
        """Initialize the store and create its schema.

        Args:
            config: Store configuration.
        """
        self._config = config
        self._lock = threading.Lock()
        self._db: sqlite3.Connection | None = sqlite3.connect(
            config.db_path,
            isolation_level=None,
            check_same_thread=False,
        )
        self._db.execute("PRAGMA journal_mode = WAL")
        self._db.execute("PRAGMA synchronous = NORMAL")
        self._db.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {config.table_name} (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL,
                updated_at REAL DEFAULT (strftime('%s', 'now'))
            )
            """
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._db is None:
            raise StorageError("Storage is closed")
        return self._db

    def write(self, key: str, value: str) -> None:
        encoded = value.encode("utf-8")
        table = self._config.table_name
        with self._lock:
            db = self._connection()
            try:
                if self._config.max_bytes is not None:
                    row = db.execute(
                        f"SELECT COALESCE(SUM(length(value)), 0) FROM {table} WHERE key != ?",
                        (key,),
                    ).fetchone()
                    required = row[0] + len(encoded)
                    if required > self._config.max_bytes:
                        raise QuotaExceededError(
                            f"Storage quota exceeded writing {key!r}: "
                            f"{required} bytes needed, quota is {self._config.max_bytes}"
                        )
                db.execute(
                    f"""
                    INSERT INTO {table} (key, value, updated_at)
                    VALUES (?, ?, strftime('%s', 'now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, encoded),
                )
            except sqlite3.OperationalError as exc:
                if "full" in str(exc).lower():
                    raise QuotaExceededError(f"Storage quota exceeded: {exc}") from exc
                raise StorageError(f"Failed to write {key!r}: {exc}") from exc
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to write {key!r}: {exc}") from exc

    def read(self, key: str) -> str | None:
        with self._lock:
            try:
                row = (
                    self._connection()
                    .execute(f"SELECT value FROM {self._config.table_name} WHERE key = ?", (key,))
                    .fetchone()
                )
            except sqlite3.Error as exc:
                logger.warning(f"Failed to read {key!r}: {exc}")
                return None
        if row is None:
            return None
        raw = row[0]
        if isinstance(raw, str):
            return raw
        try:
            return bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Stored value for {key!r} is not valid UTF-8; treating as absent")
            return None

    def remove(self, key: str) -> None:
        with self._lock:
            try:
                self._connection().execute(
                    f"DELETE FROM {self._config.table_name} WHERE key = ?", (key,)
                )
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to remove {key!r}: {exc}") from exc

    def clear(self) -> None:
        with self._lock:
            try:
                self._connection().execute(f"DELETE FROM {self._config.table_name}")
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to clear storage: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            try:
                rows = self._connection().execute(
                    f"SELECT key FROM {self._config.table_name} ORDER BY key"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to list keys: {exc}") from exc
        return [row[0] for row in rows if row[0].startswith(prefix)]

    def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        with self._lock:
            if self._db is not None:
                self._db.close()
                self._db = None
