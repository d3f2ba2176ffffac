"""
Key-value persistence boundary.

Snapshots of configurations, prices and selections are stored as named
blobs of serialized text. Backend failures surface as PersistenceError.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from ..core.errors import PersistenceError
from .db import DEFAULT_DB_PATH, get_connection

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Named text blobs: read, write and remove by key."""

    def read_blob(self, key: str) -> Optional[str]:
        ...

    def write_blob(self, key: str, text: str) -> None:
        ...

    def remove_blob(self, key: str) -> None:
        ...


class InMemoryBlobStore:
    """Blob store kept in a dictionary. Nothing survives the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._blobs: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def read_blob(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def write_blob(self, key: str, text: str) -> None:
        with self._lock:
            self._blobs[key] = text

    def remove_blob(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)


class SQLiteBlobStore:
    """Blob store backed by a single SQLite table.

    Every operation opens its own connection, so the store can be shared
    between threads. Only writes create the database file.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def read_blob(self, key: str) -> Optional[str]:
        if not Path(self.db_path).exists():
            return None
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value FROM blob_store WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return None
            raise PersistenceError(f"Failed to read '{key}': {e}") from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        return row[0] if row else None

    def write_blob(self, key: str, text: str) -> None:
        """Write a blob, replacing any previous value atomically."""
        try:
            initialize_schema(self.db_path)
            conn = get_connection(self.db_path)
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO blob_store (key, value) VALUES (?, ?)",
                    (key, text),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e
        logger.debug("Wrote blob '%s' (%d bytes)", key, len(text))

    def remove_blob(self, key: str) -> None:
        if not Path(self.db_path).exists():
            return
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("DELETE FROM blob_store WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return
            raise PersistenceError(f"Failed to remove '{key}': {e}") from e
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to remove '{key}': {e}") from e


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the blob_store table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS blob_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
