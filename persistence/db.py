# persistence/db.py
"""
SQLite database connection and schema management.

Uses a file-based SQLite database for entitlement state.
On Railway, use a persistent volume to survive restarts.

The Database object is opened on application startup and closed on
shutdown; callers receive it explicitly instead of reaching for a
module-level connection.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

_logger = logging.getLogger(__name__)

# Database file location (configurable via env var)
DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "subscriptions.db"
MEMORY_DB = ":memory:"


class DatabaseError(Exception):
    """Storage operation failed."""
    pass


def get_db_path() -> str:
    """Get the database file path from environment."""
    return os.environ.get("ENTITLEMENT_DB_PATH", str(DEFAULT_DB_PATH))


class Database:
    """
    Single shared SQLite connection with an explicit lifecycle.

    All statements run under one re-entrant lock, so each transaction
    on a row is atomic with respect to concurrent webhook deliveries.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self._path = str(path) if path is not None else get_db_path()
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "Database":
        """
        Connect and create the schema.

        Safe to call multiple times (idempotent).
        """
        with self._lock:
            if self._conn is not None:
                return self

            if self._path != MEMORY_DB:
                # Ensure directory exists
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(
                self._path,
                timeout=30.0,
                check_same_thread=False,
            )
            # Return rows as dicts
            conn.row_factory = sqlite3.Row
            self._conn = conn
            self._create_schema()

            _logger.info(f"Database initialized at {self._path}")
            return self

    def _create_schema(self) -> None:
        with self.connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    device_id TEXT PRIMARY KEY,
                    plan TEXT NOT NULL,
                    status TEXT NOT NULL,
                    expires_at INTEGER,
                    customer_id TEXT,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_customer
                ON subscriptions(customer_id)
            """)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """
        Get database connection context manager.

        Commits on success, rolls back on error. Holds the database
        lock for the whole block.

        Usage:
            with db.connection() as conn:
                cursor = conn.execute("SELECT ...")
        """
        with self._lock:
            if self._conn is None:
                raise DatabaseError("Database is not open")
            conn = self._conn
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close the connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                _logger.info("Database closed")

    def reset(self) -> None:
        """Reset database (for testing). Drops and recreates all tables."""
        with self._lock:
            with self.connection() as conn:
                conn.execute("DROP TABLE IF EXISTS subscriptions")
            self._create_schema()
