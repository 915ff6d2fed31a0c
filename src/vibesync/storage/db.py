"""Database connection management and schema migrations."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from types import TracebackType

from vibesync.config import get_app_dir

# Schema version for migrations
SCHEMA_VERSION = 2

# SQL statements for schema creation
SCHEMA_SQL = """
-- Per-project sync boundaries, keyed by the source's project key
CREATE TABLE IF NOT EXISTS project_sync (
    project_key TEXT PRIMARY KEY,
    oldest_synced_at TEXT,
    newest_synced_at TEXT,
    project_name TEXT,
    session_count INTEGER,
    last_sync_at TEXT
);

-- Process-wide key-value settings (token, last sync summary)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at INTEGER NOT NULL
);
"""


class DatabaseError(Exception):
    """Database operation error."""


class Database:
    """SQLite database connection manager with schema migrations."""

    def __init__(self, db_path: Path) -> None:
        """Initialize database connection.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = db_path
        self._connection: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        """Get the database file path."""
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection.

        Returns:
            Active SQLite connection.

        Raises:
            DatabaseError: If the database file cannot be opened.
        """
        if self._connection is None:
            try:
                # Ensure parent directory exists
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(self._db_path, timeout=5.0)
                # Hook runs are separate processes sharing this file
                self._connection.execute("PRAGMA journal_mode = WAL")
            except (OSError, sqlite3.Error) as e:
                self._connection = None
                raise DatabaseError(f"Cannot open state database {self._db_path}: {e}") from e
            # Return rows as Row objects for dict-like access
            self._connection.row_factory = sqlite3.Row

        return self._connection

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> Database:
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()

    def transaction(self) -> _TransactionContext:
        """Get a transaction context manager.

        Usage:
            with db.transaction() as cursor:
                cursor.execute(...)
        """
        return _TransactionContext(self.connect())

    def execute(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Cursor:
        """Execute a SQL statement.

        Args:
            sql: SQL statement to execute.
            params: Optional parameters for the statement.

        Returns:
            Cursor with results.
        """
        conn = self.connect()
        if params is None:
            return conn.execute(sql)
        return conn.execute(sql, params)

    def commit(self) -> None:
        """Commit the current transaction."""
        if self._connection is not None:
            self._connection.commit()

    def get_schema_version(self) -> int:
        """Get the current schema version.

        Returns:
            Current schema version, or 0 if not initialized.
        """
        try:
            cursor = self.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cursor.fetchone()
            return row["version"] if row else 0
        except sqlite3.OperationalError:
            # Table doesn't exist yet
            return 0

    def initialize_schema(self) -> None:
        """Initialize or migrate the database schema."""
        current_version = self.get_schema_version()

        if current_version < SCHEMA_VERSION:
            self._apply_migrations(current_version)

    def _apply_migrations(self, from_version: int) -> None:
        """Apply schema migrations from the given version.

        Args:
            from_version: Starting schema version.
        """
        conn = self.connect()

        if from_version == 0:
            # Initial schema creation
            conn.executescript(SCHEMA_SQL)
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (1, int(time.time())),
            )
            conn.commit()
            from_version = 1

        # Migration v1 -> v2: index boundaries by recency for status listings
        if from_version < 2:
            self._migrate_v1_to_v2()

    def _migrate_v1_to_v2(self) -> None:
        """Add an index on the last sync time of each project."""
        conn = self.connect()
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_project_sync_last ON project_sync(last_sync_at DESC)"
        )
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
            (2, int(time.time())),
        )
        conn.commit()


class _TransactionContext:
    """Context manager for database transactions."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._cursor: sqlite3.Cursor | None = None

    def __enter__(self) -> sqlite3.Cursor:
        self._cursor = self._connection.cursor()
        return self._cursor

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._cursor is not None:
            if exc_type is None:
                self._connection.commit()
            else:
                self._connection.rollback()
            self._cursor.close()


def get_default_db_path() -> Path:
    """Get the default state database path.

    Returns:
        Path to ~/.vibesync/state.sqlite
    """
    return get_app_dir() / "state.sqlite"
