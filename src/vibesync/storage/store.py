"""Persisted sync state: per-project boundaries, last-sync summary and token."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

from vibesync.models import LastSyncSummary, SyncBoundary, format_timestamp, parse_timestamp
from vibesync.storage.db import Database, get_default_db_path

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
LAST_SYNC_KEY = "last_sync"
LAST_SYNC_SUMMARY_KEY = "last_sync_summary"


class StateStore:
    """Key-value store for sync boundaries and settings.

    Boundaries only ever widen: ``oldest`` moves earlier and ``newest`` moves
    later, so a replayed or partial upload never shrinks the recorded window.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize the state store.

        Args:
            db_path: Path to SQLite database. Defaults to ~/.vibesync/state.sqlite
        """
        self._db_path = db_path or get_default_db_path()
        self._db = Database(self._db_path)

        # Initialize schema on first access
        self._db.initialize_schema()

    @property
    def db(self) -> Database:
        """Get the database instance."""
        return self._db

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    def __enter__(self) -> StateStore:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    # Project sync boundaries

    def get_project_sync(self, project_key: str) -> SyncBoundary | None:
        """Get the sync boundary for a project.

        Args:
            project_key: Key returned by the reader's ``project_key``.

        Returns:
            The stored boundary, or None if the project was never synced.
        """
        cursor = self._db.execute(
            "SELECT * FROM project_sync WHERE project_key = ?",
            (project_key,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return SyncBoundary(
            oldest_synced_timestamp=parse_timestamp(row["oldest_synced_at"]),
            newest_synced_timestamp=parse_timestamp(row["newest_synced_at"]),
            project_name=row["project_name"],
            session_count=row["session_count"],
            last_sync_time=parse_timestamp(row["last_sync_at"]),
        )

    def update_project_sync_boundaries(
        self,
        project_key: str,
        oldest: datetime,
        newest: datetime,
        project_name: str | None = None,
        session_count: int | None = None,
    ) -> SyncBoundary:
        """Merge a newly uploaded window into a project's boundary.

        Args:
            project_key: Key returned by the reader's ``project_key``.
            oldest: Timestamp of the oldest uploaded session.
            newest: Timestamp of the newest uploaded session.
            project_name: Display name of the project.
            session_count: Number of sessions uploaded in this run.

        Returns:
            The boundary as stored after the merge.
        """
        existing = self.get_project_sync(project_key)
        if existing is not None:
            if existing.oldest_synced_timestamp is not None:
                oldest = min(oldest, existing.oldest_synced_timestamp)
            if existing.newest_synced_timestamp is not None:
                newest = max(newest, existing.newest_synced_timestamp)
            if project_name is None:
                project_name = existing.project_name

        now = datetime.now(timezone.utc)
        with self._db.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO project_sync (
                    project_key, oldest_synced_at, newest_synced_at,
                    project_name, session_count, last_sync_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    project_key,
                    format_timestamp(oldest),
                    format_timestamp(newest),
                    project_name,
                    session_count,
                    format_timestamp(now),
                ),
            )

        logger.debug("Updated sync boundary for %s: %s .. %s", project_key, oldest, newest)
        return SyncBoundary(
            oldest_synced_timestamp=oldest,
            newest_synced_timestamp=newest,
            project_name=project_name,
            session_count=session_count,
            last_sync_time=now,
        )

    def list_project_syncs(self) -> dict[str, SyncBoundary]:
        """All stored boundaries, most recently synced first."""
        cursor = self._db.execute("SELECT project_key FROM project_sync ORDER BY last_sync_at DESC")
        keys = [row["project_key"] for row in cursor.fetchall()]
        boundaries: dict[str, SyncBoundary] = {}
        for key in keys:
            boundary = self.get_project_sync(key)
            if boundary is not None:
                boundaries[key] = boundary
        return boundaries

    # Settings

    def _set_setting(self, key: str, value: str) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, int(time.time())),
        )
        self._db.commit()

    def _get_setting(self, key: str) -> str | None:
        cursor = self._db.execute("SELECT value FROM settings WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None

    def _delete_setting(self, key: str) -> None:
        self._db.execute("DELETE FROM settings WHERE key = ?", (key,))
        self._db.commit()

    def set_last_sync_summary(self, description: str) -> LastSyncSummary:
        """Record a label for the most recent successful sync.

        The legacy ``last_sync`` timestamp is updated alongside.
        """
        summary = LastSyncSummary(timestamp=datetime.now(timezone.utc), description=description)
        payload = {"timestamp": format_timestamp(summary.timestamp), "description": description}
        self._set_setting(LAST_SYNC_SUMMARY_KEY, json.dumps(payload))
        self._set_setting(LAST_SYNC_KEY, payload["timestamp"])
        return summary

    def get_last_sync_summary(self) -> LastSyncSummary | None:
        """Get the most recent sync label, if any."""
        raw = self._get_setting(LAST_SYNC_SUMMARY_KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            timestamp = parse_timestamp(data.get("timestamp"))
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning("Ignoring corrupt last sync summary: %s", e)
            return None
        if timestamp is None:
            return None
        return LastSyncSummary(timestamp=timestamp, description=str(data.get("description", "")))

    def get_last_sync(self) -> datetime | None:
        """Legacy timestamp of the last successful sync."""
        return parse_timestamp(self._get_setting(LAST_SYNC_KEY))

    # Token

    def get_token(self) -> str | None:
        """Get the stored API token."""
        return self._get_setting(TOKEN_KEY)

    def set_token(self, token: str) -> None:
        """Store the API token."""
        self._set_setting(TOKEN_KEY, token)

    def clear_token(self) -> None:
        """Remove the stored API token."""
        self._delete_setting(TOKEN_KEY)
