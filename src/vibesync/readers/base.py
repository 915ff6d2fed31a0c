"""Base reader interface for session sources."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from vibesync.models import parse_project_name

if TYPE_CHECKING:
    from vibesync.models import Session, SourceFile


@dataclass
class SessionRef:
    """Reference to a session artifact without loading full content."""

    id: str
    path: Path
    updated_at: datetime
    project_dir: Path | None = None


def normalize_path(path: str) -> str:
    """Normalize a path for case-insensitive comparison."""
    return os.path.normpath(path.replace("\\", "/")).lower()


def matches_project(session_path: str, project_path: str) -> bool:
    """Check whether a session path lies in ``project_path`` (prefix match)."""
    return normalize_path(session_path).startswith(normalize_path(project_path))


def is_within_directory(session_path: str, directory: str) -> bool:
    """Check whether a session path is ``directory`` or one of its subdirectories."""
    session = normalize_path(session_path)
    root = normalize_path(directory)
    return session == root or session.startswith(root.rstrip("/") + "/")


class SessionReader(ABC):
    """Base class for all session readers.

    A reader turns one on-disk source into canonical ``Session`` values sorted
    ascending by timestamp. Individual malformed records are skipped inside the
    reader; only a missing source surfaces as ``SourceNotFoundError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Reader identifier (e.g., 'claude_code', 'cursor')."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name."""
        ...

    @abstractmethod
    def get_default_path(self) -> Path:
        """Get default path for this platform."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        """Check if source is available on this system."""
        ...

    @abstractmethod
    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> list[Session]:
        """Read sessions, oldest first.

        Args:
            since: Only return sessions that started strictly after this time.
            project_path: Only return sessions whose project path starts with
                this path (case-insensitive).
            limit: Maximum number of sessions to return.

        Returns:
            Sessions sorted ascending by timestamp.
        """
        ...

    def read_selected(self, selected: list[SourceFile]) -> list[Session]:
        """Re-read specific sessions from their recorded provenance.

        Readers without per-file provenance return nothing.
        """
        return []

    def project_key(self, project_dir: str) -> str:
        """Key under which the sync boundary for ``project_dir`` is stored."""
        return parse_project_name(project_dir)

    def resolve_project_path(self, project_dir: str) -> str | None:
        """Map a project directory to the path sessions are filtered by."""
        return project_dir

    def in_directory(self, session: Session, directory: str) -> bool:
        """Check whether a session belongs to ``directory`` or a subdirectory."""
        return is_within_directory(session.project_path, directory)
