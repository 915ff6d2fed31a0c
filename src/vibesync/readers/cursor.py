"""Cursor session reader.

Cursor stores conversations in a SQLite key-value database (state.vscdb),
with each conversation serialized as JSON under a ``composerData:<id>`` key.

Two schema variants exist, told apart by shape rather than by a shared base:

- Legacy: message text inline in a ``conversation`` array, no ``_v`` field.
- Modern: a numeric ``_v`` field and a ``fullConversationHeadersOnly`` array of
  (bubbleId, type) headers; the text of each message lives under its own
  ``bubbleId:<composerId>:<bubbleId>`` key in the same table.

Project identity is not stored with the conversation. It is recovered from the
per-workspace databases under workspaceStorage, which list the composer ids
opened in each workspace folder.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Union
from urllib.parse import unquote

from vibesync.errors import SourceNotFoundError
from vibesync.models import (
    Message,
    Session,
    SourceFile,
    SourceTool,
    format_timestamp,
    parse_project_name,
    parse_timestamp,
)
from vibesync.readers.base import SessionReader, matches_project, normalize_path

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT = "unknown-cursor-project"


@dataclass(frozen=True)
class LegacyConversation:
    """Conversation with inline message text."""

    composer_id: str
    created_at: datetime | None
    last_updated_at: datetime | None
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class ModernConversation:
    """Conversation holding only message headers; text lives in bubbles."""

    composer_id: str
    version: int
    created_at: datetime | None
    last_updated_at: datetime | None
    headers: list[dict[str, Any]] = field(default_factory=list)


Conversation = Union[LegacyConversation, ModernConversation]


def is_legacy_conversation(data: dict[str, Any]) -> bool:
    """Legacy shape: string composerId, inline ``conversation`` list, no ``_v``."""
    return (
        isinstance(data.get("composerId"), str)
        and isinstance(data.get("conversation"), list)
        and "_v" not in data
    )


def is_modern_conversation(data: dict[str, Any]) -> bool:
    """Modern shape: string composerId, numeric ``_v``, header list."""
    version = data.get("_v")
    return (
        isinstance(data.get("composerId"), str)
        and isinstance(version, int)
        and not isinstance(version, bool)
        and isinstance(data.get("fullConversationHeadersOnly"), list)
    )


def classify_conversation(data: Any) -> Conversation | None:
    """Dispatch a decoded ``composerData`` blob to its schema variant.

    Returns:
        The matching variant, or None for shapes neither variant accepts.
    """
    if not isinstance(data, dict):
        return None

    created_at = parse_timestamp(data.get("createdAt"))
    last_updated_at = parse_timestamp(data.get("lastUpdatedAt"))

    if is_legacy_conversation(data):
        return LegacyConversation(
            composer_id=data["composerId"],
            created_at=created_at,
            last_updated_at=last_updated_at,
            messages=[m for m in data["conversation"] if isinstance(m, dict)],
        )
    if is_modern_conversation(data):
        return ModernConversation(
            composer_id=data["composerId"],
            version=data["_v"],
            created_at=created_at,
            last_updated_at=last_updated_at,
            headers=[h for h in data["fullConversationHeadersOnly"] if isinstance(h, dict)],
        )
    return None


def bubble_key(composer_id: str, bubble_id: str) -> str:
    """Composite key of a modern-format message blob."""
    return f"bubbleId:{composer_id}:{bubble_id}"


def role_for_type(bubble_type: Any) -> Literal["user", "assistant", "system"]:
    """Map Cursor's numeric bubble type to a message role."""
    if bubble_type == 1:
        return "user"
    if bubble_type == 2:
        return "assistant"
    return "system"


def extract_text(bubble: dict[str, Any]) -> str:
    """Extract plain text from a message or bubble.

    Uses the ``text`` field, falling back to ``richText`` (plain or Lexical
    editor JSON).
    """
    text = bubble.get("text", "")
    if isinstance(text, str) and text.strip():
        return text

    rich_text = bubble.get("richText", "")
    if not isinstance(rich_text, str) or not rich_text:
        return ""
    if not rich_text.startswith("{"):
        return rich_text

    try:
        root = json.loads(rich_text)
    except (json.JSONDecodeError, TypeError):
        return rich_text

    texts: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, dict):
            if node.get("type") == "text" and node.get("text"):
                texts.append(node["text"])
            walk(node.get("children", []))
            walk(node.get("root"))
        elif isinstance(node, list):
            for item in node:
                walk(item)

    walk(root)
    return " ".join(texts)


def extract_legacy_messages(conversation: LegacyConversation) -> list[Message]:
    """Messages of a legacy conversation.

    Each message keeps its own timestamp, else the conversation start.
    """
    messages: list[Message] = []
    for item in conversation.messages:
        text = extract_text(item)
        if not text:
            continue
        timestamp = parse_timestamp(item.get("timestamp")) or conversation.created_at
        if timestamp is None:
            continue
        messages.append(
            Message(role=role_for_type(item.get("type")), content=text, timestamp=timestamp)
        )
    return messages


def extract_modern_messages(
    conversation: ModernConversation,
    bubbles: dict[str, dict[str, Any]],
) -> list[Message]:
    """Messages of a modern conversation, joined with their bubbles.

    A header whose bubble is missing or empty drops only that message.
    Bubbles without their own timestamp are pinned to the conversation
    start, and the final one to the conversation's last update, so the
    conversation span is preserved.

    Args:
        conversation: The modern conversation.
        bubbles: Decoded bubbles keyed by bubble id.

    Returns:
        Messages in header order.
    """
    start = conversation.created_at or conversation.last_updated_at
    end = conversation.last_updated_at or conversation.created_at

    rows: list[tuple[Literal["user", "assistant", "system"], str, datetime | None]] = []
    for header in conversation.headers:
        bubble = bubbles.get(str(header.get("bubbleId", "")))
        if not bubble:
            continue
        text = extract_text(bubble)
        if not text:
            continue
        bubble_type = header.get("type", bubble.get("type"))
        rows.append((role_for_type(bubble_type), text, parse_timestamp(bubble.get("createdAt"))))

    messages: list[Message] = []
    for index, (role, text, own_timestamp) in enumerate(rows):
        timestamp = own_timestamp
        if timestamp is None:
            timestamp = end if index == len(rows) - 1 and index > 0 else start
        if timestamp is None:
            continue
        messages.append(Message(role=role, content=text, timestamp=timestamp))
    return messages


def generate_cursor_session_id(composer_id: str, timestamp: datetime) -> str:
    """Stable session id derived from the composer id and start time."""
    digest = hashlib.sha256(
        f"cursor-{composer_id}-{format_timestamp(timestamp)}".encode()
    ).hexdigest()
    return f"cursor-{digest[:16]}"


def folder_uri_to_name(folder_uri: str) -> str:
    """Project display name for a workspace folder URI.

    Example: 'file:///c%3A/projects/my-app' -> 'my-app'
    """
    return parse_project_name(unquote(folder_uri.replace("file:///", "")))


class CursorReader(SessionReader):
    """Reader for Cursor's global conversation database."""

    def __init__(self, path: Path | None = None, workspace_path: Path | None = None) -> None:
        """Initialize the Cursor reader.

        Args:
            path: Optional path to the global state.vscdb file. If not
                provided, the default platform-specific path is used.
            workspace_path: Optional workspaceStorage directory.
        """
        self._path = path
        self._workspace_path = workspace_path
        self.skipped_records = 0

    @property
    def name(self) -> str:
        """Reader identifier."""
        return SourceTool.CURSOR.value

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return "Cursor"

    def _user_dir(self) -> Path:
        if sys.platform == "darwin":
            return Path.home() / "Library/Application Support/Cursor/User"
        elif sys.platform == "win32":
            appdata = os.environ.get("APPDATA", "")
            if appdata:
                return Path(appdata) / "Cursor/User"
            return Path.home() / "AppData/Roaming/Cursor/User"
        else:
            return Path.home() / ".config/Cursor/User"

    def get_default_path(self) -> Path:
        """Get the platform-specific path of the global state database."""
        return self._user_dir() / "globalStorage" / "state.vscdb"

    def get_workspace_storage_path(self) -> Path:
        """Get the directory holding per-workspace databases."""
        if self._workspace_path is not None:
            return self._workspace_path
        return self._user_dir() / "workspaceStorage"

    def _get_db_path(self) -> Path:
        return self._path if self._path is not None else self.get_default_path()

    def is_available(self) -> bool:
        """Check if the Cursor database exists on this system."""
        return self._get_db_path().exists()

    @contextmanager
    def _connect(self, db_path: Path) -> Iterator[sqlite3.Connection]:
        """Open a read-only connection to a Cursor database.

        Yields:
            SQLite connection with row factory set.
        """
        uri = f"{db_path.resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def resolve_project_path(self, project_dir: str) -> str | None:
        """Cursor sessions are filtered by project display name."""
        return parse_project_name(project_dir) or None

    def in_directory(self, session: Session, directory: str) -> bool:
        """Match on the workspace display name, the only project identity Cursor keeps."""
        name = self.resolve_project_path(directory)
        return name is not None and normalize_path(session.project_path) == normalize_path(name)

    def build_composer_project_map(self) -> dict[str, str]:
        """Map composer ids to project display names via workspace databases.

        Workspaces whose metadata cannot be read are skipped.
        """
        mapping: dict[str, str] = {}
        storage = self.get_workspace_storage_path()
        if not storage.is_dir():
            return mapping

        for workspace_dir in sorted(storage.iterdir()):
            workspace_json = workspace_dir / "workspace.json"
            state_db = workspace_dir / "state.vscdb"
            if not workspace_json.is_file() or not state_db.is_file():
                continue

            try:
                folder = json.loads(workspace_json.read_text(encoding="utf-8")).get("folder")
                if not isinstance(folder, str) or not folder:
                    continue
                project_name = folder_uri_to_name(folder)

                with self._connect(state_db) as conn:
                    row = conn.execute(
                        "SELECT value FROM ItemTable WHERE key = ?",
                        ("composer.composerData",),
                    ).fetchone()
                if row is None:
                    continue

                composers = json.loads(row["value"]).get("allComposers") or []
                for composer in composers:
                    if isinstance(composer, dict) and composer.get("composerId"):
                        mapping[composer["composerId"]] = project_name
            except (OSError, ValueError, AttributeError, sqlite3.Error) as e:
                logger.debug("Skipping workspace %s: %s", workspace_dir.name, e)
                continue

        return mapping

    def _load_bubbles(self, conn: sqlite3.Connection, composer_id: str) -> dict[str, dict[str, Any]]:
        """Fetch every bubble of one conversation in a single query.

        Bubbles that fail to decode are left out, which drops their message.
        """
        prefix = bubble_key(composer_id, "")
        rows = conn.execute(
            "SELECT key, value FROM cursorDiskKV WHERE key LIKE ?",
            (f"{prefix}%",),
        ).fetchall()

        bubbles: dict[str, dict[str, Any]] = {}
        for row in rows:
            key = row["key"]
            if not key.startswith(prefix):
                continue
            try:
                bubble = json.loads(row["value"])
            except (json.JSONDecodeError, TypeError):
                continue
            if isinstance(bubble, dict):
                bubbles[key[len(prefix):]] = bubble
        return bubbles

    def _messages_for(self, conn: sqlite3.Connection, conversation: Conversation) -> list[Message]:
        if isinstance(conversation, LegacyConversation):
            return extract_legacy_messages(conversation)
        return extract_modern_messages(conversation, self._load_bubbles(conn, conversation.composer_id))

    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> list[Session]:
        """Read Cursor conversations as sessions, oldest first.

        Raises:
            SourceNotFoundError: If the global database is missing or cannot
                be opened.
        """
        db_path = self._get_db_path()
        if not db_path.exists():
            raise SourceNotFoundError(
                f"Cursor database not found at {db_path}",
                code="CURSOR_NOT_FOUND",
            )

        project_map = self.build_composer_project_map()
        self.skipped_records = 0
        sessions: list[Session] = []

        try:
            with self._connect(db_path) as conn:
                rows = conn.execute(
                    "SELECT key, value FROM cursorDiskKV WHERE key LIKE 'composerData:%'"
                ).fetchall()

                for row in rows:
                    try:
                        session = self._build_session(conn, row["value"], project_map, db_path)
                    except (sqlite3.Error, ValueError, TypeError, KeyError) as e:
                        self.skipped_records += 1
                        logger.debug("Skipping Cursor record %s: %s", row["key"], e)
                        continue
                    if session is None:
                        continue
                    if since is not None and session.timestamp <= since:
                        continue
                    if project_path and not matches_project(session.project_path, project_path):
                        continue
                    sessions.append(session)
        except sqlite3.Error as e:
            raise SourceNotFoundError(
                f"Cannot open Cursor database at {db_path}: {e}",
                code="CURSOR_NOT_FOUND",
            ) from e

        if self.skipped_records:
            logger.info("Skipped %d unreadable Cursor record(s)", self.skipped_records)

        sessions.sort(key=lambda s: s.timestamp)
        if limit:
            sessions = sessions[:limit]
        return sessions

    def _build_session(
        self,
        conn: sqlite3.Connection,
        value: Any,
        project_map: dict[str, str],
        db_path: Path,
    ) -> Session | None:
        if value is None:
            return None
        conversation = classify_conversation(json.loads(value))
        if conversation is None:
            return None

        messages = self._messages_for(conn, conversation)
        if not messages:
            return None

        started_at = min(m.timestamp for m in messages)
        return Session(
            id=generate_cursor_session_id(conversation.composer_id, started_at),
            tool=SourceTool.CURSOR,
            source_session_id=conversation.composer_id,
            source_file=SourceFile(project_dir=str(db_path), session_file=conversation.composer_id),
            project_path=project_map.get(conversation.composer_id, UNKNOWN_PROJECT),
            timestamp=started_at,
            messages=messages,
        )

    def read_selected(self, selected: list[SourceFile]) -> list[Session]:
        """Re-read conversations picked earlier, matched by composer id."""
        wanted = {source.session_file for source in selected}
        if not wanted:
            return []
        return [s for s in self.read_sessions() if s.source_session_id in wanted]
