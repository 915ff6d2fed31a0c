"""Canonical session models for vibesync.

This module defines the data models shared by the readers, the sanitizer and
the sync orchestrator: parsed sessions, sanitized messages, the per-project
sync boundary and the wire shapes sent to the analytics service.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePath
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class SourceTool(str, Enum):
    """Supported source tools for session data."""

    CLAUDE_CODE = "claude_code"
    CURSOR = "cursor"
    VSCODE = "vscode"


class Message(BaseModel):
    """A single message within a session. Immutable once parsed."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime


class ModelUsageInfo(BaseModel):
    """Per-session model usage histogram for assistant messages."""

    models: list[str] = Field(default_factory=list)  # first-seen order
    primary_model: str | None = None
    per_model_count: dict[str, int] = Field(default_factory=dict)
    switch_count: int = 0


class PlanningModeInfo(BaseModel):
    """Planning mode activity detected in a session."""

    has_planning_mode: bool = False
    planning_cycles: int = 0
    exit_plan_timestamps: list[datetime] = Field(default_factory=list)


class SourceFile(BaseModel):
    """Provenance needed to re-read a session from disk."""

    project_dir: str
    session_file: str


class Session(BaseModel):
    """The canonical representation of one recorded session.

    Sessions are built entirely inside a reader from one on-disk artifact and
    never mutated afterwards. ``duration`` is always derived from the first
    and last message timestamps and is never negative.
    """

    model_config = ConfigDict(frozen=True)

    # Identity
    id: str
    tool: SourceTool
    source_session_id: str | None = None
    source_file: SourceFile | None = None

    # Metadata
    project_path: str
    timestamp: datetime
    git_branch: str | None = None

    # Content
    messages: list[Message] = Field(default_factory=list)

    # Stats
    file_edit_count: int = 0
    languages: list[str] = Field(default_factory=list)
    model_usage: ModelUsageInfo | None = None
    planning_mode: PlanningModeInfo | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> int:
        """Session length in whole seconds."""
        return compute_duration(self.messages)

    @property
    def project_name(self) -> str:
        """Display name of the project (last path component)."""
        return parse_project_name(self.project_path)


class RedactionMetadata(BaseModel):
    """Per-message sanitizer bookkeeping."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_code: bool = False
    redacted_items: dict[str, int] = Field(default_factory=dict)
    original_length: int = 0
    sanitized_length: int = 0


class SanitizedMessage(BaseModel):
    """Sanitizer output, one per input Message in the same order."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: str
    metadata: RedactionMetadata = Field(default_factory=RedactionMetadata)


class SyncBoundary(BaseModel):
    """Persisted high-water marks for one project."""

    oldest_synced_timestamp: datetime | None = None
    newest_synced_timestamp: datetime | None = None
    project_name: str | None = None
    session_count: int | None = None
    last_sync_time: datetime | None = None


class LastSyncSummary(BaseModel):
    """Generic label describing the most recent successful sync."""

    timestamp: datetime
    description: str


class _WireModel(BaseModel):
    """Base for payloads sent to the analytics service."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize using the service's field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApiSessionMetadata(_WireModel):
    """Session statistics attached to an uploaded session."""

    files_edited: int = Field(default=0, alias="files_edited")
    languages: list[str] = Field(default_factory=list)
    models: list[str] | None = None
    primary_model: str | None = None
    git_branch: str | None = None
    has_planning_mode: bool = False
    planning_cycles: int = 0
    exit_plan_timestamps: list[str] = Field(default_factory=list)


class ApiSessionData(_WireModel):
    """Sanitized content of an uploaded session."""

    project_name: str
    message_summary: str  # JSON array of sanitized messages
    message_count: int
    metadata: ApiSessionMetadata = Field(default_factory=ApiSessionMetadata)


class ApiSession(_WireModel):
    """A sanitized session in the upload wire shape."""

    tool: SourceTool
    timestamp: str
    duration: int
    claude_session_id: str | None = None
    data: ApiSessionData


class UploadBatch(_WireModel):
    """One fixed-size group of sessions uploaded with a single checksum."""

    sessions: list[ApiSession]
    checksum: str
    batch_number: int
    total_batches: int
    total_sessions: int


class UploadSummary(BaseModel):
    """Aggregated server responses for a complete upload."""

    success: bool = True
    created: int = 0
    duplicates: int = 0
    sessions_processed: int = 0
    analysis_preview: Any = None
    streak: Any = None
    batch_id: str | None = None


class LockInfo(BaseModel):
    """Contents of the hook lock file."""

    pid: int
    timestamp: int  # epoch milliseconds
    host: str


def compute_duration(messages: list[Message]) -> int:
    """Compute a session duration from its first and last messages.

    Args:
        messages: Messages in session order.

    Returns:
        Whole seconds between the first and last message, 0 for fewer than
        two messages or reversed timestamps.
    """
    if len(messages) < 2:
        return 0
    delta = (messages[-1].timestamp - messages[0].timestamp).total_seconds()
    return max(0, math.floor(delta))


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch-milliseconds number into UTC.

    Args:
        value: Timestamp as an ISO string (with optional ``Z`` suffix) or
            milliseconds since the epoch.

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (ValueError, OSError, OverflowError):
            return None

    if not isinstance(value, str) or not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision."""
    utc = ensure_utc(value)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_project_name(path: str) -> str:
    """Extract the project name from a filesystem path.

    Both Unix and Windows separators are accepted.

    Examples:
        >>> parse_project_name("/Users/dev/projects/my-app")
        'my-app'
        >>> parse_project_name("C:\\\\code\\\\api")
        'api'
        >>> parse_project_name("")
        ''
    """
    if not path:
        return ""
    normalized = path.replace("\\", "/").rstrip("/")
    return PurePath(normalized).name if normalized else ""
