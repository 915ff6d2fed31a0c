"""Claude Code session reader.

Parses sessions from Claude Code's JSONL logs stored in
~/.claude/projects/<encoded-project>/<session-id>.jsonl.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from vibesync.errors import SourceNotFoundError
from vibesync.languages import edited_file_path, extract_languages
from vibesync.models import (
    Message,
    ModelUsageInfo,
    PlanningModeInfo,
    Session,
    SourceFile,
    SourceTool,
    parse_timestamp,
)
from vibesync.readers.base import SessionReader, SessionRef, matches_project
from vibesync.readers.content import flatten_content

logger = logging.getLogger(__name__)

# How much of a file is inspected to find its start timestamp cheaply
PEEK_BYTES = 2048
PEEK_LINES = 10

_ROLES = ("user", "assistant", "system")


def encode_project_path(path: str) -> str:
    """Encode a filesystem path the way Claude Code names project folders.

    Example: '/Users/foo/code/my.app' -> '-Users-foo-code-my-app'
    """
    return re.sub(r"[^A-Za-z0-9]", "-", path)


def decode_project_path(encoded: str) -> str:
    """Best-effort decode of a Claude Code project folder name.

    Dashes are ambiguous (they also replace dots and literal dashes), so this
    is only used when no session in the folder records its ``cwd``.

    Example: '-Users-foo-code-myapp' -> '/Users/foo/code/myapp'
    """
    if not encoded:
        return ""
    if encoded.startswith("-"):
        return "/" + encoded[1:].replace("-", "/")
    return encoded.replace("-", "/")


def peek_timestamp(path: Path) -> datetime | None:
    """Find the first declared timestamp in the head of a log file.

    Only the first ``PEEK_BYTES`` bytes and ``PEEK_LINES`` lines are read.

    Returns:
        The timestamp, or None if none was found or the file is unreadable.
    """
    try:
        with path.open("rb") as f:
            head = f.read(PEEK_BYTES)
    except OSError:
        return None

    for line in head.decode("utf-8", errors="ignore").split("\n")[:PEEK_LINES]:
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and data.get("timestamp"):
            return parse_timestamp(data["timestamp"])
    return None


def _primary_model(counts: dict[str, int]) -> str | None:
    """Most used model; ties go to the model seen later."""
    primary: str | None = None
    for model in counts:
        if primary is None or not counts[primary] > counts[model]:
            primary = model
    return primary


class ClaudeCodeReader(SessionReader):
    """Reader for Claude Code JSONL session logs."""

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the reader.

        Args:
            path: Optional projects root. Defaults to ~/.claude/projects.
        """
        self._path = path

    @property
    def name(self) -> str:
        """Reader identifier."""
        return SourceTool.CLAUDE_CODE.value

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return "Claude Code"

    def get_default_path(self) -> Path:
        """Get default path for Claude Code sessions."""
        return Path.home() / ".claude" / "projects"

    @property
    def root(self) -> Path:
        """The projects root in use."""
        return self._path if self._path is not None else self.get_default_path()

    def is_available(self) -> bool:
        """Check if Claude Code sessions directory exists."""
        return self.root.is_dir()

    def list_sessions(self, since: datetime | None = None) -> list[SessionRef]:
        """List session files worth parsing.

        When ``since`` is given, a file is skipped if its modification time
        predates ``since`` or if the timestamp found by ``peek_timestamp``
        predates ``since``.

        Args:
            since: Optional lower bound on session activity.

        Returns:
            List of SessionRef objects for each candidate file.

        Raises:
            SourceNotFoundError: If the projects root does not exist.
        """
        root = self.root
        if not root.is_dir():
            raise SourceNotFoundError(
                "Claude Code data not found. Make sure Claude Code is installed "
                "and has been used at least once.",
                code="CLAUDE_NOT_FOUND",
            )

        refs: list[SessionRef] = []
        for project_dir in sorted(root.iterdir()):
            if not project_dir.is_dir():
                continue

            # agent-*.jsonl files are subagent transcripts of a parent session
            for log_file in sorted(project_dir.glob("*.jsonl")):
                if log_file.name.startswith("agent-"):
                    continue

                try:
                    stat = log_file.stat()
                except OSError as e:
                    logger.debug("Cannot stat %s: %s", log_file, e)
                    continue
                updated_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

                if since is not None:
                    if updated_at < since:
                        continue
                    started_at = peek_timestamp(log_file)
                    if started_at is not None and started_at < since:
                        continue

                refs.append(
                    SessionRef(
                        id=log_file.stem,
                        path=log_file,
                        updated_at=updated_at,
                        project_dir=project_dir,
                    )
                )

        return refs

    def read_sessions(
        self,
        since: datetime | None = None,
        project_path: str | None = None,
        limit: int | None = None,
    ) -> list[Session]:
        """Read and filter Claude Code sessions, oldest first."""
        sessions: list[Session] = []

        for ref in self.list_sessions(since=since):
            session = self.parse_session(ref)
            if session is None:
                continue
            if since is not None and session.timestamp <= since:
                continue
            if project_path and not matches_project(session.project_path, project_path):
                continue

            sessions.append(session)
            if limit and len(sessions) >= limit:
                break

        sessions.sort(key=lambda s: s.timestamp)
        return sessions

    def read_selected(self, selected: list[SourceFile]) -> list[Session]:
        """Re-read sessions picked earlier, skipping files that fail."""
        sessions: list[Session] = []
        failed = 0
        for source in selected:
            session = self.read_session_file(Path(source.project_dir), source.session_file)
            if session is None:
                failed += 1
                continue
            sessions.append(session)

        if failed:
            logger.warning(
                "Failed to read %d session file(s). Continuing with %d valid sessions.",
                failed,
                len(sessions),
            )
        return sessions

    def read_session_file(self, project_dir: Path, session_file: str) -> Session | None:
        """Parse a single session file by its provenance."""
        path = project_dir / session_file
        try:
            updated_at = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError as e:
            logger.warning("Skipping unreadable session file %s: %s", session_file, e)
            return None
        return self.parse_session(
            SessionRef(id=path.stem, path=path, updated_at=updated_at, project_dir=project_dir)
        )

    def parse_session(self, ref: SessionRef) -> Session | None:
        """Parse one JSONL session file.

        Malformed lines are skipped. A file that cannot be read or parsed
        as a whole is logged and yields None so sibling files still load.

        Args:
            ref: SessionRef pointing to the session file.

        Returns:
            The parsed Session, or None if the file has no metadata record,
            no messages, or could not be read.
        """
        try:
            with ref.path.open("r", encoding="utf-8") as f:
                return self._parse_lines(f, ref)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Failed to parse session file %s: %s", ref.path, e)
            return None

    def _parse_lines(self, lines: Any, ref: SessionRef) -> Session | None:
        """Accumulate a session from log lines in a single pass."""
        metadata: dict[str, Any] | None = None
        messages: list[Message] = []
        edited_files: set[str] = set()
        language_files: set[str] = set()
        model_counts: dict[str, int] = {}
        last_model: str | None = None
        model_switches = 0
        exit_plan_timestamps: list[datetime] = []
        git_branch: str | None = None

        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(entry, dict):
                continue

            timestamp = parse_timestamp(entry.get("timestamp"))

            if git_branch is None and entry.get("gitBranch"):
                git_branch = str(entry["gitBranch"])

            if metadata is None and entry.get("sessionId") and entry.get("cwd") and timestamp:
                metadata = {
                    "id": str(entry["sessionId"]),
                    "cwd": str(entry["cwd"]),
                    "timestamp": timestamp,
                }

            message = entry.get("message")
            if isinstance(message, dict) and timestamp is not None:
                content = message.get("content")
                if isinstance(content, list):
                    for block in content:
                        if (
                            isinstance(block, dict)
                            and block.get("type") == "tool_use"
                            and block.get("name") == "ExitPlanMode"
                        ):
                            exit_plan_timestamps.append(timestamp)

                role = message.get("role")
                if role not in _ROLES:
                    role = "user"
                messages.append(
                    Message(role=role, content=flatten_content(content), timestamp=timestamp)
                )

                model = message.get("model")
                if role == "assistant" and model:
                    model_counts[model] = model_counts.get(model, 0) + 1
                    if last_model and last_model != model:
                        model_switches += 1
                    last_model = model

            result = entry.get("toolUseResult")
            if isinstance(result, dict) and result.get("type") in ("create", "update"):
                if result.get("filePath"):
                    edited_files.add(str(result["filePath"]))

            edited = edited_file_path(entry)
            if edited:
                language_files.add(edited)

        if metadata is None or not messages:
            return None

        model_usage = None
        if model_counts:
            model_usage = ModelUsageInfo(
                models=list(model_counts),
                primary_model=_primary_model(model_counts),
                per_model_count=model_counts,
                switch_count=model_switches,
            )

        planning_mode = None
        if exit_plan_timestamps:
            planning_mode = PlanningModeInfo(
                has_planning_mode=True,
                planning_cycles=len(exit_plan_timestamps),
                exit_plan_timestamps=exit_plan_timestamps,
            )

        project_dir = ref.project_dir or ref.path.parent
        return Session(
            id=metadata["id"],
            tool=SourceTool.CLAUDE_CODE,
            source_session_id=metadata["id"],
            source_file=SourceFile(project_dir=str(project_dir), session_file=ref.path.name),
            project_path=metadata["cwd"],
            timestamp=metadata["timestamp"],
            git_branch=git_branch,
            messages=messages,
            file_edit_count=len(edited_files),
            languages=extract_languages(language_files),
            model_usage=model_usage,
            planning_mode=planning_mode,
        )

    def _project_folder(self, project_dir: str) -> Path:
        """Locate the Claude project folder for a folder path or a real project path."""
        candidate = Path(project_dir).expanduser()
        if candidate.parent == self.root or (candidate.is_dir() and any(candidate.glob("*.jsonl"))):
            return candidate
        return self.root / encode_project_path(str(candidate.resolve()))

    def project_key(self, project_dir: str) -> str:
        """Claude project folder name used as the sync-boundary key."""
        return self._project_folder(project_dir).name

    def resolve_project_path(self, project_dir: str) -> str | None:
        """Find the working directory recorded by the sessions of a project.

        Returns:
            The recorded ``cwd``, else the decoded folder name, or None when no
            such project folder exists.
        """
        folder = self._project_folder(project_dir)
        if not folder.is_dir():
            return None

        for log_file in sorted(folder.glob("*.jsonl")):
            try:
                with log_file.open("r", encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError:
                            continue
                        if isinstance(data, dict) and data.get("cwd"):
                            return str(data["cwd"])
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Cannot read %s: %s", log_file, e)
                continue
        return decode_project_path(folder.name)
