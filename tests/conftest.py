import json
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vibesync.config import _clear_config_cache
from vibesync.models import Message, Session, SourceFile, SourceTool, format_timestamp, parse_project_name
from vibesync.readers.base import SessionReader, matches_project
from vibesync.storage import StateStore

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point ~ at a temporary directory so nothing touches the real ~/.vibesync."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("VIBESYNC_API_URL", raising=False)
    _clear_config_cache()
    yield home
    _clear_config_cache()


@pytest.fixture
def temp_db_path():
    """Create a temporary database path."""
    temp_dir = tempfile.mkdtemp()
    db_path = Path(temp_dir) / "state.sqlite"
    yield db_path
    shutil.rmtree(temp_dir)


@pytest.fixture
def state_store(temp_db_path):
    """Create a StateStore with a temporary database."""
    store = StateStore(db_path=temp_db_path)
    yield store
    store.close()


@pytest.fixture
def make_session():
    """Factory for sessions with a given start time and duration."""

    def _make(
        session_id: str = "session-1",
        project_path: str = "/home/dev/app",
        start: datetime = BASE_TIME,
        duration: int = 600,
        tool: SourceTool = SourceTool.CLAUDE_CODE,
        user_text: str = "Please fix the failing test",
    ) -> Session:
        messages = [
            Message(role="user", content=user_text, timestamp=start),
            Message(role="assistant", content="Fixed it.", timestamp=start + timedelta(seconds=duration)),
        ]
        return Session(
            id=session_id,
            tool=tool,
            source_session_id=session_id,
            source_file=SourceFile(project_dir="/tmp/projects/app", session_file=f"{session_id}.jsonl"),
            project_path=project_path,
            timestamp=start,
            messages=messages,
        )

    return _make


class FakeReader(SessionReader):
    """In-memory reader that records how it was queried."""

    def __init__(self, sessions=None):
        self.sessions = list(sessions or [])
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def display_name(self) -> str:
        return "Fake"

    def get_default_path(self) -> Path:
        return Path("/tmp/fake")

    def is_available(self) -> bool:
        return True

    def read_sessions(self, since=None, project_path=None, limit=None):
        self.calls.append({"since": since, "project_path": project_path})
        found = [
            s
            for s in self.sessions
            if (since is None or s.timestamp > since)
            and (not project_path or matches_project(s.project_path, project_path))
        ]
        found.sort(key=lambda s: s.timestamp)
        return found[:limit] if limit else found

    def read_selected(self, selected):
        wanted = {source.session_file for source in selected}
        return [s for s in self.sessions if s.source_file and s.source_file.session_file in wanted]

    def project_key(self, project_dir: str) -> str:
        return parse_project_name(project_dir)


class FakeTransport:
    """Upload transport that records batches and can fail on demand.

    ``errors`` is consumed one entry per call; ``None`` means succeed.
    """

    def __init__(self, errors=None, duplicates_every=0):
        self.errors = list(errors or [])
        self.batches = []
        self.duplicates_every = duplicates_every

    def upload_batch(self, batch):
        self.batches.append(batch)
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        count = len(batch.sessions)
        duplicates = count // self.duplicates_every if self.duplicates_every else 0
        return {
            "success": True,
            "created": count - duplicates,
            "duplicates": duplicates,
            "analysisPreview": f"preview-{batch.batch_number}",
            "streak": {"current": batch.batch_number},
            "batchId": f"batch-{batch.batch_number}",
        }


@pytest.fixture
def fake_reader():
    return FakeReader


@pytest.fixture
def fake_transport():
    return FakeTransport


def claude_entries(session_id, cwd, start, minutes=10, branch="main"):
    """A minimal two-message Claude Code log."""
    return [
        {
            "type": "user",
            "sessionId": session_id,
            "cwd": cwd,
            "gitBranch": branch,
            "timestamp": format_timestamp(start),
            "message": {"role": "user", "content": "Add a login form"},
        },
        {
            "type": "assistant",
            "sessionId": session_id,
            "cwd": cwd,
            "timestamp": format_timestamp(start + timedelta(minutes=minutes)),
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4",
                "content": [{"type": "text", "text": "Added the form."}],
            },
        },
    ]


@pytest.fixture
def make_claude_entries():
    return claude_entries


@pytest.fixture
def claude_root(tmp_path):
    """Empty Claude Code projects root."""
    root = tmp_path / "claude" / "projects"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def write_claude_session(claude_root):
    """Write a JSONL session file into a project folder under the root."""

    def _write(folder: str, session_id: str, entries=None, *, cwd="/home/dev/app", start=BASE_TIME, minutes=10):
        project_dir = claude_root / folder
        project_dir.mkdir(parents=True, exist_ok=True)
        if entries is None:
            entries = claude_entries(session_id, cwd, start, minutes)
        path = project_dir / f"{session_id}.jsonl"
        lines = [e if isinstance(e, str) else json.dumps(e) for e in entries]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write


def create_cursor_global_db(path: Path, items: dict) -> Path:
    """Create a global state.vscdb with a cursorDiskKV table."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    for key, value in items.items():
        conn.execute(
            "INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)",
            (key, value if isinstance(value, str) or value is None else json.dumps(value)),
        )
    conn.commit()
    conn.close()
    return path


def create_cursor_workspace(storage: Path, name: str, folder_uri: str, composer_ids: list) -> Path:
    """Create one workspaceStorage/<hash> entry listing composer ids."""
    workspace = storage / name
    workspace.mkdir(parents=True, exist_ok=True)
    (workspace / "workspace.json").write_text(json.dumps({"folder": folder_uri}), encoding="utf-8")
    conn = sqlite3.connect(workspace / "state.vscdb")
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        ("composer.composerData", json.dumps({"allComposers": [{"composerId": c} for c in composer_ids]})),
    )
    conn.commit()
    conn.close()
    return workspace


@pytest.fixture
def cursor_db_factory(tmp_path):
    """Build a Cursor global DB plus workspace storage under tmp_path."""

    def _build(items: dict, workspaces=None):
        db_path = create_cursor_global_db(tmp_path / "cursor" / "globalStorage" / "state.vscdb", items)
        storage = tmp_path / "cursor" / "workspaceStorage"
        storage.mkdir(parents=True, exist_ok=True)
        for index, (folder_uri, composer_ids) in enumerate(workspaces or []):
            create_cursor_workspace(storage, f"ws{index}", folder_uri, composer_ids)
        return db_path, storage

    return _build
