"""Sync orchestration: load, sanitize, batch, upload and record boundaries."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence, TypeVar

from vibesync.errors import AuthError, SessionValidationError, is_retryable
from vibesync.hook_utils import log_hook_error
from vibesync.models import (
    ApiSession,
    ApiSessionData,
    ApiSessionMetadata,
    Session,
    SourceFile,
    SyncBoundary,
    UploadBatch,
    UploadSummary,
    format_timestamp,
    parse_project_name,
)
from vibesync.security import MessageSanitizer

if TYPE_CHECKING:
    from vibesync.api_client import UploadTransport
    from vibesync.lock import HookLock
    from vibesync.readers.base import SessionReader
    from vibesync.storage.store import StateStore

logger = logging.getLogger(__name__)

# Server-side minimum; shorter sessions are rejected
MIN_DURATION_SECONDS = 240
BATCH_SIZE = 100
LOOKBACK_DAYS = 30
BATCH_DELAY = 0.1
RETRY_DELAY = 1.0
MAX_RETRIES = 1
MESSAGE_SUMMARY_LIMIT = 5000

T = TypeVar("T")

ProgressCallback = Callable[[int, int, float], None]


class SyncState(str, Enum):
    """Steps of a sync run."""

    AUTHENTICATING = "authenticating"
    LOADING = "loading"
    SANITIZING = "sanitizing"
    DRY_RUN_EXIT = "dry_run_exit"
    UPLOADING = "uploading"
    PERSISTING_STATE = "persisting_state"
    DONE = "done"
    ERROR = "error"


# Hook-log context recorded for a failure in each state
_ERROR_CONTEXT = {
    SyncState.AUTHENTICATING: "Auth check",
    SyncState.LOADING: "Load sessions",
    SyncState.SANITIZING: "Sanitize sessions",
    SyncState.UPLOADING: "Upload sessions",
    SyncState.PERSISTING_STATE: "Update sync state",
}


@dataclass
class SyncOptions:
    """Flags controlling one sync run."""

    dry: bool = False
    all_projects: bool = False
    silent: bool = False
    hook_trigger: str | None = None
    project_dir: str | None = None
    initial_sync: bool = False
    selected_sessions: list[SourceFile] = field(default_factory=list)
    source: str = "claude_code"
    cwd: str | None = None
    test: bool = False


@dataclass
class SyncResult:
    """Outcome of a sync run."""

    state: SyncState = SyncState.AUTHENTICATING
    history: list[SyncState] = field(default_factory=list)
    sessions_loaded: int = 0
    sessions_filtered: int = 0
    sessions_prepared: int = 0
    summary: UploadSummary | None = None
    boundary: SyncBoundary | None = None
    error: BaseException | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def enter(self, state: SyncState) -> None:
        self.state = state
        self.history.append(state)


def chunk_sessions(items: Sequence[T], size: int = BATCH_SIZE) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of at most ``size``.

    Raises:
        ValueError: If ``size`` is not positive.
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _compact_json(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def calculate_checksum(sessions: Sequence[ApiSession]) -> str:
    """SHA-256 hex digest of the compact JSON of a batch's sessions."""
    payload = _compact_json([s.to_wire() for s in sessions])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def build_batches(sessions: Sequence[ApiSession], size: int = BATCH_SIZE) -> list[UploadBatch]:
    """Group sessions into numbered upload batches, each with its own checksum."""
    chunks = chunk_sessions(sessions, size)
    return [
        UploadBatch(
            sessions=chunk,
            checksum=calculate_checksum(chunk),
            batch_number=index,
            total_batches=len(chunks),
            total_sessions=len(sessions),
        )
        for index, chunk in enumerate(chunks, start=1)
    ]


def merge_results(results: Sequence[dict[str, Any]]) -> UploadSummary:
    """Combine per-batch server replies into one summary.

    Counts are summed. ``analysisPreview`` comes from the first batch,
    ``streak`` from the last, and ``batchId`` from the first batch that
    reports one.
    """
    created = sum(int(r.get("created") or 0) for r in results)
    duplicates = sum(int(r.get("duplicates") or 0) for r in results)
    return UploadSummary(
        success=all(r.get("success", True) for r in results),
        created=created,
        duplicates=duplicates,
        sessions_processed=created + duplicates,
        analysis_preview=results[0].get("analysisPreview") if results else None,
        streak=results[-1].get("streak") if results else None,
        batch_id=next((r["batchId"] for r in results if r.get("batchId")), None),
    )


def to_api_session(session: Session, sanitizer: MessageSanitizer) -> ApiSession:
    """Sanitize a session's messages and build its upload shape."""
    sanitized = sanitizer.sanitize_messages(list(session.messages))
    summary = _compact_json([m.model_dump(mode="json", by_alias=True) for m in sanitized])

    usage = session.model_usage
    planning = session.planning_mode
    metadata = ApiSessionMetadata(
        files_edited=session.file_edit_count,
        languages=list(session.languages),
        models=list(usage.models) if usage else None,
        primary_model=usage.primary_model if usage else None,
        git_branch=session.git_branch,
        has_planning_mode=planning.has_planning_mode if planning else False,
        planning_cycles=planning.planning_cycles if planning else 0,
        exit_plan_timestamps=[format_timestamp(t) for t in planning.exit_plan_timestamps] if planning else [],
    )

    return ApiSession(
        tool=session.tool,
        timestamp=format_timestamp(session.timestamp),
        duration=session.duration,
        claude_session_id=session.source_session_id,
        data=ApiSessionData(
            project_name=parse_project_name(session.project_path),
            message_summary=summary[:MESSAGE_SUMMARY_LIMIT],
            message_count=len(session.messages),
            metadata=metadata,
        ),
    )


class SyncOrchestrator:
    """Runs one sync from a single reader to the upload transport.

    Errors propagate unless the run is silent, in which case they are written
    to the hook log and returned on the ``SyncResult``.
    """

    def __init__(
        self,
        reader: SessionReader,
        transport: UploadTransport,
        store: StateStore,
        sanitizer: MessageSanitizer | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
        on_progress: ProgressCallback | None = None,
        hook_log_path: Path | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            reader: Source of sessions.
            transport: Delivers upload batches.
            store: Token and sync boundary storage.
            sanitizer: Message sanitizer. A default one is created if omitted.
            sleep: Used for the pause between batches and before a retry.
            now: Returns the current time, used for the lookback window.
            on_progress: Called as ``(uploaded, total, size_kb)`` after each batch.
            hook_log_path: Hook log used in silent mode.
        """
        self.reader = reader
        self.transport = transport
        self.store = store
        self.sanitizer = sanitizer or MessageSanitizer()
        self._sleep = sleep
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.on_progress = on_progress
        self._hook_log_path = hook_log_path

    def execute(self, options: SyncOptions) -> SyncResult:
        """Run a sync.

        Returns:
            The result. In silent mode a failure is reported through
            ``result.error`` with ``result.state == SyncState.ERROR``.

        Raises:
            VibesyncError: Any failure, unless ``options.silent`` is set.
        """
        result = SyncResult()
        try:
            self._run(options, result)
        except Exception as e:
            failed_in = result.state
            result.error = e
            result.enter(SyncState.ERROR)
            if not options.silent:
                raise
            log_hook_error(_ERROR_CONTEXT.get(failed_in, "Sync"), e, self._hook_log_path)
            logger.error("Sync failed while %s: %s", failed_in.value, e)
        return result

    def _run(self, options: SyncOptions, result: SyncResult) -> None:
        result.enter(SyncState.AUTHENTICATING)
        self.authenticate()

        result.enter(SyncState.LOADING)
        sessions = self.load_sessions(options)
        result.sessions_loaded = len(sessions)
        if not sessions:
            logger.info("No sessions found")
            result.enter(SyncState.DONE)
            return

        result.enter(SyncState.SANITIZING)
        eligible, api_sessions = self.prepare_sessions(sessions, options)
        result.sessions_filtered = len(sessions) - len(eligible)
        result.sessions_prepared = len(api_sessions)
        if not api_sessions:
            result.enter(SyncState.DONE)
            return

        if options.dry:
            logger.info("Dry run - no data sent")
            result.enter(SyncState.DRY_RUN_EXIT)
            return

        result.enter(SyncState.UPLOADING)
        result.summary = self.upload(api_sessions)

        result.enter(SyncState.PERSISTING_STATE)
        result.boundary = self.update_sync_state(eligible, options)

        result.enter(SyncState.DONE)
        logger.info(
            "Uploaded %d session(s): %d created, %d duplicates",
            len(api_sessions),
            result.summary.created,
            result.summary.duplicates,
        )

    def authenticate(self) -> str:
        """Return the stored token.

        Raises:
            AuthError: If no token is stored.
        """
        token = self.store.get_token()
        if not token:
            raise AuthError("No authentication token found. Run `vibesync config set-token` first.")
        return token

    def determine_since(self, options: SyncOptions) -> datetime | None:
        """Lower time bound for loading.

        Hook runs for a project resume from its newest synced timestamp, or
        look back 30 days on the first run. Manual runs load everything.
        """
        if options.hook_trigger and options.project_dir:
            boundary = self.store.get_project_sync(self.reader.project_key(options.project_dir))
            if boundary is not None and boundary.newest_synced_timestamp is not None:
                return boundary.newest_synced_timestamp
            return self._now() - timedelta(days=LOOKBACK_DAYS)
        return None

    def load_sessions(self, options: SyncOptions) -> list[Session]:
        """Read the candidate sessions for this run.

        ``all_projects`` takes precedence over ``project_dir``, so a global
        hook uploads every project no matter where it fired.
        """
        if options.selected_sessions:
            return self.reader.read_selected(options.selected_sessions)

        if options.all_projects:
            return self.reader.read_sessions(since=None)

        since = self.determine_since(options)

        if options.project_dir and options.project_dir.strip():
            project_path = self.reader.resolve_project_path(options.project_dir)
            if project_path is None:
                logger.warning("Invalid project directory provided: %s", options.project_dir)
                return []
            return self.reader.read_sessions(since=since, project_path=project_path)

        cwd = options.cwd or os.getcwd()
        return [s for s in self.reader.read_sessions(since=since) if self.reader.in_directory(s, cwd)]

    def prepare_sessions(
        self, sessions: list[Session], options: SyncOptions
    ) -> tuple[list[Session], list[ApiSession]]:
        """Drop short sessions and sanitize the rest.

        Returns:
            The sessions kept and their upload shapes, in the same order.

        Raises:
            SessionValidationError: If every session was too short and this
                is not an initial sync.
        """
        eligible: list[Session] = []
        for session in sessions:
            if session.duration < MIN_DURATION_SECONDS:
                logger.debug(
                    "Filtering out short session (%ds < %ds) from %s",
                    session.duration,
                    MIN_DURATION_SECONDS,
                    session.project_path,
                )
                continue
            eligible.append(session)

        filtered = len(sessions) - len(eligible)
        if filtered:
            logger.info("Filtered out %d session(s) shorter than 4 minutes", filtered)
            if not eligible:
                if options.initial_sync:
                    logger.info("No sessions longer than 4 minutes found for initial sync")
                    return [], []
                raise SessionValidationError(
                    f"All {filtered} session(s) were shorter than 4 minutes. "
                    "Sessions must be at least 4 minutes long to upload."
                )

        return eligible, [to_api_session(s, self.sanitizer) for s in eligible]

    def upload(self, api_sessions: list[ApiSession]) -> UploadSummary:
        """Upload sessions batch by batch, pausing briefly between batches."""
        batches = build_batches(api_sessions)
        results: list[dict[str, Any]] = []
        uploaded = 0
        size_kb = 0.0

        for index, batch in enumerate(batches):
            payload_kb = len(_compact_json(batch.to_wire()).encode("utf-8")) / 1024
            logger.debug(
                "Uploading batch %d of %d with %d sessions (%.2f KB)",
                batch.batch_number,
                batch.total_batches,
                len(batch.sessions),
                payload_kb,
            )
            results.append(self._upload_with_retry(batch))

            uploaded += len(batch.sessions)
            size_kb += payload_kb
            if self.on_progress is not None:
                self.on_progress(uploaded, len(api_sessions), size_kb)

            if index < len(batches) - 1:
                self._sleep(BATCH_DELAY)

        return merge_results(results)

    def _upload_with_retry(self, batch: UploadBatch) -> dict[str, Any]:
        attempt = 0
        while True:
            try:
                return self.transport.upload_batch(batch)
            except Exception as e:
                if attempt >= MAX_RETRIES or not is_retryable(e):
                    raise
                attempt += 1
                logger.debug("Network error, retrying (%d/%d): %s", attempt, MAX_RETRIES, e)
                self._sleep(RETRY_DELAY * attempt)

    def update_sync_state(self, sessions: list[Session], options: SyncOptions) -> SyncBoundary | None:
        """Record what was uploaded.

        Returns:
            The merged project boundary for project-scoped runs, else None.
        """
        if not sessions:
            return None

        cwd_name = parse_project_name(options.cwd or os.getcwd())

        if options.all_projects:
            self.store.set_last_sync_summary("all projects")
            return None

        if options.project_dir:
            timestamps = [s.timestamp for s in sessions]
            boundary = self.store.update_project_sync_boundaries(
                self.reader.project_key(options.project_dir),
                min(timestamps),
                max(timestamps),
                project_name=cwd_name,
                session_count=len(sessions),
            )
            self.store.set_last_sync_summary(cwd_name)
            return boundary

        self.store.set_last_sync_summary(cwd_name)
        return None


class HookSyncOrchestrator:
    """Runs a sync from an editor hook: silent, and never concurrently."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        lock: HookLock,
        hook_log_path: Path | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.lock = lock
        self._hook_log_path = hook_log_path

    def execute(self, options: SyncOptions) -> SyncResult:
        """Run the sync behind the hook lock. Never raises."""
        if options.test:
            logger.info("Hook test successful")
            result = SyncResult(skipped=True)
            result.enter(SyncState.DONE)
            return result

        if not self.lock.acquire():
            log_hook_error(
                "Lock acquisition", "Another hook execution is already in progress", self._hook_log_path
            )
            logger.debug("Skipping hook execution - already running")
            result = SyncResult(skipped=True)
            result.enter(SyncState.DONE)
            return result

        try:
            return self.orchestrator.execute(replace(options, silent=True))
        except Exception as e:
            log_hook_error("Hook send", e, self._hook_log_path)
            logger.error("Failed to execute hook send: %s", e)
            result = SyncResult(error=e)
            result.enter(SyncState.ERROR)
            return result
        finally:
            self.lock.release()
