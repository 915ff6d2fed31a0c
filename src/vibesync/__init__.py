"""
vibesync - AI coding session sync

Read Claude Code and Cursor session logs, strip sensitive content, and upload
the sanitized sessions in batches to the vibe-log analytics service.
"""

__version__ = "0.1.0"

from vibesync.errors import (
    AuthError,
    ClientError,
    NetworkError,
    RateLimitedError,
    ServerError,
    SessionValidationError,
    SourceNotFoundError,
    VibesyncError,
)
from vibesync.models import (
    ApiSession,
    Message,
    SanitizedMessage,
    Session,
    SourceTool,
    SyncBoundary,
    UploadBatch,
    UploadSummary,
)
from vibesync.readers import ClaudeCodeReader, CursorReader, SessionReader, registry
from vibesync.security import MessageSanitizer
from vibesync.storage import StateStore
from vibesync.sync import HookSyncOrchestrator, SyncOptions, SyncOrchestrator, SyncResult

__all__ = [
    "__version__",
    # Models
    "Message",
    "Session",
    "SanitizedMessage",
    "SourceTool",
    "SyncBoundary",
    "ApiSession",
    "UploadBatch",
    "UploadSummary",
    # Errors
    "VibesyncError",
    "SourceNotFoundError",
    "SessionValidationError",
    "AuthError",
    "NetworkError",
    "ServerError",
    "ClientError",
    "RateLimitedError",
    # Readers
    "SessionReader",
    "ClaudeCodeReader",
    "CursorReader",
    "registry",
    # Pipeline
    "MessageSanitizer",
    "StateStore",
    "SyncOptions",
    "SyncOrchestrator",
    "HookSyncOrchestrator",
    "SyncResult",
]
