"""Side-channel log for hook-triggered runs.

Hooks run detached from any terminal, so their failures are appended to
~/.vibesync/hooks.log where ``vibesync hooks-log`` can show them later.
"""

from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from pathlib import Path

from vibesync.config import get_app_dir

logger = logging.getLogger(__name__)

NO_LOGS_MESSAGE = "No hook logs found."


def get_hook_log_path() -> Path:
    """Get the path to the hook log file."""
    return get_app_dir() / "hooks.log"


def log_hook_error(context: str, error: BaseException | str, log_path: Path | None = None) -> None:
    """Append an error entry to the hook log.

    Each entry is ``[<iso timestamp>] <context>: <message>``, followed by the
    traceback (if any) and an 80-character ``=`` rule. Failing to write is
    logged and otherwise ignored.

    Args:
        context: Where the error happened (e.g. 'Upload sessions').
        error: The exception, or a plain message.
        log_path: Log file to append to. Defaults to ~/.vibesync/hooks.log.
    """
    path = log_path or get_hook_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()

    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    else:
        message = str(error)
        stack = ""

    entry = f"[{timestamp}] {context}: {message}\n{stack}\n{'=' * 80}\n"

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(entry)
        logger.debug("Hook error logged: %s", context)
    except OSError as e:
        logger.error("Failed to write hook error log: %s", e)


def read_hook_log(lines: int = 50, log_path: Path | None = None) -> str:
    """Read the last ``lines`` lines of the hook log.

    Returns:
        The log tail, or ``NO_LOGS_MESSAGE`` when there is no log.
    """
    path = log_path or get_hook_log_path()
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        return NO_LOGS_MESSAGE
    return "\n".join(content.split("\n")[-lines:])


def clear_hook_log(log_path: Path | None = None) -> bool:
    """Delete the hook log. Returns False if there was nothing to delete."""
    path = log_path or get_hook_log_path()
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True
