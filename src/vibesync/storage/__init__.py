"""Storage layer for persisted sync state."""

from vibesync.storage.db import Database, DatabaseError
from vibesync.storage.store import StateStore

__all__ = ["Database", "DatabaseError", "StateStore"]
