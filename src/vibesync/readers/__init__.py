"""Session readers for the supported log formats."""

from vibesync.readers.base import SessionReader, SessionRef
from vibesync.readers.claude import ClaudeCodeReader
from vibesync.readers.cursor import CursorReader
from vibesync.readers.registry import ReaderRegistry, registry

# Register all readers
registry.register(ClaudeCodeReader())
registry.register(CursorReader())

__all__ = [
    "ClaudeCodeReader",
    "CursorReader",
    "ReaderRegistry",
    "SessionReader",
    "SessionRef",
    "registry",
]
