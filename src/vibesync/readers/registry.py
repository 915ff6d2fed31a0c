"""Reader registry for managing session readers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vibesync.readers.base import SessionReader


class ReaderRegistry:
    """Registry for managing session readers."""

    def __init__(self) -> None:
        self._readers: dict[str, SessionReader] = {}

    def register(self, reader: SessionReader) -> None:
        """Register a reader under its name, replacing any previous one."""
        self._readers[reader.name] = reader

    def get_reader(self, name: str) -> SessionReader:
        """Get a reader by name.

        Args:
            name: The reader identifier.

        Returns:
            The registered reader.

        Raises:
            KeyError: If no reader with the given name is registered.
        """
        if name not in self._readers:
            available = ", ".join(self._readers.keys()) or "none"
            raise KeyError(f"Reader '{name}' not found. Available readers: {available}")
        return self._readers[name]


# Global registry instance
registry = ReaderRegistry()
