"""Note storage backends.

A backend knows how to make a directory exist and how to write a file.
Directory creation is idempotent: a directory that already exists is not an
error.  Write failures raise ``StorageError``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from src.errors import StorageError

logger = logging.getLogger("whoop_sync.storage")


class NoteStorage(ABC):
    """Abstract base class for note storage backends.

    Paths are ``/``-separated strings; each backend maps them onto its own
    namespace.
    """

    NAME: str = ""

    async def connect(self) -> None:
        """Check that the backend is reachable.  No-op by default."""

    @abstractmethod
    async def ensure_directory(self, path: str) -> None:
        """Create ``path`` and all its parents if missing."""

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        """Create or overwrite the file at ``path``."""


class LocalDiskStorage(NoteStorage):
    """Writes notes to the local filesystem (e.g. an Obsidian vault)."""

    NAME = "local"

    async def ensure_directory(self, path: str) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create directory {path}: {exc}") from exc

    async def write_file(self, path: str, content: str) -> None:
        target = Path(path)
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to write {target}: {exc}") from exc
        logger.debug("Wrote %s (%d chars)", target, len(content))
