"""Deterministic placement of daily notes in a storage backend.

Layout::

    {base}/
    ├── Daily/
    │   └── 2026/
    │       └── 02-February/
    │           └── 2026-02-23.md
    └── README.md
"""

from __future__ import annotations

import logging
from datetime import date

from src.services.storage import NoteStorage
from src.wearables.base import FormattedNote

logger = logging.getLogger("whoop_sync.wearables.sync.files")

_MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def note_directory(day: date, base: str) -> str:
    return f"{base.rstrip('/')}/Daily/{day.year}/{day.month:02d}-{_MONTH_NAMES[day.month - 1]}"


def note_path(day: date, base: str) -> str:
    """Return ``{base}/Daily/{YYYY}/{MM}-{MonthName}/{YYYY}-{MM}-{DD}.md``."""
    return f"{note_directory(day, base)}/{day.isoformat()}.md"


class FileManager:
    """Writes notes and the README under one base folder."""

    def __init__(self, storage: NoteStorage, base_path: str) -> None:
        self.storage = storage
        self.base_path = base_path.rstrip("/") or "/"
        logger.debug("FileManager using %s storage at %s", storage.NAME, self.base_path)

    def build_note(self, day: date, content: str) -> FormattedNote:
        return FormattedNote(date=day, path=note_path(day, self.base_path), content=content)

    async def save_note(self, note: FormattedNote) -> str:
        """Create the note's folders if needed and write (overwrite) it.

        Returns:
            The path written.

        Raises:
            StorageError: If a folder or the file cannot be written.
        """
        await self.storage.ensure_directory(note_directory(note.date, self.base_path))
        await self.storage.write_file(note.path, note.content)
        logger.info("Saved note %s", note.path)
        return note.path

    async def save_readme(self, content: str) -> str:
        path = f"{self.base_path.rstrip('/')}/README.md"
        await self.storage.ensure_directory(self.base_path)
        await self.storage.write_file(path, content)
        logger.info("Updated %s", path)
        return path
