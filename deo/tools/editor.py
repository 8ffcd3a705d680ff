"""Editing surfaces that insert_code can write into."""

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class EditTarget(Protocol):
    """An active editable document with a cursor position."""

    def insert(self, text: str) -> None:
        """Insert text at the cursor and move the cursor past it."""
        ...

    def describe(self) -> str:
        """Short label for progress messages."""
        ...


class BufferEditTarget:
    """In-memory document with a cursor."""

    def __init__(self, text: str = "", cursor: int | None = None, name: str = "buffer") -> None:
        self.text = text
        self.cursor = len(text) if cursor is None else max(0, min(cursor, len(text)))
        self.name = name

    def insert(self, text: str) -> None:
        self.text = self.text[: self.cursor] + text + self.text[self.cursor :]
        self.cursor += len(text)

    def describe(self) -> str:
        return self.name


class FileEditTarget:
    """
    A file on disk treated as an open document.

    The cursor is a character offset; when omitted it sits at the end of the
    file. Each insert rewrites the file in full.
    """

    def __init__(self, path: Path, cursor: int | None = None) -> None:
        self.path = Path(path)
        self.cursor = cursor

    def insert(self, text: str) -> None:
        current = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        cursor = len(current) if self.cursor is None else max(0, min(self.cursor, len(current)))
        data = (current[:cursor] + text + current[cursor:]).encode("utf-8")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(data)
        self.cursor = cursor + len(text)
        logger.debug(f"Inserted {len(text)} chars into {self.path} at {cursor}")

    def describe(self) -> str:
        return str(self.path)
