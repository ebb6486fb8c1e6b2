from __future__ import annotations

from pathlib import Path


class ReaderError(Exception):
    """Base class for every error raised by the reading core."""


class FormatError(ReaderError, ValueError):
    """Raised when a book file is malformed, unsupported or empty."""

    def __init__(self, message: str, path: str | Path | None = None) -> None:
        self.path = str(path) if path is not None else None
        if self.path:
            message = f"{message}: {self.path}"
        super().__init__(message)


class ConfigError(ReaderError, ValueError):
    """Raised when a configuration cannot produce a usable layout."""


class NotReadyError(ReaderError, RuntimeError):
    """Raised when a chapter's page index is being recomputed."""

    def __init__(self, chapter_index: int) -> None:
        self.chapter_index = chapter_index
        super().__init__(f"Chapter {chapter_index} is being laid out")


class OutOfRangeError(ReaderError, IndexError):
    """Raised when a chapter, page or line number is beyond bounds."""


class LayoutCancelled(ReaderError, RuntimeError):
    """Raised inside a layout pass that was superseded by a newer configuration."""
