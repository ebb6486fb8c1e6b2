from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping
from urllib.parse import unquote


class SourceFormat(str, Enum):
    EPUB = "epub"
    HAODOO = "haodoo"
    TXT = "txt"
    HTML = "html"


class BlockKind(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    EMPTY = "empty"


class Orientation(str, Enum):
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


@dataclass(frozen=True)
class StyleHint:
    """Colour and font hints a book attaches to a block."""

    color: str | None = None
    font_family: str | None = None
    bold: bool = False


@dataclass(frozen=True)
class TextBlock:
    kind: BlockKind
    content: str
    style: StyleHint | None = None

    @property
    def is_empty(self) -> bool:
        return self.kind is BlockKind.EMPTY


@dataclass(frozen=True)
class Chapter:
    index: int
    title: str
    blocks: tuple[TextBlock, ...]
    # Archive member the chapter came from, for resolving in-book links.
    source: str | None = None
    # Element id -> (block index, char offset) of the first character after it.
    anchors: Mapping[str, tuple[int, int]] = field(default_factory=dict, hash=False)

    def anchor_position(self, anchor_id: str | None) -> LogicalPosition:
        block, offset = self.anchors.get(anchor_id, (0, 0)) if anchor_id else (0, 0)
        return LogicalPosition(self.index, block, offset)


@dataclass(frozen=True)
class TocEntry:
    title: str
    position: LogicalPosition
    level: int = 0


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    author: str | None
    chapters: tuple[Chapter, ...]
    source_format: SourceFormat
    source_path: str | None = None
    toc: tuple[TocEntry, ...] = ()

    def chapter(self, index: int) -> Chapter:
        return self.chapters[index]

    def link_position(self, chapter_index: int, href: str) -> LogicalPosition | None:
        """Target of a link found in the given chapter; None for external or dangling links."""
        if "://" in href or href.startswith(("mailto:", "data:", "javascript:")):
            return None
        base, _, fragment = href.partition("#")
        origin = self.chapters[chapter_index]
        if not base:
            return origin.anchor_position(unquote(fragment))
        if origin.source is None:
            return None
        target = posixpath.normpath(posixpath.join(posixpath.dirname(origin.source), unquote(base)))
        for chapter in self.chapters:
            if chapter.source == target:
                return chapter.anchor_position(unquote(fragment))
        return None


@dataclass(frozen=True, order=True)
class LogicalPosition:
    """Layout independent address of a character inside a document."""

    chapter_index: int
    block_index: int
    char_offset: int = 0

    def as_payload(self) -> dict[str, int]:
        return {
            "chapter": self.chapter_index,
            "block": self.block_index,
            "offset": self.char_offset,
        }

    @classmethod
    def from_payload(cls, payload: object) -> "LogicalPosition | None":
        if not isinstance(payload, dict):
            return None
        values = [payload.get(key) for key in ("chapter", "block", "offset")]
        if not all(isinstance(value, int) and value >= 0 for value in values):
            return None
        return cls(*values)


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(frozen=True)
class GlyphRun:
    text: str
    display: str
    char_offset: int
    offset: float
    advance: float
    rotated: bool = False


@dataclass(frozen=True)
class Line:
    block_index: int
    kind: BlockKind
    start: int
    text: str
    runs: tuple[GlyphRun, ...]
    x: float
    y: float
    extent: float

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass(frozen=True)
class Page:
    chapter_index: int
    page_number: int
    orientation: Orientation
    lines: tuple[Line, ...]

    @property
    def text(self) -> str:
        return "".join(line.text for line in self.lines)


@dataclass(frozen=True)
class PageRef:
    chapter_index: int
    page_number: int
    line_index: int
    char_offset: int
