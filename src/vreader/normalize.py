from __future__ import annotations

import re
from bisect import bisect_left
from dataclasses import dataclass
from typing import Iterable

from .config import NormalizeConfig
from .errors import ConfigError
from .model import BlockKind, Chapter, Document, StyleHint, TextBlock


@dataclass(frozen=True)
class RetainedBlock:
    """A block that survived normalization, addressed by its original index."""

    block_index: int
    kind: BlockKind
    content: str
    style: StyleHint | None = None

    @property
    def bold(self) -> bool:
        return self.kind is BlockKind.HEADING or bool(self.style and self.style.bold)


@dataclass(frozen=True)
class NormalizedChapter:
    index: int
    title: str
    blocks: tuple[RetainedBlock, ...]
    block_count: int
    hidden: bool = False

    @property
    def text(self) -> str:
        return "".join(block.content for block in self.blocks)

    def block_indices(self) -> list[int]:
        return [block.block_index for block in self.blocks]

    def successor(self, block_index: int) -> int | None:
        """
        Position (within `blocks`) of the nearest retained block at or after
        `block_index`; the last retained block when nothing follows, None for
        a chapter without retained blocks.
        """
        if not self.blocks:
            return None
        pos = bisect_left(self.block_indices(), block_index)
        return min(pos, len(self.blocks) - 1)

    def retained(self, block_index: int) -> RetainedBlock | None:
        indices = self.block_indices()
        pos = bisect_left(indices, block_index)
        if pos < len(indices) and indices[pos] == block_index:
            return self.blocks[pos]
        return None


@dataclass(frozen=True)
class ChapterEntry:
    index: int
    title: str


def compile_chapter_filter(pattern: str | None) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"Invalid chapter filter pattern {pattern!r}: {exc}") from exc


def _retain(blocks: Iterable[TextBlock], strip_empty_lines: bool) -> tuple[RetainedBlock, ...]:
    retained: list[RetainedBlock] = []
    for index, block in enumerate(blocks):
        if strip_empty_lines and block.kind is BlockKind.EMPTY:
            continue
        retained.append(
            RetainedBlock(
                block_index=index,
                kind=block.kind,
                content="" if block.kind is BlockKind.EMPTY else block.content,
                style=block.style,
            )
        )
    return tuple(retained)


def normalize_chapter(
    chapter: Chapter,
    config: NormalizeConfig,
    chapter_filter: re.Pattern[str] | None = None,
) -> NormalizedChapter:
    hidden = bool(chapter_filter is not None and chapter_filter.search(chapter.title))
    return NormalizedChapter(
        index=chapter.index,
        title=chapter.title,
        blocks=_retain(chapter.blocks, config.strip_empty_lines),
        block_count=len(chapter.blocks),
        hidden=hidden,
    )


def normalize(document: Document, config: NormalizeConfig) -> tuple[NormalizedChapter, ...]:
    chapter_filter = compile_chapter_filter(config.chapter_filter)
    return tuple(normalize_chapter(chapter, config, chapter_filter) for chapter in document.chapters)


def visible_chapters(chapters: Iterable[NormalizedChapter]) -> list[ChapterEntry]:
    return [ChapterEntry(index=chapter.index, title=chapter.title) for chapter in chapters if not chapter.hidden]
