from __future__ import annotations

import re
from typing import Iterable

from .cjk import TEXT_SELECTION_SPLITTER
from .errors import ConfigError, OutOfRangeError
from .model import LogicalPosition
from .normalize import NormalizedChapter

Range = tuple[LogicalPosition, LogicalPosition]


def text_between(chapter: NormalizedChapter, start: LogicalPosition, end: LogicalPosition) -> str:
    """Text of the half-open range [start, end) inside one chapter; blocks join with newlines."""
    if start.chapter_index != chapter.index or end.chapter_index != chapter.index:
        raise OutOfRangeError("Selection must stay inside one chapter")
    if end < start:
        start, end = end, start
    parts: list[str] = []
    for block in chapter.blocks:
        if block.block_index < start.block_index or block.block_index > end.block_index:
            continue
        lo = start.char_offset if block.block_index == start.block_index else 0
        hi = end.char_offset if block.block_index == end.block_index else len(block.content)
        parts.append(block.content[max(lo, 0) : max(hi, 0)])
    return "\n".join(parts)


def word_at(chapter: NormalizedChapter, position: LogicalPosition) -> Range | None:
    """Range of the word around a position; a splitter character selects itself."""
    block = chapter.retained(position.block_index)
    if block is None or not 0 <= position.char_offset < len(block.content):
        return None
    text = block.content
    offset = position.char_offset
    if text[offset] in TEXT_SELECTION_SPLITTER:
        lo, hi = offset, offset + 1
    else:
        lo = offset
        while lo > 0 and text[lo - 1] not in TEXT_SELECTION_SPLITTER:
            lo -= 1
        hi = offset + 1
        while hi < len(text) and text[hi] not in TEXT_SELECTION_SPLITTER:
            hi += 1
    return (
        LogicalPosition(chapter.index, block.block_index, lo),
        LogicalPosition(chapter.index, block.block_index, hi),
    )


def search(chapters: Iterable[NormalizedChapter], pattern: str | re.Pattern[str]) -> list[Range]:
    if isinstance(pattern, str):
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            raise ConfigError(f"Invalid search pattern {pattern!r}: {exc}") from exc
    else:
        regex = pattern
    found: list[Range] = []
    for chapter in chapters:
        for block in chapter.blocks:
            for match in regex.finditer(block.content):
                if match.start() == match.end():
                    continue
                found.append(
                    (
                        LogicalPosition(chapter.index, block.block_index, match.start()),
                        LogicalPosition(chapter.index, block.block_index, match.end()),
                    )
                )
    return found
