from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from .errors import OutOfRangeError
from .model import LogicalPosition, Page, PageRef
from .normalize import NormalizedChapter


@dataclass(frozen=True)
class _LineEntry:
    block_index: int
    start: int
    length: int
    page_number: int
    line_index: int


class PageIndex:
    """
    Bidirectional map between logical positions and page coordinates for one
    laid-out chapter. Built once from a full layout pass and never patched.
    """

    def __init__(self, chapter: NormalizedChapter, pages: tuple[Page, ...]) -> None:
        self.chapter = chapter
        self.pages = pages
        self._entries: list[_LineEntry] = []
        for page in pages:
            for line_index, line in enumerate(page.lines):
                self._entries.append(
                    _LineEntry(
                        block_index=line.block_index,
                        start=line.start,
                        length=len(line.text),
                        page_number=page.page_number,
                        line_index=line_index,
                    )
                )
        self._keys = [(entry.block_index, entry.start) for entry in self._entries]

    @property
    def chapter_index(self) -> int:
        return self.chapter.index

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def page(self, page_number: int) -> Page:
        if not 0 <= page_number < len(self.pages):
            raise OutOfRangeError(
                f"Page {page_number} out of range for chapter {self.chapter_index} ({len(self.pages)} pages)"
            )
        return self.pages[page_number]

    def resolve(self, position: LogicalPosition) -> PageRef:
        """
        Page coordinates of a logical position. Positions on blocks removed by
        normalization move to the start of the nearest retained successor.
        """
        if position.chapter_index != self.chapter_index:
            raise OutOfRangeError(
                f"Position in chapter {position.chapter_index} resolved against chapter {self.chapter_index}"
            )
        slot = self.chapter.successor(position.block_index)
        if slot is None or not self._entries:
            return PageRef(self.chapter_index, 0, 0, 0)
        block = self.chapter.blocks[slot]
        if block.block_index == position.block_index:
            offset = max(0, position.char_offset)
        elif block.block_index > position.block_index:
            offset = 0
        else:
            # Past the last retained block: land on its final character.
            offset = len(block.content)
        pos = bisect_right(self._keys, (block.block_index, offset)) - 1
        entry = self._entries[max(pos, 0)]
        within = min(max(offset - entry.start, 0), max(entry.length - 1, 0))
        return PageRef(self.chapter_index, entry.page_number, entry.line_index, within)

    def locate(self, page_number: int) -> LogicalPosition:
        """Logical position of the first character of a page."""
        page = self.page(page_number)
        if not page.lines:
            first = self.chapter.blocks[0].block_index if self.chapter.blocks else 0
            return LogicalPosition(self.chapter_index, first, 0)
        line = page.lines[0]
        return LogicalPosition(self.chapter_index, line.block_index, line.start)

    def position_at(self, page_number: int, line_index: int, offset: int) -> LogicalPosition:
        page = self.page(page_number)
        if not page.lines:
            return self.locate(page_number)
        if not 0 <= line_index < len(page.lines):
            raise OutOfRangeError(f"Line {line_index} out of range on page {page_number}")
        line = page.lines[line_index]
        within = min(max(offset, 0), max(len(line.text) - 1, 0))
        return LogicalPosition(self.chapter_index, line.block_index, line.start + within)
