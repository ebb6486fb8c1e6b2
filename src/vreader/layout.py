from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterator

from .cjk import LINE_START_FORBIDDEN, is_wide, to_vertical
from .errors import ConfigError, LayoutCancelled
from .metrics import FontMetrics
from .model import BlockKind, GlyphRun, Line, Orientation, Page, Viewport
from .normalize import NormalizedChapter, RetainedBlock

_EPS = 1e-9

Measure = Callable[[str], float]


@dataclass
class _LaidLine:
    block_index: int
    kind: BlockKind
    start: int
    text: str
    runs: tuple[GlyphRun, ...]
    extent: float


def _segments(text: str) -> Iterator[tuple[int, int, str]]:
    """Split text into break units: single wide chars, Latin words and whitespace runs."""
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if is_wide(ch):
            yield i, i + 1, "wide"
            i += 1
            continue
        j = i + 1
        if ch.isspace():
            while j < n and text[j].isspace() and not is_wide(text[j]):
                j += 1
            yield i, j, "space"
        else:
            while j < n and not text[j].isspace() and not is_wide(text[j]):
                j += 1
            yield i, j, "word"
        i = j


def break_lines(text: str, limit: float, measure: Measure) -> list[tuple[int, int]]:
    """
    Greedy line breaking returning contiguous (start, end) spans covering text.

    Wide (CJK) characters break anywhere, Latin words only at whitespace unless
    a word alone exceeds the limit. Whitespace and closing punctuation hang
    past the limit instead of opening the next line, one glyph per line.
    """
    if not text:
        return [(0, 0)]

    def width(start: int, end: int) -> float:
        return sum(measure(ch) for ch in text[start:end])

    spans: list[tuple[int, int]] = []
    segments = list(_segments(text))
    line_start = 0
    used = 0.0
    has_content = False
    k = 0
    while k < len(segments):
        start, end, kind = segments[k]
        seg_width = width(start, end)
        if kind == "space":
            used += seg_width
            k += 1
            if used >= limit - _EPS:
                spans.append((line_start, end))
                line_start, used, has_content = end, 0.0, False
            continue
        if used + seg_width <= limit + _EPS:
            used += seg_width
            has_content = True
            k += 1
            continue
        # At most one glyph hangs; a line already past the limit breaks.
        if kind == "wide" and has_content and used <= limit + _EPS and text[start] in LINE_START_FORBIDDEN:
            used += seg_width
            k += 1
            continue
        if line_start < start:
            spans.append((line_start, start))
            line_start, used, has_content = start, 0.0, False
            continue
        if kind == "wide":
            # A single glyph wider than the line still takes a line of its own.
            used += seg_width
            has_content = True
            k += 1
            continue
        cut = start
        taken = 0.0
        while cut < end:
            advance = measure(text[cut])
            if cut > start and taken + advance > limit + _EPS:
                break
            taken += advance
            cut += 1
        spans.append((line_start, cut))
        line_start, used, has_content = cut, 0.0, False
        if cut < end:
            segments[k] = (cut, end, kind)
        else:
            k += 1
    if line_start < len(text):
        spans.append((line_start, len(text)))
    return spans


def _runs(text: str, start: int, orientation: Orientation, measure: Measure) -> tuple[tuple[GlyphRun, ...], float]:
    runs: list[GlyphRun] = []
    offset = 0.0
    i = 0
    while i < len(text):
        wide = is_wide(text[i])
        j = i + 1
        while j < len(text) and is_wide(text[j]) == wide:
            j += 1
        chunk = text[i:j]
        advance = sum(measure(ch) for ch in chunk)
        vertical = orientation is Orientation.VERTICAL
        runs.append(
            GlyphRun(
                text=chunk,
                display=to_vertical(chunk) if vertical and wide else chunk,
                char_offset=start + i,
                offset=offset,
                advance=advance,
                rotated=vertical and not wide,
            )
        )
        offset += advance
        i = j
    return tuple(runs), offset


def lines_per_page(cross: float, em: float, pitch: float) -> int:
    return int(math.floor((cross - em) / pitch + _EPS)) + 1


def layout_chapter(
    chapter: NormalizedChapter,
    viewport: Viewport,
    orientation: Orientation,
    metrics: FontMetrics,
    ignore_font_weight: bool = False,
    *,
    line_spacing: float = 1.0,
    cancelled: Callable[[], bool] | None = None,
) -> tuple[Page, ...]:
    """
    Break a normalized chapter into fixed-size pages.

    Vertical pages hold columns filled top-to-bottom and placed right-to-left;
    horizontal pages hold rows. Every retained character lands on exactly one
    line; every block starts a new line and empty blocks take a blank line.
    """
    em = metrics.em_size
    if line_spacing <= 0:
        raise ConfigError("line spacing must be positive")
    pitch = em * line_spacing
    if orientation is Orientation.VERTICAL:
        line_length, cross = viewport.height, viewport.width
    else:
        line_length, cross = viewport.width, viewport.height
    if line_length < em - _EPS or cross < em - _EPS:
        raise ConfigError(
            f"Viewport {viewport.width:g}x{viewport.height:g} is smaller than one character cell ({em:g})"
        )
    per_page = lines_per_page(cross, em, pitch)

    # Advances are memoized for this pass only.
    cache: dict[tuple[str, bool], float] = {}

    def measurer(bold: bool) -> Measure:
        def measure(ch: str) -> float:
            key = (ch, bold)
            value = cache.get(key)
            if value is None:
                value = metrics.advance(ch, orientation, bold)
                cache[key] = value
            return value

        return measure

    laid: list[_LaidLine] = []
    for block in chapter.blocks:
        if cancelled is not None and cancelled():
            raise LayoutCancelled(f"Layout of chapter {chapter.index} superseded")
        laid.extend(_layout_block(block, line_length, orientation, measurer(block.bold and not ignore_font_weight)))

    pages: list[Page] = []
    for page_number, first in enumerate(range(0, max(len(laid), 1), per_page)):
        lines: list[Line] = []
        for slot, item in enumerate(laid[first : first + per_page]):
            if orientation is Orientation.VERTICAL:
                x, y = viewport.width - slot * pitch - em, 0.0
            else:
                x, y = 0.0, slot * pitch
            lines.append(
                Line(
                    block_index=item.block_index,
                    kind=item.kind,
                    start=item.start,
                    text=item.text,
                    runs=item.runs,
                    x=x,
                    y=y,
                    extent=item.extent,
                )
            )
        pages.append(
            Page(
                chapter_index=chapter.index,
                page_number=page_number,
                orientation=orientation,
                lines=tuple(lines),
            )
        )
    return tuple(pages)


def _layout_block(block: RetainedBlock, limit: float, orientation: Orientation, measure: Measure) -> list[_LaidLine]:
    lines: list[_LaidLine] = []
    for start, end in break_lines(block.content, limit, measure):
        text = block.content[start:end]
        runs, extent = _runs(text, start, orientation, measure)
        lines.append(
            _LaidLine(
                block_index=block.block_index,
                kind=block.kind,
                start=start,
                text=text,
                runs=runs,
                extent=extent,
            )
        )
    return lines


class LayoutEngine:
    """Lays out chapters with one font metrics provider."""

    def __init__(self, metrics: FontMetrics) -> None:
        self.metrics = metrics

    def layout(
        self,
        chapter: NormalizedChapter,
        viewport: Viewport,
        orientation: Orientation,
        ignore_font_weight: bool = False,
        *,
        line_spacing: float = 1.0,
        cancelled: Callable[[], bool] | None = None,
    ) -> tuple[Page, ...]:
        return layout_chapter(
            chapter,
            viewport,
            orientation,
            self.metrics,
            ignore_font_weight,
            line_spacing=line_spacing,
            cancelled=cancelled,
        )
