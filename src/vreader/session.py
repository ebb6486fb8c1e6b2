from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

from .config import LayoutConfig, ReaderConfig
from .errors import LayoutCancelled, NotReadyError, OutOfRangeError
from .formats import BookSource, parse
from .index import PageIndex
from .layout import LayoutEngine
from .logging_utils import debug_log
from .metrics import FontMetrics, build_metrics
from .model import Document, LogicalPosition, Page, PageRef, SourceFormat, TocEntry
from .normalize import ChapterEntry, NormalizedChapter, normalize, visible_chapters
from .selection import Range, search, text_between, word_at

MetricsFactory = Callable[[float], FontMetrics]


def _metrics_key(config: ReaderConfig) -> tuple[float, float]:
    return (config.layout.font_size, config.layout.bold_scale)


class ChapterState(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    COMPUTING = "computing"
    FAILED = "failed"


@dataclass
class _ChapterSlot:
    index: int
    state: ChapterState = ChapterState.STALE
    generation: int = 0
    running: bool = False
    page_index: PageIndex | None = None
    error: Exception | None = None
    cond: threading.Condition = field(default_factory=threading.Condition)


class ReadingSession:
    """
    An opened book: the parsed Document plus the per-chapter layout caches
    derived from the current configuration snapshot.

    Each chapter moves through Stale -> Computing -> Fresh. Configuration
    changes that affect layout push chapters back to Stale; a pass running
    for an outdated configuration is cancelled and recomputed by the same
    worker. Queries only ever read Fresh chapters: they wait for the pass
    (default) or raise NotReadyError when called with wait=False.
    """

    def __init__(
        self,
        document: Document,
        config: ReaderConfig | None = None,
        *,
        font_path: str | Path | None = None,
        bold_font_path: str | Path | None = None,
        metrics_factory: MetricsFactory | None = None,
        max_workers: int = 2,
    ) -> None:
        self.document = document
        self._config = config or ReaderConfig()
        self._font_path = font_path
        self._bold_font_path = bold_font_path
        self._metrics_factory = metrics_factory
        self._config_lock = threading.Lock()
        self._normalized = normalize(document, self._config.normalize)
        self._engine = self._build_engine(self._config.layout)
        self._slots = [_ChapterSlot(index=i) for i in range(len(document.chapters))]
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="vreader-layout")
        self._closed = False

    def _build_engine(self, layout: LayoutConfig) -> LayoutEngine:
        if self._metrics_factory is not None:
            return LayoutEngine(self._metrics_factory(layout.font_size))
        metrics = build_metrics(
            layout.font_size,
            self._font_path,
            bold_font_path=self._bold_font_path,
            bold_scale=layout.bold_scale,
        )
        return LayoutEngine(metrics)

    def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "ReadingSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def config(self) -> ReaderConfig:
        with self._config_lock:
            return self._config

    def configure(self, config: ReaderConfig) -> None:
        """Install a new settings snapshot, invalidating whatever it affects."""
        with self._config_lock:
            old = self._config
            if config == old:
                return
            normalized = self._normalized
            if config.normalize_key() != old.normalize_key():
                normalized = normalize(self.document, config.normalize)
            engine = self._engine
            if _metrics_key(config) != _metrics_key(old):
                engine = self._build_engine(config.layout)
            # Every slot is Stale before the new snapshot becomes visible.
            if config.layout_key() != old.layout_key():
                debug_log("Layout configuration changed; invalidating all chapters")
                for slot in self._slots:
                    self._invalidate(slot)
            self._normalized = normalized
            self._engine = engine
            self._config = config

    def reflow(self, config: ReaderConfig, chapter_index: int, page_number: int) -> PageRef:
        """Apply a new configuration and return where the current page's first character landed."""
        anchor = self.locate(chapter_index, page_number)
        self.configure(config)
        return self.restore(anchor)

    def _slot(self, chapter_index: int) -> _ChapterSlot:
        if not 0 <= chapter_index < len(self._slots):
            raise OutOfRangeError(
                f"Chapter {chapter_index} out of range ({len(self._slots)} chapters)"
            )
        return self._slots[chapter_index]

    def state(self, chapter_index: int) -> ChapterState:
        slot = self._slot(chapter_index)
        with slot.cond:
            return slot.state

    def _invalidate(self, slot: _ChapterSlot) -> None:
        with slot.cond:
            slot.generation += 1
            slot.page_index = None
            slot.error = None
            slot.state = ChapterState.STALE
            slot.cond.notify_all()

    def _snapshot(self, chapter_index: int) -> tuple[ReaderConfig, NormalizedChapter, LayoutEngine]:
        with self._config_lock:
            return self._config, self._normalized[chapter_index], self._engine

    def _relayout(self, slot: _ChapterSlot) -> None:
        while True:
            with slot.cond:
                if slot.running or slot.state is not ChapterState.STALE:
                    return
                slot.running = True
                slot.state = ChapterState.COMPUTING
                generation = slot.generation
            config, chapter, engine = self._snapshot(slot.index)
            page_index: PageIndex | None = None
            error: Exception | None = None
            try:
                pages = engine.layout(
                    chapter,
                    config.layout.viewport,
                    config.layout.orientation,
                    config.layout.ignore_font_weight,
                    line_spacing=config.layout.line_spacing,
                    cancelled=lambda: slot.generation != generation,
                )
                page_index = PageIndex(chapter, pages)
            except LayoutCancelled:
                pass
            except Exception as exc:
                error = exc
            with slot.cond:
                slot.running = False
                if slot.generation != generation:
                    debug_log(f"Discarding superseded layout of chapter {slot.index}")
                    slot.cond.notify_all()
                    continue
                if error is not None:
                    debug_log(f"Layout of chapter {slot.index} failed: {error}")
                    slot.state = ChapterState.FAILED
                    slot.error = error
                else:
                    slot.state = ChapterState.FRESH
                    slot.page_index = page_index
                slot.cond.notify_all()
                return

    def _submit(self, slot: _ChapterSlot) -> Future[None] | None:
        if self._closed:
            return None
        debug_log(f"Scheduling layout of chapter {slot.index}")
        return self._executor.submit(self._relayout, slot)

    def _ensure_fresh(self, chapter_index: int, wait: bool) -> PageIndex:
        slot = self._slot(chapter_index)
        while True:
            with slot.cond:
                if slot.state is ChapterState.FRESH and slot.page_index is not None:
                    return slot.page_index
                if slot.state is ChapterState.FAILED and slot.error is not None:
                    raise slot.error
                if not wait:
                    if not slot.running:
                        self._submit(slot)
                    raise NotReadyError(chapter_index)
                if slot.running:
                    slot.cond.wait()
                    continue
            self._relayout(slot)

    def prefetch(self, chapter_indices: Iterable[int] | None = None) -> list[Future[None]]:
        """Lay out chapters on background workers."""
        indices = range(len(self._slots)) if chapter_indices is None else chapter_indices
        futures: list[Future[None]] = []
        for index in indices:
            slot = self._slot(index)
            with slot.cond:
                pending = slot.state is ChapterState.STALE and not slot.running
            if pending:
                future = self._submit(slot)
                if future is not None:
                    futures.append(future)
        return futures

    @property
    def chapter_count(self) -> int:
        return len(self._slots)

    def chapters(self) -> list[ChapterEntry]:
        """User-visible chapter list after title filtering."""
        with self._config_lock:
            normalized = self._normalized
        return visible_chapters(normalized)

    def toc(self) -> list[TocEntry]:
        """Navigation entries of the book, or one entry per visible chapter when it has none."""
        if self.document.toc:
            return list(self.document.toc)
        return [TocEntry(entry.title, LogicalPosition(entry.index, 0)) for entry in self.chapters()]

    def link_position(self, chapter_index: int, href: str) -> LogicalPosition | None:
        self._slot(chapter_index)
        return self.document.link_position(chapter_index, href)

    def normalized_chapter(self, chapter_index: int) -> NormalizedChapter:
        self._slot(chapter_index)
        with self._config_lock:
            return self._normalized[chapter_index]

    def page_index(self, chapter_index: int, *, wait: bool = True) -> PageIndex:
        return self._ensure_fresh(chapter_index, wait)

    def page(self, chapter_index: int, page_number: int, *, wait: bool = True) -> Page:
        return self._ensure_fresh(chapter_index, wait).page(page_number)

    def page_count(self, chapter_index: int, *, wait: bool = True) -> int:
        return self._ensure_fresh(chapter_index, wait).page_count

    def global_page_number(self, chapter_index: int, page_number: int, *, wait: bool = True) -> int:
        index = self._ensure_fresh(chapter_index, wait)
        index.page(page_number)
        preceding = sum(self.page_count(i, wait=wait) for i in range(chapter_index))
        return preceding + page_number

    def total_pages(self, *, wait: bool = True) -> int:
        return sum(self.page_count(i, wait=wait) for i in range(len(self._slots)))

    def bookmark_position(
        self,
        chapter_index: int,
        page_number: int,
        line: int,
        offset: int,
        *,
        wait: bool = True,
    ) -> LogicalPosition:
        return self._ensure_fresh(chapter_index, wait).position_at(page_number, line, offset)

    def locate(self, chapter_index: int, page_number: int, *, wait: bool = True) -> LogicalPosition:
        return self._ensure_fresh(chapter_index, wait).locate(page_number)

    def restore(self, position: LogicalPosition, *, wait: bool = True) -> PageRef:
        return self._ensure_fresh(position.chapter_index, wait).resolve(position)

    def text_between(self, start: LogicalPosition, end: LogicalPosition) -> str:
        return text_between(self.normalized_chapter(start.chapter_index), start, end)

    def word_at(self, position: LogicalPosition) -> Range | None:
        return word_at(self.normalized_chapter(position.chapter_index), position)

    def search(self, pattern: str) -> list[Range]:
        with self._config_lock:
            normalized = self._normalized
        return search(normalized, pattern)


DocumentHandle = ReadingSession


def open_book(
    source: BookSource,
    config: ReaderConfig | None = None,
    *,
    format_hint: SourceFormat | str | None = None,
    font_path: str | Path | None = None,
    bold_font_path: str | Path | None = None,
    metrics_factory: MetricsFactory | None = None,
    max_workers: int = 2,
) -> ReadingSession:
    """Parse a book and open a reading session on it; raises FormatError."""
    document = parse(source, format_hint)
    debug_log(f"Opened {document.title!r} ({document.source_format.value}, {len(document.chapters)} chapters)")
    return ReadingSession(
        document,
        config,
        font_path=font_path,
        bold_font_path=bold_font_path,
        metrics_factory=metrics_factory,
        max_workers=max_workers,
    )
