from .config import LayoutConfig, NormalizeConfig, ReaderConfig, load_config
from .errors import ConfigError, FormatError, NotReadyError, OutOfRangeError, ReaderError
from .formats import parse
from .layout import LayoutEngine, layout_chapter
from .metrics import FontMetrics, MonospaceMetrics, PillowMetrics
from .model import (
    BlockKind,
    Chapter,
    Document,
    LogicalPosition,
    Orientation,
    Page,
    PageRef,
    SourceFormat,
    TextBlock,
    TocEntry,
    Viewport,
)
from .session import ChapterState, DocumentHandle, ReadingSession, open_book

open = open_book

__all__ = [
    "open",
    "open_book",
    "parse",
    "ReadingSession",
    "DocumentHandle",
    "ChapterState",
    "ReaderConfig",
    "LayoutConfig",
    "NormalizeConfig",
    "load_config",
    "LayoutEngine",
    "layout_chapter",
    "FontMetrics",
    "MonospaceMetrics",
    "PillowMetrics",
    "Document",
    "Chapter",
    "TextBlock",
    "TocEntry",
    "BlockKind",
    "SourceFormat",
    "Orientation",
    "Viewport",
    "Page",
    "PageRef",
    "LogicalPosition",
    "ReaderError",
    "FormatError",
    "ConfigError",
    "NotReadyError",
    "OutOfRangeError",
]
