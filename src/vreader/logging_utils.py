from __future__ import annotations

from rich.console import Console
from rich.markup import escape

_DEBUG_LOG = False
_console = Console(stderr=True, highlight=False)


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_enabled() -> bool:
    return _DEBUG_LOG


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        _console.print(f"[dim][vreader debug][/dim] {escape(message)}")
