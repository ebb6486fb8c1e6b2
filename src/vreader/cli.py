from __future__ import annotations

import argparse
import sys
import tomllib
from importlib import metadata
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import ReaderConfig, load_config
from .errors import ReaderError
from .logging_utils import set_debug_logging
from .model import Line, Orientation, Page
from .session import ReadingSession, open_book

COMMANDS = ("info", "page", "search", "toc")


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("vreader")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"vreader {__version__}",
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("book", help="Path to an .epub, .pdb/.updb, .txt or .html book")
    parser.add_argument(
        "--config",
        help="TOML file with a [reader] table; command line options override it",
    )
    parser.add_argument(
        "--filter-chapter",
        help="Hide chapters whose title matches this regular expression",
    )
    parser.add_argument(
        "--strip-empty-lines",
        action="store_true",
        default=None,
        help="Drop empty-line blocks before layout",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print layout scheduling details to stderr",
    )


def _add_layout_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--width", type=float, help="Viewport width in pixels")
    parser.add_argument("--height", type=float, help="Viewport height in pixels")
    parser.add_argument(
        "-o",
        "--orientation",
        choices=[o.value for o in Orientation],
        help="Text direction (default: vertical)",
    )
    parser.add_argument("--font-size", type=float, help="Font size in pixels")
    parser.add_argument("--line-spacing", type=float, help="Line pitch as a multiple of the font size")
    parser.add_argument(
        "--ignore-font-weight",
        action="store_true",
        default=None,
        help="Break lines with regular-weight advances even for bold text",
    )
    parser.add_argument(
        "--font",
        help="TrueType/OpenType font used for glyph advances (requires Pillow)",
    )
    parser.add_argument("--bold-font", help="Bold face of --font, used for bold text advances")
    parser.add_argument(
        "--bold-scale",
        type=float,
        help="Width factor for bold text when no bold font is given (default: 1.0)",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="vreader",
        description="Paginate EPUB, Haodoo, TXT and HTML books for vertical or horizontal reading.",
        epilog="Commands: `vreader info BOOK`, `vreader page BOOK -c N -p N`, `vreader search BOOK PATTERN`, `vreader toc BOOK`.",
    )
    _add_version_flag(ap)
    return ap


def build_info_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vreader info", description="Show book metadata and chapters.")
    _add_version_flag(ap)
    _add_common_arguments(ap)
    _add_layout_arguments(ap)
    ap.add_argument(
        "--pages",
        action="store_true",
        help="Lay out every chapter and list its page count",
    )
    return ap


def build_page_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vreader page", description="Render one laid-out page as text.")
    _add_version_flag(ap)
    _add_common_arguments(ap)
    _add_layout_arguments(ap)
    ap.add_argument("-c", "--chapter", type=int, default=0, help="Chapter index (0-based)")
    ap.add_argument("-p", "--page", type=int, default=0, help="Page number within the chapter (0-based)")
    return ap


def build_search_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vreader search", description="Find a regular expression in a book.")
    _add_version_flag(ap)
    _add_common_arguments(ap)
    ap.add_argument("pattern", help="Regular expression to look for")
    return ap


def build_toc_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vreader toc", description="List the table of contents with positions.")
    _add_version_flag(ap)
    _add_common_arguments(ap)
    return ap


def _resolve_config(args: argparse.Namespace) -> ReaderConfig:
    config = load_config(Path(args.config).expanduser()) if args.config else ReaderConfig()
    changes: dict[str, object] = {}
    if args.filter_chapter is not None:
        changes["chapter_filter"] = args.filter_chapter
    if args.strip_empty_lines is not None:
        changes["strip_empty_lines"] = True
    for name in ("font_size", "line_spacing", "ignore_font_weight", "bold_scale"):
        value = getattr(args, name, None)
        if value is not None:
            changes[name] = value
    orientation = getattr(args, "orientation", None)
    if orientation is not None:
        changes["orientation"] = Orientation(orientation)
    if changes:
        config = config.with_options(**changes)
    width = getattr(args, "width", None)
    height = getattr(args, "height", None)
    if width is not None or height is not None:
        viewport = config.layout.viewport
        config = config.with_viewport(
            width if width is not None else viewport.width,
            height if height is not None else viewport.height,
        )
    return config


def _open(args: argparse.Namespace) -> ReadingSession:
    set_debug_logging(bool(args.debug))
    book_path = Path(args.book).expanduser()
    if not book_path.is_file():
        raise SystemExit(f"Book not found: {book_path}")
    try:
        config = _resolve_config(args)
        return open_book(
            book_path,
            config,
            font_path=getattr(args, "font", None),
            bold_font_path=getattr(args, "bold_font", None),
        )
    except ReaderError as exc:
        raise SystemExit(str(exc)) from exc


def _line_display(line: Line) -> str:
    return "".join(run.display for run in line.runs)


def render_page(page: Page) -> str:
    """Plain-text picture of a page; vertical columns are printed right to left."""
    if page.orientation is Orientation.HORIZONTAL:
        return "\n".join(_line_display(line) for line in page.lines)
    columns = [_line_display(line) for line in page.lines]
    height = max((len(column) for column in columns), default=0)
    rows = []
    for row in range(height):
        cells = [column[row] if row < len(column) else "　" for column in reversed(columns)]
        rows.append(" ".join(cells).rstrip())
    return "\n".join(rows)


def _run_info(args: argparse.Namespace) -> int:
    console = Console()
    with _open(args) as session:
        document = session.document
        console.print(f"[bold]{escape(document.title)}[/bold]")
        if document.author:
            console.print(f"Author: {escape(document.author)}")
        console.print(f"Format: {document.source_format.value}  ID: {document.id}")
        table = Table(show_header=True, header_style="bold")
        table.add_column("#", justify="right")
        table.add_column("Title")
        table.add_column("Blocks", justify="right")
        if args.pages:
            table.add_column("Pages", justify="right")
            session.prefetch()
        try:
            for entry in session.chapters():
                row = [str(entry.index), escape(entry.title), str(session.normalized_chapter(entry.index).block_count)]
                if args.pages:
                    row.append(str(session.page_count(entry.index)))
                table.add_row(*row)
            total = session.total_pages() if args.pages else None
        except ReaderError as exc:
            raise SystemExit(str(exc)) from exc
        console.print(table)
        if total is not None:
            console.print(f"Total pages: {total}")
    return 0


def _run_page(args: argparse.Namespace) -> int:
    console = Console()
    with _open(args) as session:
        try:
            page = session.page(args.chapter, args.page)
            total = session.page_count(args.chapter)
            anchor = session.locate(args.chapter, args.page)
        except ReaderError as exc:
            raise SystemExit(str(exc)) from exc
        title = session.document.chapter(args.chapter).title
        console.print(f"[bold]{escape(title)}[/bold] [dim]page {args.page + 1}/{total}[/dim]")
        console.print(render_page(page), markup=False, highlight=False)
        console.print(
            f"[dim]starts at block {anchor.block_index}, offset {anchor.char_offset}[/dim]"
        )
    return 0


def _run_search(args: argparse.Namespace) -> int:
    console = Console()
    with _open(args) as session:
        try:
            matches = session.search(args.pattern)
        except ReaderError as exc:
            raise SystemExit(str(exc)) from exc
        if not matches:
            console.print("No matches.")
            return 1
        table = Table(show_header=True, header_style="bold")
        table.add_column("Chapter", justify="right")
        table.add_column("Block", justify="right")
        table.add_column("Offset", justify="right")
        table.add_column("Match")
        for start, end in matches:
            table.add_row(
                str(start.chapter_index),
                str(start.block_index),
                str(start.char_offset),
                escape(session.text_between(start, end)),
            )
        console.print(table)
    return 0


def _run_toc(args: argparse.Namespace) -> int:
    console = Console()
    with _open(args) as session:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Title")
        table.add_column("Chapter", justify="right")
        table.add_column("Block", justify="right")
        table.add_column("Offset", justify="right")
        for entry in session.toc():
            position = entry.position
            table.add_row(
                escape("  " * entry.level + entry.title),
                str(position.chapter_index),
                str(position.block_index),
                str(position.char_offset),
            )
        console.print(table)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "info":
        return _run_info(build_info_parser().parse_args(argv[1:]))
    if argv and argv[0] == "page":
        return _run_page(build_page_parser().parse_args(argv[1:]))
    if argv and argv[0] == "search":
        return _run_search(build_search_parser().parse_args(argv[1:]))
    if argv and argv[0] == "toc":
        return _run_toc(build_toc_parser().parse_args(argv[1:]))

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    raise SystemExit(f"Unknown command: {argv[0]}. Choose from: {', '.join(COMMANDS)}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
