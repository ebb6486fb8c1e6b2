"""
Haodoo (好讀) books: Palm database containers with one text record per chapter.

`.pdb` books (type/creator ``BOOKMTIT``) are Big5 encoded, `.updb` books
(``BOOKMTIU``) UTF-16LE. Record 0 is the book header::

    <8 reserved bytes> title ESC ESC ESC chapter-count ESC chapter-titles

Chapter titles are ESC separated in `.pdb` books and CR-LF separated in
`.updb` books. Records 1..count carry the chapter text, one paragraph per line.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path

from .cjk import is_blank, to_horizontal
from .errors import FormatError
from .formats import document_id
from .logging_utils import debug_log
from .model import BlockKind, Chapter, Document, SourceFormat, TextBlock

PDB_HEADER_SIZE = 78
RECORD_ENTRY_SIZE = 8
BIG5_IDENT = b"BOOKMTIT"
UNICODE_IDENT = b"BOOKMTIU"
_HEADER_RESERVED = 8


@dataclass
class _HaodooHeader:
    title: str
    chapter_count: int
    chapter_titles: list[str]


@dataclass
class _Variant:
    encoding: str
    title_separator: str


_VARIANTS = {
    BIG5_IDENT: _Variant(encoding="cp950", title_separator="\x1b"),
    UNICODE_IDENT: _Variant(encoding="utf-16-le", title_separator="\r\n"),
}


def _palm_records(data: bytes, path: str | None) -> list[bytes]:
    if len(data) < PDB_HEADER_SIZE:
        raise FormatError("Truncated Palm database header", path)
    (count,) = struct.unpack_from(">H", data, 76)
    table_end = PDB_HEADER_SIZE + count * RECORD_ENTRY_SIZE
    if count < 2 or table_end > len(data):
        raise FormatError("Palm database record list is malformed", path)
    offsets = [struct.unpack_from(">I", data, PDB_HEADER_SIZE + i * RECORD_ENTRY_SIZE)[0] for i in range(count)]
    offsets.append(len(data))
    records: list[bytes] = []
    for start, end in zip(offsets, offsets[1:]):
        if start < table_end or end < start or end > len(data):
            raise FormatError("Palm database record offsets are out of order", path)
        records.append(data[start:end])
    return records


def _decode(raw: bytes, variant: _Variant) -> str:
    text = raw.decode(variant.encoding, errors="replace")
    return to_horizontal(text.replace("\x00", ""))


def _parse_header(record: bytes, variant: _Variant, path: str | None) -> _HaodooHeader:
    body = _decode(record[_HEADER_RESERVED:], variant)
    fields = body.replace("\x1b\x1b\x1b", "\x1b").split("\x1b", 2)
    if len(fields) < 2:
        raise FormatError("Haodoo header record is malformed", path)
    title = fields[0].strip()
    try:
        chapter_count = int(fields[1].strip())
    except ValueError as exc:
        raise FormatError("Haodoo header has no chapter count", path) from exc
    titles_raw = fields[2] if len(fields) > 2 else ""
    titles = [part.strip() for part in titles_raw.split(variant.title_separator)]
    return _HaodooHeader(title=title, chapter_count=chapter_count, chapter_titles=titles)


def _chapter_blocks(text: str, title: str) -> list[TextBlock]:
    blocks: list[TextBlock] = []
    title_seen = not title
    for raw_line in text.splitlines():
        line = raw_line.strip(" \t\x1b")
        if is_blank(line):
            blocks.append(TextBlock(kind=BlockKind.EMPTY, content=""))
            continue
        if not title_seen and title in line:
            blocks.append(TextBlock(kind=BlockKind.HEADING, content=line))
            title_seen = True
            continue
        blocks.append(TextBlock(kind=BlockKind.PARAGRAPH, content=line))
    # Drop blank lines left at either end of the record.
    while blocks and blocks[-1].kind is BlockKind.EMPTY:
        blocks.pop()
    while blocks and blocks[0].kind is BlockKind.EMPTY:
        blocks.pop(0)
    return blocks


def parse_haodoo(data: bytes, path: str | None = None) -> Document:
    ident = data[60:68]
    variant = _VARIANTS.get(ident)
    if variant is None:
        raise FormatError("Not a Haodoo PDB/uPDB book", path)
    records = _palm_records(data, path)
    header = _parse_header(records[0], variant, path)
    if header.chapter_count <= 0:
        raise FormatError("Haodoo book declares no chapters", path)
    available = len(records) - 1
    if header.chapter_count > available:
        debug_log(f"Haodoo header declares {header.chapter_count} chapters, found {available}")
    chapters: list[Chapter] = []
    for number in range(1, min(header.chapter_count, available) + 1):
        title_idx = number - 1
        title = header.chapter_titles[title_idx] if title_idx < len(header.chapter_titles) else ""
        blocks = _chapter_blocks(_decode(records[number], variant), title)
        if not blocks:
            debug_log(f"Skipping empty Haodoo record {number}")
            continue
        chapters.append(
            Chapter(
                index=len(chapters),
                title=title or f"{len(chapters) + 1}",
                blocks=tuple(blocks),
            )
        )
    if not chapters:
        raise FormatError("Haodoo book contains no text", path)
    fallback = Path(path).stem if path else "Untitled"
    return Document(
        id=document_id(data),
        title=header.title or fallback,
        author=None,
        chapters=tuple(chapters),
        source_format=SourceFormat.HAODOO,
        source_path=path,
    )
