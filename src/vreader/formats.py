from __future__ import annotations

import codecs
import hashlib
from pathlib import Path
from typing import Callable

from .errors import FormatError
from .model import Document, SourceFormat

BookSource = str | Path | bytes | bytearray | memoryview
ParserFunc = Callable[[bytes, "str | None"], Document]

_EXTENSIONS = {
    ".epub": SourceFormat.EPUB,
    ".pdb": SourceFormat.HAODOO,
    ".updb": SourceFormat.HAODOO,
    ".txt": SourceFormat.TXT,
    ".html": SourceFormat.HTML,
    ".htm": SourceFormat.HTML,
    ".xhtml": SourceFormat.HTML,
}
SUPPORTED_EXTENSIONS = tuple(sorted(_EXTENSIONS))

HAODOO_IDENTS = (b"BOOKMTIT", b"BOOKMTIU")
_TEXT_ENCODINGS = ("utf-8", "gb18030", "big5")


def document_id(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()[:16]


def decode_text(data: bytes, path: str | None = None, encodings: tuple[str, ...] = _TEXT_ENCODINGS) -> str:
    """Decode book text honouring a BOM, then the given encodings in order."""
    for bom, encoding in (
        (codecs.BOM_UTF8, "utf-8-sig"),
        (codecs.BOM_UTF16_LE, "utf-16"),
        (codecs.BOM_UTF16_BE, "utf-16"),
    ):
        if data.startswith(bom):
            try:
                return data.decode(encoding)
            except UnicodeDecodeError as exc:
                raise FormatError("Unreadable text encoding", path) from exc
    for encoding in encodings:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FormatError("Unreadable text encoding", path)


def detect_format(data: bytes, filename: str | None = None) -> SourceFormat:
    if data.startswith(b"PK\x03\x04"):
        return SourceFormat.EPUB
    if len(data) >= 68 and data[60:68] in HAODOO_IDENTS:
        return SourceFormat.HAODOO
    head = data[:512].lstrip().lower()
    if head.startswith((b"<?xml", b"<!doctype html", b"<html")) and b"<html" in data[:4096].lower():
        return SourceFormat.HTML
    if filename:
        suffix = Path(filename).suffix.lower()
        if suffix in _EXTENSIONS:
            return _EXTENSIONS[suffix]
    raise FormatError(
        f"Unsupported book format (supported: {', '.join(SUPPORTED_EXTENSIONS)})",
        filename,
    )


def _coerce_format(hint: SourceFormat | str) -> SourceFormat:
    if isinstance(hint, SourceFormat):
        return hint
    value = str(hint).strip().lower().lstrip(".")
    if f".{value}" in _EXTENSIONS:
        return _EXTENSIONS[f".{value}"]
    try:
        return SourceFormat(value)
    except ValueError as exc:
        raise FormatError(f"Unknown format hint {hint!r}") from exc


def _parser_for(fmt: SourceFormat) -> ParserFunc:
    if fmt is SourceFormat.EPUB:
        from .epub import parse_epub

        return parse_epub
    if fmt is SourceFormat.HAODOO:
        from .haodoo import parse_haodoo

        return parse_haodoo
    if fmt is SourceFormat.TXT:
        from .txt import parse_txt

        return parse_txt
    from .epub import parse_html

    return parse_html


def _read_source(source: BookSource) -> tuple[bytes, str | None]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source), None
    path = Path(source).expanduser()
    try:
        return path.read_bytes(), str(path)
    except OSError as exc:
        raise FormatError("Unable to read book", path) from exc


def parse(source: BookSource, format_hint: SourceFormat | str | None = None) -> Document:
    """
    Parse a book file (path or raw bytes) into a Document.

    Raises FormatError for empty, unsupported or malformed books; a Document
    is only returned when at least one chapter was recovered.
    """
    data, path = _read_source(source)
    if not data:
        raise FormatError("Book file is empty", path)
    fmt = _coerce_format(format_hint) if format_hint is not None else detect_format(data, path)
    document = _parser_for(fmt)(data, path)
    if not document.chapters:
        raise FormatError("Book contains no chapters", path)
    return document
