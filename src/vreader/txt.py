from __future__ import annotations

import re
from pathlib import Path

from .cjk import is_blank
from .errors import FormatError
from .formats import decode_text, document_id
from .model import BlockKind, Chapter, Document, SourceFormat, TextBlock

_CN_NUMERALS = "0-9０-９零〇一二三四五六七八九十百千万萬两兩"
CHAPTER_HEADING_RE = re.compile(
    rf"^\s*(?:"
    rf"第[{_CN_NUMERALS}]+[章回节節卷集部篇](?:\s.*|[：:].*)?"
    rf"|[卷][{_CN_NUMERALS}]+(?:\s.*)?"
    rf"|(?:序章|楔子|尾声|尾聲|后记|後記|番外)(?:\s.*)?"
    rf"|(?:Chapter|CHAPTER)\s+(?:\d+|[IVXLCDM]+)\b.*"
    rf")$"
)
_MAX_HEADING_LEN = 40


def _is_heading(line: str) -> bool:
    stripped = line.strip()
    return 0 < len(stripped) <= _MAX_HEADING_LEN and CHAPTER_HEADING_RE.match(stripped) is not None


def _line_block(line: str) -> TextBlock:
    content = line.rstrip()
    if is_blank(content):
        return TextBlock(kind=BlockKind.EMPTY, content="")
    return TextBlock(kind=BlockKind.PARAGRAPH, content=content.lstrip(" \t"))


def _trim_empty(blocks: list[TextBlock]) -> list[TextBlock]:
    start, end = 0, len(blocks)
    while start < end and blocks[start].is_empty:
        start += 1
    while end > start and blocks[end - 1].is_empty:
        end -= 1
    return blocks[start:end]


def split_chapters(text: str, fallback_title: str) -> list[tuple[str, list[TextBlock]]]:
    """Split plain text at chapter heading lines (第一章, Chapter 1, 卷二 ...)."""
    sections: list[tuple[str, list[TextBlock]]] = []
    title = fallback_title
    blocks: list[TextBlock] = []
    for line in text.splitlines():
        if _is_heading(line):
            body = _trim_empty(blocks)
            if body:
                sections.append((title, body))
            title = line.strip()
            blocks = [TextBlock(kind=BlockKind.HEADING, content=title)]
            continue
        blocks.append(_line_block(line))
    body = _trim_empty(blocks)
    if body:
        sections.append((title, body))
    return sections


def parse_txt(data: bytes, path: str | None = None) -> Document:
    text = decode_text(data, path)
    title = Path(path).stem if path else "Untitled"
    sections = split_chapters(text, title)
    if not sections:
        raise FormatError("Text book contains no text", path)
    chapters = tuple(
        Chapter(index=index, title=chapter_title, blocks=tuple(blocks))
        for index, (chapter_title, blocks) in enumerate(sections)
    )
    return Document(
        id=document_id(data),
        title=title,
        author=None,
        chapters=chapters,
        source_format=SourceFormat.TXT,
        source_path=path,
    )
