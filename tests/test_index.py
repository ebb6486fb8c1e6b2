from __future__ import annotations

import pytest

from vreader.config import NormalizeConfig
from vreader.errors import OutOfRangeError
from vreader.index import PageIndex
from vreader.layout import layout_chapter
from vreader.metrics import MonospaceMetrics
from vreader.model import BlockKind, Chapter, Document, LogicalPosition, Orientation, PageRef, SourceFormat, TextBlock, Viewport
from vreader.normalize import normalize


def _para(text: str) -> TextBlock:
    return TextBlock(kind=BlockKind.PARAGRAPH, content=text)


def _three_chapter_document() -> Document:
    empty = TextBlock(kind=BlockKind.EMPTY, content="")
    return Document(
        id="doc",
        title="三章",
        author=None,
        chapters=(
            Chapter(index=0, title="一", blocks=(_para("序文。"),)),
            Chapter(index=1, title="二", blocks=(_para("第一段。"), empty, _para("第二段。"))),
            Chapter(index=2, title="三", blocks=(_para("終。"),)),
        ),
        source_format=SourceFormat.TXT,
    )


def _index(document: Document, chapter_index: int, strip: bool, viewport: Viewport = Viewport(100, 10)) -> PageIndex:
    chapter = normalize(document, NormalizeConfig(strip_empty_lines=strip))[chapter_index]
    pages = layout_chapter(chapter, viewport, Orientation.HORIZONTAL, MonospaceMetrics(10))
    return PageIndex(chapter, pages)


def test_bookmark_on_removed_empty_block_resolves_to_following_paragraph() -> None:
    document = _three_chapter_document()
    bookmark = LogicalPosition(chapter_index=1, block_index=1, char_offset=0)

    index = _index(document, 1, strip=True)

    assert all(line.kind is not BlockKind.EMPTY for page in index.pages for line in page.lines)
    ref = index.resolve(bookmark)
    assert ref == PageRef(chapter_index=1, page_number=1, line_index=0, char_offset=0)
    assert index.page(ref.page_number).lines[0].text == "第二段。"


def test_bookmark_on_kept_empty_block_lands_on_its_blank_line() -> None:
    index = _index(_three_chapter_document(), 1, strip=False)

    ref = index.resolve(LogicalPosition(1, 1, 0))

    assert ref.page_number == 1
    assert index.page(1).lines[0].kind is BlockKind.EMPTY


def test_resolve_and_position_at_round_trip() -> None:
    document = Document(
        id="doc",
        title="長",
        author=None,
        chapters=(Chapter(index=0, title="長", blocks=(_para("天地玄黃宇宙洪荒" * 4), _para("Latin words wrap too"))),),
        source_format=SourceFormat.TXT,
    )
    index = _index(document, 0, strip=False, viewport=Viewport(60, 30))

    for block_index, block in enumerate(document.chapters[0].blocks):
        for offset in range(len(block.content)):
            position = LogicalPosition(0, block_index, offset)
            ref = index.resolve(position)
            assert index.position_at(ref.page_number, ref.line_index, ref.char_offset) == position
            anchor = index.locate(ref.page_number)
            assert anchor.chapter_index == 0
            assert anchor <= position


def test_resolve_clamps_offsets_and_trailing_blocks() -> None:
    index = _index(_three_chapter_document(), 1, strip=False)

    past_end = index.resolve(LogicalPosition(1, 2, 99))
    assert past_end.page_number == 2
    assert past_end.char_offset == len("第二段。") - 1

    beyond_blocks = index.resolve(LogicalPosition(1, 9, 0))
    assert beyond_blocks.page_number == 2


def test_resolve_rejects_other_chapters() -> None:
    index = _index(_three_chapter_document(), 1, strip=False)
    with pytest.raises(OutOfRangeError):
        index.resolve(LogicalPosition(0, 0, 0))


def test_page_and_line_bounds() -> None:
    index = _index(_three_chapter_document(), 0, strip=False)

    assert index.page_count == 1
    with pytest.raises(OutOfRangeError):
        index.page(1)
    with pytest.raises(OutOfRangeError):
        index.page(-1)
    with pytest.raises(OutOfRangeError):
        index.position_at(0, 5, 0)
    assert index.position_at(0, 0, 99) == LogicalPosition(0, 0, len("序文。") - 1)


def test_locate_returns_first_character_of_each_page() -> None:
    index = _index(_three_chapter_document(), 1, strip=False)

    assert [index.locate(n) for n in range(index.page_count)] == [
        LogicalPosition(1, 0, 0),
        LogicalPosition(1, 1, 0),
        LogicalPosition(1, 2, 0),
    ]


def test_logical_position_payload_round_trip() -> None:
    position = LogicalPosition(2, 5, 7)

    assert LogicalPosition.from_payload(position.as_payload()) == position
    assert LogicalPosition.from_payload({"chapter": -1, "block": 0, "offset": 0}) is None
    assert LogicalPosition.from_payload("nope") is None
