from __future__ import annotations

import struct
from pathlib import Path

import pytest

from vreader.errors import FormatError
from vreader.formats import detect_format, parse
from vreader.haodoo import BIG5_IDENT, UNICODE_IDENT, parse_haodoo
from vreader.model import BlockKind, SourceFormat

ESC = "\x1b"


def _palm_db(ident: bytes, records: list[bytes]) -> bytes:
    header = bytearray(78)
    header[0:8] = b"testbook"
    header[60:68] = ident
    struct.pack_into(">H", header, 76, len(records))
    offset = 78 + 8 * len(records) + 2
    table = bytearray()
    for uid, record in enumerate(records):
        table += struct.pack(">II", offset, uid)
        offset += len(record)
    return bytes(header) + bytes(table) + b"\x00\x00" + b"".join(records)


def _pdb_book() -> bytes:
    header = b"\x00" * 8 + f"千字文{ESC * 3}2{ESC}第一章{ESC}第二章".encode("cp950")
    first = "第一章\r\n\r\n　　天地玄黃，宇宙洪荒。\r\n日月盈昃。\r\n\r\n".encode("cp950")
    second = "第二章\r\n辰宿列張。".encode("cp950")
    return _palm_db(BIG5_IDENT, [header, first, second])


def _updb_book() -> bytes:
    header = b"\x00" * 8 + f"千字文{ESC * 3}2{ESC}上篇\r\n下篇".encode("utf-16-le")
    first = "上篇\r\n﹁天地﹂玄黃︒".encode("utf-16-le")
    second = "下篇\r\n寒來暑往︐秋收冬藏︒".encode("utf-16-le")
    return _palm_db(UNICODE_IDENT, [header, first, second])


def test_parse_big5_pdb(tmp_path: Path) -> None:
    book_path = tmp_path / "qianziwen.pdb"
    book_path.write_bytes(_pdb_book())

    document = parse(book_path)

    assert document.source_format is SourceFormat.HAODOO
    assert document.title == "千字文"
    assert [chapter.title for chapter in document.chapters] == ["第一章", "第二章"]
    first = document.chapters[0]
    assert [block.kind for block in first.blocks] == [
        BlockKind.HEADING,
        BlockKind.EMPTY,
        BlockKind.PARAGRAPH,
        BlockKind.PARAGRAPH,
    ]
    assert first.blocks[2].content == "　　天地玄黃，宇宙洪荒。"
    assert first.blocks[3].content == "日月盈昃。"


def test_parse_unicode_updb_restores_horizontal_punctuation() -> None:
    document = parse_haodoo(_updb_book())

    assert [chapter.title for chapter in document.chapters] == ["上篇", "下篇"]
    assert document.chapters[0].blocks[1].content == "「天地」玄黃。"
    assert document.chapters[1].blocks[1].content == "寒來暑往，秋收冬藏。"
    assert document.title == "千字文"


def test_haodoo_detected_by_content_without_extension() -> None:
    assert detect_format(_pdb_book(), None) is SourceFormat.HAODOO
    assert detect_format(_updb_book(), "renamed.bin") is SourceFormat.HAODOO


def test_haodoo_header_declaring_more_chapters_than_records() -> None:
    header = b"\x00" * 8 + f"殘本{ESC * 3}3{ESC}一{ESC}二{ESC}三".encode("cp950")
    data = _palm_db(BIG5_IDENT, [header, "一\r\n正文。".encode("cp950")])

    document = parse_haodoo(data, "partial.pdb")

    assert len(document.chapters) == 1
    assert document.chapters[0].title == "一"


@pytest.mark.parametrize(
    "data",
    [
        b"\x00" * 40,
        _palm_db(BIG5_IDENT, [b"\x00" * 8 + "沒有章節".encode("cp950")]),
        _palm_db(BIG5_IDENT, [b"\x00" * 8 + f"書{ESC * 3}x{ESC}".encode("cp950"), b"text"]),
        _palm_db(b"TEXtREAd", [b"\x00" * 8, b"text"]),
    ],
)
def test_malformed_haodoo_books_raise_format_error(data: bytes) -> None:
    with pytest.raises(FormatError):
        parse_haodoo(data, "bad.pdb")


def test_haodoo_bad_record_offsets() -> None:
    data = bytearray(_pdb_book())
    struct.pack_into(">I", data, 78 + 8, len(data) + 100)
    with pytest.raises(FormatError):
        parse_haodoo(bytes(data))
