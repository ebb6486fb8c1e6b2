from __future__ import annotations

import pytest

from vreader.config import NormalizeConfig
from vreader.errors import ConfigError, OutOfRangeError
from vreader.model import BlockKind, Chapter, LogicalPosition, TextBlock
from vreader.normalize import normalize_chapter
from vreader.selection import search, text_between, word_at


def _chapter():
    return normalize_chapter(
        Chapter(
            index=0,
            title="選",
            blocks=(
                TextBlock(BlockKind.PARAGRAPH, "「春眠不覺曉」，處處聞啼鳥。"),
                TextBlock(BlockKind.EMPTY, ""),
                TextBlock(BlockKind.PARAGRAPH, "spring sleep, unaware of dawn"),
            ),
        ),
        NormalizeConfig(),
    )


def test_text_between_spans_blocks() -> None:
    chapter = _chapter()

    text = text_between(chapter, LogicalPosition(0, 0, 7), LogicalPosition(0, 2, 6))

    assert text == "，處處聞啼鳥。\n\nspring"


def test_text_between_accepts_reversed_ends_and_rejects_other_chapters() -> None:
    chapter = _chapter()

    assert text_between(chapter, LogicalPosition(0, 0, 5), LogicalPosition(0, 0, 1)) == "春眠不覺"
    with pytest.raises(OutOfRangeError):
        text_between(chapter, LogicalPosition(0, 0, 0), LogicalPosition(1, 0, 0))


def test_word_at_stops_at_splitters() -> None:
    chapter = _chapter()

    assert word_at(chapter, LogicalPosition(0, 0, 2)) == (LogicalPosition(0, 0, 1), LogicalPosition(0, 0, 6))
    assert word_at(chapter, LogicalPosition(0, 0, 0)) == (LogicalPosition(0, 0, 0), LogicalPosition(0, 0, 1))
    assert word_at(chapter, LogicalPosition(0, 2, 8)) == (LogicalPosition(0, 2, 7), LogicalPosition(0, 2, 12))
    assert word_at(chapter, LogicalPosition(0, 1, 0)) is None
    assert word_at(chapter, LogicalPosition(0, 2, 99)) is None


def test_search_finds_matches_in_every_block() -> None:
    chapter = _chapter()

    assert search([chapter], "處+") == [(LogicalPosition(0, 0, 8), LogicalPosition(0, 0, 10))]
    assert search([chapter], r"\w*ing") == [(LogicalPosition(0, 2, 0), LogicalPosition(0, 2, 6))]
    assert search([chapter], "x*") == []
    with pytest.raises(ConfigError):
        search([chapter], "[")
