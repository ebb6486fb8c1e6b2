from __future__ import annotations

import pytest

from vreader.config import NormalizeConfig
from vreader.errors import ConfigError, LayoutCancelled
from vreader.layout import break_lines, layout_chapter, lines_per_page
from vreader.metrics import MonospaceMetrics
from vreader.model import BlockKind, Chapter, Orientation, TextBlock, Viewport
from vreader.normalize import normalize_chapter


def _chapter(*blocks: TextBlock, index: int = 0):
    return Chapter(index=index, title="章", blocks=tuple(blocks))


def _para(text: str) -> TextBlock:
    return TextBlock(kind=BlockKind.PARAGRAPH, content=text)


EMPTY = TextBlock(kind=BlockKind.EMPTY, content="")


def _normalized(chapter: Chapter, strip_empty_lines: bool = False):
    return normalize_chapter(chapter, NormalizeConfig(strip_empty_lines=strip_empty_lines))


def _narrow(_: str) -> float:
    return 5.0


def _wide(_: str) -> float:
    return 10.0


def test_break_lines_cjk_breaks_anywhere() -> None:
    assert break_lines("一二三四五六七", 30, _wide) == [(0, 3), (3, 6), (6, 7)]


def test_break_lines_latin_wraps_at_spaces() -> None:
    assert break_lines("hello world", 40, _narrow) == [(0, 6), (6, 11)]


def test_break_lines_forces_break_inside_long_word() -> None:
    assert break_lines("abcdefghij", 20, _narrow) == [(0, 4), (4, 8), (8, 10)]


def test_break_lines_hangs_closing_punctuation() -> None:
    assert break_lines("一二三。四", 30, _wide) == [(0, 4), (4, 5)]


def test_break_lines_hangs_at_most_one_glyph() -> None:
    assert break_lines("一二三。」", 30, _wide) == [(0, 4), (4, 5)]

    spans = break_lines("一二三」」」」」四", 30, _wide)

    assert spans == [(0, 4), (4, 8), (8, 9)]
    assert all((end - start) * 10 <= 30 + 10 for start, end in spans)


def test_break_lines_empty_text() -> None:
    assert break_lines("", 30, _wide) == [(0, 0)]


def test_lines_per_page() -> None:
    assert lines_per_page(10, 10, 10) == 1
    assert lines_per_page(100, 10, 10) == 10
    assert lines_per_page(105, 10, 15) == 7


def test_fifty_wrapped_lines_one_line_per_page() -> None:
    chapter = _normalized(_chapter(_para("字" * 500)))

    pages = layout_chapter(chapter, Viewport(100, 10), Orientation.HORIZONTAL, MonospaceMetrics(10))

    assert len(pages) == 50
    assert all(len(page.lines) == 1 for page in pages)
    assert [page.page_number for page in pages] == list(range(50))


def test_viewport_smaller_than_one_cell_is_a_config_error() -> None:
    chapter = _normalized(_chapter(_para("字")))
    with pytest.raises(ConfigError):
        layout_chapter(chapter, Viewport(100, 9), Orientation.HORIZONTAL, MonospaceMetrics(10))
    with pytest.raises(ConfigError):
        layout_chapter(chapter, Viewport(9, 100), Orientation.VERTICAL, MonospaceMetrics(10))


def test_character_conservation_and_idempotence() -> None:
    chapter = _normalized(
        _chapter(
            TextBlock(kind=BlockKind.HEADING, content="第一章 Beginning"),
            _para("天地玄黃，宇宙洪荒。日月盈昃，辰宿列張。"),
            EMPTY,
            _para("Mixed text with 漢字 and a verylongwordthatneedsforcedbreaking here."),
        )
    )
    metrics = MonospaceMetrics(10)

    for orientation in Orientation:
        pages = layout_chapter(chapter, Viewport(120, 90), orientation, metrics)
        assert "".join(page.text for page in pages) == chapter.text
        assert layout_chapter(chapter, Viewport(120, 90), orientation, metrics) == pages


def test_vertical_columns_run_right_to_left() -> None:
    chapter = _normalized(_chapter(_para("一" * 25)))

    pages = layout_chapter(chapter, Viewport(100, 100), Orientation.VERTICAL, MonospaceMetrics(10))

    assert len(pages) == 1
    xs = [line.x for line in pages[0].lines]
    assert xs == [90.0, 80.0, 70.0]
    assert [len(line.text) for line in pages[0].lines] == [10, 10, 5]


def test_vertical_runs_use_presentation_forms_and_rotate_latin() -> None:
    chapter = _normalized(_chapter(_para("「甲」abc")))

    (page,) = layout_chapter(chapter, Viewport(100, 100), Orientation.VERTICAL, MonospaceMetrics(10))

    runs = page.lines[0].runs
    assert [run.display for run in runs] == ["﹁甲﹂", "abc"]
    assert [run.rotated for run in runs] == [False, True]
    assert [run.char_offset for run in runs] == [0, 3]


def test_empty_blocks_take_a_line_and_stripping_never_adds_pages() -> None:
    source = _chapter(_para("甲" * 10), EMPTY, EMPTY, _para("乙" * 10), EMPTY)
    metrics = MonospaceMetrics(10)
    viewport = Viewport(100, 20)

    kept = layout_chapter(_normalized(source), viewport, Orientation.HORIZONTAL, metrics)
    stripped = layout_chapter(_normalized(source, True), viewport, Orientation.HORIZONTAL, metrics)

    assert sum(len(page.lines) for page in kept) == 5
    assert sum(len(page.lines) for page in stripped) == 2
    assert len(stripped) <= len(kept)
    assert all(line.kind is not BlockKind.EMPTY for page in stripped for line in page.lines)


def test_ignore_font_weight_uses_regular_advances() -> None:
    chapter = _normalized(_chapter(TextBlock(kind=BlockKind.HEADING, content="一二三四")))
    metrics = MonospaceMetrics(10, bold_scale=2.0)
    viewport = Viewport(40, 100)

    bold = layout_chapter(chapter, viewport, Orientation.HORIZONTAL, metrics)
    regular = layout_chapter(chapter, viewport, Orientation.HORIZONTAL, metrics, ignore_font_weight=True)

    assert [line.text for line in bold[0].lines] == ["一二", "三四"]
    assert [line.text for line in regular[0].lines] == ["一二三四"]


def test_orientation_symmetry_on_square_viewport() -> None:
    chapter = _normalized(_chapter(_para("甲乙丙丁" * 30), EMPTY, _para("戊己庚辛" * 20)))
    metrics = MonospaceMetrics(10)
    viewport = Viewport(80, 80)

    vertical = layout_chapter(chapter, viewport, Orientation.VERTICAL, metrics)
    horizontal = layout_chapter(chapter, viewport, Orientation.HORIZONTAL, metrics)
    back = layout_chapter(chapter, viewport, Orientation.VERTICAL, metrics)

    assert len(vertical) == len(horizontal) == len(back)
    firsts = [(page.lines[0].block_index, page.lines[0].start) for page in vertical]
    assert firsts == [(page.lines[0].block_index, page.lines[0].start) for page in back]


def test_empty_chapter_has_one_blank_page() -> None:
    chapter = _normalized(_chapter(EMPTY), strip_empty_lines=True)

    pages = layout_chapter(chapter, Viewport(100, 100), Orientation.VERTICAL, MonospaceMetrics(10))

    assert len(pages) == 1
    assert pages[0].lines == ()


def test_cancelled_layout_raises() -> None:
    chapter = _normalized(_chapter(_para("字"), _para("字")))
    with pytest.raises(LayoutCancelled):
        layout_chapter(
            chapter,
            Viewport(100, 100),
            Orientation.VERTICAL,
            MonospaceMetrics(10),
            cancelled=lambda: True,
        )


def test_line_spacing_reduces_lines_per_page() -> None:
    chapter = _normalized(_chapter(*[_para("字") for _ in range(10)]))
    metrics = MonospaceMetrics(10)

    single = layout_chapter(chapter, Viewport(100, 100), Orientation.HORIZONTAL, metrics)
    double = layout_chapter(chapter, Viewport(100, 100), Orientation.HORIZONTAL, metrics, line_spacing=2.0)

    assert len(single) == 1
    assert len(double[0].lines) == 5
    assert double[0].lines[1].y == 20.0
