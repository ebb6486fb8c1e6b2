from __future__ import annotations

import unicodedata

IMAGE_CHAR = "\U0001f5bc"

# Horizontal punctuation -> vertical presentation form (U+FE10..U+FE4F).
VERTICAL_FORMS = {
    "，": "︐",
    "、": "︑",
    "。": "︒",
    "：": "︓",
    "；": "︔",
    "！": "︕",
    "？": "︖",
    "〖": "︗",
    "〗": "︘",
    "…": "︙",
    "‥": "︰",
    "—": "︱",
    "–": "︲",
    "（": "︵",
    "）": "︶",
    "｛": "︷",
    "｝": "︸",
    "〔": "︹",
    "〕": "︺",
    "【": "︻",
    "】": "︼",
    "《": "︽",
    "》": "︾",
    "〈": "︿",
    "〉": "﹀",
    "「": "﹁",
    "」": "﹂",
    "『": "﹃",
    "』": "﹄",
    "［": "﹇",
    "］": "﹈",
}

HORIZONTAL_FORMS = {vertical: horizontal for horizontal, vertical in VERTICAL_FORMS.items()}
HORIZONTAL_FORMS.update({"︴": "_", "﹏": "_", "︳": "|", "﹋": "￣"})

# Characters that must not open a line; they hang at the end of the previous one.
LINE_START_FORBIDDEN = frozenset(
    "，、。．：；！？）」』】〕〗〉》｝’”…‥・ー々ぁぃぅぇぉっゃゅょゎァィゥェォッャュョヮヵヶ"
    ",.:;!?)]}%"
)

# Characters that delimit a selectable word.
TEXT_SELECTION_SPLITTER = frozenset(
    " #%&()+,-./;<=>?@[\\\t]_{}~"
    "—‘’“”…─ⸯ　、。〈〉《》「」『』【】〔〕〖〗"
    "︗︘︙︱︵︶︷︸︹︺︻︼︽︾︿﹀﹁﹂﹃﹄"
    "！＃％＆（）＊＋，－／：；＝？［］｀｛｜｝～"
)


# East Asian ambiguous characters set full width in CJK typography.
AMBIGUOUS_WIDE = frozenset("…‥—―“”‘’·※°§")


def is_wide(ch: str) -> bool:
    """True for characters that occupy a full em cell and may break anywhere."""
    if ch == IMAGE_CHAR or ch in AMBIGUOUS_WIDE:
        return True
    return unicodedata.east_asian_width(ch) in ("W", "F")


def to_vertical(text: str) -> str:
    return "".join(VERTICAL_FORMS.get(ch, ch) for ch in text)


def to_horizontal(text: str) -> str:
    return "".join(HORIZONTAL_FORMS.get(ch, ch) for ch in text)


def is_blank(text: str) -> bool:
    return not text.strip(" \t\r\n\f　\xa0")
