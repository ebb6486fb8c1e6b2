from __future__ import annotations

from pathlib import Path
from typing import Protocol

try:
    from PIL import ImageFont
except Exception:  # pragma: no cover - optional TrueType metrics
    ImageFont = None  # type: ignore[assignment]

from .cjk import is_wide
from .errors import ConfigError
from .model import Orientation


class FontMetrics(Protocol):
    """Glyph advance queries supplied by the font collaborator."""

    @property
    def em_size(self) -> float: ...

    def advance(self, ch: str, orientation: Orientation, bold: bool = False) -> float: ...


class MonospaceMetrics:
    """
    Cell metrics derived from East Asian width: wide characters take a full
    em, everything else half an em. Bold glyphs are `bold_scale` wider.
    """

    def __init__(self, font_size: float, *, bold_scale: float = 1.0) -> None:
        if font_size <= 0:
            raise ConfigError("font size must be positive")
        if bold_scale <= 0:
            raise ConfigError("bold scale must be positive")
        self.font_size = float(font_size)
        self.bold_scale = float(bold_scale)

    @property
    def em_size(self) -> float:
        return self.font_size

    def advance(self, ch: str, orientation: Orientation, bold: bool = False) -> float:
        width = self.font_size if is_wide(ch) else self.font_size / 2
        return width * self.bold_scale if bold else width


class PillowMetrics:
    """Advances measured from TrueType/OpenType fonts through Pillow."""

    def __init__(
        self,
        font_path: str | Path,
        font_size: float,
        *,
        bold_font_path: str | Path | None = None,
        bold_scale: float = 1.0,
    ) -> None:
        if ImageFont is None:
            raise ConfigError("Pillow is required for font file metrics (pip install Pillow)")
        if font_size <= 0:
            raise ConfigError("font size must be positive")
        self.font_size = float(font_size)
        self._regular = self._load(font_path)
        self._bold = self._load(bold_font_path) if bold_font_path is not None else None
        # Synthetic bold only applies without a bold face.
        self.bold_scale = 1.0 if self._bold is not None else float(bold_scale)

    def _load(self, font_path: str | Path):
        try:
            return ImageFont.truetype(str(font_path), size=int(round(self.font_size)))
        except OSError as exc:
            raise ConfigError(f"Unable to load font: {font_path}") from exc

    @property
    def em_size(self) -> float:
        return self.font_size

    def advance(self, ch: str, orientation: Orientation, bold: bool = False) -> float:
        if orientation is Orientation.VERTICAL and is_wide(ch):
            # Upright glyphs in a column advance by one em.
            return self.font_size
        if bold and self._bold is not None:
            return float(self._bold.getlength(ch))
        width = float(self._regular.getlength(ch))
        return width * self.bold_scale if bold else width


def build_metrics(
    font_size: float,
    font_path: str | Path | None = None,
    *,
    bold_font_path: str | Path | None = None,
    bold_scale: float = 1.0,
) -> FontMetrics:
    if font_path is not None:
        return PillowMetrics(font_path, font_size, bold_font_path=bold_font_path, bold_scale=bold_scale)
    if bold_font_path is not None:
        raise ConfigError("a bold font needs a regular font file as well")
    return MonospaceMetrics(font_size, bold_scale=bold_scale)
