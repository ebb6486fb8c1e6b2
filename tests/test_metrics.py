from __future__ import annotations

from pathlib import Path

import pytest

from vreader.errors import ConfigError
from vreader.metrics import MonospaceMetrics, build_metrics
from vreader.model import Orientation

FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    "C:/Windows/Fonts/arial.ttf",
)


def test_monospace_metrics_by_east_asian_width() -> None:
    metrics = MonospaceMetrics(20, bold_scale=1.5)

    assert metrics.em_size == 20
    assert metrics.advance("漢", Orientation.VERTICAL) == 20
    assert metrics.advance("。", Orientation.HORIZONTAL) == 20
    assert metrics.advance("…", Orientation.HORIZONTAL) == 20
    assert metrics.advance("a", Orientation.HORIZONTAL) == 10
    assert metrics.advance("a", Orientation.HORIZONTAL, bold=True) == 15


def test_monospace_metrics_rejects_non_positive_size() -> None:
    with pytest.raises(ConfigError):
        MonospaceMetrics(0)


def test_build_metrics_defaults_to_monospace() -> None:
    assert isinstance(build_metrics(16), MonospaceMetrics)


def test_pillow_metrics_missing_font_is_config_error(tmp_path: Path) -> None:
    pytest.importorskip("PIL.ImageFont")
    from vreader.metrics import PillowMetrics

    with pytest.raises(ConfigError):
        PillowMetrics(tmp_path / "missing.ttf", 16)


def test_pillow_metrics_measures_real_font() -> None:
    pytest.importorskip("PIL.ImageFont")
    from vreader.metrics import PillowMetrics

    font_path = next((p for p in FONT_CANDIDATES if Path(p).exists()), None)
    if font_path is None:
        pytest.skip("no TrueType font available")

    metrics = PillowMetrics(font_path, 32)

    assert metrics.em_size == 32
    assert 0 < metrics.advance("i", Orientation.HORIZONTAL) < metrics.advance("W", Orientation.HORIZONTAL)
    assert metrics.advance("漢", Orientation.VERTICAL) == 32
    synthetic = PillowMetrics(font_path, 32, bold_scale=2.0)
    assert synthetic.advance("W", Orientation.HORIZONTAL, bold=True) == 2 * metrics.advance("W", Orientation.HORIZONTAL)


def test_build_metrics_passes_bold_scale() -> None:
    metrics = build_metrics(10, bold_scale=2.0)

    assert metrics.advance("漢", Orientation.HORIZONTAL, bold=True) == 20
    assert metrics.advance("漢", Orientation.HORIZONTAL) == 10
    with pytest.raises(ConfigError):
        build_metrics(10, bold_font_path="bold.ttf")
    with pytest.raises(ConfigError):
        MonospaceMetrics(10, bold_scale=0)
