from __future__ import annotations

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError
from .model import Orientation, Viewport

DEFAULT_FONT_SIZE = 20.0
DEFAULT_VIEWPORT = Viewport(width=800.0, height=600.0)


@dataclass(frozen=True)
class NormalizeConfig:
    strip_empty_lines: bool = False
    chapter_filter: str | None = None


@dataclass(frozen=True)
class LayoutConfig:
    viewport: Viewport = DEFAULT_VIEWPORT
    orientation: Orientation = Orientation.VERTICAL
    font_size: float = DEFAULT_FONT_SIZE
    line_spacing: float = 1.0
    ignore_font_weight: bool = False
    # Width factor for bold glyphs when no bold font file is given.
    bold_scale: float = 1.0


@dataclass(frozen=True)
class ReaderConfig:
    """Immutable settings snapshot handed to the core for one layout pass."""

    layout: LayoutConfig = field(default_factory=LayoutConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)

    def layout_key(self) -> tuple[Any, ...]:
        """Everything that changes line breaks; a different key invalidates every chapter."""
        return (self.layout, self.normalize.strip_empty_lines)

    def normalize_key(self) -> NormalizeConfig:
        return self.normalize

    def with_viewport(self, width: float, height: float) -> "ReaderConfig":
        return replace(self, layout=replace(self.layout, viewport=Viewport(width=width, height=height)))

    def with_orientation(self, orientation: Orientation) -> "ReaderConfig":
        return replace(self, layout=replace(self.layout, orientation=orientation))

    def with_options(self, **changes: Any) -> "ReaderConfig":
        layout_fields = {k: v for k, v in changes.items() if k in LayoutConfig.__dataclass_fields__}
        normalize_fields = {k: v for k, v in changes.items() if k in NormalizeConfig.__dataclass_fields__}
        unknown = set(changes) - set(layout_fields) - set(normalize_fields)
        if unknown:
            raise ConfigError(f"Unknown reader options: {', '.join(sorted(unknown))}")
        return ReaderConfig(
            layout=replace(self.layout, **layout_fields),
            normalize=replace(self.normalize, **normalize_fields),
        )


def _expect_bool(table: Mapping[str, Any], key: str, default: bool) -> bool:
    value = table.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false")
    return value


def _expect_number(table: Mapping[str, Any], key: str, default: float) -> float:
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number")
    return float(value)


def config_from_mapping(payload: Mapping[str, Any]) -> ReaderConfig:
    table = payload.get("reader", payload)
    if not isinstance(table, Mapping):
        raise ConfigError("[reader] must be a table")
    orientation_raw = table.get("orientation", Orientation.VERTICAL.value)
    try:
        orientation = Orientation(str(orientation_raw).lower())
    except ValueError as exc:
        raise ConfigError(f"Unknown orientation {orientation_raw!r}") from exc
    viewport_table = table.get("viewport", {})
    if not isinstance(viewport_table, Mapping):
        raise ConfigError("[reader.viewport] must be a table")
    chapter_filter = table.get("filter_chapter")
    if chapter_filter is not None and not isinstance(chapter_filter, str):
        raise ConfigError("'filter_chapter' must be a string")
    layout = LayoutConfig(
        viewport=Viewport(
            width=_expect_number(viewport_table, "width", DEFAULT_VIEWPORT.width),
            height=_expect_number(viewport_table, "height", DEFAULT_VIEWPORT.height),
        ),
        orientation=orientation,
        font_size=_expect_number(table, "font_size", DEFAULT_FONT_SIZE),
        line_spacing=_expect_number(table, "line_spacing", 1.0),
        ignore_font_weight=_expect_bool(table, "ignore_font_weight", False),
        bold_scale=_expect_number(table, "bold_scale", 1.0),
    )
    normalize = NormalizeConfig(
        strip_empty_lines=_expect_bool(table, "strip_empty_lines", False),
        chapter_filter=chapter_filter or None,
    )
    return ReaderConfig(layout=layout, normalize=normalize)


def load_config(path: Path) -> ReaderConfig:
    """Read a TOML settings file into a ReaderConfig snapshot."""
    try:
        with Path(path).open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Failed to read reader config: {path}") from exc
    return config_from_mapping(data)
