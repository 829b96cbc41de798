from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional, Tuple

from .errors import ConfigurationError


StatusMode = Literal["changed", "staged"]

CONFIG_FILE = "minifypix.config.json"
PACKAGE_JSON_KEY = "minifyPix"

DEFAULT_IMAGE_TYPES = (".jpg", ".jpeg", ".png", ".gif", ".svg")
DEFAULT_EXCLUDE = ("node_modules",)


# ----- Per-format compressor options -----

@dataclass(frozen=True)
class JpegOptions:
    quality: int = 90
    progressive: bool = True
    arithmetic: bool = False


@dataclass(frozen=True)
class PngOptions:
    # pngquant min/max quality, 0.0-1.0
    quality: Tuple[float, float] = (0.8, 0.9)
    speed: int = 1


@dataclass(frozen=True)
class GifOptions:
    optimization_level: int = 2
    interlaced: bool = False
    colors: int = 256


@dataclass(frozen=True)
class SvgOptions:
    """SVG minification has no tunable options."""


# Original camelCase spellings accepted in config files.
_ALIASES = {
    "optimizationLevel": "optimization_level",
}


def merge_options(defaults: Any, overrides: Optional[Mapping[str, Any]]) -> Any:
    """
    Return a copy of `defaults` with `overrides` applied field by field.

    Sequences (PNG quality range) replace the default wholesale.
    Unknown keys raise ConfigurationError.
    """
    if not overrides:
        return defaults
    if not isinstance(overrides, Mapping):
        raise ConfigurationError(f"{type(defaults).__name__} overrides must be a mapping, got {overrides!r}")

    known = {f.name: f for f in fields(defaults)}
    changes: dict = {}
    for key, value in overrides.items():
        name = _ALIASES.get(key, key)
        if name not in known:
            raise ConfigurationError(f"unknown {type(defaults).__name__} option: {key}")
        changes[name] = _coerce(getattr(defaults, name), value, key)

    merged = replace(defaults, **changes)
    _validate(merged)
    return merged


def _coerce(default: Any, value: Any, key: str) -> Any:
    try:
        if isinstance(default, bool):
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, tuple):
            lo, hi = value
            return (float(lo), float(hi))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid value for {key}: {value!r}") from e
    return value


def _validate(options: Any) -> None:
    if isinstance(options, JpegOptions) and not (1 <= options.quality <= 100):
        raise ConfigurationError("jpg quality must be between 1 and 100")
    if isinstance(options, PngOptions):
        lo, hi = options.quality
        if not (0.0 <= lo <= hi <= 1.0):
            raise ConfigurationError("png quality must be a [min, max] range within 0..1")
        if not (1 <= options.speed <= 11):
            raise ConfigurationError("png speed must be between 1 and 11")
    if isinstance(options, GifOptions):
        if not (1 <= options.optimization_level <= 3):
            raise ConfigurationError("gif optimizationLevel must be between 1 and 3")
        if not (2 <= options.colors <= 256):
            raise ConfigurationError("gif colors must be between 2 and 256")


# ----- Core configuration -----

def _frozen_mapping(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class OptimizationConfig:
    """
    Everything the safe file optimizer needs for one run.

    Passed in explicitly; the optimizer never reads config files itself.
    """

    # Optional secondary copy destination (resolved against the working dir)
    target: Optional[Path] = None

    # Per-format overrides, merged onto JpegOptions/PngOptions/GifOptions
    jpg: Mapping[str, Any] = field(default_factory=dict)
    png: Mapping[str, Any] = field(default_factory=dict)
    gif: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "jpg", _frozen_mapping(self.jpg))
        object.__setattr__(self, "png", _frozen_mapping(self.png))
        object.__setattr__(self, "gif", _frozen_mapping(self.gif))
        if self.target is not None:
            object.__setattr__(self, "target", Path(self.target))

    def overrides(self) -> dict:
        return {"jpg": dict(self.jpg), "png": dict(self.png), "gif": dict(self.gif)}


# ----- Whole-run settings (CLI + config file) -----

@dataclass(frozen=True)
class RunSettings:
    # Crawl this directory instead of asking git
    destination: Optional[Path] = None
    exclude: Tuple[str, ...] = DEFAULT_EXCLUDE

    # Which git entries count when not crawling
    status: StatusMode = "changed"
    image_types: Tuple[str, ...] = DEFAULT_IMAGE_TYPES

    target: Optional[Path] = None
    jpg: Mapping[str, Any] = field(default_factory=dict)
    png: Mapping[str, Any] = field(default_factory=dict)
    gif: Mapping[str, Any] = field(default_factory=dict)

    # None lets the executor pick
    workers: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunSettings":
        if not isinstance(data, Mapping):
            raise ConfigurationError("config must be a JSON object")

        status = data.get("status", "changed")
        if status not in ("changed", "staged"):
            raise ConfigurationError(f"status must be 'changed' or 'staged', got {status!r}")

        exclude = data.get("exclude", DEFAULT_EXCLUDE)
        if isinstance(exclude, str):
            exclude = [exclude]

        # Imported here to keep settings free of discovery at import time
        from .discovery import get_image_types

        workers = data.get("workers")
        if workers is not None:
            workers = int(workers)
            if workers < 1:
                raise ConfigurationError("workers must be >= 1")

        destination = data.get("destination")
        target = data.get("target")

        return cls(
            destination=Path(destination) if destination else None,
            exclude=tuple(str(p) for p in exclude),
            status=status,
            image_types=tuple(get_image_types(data.get("imageTypes", data.get("image_types")))),
            target=Path(target) if target else None,
            jpg=_frozen_mapping(_section(data, "jpg")),
            png=_frozen_mapping(_section(data, "png")),
            gif=_frozen_mapping(_section(data, "gif")),
            workers=workers,
        )

    def optimization_config(self) -> OptimizationConfig:
        return OptimizationConfig(target=self.target, jpg=self.jpg, png=self.png, gif=self.gif)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    # The original tool accepted both {"jpg": {...}} and {"options": {"jpg": {...}}}
    value = data.get(name)
    if value is None and isinstance(data.get("options"), Mapping):
        value = data["options"].get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' options must be an object")
    return value


def load_config(cwd: Path, config_file: Optional[Path] = None) -> dict:
    """
    Locate and read the run configuration.

    Lookup order:
      1. an explicit config_file
      2. minifypix.config.json in cwd
      3. the "minifyPix" key of cwd/package.json
    """
    cwd = Path(cwd)

    if config_file is not None:
        path = cwd / config_file
        if not path.is_file():
            raise ConfigurationError(f"config file not found: {path}")
        return _read_json(path)

    path = cwd / CONFIG_FILE
    if path.is_file():
        return _read_json(path)

    pkg = cwd / "package.json"
    if pkg.is_file():
        data = _read_json(pkg)
        section = data.get(PACKAGE_JSON_KEY) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"'{PACKAGE_JSON_KEY}' in {pkg} must be an object")
        return section

    return {}


def _read_json(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"config {path} must contain a JSON object")
    return data
