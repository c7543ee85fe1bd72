from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .errors import ParseError


CONFIG_FILE = Path("imgtool.toml")
CONFIG_ENV = "IMGTOOL_CONFIG"


@dataclass(slots=True)
class RuntimeConfig:
    continue_on_error: bool = False
    parallelism: int = 1
    log_file: Path | None = None


@dataclass(slots=True)
class DefaultsConfig:
    resize_args: str = "no_resize"
    jpeg: str = ""
    png: str = ""
    gif: str = ""
    tiff: str = ""
    webp: str = ""


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ParseError("INVALID_CONFIG", f"Cannot parse {path}: {exc}") from exc


def _section(raw: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ParseError("INVALID_CONFIG", f"[{name}] must be a table")
    return value


def _typed(data: Mapping[str, object], key: str, kind: type, default: object) -> object:
    value = data.get(key, default)
    # bool is an int subclass; keep them apart.
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ParseError("INVALID_CONFIG", f"'{key}' must be of type {kind.__name__}, got {value!r}")
    return value


def _build_runtime(data: Mapping[str, object]) -> RuntimeConfig:
    parallelism = _typed(data, "parallelism", int, 1)
    if parallelism < 1:  # type: ignore[operator]
        raise ParseError("INVALID_CONFIG", f"'parallelism' must be >= 1, got {parallelism}")
    log_file = str(_typed(data, "log_file", str, ""))
    return RuntimeConfig(
        continue_on_error=bool(_typed(data, "continue_on_error", bool, False)),
        parallelism=int(parallelism),  # type: ignore[arg-type]
        log_file=Path(log_file) if log_file else None,
    )


def _build_defaults(data: Mapping[str, object]) -> DefaultsConfig:
    defaults = DefaultsConfig()
    return DefaultsConfig(
        resize_args=str(_typed(data, "resize_args", str, defaults.resize_args)),
        jpeg=str(_typed(data, "jpeg", str, "")),
        png=str(_typed(data, "png", str, "")),
        gif=str(_typed(data, "gif", str, "")),
        tiff=str(_typed(data, "tiff", str, "")),
        webp=str(_typed(data, "webp", str, "")),
    )


def load_config(path: Path | None = None) -> AppConfig:
    path = path or Path(os.environ.get(CONFIG_ENV) or CONFIG_FILE)
    raw = _read_toml(path)
    return AppConfig(
        runtime=_build_runtime(_section(raw, "runtime")),
        defaults=_build_defaults(_section(raw, "defaults")),
    )
