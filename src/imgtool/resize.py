"""Resize rules and the target-size calculation.

A rule is one of a closed set of frozen dataclasses. Width, height and edge
values are either absolute pixel counts (``> 1``) or fractions of the matching
original dimension (``<= 1``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union, assert_never

from .errors import ParseError
from .params import parse_bool, parse_kv


@dataclass(frozen=True, slots=True)
class NoResize:
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class Size:
    w: float
    h: float
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class Scale:
    ratio: float | None = None
    w: float | None = None
    h: float | None = None
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class ShortEdge:
    edge_size: float
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class LongEdge:
    edge_size: float
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class Width:
    w: float
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


@dataclass(frozen=True, slots=True)
class Height:
    h: float
    donot_enlarge: bool = False
    keep_aspect_ratio: bool = True


ResizeRule = Union[NoResize, Size, Scale, ShortEdge, LongEdge, Width, Height]

_COMMON_KEYS = ("donot_enlarge", "keep_aspect_ratio")
_RULE_KEYS: dict[str, tuple[str, ...]] = {
    "no_resize": (),
    "size": ("w", "h"),
    "scale": ("ratio", "w", "h"),
    "short_edge": ("edge_size",),
    "long_edge": ("edge_size",),
    "width": ("w",),
    "height": ("h",),
}

_CODE = "INVALID_RESIZE_ARGS"


def _parse_positive(key: str, value: str) -> float:
    try:
        number = float(value) if value.isascii() else math.nan
    except ValueError:
        number = math.nan
    if math.isnan(number):
        raise ParseError(_CODE, f"'{key}' expects a number, got '{value}'")
    if not math.isfinite(number) or number <= 0:
        raise ParseError(_CODE, f"'{key}' must be a positive number, got '{value}'")
    return number


def _parse_dimension(key: str, value: str) -> float:
    number = _parse_positive(key, value)
    if number > 1 and not number.is_integer():
        raise ParseError(_CODE, f"'{key}' must be a fraction in (0, 1] or a whole pixel count, got '{value}'")
    return number


def parse_resize_args(raw: str) -> ResizeRule:
    """Parse ``<rule>[:key=value,...]`` into a :data:`ResizeRule`."""

    name, _, args = raw.partition(":")
    rule_name = name.strip().lower()
    if rule_name not in _RULE_KEYS:
        choices = " | ".join(_RULE_KEYS)
        raise ParseError(_CODE, f"Unknown resize rule '{name}' (expected {choices})")

    pairs = parse_kv(args, code=_CODE)
    allowed = _RULE_KEYS[rule_name] + _COMMON_KEYS
    for key in pairs:
        if key not in allowed:
            raise ParseError(_CODE, f"Key '{key}' is not valid for rule '{rule_name}' (allowed: {', '.join(allowed)})")

    def require(*keys: str) -> None:
        missing = [key for key in keys if key not in pairs]
        if missing:
            raise ParseError(_CODE, f"{', '.join(missing)} required when resize rule is `{rule_name}`")

    modifiers = {
        key: parse_bool(key, pairs[key], code=_CODE) for key in _COMMON_KEYS if key in pairs
    }
    dims = {key: _parse_dimension(key, pairs[key]) for key in ("w", "h", "edge_size") if key in pairs}

    if rule_name == "no_resize":
        return NoResize(**modifiers)
    if rule_name == "size":
        require("w", "h")
        return Size(w=dims["w"], h=dims["h"], **modifiers)
    if rule_name == "scale":
        if "ratio" in pairs:
            return Scale(ratio=_parse_positive("ratio", pairs["ratio"]), **modifiers)
        if "w" not in pairs or "h" not in pairs:
            raise ParseError(_CODE, "w and h are required when resize rule is `scale` and `ratio` is not set")
        return Scale(w=dims["w"], h=dims["h"], **modifiers)
    if rule_name == "short_edge":
        require("edge_size")
        return ShortEdge(edge_size=dims["edge_size"], **modifiers)
    if rule_name == "long_edge":
        require("edge_size")
        return LongEdge(edge_size=dims["edge_size"], **modifiers)
    if rule_name == "width":
        require("w")
        return Width(w=dims["w"], **modifiers)
    require("h")
    return Height(h=dims["h"], **modifiers)


def _resolve(value: float, original: int) -> float:
    return value * original if value <= 1 else value


def _round(value: float) -> int:
    return max(1, math.floor(value + 0.5))


def _edge_target(orig_w: int, orig_h: int, rule: ShortEdge | LongEdge) -> tuple[float, float]:
    pick = min if isinstance(rule, ShortEdge) else max
    edge_dim = pick(orig_w, orig_h)
    edge = _resolve(rule.edge_size, edge_dim)
    if rule.keep_aspect_ratio:
        factor = edge / edge_dim
        return orig_w * factor, orig_h * factor
    if orig_w == edge_dim:
        return edge, orig_h
    return orig_w, edge


def _raw_target(orig_w: int, orig_h: int, rule: ResizeRule) -> tuple[float, float]:
    if isinstance(rule, NoResize):
        return orig_w, orig_h
    if isinstance(rule, Size):
        width = _resolve(rule.w, orig_w)
        height = _resolve(rule.h, orig_h)
        if rule.keep_aspect_ratio:
            factor = min(width / orig_w, height / orig_h)
            return orig_w * factor, orig_h * factor
        return width, height
    if isinstance(rule, Scale):
        if rule.ratio is not None:
            return orig_w * rule.ratio, orig_h * rule.ratio
        if rule.w is None or rule.h is None:
            raise ValueError("scale needs either ratio or both w and h")
        return _resolve(rule.w, orig_w), _resolve(rule.h, orig_h)
    if isinstance(rule, (ShortEdge, LongEdge)):
        return _edge_target(orig_w, orig_h, rule)
    if isinstance(rule, Width):
        width = _resolve(rule.w, orig_w)
        return width, (orig_h * width / orig_w if rule.keep_aspect_ratio else orig_h)
    if isinstance(rule, Height):
        height = _resolve(rule.h, orig_h)
        return (orig_w * height / orig_h if rule.keep_aspect_ratio else orig_w), height
    assert_never(rule)


def compute_target_size(orig_w: int, orig_h: int, rule: ResizeRule) -> tuple[int, int]:
    if orig_w < 1 or orig_h < 1:
        raise ValueError(f"Original dimensions must be positive, got {orig_w}x{orig_h}")
    width, height = _raw_target(orig_w, orig_h, rule)
    if rule.donot_enlarge:
        width = min(width, orig_w)
        height = min(height, orig_h)
    return _round(width), _round(height)


__all__ = [
    "NoResize",
    "Size",
    "Scale",
    "ShortEdge",
    "LongEdge",
    "Width",
    "Height",
    "ResizeRule",
    "parse_resize_args",
    "compute_target_size",
]
