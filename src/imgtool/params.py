"""Per-format compression parameters parsed from ``key=value`` option strings."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Callable, Union

from .errors import ParseError
from .formats import ImageFormat


class ChromaSubsampling(str, Enum):
    CS444 = "cs444"
    CS422 = "cs422"
    CS420 = "cs420"
    CS411 = "cs411"
    AUTO = "auto"


class TiffCompression(str, Enum):
    UNCOMPRESSED = "uncompressed"
    LZW = "lzw"
    DEFLATE = "deflate"
    PACKBITS = "packbits"


class TiffDeflateLevel(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    BEST = "best"


@dataclass(frozen=True, slots=True)
class JpegParams:
    quality: int = 80
    chroma_subsampling: ChromaSubsampling = ChromaSubsampling.AUTO
    progressive: bool = True


@dataclass(frozen=True, slots=True)
class PngParams:
    quality: int = 80
    force_zopfli: bool = False
    optimization_level: int = 2


@dataclass(frozen=True, slots=True)
class GifParams:
    quality: int = 80


@dataclass(frozen=True, slots=True)
class TiffParams:
    algorithm: TiffCompression = TiffCompression.DEFLATE
    deflate_level: TiffDeflateLevel = TiffDeflateLevel.BALANCED


@dataclass(frozen=True, slots=True)
class WebpParams:
    quality: int = 80


CompressionParams = Union[JpegParams, PngParams, GifParams, TiffParams, WebpParams]

Coercer = Callable[[str, str], object]


def _int_in(low: int, high: int) -> Coercer:
    def coerce(key: str, value: str) -> int:
        if not (value.isascii() and value.isdigit()):
            raise ParseError("INVALID_PARAMS", f"'{key}' expects an integer in {low}-{high}, got '{value}'")
        number = int(value)
        if not low <= number <= high:
            raise ParseError("INVALID_PARAMS", f"'{key}' must be within {low}-{high}, got {number}")
        return number

    return coerce


def parse_bool(key: str, value: str, code: str = "INVALID_PARAMS") -> bool:
    normalized = value.lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ParseError(code, f"'{key}' expects true or false, got '{value}'")


def _choice(enum_cls: type[Enum]) -> Coercer:
    def coerce(key: str, value: str) -> Enum:
        try:
            return enum_cls(value.lower())
        except ValueError:
            choices = "|".join(member.value for member in enum_cls)
            raise ParseError("INVALID_PARAMS", f"'{key}' expects one of <{choices}>, got '{value}'") from None

    return coerce


_QUALITY = _int_in(0, 100)

_FIELDS: dict[ImageFormat, dict[str, Coercer]] = {
    ImageFormat.JPEG: {
        "quality": _QUALITY,
        "chroma_subsampling": _choice(ChromaSubsampling),
        "progressive": parse_bool,
    },
    ImageFormat.PNG: {
        "quality": _QUALITY,
        "force_zopfli": parse_bool,
        "optimization_level": _int_in(0, 6),
    },
    ImageFormat.GIF: {
        "quality": _QUALITY,
    },
    ImageFormat.TIFF: {
        "algorithm": _choice(TiffCompression),
        "deflate_level": _choice(TiffDeflateLevel),
    },
    ImageFormat.WEBP: {
        "quality": _QUALITY,
    },
}

_PARAM_TYPES: dict[ImageFormat, type] = {
    ImageFormat.JPEG: JpegParams,
    ImageFormat.PNG: PngParams,
    ImageFormat.GIF: GifParams,
    ImageFormat.TIFF: TiffParams,
    ImageFormat.WEBP: WebpParams,
}


def parse_kv(raw: str, code: str = "INVALID_PARAMS") -> dict[str, str]:
    """Split ``k=v[,k=v...]`` into a mapping; empty segments are ignored."""

    pairs: dict[str, str] = {}
    if not raw or not raw.strip():
        return pairs
    for segment in raw.split(","):
        if segment == "":
            continue
        if "=" not in segment:
            raise ParseError(code, f"Expected key=value, got '{segment}'")
        key, value = segment.split("=", 1)
        if not key or not value:
            raise ParseError(code, f"Empty key or value in '{segment}'")
        if any(ch.isspace() for ch in segment):
            raise ParseError(code, f"Whitespace is not allowed in '{segment}'")
        if key in pairs:
            raise ParseError(code, f"Duplicate key '{key}'")
        pairs[key] = value
    return pairs


def resolve_params(fmt: ImageFormat, raw: str | None) -> CompressionParams:
    known = _FIELDS[fmt]
    values: dict[str, object] = {}
    for key, value in parse_kv(raw or "").items():
        coerce = known.get(key)
        if coerce is None:
            allowed = ", ".join(known)
            raise ParseError("INVALID_PARAMS", f"Unknown {fmt.value} parameter '{key}' (allowed: {allowed})")
        values[key] = coerce(key, value)
    return _PARAM_TYPES[fmt](**values)


def _render(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def serialize_params(params: CompressionParams) -> str:
    return ",".join(f"{item.name}={_render(getattr(params, item.name))}" for item in fields(params))


@dataclass(frozen=True, slots=True)
class FormatParams:
    """The validated parameter set for every output format."""

    jpeg: JpegParams = field(default_factory=JpegParams)
    png: PngParams = field(default_factory=PngParams)
    gif: GifParams = field(default_factory=GifParams)
    tiff: TiffParams = field(default_factory=TiffParams)
    webp: WebpParams = field(default_factory=WebpParams)

    def for_format(self, fmt: ImageFormat) -> CompressionParams:
        return getattr(self, fmt.value)

    @classmethod
    def from_strings(
        cls,
        *,
        jpeg: str | None = None,
        png: str | None = None,
        gif: str | None = None,
        tiff: str | None = None,
        webp: str | None = None,
    ) -> FormatParams:
        return cls(
            jpeg=resolve_params(ImageFormat.JPEG, jpeg),  # type: ignore[arg-type]
            png=resolve_params(ImageFormat.PNG, png),  # type: ignore[arg-type]
            gif=resolve_params(ImageFormat.GIF, gif),  # type: ignore[arg-type]
            tiff=resolve_params(ImageFormat.TIFF, tiff),  # type: ignore[arg-type]
            webp=resolve_params(ImageFormat.WEBP, webp),  # type: ignore[arg-type]
        )


__all__ = [
    "ChromaSubsampling",
    "TiffCompression",
    "TiffDeflateLevel",
    "JpegParams",
    "PngParams",
    "GifParams",
    "TiffParams",
    "WebpParams",
    "CompressionParams",
    "FormatParams",
    "parse_kv",
    "parse_bool",
    "resolve_params",
    "serialize_params",
]
