from __future__ import annotations

from enum import Enum
from pathlib import Path

from .errors import InputError, ParseError


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    GIF = "gif"
    TIFF = "tiff"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return CANONICAL_EXTENSIONS[self]


CANONICAL_EXTENSIONS: dict[ImageFormat, str] = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.GIF: ".gif",
    ImageFormat.TIFF: ".tiff",
    ImageFormat.WEBP: ".webp",
}

EXTENSION_MAP: dict[str, ImageFormat] = {
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".png": ImageFormat.PNG,
    ".gif": ImageFormat.GIF,
    ".tif": ImageFormat.TIFF,
    ".tiff": ImageFormat.TIFF,
    ".webp": ImageFormat.WEBP,
}

FORMAT_NAMES: dict[str, ImageFormat] = {
    "jpg": ImageFormat.JPEG,
    "jpeg": ImageFormat.JPEG,
    "png": ImageFormat.PNG,
    "gif": ImageFormat.GIF,
    "tif": ImageFormat.TIFF,
    "tiff": ImageFormat.TIFF,
    "webp": ImageFormat.WEBP,
}


def parse_format(name: str) -> ImageFormat:
    fmt = FORMAT_NAMES.get(name.strip().lower())
    if fmt is None:
        choices = ", ".join(sorted(FORMAT_NAMES))
        raise ParseError("INVALID_FORMAT", f"Invalid format '{name}', expected one of: {choices}")
    return fmt


def is_image_file(path: Path) -> bool:
    return path.is_file() and path.suffix.lower() in EXTENSION_MAP


def detect_format(path: Path) -> ImageFormat:
    extension = path.suffix.lower()
    fmt = EXTENSION_MAP.get(extension)
    if fmt is None:
        raise InputError(
            "UNSUPPORTED_FORMAT",
            f"Unsupported image extension: {extension or '<none>'} ({path})",
        )
    return fmt


def output_extension(source: Path, source_format: ImageFormat, target_format: ImageFormat) -> str:
    """Keep the source's own spelling (``.jpeg``, ``.tif``) unless the format changes."""

    if source_format is target_format:
        return source.suffix
    return target_format.extension


__all__ = [
    "ImageFormat",
    "EXTENSION_MAP",
    "parse_format",
    "is_image_file",
    "detect_format",
    "output_extension",
]
