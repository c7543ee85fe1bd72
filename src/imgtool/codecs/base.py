from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from ..formats import ImageFormat
from ..params import CompressionParams


class CodecFailure(RuntimeError):
    """Raised by codecs for any decode, resize or encode failure."""


@dataclass(slots=True)
class DecodedImage:
    pixels: Any
    width: int
    height: int
    metadata: dict[str, bytes] = field(default_factory=dict)
    format: ImageFormat | None = None


class Codec(Protocol):
    def decode(self, data: bytes) -> DecodedImage:  # pragma: no cover - interface
        ...

    def resize(self, pixels: Any, width: int, height: int) -> Any:  # pragma: no cover - interface
        ...

    def encode(
        self,
        pixels: Any,
        width: int,
        height: int,
        fmt: ImageFormat,
        params: CompressionParams,
        lossless: bool,
        metadata: dict[str, bytes] | None,
    ) -> bytes:  # pragma: no cover - interface
        ...
