from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest
from PIL import Image

from imgtool.codecs import CodecFailure, DecodedImage
from imgtool.formats import ImageFormat
from imgtool.params import CompressionParams


@pytest.fixture
def make_image() -> Callable[..., Path]:
    def build(
        path: Path,
        size: tuple[int, int] = (64, 48),
        color: tuple[int, ...] = (200, 40, 40),
        mode: str = "RGB",
        **save_kwargs: Any,
    ) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color).save(path, **save_kwargs)
        return path

    return build


class FakeCodec:
    """Scripted codec: payloads starting with ``corrupt`` fail to decode.

    With ``echo`` set, encoding returns the source bytes unchanged.
    """

    def __init__(self, size: tuple[int, int] = (100, 50), output: bytes = b"encoded") -> None:
        self.size = size
        self.output = output
        self.echo = False
        self.resize_calls: list[tuple[int, int]] = []
        self.encode_calls: list[dict[str, Any]] = []

    def decode(self, data: bytes) -> DecodedImage:
        if data.startswith(b"corrupt"):
            raise CodecFailure("not an image")
        width, height = self.size
        return DecodedImage(pixels=data, width=width, height=height, metadata={"exif": b"Exif\x00\x00fake"})

    def resize(self, pixels: Any, width: int, height: int) -> Any:
        self.resize_calls.append((width, height))
        return pixels

    def encode(
        self,
        pixels: Any,
        width: int,
        height: int,
        fmt: ImageFormat,
        params: CompressionParams,
        lossless: bool,
        metadata: dict[str, bytes] | None,
    ) -> bytes:
        self.encode_calls.append(
            {
                "size": (width, height),
                "format": fmt,
                "params": params,
                "lossless": lossless,
                "metadata": metadata,
            }
        )
        return pixels if self.echo else self.output


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()
