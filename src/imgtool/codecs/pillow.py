from __future__ import annotations

import io
import math
from typing import Any

from PIL import Image

from ..formats import ImageFormat
from ..params import (
    ChromaSubsampling,
    CompressionParams,
    GifParams,
    JpegParams,
    PngParams,
    TiffCompression,
    TiffParams,
    WebpParams,
)
from .base import CodecFailure, DecodedImage

PIL_FORMATS: dict[ImageFormat, str] = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.GIF: "GIF",
    ImageFormat.TIFF: "TIFF",
    ImageFormat.WEBP: "WEBP",
}
_FROM_PIL = {name: fmt for fmt, name in PIL_FORMATS.items()}

# Pillow's JPEG encoder has no 4:1:1 mode; 4:2:0 is the closest reduction.
_SUBSAMPLING: dict[ChromaSubsampling, int] = {
    ChromaSubsampling.CS444: 0,
    ChromaSubsampling.CS422: 1,
    ChromaSubsampling.CS420: 2,
    ChromaSubsampling.CS411: 2,
}

_TIFF_COMPRESSION: dict[TiffCompression, str] = {
    TiffCompression.UNCOMPRESSED: "raw",
    TiffCompression.LZW: "tiff_lzw",
    TiffCompression.DEFLATE: "tiff_adobe_deflate",
    TiffCompression.PACKBITS: "packbits",
}

_METADATA_KEYS = ("exif", "icc_profile", "comment", "xmp")
_TEXT_METADATA: dict[ImageFormat, tuple[str, ...]] = {
    ImageFormat.JPEG: ("comment", "xmp"),
    ImageFormat.GIF: ("comment",),
    ImageFormat.WEBP: ("xmp",),
}
_PIXEL_INFO_KEYS = ("transparency",)


def _has_alpha(image: Image.Image) -> bool:
    return image.mode == "P" or "A" in image.getbands()


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "L"):
        return image
    if not _has_alpha(image):
        return image.convert("RGB")
    rgba = image.convert("RGBA")
    background = Image.new("RGB", rgba.size, (255, 255, 255))
    background.paste(rgba, mask=rgba.getchannel("A"))
    return background


def _to_truecolor(image: Image.Image) -> Image.Image:
    if image.mode in ("RGB", "RGBA"):
        return image
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


def palette_colors(quality: int) -> int:
    return max(2, min(256, round(256 * quality / 100)))


def _quantize(image: Image.Image, colors: int) -> Image.Image:
    image = _to_truecolor(image)
    method = Image.Quantize.FASTOCTREE if image.mode == "RGBA" else Image.Quantize.MEDIANCUT
    return image.quantize(colors=colors, method=method)


def png_compress_level(params: PngParams) -> int:
    if params.force_zopfli:
        return 9
    return min(9, math.ceil(params.optimization_level * 1.5))


def _detach_info(image: Image.Image) -> Image.Image:
    """Copy of ``image`` whose ``info`` holds only pixel-relevant keys.

    Pillow encoders read comments, XMP and DPI from ``image.info``; metadata
    reaches the output only through the explicit save kwargs.
    """

    kept = {key: image.info[key] for key in _PIXEL_INFO_KEYS if key in image.info}
    if image.info.keys() <= kept.keys():
        return image
    detached = image.copy()
    detached.info = kept
    return detached


def _metadata_kwargs(fmt: ImageFormat, metadata: dict[str, bytes] | None) -> dict[str, Any]:
    metadata = metadata or {}
    # An explicit icc_profile stops PNG/TIFF from falling back to the source's profile.
    kwargs: dict[str, Any] = {"icc_profile": metadata.get("icc_profile")}
    if fmt is not ImageFormat.GIF and metadata.get("exif"):
        kwargs["exif"] = metadata["exif"]
    for key in _TEXT_METADATA.get(fmt, ()):
        if metadata.get(key):
            kwargs[key] = metadata[key]
    return kwargs


class PillowCodec:
    def decode(self, data: bytes) -> DecodedImage:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise CodecFailure(f"Cannot decode image: {exc}") from exc
        metadata = {key: image.info[key] for key in _METADATA_KEYS if image.info.get(key)}
        return DecodedImage(
            pixels=image,
            width=image.width,
            height=image.height,
            metadata=metadata,
            format=_FROM_PIL.get(image.format or ""),
        )

    def resize(self, pixels: Image.Image, width: int, height: int) -> Image.Image:
        try:
            if pixels.mode in ("1", "P"):
                pixels = _to_truecolor(pixels)
            return pixels.resize((width, height), Image.Resampling.LANCZOS)
        except (OSError, ValueError) as exc:
            raise CodecFailure(f"Cannot resize to {width}x{height}: {exc}") from exc

    def encode(
        self,
        pixels: Image.Image,
        width: int,
        height: int,
        fmt: ImageFormat,
        params: CompressionParams,
        lossless: bool,
        metadata: dict[str, bytes] | None,
    ) -> bytes:
        if pixels.size != (width, height):
            raise CodecFailure(f"Pixel buffer is {pixels.width}x{pixels.height}, expected {width}x{height}")
        try:
            image, kwargs = self._prepare(pixels, fmt, params, lossless)
            image = _detach_info(image)
            kwargs.update(_metadata_kwargs(fmt, metadata))
            buffer = io.BytesIO()
            image.save(buffer, format=PIL_FORMATS[fmt], **kwargs)
        except (OSError, ValueError, KeyError) as exc:
            raise CodecFailure(f"Cannot encode {fmt.value}: {exc}") from exc
        return buffer.getvalue()

    def _prepare(
        self,
        image: Image.Image,
        fmt: ImageFormat,
        params: CompressionParams,
        lossless: bool,
    ) -> tuple[Image.Image, dict[str, Any]]:
        if fmt is ImageFormat.JPEG and isinstance(params, JpegParams):
            kwargs: dict[str, Any] = {
                "quality": 100 if lossless else params.quality,
                "optimize": True,
                "progressive": params.progressive,
            }
            if lossless:
                kwargs["subsampling"] = 0
            elif params.chroma_subsampling is not ChromaSubsampling.AUTO:
                kwargs["subsampling"] = _SUBSAMPLING[params.chroma_subsampling]
            return _flatten_to_rgb(image), kwargs

        if fmt is ImageFormat.PNG and isinstance(params, PngParams):
            if not lossless and params.quality < 100:
                image = _quantize(image, palette_colors(params.quality))
            return image, {"compress_level": png_compress_level(params), "optimize": params.force_zopfli}

        if fmt is ImageFormat.GIF and isinstance(params, GifParams):
            if not (lossless and image.mode in ("P", "L")):
                image = _quantize(image, 256 if lossless else palette_colors(params.quality))
            return image, {"optimize": True}

        if fmt is ImageFormat.TIFF and isinstance(params, TiffParams):
            # Pillow does not expose a zlib level for TIFF, so deflate_level is not forwarded.
            return image, {"compression": _TIFF_COMPRESSION[params.algorithm]}

        if fmt is ImageFormat.WEBP and isinstance(params, WebpParams):
            kwargs = {"lossless": lossless, "quality": 100 if lossless else params.quality, "method": 4}
            return _to_truecolor(image), kwargs

        raise CodecFailure(f"Parameters {type(params).__name__} do not match format {fmt.value}")
