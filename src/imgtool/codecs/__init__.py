from __future__ import annotations

from functools import lru_cache
from typing import Dict, Type

from .base import Codec, CodecFailure, DecodedImage
from .pillow import PillowCodec

_CODEC_CLASSES: Dict[str, Type[Codec]] = {
    "pillow": PillowCodec,
}


@lru_cache(maxsize=len(_CODEC_CLASSES))
def get_codec(name: str = "pillow") -> Codec:
    codec_cls = _CODEC_CLASSES.get(name)
    if not codec_cls:
        raise KeyError(f"No codec registered for {name}")
    return codec_cls()  # type: ignore[return-value]


__all__ = [
    "Codec",
    "CodecFailure",
    "DecodedImage",
    "PillowCodec",
    "get_codec",
]
