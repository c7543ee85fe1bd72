from __future__ import annotations


class ConversionError(RuntimeError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class InputError(ConversionError):
    """Invalid or missing input/output path; raised before any task runs."""


class ParseError(ConversionError):
    """Malformed option string, resize rule, format name or config value."""


class CodecError(ConversionError):
    """Decode, resize or encode failure reported by the codec."""


class FileIOError(ConversionError):
    """Reading the source, writing the destination or deleting the source failed."""


__all__ = [
    "ConversionError",
    "InputError",
    "ParseError",
    "CodecError",
    "FileIOError",
]
