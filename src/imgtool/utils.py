from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterator

from .formats import EXTENSION_MAP


def split_filename(path: Path) -> tuple[str, str]:
    """Return ``(stem, extension)``; the extension keeps its leading dot."""

    return path.stem, path.suffix


def iter_image_files(directory: Path) -> Iterator[Path]:
    """Yield the directory's immediate image files in name order."""

    for entry in sorted(directory.iterdir()):
        if entry.is_file() and entry.suffix.lower() in EXTENSION_MAP:
            yield entry


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# Process umask, read once at import.
_UMASK = _current_umask()


def _output_mode(path: Path) -> int:
    try:
        return path.stat().st_mode & 0o7777
    except FileNotFoundError:
        return 0o666 & ~_UMASK


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` via a sibling temp file, keeping an existing file's mode."""

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "wb", delete=False, dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_path, _output_mode(path))
        os.replace(tmp_path, path)
    except OSError:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise


def same_file(first: Path, second: Path) -> bool:
    if first.exists() and second.exists():
        return os.path.samefile(first, second)
    return first.resolve() == second.resolve()
