"""Turn the raw ``--input``/``--output`` pair into concrete conversion tasks.

The output path is interpreted in one of two ways, decided once per run:

* ``OutputMode.DIRECTORY_FAN_OUT`` - the output is a directory and every
  destination name is built as ``prefix + stem + suffix + extension``.
* ``OutputMode.SINGLE_FILE`` - the output is the literal destination file of a
  single source; prefix and suffix are not applied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import InputError
from .formats import ImageFormat, detect_format, output_extension
from .models import ConversionOptions, ConversionTask
from .utils import iter_image_files, split_filename


class OutputMode(str, Enum):
    SINGLE_FILE = "single_file"
    DIRECTORY_FAN_OUT = "directory_fan_out"


@dataclass(frozen=True, slots=True)
class PathPair:
    source: Path
    destination: Path
    source_format: ImageFormat
    target_format: ImageFormat


@dataclass(slots=True)
class ResolvedPlan:
    mode: OutputMode
    output_dir: Path
    pairs: list[PathPair]
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskPlan:
    mode: OutputMode
    output_dir: Path
    tasks: list[ConversionTask]
    warnings: list[str] = field(default_factory=list)


def build_destination_name(
    source: Path,
    source_format: ImageFormat,
    target_format: ImageFormat,
    prefix: str = "",
    suffix: str = "",
) -> str:
    stem, _ = split_filename(source)
    return f"{prefix}{stem}{suffix}{output_extension(source, source_format, target_format)}"


def _fan_out_pair(
    source: Path,
    output_dir: Path,
    prefix: str,
    suffix: str,
    target_format: ImageFormat | None,
) -> PathPair:
    source_format = detect_format(source)
    target = target_format or source_format
    name = build_destination_name(source, source_format, target, prefix, suffix)
    return PathPair(source, output_dir / name, source_format, target)


def _ensure_output_dir(output_dir: Path, create: bool) -> None:
    if output_dir.exists():
        if not output_dir.is_dir():
            raise InputError(
                "OUTPUT_IS_FILE",
                f"When input is a dir, output should also be a dir, but given a file: {output_dir}",
            )
        return
    if not create:
        return
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise InputError("OUTPUT_CREATE_FAILED", f"Cannot create output dir {output_dir}: {exc}") from exc


def _duplicate_warnings(pairs: list[PathPair]) -> list[str]:
    seen: dict[Path, list[Path]] = {}
    for pair in pairs:
        seen.setdefault(pair.destination, []).append(pair.source)
    warnings: list[str] = []
    for destination, sources in seen.items():
        if len(sources) > 1:
            names = ", ".join(source.name for source in sources)
            warnings.append(f"DUPLICATE_DESTINATION: {destination} <- {names} (last one wins)")
    return warnings


def _check_sources_untouched(pairs: list[PathPair]) -> None:
    """Reject plans where one task would overwrite another task's source."""

    sources = {pair.source.resolve(): pair.source for pair in pairs}
    for pair in pairs:
        destination = pair.destination.resolve()
        if destination in sources and destination != pair.source.resolve():
            raise InputError(
                "DESTINATION_IS_SOURCE",
                f"{pair.source.name} would overwrite source {sources[destination]} before it is converted",
            )


def resolve_paths(
    input_path: Path,
    output_path: Path | None,
    prefix: str = "",
    suffix: str = "",
    target_format: ImageFormat | None = None,
    *,
    create_dirs: bool = True,
) -> ResolvedPlan:
    if not input_path.exists():
        raise InputError("NOT_FOUND", f"File or dir not exists: {input_path}")

    if input_path.is_dir():
        if output_path is None:
            raise InputError("OUTPUT_REQUIRED", f"An output dir is required for dir input: {input_path}")
        pairs = [
            _fan_out_pair(source, output_path, prefix, suffix, target_format)
            for source in iter_image_files(input_path)
        ]
        _check_sources_untouched(pairs)
        _ensure_output_dir(output_path, create_dirs)
        output_dir = output_path
        return ResolvedPlan(OutputMode.DIRECTORY_FAN_OUT, output_dir, pairs, _duplicate_warnings(pairs))

    if not input_path.is_file():
        raise InputError("NOT_FOUND", f"Input is neither a file nor a dir: {input_path}")

    if output_path is None or output_path.is_dir():
        output_dir = output_path if output_path is not None else input_path.parent
        pair = _fan_out_pair(input_path, output_dir, prefix, suffix, target_format)
        return ResolvedPlan(OutputMode.DIRECTORY_FAN_OUT, output_dir, [pair])

    source_format = detect_format(input_path)
    parent = output_path.parent
    if not parent.is_dir():
        raise InputError("MISSING_PARENT", f"Output directory does not exist: {parent}")
    pair = PathPair(input_path, output_path, source_format, target_format or source_format)
    return ResolvedPlan(OutputMode.SINGLE_FILE, parent, [pair])


def plan_tasks(
    input_path: Path,
    output_path: Path | None,
    options: ConversionOptions,
    *,
    create_dirs: bool = True,
) -> TaskPlan:
    resolved = resolve_paths(
        input_path,
        output_path,
        options.prefix,
        options.suffix,
        options.target_format,
        create_dirs=create_dirs,
    )
    tasks = [
        ConversionTask(
            source=pair.source,
            destination=pair.destination,
            source_format=pair.source_format,
            target_format=pair.target_format,
            resize_rule=options.resize_rule,
            params=options.params.for_format(pair.target_format),
            flags=options.flags,
        )
        for pair in resolved.pairs
    ]
    return TaskPlan(resolved.mode, resolved.output_dir, tasks, resolved.warnings)


__all__ = [
    "OutputMode",
    "PathPair",
    "ResolvedPlan",
    "TaskPlan",
    "build_destination_name",
    "resolve_paths",
    "plan_tasks",
]
