"""Domain models for image conversion runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .errors import ConversionError
from .formats import ImageFormat
from .logging import BatchSummary
from .params import CompressionParams, FormatParams
from .resize import NoResize, ResizeRule


@dataclass(frozen=True, slots=True)
class TaskFlags:
    lossless: bool = False
    keep_metadata: bool = False
    skip_if_bigger: bool = False
    delete_origin: bool = False


@dataclass(frozen=True, slots=True)
class ConversionOptions:
    """Batch-wide settings, validated once before any task is planned."""

    prefix: str = ""
    suffix: str = ""
    target_format: ImageFormat | None = None
    resize_rule: ResizeRule = field(default_factory=NoResize)
    params: FormatParams = field(default_factory=FormatParams)
    flags: TaskFlags = field(default_factory=TaskFlags)


@dataclass(frozen=True, slots=True)
class ConversionTask:
    """One source file and where its converted output goes."""

    source: Path
    destination: Path
    source_format: ImageFormat
    target_format: ImageFormat
    resize_rule: ResizeRule
    params: CompressionParams
    flags: TaskFlags


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class TaskResult:
    """Terminal state of an attempted task."""

    task: ConversionTask
    status: TaskStatus
    source_bytes: int = 0
    output_bytes: int = 0
    size: tuple[int, int] | None = None
    error: ConversionError | None = None
    origin_deleted: bool = False


@dataclass(slots=True)
class BatchConversionResult:
    """Aggregate results for a batch run."""

    results: list[TaskResult]
    summary: BatchSummary
    first_fatal_error: ConversionError | None = None

    @property
    def tasks_attempted(self) -> int:
        return self.summary.attempted

    @property
    def tasks_succeeded(self) -> int:
        return self.summary.successes

    @property
    def aborted(self) -> bool:
        return self.first_fatal_error is not None

    @property
    def exit_code(self) -> int:
        return 1 if self.aborted or self.summary.failures else 0


__all__ = [
    "TaskFlags",
    "ConversionOptions",
    "ConversionTask",
    "TaskStatus",
    "TaskResult",
    "BatchConversionResult",
]
