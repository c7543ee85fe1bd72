from __future__ import annotations

import concurrent.futures
import time
from pathlib import Path
from typing import Any, Iterable, Sequence

from .codecs import Codec, CodecFailure, DecodedImage, get_codec
from .errors import CodecError, ConversionError, FileIOError
from .logging import BatchSummary, RunLogEntry, RunLogger, StageTimings
from .models import BatchConversionResult, ConversionTask, TaskResult, TaskStatus
from .resize import NoResize, ResizeRule, compute_target_size
from .utils import atomic_write_bytes, same_file


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _source_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _shares_destination(tasks: Sequence[ConversionTask]) -> bool:
    destinations = [task.destination.resolve() for task in tasks]
    return len(set(destinations)) != len(destinations)


class ConversionService:
    def __init__(self, codec: Codec | None = None, *, logger: RunLogger | None = None) -> None:
        self._codec = codec or get_codec()
        self._logger = logger

    def convert_task(self, task: ConversionTask) -> TaskResult:
        """Run one task; codec and file errors are returned on the result."""

        timings = StageTimings()
        try:
            result = self._convert_internal(task, timings)
        except (CodecError, FileIOError) as exc:
            result = TaskResult(
                task=task,
                status=TaskStatus.FAILED,
                source_bytes=_source_size(task.source),
                error=exc,
            )
        self._append_log(result, timings)
        return result

    def _convert_internal(self, task: ConversionTask, timings: StageTimings) -> TaskResult:
        data, timings.read_ms = self._read_source(task.source)
        decoded, timings.decode_ms = self._decode(data)
        pixels, size, timings.resize_ms = self._resize(decoded, task.resize_rule)
        encoded, timings.encode_ms = self._encode(pixels, size, task, decoded)

        if task.flags.skip_if_bigger and len(encoded) >= len(data):
            deleted = self._delete_origin(task)
            return TaskResult(task, TaskStatus.SKIPPED, len(data), len(encoded), size, origin_deleted=deleted)

        timings.write_ms = self._write_output(task.destination, encoded)
        deleted = self._delete_origin(task)
        return TaskResult(task, TaskStatus.SUCCEEDED, len(data), len(encoded), size, origin_deleted=deleted)

    def _read_source(self, path: Path) -> tuple[bytes, float]:
        start = time.perf_counter()
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise FileIOError("READ_FAILED", f"Cannot read {path}: {exc}") from exc
        return data, _elapsed_ms(start)

    def _decode(self, data: bytes) -> tuple[DecodedImage, float]:
        start = time.perf_counter()
        try:
            decoded = self._codec.decode(data)
        except CodecFailure as exc:
            raise CodecError("DECODE_FAILED", str(exc)) from exc
        return decoded, _elapsed_ms(start)

    def _resize(self, decoded: DecodedImage, rule: ResizeRule) -> tuple[Any, tuple[int, int], float]:
        start = time.perf_counter()
        size = (decoded.width, decoded.height)
        if isinstance(rule, NoResize):
            return decoded.pixels, size, 0.0
        target = compute_target_size(decoded.width, decoded.height, rule)
        if target == size:
            return decoded.pixels, size, _elapsed_ms(start)
        try:
            pixels = self._codec.resize(decoded.pixels, *target)
        except CodecFailure as exc:
            raise CodecError("RESIZE_FAILED", str(exc)) from exc
        return pixels, target, _elapsed_ms(start)

    def _encode(
        self, pixels: Any, size: tuple[int, int], task: ConversionTask, decoded: DecodedImage
    ) -> tuple[bytes, float]:
        start = time.perf_counter()
        metadata = decoded.metadata if task.flags.keep_metadata else None
        try:
            encoded = self._codec.encode(
                pixels,
                size[0],
                size[1],
                task.target_format,
                task.params,
                task.flags.lossless,
                metadata,
            )
        except CodecFailure as exc:
            raise CodecError("ENCODE_FAILED", str(exc)) from exc
        return encoded, _elapsed_ms(start)

    def _write_output(self, destination: Path, data: bytes) -> float:
        start = time.perf_counter()
        try:
            atomic_write_bytes(destination, data)
        except OSError as exc:
            raise FileIOError("WRITE_FAILED", f"Cannot write {destination}: {exc}") from exc
        return _elapsed_ms(start)

    def _delete_origin(self, task: ConversionTask) -> bool:
        if not task.flags.delete_origin:
            return False
        # In-place conversion: the source path now holds the output.
        if same_file(task.source, task.destination):
            return False
        try:
            task.source.unlink()
        except OSError as exc:
            raise FileIOError("DELETE_FAILED", f"Cannot delete {task.source}: {exc}") from exc
        return True

    def _append_log(self, result: TaskResult, timings: StageTimings) -> None:
        if self._logger is None:
            return
        error = result.error
        self._logger.append(
            RunLogEntry(
                source=str(result.task.source),
                destination=str(result.task.destination),
                status=result.status.value,
                target_format=result.task.target_format.value,
                error_code=error.code if error else None,
                message=str(error) if error else None,
                timings=timings,
                source_bytes=result.source_bytes,
                output_bytes=result.output_bytes,
            )
        )

    def run(
        self,
        tasks: Iterable[ConversionTask],
        *,
        continue_on_error: bool = False,
        parallelism: int | None = None,
    ) -> BatchConversionResult:
        pending = list(tasks)
        outcome = BatchConversionResult(results=[], summary=BatchSummary(total=len(pending)))
        parallelism = max(1, parallelism or 1)
        # Tasks sharing a destination must overwrite it in discovery order.
        if parallelism == 1 or len(pending) <= 1 or _shares_destination(pending):
            self._run_sequential(pending, outcome, continue_on_error)
        else:
            self._run_parallel(pending, outcome, continue_on_error, parallelism)
        return outcome

    def _run_sequential(
        self, tasks: Sequence[ConversionTask], outcome: BatchConversionResult, continue_on_error: bool
    ) -> None:
        for task in tasks:
            self._record(outcome, self.convert_task(task), continue_on_error)
            if outcome.aborted:
                return

    def _run_parallel(
        self,
        tasks: Sequence[ConversionTask],
        outcome: BatchConversionResult,
        continue_on_error: bool,
        parallelism: int,
    ) -> None:
        # Futures are consumed in discovery order; this thread is the only one touching ``outcome``.
        with concurrent.futures.ThreadPoolExecutor(max_workers=parallelism) as executor:
            futures = [executor.submit(self.convert_task, task) for task in tasks]
            for future in futures:
                if outcome.aborted and future.cancel():
                    continue
                self._record(outcome, future.result(), continue_on_error)

    def _record(self, outcome: BatchConversionResult, result: TaskResult, continue_on_error: bool) -> None:
        summary = outcome.summary
        outcome.results.append(result)
        summary.attempted += 1
        if result.status is TaskStatus.SUCCEEDED:
            summary.successes += 1
        elif result.status is TaskStatus.SKIPPED:
            summary.skipped += 1
        else:
            summary.failures += 1
            error: ConversionError | None = result.error
            if error is not None:
                summary.error_codes[error.code] = summary.error_codes.get(error.code, 0) + 1
            if not continue_on_error and outcome.first_fatal_error is None:
                outcome.first_fatal_error = error


__all__ = [
    "ConversionService",
    "ConversionError",
]
