from __future__ import annotations

import json
import os
import stat
from dataclasses import replace
from pathlib import Path

from PIL import Image

from imgtool.codecs import PillowCodec
from imgtool.core import ConversionService
from imgtool.errors import CodecError, FileIOError
from imgtool.formats import ImageFormat
from imgtool.logging import RunLogger
from imgtool.models import ConversionOptions, ConversionTask, TaskFlags, TaskStatus
from imgtool.params import FormatParams, JpegParams, PngParams
from imgtool.paths import plan_tasks
from imgtool.resize import NoResize, ShortEdge


def build_task(source: Path, destination: Path, **flags: bool) -> ConversionTask:
    return ConversionTask(
        source=source,
        destination=destination,
        source_format=ImageFormat.PNG,
        target_format=ImageFormat.PNG,
        resize_rule=NoResize(),
        params=PngParams(),
        flags=TaskFlags(**flags),
    )


def write(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


# real codec


def test_single_file_to_new_path_keeps_dimensions(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "a.png", size=(500, 300))
    plan = plan_tasks(source, tmp_path / "b.png", ConversionOptions())
    outcome = ConversionService(PillowCodec()).run(plan.tasks)
    assert outcome.exit_code == 0
    assert outcome.tasks_succeeded == 1
    with Image.open(tmp_path / "b.png") as image:
        assert image.size == (500, 300)


def test_short_edge_resize_end_to_end(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "big.png", size=(1200, 800))
    options = ConversionOptions(resize_rule=ShortEdge(edge_size=300))
    plan = plan_tasks(source, tmp_path / "small.png", options)
    outcome = ConversionService(PillowCodec()).run(plan.tasks)
    assert outcome.results[0].size == (450, 300)
    with Image.open(tmp_path / "small.png") as image:
        assert image.size == (450, 300)


def test_target_format_conversion(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "a.png", mode="RGBA", color=(10, 20, 30, 128))
    (tmp_path / "out").mkdir()
    options = ConversionOptions(target_format=ImageFormat.JPEG)
    plan = plan_tasks(source, tmp_path / "out", options)
    ConversionService(PillowCodec()).run(plan.tasks)
    destination = tmp_path / "out" / "a.jpg"
    with Image.open(destination) as image:
        assert image.format == "JPEG"
        assert image.mode == "RGB"


def test_keep_metadata_carries_exif(tmp_path: Path, make_image) -> None:
    exif = Image.Exif()
    exif[0x010F] = "imgtool-test"
    source = make_image(tmp_path / "a.jpg", size=(40, 40), exif=exif.tobytes())

    tasks = [
        replace(
            build_task(source, tmp_path / name, keep_metadata=keep),
            source_format=ImageFormat.JPEG,
            target_format=ImageFormat.JPEG,
            params=JpegParams(),
        )
        for name, keep in (("kept.jpg", True), ("stripped.jpg", False))
    ]
    ConversionService(PillowCodec()).run(tasks)

    with Image.open(tmp_path / "kept.jpg") as image:
        assert image.getexif().get(0x010F) == "imgtool-test"
    with Image.open(tmp_path / "stripped.jpg") as image:
        assert 0x010F not in image.getexif()


def test_successful_write_leaves_no_temp_files(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "src" / "a.png")
    (tmp_path / "out").mkdir()
    plan = plan_tasks(source, tmp_path / "out", ConversionOptions())
    ConversionService(PillowCodec()).run(plan.tasks)
    assert [path.name for path in (tmp_path / "out").iterdir()] == ["a.png"]


# orchestration policies


def test_params_and_flags_reach_the_codec(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"source-bytes")
    options = ConversionOptions(params=FormatParams.from_strings(png="quality=60,force_zopfli=true"))
    plan = plan_tasks(source, tmp_path / "b.png", options)
    outcome = ConversionService(fake_codec).run(plan.tasks)
    assert outcome.exit_code == 0
    call = fake_codec.encode_calls[0]
    assert call["params"] == PngParams(quality=60, force_zopfli=True)
    assert call["format"] is ImageFormat.PNG
    assert call["lossless"] is False
    assert call["metadata"] is None
    assert fake_codec.resize_calls == []


def test_lossless_and_metadata_flags(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"source-bytes")
    task = build_task(source, tmp_path / "b.png", lossless=True, keep_metadata=True)
    ConversionService(fake_codec).run([task])
    call = fake_codec.encode_calls[0]
    assert call["lossless"] is True
    assert call["metadata"] == {"exif": b"Exif\x00\x00fake"}


def test_resize_uses_computed_target(tmp_path: Path, fake_codec) -> None:
    fake_codec.size = (1200, 800)
    source = write(tmp_path / "a.png", b"source-bytes")
    task = replace(build_task(source, tmp_path / "b.png"), resize_rule=ShortEdge(edge_size=300))
    outcome = ConversionService(fake_codec).run([task])
    assert fake_codec.resize_calls == [(450, 300)]
    assert fake_codec.encode_calls[0]["size"] == (450, 300)
    assert outcome.results[0].size == (450, 300)


def test_skip_if_bigger_discards_larger_output(tmp_path: Path, fake_codec) -> None:
    fake_codec.output = b"x" * 100
    source = write(tmp_path / "a.png", b"small")
    outcome = ConversionService(fake_codec).run([build_task(source, tmp_path / "b.png", skip_if_bigger=True)])
    assert not (tmp_path / "b.png").exists()
    assert outcome.results[0].status is TaskStatus.SKIPPED
    assert outcome.summary.skipped == 1
    assert outcome.tasks_attempted == 1
    assert outcome.tasks_succeeded == 0
    assert outcome.exit_code == 0


def test_skip_if_bigger_skips_equal_size(tmp_path: Path, fake_codec) -> None:
    fake_codec.output = b"12345"
    source = write(tmp_path / "a.png", b"abcde")
    outcome = ConversionService(fake_codec).run([build_task(source, tmp_path / "b.png", skip_if_bigger=True)])
    assert outcome.results[0].status is TaskStatus.SKIPPED


def test_skip_if_bigger_writes_smaller_output(tmp_path: Path, fake_codec) -> None:
    fake_codec.output = b"tiny"
    source = write(tmp_path / "a.png", b"a much larger source payload")
    outcome = ConversionService(fake_codec).run([build_task(source, tmp_path / "b.png", skip_if_bigger=True)])
    assert outcome.results[0].status is TaskStatus.SUCCEEDED
    assert (tmp_path / "b.png").stat().st_size < source.stat().st_size


def test_continue_on_error_records_failure_and_proceeds(tmp_path: Path, fake_codec) -> None:
    src = tmp_path / "src"
    write(src / "a.png", b"good")
    write(src / "b.png", b"corrupt data")
    write(src / "c.png", b"good")
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions())
    outcome = ConversionService(fake_codec).run(plan.tasks, continue_on_error=True)
    assert [result.status for result in outcome.results] == [
        TaskStatus.SUCCEEDED,
        TaskStatus.FAILED,
        TaskStatus.SUCCEEDED,
    ]
    failed = outcome.results[1]
    assert isinstance(failed.error, CodecError)
    assert failed.error.code == "DECODE_FAILED"
    assert (tmp_path / "out" / "a.png").exists()
    assert (tmp_path / "out" / "c.png").exists()
    assert outcome.first_fatal_error is None
    assert outcome.summary.error_codes == {"DECODE_FAILED": 1}
    assert outcome.exit_code == 1


def test_failure_without_continue_aborts_batch(tmp_path: Path, fake_codec) -> None:
    src = tmp_path / "src"
    write(src / "a.png", b"corrupt")
    write(src / "b.png", b"good")
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions())
    outcome = ConversionService(fake_codec).run(plan.tasks)
    assert outcome.aborted
    assert isinstance(outcome.first_fatal_error, CodecError)
    assert outcome.tasks_attempted == 1
    assert outcome.summary.not_attempted == 1
    assert not (tmp_path / "out" / "b.png").exists()
    assert outcome.exit_code == 1


def test_write_failure_is_file_io_error(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"good")
    task = build_task(source, tmp_path / "gone" / "b.png", delete_origin=True)
    outcome = ConversionService(fake_codec).run([task])
    error = outcome.first_fatal_error
    assert isinstance(error, FileIOError)
    assert error.code == "WRITE_FAILED"
    assert source.exists()


def test_delete_origin_after_write(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"good")
    outcome = ConversionService(fake_codec).run([build_task(source, tmp_path / "b.png", delete_origin=True)])
    assert not source.exists()
    assert (tmp_path / "b.png").read_bytes() == b"encoded"
    assert outcome.results[0].origin_deleted


def test_delete_origin_after_skip(tmp_path: Path, fake_codec) -> None:
    fake_codec.output = b"x" * 100
    source = write(tmp_path / "a.png", b"small")
    task = build_task(source, tmp_path / "b.png", delete_origin=True, skip_if_bigger=True)
    outcome = ConversionService(fake_codec).run([task])
    assert outcome.results[0].status is TaskStatus.SKIPPED
    assert not source.exists()
    assert not (tmp_path / "b.png").exists()


def test_delete_origin_is_skipped_on_failure(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"corrupt")
    ConversionService(fake_codec).run([build_task(source, tmp_path / "b.png", delete_origin=True)])
    assert source.exists()


def test_delete_origin_never_removes_in_place_output(tmp_path: Path, fake_codec) -> None:
    source = write(tmp_path / "a.png", b"good")
    outcome = ConversionService(fake_codec).run([build_task(source, source, delete_origin=True)])
    assert source.read_bytes() == b"encoded"
    assert not outcome.results[0].origin_deleted


def test_parallel_run_keeps_discovery_order(tmp_path: Path, fake_codec) -> None:
    src = tmp_path / "src"
    for name in ("a", "b", "c", "d", "e"):
        write(src / f"{name}.png", b"good")
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions())
    outcome = ConversionService(fake_codec).run(plan.tasks, parallelism=3)
    assert [result.task.source.name for result in outcome.results] == ["a.png", "b.png", "c.png", "d.png", "e.png"]
    assert outcome.tasks_succeeded == 5


def test_parallel_abort_attributes_first_failure(tmp_path: Path, fake_codec) -> None:
    src = tmp_path / "src"
    write(src / "a.png", b"corrupt")
    for name in ("b", "c", "d"):
        write(src / f"{name}.png", b"good")
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions())
    outcome = ConversionService(fake_codec).run(plan.tasks, parallelism=2)
    assert outcome.results[0].status is TaskStatus.FAILED
    assert outcome.first_fatal_error is outcome.results[0].error
    assert outcome.tasks_attempted <= 4


def test_run_log_records_each_task(tmp_path: Path, fake_codec) -> None:
    src = tmp_path / "src"
    write(src / "a.png", b"good")
    write(src / "b.png", b"corrupt")
    log_file = tmp_path / "logs" / "run.jsonl"
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions())
    ConversionService(fake_codec, logger=RunLogger(log_file)).run(plan.tasks, continue_on_error=True)
    entries = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert [entry["status"] for entry in entries] == ["succeeded", "failed"]
    assert entries[1]["error_code"] == "DECODE_FAILED"
    assert entries[0]["output_bytes"] == len(b"encoded")
    assert set(entries[0]["timings"]) == {"read_ms", "decode_ms", "resize_ms", "encode_ms", "write_ms"}


def test_stripped_output_drops_jpeg_comment(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "a.jpg", size=(40, 40), comment=b"private-note")
    stripped = replace(
        build_task(source, tmp_path / "stripped.jpg"),
        source_format=ImageFormat.JPEG,
        target_format=ImageFormat.JPEG,
        params=JpegParams(),
    )
    kept = replace(stripped, destination=tmp_path / "kept.jpg", flags=TaskFlags(keep_metadata=True))
    ConversionService(PillowCodec()).run([stripped, kept])
    assert b"private-note" not in (tmp_path / "stripped.jpg").read_bytes()
    assert b"private-note" in (tmp_path / "kept.jpg").read_bytes()


def test_output_gets_default_file_mode(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "a.png")
    source.chmod(0o644)
    ConversionService(PillowCodec()).run([build_task(source, tmp_path / "b.png")])
    umask = os.umask(0)
    os.umask(umask)
    assert stat.S_IMODE((tmp_path / "b.png").stat().st_mode) == 0o666 & ~umask


def test_in_place_output_keeps_file_mode(tmp_path: Path, make_image) -> None:
    source = make_image(tmp_path / "a.png")
    source.chmod(0o640)
    ConversionService(PillowCodec()).run([build_task(source, source)])
    assert stat.S_IMODE(source.stat().st_mode) == 0o640


def test_parallel_shared_destination_keeps_discovery_order(tmp_path: Path, fake_codec) -> None:
    fake_codec.echo = True
    src = tmp_path / "src"
    write(src / "a.jpg", b"from-jpeg")
    write(src / "a.png", b"from-png")
    for name in ("b", "c", "d"):
        write(src / f"{name}.png", name.encode())
    (tmp_path / "out").mkdir()
    plan = plan_tasks(src, tmp_path / "out", ConversionOptions(target_format=ImageFormat.PNG))
    outcome = ConversionService(fake_codec).run(plan.tasks, parallelism=4)
    assert outcome.tasks_succeeded == 5
    assert (tmp_path / "out" / "a.png").read_bytes() == b"from-png"


def test_failed_read_with_unreadable_source_is_recorded(tmp_path: Path, fake_codec, monkeypatch) -> None:
    source = write(tmp_path / "a.png", b"good")
    real_stat = Path.stat

    def denied(self, *args, **kwargs):
        if self == source:
            raise PermissionError(13, "Permission denied", str(self))
        return real_stat(self, *args, **kwargs)

    def unreadable(self):
        raise PermissionError(13, "Permission denied", str(self))

    monkeypatch.setattr(Path, "stat", denied)
    monkeypatch.setattr(Path, "read_bytes", unreadable)
    result = ConversionService(fake_codec).convert_task(build_task(source, tmp_path / "b.png"))
    assert result.status is TaskStatus.FAILED
    assert result.error.code == "READ_FAILED"
    assert result.source_bytes == 0
