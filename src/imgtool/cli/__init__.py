from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..config import AppConfig, load_config
from ..core import ConversionService
from ..errors import InputError, ParseError
from ..formats import parse_format
from ..logging import RunLogger
from ..models import BatchConversionResult, ConversionOptions, TaskFlags, TaskStatus
from ..params import FormatParams
from ..paths import TaskPlan, plan_tasks
from ..resize import parse_resize_args

console = Console()

app = typer.Typer(help="Compress and convert images, one file or a whole directory at a time.")

RESIZE_HELP = (
    "Resize rule as <rule>:key=value[,key=value...]. Rules: no_resize, size (w,h), "
    "scale (ratio or w,h), short_edge (edge_size), long_edge (edge_size), width (w), height (h). "
    "Values <= 1 are fractions of the original, > 1 are pixels. "
    "Modifiers: donot_enlarge=<bool> (default false), keep_aspect_ratio=<bool> (default true). "
    "Example: short_edge:edge_size=300"
)
JPEG_HELP = "JPEG options: quality=<0-100>, chroma_subsampling=<cs444|cs422|cs420|cs411|auto>, progressive=<bool>"
PNG_HELP = "PNG options: quality=<0-100>, force_zopfli=<bool>, optimization_level=<0-6>"
GIF_HELP = "GIF options: quality=<0-100>"
TIFF_HELP = "TIFF options: algorithm=<uncompressed|lzw|deflate|packbits>, deflate_level=<fast|balanced|best>"
WEBP_HELP = "WebP options: quality=<0-100>"

_STATUS_STYLE = {
    TaskStatus.SUCCEEDED: "green",
    TaskStatus.SKIPPED: "yellow",
    TaskStatus.FAILED: "red",
}


def _pick(cli_value: str | None, configured: str) -> str:
    return cli_value if cli_value is not None else configured


def _build_options(
    cfg: AppConfig,
    *,
    prefix: str,
    suffix: str,
    target_format: str | None,
    resize_args: str | None,
    jpeg_params: str | None,
    png_params: str | None,
    gif_params: str | None,
    tiff_params: str | None,
    webp_params: str | None,
    flags: TaskFlags,
) -> ConversionOptions:
    defaults = cfg.defaults
    return ConversionOptions(
        prefix=prefix,
        suffix=suffix,
        target_format=parse_format(target_format) if target_format else None,
        resize_rule=parse_resize_args(_pick(resize_args, defaults.resize_args)),
        params=FormatParams.from_strings(
            jpeg=_pick(jpeg_params, defaults.jpeg),
            png=_pick(png_params, defaults.png),
            gif=_pick(gif_params, defaults.gif),
            tiff=_pick(tiff_params, defaults.tiff),
            webp=_pick(webp_params, defaults.webp),
        ),
        flags=flags,
    )


def _print_plan(plan: TaskPlan) -> None:
    table = Table(title=f"Processing plan ({plan.mode.value})")
    table.add_column("Source")
    table.add_column("Destination")
    table.add_column("Format")
    for task in plan.tasks:
        table.add_row(
            escape(str(task.source)),
            escape(str(task.destination)),
            f"{task.source_format.value} -> {task.target_format.value}",
        )
    console.print(table)
    console.print(f"{len(plan.tasks)} file(s) would be processed.")


def _print_outcome(outcome: BatchConversionResult) -> None:
    for result in outcome.results:
        style = _STATUS_STYLE[result.status]
        line = f"[{style}]{result.status.value}[/{style}] {escape(str(result.task.source))}"
        if result.status is TaskStatus.FAILED and result.error is not None:
            line += f": {result.error.code} - {escape(str(result.error))}"
        else:
            line += f" -> {escape(str(result.task.destination))} ({result.source_bytes} -> {result.output_bytes} bytes)"
        console.print(line)

    summary = outcome.summary
    table = Table(title="Batch summary")
    table.add_column("Total")
    table.add_column("Succeeded")
    table.add_column("Skipped")
    table.add_column("Failed")
    table.add_column("Not attempted")
    table.add_row(
        str(summary.total),
        str(summary.successes),
        str(summary.skipped),
        str(summary.failures),
        str(summary.not_attempted),
    )
    console.print(table)
    if outcome.first_fatal_error is not None:
        error = outcome.first_fatal_error
        console.print(f"[red]Batch aborted[/red]: {error.code} - {escape(str(error))}")


@app.command()
def convert(
    input_path: Path = typer.Option(..., "--input", "-i", help="Input file or directory"),
    output_path: Path = typer.Option(
        ...,
        "--output",
        "-o",
        help="Output file or directory; an existing directory receives generated file names",
    ),
    prefix: str = typer.Option("", "--prefix", "-p", help="Prefix for generated output file names"),
    suffix: str = typer.Option("", "--suffix", "-s", help="Suffix for generated output file names"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the processing plan without writing anything"),
    continue_on_error: bool = typer.Option(
        False, "--continue-on-error", help="Keep processing the remaining files when one fails"
    ),
    skip_if_bigger: bool = typer.Option(
        False, "--skip-if-bigger", help="Do not write outputs that are not smaller than the source"
    ),
    target_format: str | None = typer.Option(
        None, "--target-format", "-t", help="Output format: jpg, jpeg, png, gif, tiff, webp (default: keep)"
    ),
    delete_origin: bool = typer.Option(False, "--delete-origin", help="Delete each source after it is processed"),
    keep_metadata: bool = typer.Option(False, "--keep-metadata", help="Copy EXIF and ICC metadata into the output"),
    lossless: bool = typer.Option(False, "--lossless", help="Encode at maximum fidelity regardless of quality"),
    resize_args: str | None = typer.Option(None, "--resize-args", help=RESIZE_HELP),
    jpeg_params: str | None = typer.Option(None, "--jpeg-params", help=JPEG_HELP),
    png_params: str | None = typer.Option(None, "--png-params", help=PNG_HELP),
    gif_params: str | None = typer.Option(None, "--gif-params", help=GIF_HELP),
    tiff_params: str | None = typer.Option(None, "--tiff-params", help=TIFF_HELP),
    webp_params: str | None = typer.Option(None, "--webp-params", help=WEBP_HELP),
    config: Path | None = typer.Option(None, "--config", help="Path to imgtool.toml"),
    parallel: int | None = typer.Option(None, "--parallel", min=1, help="Parallel workers"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Append a JSON line per processed file"),
) -> None:
    try:
        cfg = load_config(config)
        options = _build_options(
            cfg,
            prefix=prefix,
            suffix=suffix,
            target_format=target_format,
            resize_args=resize_args,
            jpeg_params=jpeg_params,
            png_params=png_params,
            gif_params=gif_params,
            tiff_params=tiff_params,
            webp_params=webp_params,
            flags=TaskFlags(
                lossless=lossless,
                keep_metadata=keep_metadata,
                skip_if_bigger=skip_if_bigger,
                delete_origin=delete_origin,
            ),
        )
        plan = plan_tasks(input_path, output_path, options, create_dirs=not dry_run)
    except (InputError, ParseError) as exc:
        console.print(f"[red]{type(exc).__name__}[/red]: {exc.code} - {escape(str(exc))}")
        raise typer.Exit(2) from exc

    for warning in plan.warnings:
        console.print(f"[yellow]Warning[/yellow]: {escape(warning)}")

    if dry_run:
        _print_plan(plan)
        raise typer.Exit()

    log_path = log_file or cfg.runtime.log_file
    service = ConversionService(logger=RunLogger(log_path) if log_path else None)
    outcome = service.run(
        plan.tasks,
        continue_on_error=continue_on_error or cfg.runtime.continue_on_error,
        parallelism=parallel or cfg.runtime.parallelism,
    )
    _print_outcome(outcome)
    raise typer.Exit(outcome.exit_code)


if __name__ == "__main__":
    app()
