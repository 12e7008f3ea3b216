import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from ._version import __version__

# Lazy load rich to keep `--help` fast
_console = None


def get_console():
    global _console
    if _console is None:
        from rich.console import Console
        _console = Console()
    return _console


def montage_options(f):
    """Options shared by every command that builds a MontageRequest."""
    options = [
        click.option("--interval", type=float, default=1.0, show_default=True, help="Clip length in seconds"),
        click.option("--length", type=float, default=30.0, show_default=True, help="Montage length in seconds"),
        click.option("--start-cut", type=float, default=0.0, show_default=True, help="Seconds skipped at the start"),
        click.option("--end-cut", type=float, default=60.0, show_default=True, help="Seconds skipped at the end"),
        click.option("--linear/--random", default=True, help="Chronological or shuffled clip placement"),
        click.option("--variations", type=click.IntRange(1, 20), default=1, show_default=True),
        click.option("--seed", type=int, default=None, help="Seed for reproducible plans"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _build_request(sources, interval, length, start_cut, end_cut, linear, variations, seed, **extra):
    from pydantic import ValidationError
    from .models import MontageRequest

    try:
        return MontageRequest(
            sources=list(sources),
            clip_interval_seconds=interval,
            montage_length_seconds=length,
            start_cut_seconds=start_cut,
            end_cut_seconds=end_cut,
            linear_mode=linear,
            variation_count=variations,
            seed=seed,
            **extra,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e))


@click.group()
@click.version_option(version=__version__, prog_name="clip-montage")
def cli():
    """Clip Montage - cut sources into fixed-length clips and stitch them into montages"""
    pass


@cli.command()
@click.option("--duration", type=float, required=True, help="Source duration in seconds")
@montage_options
def plan(duration: float, **kwargs):
    """Print the planned clip starts for a source of DURATION seconds."""
    from rich.table import Table
    from .exceptions import MontageError
    from .planner import plan as plan_variations

    console = get_console()
    request = _build_request(["planned-source"], **kwargs)
    try:
        variations = plan_variations(duration, request)
    except MontageError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(1)

    window = variations[0].window
    console.print(
        f"Usable range [cyan]{window.start_cut:g}s - {window.effective_end:g}s[/] "
        f"({window.usable_duration:g}s), target {variations[0].target_count} clips"
    )
    table = Table(title="Planned clips")
    table.add_column("Variation", style="cyan", no_wrap=True)
    table.add_column("Primary starts (s)", style="magenta")
    table.add_column("Backfill", justify="right")

    for variation in variations:
        primary = ", ".join(f"{start:.2f}" for start in variation.start_times[:variation.target_count])
        table.add_row(
            str(variation.variation_index + 1),
            primary,
            str(len(variation.clips) - variation.target_count),
        )
    console.print(table)


@cli.command()
@click.argument("sources", nargs=-1, required=True)
@montage_options
@click.option("--resolution", type=click.Choice(["480p", "720p", "1080p", "original"]), default="720p", show_default=True)
@click.option("--layout", type=click.Choice(["cut", "stacked"]), default="cut", show_default=True)
@click.option("--audio/--no-audio", default=True, help="Keep source audio")
@click.option("--text", default=None, help="Centered caption")
@click.option("--name", default="montage", show_default=True, help="Output file name prefix")
def render(sources: Tuple[str, ...], resolution: str, layout: str, audio: bool,
           text: Optional[str], name: str, **kwargs):
    """Render a montage from SOURCES and print the output locations."""
    from rich.progress import Progress, SpinnerColumn, TextColumn
    from .config import get_settings
    from .core.job_store import InMemoryJobStore
    from .downloader import missing_tools
    from .exceptions import MontageError
    from .job_tracker import JobTracker
    from .pipeline import JobRunner, MontagePipeline

    console = get_console()
    missing = missing_tools()
    if missing:
        console.print(f"[yellow]⚠️  Not found on PATH: {', '.join(missing)}[/]")
    request = _build_request(
        sources, **kwargs,
        output_resolution=resolution,
        layout=layout,
        keep_audio=audio,
        text_overlay={"text": text} if text else None,
        custom_filename=name,
    )

    settings = get_settings()
    settings.paths.ensure_directories()
    tracker = JobTracker(InMemoryJobStore(), retention_seconds=settings.jobs.retention_seconds)
    runner = JobRunner(MontagePipeline(tracker, settings=settings), max_workers=1)

    try:
        with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                      transient=True, console=console) as progress:
            progress.add_task(description=f"Rendering {request.variation_count} variation(s)...", total=None)
            job = runner.run_sync(request)
    except MontageError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(1)
    finally:
        runner.shutdown(wait=False)

    for warning in job.warnings:
        console.print(f"[yellow]⚠️  {warning}[/]")
    if job.error:
        console.print(f"[red]❌ {job.error}[/]")
        sys.exit(1)

    console.print(f"[green]✅ {len(job.download_urls)} montage(s) written to {settings.paths.output_dir}[/]")
    for url in job.download_urls:
        console.print(f"   {url}")


@cli.command()
@click.argument("sources", nargs=-1, required=True)
@montage_options
@click.option("--resolution", type=click.Choice(["480p", "720p", "1080p", "original"]), default="720p", show_default=True)
@click.option("--layout", type=click.Choice(["cut", "stacked"]), default="cut", show_default=True)
@click.option("--audio/--no-audio", default=True)
@click.option("--name", default="montage", show_default=True)
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Script path (defaults to <name>_montage.sh)")
def script(sources: Tuple[str, ...], resolution: str, layout: str, audio: bool, name: str,
           output: Optional[Path], **kwargs):
    """Write a standalone bash script that renders the planned montage."""
    from .config import get_settings
    from .core.job_store import InMemoryJobStore
    from .exceptions import MontageError
    from .ffmpeg_utils import VideoEncodingParams
    from .job_tracker import JobTracker
    from .pipeline import MontagePipeline, with_seed
    from .script_export import render_script, script_name

    console = get_console()
    request = with_seed(_build_request(
        sources, **kwargs,
        output_resolution=resolution, layout=layout, keep_audio=audio, custom_filename=name,
    ))

    settings = get_settings()
    pipeline = MontagePipeline(JobTracker(InMemoryJobStore()), settings=settings)
    try:
        plans, urls = pipeline.plan_remote(request)
    except MontageError as e:
        console.print(f"[red]❌ {e}[/]")
        sys.exit(1)

    content = render_script(
        request, plans, urls,
        encoding=VideoEncodingParams.from_config(settings.encoding),
        min_clip_bytes=settings.clips.min_clip_bytes,
        shrink_factor=settings.clips.stack_shrink_factor,
    )
    output = output or Path(script_name(request))
    output.write_text(content, encoding="utf-8")
    output.chmod(0o755)
    console.print(f"📝 Wrote [bold]{output}[/] (seed {request.seed})")


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=5000, show_default=True, type=int)
def web(host: str, port: int):
    """Start the HTTP API."""
    from .web_ui import create_app

    console = get_console()
    console.print("🚀 Starting Web API...")
    console.print(f"   Listening on [link=http://{host}:{port}]http://{host}:{port}[/link]")
    create_app().run(host=host, port=port, debug=False)


if __name__ == "__main__":
    cli()
