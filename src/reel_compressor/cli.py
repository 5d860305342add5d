"""
CLI module - Command line interface for Reel Compressor

Entry point for the `reelc` command using Typer.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config, validate_config
from .constants import COMPRESSED_SUFFIX, VIDEO_EXTENSIONS
from .encoder import CODECS, list_available_encoders
from .errors import CompressionError
from .log import setup_logging
from .orchestrator import CompressionRequest, CompressionResult, PipelineOrchestrator
from .profiles import ProfileCatalog, format_bitrate
from .prober import SourceProber
from .runners import ItemOutcome, PoolRunner, RunnerCallbacks
from .thumbnail import ThumbnailExtractor
from .tools import ToolPaths, check_tools_status, get_ffmpeg_version

console = Console()
app = typer.Typer(
    name="reelc",
    help="Reel Compressor - fit videos under a target size with speed/quality profiles.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

MB = 1024 * 1024


# Global options callback for version
def version_callback(value: bool):
    if value:
        console.print(f"reelc version {__version__}")
        raise typer.Exit()


# Type aliases for common options
ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file", exists=True, dir_okay=False),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", help="Debug logging")]


def get_config(config_path: Path | None = None, verbose: bool = False) -> AppConfig:
    """Load configuration, validate it and set up logging."""
    config = load_config(config_path)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {escape(error)}")
        raise typer.Exit(1)
    setup_logging(config, verbose=verbose, console=console)
    return config


def get_catalog(config: AppConfig) -> ProfileCatalog:
    try:
        return ProfileCatalog.from_yaml_config({"profiles": config.profiles})
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version")
    ] = False,
):
    """Reel Compressor - fit videos under a target size with speed/quality profiles."""
    pass


def format_size_change(size_reduction: float) -> str:
    """Format size reduction as human-readable string."""
    pct = abs(size_reduction * 100)
    if size_reduction > 0:
        return f"[green]{pct:.0f}% smaller[/green]"
    elif size_reduction < 0:
        return f"[yellow]{pct:.0f}% larger[/yellow]"
    else:
        return "same size"


def find_videos(folder: Path) -> list[Path]:
    """Video files directly inside `folder`, skipping earlier outputs."""
    return sorted(
        p
        for p in folder.iterdir()
        if p.is_file() and p.suffix in VIDEO_EXTENSIONS and not p.stem.endswith(COMPRESSED_SUFFIX)
    )


def print_result(result: CompressionResult) -> None:
    table = Table(title=f"Result: {result.output_asset.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Output", str(result.output_asset))
    if result.output_url:
        table.add_row("URL", result.output_url)
    table.add_row("Profile", f"{result.profile_used} (quality {result.quality_score})")
    table.add_row("Codec", result.codec or "-")
    table.add_row("Original", f"{result.original_size_bytes / MB:.1f} MB")
    table.add_row("Compressed", f"{result.compressed_size_bytes / MB:.1f} MB")
    table.add_row("Ratio", f"{result.compression_ratio:.2f}x ({format_size_change(result.size_reduction)})")
    table.add_row("Time", f"{result.processing_duration_ms / 1000:.1f} s")
    table.add_row("Speed factor", f"{result.speed_factor:.2f}")
    table.add_row("Audio", "[green]Yes[/green]" if result.audio_preserved else "[dim]No[/dim]")
    table.add_row("Pass-through", "Yes" if result.passthrough else "No")
    if result.thumbnail:
        thumb = result.thumbnail
        table.add_row("Thumbnail", f"{thumb.width}x{thumb.height} @ {thumb.timestamp_seconds:.2f}s")

    console.print(table)
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


@app.command()
def compress(
    video: Annotated[Path, typer.Argument(help="Video file to compress", exists=True, dir_okay=False)],
    target_mb: Annotated[float, typer.Option("--target", "-t", help="Target size in MB", min=0.01)],
    profile: Annotated[str | None, typer.Option("--profile", "-p", help="Profile (see list-profiles)")] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Output directory")] = None,
    no_audio: Annotated[bool, typer.Option("--no-audio", help="Drop the audio track")] = False,
    chunks: Annotated[int | None, typer.Option("--chunks", help="Encode N time ranges in parallel", min=1)] = None,
    thumbnail_at: Annotated[
        float | None, typer.Option("--thumbnail-at", help="Thumbnail timestamp in seconds")
    ] = None,
    save_thumbnail: Annotated[
        bool, typer.Option("--save-thumbnail", help="Write the thumbnail next to the output")
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Compress a single video to fit a target size.

    [bold]Examples:[/bold]

        reelc compress clip.mov -t 50

        reelc compress clip.mov -t 25 -p fast -o ./out

        reelc compress clip.mov -t 50 -p premium --chunks 4
    """
    cfg = get_config(config, verbose)
    catalog = get_catalog(cfg)
    profile_name = profile or cfg.pipeline.default_profile

    if profile_name not in catalog:
        console.print(f"[red]Error:[/red] Unknown profile: {profile_name}")
        console.print(f"Available: {', '.join(catalog.names())}")
        raise typer.Exit(1)

    prof = catalog.resolve(profile_name)
    console.print(f"[bold]Input:[/bold] {video}")
    console.print(f"[bold]Target:[/bold] {target_mb:.1f} MB")
    console.print(f"[bold]Profile:[/bold] {prof.name} - {prof.description}")
    console.print()

    orchestrator = PipelineOrchestrator(catalog=catalog, config=cfg, tools=ToolPaths.resolve(cfg.tools))

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(video.name, total=100)
        request = CompressionRequest(
            source=video,
            target_size_bytes=int(target_mb * MB),
            profile_name=prof.name,
            preserve_audio=not no_audio,
            progress=lambda pct: progress.update(task, completed=pct),
            output_dir=output,
            thumbnail_at=cfg.thumbnail.timestamp if thumbnail_at is None else thumbnail_at,
            parallel_chunks=chunks,
        )
        try:
            result = orchestrator.compress(request)
        except CompressionError as e:
            progress.stop()
            console.print(f"[red]Failed \\[{e.stage}]:[/red] {escape(e.message)}")
            raise typer.Exit(1) from None

    print_result(result)

    if save_thumbnail and result.thumbnail:
        thumb_dir = output or video.parent
        thumb_path = result.thumbnail.save(thumb_dir / f"{video.stem}_thumb.jpg")
        console.print(f"Thumbnail: {thumb_path}")


@app.command()
def batch(
    folder: Annotated[Path, typer.Argument(help="Folder of videos", exists=True, file_okay=False)],
    target_mb: Annotated[float, typer.Option("--target", "-t", help="Target size in MB per video", min=0.01)],
    profile: Annotated[str | None, typer.Option("--profile", "-p", help="Profile (see list-profiles)")] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Output directory")] = None,
    workers: Annotated[int | None, typer.Option("--workers", "-w", help="Concurrent pipelines", min=1)] = None,
    no_audio: Annotated[bool, typer.Option("--no-audio", help="Drop audio tracks")] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
):
    """
    Compress every video in a folder on a worker pool.

    [bold]Examples:[/bold]

        reelc batch ./clips -t 50 -p balanced -o ./out

        reelc batch ./clips -t 10 -p maximum-speed -w 2
    """
    cfg = get_config(config, verbose)
    catalog = get_catalog(cfg)
    profile_name = profile or cfg.pipeline.default_profile

    if profile_name not in catalog:
        console.print(f"[red]Error:[/red] Unknown profile: {profile_name}")
        console.print(f"Available: {', '.join(catalog.names())}")
        raise typer.Exit(1)

    videos = find_videos(folder)
    if not videos:
        console.print(f"[yellow]No videos found in {folder}[/yellow]")
        return

    max_workers = workers or cfg.worker_count
    console.print(f"[bold]Processing:[/bold] {len(videos)} videos from {folder}")
    console.print(f"[bold]Profile:[/bold] {catalog.resolve(profile_name).name}")
    console.print(f"[bold]Workers:[/bold] {max_workers}")
    console.print()

    requests = [
        CompressionRequest(
            source=video,
            target_size_bytes=int(target_mb * MB),
            profile_name=profile_name,
            preserve_audio=not no_audio,
            output_dir=output,
            thumbnail_at=None,
        )
        for video in videos
    ]

    def on_item_start(path: Path, idx: int, total: int):
        console.print(f"  [{idx}/{total}] Compressing: {path.name}...")

    def on_item_complete(outcome: ItemOutcome):
        if outcome.result:
            r = outcome.result
            note = " (pass-through)" if r.passthrough else ""
            console.print(
                f"  [green]✓[/green] {outcome.source.name} {r.original_size_bytes / MB:.1f}MB -> "
                f"{r.compressed_size_bytes / MB:.1f}MB ({format_size_change(r.size_reduction)}){note}"
            )
        else:
            console.print(
                f"  [red]✗[/red] {escape(outcome.source.name)} \\[{outcome.stage}] {escape(outcome.error or '')}"
            )

    callbacks = RunnerCallbacks(on_item_start=on_item_start, on_item_complete=on_item_complete)
    orchestrator = PipelineOrchestrator(catalog=catalog, config=cfg, tools=ToolPaths.resolve(cfg.tools))

    with PoolRunner(orchestrator, max_workers=max_workers) as runner:
        result = runner.run(requests, callbacks)

    console.print()
    console.print(
        f"[bold]Done:[/bold] {result.completed} succeeded, {result.failed} failed, "
        f"{result.passthrough} passed through"
    )
    if result.total_input_bytes:
        console.print(
            f"Total: {result.total_input_bytes / MB:.1f}MB -> {result.total_output_bytes / MB:.1f}MB "
            f"({result.compression_ratio:.2f}x)"
        )
    if not result.success:
        raise typer.Exit(1)


@app.command()
def probe(
    video: Annotated[Path, typer.Argument(help="Video file to inspect", exists=True, dir_okay=False)],
    config: ConfigOption = None,
):
    """Show duration, resolution and size of a video."""
    cfg = get_config(config)
    tools = ToolPaths.resolve(cfg.tools)
    try:
        info = SourceProber(tools.ffprobe, timeout=cfg.pipeline.probe_timeout).probe(video)
    except CompressionError as e:
        console.print(f"[red]Failed \\[{e.stage}]:[/red] {escape(e.message)}")
        raise typer.Exit(1) from None

    table = Table(title=f"Probe: {video.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Path", str(info.path))
    table.add_row("File Size", f"{info.size_bytes / MB:.1f} MB")
    table.add_row("Duration", f"{info.duration_seconds:.2f} s")
    table.add_row("Dimensions", f"{info.width}x{info.height}")
    table.add_row("Frame Rate", f"{info.frame_rate:.3f}" if info.frame_rate else "-")
    table.add_row("Video Codec", info.video_codec or "-")
    table.add_row("Audio", "Yes" if info.has_audio else "No")

    console.print(table)


@app.command()
def thumbnail(
    video: Annotated[Path, typer.Argument(help="Video file", exists=True, dir_okay=False)],
    timestamp: Annotated[float | None, typer.Option("--at", "-t", help="Timestamp in seconds")] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Output JPEG path")] = None,
    config: ConfigOption = None,
):
    """
    Capture a single JPEG frame.

    [bold]Examples:[/bold]

        reelc thumbnail clip.mov

        reelc thumbnail clip.mov -t 12.5 -o cover.jpg
    """
    cfg = get_config(config)
    tools = ToolPaths.resolve(cfg.tools)
    extractor = ThumbnailExtractor(
        tools.ffmpeg,
        prober=SourceProber(tools.ffprobe, timeout=cfg.pipeline.probe_timeout),
        box_width=cfg.thumbnail.width,
        box_height=cfg.thumbnail.height,
        quality=cfg.thumbnail.quality,
        timeout=cfg.thumbnail.timeout,
    )
    try:
        thumb = extractor.extract(video, cfg.thumbnail.timestamp if timestamp is None else timestamp)
    except CompressionError as e:
        console.print(f"[red]Failed \\[{e.stage}]:[/red] {escape(e.message)}")
        raise typer.Exit(1) from None

    path = thumb.save(output or video.with_name(f"{video.stem}_thumb.jpg"))
    console.print(f"[green]Success![/green] {thumb.width}x{thumb.height} at {thumb.timestamp_seconds:.2f}s")
    console.print(f"Output: {path}")


@app.command()
def check(config: ConfigOption = None):
    """Check ffmpeg/ffprobe and which codecs this build can encode."""
    cfg = get_config(config)
    tools = check_tools_status(cfg.tools)

    table = Table(title="System Dependencies")
    table.add_column("Tool", style="cyan")
    table.add_column("Status")
    table.add_column("Path", style="dim")

    for tool, path in tools.items():
        if path:
            status_str = "[green]Available[/green]"
            path_str = str(path)
        else:
            status_str = "[red]Missing[/red]"
            path_str = "-"
        table.add_row(tool, status_str, path_str)

    console.print(table)

    if tools.get("ffmpeg") is None:
        console.print("\n[yellow]Warning:[/yellow] ffmpeg is missing.")
        console.print("Install system tools: sudo apt install ffmpeg")
        raise typer.Exit(1)

    ffmpeg = str(tools["ffmpeg"])
    version = get_ffmpeg_version(ffmpeg)
    if version:
        console.print(f"[dim]{version}[/dim]")

    available = list_available_encoders(ffmpeg)
    codec_table = Table(title="Codec Support (preference order)")
    codec_table.add_column("Codec", style="cyan")
    codec_table.add_column("Video")
    codec_table.add_column("Audio")
    codec_table.add_column("Container")

    def mark(encoder: str) -> str:
        return f"[green]{encoder}[/green]" if encoder in available else f"[red]{encoder}[/red]"

    for name in cfg.pipeline.codec_preference:
        codec = CODECS.get(name)
        if codec is None:
            codec_table.add_row(name, "[red]unknown[/red]", "-", "-")
            continue
        codec_table.add_row(codec.name, mark(codec.video_encoder), mark(codec.audio_encoder), codec.container)

    console.print(codec_table)


@app.command("list-profiles")
def list_profiles(config: ConfigOption = None):
    """List available compression profiles, fastest first."""
    cfg = get_config(config)
    catalog = get_catalog(cfg)

    table = Table(title="Available Compression Profiles")
    table.add_column("Name", style="cyan")
    table.add_column("Scale")
    table.add_column("FPS")
    table.add_column("Stride")
    table.add_column("Video")
    table.add_column("Audio")
    table.add_column("Quality")
    table.add_column("Description")

    for prof in catalog:
        audio = format_bitrate(prof.audio_bitrate_bps) if prof.has_audio else "[dim]-[/dim]"
        table.add_row(
            prof.name,
            f"{prof.scale_factor:.2f}",
            f"{prof.target_frame_rate:g}",
            str(prof.frame_stride),
            format_bitrate(prof.video_bitrate_bps),
            audio,
            str(prof.quality_score),
            prof.description,
        )

    console.print(table)


def main_cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main_cli()
