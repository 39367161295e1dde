"""
Command-line interface for live stream transcription and clipping.

Runs a live session in the terminal, printing transcript segments and status
as they arrive, and cuts clips from the session's snapshot.
"""

import asyncio
import sys
import time
from pathlib import Path
from typing import Optional

import click

from .capture import parse_duration
from .clipper import new_clip_id
from .config import (
    CLIP_QUALITIES, VALID_LANGUAGES, VALID_MODELS,
    check_ffmpeg, configure_settings, display_config, initialize_config,
    save_config, settings_from_config,
)
from .errors import LivetrError
from .events import (
    CaptureStatus, ClipCompleted, ClipFailed, ClipProgress, Event,
    HealthStatus, TranscriptionStatus, TranscriptUpdate,
)
from .logs import setup_logging
from .monitor import RecoverySupervisor
from .session import LiveSession
from .workspace import Workspace


def print_banner():
    """Print the application banner."""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║          LIVE TRANSCRIBER - Stream to Transcript & Clips      ║
║     Captures live streams via yt-dlp + FFmpeg                 ║
╚═══════════════════════════════════════════════════════════════╝
    """
    click.echo(click.style(banner, fg="cyan"))


def render_event(event: Event) -> Optional[str]:
    """Terminal line for an event, None for events that are not shown."""
    if isinstance(event, TranscriptUpdate):
        lines = [
            f"{click.style('[' + seg.start_formatted + ']', bold=True)} {seg.text}"
            for seg in event.segments
        ]
        return "\n".join(lines)
    if isinstance(event, CaptureStatus):
        return click.style(f"capture: {event.text}", fg="blue")
    if isinstance(event, TranscriptionStatus):
        return click.style(f"transcription: {event.text}", fg="bright_black")
    if isinstance(event, HealthStatus):
        color = "red" if event.level == "error" else "yellow"
        return click.style(f"health: {event.text}", fg=color)
    if isinstance(event, ClipCompleted):
        return click.style(f"clip {event.clip_id} ready: {event.clip_path}", fg="green")
    if isinstance(event, ClipFailed):
        return click.style(f"clip {event.clip_id} failed: {event.reason}", fg="red")
    return None


def _load_settings(model, language, workdir):
    config = initialize_config()
    return config, settings_from_config(
        config, cli_model=model, cli_language=language, cli_workdir=workdir
    )


@click.group(invoke_without_command=True)
@click.version_option(version="1.0.0", prog_name="livetr")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Log level for diagnostic output on stderr."
)
@click.option(
    "--configure",
    is_flag=True,
    help="Review and update livetr.conf settings interactively."
)
@click.pass_context
def main(ctx, log_level: str, configure: bool):
    """
    Live Transcriber - Capture, transcribe and clip live streams.

    Reads or creates livetr.conf in the conf/ directory. Command-line flags
    override configuration file defaults.

    \b
    Examples:
        livetr run https://www.youtube.com/live/VIDEO_ID
        livetr run https://example.com/live/index.m3u8 -m small -l en -d 10m
        livetr clip 120 150 --quality fast
        livetr check
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level

    # Handle --configure: let user edit existing config entries
    if configure:
        config = initialize_config()
        configure_settings(config)
        save_config(config)
        display_config(config)
        print("Configuration updated.")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.argument("url")
@click.option(
    "-m", "--model",
    type=click.Choice(VALID_MODELS, case_sensitive=False),
    default=None,
    help="Whisper model to use. Overrides livetr.conf setting."
)
@click.option(
    "-l", "--language",
    type=click.Choice(VALID_LANGUAGES, case_sensitive=False),
    default=None,
    help="Language code or 'auto'. Overrides livetr.conf setting."
)
@click.option(
    "-w", "--workdir",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory for capture, snapshot and clips."
)
@click.option(
    "-d", "--duration",
    type=str,
    default=None,
    help="Stop after this long (e.g., '60', '5m', '1h30m'). Default: until stream ends."
)
@click.option(
    "-q", "--quiet",
    is_flag=True,
    help="Only print transcript text, no status lines."
)
@click.pass_context
def run(ctx, url: str, model: Optional[str], language: Optional[str],
        workdir: Optional[str], duration: Optional[str], quiet: bool):
    """Capture URL and print its transcript as it is produced."""
    duration_seconds = None
    if duration:
        try:
            duration_seconds = parse_duration(duration)
        except ValueError as e:
            click.echo(click.style(str(e), fg="red"), err=True)
            sys.exit(1)

    check_ffmpeg()
    config, settings = _load_settings(model, language, workdir)
    log_file = Path(settings.logs_dir) / "livetr.log" if settings.logs_dir else None
    setup_logging(ctx.obj["log_level"], log_file=log_file)

    if not quiet:
        print_banner()
        click.echo(f"URL:      {url}")
        click.echo(f"Model:    {settings.model}")
        click.echo(f"Language: {settings.language}")
        click.echo(f"Workdir:  {settings.workdir}")
        click.echo(f"Duration: {duration or 'until stream ends'}")
        click.echo("")

    def observer(event: Event):
        if quiet and not isinstance(event, TranscriptUpdate):
            return
        line = render_event(event)
        if line:
            click.echo(line)

    async def _run():
        session = LiveSession(settings)
        session.channel.add_observer(observer)
        await session.start(url)
        deadline = time.monotonic() + duration_seconds if duration_seconds else None
        try:
            while session.is_active:
                if deadline is not None and time.monotonic() >= deadline:
                    break
                await asyncio.sleep(0.5)
        finally:
            await session.stop()
        return session.engine.cursor.total_word_count

    try:
        words = asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("\nStopped.")
        return
    except LivetrError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if not quiet:
        click.echo("")
        click.echo(click.style("Session finished.", fg="green", bold=True))
        click.echo(f"  Words: {words:,}")


@main.command()
@click.argument("start", type=float)
@click.argument("end", type=float)
@click.option(
    "--quality",
    type=click.Choice(CLIP_QUALITIES, case_sensitive=False),
    default=None,
    help="Encode tier: 'fast' (ultrafast preset) or 'high' (slow preset)."
)
@click.option("--id", "clip_id", default=None, help="Clip id (default: random).")
@click.option(
    "-w", "--workdir",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory of the session to clip from."
)
@click.pass_context
def clip(ctx, start: float, end: float, quality: Optional[str],
         clip_id: Optional[str], workdir: Optional[str]):
    """Cut START..END seconds from the current snapshot into a clip."""
    check_ffmpeg()
    config, settings = _load_settings(None, None, workdir)
    setup_logging(ctx.obj["log_level"])
    clip_id = clip_id or new_clip_id()

    def observer(event: Event):
        if isinstance(event, ClipProgress):
            bar_width = 30
            filled = int(bar_width * event.percent / 100)
            bar = "█" * filled + "░" * (bar_width - filled)
            click.echo(f"\r[{bar}] {event.percent:5.1f}%", nl=False)

    async def _clip():
        session = LiveSession(settings)
        session.channel.add_observer(observer)
        return await session.clipper.create_clip(
            start, end, clip_id, quality or settings.clip_quality
        )

    try:
        artifact = asyncio.run(_clip())
    except LivetrError as e:
        click.echo("")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("")
    click.echo(click.style("Clip created!", fg="green", bold=True))
    click.echo(f"  Clip:      {artifact.clip_path}")
    click.echo(f"  Thumbnail: {artifact.thumbnail_path}")


@main.command()
@click.option(
    "-w", "--workdir",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory to check."
)
def check(workdir: Optional[str]):
    """Report disk space, dependencies and capture file state."""
    config, settings = _load_settings(None, None, workdir)
    supervisor = RecoverySupervisor(Workspace(settings.workdir))
    report = supervisor.check_health()

    free = report.disk.free
    free_text = f"{free / (1024 * 1024):,.0f} MB" if free is not None else "unknown"
    disk_color = "green" if report.disk.sufficient else "red"
    click.echo(f"Disk free:    {click.style(free_text, fg=disk_color)}")
    for name, ok in report.dependencies.items():
        mark = click.style("OK", fg="green") if ok else click.style("MISSING", fg="red")
        click.echo(f"  {name:12} {mark}")
    if report.capture.exists:
        click.echo(f"Raw capture:  {report.capture.size:,} bytes")
    else:
        click.echo("Raw capture:  none")

    if report.missing_dependencies or not report.disk.sufficient:
        sys.exit(1)


@main.command()
def models():
    """List available Whisper models with descriptions."""
    print_banner()

    click.echo("Available Whisper Models:")
    click.echo("")

    model_info = [
        ("tiny", "~39M params", "Fastest, lowest accuracy", "~1GB VRAM"),
        ("base", "~74M params", "Good balance for live transcription", "~1GB VRAM"),
        ("small", "~244M params", "Better accuracy, reasonable speed", "~2GB VRAM"),
        ("medium", "~769M params", "High accuracy, may fall behind live", "~5GB VRAM"),
        ("large", "~1550M params", "Best accuracy, needs a fast GPU", "~10GB VRAM"),
    ]

    for name, params, desc, vram in model_info:
        click.echo(f"  {name:12} {params:15} {desc:40} {vram}")

    click.echo("")
    click.echo("Languages: " + ", ".join(VALID_LANGUAGES))


if __name__ == "__main__":
    main()
