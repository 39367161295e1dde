"""
Stream capture module using yt-dlp and FFmpeg.

Resolves a playable URL for a live source, runs the FFmpeg copy process that
writes the raw capture, and keeps the fixed snapshot fresh while it runs.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import yt_dlp

from .errors import (
    ExternalToolError,
    LivetrError,
    StreamUnavailableError,
    StreamUnavailableReason,
    ValidationError,
)
from .events import CaptureStatus, EventChannel
from .fixator import FixedSnapshot, SnapshotFixator
from .polling import StatFunc, stat_file
from .workspace import Workspace
from . import tools

logger = logging.getLogger(__name__)

SOURCE_PATTERN = re.compile(
    r'^(https?://)?(www\.|m\.)?'
    r'(youtube\.com/(live/|watch\?v=)|youtu\.be/|\S+\.(m3u8|mpd)(\?\S*)?$)',
    re.IGNORECASE,
)
PLATFORM_PATTERN = re.compile(
    r'^(https?://)?(www\.|m\.)?(youtube\.com|youtu\.be)/',
    re.IGNORECASE,
)

# 1080p60 + audio, then 720p60 + audio, then whatever is best
FORMAT_PREFERENCE = "312+234/311+234/best"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

FIXATION_INTERVAL = 10.0
FIXATION_STALENESS = 30.0
TERMINATE_GRACE = 5.0


def parse_duration(duration_str: str) -> float:
    """
    Parse a duration string into seconds.

    Supports:
        - Plain seconds: "60", "90.5"
        - Minutes: "5m"
        - Hours: "1h"
        - Combinations: "1h30m", "2h15m30s"

    Raises:
        ValueError: If the string cannot be parsed.
    """
    duration_str = duration_str.strip()

    try:
        return float(duration_str)
    except ValueError:
        pass

    pattern = r'(?:(\d+)h)?(?:(\d+)m)?(?:(\d+(?:\.\d+)?)s)?$'
    match = re.match(pattern, duration_str, re.IGNORECASE)

    if not match or not any(match.groups()):
        raise ValueError(
            f"Invalid duration format: '{duration_str}'. "
            f"Use seconds (60), minutes (5m), hours (1h), or combos (1h30m)."
        )

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = float(match.group(3) or 0)

    return hours * 3600 + minutes * 60 + seconds


@dataclass(frozen=True)
class ResolvedStream:
    """A single combined URL, or separate video and audio URLs."""
    stream_url: str
    audio_url: Optional[str] = None

    @property
    def is_split(self) -> bool:
        return self.audio_url is not None


@dataclass(frozen=True)
class CaptureSession:
    source_url: str
    stream_url: str
    audio_url: Optional[str]
    started_at: float


def is_valid_source(ref: str) -> bool:
    """True for YouTube live/watch URLs and direct .m3u8/.mpd manifests."""
    return bool(ref) and SOURCE_PATTERN.match(ref.strip()) is not None


def is_platform_url(ref: str) -> bool:
    return PLATFORM_PATTERN.match(ref.strip()) is not None


def classify_platform_error(message: str) -> Optional[StreamUnavailableReason]:
    """Map yt-dlp error text to a known unavailability reason."""
    text = message.lower()
    if "will begin in" in text or "premieres in" in text:
        return StreamUnavailableReason.NOT_STARTED
    if "live event has ended" in text or "stream has ended" in text:
        return StreamUnavailableReason.ENDED
    if "sign in" in text:
        return StreamUnavailableReason.AUTH_REQUIRED
    return None


def extract_stream_urls(ref: str) -> ResolvedStream:
    """
    Ask yt-dlp for the playable URL(s) of a platform page.

    Blocking; the ingestor runs it in an executor.

    Raises:
        StreamUnavailableError: Known platform refusal (not started, ended,
            sign-in required).
        ExternalToolError: Any other extraction failure.
    """
    ydl_opts = {
        "quiet": True,
        "no_warnings": True,
        "skip_download": True,
        "format": FORMAT_PREFERENCE,
        "nocheckcertificate": True,
        "extractor_args": {"youtube": {"player_client": ["android"]}},
        "http_headers": {"User-Agent": USER_AGENT},
    }

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(ref, download=False)
    except yt_dlp.utils.DownloadError as e:
        reason = classify_platform_error(str(e))
        if reason is not None:
            raise StreamUnavailableError(reason, stderr=str(e)) from e
        raise ExternalToolError(
            f"Failed to get manifest URL: {e}", tool="yt-dlp", stderr=str(e)
        ) from e

    info = info or {}
    requested = info.get("requested_formats") or []
    urls = [f["url"] for f in requested if f.get("url")]
    if len(urls) >= 2:
        return ResolvedStream(stream_url=urls[0], audio_url=urls[1])
    url = info.get("url") or (urls[0] if urls else None)
    if not url:
        raise ExternalToolError("yt-dlp returned no playable URL", tool="yt-dlp")
    return ResolvedStream(stream_url=url)


def build_capture_command(resolved: ResolvedStream, output_path: str) -> List[str]:
    """FFmpeg copy command merging split video/audio inputs when needed."""
    cmd = ["ffmpeg", "-nostats", "-i", resolved.stream_url]
    if resolved.is_split:
        cmd.extend(["-i", resolved.audio_url])
    cmd.extend([
        "-c", "copy",
        "-f", "mpegts",
        "-y", output_path,
    ])
    return cmd


class StreamIngestor:
    """Turn a source reference into a running capture and keep the snapshot fresh."""

    def __init__(
        self,
        workspace: Workspace,
        fixator: SnapshotFixator,
        channel: Optional[EventChannel] = None,
        resolver: Callable[[str], ResolvedStream] = extract_stream_urls,
        spawner=tools.spawn_tool,
        stat: StatFunc = stat_file,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
        fixation_interval: float = FIXATION_INTERVAL,
        fixation_staleness: float = FIXATION_STALENESS,
    ):
        """
        Initialize the ingestor.

        Args:
            workspace: Session working directory layout.
            fixator: Fixator that owns the snapshot file.
            channel: Where capture status is published.
            resolver: Blocking callable returning the playable URL(s).
            spawner: Coroutine starting the long-running capture process.
            stat, clock, sleep: Injection points for tests.
            fixation_interval: Seconds between fixation passes.
            fixation_staleness: Maximum snapshot age when the raw size
                did not change.
        """
        self.workspace = workspace
        self.fixator = fixator
        self.channel = channel
        self.resolver = resolver
        self.spawner = spawner
        self.stat = stat
        self.clock = clock
        self.sleep = sleep
        self.fixation_interval = fixation_interval
        self.fixation_staleness = fixation_staleness

        self.is_active = False
        self.session: Optional[CaptureSession] = None
        self.last_source: Optional[str] = None
        self.on_terminated: Optional[Callable[[], None]] = None

        self._process: Optional[asyncio.subprocess.Process] = None
        self._fixation_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._last_fixed_size = 0
        self._last_fixation_time: Optional[float] = None

    def _status(self, text: str) -> None:
        logger.info(text)
        if self.channel is not None:
            self.channel.publish(CaptureStatus(text))

    @staticmethod
    def is_valid_source(ref: str) -> bool:
        return is_valid_source(ref)

    async def resolve_playable_url(self, ref: str) -> ResolvedStream:
        """
        Resolve a source reference into playable URL(s).

        Direct manifests are returned unchanged; platform pages go through
        yt-dlp in a worker thread.

        Raises:
            ValidationError: If the reference is not an accepted source.
            StreamUnavailableError: Known platform refusal, also published
                as capture status.
            ExternalToolError: Any other resolution failure.
        """
        if not is_valid_source(ref):
            raise ValidationError(f"Invalid URL format: {ref!r}")
        ref = ref.strip()
        if not is_platform_url(ref):
            return ResolvedStream(stream_url=ref)

        self._status("Getting stream URL...")
        loop = asyncio.get_running_loop()
        try:
            resolved = await loop.run_in_executor(None, self.resolver, ref)
        except StreamUnavailableError as e:
            self._status(str(e))
            raise

        if resolved.is_split:
            self._status("Got video and audio URLs")
        else:
            self._status("Got stream URL")
        return resolved

    async def start_capture(self, ref: str) -> CaptureSession:
        """
        Validate, resolve and launch the capture process.

        Raises:
            ValidationError: Bad reference or a capture already running.
            ExternalToolError: Resolution or spawn failure; the ingestor is
                stopped before the error propagates.
        """
        if self.is_active:
            raise ValidationError("A capture is already running; stop it first")
        if not is_valid_source(ref):
            self._status("Invalid URL format")
            raise ValidationError(f"Invalid URL format: {ref!r}")

        ref = ref.strip()
        self.is_active = True
        self.last_source = ref
        self._status("Starting download process...")

        try:
            resolved = await self.resolve_playable_url(ref)
            self.workspace.ensure()
            self.workspace.reset_capture_files()
            self.fixator.reset()
            self._last_fixed_size = 0
            self._last_fixation_time = None

            cmd = build_capture_command(resolved, str(self.workspace.raw_capture))
            self._process = await self.spawner(cmd)
        except LivetrError as e:
            self._status(f"Download error: {e}")
            await self.stop()
            raise

        self.session = CaptureSession(
            source_url=ref,
            stream_url=resolved.stream_url,
            audio_url=resolved.audio_url,
            started_at=time.time(),
        )
        self._status("Started ffmpeg download process")
        self._watch_task = asyncio.ensure_future(self._watch_process(self._process))
        self._fixation_task = asyncio.ensure_future(self._fixation_loop())
        return self.session

    async def _watch_process(self, proc) -> None:
        try:
            await self._drain_stderr(proc)
        except (OSError, ValueError) as e:
            logger.warning("Stopped reading capture stderr: %s", e)

        code = await proc.wait()
        if self._process is not proc:
            # Stopped on purpose; stop() already reported it
            return

        self._status(f"Download process exited with code {code}")
        await self.stop()
        if self.on_terminated is not None:
            self.on_terminated()

    @staticmethod
    async def _drain_stderr(proc) -> None:
        # Progress records end in \r, so read chunks rather than lines
        if proc.stderr is None:
            return
        while True:
            chunk = await proc.stderr.read(4096)
            if not chunk:
                break
            logger.debug("ffmpeg stderr: %s", chunk.decode("utf-8", errors="replace").strip())

    async def _fixation_loop(self) -> None:
        while True:
            await self.sleep(self.fixation_interval)
            await self.fixation_pass()

    def fixation_due(self, size: int, now: float) -> bool:
        """Fixate when the raw capture grew or the snapshot is getting stale."""
        if size != self._last_fixed_size:
            return True
        if self._last_fixation_time is None:
            return True
        return (now - self._last_fixation_time) > self.fixation_staleness

    async def fixation_pass(self) -> Optional[FixedSnapshot]:
        """One scheduled fixation attempt; failures are reported, not raised."""
        st = self.stat(str(self.workspace.raw_capture))
        if st is None or st.size == 0:
            logger.debug("Raw capture missing or empty, skipping fixation")
            return None

        now = self.clock()
        if not self.fixation_due(st.size, now):
            return None

        logger.debug("Fixing file: %d bytes (previous: %d bytes)", st.size, self._last_fixed_size)
        self._last_fixed_size = st.size
        try:
            snapshot = await self.fixator.fixate()
        except LivetrError as e:
            logger.warning("Scheduled fixation failed: %s", e)
            return None

        if snapshot is not None:
            self._last_fixation_time = now
        return snapshot

    async def stop(self) -> None:
        """Cancel fixation, terminate the capture process. Idempotent."""
        if not self.is_active and self._process is None and self._fixation_task is None:
            return

        self.is_active = False
        self.session = None

        task = self._fixation_task
        self._fixation_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        proc = self._process
        self._process = None
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
            else:
                try:
                    await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE)
                except asyncio.TimeoutError:
                    proc.kill()
                    await proc.wait()

        self._status("Download stopped")
