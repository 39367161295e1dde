"""
Clip extraction from the live snapshot.

Cuts a re-encoded, frame-accurate sub-range of the snapshot into a standalone
MP4 plus a JPEG thumbnail, reporting encode progress as it goes.
"""

import logging
import numbers
import os
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import ExternalToolError, LivetrError, ResourceNotReadyError, ValidationError
from .events import ClipCompleted, ClipFailed, ClipProgress, EventChannel
from .fixator import SnapshotFixator
from .tools import Runner, check_result, probe_duration, run_tool
from .workspace import Workspace

logger = logging.getLogger(__name__)

MIN_CLIP_SECONDS = 1.0
MAX_CLIP_SECONDS = 300.0
THUMBNAIL_WIDTH = 320

PROGRESS_PATTERN = re.compile(r"time=(\d{2}):(\d{2}):(\d{2}(?:\.\d+)?)")


class ClipQuality(str, Enum):
    """Encode effort: fast/low-effort versus slow/high-efficiency."""
    FAST = "fast"
    HIGH = "high"

    @property
    def preset(self) -> str:
        return "slow" if self is ClipQuality.HIGH else "ultrafast"


class ClipStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ClipRequest:
    id: str
    start_time: float
    end_time: float
    quality: ClipQuality

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ClipArtifact:
    clip_path: Path
    thumbnail_path: Path


def new_clip_id() -> str:
    return uuid.uuid4().hex[:8]


def validate_clip_request(
    start_time,
    end_time,
    clip_id: str,
    quality="high",
) -> ClipRequest:
    """
    Check the range and options of a clip request.

    Raises:
        ValidationError: With the specific reason the request is invalid.
    """
    for value in (start_time, end_time):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            raise ValidationError("Start and end times must be numbers")
    if not clip_id or not re.fullmatch(r"[A-Za-z0-9_-]+", str(clip_id)):
        raise ValidationError(f"Invalid clip id: {clip_id!r}")
    try:
        quality = ClipQuality(quality)
    except ValueError as e:
        raise ValidationError(
            f"Invalid quality {quality!r}. Must be one of: "
            f"{', '.join(q.value for q in ClipQuality)}"
        ) from e

    start_time = float(start_time)
    end_time = float(end_time)
    if start_time < 0:
        raise ValidationError("Start time cannot be negative")
    if start_time >= end_time:
        raise ValidationError("Start time must be less than end time")
    duration = end_time - start_time
    if duration > MAX_CLIP_SECONDS:
        raise ValidationError(f"Clip duration cannot exceed {MAX_CLIP_SECONDS:g} seconds")
    if duration < MIN_CLIP_SECONDS:
        raise ValidationError(f"Clip duration must be at least {MIN_CLIP_SECONDS:g} second")

    return ClipRequest(id=str(clip_id), start_time=start_time, end_time=end_time, quality=quality)


def parse_progress_seconds(text: str) -> Optional[float]:
    """Last ``time=HH:MM:SS.xx`` position in a chunk of ffmpeg stderr."""
    matches = PROGRESS_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressTracker:
    """Turn ffmpeg stderr chunks into non-decreasing percentages in [0, 100]."""

    def __init__(self, duration: float, on_progress):
        self.duration = duration
        self.on_progress = on_progress
        self.percent = 0.0
        self._carry = ""

    def feed(self, chunk: str) -> None:
        # A time= token may be split across two reads
        text = self._carry + chunk
        self._carry = text[-32:]
        position = parse_progress_seconds(text)
        if position is None or self.duration <= 0:
            return
        percent = min(position / self.duration * 100, 100.0)
        if percent > self.percent:
            self.percent = percent
            self.on_progress(percent)


class ClipExtractor:
    """Create clips and thumbnails from the current snapshot."""

    def __init__(
        self,
        workspace: Workspace,
        fixator: SnapshotFixator,
        channel: Optional[EventChannel] = None,
        runner: Runner = run_tool,
    ):
        self.workspace = workspace
        self.fixator = fixator
        self.channel = channel
        self.runner = runner

    def _publish(self, event) -> None:
        if self.channel is not None:
            self.channel.publish(event)

    async def create_clip(
        self,
        start_time,
        end_time,
        clip_id: str,
        quality="high",
    ) -> ClipArtifact:
        """
        Cut ``[start_time, end_time]`` from the freshest snapshot.

        Returns:
            ClipArtifact with the clip and thumbnail paths.

        Raises:
            ValidationError: Bad range, or the range ends past the snapshot.
            ResourceNotReadyError: No snapshot exists yet.
            ExternalToolError: ffmpeg/ffprobe failed.
        """
        try:
            request = validate_clip_request(start_time, end_time, clip_id, quality)
            return await self._create(request)
        except (LivetrError, OSError) as e:
            logger.error("Error creating clip %s: %s", clip_id, e)
            self._publish(ClipFailed(clip_id=str(clip_id), reason=str(e)))
            raise

    async def _create(self, request: ClipRequest) -> ClipArtifact:
        try:
            await self.fixator.fixate()
        except ResourceNotReadyError:
            # Not capturing right now; cut from the last snapshot if there is one
            logger.debug("No raw capture to fixate, using existing snapshot")
        except ExternalToolError as e:
            logger.warning("Fixation before clip failed, using last good snapshot: %s", e)

        source = self.workspace.snapshot
        if not source.exists():
            raise ResourceNotReadyError("Source video file not found")

        available = await probe_duration(str(source), self.runner)
        logger.info(
            "Source file duration: %ss, requested end time: %ss", available, request.end_time
        )
        if request.end_time > available:
            raise ValidationError(
                f"Requested end time ({request.end_time:g}s) exceeds "
                f"available video duration ({available:g}s)"
            )

        self.workspace.clips_dir.mkdir(parents=True, exist_ok=True)
        clip_path = self.workspace.clip_path(request.id)
        thumb_path = self.workspace.thumbnail_path(request.id)

        try:
            await self._encode(str(source), str(clip_path), request)
            await self._thumbnail(str(clip_path), str(thumb_path))
        except ExternalToolError:
            self._discard(clip_path)
            self._discard(thumb_path)
            raise

        artifact = ClipArtifact(clip_path=clip_path, thumbnail_path=thumb_path)
        self._publish(ClipCompleted(
            clip_id=request.id,
            clip_path=str(clip_path),
            thumbnail_path=str(thumb_path),
            start_time=request.start_time,
            duration=request.duration,
        ))
        logger.info("Clip %s created: %s", request.id, clip_path)
        return artifact

    async def _encode(self, source: str, output: str, request: ClipRequest) -> None:
        cmd = [
            "ffmpeg",
            "-i", source,
            "-ss", f"{request.start_time:g}",
            "-t", f"{request.duration:g}",
            "-c:v", "libx264",
            "-preset", request.quality.preset,
            "-c:a", "aac",
            "-y", output,
        ]
        tracker = ProgressTracker(
            request.duration,
            lambda pct: self._publish(ClipProgress(clip_id=request.id, percent=round(pct, 1))),
        )
        result = await self.runner(cmd, on_stderr=tracker.feed)
        check_result(result, "ffmpeg", "Clip encode")

    async def _thumbnail(self, clip: str, output: str) -> None:
        # The clip already starts at the requested offset, so frame 0 is the start
        cmd = [
            "ffmpeg",
            "-ss", "0",
            "-i", clip,
            "-vframes", "1",
            "-vf", f"scale={THUMBNAIL_WIDTH}:-1",
            "-y", output,
        ]
        check_result(await self.runner(cmd), "ffmpeg", "Thumbnail generation")

    @staticmethod
    def _discard(path: Path) -> None:
        if path.exists():
            path.unlink()

    def cleanup(self) -> int:
        """Remove every clip artifact, return the number of files removed."""
        removed = 0
        for path in self.workspace.clip_artifacts():
            path.unlink()
            removed += 1
        return removed
