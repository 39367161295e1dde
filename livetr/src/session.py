"""
Live session that wires capture, fixation, transcription and clipping together.

One LiveSession owns one working directory and one event channel; the
transport layers only talk to it through start/stop/create_clip and the
channel.
"""

import asyncio
import functools
import logging
from collections import OrderedDict
from typing import Dict, Optional

from .capture import StreamIngestor, extract_stream_urls
from .clipper import ClipArtifact, ClipExtractor, ClipStatus, new_clip_id, validate_clip_request
from .config import SessionSettings
from .engine import TranscriptionEngine
from .errors import LivetrError, ValidationError
from .events import ClipFailed, EventChannel
from .fixator import SnapshotFixator
from .monitor import RecoverySupervisor
from .tools import run_tool, spawn_tool
from .transcriber import Transcriber
from .workspace import Workspace

logger = logging.getLogger(__name__)

# Finished clip statuses kept for lookups; older ones are forgotten
MAX_TRACKED_CLIPS = 100


class LiveSession:
    """
    A single capture/transcription session plus on-demand clipping.

    Components are built eagerly so their state can be inspected; nothing
    runs until start() is awaited.
    """

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        channel: Optional[EventChannel] = None,
        transcriber: Optional[Transcriber] = None,
        runner=run_tool,
        spawner=spawn_tool,
        resolver=extract_stream_urls,
    ):
        """
        Initialize the session.

        Args:
            settings: Session settings (workdir, model, language, timings).
            channel: Event channel; a new one is created if omitted.
            transcriber: Whisper wrapper; built from settings if omitted.
            runner: Coroutine used for short-lived tool runs.
            spawner: Coroutine used to start the capture process.
            resolver: Blocking callable resolving platform URLs.
        """
        self.settings = settings or SessionSettings()
        self.channel = channel or EventChannel()
        self.workspace = Workspace(self.settings.workdir).ensure()
        self.source: Optional[str] = None

        self.fixator = SnapshotFixator(self.workspace, self.channel, runner=runner)
        self.ingestor = StreamIngestor(
            self.workspace,
            self.fixator,
            self.channel,
            resolver=resolver,
            spawner=spawner,
            fixation_interval=self.settings.fixation_interval,
            fixation_staleness=self.settings.fixation_staleness,
        )
        self.ingestor.on_terminated = self._on_capture_terminated
        self.engine = TranscriptionEngine(
            self.workspace,
            self.channel,
            transcriber=transcriber or Transcriber(
                model_name=self.settings.model, device=self.settings.device
            ),
            runner=runner,
            cycle_interval=self.settings.cycle_interval,
            model=self.settings.model,
            language=self.settings.language,
        )
        self.clipper = ClipExtractor(self.workspace, self.fixator, self.channel, runner=runner)
        self.monitor = RecoverySupervisor(
            self.workspace,
            self.channel,
            is_capturing=lambda: self.ingestor.is_active,
            restart=self.restart,
            cleanup=self.cleanup_files,
            interval=self.settings.health_interval,
        )

        self.clip_statuses: "OrderedDict[str, ClipStatus]" = OrderedDict()
        self._clip_tasks: Dict[str, asyncio.Task] = {}

    @property
    def is_active(self) -> bool:
        return self.ingestor.is_active

    async def start(
        self,
        source: str,
        model: Optional[str] = None,
        language: Optional[str] = None,
    ) -> None:
        """
        Start capturing ``source`` and transcribing it.

        Raises:
            ValidationError: Bad source, model or language.
            ExternalToolError: The stream could not be resolved or captured.
        """
        if self.ingestor.is_active:
            raise ValidationError("A capture is already running; stop it first")
        self.engine.check_choices(model or None, language or None)

        await self.ingestor.start_capture(source)
        self.source = source.strip()
        self.engine.start(model, language)
        self.monitor.start()

    async def stop(self) -> None:
        """Stop transcription, health checks and the capture process."""
        self.engine.stop()
        self.monitor.stop()
        await self.ingestor.stop()

    async def restart(self) -> None:
        """Stop and start again with the same source; used for recovery."""
        source = self.source or self.ingestor.last_source
        if not source:
            raise ValidationError("No source to restart")

        logger.info("Restarting session for %s", source)
        self.engine.stop()
        await self.ingestor.stop()
        self.workspace.remove_raw_capture()
        await self.ingestor.start_capture(source)
        self.engine.start()

    def _on_capture_terminated(self) -> None:
        self.engine.stop()
        self.monitor.stop()

    def create_clip(
        self,
        start_time,
        end_time,
        quality: Optional[str] = None,
        clip_id: Optional[str] = None,
    ) -> str:
        """
        Validate a clip request and start it in the background.

        Returns:
            The request id; progress and the result arrive on the channel.

        Raises:
            ValidationError: The range or quality is invalid (nothing runs).
        """
        clip_id = clip_id or new_clip_id()
        quality = quality or self.settings.clip_quality
        try:
            validate_clip_request(start_time, end_time, clip_id, quality)
        except ValidationError as e:
            self.channel.publish(ClipFailed(clip_id=clip_id, reason=str(e)))
            raise

        self._track_clip(clip_id)
        task = asyncio.ensure_future(self._run_clip(start_time, end_time, clip_id, quality))
        self._clip_tasks[clip_id] = task
        task.add_done_callback(functools.partial(self._clip_done, clip_id))
        return clip_id

    def _track_clip(self, clip_id: str) -> None:
        self.clip_statuses[clip_id] = ClipStatus.PENDING
        self.clip_statuses.move_to_end(clip_id)

        excess = len(self.clip_statuses) - MAX_TRACKED_CLIPS
        if excess <= 0:
            return
        # Only finished clips are forgotten; running ones keep their entry
        finished = [
            cid for cid in self.clip_statuses
            if cid != clip_id and cid not in self._clip_tasks
        ]
        for cid in finished[:excess]:
            del self.clip_statuses[cid]

    async def _run_clip(self, start_time, end_time, clip_id: str, quality: str) -> ClipArtifact:
        self.clip_statuses[clip_id] = ClipStatus.RUNNING
        try:
            artifact = await self.clipper.create_clip(start_time, end_time, clip_id, quality)
        except Exception:
            self.clip_statuses[clip_id] = ClipStatus.FAILED
            raise
        self.clip_statuses[clip_id] = ClipStatus.COMPLETED
        return artifact

    def _clip_done(self, clip_id: str, task: asyncio.Task) -> None:
        if self._clip_tasks.get(clip_id) is task:
            del self._clip_tasks[clip_id]
        if task.cancelled():
            self.clip_statuses[clip_id] = ClipStatus.FAILED
            return
        error = task.exception()
        if error is not None and not isinstance(error, LivetrError):
            logger.error("Unexpected clip failure: %r", error)

    async def await_clip(self, clip_id: str) -> ClipArtifact:
        """
        Wait for a clip started with create_clip and return its artifact.

        A clip that already finished is answered from its recorded status.

        Raises:
            ValidationError: The id is unknown or no longer tracked.
            LivetrError: The clip failed.
        """
        task = self._clip_tasks.get(clip_id)
        if task is not None:
            return await task

        status = self.clip_statuses.get(clip_id)
        if status is ClipStatus.COMPLETED:
            return ClipArtifact(
                clip_path=self.workspace.clip_path(clip_id),
                thumbnail_path=self.workspace.thumbnail_path(clip_id),
            )
        if status is ClipStatus.FAILED:
            raise LivetrError(f"Clip {clip_id} failed")
        raise ValidationError(f"Unknown clip id: {clip_id}")

    def cleanup_files(self) -> int:
        """Remove clip artifacts and transient audio."""
        return self.clipper.cleanup() + self.engine.cleanup()
