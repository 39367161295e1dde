"""
Incremental transcription of the live snapshot.

Every few seconds a cycle extracts the snapshot tail as 16kHz mono audio,
transcribes it and emits only the segments that start at or after the
transcript cursor. At most one cycle runs at a time; requests that arrive
meanwhile collapse into a single follow-up cycle.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .config import VALID_LANGUAGES, VALID_MODELS
from .errors import ExternalToolError, LivetrError, ValidationError
from .events import EventChannel, TranscriptionStatus, TranscriptUpdate
from .polling import StatFunc, stat_file, wait_for_data
from .tools import Runner, run_tool
from .transcriber import Transcriber, TranscriptionResult, TranscriptSegment
from .workspace import Workspace

logger = logging.getLogger(__name__)

CYCLE_INTERVAL = 3.0
FIRST_CYCLE_MIN_BYTES = 32 * 1024
CONTEXT_SECONDS = 5.0
# Keyed by session generation; a stopped session may still be draining its cycle
SEGMENT_AUDIO_TEMPLATE = "segment_{generation}.wav"


class CycleState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_WITH_PENDING = "running_with_pending"


@dataclass
class TranscriptCursor:
    last_processed_end: float = 0.0
    total_word_count: int = 0

    def reset(self) -> None:
        self.last_processed_end = 0.0
        self.total_word_count = 0


def select_new_segments(
    segments: List[TranscriptSegment],
    cursor: TranscriptCursor,
) -> List[TranscriptSegment]:
    """
    Accept segments starting at or after the cursor and advance it.

    Segments are taken in start-time order. One that starts before the
    cursor is dropped whole even if it runs past it, so overlapping text is
    never emitted twice.
    """
    accepted = []
    for segment in sorted(segments, key=lambda s: (s.start, s.end)):
        if segment.start < cursor.last_processed_end:
            continue
        accepted.append(segment)
        cursor.last_processed_end = max(cursor.last_processed_end, segment.end)
        cursor.total_word_count += segment.word_count
    return accepted


class TranscriptionEngine:
    """Periodic, single-flight transcription of the fixed snapshot."""

    def __init__(
        self,
        workspace: Workspace,
        channel: Optional[EventChannel] = None,
        transcriber: Optional[Transcriber] = None,
        runner: Runner = run_tool,
        stat: StatFunc = stat_file,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
        cycle_interval: float = CYCLE_INTERVAL,
        first_cycle_min_bytes: int = FIRST_CYCLE_MIN_BYTES,
        context_seconds: float = CONTEXT_SECONDS,
        wait_timeout: float = 30.0,
        model: str = "base",
        language: str = "auto",
    ):
        self.workspace = workspace
        self.channel = channel
        self.transcriber = transcriber or Transcriber(model_name=model)
        self.runner = runner
        self.stat = stat
        self.clock = clock
        self.sleep = sleep
        self.cycle_interval = cycle_interval
        self.first_cycle_min_bytes = first_cycle_min_bytes
        self.context_seconds = context_seconds
        self.wait_timeout = wait_timeout

        self.model = "base"
        self.language = "auto"
        self.set_model(model)
        self.set_language(language)

        self.cursor = TranscriptCursor()
        self.state = CycleState.IDLE
        self.is_active = False
        self.cycles_run = 0

        self._generation = 0
        self._snapshot_size: Optional[int] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._driver_task: Optional[asyncio.Task] = None

    @staticmethod
    def available_models() -> List[str]:
        return list(VALID_MODELS)

    @staticmethod
    def available_languages() -> List[str]:
        return list(VALID_LANGUAGES)

    @staticmethod
    def check_choices(model: Optional[str] = None, language: Optional[str] = None) -> None:
        """Raise ValidationError for an unknown model or language."""
        if model is not None and model not in VALID_MODELS:
            raise ValidationError(f"Invalid model. Must be one of: {', '.join(VALID_MODELS)}")
        if language is not None and language not in VALID_LANGUAGES:
            raise ValidationError(
                f"Invalid language. Must be one of: {', '.join(VALID_LANGUAGES)}"
            )

    def set_model(self, model: str) -> None:
        self.check_choices(model=model)
        logger.info("Setting Whisper model to: %s", model)
        self.model = model
        self.transcriber.model_name = model

    def set_language(self, language: str) -> None:
        self.check_choices(language=language)
        logger.info("Setting Whisper language to: %s", language)
        self.language = language

    def _status(self, text: str) -> None:
        logger.info(text)
        if self.channel is not None:
            self.channel.publish(TranscriptionStatus(text))

    def start(self, model: Optional[str] = None, language: Optional[str] = None) -> None:
        """Begin a new transcription session; the cursor restarts at zero."""
        if self.is_active:
            logger.info("Transcription already in progress")
            return
        if model:
            self.set_model(model)
        if language:
            self.set_language(language)

        self._generation += 1
        self.cursor.reset()
        self._snapshot_size = None
        self.state = CycleState.IDLE
        self.is_active = True
        self._status(f"Transcription started ({self.model}, language: {self.language})")
        self._timer_task = asyncio.ensure_future(self._timer_loop())

    async def _timer_loop(self) -> None:
        while self.is_active:
            self.request_cycle()
            await self.sleep(self.cycle_interval)

    def request_cycle(self) -> None:
        """Run a cycle now, or mark one as owed if a cycle is in flight."""
        if not self.is_active:
            logger.debug("Transcription cycle skipped - not active")
            return
        if self.state is CycleState.IDLE:
            self.state = CycleState.RUNNING
            self._driver_task = asyncio.ensure_future(self._drive(self._generation))
        elif self.state is CycleState.RUNNING:
            logger.debug("Cycle in progress, marking one as pending")
            self.state = CycleState.RUNNING_WITH_PENDING

    async def _drive(self, generation: int) -> None:
        while True:
            try:
                await self.run_cycle(generation)
            except LivetrError as e:
                self._status(f"Transcription error: {e}")
            except Exception as e:
                logger.exception("Unexpected error in transcription cycle")
                self._status(f"Transcription error: {e}")

            if generation != self._generation:
                return
            if self.state is CycleState.RUNNING_WITH_PENDING and self.is_active:
                logger.debug("Processing pending transcription cycle")
                self.state = CycleState.RUNNING
                continue
            self.state = CycleState.IDLE
            return

    async def run_cycle(self, generation: Optional[int] = None) -> List[TranscriptSegment]:
        """
        Execute one extract -> transcribe -> merge cycle.

        Returns the segments that were accepted, empty if the snapshot was not
        ready yet or nothing new was heard.

        Raises:
            ExternalToolError: Extraction or transcription failed; the cursor
                is left unchanged.
        """
        if generation is None:
            generation = self._generation
        self.cycles_run += 1

        snapshot = str(self.workspace.snapshot)
        first_cycle = self.cursor.last_processed_end == 0
        st = await wait_for_data(
            snapshot,
            min_size=self.first_cycle_min_bytes if first_cycle else 0,
            previous_size=self._snapshot_size,
            stat=self.stat,
            clock=self.clock,
            sleep=self.sleep,
            timeout=self.wait_timeout,
        )
        if st is None:
            self._status("Waiting for stream data...")
            return []

        offset = max(0.0, self.cursor.last_processed_end - self.context_seconds)
        audio_path = await self.extract_audio(snapshot, offset, generation)

        self._status(f"Running Whisper transcription with {self.model} model...")
        language = None if self.language == "auto" else self.language
        loop = asyncio.get_running_loop()
        result: TranscriptionResult = await loop.run_in_executor(
            None, self.transcriber.transcribe, audio_path, language
        )

        if generation != self._generation:
            logger.info("Discarding results from a stopped session")
            return []

        self._snapshot_size = st.size
        segments = [s.shifted(offset) for s in result.segments]
        accepted = select_new_segments(segments, self.cursor)
        if not accepted:
            logger.debug("No new segments found in this transcription")
            return []

        new_words = sum(s.word_count for s in accepted)
        if self.channel is not None:
            self.channel.publish(TranscriptUpdate(
                segments=accepted,
                total_word_count=self.cursor.total_word_count,
                model=self.model,
                language=self.language,
            ))
        self._status(f"Transcribed {len(accepted)} new segments ({new_words} words)")
        return accepted

    async def extract_audio(
        self, snapshot: str, offset: float = 0.0, generation: Optional[int] = None
    ) -> str:
        """
        Extract 16kHz mono PCM audio from the snapshot starting at ``offset``.

        Raises:
            ExternalToolError: If ffmpeg fails or writes nothing.
        """
        self.workspace.audio_dir.mkdir(parents=True, exist_ok=True)
        if generation is None:
            generation = self._generation
        name = SEGMENT_AUDIO_TEMPLATE.format(generation=generation)
        output_path = str(self.workspace.audio_dir / name)

        cmd = ["ffmpeg", "-y"]
        if offset > 0:
            cmd.extend(["-ss", f"{offset:.3f}"])
        cmd.extend([
            "-i", snapshot,
            "-vn",
            "-acodec", "pcm_s16le",
            "-ar", "16000",
            "-ac", "1",
            output_path,
        ])

        result = await self.runner(cmd)
        if not result.ok:
            raise ExternalToolError(
                f"Audio extraction failed (exit code {result.returncode}):\n{result.stderr.strip()}",
                tool="ffmpeg",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            raise ExternalToolError(
                "Audio extraction produced empty or missing file", tool="ffmpeg"
            )
        return output_path

    def stop(self) -> None:
        """Halt the timer and clear the cycle state; the cursor is kept."""
        was_active = self.is_active
        self.is_active = False
        self.state = CycleState.IDLE
        self._generation += 1

        task = self._timer_task
        self._timer_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        if was_active:
            self._status("Transcription stopped")

    def cleanup(self) -> int:
        """Remove transient audio output."""
        return self.workspace.clear_audio()
