"""
Snapshot fixation.

Remuxes the append-only raw capture into a seekable snapshot that the cycle
engine and clip extractor can open while the capture process keeps writing.
"""

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .errors import ExternalToolError, ResourceNotReadyError
from .events import CaptureStatus, EventChannel
from .polling import StatFunc, stat_file
from .tools import Runner, run_tool
from .workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedSnapshot:
    """A complete, readable snapshot of the raw capture."""
    path: Path
    source_mtime: float
    source_size: int
    fixed_at: float


class SnapshotFixator:
    """Convert the raw capture into a consistent snapshot file."""

    def __init__(
        self,
        workspace: Workspace,
        channel: Optional[EventChannel] = None,
        runner: Runner = run_tool,
        stat: StatFunc = stat_file,
        clock: Callable[[], float] = time.time,
    ):
        self.workspace = workspace
        self.channel = channel
        self.runner = runner
        self.stat = stat
        self.clock = clock
        self.latest: Optional[FixedSnapshot] = None
        self._watermark: Optional[float] = None
        self._lock = asyncio.Lock()

    def _new_partial(self) -> str:
        # Unique per call; another process may be fixating the same workspace
        snapshot = self.workspace.snapshot
        fd, path = tempfile.mkstemp(
            dir=str(snapshot.parent),
            prefix=f"{snapshot.stem}.",
            suffix=f".partial{snapshot.suffix}",
        )
        os.close(fd)
        return path

    def reset(self) -> None:
        """Forget the watermark so the next call always remuxes."""
        self._watermark = None

    def _status(self, text: str) -> None:
        if self.channel is not None:
            self.channel.publish(CaptureStatus(text))

    async def fixate(self) -> Optional[FixedSnapshot]:
        """
        Remux the raw capture into the snapshot if it changed.

        Returns:
            The new FixedSnapshot, or None when nothing changed (or the raw
            capture is still empty).

        Raises:
            ResourceNotReadyError: If there is no raw capture at all.
            ExternalToolError: If the remux fails; the previous snapshot stays.
        """
        raw = str(self.workspace.raw_capture)

        async with self._lock:
            st = self.stat(raw)
            if st is None:
                raise ResourceNotReadyError(f"Raw capture not found: {raw}")
            if st.size == 0:
                logger.debug("Raw capture is empty, skipping fixation")
                return None
            if self._watermark is not None and st.mtime <= self._watermark:
                return None

            logger.info("Fixing capture: %d bytes", st.size)
            partial = self._new_partial()
            cmd = [
                "ffmpeg",
                "-i", raw,
                "-c", "copy",
                "-f", "mpegts",
                "-y", partial,
            ]
            try:
                result = await self.runner(cmd)
            except ExternalToolError as e:
                self._discard(partial)
                self._status(f"Fixation error: {e}")
                raise

            if not result.ok:
                self._discard(partial)
                self._status(f"Fixation failed: code {result.returncode}")
                raise ExternalToolError(
                    f"Fixation failed with code {result.returncode}:\n{result.stderr.strip()}",
                    tool="ffmpeg",
                    returncode=result.returncode,
                    stderr=result.stderr,
                )

            os.replace(partial, str(self.workspace.snapshot))
            self._watermark = st.mtime
            self.latest = FixedSnapshot(
                path=self.workspace.snapshot,
                source_mtime=st.mtime,
                source_size=st.size,
                fixed_at=self.clock(),
            )
            logger.debug("Snapshot fixed from %d bytes", st.size)
            return self.latest

    @staticmethod
    def _discard(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
