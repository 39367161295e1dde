"""
Health checks and recovery for a live session.

Gathers facts (disk space, tool availability, capture growth) every few
seconds and calls the session's recovery entry points when something is off.
"""

import asyncio
import importlib.util
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from .errors import LivetrError, RecoverableCorruptionError
from .events import EventChannel, HealthStatus
from .polling import StatFunc, stat_file
from .tools import REQUIRED_BINARIES, missing_binaries
from .workspace import Workspace

logger = logging.getLogger(__name__)

DISK_SPACE_THRESHOLD = 500 * 1024 * 1024  # 500MB minimum
HEALTH_INTERVAL = 30.0
REQUIRED_MODULES = ("yt_dlp", "whisper")


@dataclass
class DiskReport:
    free: Optional[int]
    sufficient: bool


@dataclass
class CaptureReport:
    exists: bool
    size: int = 0
    advancing: Optional[bool] = None  # None until two checks have been seen

    @property
    def healthy(self) -> bool:
        return self.exists and self.size > 0


@dataclass
class HealthReport:
    disk: DiskReport
    dependencies: Dict[str, bool] = field(default_factory=dict)
    capture: CaptureReport = field(default_factory=lambda: CaptureReport(exists=False))
    capture_active: bool = False

    @property
    def missing_dependencies(self) -> List[str]:
        return [name for name, ok in self.dependencies.items() if not ok]

    def to_dict(self) -> dict:
        return {
            "disk_free": self.disk.free,
            "disk_sufficient": self.disk.sufficient,
            "dependencies": dict(self.dependencies),
            "missing_dependencies": self.missing_dependencies,
            "capture_active": self.capture_active,
            "capture_exists": self.capture.exists,
            "capture_size": self.capture.size,
            "capture_advancing": self.capture.advancing,
        }

    def ensure_capture_healthy(self) -> None:
        """
        Raises:
            RecoverableCorruptionError: The active capture is empty or stopped
                growing since the previous check.
        """
        if not self.capture_active or not self.capture.exists:
            return
        if self.capture.advancing is False:
            if self.capture.size == 0:
                raise RecoverableCorruptionError("Corrupt download file detected")
            raise RecoverableCorruptionError("Download file stopped growing")


def check_dependencies() -> Dict[str, bool]:
    missing = set(missing_binaries(REQUIRED_BINARIES))
    deps = {name: name not in missing for name in REQUIRED_BINARIES}
    for module in REQUIRED_MODULES:
        deps[module] = importlib.util.find_spec(module) is not None
    return deps


class RecoverySupervisor:
    """Periodic health monitor that triggers cleanup and session restarts."""

    def __init__(
        self,
        workspace: Workspace,
        channel: Optional[EventChannel] = None,
        is_capturing: Callable[[], bool] = lambda: False,
        restart: Optional[Callable[[], Awaitable[None]]] = None,
        cleanup: Optional[Callable[[], int]] = None,
        stat: StatFunc = stat_file,
        dependency_check: Callable[[], Dict[str, bool]] = check_dependencies,
        sleep=asyncio.sleep,
        interval: float = HEALTH_INTERVAL,
        disk_threshold: int = DISK_SPACE_THRESHOLD,
    ):
        self.workspace = workspace
        self.channel = channel
        self.is_capturing = is_capturing
        self.restart = restart
        self.cleanup = cleanup
        self.stat = stat
        self.dependency_check = dependency_check
        self.sleep = sleep
        self.interval = interval
        self.disk_threshold = disk_threshold
        self.last_report: Optional[HealthReport] = None

        self._previous_size: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None

    def _status(self, level: str, text: str) -> None:
        if level == "error":
            logger.error(text)
        else:
            logger.warning(text)
        if self.channel is not None:
            self.channel.publish(HealthStatus(level=level, text=text))

    def reset(self) -> None:
        """Forget capture growth history, e.g. after a restart."""
        self._previous_size = None

    def check_health(self, track: bool = True) -> HealthReport:
        """
        Gather disk, dependency and capture facts.

        With ``track=False`` the capture growth history is left untouched,
        so out-of-band callers do not mask a stalled capture.
        """
        free = self.workspace.free_bytes()
        disk = DiskReport(free=free, sufficient=free is not None and free > self.disk_threshold)

        st = self.stat(str(self.workspace.raw_capture))
        capture_active = self.is_capturing()
        if st is None:
            capture = CaptureReport(exists=False)
            if track:
                self._previous_size = None
        else:
            advancing = None
            if capture_active and self._previous_size is not None:
                advancing = st.size > self._previous_size
            capture = CaptureReport(exists=True, size=st.size, advancing=advancing)
            if track:
                self._previous_size = st.size if capture_active else None

        report = HealthReport(
            disk=disk,
            dependencies=self.dependency_check(),
            capture=capture,
            capture_active=capture_active,
        )
        self.last_report = report
        return report

    async def handle_health_issues(self, report: HealthReport) -> None:
        if not report.disk.sufficient:
            self._status("warning", "Low disk space. Cleaning up old clips...")
            if self.cleanup is not None:
                removed = self.cleanup()
                logger.info("Removed %d files to free disk space", removed)

        missing = report.missing_dependencies
        if missing:
            self._status("error", f"Missing dependencies: {', '.join(missing)}")

        try:
            report.ensure_capture_healthy()
        except RecoverableCorruptionError as e:
            self._status("warning", f"{e}. Restarting download...")
            self.reset()
            if self.restart is not None:
                await self.restart()

    async def check_once(self) -> HealthReport:
        report = self.check_health()
        await self.handle_health_issues(report)
        return report

    def start(self) -> None:
        if self._task is not None:
            return
        self._previous_size = None
        self._task = asyncio.ensure_future(self._loop())

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _loop(self) -> None:
        while True:
            await self.sleep(self.interval)
            if self._task is not asyncio.current_task():
                return
            try:
                await self.check_once()
            except LivetrError as e:
                self._status("error", f"Recovery failed: {e}")
