from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from livetr.src.polling import FileStat
from livetr.src.tools import ToolResult
from livetr.src.transcriber import TranscriptionResult, TranscriptSegment
from livetr.src.workspace import Workspace


class FakeRunner:
    """
    Stand-in for tools.run_tool.

    ffmpeg calls write a small file at their output path (the last argument)
    unless ``fail_when`` matches; ffprobe calls print ``duration``.
    """

    def __init__(self, duration: float = 600.0, returncode: int = 0):
        self.duration = duration
        self.returncode = returncode
        self.calls: List[List[str]] = []
        self.fail_when: Optional[Callable[[List[str]], bool]] = None
        self.stderr_chunks: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, cmd, on_stderr=None) -> ToolResult:
        cmd = list(cmd)
        self.calls.append(cmd)
        if self.gate is not None:
            await self.gate.wait()

        if cmd[0] == "ffprobe":
            return ToolResult(0, f"{self.duration}\n", "")

        if self.fail_when is not None and self.fail_when(cmd):
            return ToolResult(1, "", "simulated ffmpeg failure")

        if on_stderr is not None:
            for chunk in self.stderr_chunks:
                on_stderr(chunk)
        if self.returncode == 0:
            Path(cmd[-1]).parent.mkdir(parents=True, exist_ok=True)
            Path(cmd[-1]).write_bytes(b"\x47" * 188)
        return ToolResult(self.returncode, "", "")

    def commands_for(self, marker: str) -> List[List[str]]:
        return [c for c in self.calls if any(marker in arg for arg in c)]


class FakeTranscriber:
    """Returns queued results; repeats the last one when the queue runs dry."""

    def __init__(self, results: Optional[List[TranscriptionResult]] = None, error: Exception = None):
        self.results = list(results or [])
        self.error = error
        self.model_name = "base"
        self.calls: List[tuple] = []

    def transcribe(self, audio_path, language=None) -> TranscriptionResult:
        self.calls.append((audio_path, language))
        if self.error is not None:
            raise self.error
        if len(self.results) > 1:
            return self.results.pop(0)
        if self.results:
            return self.results[0]
        return TranscriptionResult(text="", segments=[], language="en", model_used=self.model_name)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStat:
    """Stat source backed by a dict of path -> FileStat."""

    def __init__(self):
        self.files: Dict[str, FileStat] = {}

    def set(self, path, size: int, mtime: float = 1.0) -> None:
        self.files[str(path)] = FileStat(size=size, mtime=mtime)

    def __call__(self, path: str) -> Optional[FileStat]:
        return self.files.get(str(path))


def result_of(*segments: TranscriptSegment) -> TranscriptionResult:
    return TranscriptionResult(
        text=" ".join(s.text for s in segments),
        segments=list(segments),
        language="en",
        model_used="base",
    )


def seg(start: float, end: float, text: str = "hello world") -> TranscriptSegment:
    return TranscriptSegment(text=text, start=start, end=end)


@pytest.fixture
def workspace(tmp_path) -> Workspace:
    return Workspace(tmp_path / "work").ensure()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


class FakeProcess:
    """Minimal asyncio.subprocess.Process stand-in that exits on demand."""

    def __init__(self):
        self.returncode = None
        self.stderr = None
        self.terminated = False
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeSpawner:
    def __init__(self):
        self.commands: List[List[str]] = []
        self.processes: List[FakeProcess] = []

    async def __call__(self, cmd):
        self.commands.append(list(cmd))
        proc = FakeProcess()
        self.processes.append(proc)
        return proc
