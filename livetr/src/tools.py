"""
Async wrappers around the external media tools (ffmpeg, ffprobe).

Every tool invocation goes through ``run_tool`` or ``spawn_tool`` so the
components can be driven with a fake runner in tests.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

from .errors import ExternalToolError

logger = logging.getLogger(__name__)

# Keep only the tail of stderr; ffmpeg writes progress lines for the whole run
STDERR_TAIL_CHARS = 16 * 1024

REQUIRED_BINARIES = ("ffmpeg", "ffprobe")


@dataclass
class ToolResult:
    """Exit status and captured output of a finished tool."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


StderrCallback = Callable[[str], None]
Runner = Callable[..., Awaitable[ToolResult]]


def _tail(text: str) -> str:
    return text[-STDERR_TAIL_CHARS:]


async def run_tool(
    cmd: Sequence[str],
    on_stderr: Optional[StderrCallback] = None,
) -> ToolResult:
    """
    Run a tool to completion without blocking the event loop.

    Args:
        cmd: Command and arguments.
        on_stderr: Optional callback receiving decoded stderr chunks as they
            arrive (ffmpeg separates progress updates with carriage returns,
            so chunks rather than lines are delivered).

    Returns:
        ToolResult; a nonzero exit is reported, not raised.

    Raises:
        ExternalToolError: If the executable cannot be started.
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ExternalToolError(f"Failed to start {cmd[0]}: {e}", tool=cmd[0]) from e

    if on_stderr is None:
        stdout_raw, stderr_raw = await proc.communicate()
        return ToolResult(
            returncode=proc.returncode,
            stdout=stdout_raw.decode("utf-8", errors="replace"),
            stderr=_tail(stderr_raw.decode("utf-8", errors="replace")),
        )

    stdout_task = asyncio.ensure_future(proc.stdout.read())
    stderr_text = ""
    while True:
        chunk = await proc.stderr.read(4096)
        if not chunk:
            break
        text = chunk.decode("utf-8", errors="replace")
        stderr_text = _tail(stderr_text + text)
        on_stderr(text)

    stdout_raw = await stdout_task
    await proc.wait()
    return ToolResult(
        returncode=proc.returncode,
        stdout=stdout_raw.decode("utf-8", errors="replace"),
        stderr=stderr_text,
    )


async def spawn_tool(cmd: Sequence[str]) -> asyncio.subprocess.Process:
    """
    Start a long-running tool and return the process handle.

    stdout is discarded; stderr stays piped so the owner can drain it.

    Raises:
        ExternalToolError: If the executable cannot be started.
    """
    logger.debug("Spawning: %s", " ".join(cmd))
    try:
        return await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ExternalToolError(f"Failed to start {cmd[0]}: {e}", tool=cmd[0]) from e


def check_result(result: ToolResult, tool: str, action: str) -> ToolResult:
    """Raise ExternalToolError for a nonzero exit, return the result otherwise."""
    if not result.ok:
        raise ExternalToolError(
            f"{action} failed (exit code {result.returncode}):\n{result.stderr.strip()}",
            tool=tool,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


async def probe_duration(path: str, runner: Runner = run_tool) -> float:
    """
    Return the container duration of a media file in seconds using ffprobe.

    Raises:
        ExternalToolError: If ffprobe fails or prints no duration.
    """
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    result = check_result(await runner(cmd), "ffprobe", "Duration probe")
    try:
        return float(result.stdout.strip())
    except ValueError as e:
        raise ExternalToolError(
            f"Failed to get file duration: unexpected ffprobe output {result.stdout!r}",
            tool="ffprobe",
        ) from e


def missing_binaries(names: Sequence[str] = REQUIRED_BINARIES) -> List[str]:
    """Return the executables from ``names`` that are not on PATH."""
    return [name for name in names if shutil.which(name) is None]
