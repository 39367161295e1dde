"""
Error types raised by the live capture pipeline.

Validation problems are rejected before any tool runs; tool failures carry the
tool name, exit code and stderr so callers can report them as status text.
"""

from enum import Enum
from typing import Optional


class LivetrError(Exception):
    """Base class for all livetr errors."""
    pass


class ValidationError(LivetrError):
    """Bad input: malformed source reference, invalid clip range or option."""
    pass


class ExternalToolError(LivetrError):
    """Exception raised when ffmpeg, ffprobe, yt-dlp or Whisper fails."""

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = ""
    ):
        super().__init__(message)
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


class TranscriptionError(ExternalToolError):
    """Exception raised when transcription fails."""
    pass


class StreamUnavailableReason(str, Enum):
    NOT_STARTED = "not_started"
    ENDED = "ended"
    AUTH_REQUIRED = "auth_required"


STREAM_UNAVAILABLE_MESSAGES = {
    StreamUnavailableReason.NOT_STARTED: "Stream has not started yet",
    StreamUnavailableReason.ENDED: "Stream has ended",
    StreamUnavailableReason.AUTH_REQUIRED: "Stream requires authentication",
}


class StreamUnavailableError(ExternalToolError):
    """The platform refused to hand out a playable URL for a known reason."""

    def __init__(self, reason: StreamUnavailableReason, stderr: str = ""):
        super().__init__(STREAM_UNAVAILABLE_MESSAGES[reason], tool="yt-dlp", stderr=stderr)
        self.reason = reason


class ResourceNotReadyError(LivetrError):
    """The snapshot (or raw capture) is missing or does not hold enough data yet."""
    pass


class RecoverableCorruptionError(LivetrError):
    """The raw capture is empty or stopped advancing; the session must restart."""
    pass
