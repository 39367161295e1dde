"""
Live Transcriber - Capture, transcribe and clip live streams.

Captures live streams via yt-dlp and FFmpeg, keeps a seekable snapshot,
transcribes new audio with OpenAI Whisper as it arrives and cuts clips on
demand.
"""

__version__ = "1.0.0"
__author__ = "Live Transcriber Team"

from .capture import StreamIngestor
from .clipper import ClipExtractor
from .engine import TranscriptionEngine
from .events import EventChannel
from .fixator import SnapshotFixator
from .monitor import RecoverySupervisor
from .session import LiveSession
from .transcriber import Transcriber

__all__ = [
    "StreamIngestor",
    "ClipExtractor",
    "TranscriptionEngine",
    "EventChannel",
    "SnapshotFixator",
    "RecoverySupervisor",
    "LiveSession",
    "Transcriber",
]
