"""
Speech-to-text transcription module using OpenAI Whisper.

Converts extracted audio to segments with word-level timing.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Dict, Any

from .errors import TranscriptionError

logger = logging.getLogger(__name__)


class WhisperModel(Enum):
    """Available Whisper model sizes, fastest to most accurate."""
    TINY = "tiny"
    BASE = "base"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class Word:
    """A single word with timing information."""
    text: str
    start: float
    end: float
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class TranscriptSegment:
    """A segment of transcribed text with timing information."""
    text: str
    start: float  # Start time in seconds
    end: float    # End time in seconds
    words: List[Word] = field(default_factory=list)

    @property
    def duration(self) -> float:
        """Get the duration of this segment in seconds."""
        return self.end - self.start

    @property
    def word_count(self) -> int:
        """Word-level entries when present, whitespace tokens otherwise."""
        if self.words:
            return len(self.words)
        return len(self.text.split())

    @property
    def start_formatted(self) -> str:
        """Get formatted start time (HH:MM:SS or MM:SS)."""
        return format_timestamp(self.start)

    def shifted(self, offset: float) -> "TranscriptSegment":
        """Return a copy with every timestamp moved by ``offset`` seconds."""
        if not offset:
            return self
        return replace(
            self,
            start=self.start + offset,
            end=self.end + offset,
            words=[
                replace(w, start=w.start + offset, end=w.end + offset)
                for w in self.words
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "start": self.start,
            "end": self.end,
            "words": [w.to_dict() for w in self.words],
            "has_word_timestamps": bool(self.words),
        }


@dataclass
class TranscriptionResult:
    """Complete transcription result for one audio file."""
    text: str
    segments: List[TranscriptSegment]
    language: str
    model_used: str

    @property
    def segment_count(self) -> int:
        """Get number of segments."""
        return len(self.segments)


def format_timestamp(seconds: float) -> str:
    """Format time in seconds to timestamp string."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    millis = int((seconds % 1) * 1000)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"
    return f"{minutes:02d}:{secs:02d}.{millis:03d}"


def parse_segments(raw_segments: List[Dict[str, Any]]) -> List[TranscriptSegment]:
    """Convert Whisper's segment dictionaries to TranscriptSegment objects."""
    segments = []
    for seg in raw_segments:
        words = [
            Word(
                text=(w.get("word") or w.get("text") or "").strip(),
                start=float(w["start"]),
                end=float(w["end"]),
                confidence=w.get("probability", w.get("confidence")),
            )
            for w in seg.get("words") or []
        ]
        segments.append(TranscriptSegment(
            text=seg["text"].strip(),
            start=float(seg["start"]),
            end=float(seg["end"]),
            words=words,
        ))
    return segments


class Transcriber:
    """
    Speech-to-text transcriber using OpenAI Whisper.

    The model is loaded lazily on first use and reloaded when the model name
    changes between sessions.
    """

    def __init__(self, model_name: str = "base", device: Optional[str] = None):
        """
        Initialize the transcriber.

        Args:
            model_name: Whisper model to use (tiny, base, small, medium, large).
            device: Device to run on ("cuda", "cpu", or None for auto-detect).
        """
        self.model_name = model_name
        self.device = device
        self.model = None
        self._loaded_name: Optional[str] = None

    def load_model(self) -> None:
        """Load the Whisper model into memory."""
        if self.model is not None and self._loaded_name == self.model_name:
            return
        if self.model is not None:
            self.unload_model()

        try:
            import whisper
            import torch

            if self.device is None:
                self.device = "cuda" if torch.cuda.is_available() else "cpu"

            logger.info("Loading Whisper model '%s' on %s", self.model_name, self.device)
            self.model = whisper.load_model(self.model_name, device=self.device)
            self._loaded_name = self.model_name

        except ImportError as e:
            raise TranscriptionError(
                "OpenAI Whisper not installed. Install with: pip install openai-whisper",
                tool="whisper",
            ) from e
        except Exception as e:
            raise TranscriptionError(f"Failed to load Whisper model: {e}", tool="whisper") from e

    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
    ) -> TranscriptionResult:
        """
        Transcribe an audio file with word-level timestamps.

        Blocking; callers on the event loop run it in an executor.

        Args:
            audio_path: Path to a 16kHz mono WAV file.
            language: Language code (e.g., "en"). None for auto-detection.

        Raises:
            TranscriptionError: If transcription fails.
        """
        if not os.path.exists(audio_path):
            raise TranscriptionError(f"Audio file not found: {audio_path}", tool="whisper")

        self.load_model()

        try:
            result = self.model.transcribe(
                audio_path,
                language=language,
                task="transcribe",
                word_timestamps=True,
                verbose=None,
            )
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}", tool="whisper") from e

        return TranscriptionResult(
            text=result.get("text", "").strip(),
            segments=parse_segments(result.get("segments", [])),
            language=result.get("language", language or "unknown"),
            model_used=self.model_name,
        )

    def unload_model(self) -> None:
        """Unload the model from memory."""
        if self.model is not None:
            del self.model
            self.model = None
            self._loaded_name = None

            try:
                import torch
                if torch.cuda.is_available():
                    torch.cuda.empty_cache()
            except ImportError:
                pass
