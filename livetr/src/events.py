"""
Outbound events produced by the live pipeline.

Components publish typed events to an EventChannel; transports (the web
routes, the CLI) subscribe to it and never see component internals.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .transcriber import TranscriptSegment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    type = "event"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class CaptureStatus(Event):
    text: str
    type = "capture_status"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class TranscriptionStatus(Event):
    text: str
    type = "transcription_status"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class HealthStatus(Event):
    level: str  # "warning" or "error"
    text: str
    type = "health_status"

    def to_dict(self) -> dict:
        return {"type": self.type, "level": self.level, "text": self.text}


@dataclass(frozen=True)
class TranscriptUpdate(Event):
    segments: List[TranscriptSegment]
    total_word_count: int
    model: str
    language: str
    type = "transcript_update"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "segments": [s.to_dict() for s in self.segments],
            "total_word_count": self.total_word_count,
            "model": self.model,
            "language": self.language,
            "has_word_timestamps": any(s.words for s in self.segments),
        }


@dataclass(frozen=True)
class ClipProgress(Event):
    clip_id: str
    percent: float
    type = "clip_progress"

    def to_dict(self) -> dict:
        return {"type": self.type, "clip_id": self.clip_id, "percent": self.percent}


@dataclass(frozen=True)
class ClipCompleted(Event):
    clip_id: str
    clip_path: str
    thumbnail_path: str
    start_time: float
    duration: float
    type = "clip_completed"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "clip_id": self.clip_id,
            "clip_path": self.clip_path,
            "thumbnail_path": self.thumbnail_path,
            "start_time": self.start_time,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class ClipFailed(Event):
    clip_id: str
    reason: str
    type = "clip_failed"

    def to_dict(self) -> dict:
        return {"type": self.type, "clip_id": self.clip_id, "reason": self.reason}


class EventChannel:
    """
    Fan-out channel for pipeline events.

    Observers are plain callables invoked synchronously on publish; queue
    subscribers get their own unbounded asyncio.Queue each.
    """

    def __init__(self):
        self._observers: List[Callable[[Event], None]] = []
        self._queues: List[asyncio.Queue] = []
        self.history: List[Event] = []
        self.keep_history = False

    def add_observer(self, observer: Callable[[Event], None]) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Callable[[Event], None]) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: Event) -> None:
        logger.debug("event %s", event.to_dict())
        if self.keep_history:
            self.history.append(event)
        for observer in list(self._observers):
            observer(event)
        for queue in list(self._queues):
            queue.put_nowait(event)

    def of_type(self, event_type: type) -> List[Event]:
        """Recorded events of one type (requires keep_history)."""
        return [e for e in self.history if isinstance(e, event_type)]


def recording_channel(observer: Optional[Callable[[Event], None]] = None) -> EventChannel:
    """An EventChannel that keeps every published event in ``history``."""
    channel = EventChannel()
    channel.keep_history = True
    if observer is not None:
        channel.add_observer(observer)
    return channel
