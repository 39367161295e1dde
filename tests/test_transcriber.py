from __future__ import annotations

import sys
import types

import pytest

from livetr.src.errors import TranscriptionError
from livetr.src.events import TranscriptUpdate
from livetr.src.transcriber import Transcriber, TranscriptSegment, Word, format_timestamp, parse_segments

WHISPER_OUTPUT = {
    "text": " Hello there. General Kenobi.",
    "language": "en",
    "segments": [
        {
            "text": " Hello there.",
            "start": 0.0,
            "end": 1.4,
            "words": [
                {"word": " Hello", "start": 0.0, "end": 0.6, "probability": 0.98},
                {"word": " there.", "start": 0.6, "end": 1.4, "probability": 0.91},
            ],
        },
        {"text": " General Kenobi.", "start": 1.4, "end": 3.0},
    ],
}


class FakeWhisperModel:
    def __init__(self, output=None, error=None):
        self.output = output
        self.error = error
        self.kwargs = None

    def transcribe(self, path, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.output


def _loaded(model) -> Transcriber:
    transcriber = Transcriber("base", device="cpu")
    transcriber.model = model
    transcriber._loaded_name = "base"
    return transcriber


def test_parse_segments_maps_words() -> None:
    segments = parse_segments(WHISPER_OUTPUT["segments"])

    assert [s.text for s in segments] == ["Hello there.", "General Kenobi."]
    assert segments[0].words[1] == Word("there.", 0.6, 1.4, 0.91)
    assert segments[1].words == []
    assert segments[1].word_count == 2


def test_shifted_moves_words_too() -> None:
    segment = TranscriptSegment("hi", 1.0, 2.0, [Word("hi", 1.0, 2.0)])

    moved = segment.shifted(10.0)

    assert (moved.start, moved.end) == (11.0, 12.0)
    assert (moved.words[0].start, moved.words[0].end) == (11.0, 12.0)
    assert segment.start == 1.0


def test_format_timestamp() -> None:
    assert format_timestamp(65.25) == "01:05.250"
    assert format_timestamp(3725.0) == "01:02:05.000"


def test_transcribe_requests_word_timestamps(tmp_path) -> None:
    audio = tmp_path / "current_segment.wav"
    audio.write_bytes(b"RIFF")
    model = FakeWhisperModel(WHISPER_OUTPUT)

    result = _loaded(model).transcribe(str(audio), language="en")

    assert model.kwargs["word_timestamps"] is True
    assert model.kwargs["language"] == "en"
    assert result.segment_count == 2
    assert result.text == "Hello there. General Kenobi."
    assert result.model_used == "base"


def test_transcribe_missing_audio(tmp_path) -> None:
    with pytest.raises(TranscriptionError):
        _loaded(FakeWhisperModel(WHISPER_OUTPUT)).transcribe(str(tmp_path / "none.wav"))


def test_transcribe_wraps_model_errors(tmp_path) -> None:
    audio = tmp_path / "a.wav"
    audio.write_bytes(b"RIFF")
    transcriber = _loaded(FakeWhisperModel(error=RuntimeError("cuda oom")))

    with pytest.raises(TranscriptionError) as excinfo:
        transcriber.transcribe(str(audio))
    assert "cuda oom" in str(excinfo.value)
    assert excinfo.value.tool == "whisper"


def test_update_event_serializes_segments() -> None:
    segments = parse_segments(WHISPER_OUTPUT["segments"])
    update = TranscriptUpdate(segments=segments, total_word_count=4, model="base", language="auto")

    data = update.to_dict()

    assert data["type"] == "transcript_update"
    assert data["has_word_timestamps"] is True
    assert data["segments"][0]["words"][0]["confidence"] == 0.98
    assert data["segments"][1]["has_word_timestamps"] is False


def test_switching_models_releases_the_old_one(monkeypatch) -> None:
    old = FakeWhisperModel(WHISPER_OUTPUT)
    transcriber = _loaded(old)
    seen = []

    def load_model(name, device=None):
        seen.append((name, transcriber.model))
        return FakeWhisperModel(WHISPER_OUTPUT)

    monkeypatch.setitem(sys.modules, "whisper", types.SimpleNamespace(load_model=load_model))
    transcriber.model_name = "small"
    transcriber.load_model()

    assert seen == [("small", None)]
    assert transcriber.model is not old
    assert transcriber._loaded_name == "small"
