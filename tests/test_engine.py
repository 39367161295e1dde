from __future__ import annotations

import asyncio

import pytest

from conftest import FakeClock, FakeRunner, FakeStat, FakeTranscriber, result_of, seg

from livetr.src.engine import (
    CycleState,
    TranscriptCursor,
    TranscriptionEngine,
    select_new_segments,
)
from livetr.src.errors import TranscriptionError, ValidationError
from livetr.src.events import TranscriptionStatus, TranscriptUpdate, recording_channel
from livetr.src.transcriber import TranscriptSegment, Word


def _engine(workspace, runner, transcriber, stat, channel=None, **kwargs):
    clock = FakeClock()

    async def sleep(seconds):
        clock.advance(seconds)

    kwargs.setdefault("sleep", sleep)
    return TranscriptionEngine(
        workspace,
        channel,
        transcriber=transcriber,
        runner=runner,
        stat=stat,
        clock=clock,
        **kwargs,
    )


class GrowingStat(FakeStat):
    """Reports a larger snapshot on every call so each cycle sees new data."""

    def __init__(self, path, start: int = 64 * 1024):
        super().__init__()
        self.path = str(path)
        self.size = start

    def __call__(self, path):
        self.size += 1024
        self.set(self.path, self.size)
        return super().__call__(path)


def test_segment_starting_before_cursor_is_dropped() -> None:
    cursor = TranscriptCursor(last_processed_end=12.4)

    accepted = select_new_segments([seg(10.0, 15.0), seg(15.0, 18.0)], cursor)

    assert [(s.start, s.end) for s in accepted] == [(15.0, 18.0)]
    assert cursor.last_processed_end == 18.0


def test_segments_are_taken_in_start_order() -> None:
    cursor = TranscriptCursor()

    accepted = select_new_segments([seg(4.0, 8.0, "b"), seg(0.0, 4.0, "a")], cursor)

    assert [s.text for s in accepted] == ["a", "b"]
    assert cursor.last_processed_end == 8.0
    assert cursor.total_word_count == 2


def test_word_count_prefers_word_timestamps() -> None:
    cursor = TranscriptCursor()
    words = [Word("one", 0.0, 0.5), Word("two", 0.5, 1.0), Word("three", 1.0, 1.5)]
    segment = TranscriptSegment(text="one two three", start=0.0, end=1.5, words=words)

    select_new_segments([segment], cursor)

    assert cursor.total_word_count == 3


def test_cold_start_below_minimum_waits(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=10 * 1024)
    channel = recording_channel()
    transcriber = FakeTranscriber([result_of(seg(0.0, 2.0))])
    engine = _engine(workspace, runner, transcriber, stat, channel, wait_timeout=30)

    accepted = asyncio.run(engine.run_cycle())

    assert accepted == []
    assert runner.calls == []
    assert transcriber.calls == []
    assert engine.cursor.last_processed_end == 0
    assert "Waiting for stream data..." in [e.text for e in channel.of_type(TranscriptionStatus)]


def test_cold_start_with_enough_data_transcribes_from_zero(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=40 * 1024)
    channel = recording_channel()
    transcriber = FakeTranscriber([result_of(seg(0.0, 3.2, "good morning"))])
    engine = _engine(workspace, runner, transcriber, stat, channel)

    accepted = asyncio.run(engine.run_cycle())

    assert len(accepted) == 1
    assert engine.cursor.last_processed_end == 3.2
    assert "-ss" not in runner.calls[0]
    updates = channel.of_type(TranscriptUpdate)
    assert len(updates) == 1
    assert updates[0].total_word_count == 2
    assert updates[0].model == "base"


def test_audio_is_cut_with_context_before_cursor(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=64 * 1024)
    transcriber = FakeTranscriber([result_of(seg(7.6, 10.6))])
    engine = _engine(workspace, runner, transcriber, stat)
    engine.cursor.last_processed_end = 12.4

    accepted = asyncio.run(engine.run_cycle())

    cmd = runner.calls[0]
    assert cmd[cmd.index("-ss") + 1] == "7.400"
    assert cmd[-1].endswith(f"segment_{engine._generation}.wav")
    assert ["-ar", "16000"] == cmd[cmd.index("-ar"):cmd.index("-ar") + 2]
    # shifted back to snapshot time: [15.0, 18.0]
    assert accepted[0].start == pytest.approx(15.0)
    assert engine.cursor.last_processed_end == pytest.approx(18.0)


def test_overlapping_windows_never_repeat_text(workspace, runner) -> None:
    stat = GrowingStat(workspace.snapshot)
    channel = recording_channel()
    transcriber = FakeTranscriber([
        result_of(seg(0.0, 4.0, "a"), seg(4.0, 8.0, "b")),
        # offset 3.0: [1,5] is "b" again, [5,9] is new
        result_of(seg(1.0, 5.0, "b"), seg(5.0, 9.0, "c")),
    ])
    engine = _engine(workspace, runner, transcriber, stat, channel)

    async def two_cycles():
        ends = []
        await engine.run_cycle()
        ends.append(engine.cursor.last_processed_end)
        await engine.run_cycle()
        ends.append(engine.cursor.last_processed_end)
        return ends

    ends = asyncio.run(two_cycles())

    emitted = [s for u in channel.of_type(TranscriptUpdate) for s in u.segments]
    assert [s.text for s in emitted] == ["a", "b", "c"]
    assert len({s.start for s in emitted}) == len(emitted)
    assert ends == sorted(ends)
    assert ends[-1] == 12.0


def test_transcription_failure_keeps_cursor(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=64 * 1024)
    transcriber = FakeTranscriber(error=TranscriptionError("model exploded"))
    engine = _engine(workspace, runner, transcriber, stat)
    engine.cursor.last_processed_end = 20.0
    engine.cursor.total_word_count = 7

    with pytest.raises(TranscriptionError):
        asyncio.run(engine.run_cycle())

    assert engine.cursor.last_processed_end == 20.0
    assert engine.cursor.total_word_count == 7


def test_results_from_stopped_session_are_discarded(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=64 * 1024)
    channel = recording_channel()
    transcriber = FakeTranscriber([result_of(seg(0.0, 2.0))])
    engine = _engine(workspace, runner, transcriber, stat, channel)

    async def scenario():
        stale = engine._generation
        engine.stop()
        return await engine.run_cycle(stale)

    assert asyncio.run(scenario()) == []
    assert channel.of_type(TranscriptUpdate) == []
    assert engine.cursor.last_processed_end == 0


def test_requests_during_running_cycle_coalesce(workspace) -> None:
    runner = FakeRunner()
    stat = GrowingStat(workspace.snapshot)
    transcriber = FakeTranscriber([result_of(seg(0.0, 1.0))])
    engine = _engine(
        workspace, runner, transcriber, stat,
        sleep=asyncio.sleep, cycle_interval=3600,
    )

    async def scenario():
        runner.gate = asyncio.Event()
        engine.start()
        for _ in range(100):
            if runner.calls:
                break
            await asyncio.sleep(0)
        assert engine.state is CycleState.RUNNING

        for _ in range(5):
            engine.request_cycle()
        assert engine.state is CycleState.RUNNING_WITH_PENDING

        runner.gate.set()
        for _ in range(500):
            if engine.state is CycleState.IDLE:
                break
            await asyncio.sleep(0.01)
        cycles = engine.cycles_run
        engine.stop()
        return cycles

    assert asyncio.run(scenario()) == 2


def test_cycle_error_is_reported_and_engine_keeps_running(workspace, runner) -> None:
    stat = GrowingStat(workspace.snapshot)
    channel = recording_channel()
    transcriber = FakeTranscriber(error=TranscriptionError("decode failed"))
    engine = _engine(
        workspace, runner, transcriber, stat, channel,
        sleep=asyncio.sleep, cycle_interval=3600,
    )

    async def scenario():
        engine.start()
        for _ in range(500):
            if engine.cycles_run and engine.state is CycleState.IDLE:
                break
            await asyncio.sleep(0.01)
        active = engine.is_active
        engine.stop()
        return active

    assert asyncio.run(scenario()) is True
    texts = [e.text for e in channel.of_type(TranscriptionStatus)]
    assert "Transcription error: decode failed" in texts
    assert texts[-1] == "Transcription stopped"


def test_request_cycle_when_inactive_does_nothing(workspace, runner) -> None:
    engine = _engine(workspace, runner, FakeTranscriber(), FakeStat())

    engine.request_cycle()

    assert engine.state is CycleState.IDLE
    assert engine.cycles_run == 0


def test_set_model_and_language_validate(workspace, runner) -> None:
    transcriber = FakeTranscriber()
    engine = _engine(workspace, runner, transcriber, FakeStat())

    engine.set_model("small")
    engine.set_language("de")

    assert transcriber.model_name == "small"
    assert engine.language == "de"
    with pytest.raises(ValidationError):
        engine.set_model("huge")
    with pytest.raises(ValidationError):
        engine.set_language("xx")
    assert "large" in engine.available_models()
    assert "auto" in engine.available_languages()


def test_auto_language_is_passed_as_none(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=64 * 1024)
    transcriber = FakeTranscriber([result_of(seg(0.0, 1.0))])
    engine = _engine(workspace, runner, transcriber, stat)

    asyncio.run(engine.run_cycle())
    engine.set_language("fr")
    engine.cursor.reset()
    stat.set(workspace.snapshot, size=128 * 1024)
    asyncio.run(engine.run_cycle())

    assert [lang for _, lang in transcriber.calls] == [None, "fr"]


def test_cleanup_removes_audio(workspace, runner) -> None:
    stat = FakeStat()
    stat.set(workspace.snapshot, size=64 * 1024)
    engine = _engine(workspace, runner, FakeTranscriber([result_of(seg(0.0, 1.0))]), stat)

    asyncio.run(engine.run_cycle())

    assert engine.cleanup() == 1
    assert list(workspace.audio_dir.iterdir()) == []


def test_audio_file_changes_with_each_session(workspace, runner) -> None:
    engine = _engine(workspace, runner, FakeTranscriber(), FakeStat())
    snapshot = str(workspace.snapshot)

    old_path = asyncio.run(engine.extract_audio(snapshot))
    stale = engine._generation
    engine.stop()
    new_path = asyncio.run(engine.extract_audio(snapshot))
    draining_path = asyncio.run(engine.extract_audio(snapshot, generation=stale))

    assert new_path != old_path
    assert draining_path == old_path
