from __future__ import annotations

import asyncio

from conftest import FakeClock, FakeStat

from livetr.src.polling import FileStat, stat_file, wait_for_data

PATH = "/work/fixed_current.ts"


def _wait(stat, clock, **kwargs):
    async def sleep(seconds):
        clock.advance(seconds)

    return asyncio.run(wait_for_data(PATH, stat=stat, clock=clock, sleep=sleep, **kwargs))


def test_cold_start_below_minimum_times_out() -> None:
    stat = FakeStat()
    stat.set(PATH, size=10 * 1024)
    clock = FakeClock()

    result = _wait(stat, clock, min_size=32 * 1024, timeout=30)

    assert result is None
    assert clock.now >= 30


def test_cold_start_above_minimum_proceeds_immediately() -> None:
    stat = FakeStat()
    stat.set(PATH, size=40 * 1024)
    clock = FakeClock()

    result = _wait(stat, clock, min_size=32 * 1024)

    assert result == FileStat(size=40 * 1024, mtime=1.0)
    assert clock.now == 0


def test_missing_file_times_out() -> None:
    clock = FakeClock()
    assert _wait(FakeStat(), clock, timeout=10) is None


def test_growth_since_previous_read_is_ready() -> None:
    stat = FakeStat()
    stat.set(PATH, size=50_000)
    clock = FakeClock()

    assert _wait(stat, clock, previous_size=40_000) is not None
    assert clock.now == 0


def test_stable_size_is_accepted_after_enough_checks() -> None:
    stat = FakeStat()
    stat.set(PATH, size=50_000)
    clock = FakeClock()

    result = _wait(stat, clock, previous_size=50_000, stable_checks=5, timeout=60)

    assert result is not None
    # four sleeps between the five stable polls
    assert clock.now == 1 + 1.5 + 2.25 + 3.375


def test_backoff_is_capped() -> None:
    stat = FakeStat()
    clock = FakeClock()
    delays = []

    async def sleep(seconds):
        delays.append(seconds)
        clock.advance(seconds)

    asyncio.run(wait_for_data(PATH, stat=stat, clock=clock, sleep=sleep, timeout=20, max_interval=4))

    assert delays[:3] == [1, 1.5, 2.25]
    assert max(delays) == 4


def test_data_arriving_mid_wait_is_picked_up() -> None:
    stat = FakeStat()
    clock = FakeClock()

    async def sleep(seconds):
        clock.advance(seconds)
        if clock.now >= 3:
            stat.set(PATH, size=64 * 1024)

    result = asyncio.run(wait_for_data(
        PATH, min_size=32 * 1024, stat=stat, clock=clock, sleep=sleep, timeout=30
    ))

    assert result is not None
    assert result.size == 64 * 1024


def test_stat_file_missing_returns_none(tmp_path) -> None:
    assert stat_file(str(tmp_path / "nope.ts")) is None
    target = tmp_path / "data.ts"
    target.write_bytes(b"abc")
    assert stat_file(str(target)).size == 3
