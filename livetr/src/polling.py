"""
File-growth polling.

The capture writer is an opaque ffmpeg process with no notification hook, so
readiness is detected by comparing size/mtime between polls. The stat source,
clock and sleep are injectable.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime: float


StatFunc = Callable[[str], Optional[FileStat]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def stat_file(path: str) -> Optional[FileStat]:
    """Size and modification time of ``path``, or None if it does not exist."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return FileStat(size=st.st_size, mtime=st.st_mtime)


async def wait_for_data(
    path: str,
    min_size: int = 0,
    previous_size: Optional[int] = None,
    stat: StatFunc = stat_file,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
    timeout: float = 30.0,
    interval: float = 1.0,
    max_interval: float = 4.0,
    backoff: float = 1.5,
    stable_checks: int = 5,
) -> Optional[FileStat]:
    """
    Poll ``path`` until it holds enough data to be worth reading.

    The file is ready when it is non-empty, at least ``min_size`` bytes and
    either differs in size from ``previous_size`` (new data arrived) or has
    kept the same size for ``stable_checks`` consecutive polls (the writer
    stalled, but what is there can still be processed).

    Args:
        path: File to watch.
        min_size: Minimum byte size before anything counts as ready.
        previous_size: Size seen by the caller's previous successful read,
            None if there was none.
        stat, clock, sleep: Injection points for tests.
        timeout: Give up after this many seconds.
        interval: First poll delay; multiplied by ``backoff`` after each
            poll up to ``max_interval``.
        stable_checks: Consecutive unchanged polls accepted as ready.

    Returns:
        The FileStat that satisfied the condition, or None on timeout. A
        timeout is not an error; the caller simply tries again later.
    """
    deadline = clock() + timeout
    delay = interval
    stable = 0

    while True:
        st = stat(path)
        if st is None:
            logger.debug("Waiting for %s: file does not exist", path)
            stable = 0
        elif st.size == 0:
            logger.debug("Waiting for %s: file is empty", path)
            stable = 0
        elif st.size < min_size:
            logger.debug(
                "Waiting for %s: %.2fKB of %.2fKB",
                path, st.size / 1024, min_size / 1024,
            )
            stable = 0
        elif previous_size is None or st.size != previous_size:
            return st
        else:
            stable += 1
            logger.debug("%s size stable for %d/%d checks", path, stable, stable_checks)
            if stable >= stable_checks:
                return st

        if clock() >= deadline:
            logger.debug("Timed out waiting for %s", path)
            return None
        await sleep(delay)
        delay = min(delay * backoff, max_interval)
