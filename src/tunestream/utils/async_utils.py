"""Offloading of blocking library calls (yt-dlp extraction, Pillow decoding).

The work runs on a small dedicated thread pool, created on first use, so the
event loop and the position sampler keep ticking meanwhile.
"""

from __future__ import annotations

import asyncio
import atexit
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")

IO_WORKERS = 4
WAKEUP_POLL_S = 0.1

_executor: ThreadPoolExecutor | None = None


def _io_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=IO_WORKERS, thread_name_prefix="tunestream-io"
        )
        atexit.register(_executor.shutdown, wait=False, cancel_futures=True)
    return _executor


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Await `func(*args, **kwargs)` evaluated on the IO thread pool."""
    if not callable(func):
        raise TypeError("func must be callable")
    future = asyncio.get_running_loop().run_in_executor(
        _io_executor(), partial(func, *args, **kwargs)
    )
    # Poll so a missed thread->loop wakeup cannot stall the caller.
    while True:
        done, _pending = await asyncio.wait({future}, timeout=WAKEUP_POLL_S)
        if done:
            return future.result()
