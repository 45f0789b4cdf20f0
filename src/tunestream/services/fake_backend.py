"""In-memory media engine for tests and engine-less runs.

Attaching a URL "plays" it instantly (after an optional delay) and a clock task
advances the position while playing. URLs can be given their own durations or
marked as failing to exercise the session's error paths.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
from contextlib import suppress
from dataclasses import dataclass
from typing import Literal

from .playback_backend import BackendEvent, MediaEnded

FakeStatus = Literal["idle", "playing", "paused", "ended"]


@dataclass
class _Media:
    token: int
    url: str
    duration_ms: int
    position_ms: int = 0
    status: FakeStatus = "playing"


class FakePlaybackBackend:
    """Deterministic stand-in for a streaming media engine."""

    def __init__(
        self,
        *,
        tick_interval_ms: int = 250,
        default_duration_ms: int = 180_000,
        durations_ms: Mapping[str, int] | None = None,
        failing_urls: Iterable[str] = (),
        attach_delay_s: float = 0.0,
    ) -> None:
        self._tick_ms = tick_interval_ms
        self._default_duration_ms = default_duration_ms
        self._durations_ms = dict(durations_ms or {})
        self._failing_urls = frozenset(failing_urls)
        self._attach_delay_s = attach_delay_s
        self._media: _Media | None = None
        self._handler: Callable[[BackendEvent], Awaitable[None]] | None = None
        self._lock = asyncio.Lock()
        self._clock: asyncio.Task[None] | None = None
        self.attached: list[tuple[int, str]] = []

    @property
    def status(self) -> FakeStatus:
        return self._media.status if self._media is not None else "idle"

    @property
    def stream_url(self) -> str | None:
        return self._media.url if self._media is not None else None

    def set_event_handler(
        self, handler: Callable[[BackendEvent], Awaitable[None]]
    ) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._clock is None:
            self._clock = asyncio.create_task(self._run_clock())

    async def shutdown(self) -> None:
        clock, self._clock = self._clock, None
        if clock is None:
            return
        clock.cancel()
        with suppress(asyncio.CancelledError):
            await clock

    async def attach(self, token: int, stream_url: str) -> int:
        if self._attach_delay_s > 0:
            await asyncio.sleep(self._attach_delay_s)
        if stream_url in self._failing_urls:
            raise RuntimeError(f"Stream not ready to play: {stream_url}")
        duration = self._durations_ms.get(stream_url, self._default_duration_ms)
        async with self._lock:
            self._media = _Media(token=token, url=stream_url, duration_ms=duration)
            self.attached.append((token, stream_url))
        return duration

    async def release(self) -> None:
        async with self._lock:
            self._media = None

    async def pause(self) -> None:
        await self._transition("playing", "paused")

    async def resume(self) -> None:
        await self._transition("paused", "playing")

    async def seek_ms(self, position_ms: int) -> None:
        async with self._lock:
            if self._media is not None:
                self._media.position_ms = max(
                    0, min(position_ms, self._media.duration_ms)
                )

    async def get_position_ms(self) -> int:
        async with self._lock:
            return self._media.position_ms if self._media is not None else 0

    async def get_duration_ms(self) -> int:
        async with self._lock:
            return self._media.duration_ms if self._media is not None else 0

    async def _transition(self, source: FakeStatus, target: FakeStatus) -> None:
        async with self._lock:
            if self._media is not None and self._media.status == source:
                self._media.status = target

    async def _run_clock(self) -> None:
        while True:
            await asyncio.sleep(self._tick_ms / 1000)
            ended_token = await self._advance()
            if ended_token is not None and self._handler is not None:
                await self._handler(MediaEnded(ended_token))

    async def _advance(self) -> int | None:
        """Move the playhead one tick; returns the token when media just ended."""
        async with self._lock:
            media = self._media
            if media is None or media.status != "playing" or media.duration_ms <= 0:
                return None
            media.position_ms = min(media.position_ms + self._tick_ms, media.duration_ms)
            if media.position_ms < media.duration_ms:
                return None
            media.status = "ended"
            return media.token
