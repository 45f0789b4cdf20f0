"""Playback session: the single owner of now-playing state.

`PlaybackSession` resolves a track's video id into a stream, drives the media
backend through the playback lifecycle, samples position at a fixed cadence and
emits immutable `PlaybackState` snapshots to subscribers.

Every `play()` call bumps a generation token. Resolver completions, backend
events, seek completions and position samples carry the generation they were
started under and are dropped when it no longer matches, so only the most
recent `play()` can write into the state.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Callable, Literal

from tunestream.events import PlaybackStateChanged, TrackStarted
from tunestream.services.now_playing import NowPlayingPublisher
from tunestream.services.playback_backend import (
    BackendError,
    BackendEvent,
    MediaChanged,
    MediaEnded,
    PlaybackBackend,
)
from tunestream.services.playback_errors import (
    AudioRouteError,
    EngineInitializationFailed,
    EngineRuntimeError,
    ExtractionFailed,
    NoActiveSession,
    PlaybackError,
)
from tunestream.services.stream_resolver import StreamCandidate, StreamResolver
from tunestream.utils.time_format import format_time

logger = logging.getLogger(__name__)

Lifecycle = Literal[
    "idle", "resolving", "ready", "playing", "paused", "ended", "failed"
]
TransportOutcome = Literal["applied", "no_active_session"]
ACTIVE_LIFECYCLES = frozenset({"playing", "paused"})
DEFAULT_SAMPLE_INTERVAL_S = 0.5
DEFAULT_RESOLVE_TIMEOUT_S = 30.0
DEFAULT_ATTACH_TIMEOUT_S = 15.0


@dataclass(frozen=True)
class Track:
    """Playable song as supplied by the catalog/search collaborator."""

    id: str
    title: str
    artist: str
    thumbnail_url: str
    source_video_id: str


@dataclass(frozen=True)
class PlaybackState:
    """Snapshot of the session's now-playing state exposed to subscribers."""

    current_track: Track | None = None
    lifecycle: Lifecycle = "idle"
    position_seconds: float = 0.0
    duration_seconds: float = 0.0
    last_error: PlaybackError | None = None

    @property
    def progress_fraction(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return _clamp_float(self.position_seconds / self.duration_seconds, 0.0, 1.0)

    @property
    def is_playing(self) -> bool:
        return self.lifecycle == "playing"

    @property
    def has_active_media(self) -> bool:
        return self.lifecycle in ACTIVE_LIFECYCLES


class PlaybackSession:
    """Owns playback state, serializes its mutations and emits events."""

    format_time = staticmethod(format_time)

    def __init__(
        self,
        *,
        emit_event: Callable[[object], Awaitable[None]],
        resolver: StreamResolver,
        backend: PlaybackBackend,
        publisher: NowPlayingPublisher | None = None,
        sample_interval_s: float = DEFAULT_SAMPLE_INTERVAL_S,
        resolve_timeout_s: float = DEFAULT_RESOLVE_TIMEOUT_S,
        attach_timeout_s: float = DEFAULT_ATTACH_TIMEOUT_S,
    ) -> None:
        if sample_interval_s <= 0:
            raise ValueError("sample_interval_s must be > 0")
        self._emit_event = emit_event
        self._resolver = resolver
        self._backend = backend
        self._publisher = publisher
        self._sample_interval_s = float(sample_interval_s)
        self._resolve_timeout_s = float(resolve_timeout_s)
        self._attach_timeout_s = float(attach_timeout_s)
        self._state = PlaybackState()
        # State lock guards `_state`, `_generation` and `_seek_serial`; engine lock
        # serializes backend commands. Never take the engine lock while holding
        # the state lock.
        self._lock = asyncio.Lock()
        self._engine_lock = asyncio.Lock()
        self._generation = 0
        # Position samples taken across a seek are dropped.
        self._seek_serial = 0
        self._load_task: asyncio.Task[None] | None = None
        self._sampler_task: asyncio.Task[None] | None = None
        self._backend.set_event_handler(self._handle_backend_event)

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_sampling(self) -> bool:
        return self._sampler_task is not None and not self._sampler_task.done()

    async def start(self) -> None:
        """Open the audio output; failure is recorded and raised as `AudioRouteError`."""
        try:
            await self._backend.start()
        except Exception as exc:
            error = AudioRouteError(str(exc))
            logger.warning("Audio output setup failed: %s", exc)
            async with self._lock:
                self._state = replace(
                    self._state, lifecycle="failed", last_error=error
                )
            await self._emit_state()
            raise error from exc

    async def shutdown(self) -> None:
        """Cancel in-flight work, stop sampling and release the backend."""
        async with self._lock:
            self._generation += 1
            load_task = self._load_task
            self._load_task = None
        if load_task is not None and not load_task.done():
            load_task.cancel()
            with suppress(asyncio.CancelledError):
                await load_task
        await self._stop_sampler()
        try:
            await self._backend.shutdown()
        except Exception:  # pragma: no cover - best-effort teardown
            logger.exception("Playback backend shutdown failed.")

    async def play(self, track: Track) -> None:
        """Replace the session with `track` and run resolve/attach to completion.

        Returns once this call's load finished, failed or was superseded.
        """
        async with self._lock:
            self._generation += 1
            generation = self._generation
            previous = self._load_task
            self._load_task = None
            self._state = PlaybackState(current_track=track, lifecycle="resolving")
        if previous is not None and not previous.done():
            previous.cancel()
        logger.info(
            "Resolving track %s (%s) generation=%d",
            track.id,
            track.source_video_id,
            generation,
        )
        await self._emit_state()
        async with self._lock:
            if generation != self._generation:
                return
            task = asyncio.create_task(self._load(track, generation))
            self._load_task = task
        await asyncio.wait({task})

    async def toggle_playback(self) -> TransportOutcome:
        async with self._lock:
            lifecycle = self._state.lifecycle
        if lifecycle == "playing":
            return await self.pause()
        if lifecycle == "paused":
            return await self.resume()
        return self._no_active_session("toggle_playback")

    async def pause(self) -> TransportOutcome:
        return await self._set_paused(True)

    async def resume(self) -> TransportOutcome:
        return await self._set_paused(False)

    async def seek(self, fraction: float) -> TransportOutcome:
        """Seek to `fraction` of the duration, clamped to `[0, duration]`."""
        if not math.isfinite(fraction):
            fraction = 0.0
        fraction = _clamp_float(fraction, 0.0, 1.0)
        async with self._engine_lock:
            async with self._lock:
                if not self._state.has_active_media:
                    return self._no_active_session("seek")
                duration = self._state.duration_seconds
                generation = self._generation
                self._seek_serial += 1
            target = _clamp_float(fraction * duration, 0.0, duration)
            await self._backend.seek_ms(int(target * 1000))
            async with self._lock:
                if generation != self._generation or not self._state.has_active_media:
                    return "applied"
                self._seek_serial += 1
                self._state = replace(self._state, position_seconds=target)
                state = self._state
        self._publish(state)
        await self._emit_state()
        return "applied"

    async def _load(self, track: Track, generation: int) -> None:
        await self._stop_sampler()
        async with self._engine_lock:
            if generation != self._generation:
                return
            await self._release_backend()
        try:
            candidate = await asyncio.wait_for(
                self._resolver.resolve(track.source_video_id),
                timeout=self._resolve_timeout_s,
            )
        except asyncio.TimeoutError:
            await self._fail(
                generation,
                ExtractionFailed(
                    f"Stream lookup timed out after {self._resolve_timeout_s:g}s."
                ),
            )
            return
        except PlaybackError as exc:
            await self._fail(generation, exc)
            return
        except Exception as exc:
            await self._fail(generation, ExtractionFailed(str(exc)))
            return
        async with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale resolution for generation %d", generation)
                return
            self._state = replace(self._state, lifecycle="ready")
        await self._emit_state()
        await self._attach(track, candidate, generation)

    async def _attach(
        self, track: Track, candidate: StreamCandidate, generation: int
    ) -> None:
        error: PlaybackError | None = None
        async with self._engine_lock:
            if generation != self._generation:
                return
            try:
                duration_ms = await asyncio.wait_for(
                    self._backend.attach(generation, candidate.url),
                    timeout=self._attach_timeout_s,
                )
            except asyncio.TimeoutError:
                error = EngineInitializationFailed(
                    f"Stream not ready after {self._attach_timeout_s:g}s."
                )
            except Exception as exc:
                error = EngineInitializationFailed(str(exc))
            if error is not None:
                await self._release_backend()
        if error is not None:
            await self._fail(generation, error)
            return
        async with self._lock:
            if generation != self._generation:
                return
            self._state = replace(
                self._state,
                lifecycle="playing",
                position_seconds=0.0,
                duration_seconds=max(0, duration_ms) / 1000,
            )
            state = self._state
            self._sampler_task = asyncio.create_task(self._sample_position(generation))
        logger.info(
            "Playing track %s via %s stream (duration %s)",
            track.id,
            candidate.quality_label,
            format_time(state.duration_seconds),
        )
        self._publish(state)
        await self._emit_state()
        await self._emit_event(TrackStarted(track))

    async def _fail(self, generation: int, error: PlaybackError) -> None:
        async with self._lock:
            if generation != self._generation:
                logger.debug("Discarding stale failure for generation %d", generation)
                return
            self._state = replace(
                self._state, lifecycle="failed", position_seconds=0.0, last_error=error
            )
        logger.warning(
            "Playback failed (%s): %s", type(error).__name__, error.detail or error
        )
        await self._emit_state()

    async def _set_paused(self, paused: bool) -> TransportOutcome:
        target: Lifecycle = "paused" if paused else "playing"
        async with self._engine_lock:
            async with self._lock:
                if not self._state.has_active_media:
                    return self._no_active_session("pause" if paused else "resume")
                if self._state.lifecycle == target:
                    return "applied"
                generation = self._generation
            if paused:
                await self._backend.pause()
            else:
                await self._backend.resume()
            async with self._lock:
                if generation != self._generation or not self._state.has_active_media:
                    return "applied"
                self._state = replace(self._state, lifecycle=target)
                state = self._state
        logger.info("Playback %s", target)
        self._publish(state)
        await self._emit_state()
        return "applied"

    async def _handle_backend_event(self, event: BackendEvent) -> None:
        """Apply backend events that belong to the current attachment."""
        stop_sampling = False
        release_media = False
        async with self._lock:
            if event.token != self._generation:
                logger.debug(
                    "Ignoring %s for stale generation %d",
                    type(event).__name__,
                    event.token,
                )
                return
            if not self._state.has_active_media:
                return
            if isinstance(event, MediaChanged):
                duration = max(0, event.duration_ms) / 1000
                if duration == self._state.duration_seconds:
                    return
                self._state = replace(self._state, duration_seconds=duration)
            elif isinstance(event, MediaEnded):
                self._state = replace(
                    self._state, lifecycle="ended", position_seconds=0.0
                )
                stop_sampling = True
            elif isinstance(event, BackendError):
                self._state = replace(
                    self._state,
                    lifecycle="failed",
                    last_error=EngineRuntimeError(event.message),
                )
                stop_sampling = True
                release_media = True
            else:
                return
            state = self._state
        if stop_sampling:
            await self._stop_sampler()
        if release_media:
            async with self._engine_lock:
                if event.token == self._generation:
                    await self._release_backend()
        if state.lifecycle == "failed":
            logger.warning("Media engine error: %s", state.last_error)
        elif state.lifecycle == "ended":
            logger.info("Track %s ended", state.current_track and state.current_track.id)
        self._publish(state)
        await self._emit_state()

    async def _sample_position(self, generation: int) -> None:
        """Sample backend position while media is attached."""
        try:
            while True:
                await asyncio.sleep(self._sample_interval_s)
                async with self._lock:
                    if generation != self._generation:
                        return
                    if not self._state.has_active_media:
                        continue
                    serial = self._seek_serial
                try:
                    position_ms = await self._backend.get_position_ms()
                    duration_ms = await self._backend.get_duration_ms()
                except Exception as exc:  # pragma: no cover - backend safety net
                    logger.debug("Position sample failed: %s", exc)
                    continue
                async with self._lock:
                    if generation != self._generation:
                        return
                    if not self._state.has_active_media:
                        continue
                    if serial != self._seek_serial:
                        continue
                    duration = self._state.duration_seconds
                    if duration_ms > 0:
                        duration = duration_ms / 1000
                    position = max(0.0, position_ms / 1000)
                    if duration > 0:
                        position = min(position, duration)
                    self._state = replace(
                        self._state,
                        position_seconds=position,
                        duration_seconds=duration,
                    )
                    state = self._state
                self._publish(state)
                await self._emit_state()
        except asyncio.CancelledError:
            return

    async def _stop_sampler(self) -> None:
        task = self._sampler_task
        self._sampler_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _release_backend(self) -> None:
        try:
            await self._backend.release()
        except Exception as exc:  # pragma: no cover - backend safety net
            logger.warning("Failed to release previous media: %s", exc)

    def _no_active_session(self, action: str) -> TransportOutcome:
        logger.info("%s ignored: %s", action, NoActiveSession.what_failed)
        return "no_active_session"

    def _publish(self, state: PlaybackState) -> None:
        if self._publisher is not None:
            self._publisher.publish(state)

    async def _emit_state(self) -> None:
        await self._emit_event(PlaybackStateChanged(self._state))


def _clamp_float(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(value, max_value))
