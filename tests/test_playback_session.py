"""Tests for PlaybackSession lifecycle, staleness and transport behavior."""

from __future__ import annotations

import asyncio
import math

import pytest
from fakes import RecordingSurface, StaticResolver, make_track, stream_url

from tunestream.events import PlaybackStateChanged, TrackStarted
from tunestream.services.fake_backend import FakePlaybackBackend
from tunestream.services.now_playing import NowPlayingPublisher
from tunestream.services.playback_backend import BackendError, MediaEnded
from tunestream.services.playback_errors import (
    AudioRouteError,
    EngineInitializationFailed,
    EngineRuntimeError,
    ExtractionFailed,
    NoPlayableStream,
)
from tunestream.services.playback_session import PlaybackSession, PlaybackState


def _run(coro):
    """Run async session scenario from sync test functions."""
    return asyncio.run(coro)


def _session(
    events: list[object] | None = None,
    *,
    resolver: StaticResolver | None = None,
    backend: FakePlaybackBackend | None = None,
    publisher: NowPlayingPublisher | None = None,
    **kwargs,
) -> PlaybackSession:
    sink = events if events is not None else []

    async def emit_event(event: object) -> None:
        sink.append(event)

    return PlaybackSession(
        emit_event=emit_event,
        resolver=resolver or StaticResolver(),
        backend=backend or FakePlaybackBackend(tick_interval_ms=50),
        publisher=publisher,
        sample_interval_s=kwargs.pop("sample_interval_s", 0.05),
        **kwargs,
    )


def _lifecycles(events: list[object]) -> list[str]:
    return [
        event.state.lifecycle
        for event in events
        if isinstance(event, PlaybackStateChanged)
    ]


def test_play_reaches_playing_and_position_advances() -> None:
    events: list[object] = []

    async def run() -> None:
        session = _session(events)
        await session.start()
        track = make_track("dQw4w9WgXcQ")
        await session.play(track)
        state = session.state
        assert state.lifecycle == "playing"
        assert state.current_track == track
        assert state.duration_seconds == 180.0
        assert session.is_sampling
        await asyncio.sleep(0.25)
        assert session.state.position_seconds > 0
        await session.shutdown()
        assert not session.is_sampling

    _run(run())
    assert _lifecycles(events)[:3] == ["resolving", "ready", "playing"]
    assert any(isinstance(event, TrackStarted) for event in events)


def test_natural_end_moves_to_ended_and_stops_sampling() -> None:
    async def run() -> None:
        backend = FakePlaybackBackend(
            tick_interval_ms=50, durations_ms={stream_url("aaaaaaaaaaa"): 150}
        )
        session = _session(backend=backend)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        await asyncio.sleep(0.4)
        state = session.state
        assert state.lifecycle == "ended"
        assert state.position_seconds == 0.0
        assert not session.is_sampling
        await session.shutdown()

    _run(run())


def test_newer_play_supersedes_slow_resolution() -> None:
    events: list[object] = []

    async def run() -> None:
        resolver = StaticResolver(delays={"aaaaaaaaaaa": 0.3})
        backend = FakePlaybackBackend(tick_interval_ms=50)
        session = _session(events, resolver=resolver, backend=backend)
        await session.start()
        first = asyncio.create_task(session.play(make_track("aaaaaaaaaaa")))
        await asyncio.sleep(0.02)
        await session.play(make_track("bbbbbbbbbbb"))
        await first
        await asyncio.sleep(0.35)
        state = session.state
        assert state.current_track is not None
        assert state.current_track.source_video_id == "bbbbbbbbbbb"
        assert state.lifecycle == "playing"
        assert [url for _token, url in backend.attached] == [stream_url("bbbbbbbbbbb")]
        await session.shutdown()

    _run(run())
    playing_tracks = {
        event.state.current_track.source_video_id
        for event in events
        if isinstance(event, PlaybackStateChanged)
        and event.state.lifecycle == "playing"
        and event.state.current_track is not None
    }
    assert playing_tracks == {"bbbbbbbbbbb"}


def test_resolver_errors_are_normalized_into_failed_state() -> None:
    async def run() -> None:
        resolver = StaticResolver(
            errors={
                "aaaaaaaaaaa": NoPlayableStream("nothing"),
                "bbbbbbbbbbb": RuntimeError("socket closed"),
            }
        )
        session = _session(resolver=resolver)
        await session.start()

        await session.play(make_track("aaaaaaaaaaa"))
        assert session.state.lifecycle == "failed"
        assert isinstance(session.state.last_error, NoPlayableStream)

        await session.play(make_track("bbbbbbbbbbb"))
        assert session.state.lifecycle == "failed"
        assert isinstance(session.state.last_error, ExtractionFailed)
        assert session.state.last_error.detail == "socket closed"
        assert session.state.position_seconds == 0.0
        await session.shutdown()

    _run(run())


def test_attach_failure_releases_backend_and_fails() -> None:
    async def run() -> None:
        backend = FakePlaybackBackend(
            tick_interval_ms=50, failing_urls=[stream_url("aaaaaaaaaaa")]
        )
        session = _session(backend=backend)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        assert session.state.lifecycle == "failed"
        assert isinstance(session.state.last_error, EngineInitializationFailed)
        assert backend.status == "idle"
        assert not session.is_sampling
        await session.shutdown()

    _run(run())


def test_resolve_and_attach_timeouts() -> None:
    async def run() -> None:
        slow_resolver = StaticResolver(delays={"aaaaaaaaaaa": 1.0})
        session = _session(resolver=slow_resolver, resolve_timeout_s=0.05)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        assert isinstance(session.state.last_error, ExtractionFailed)
        assert "timed out" in (session.state.last_error.detail or "")
        await session.shutdown()

        slow_backend = FakePlaybackBackend(tick_interval_ms=50, attach_delay_s=1.0)
        session = _session(backend=slow_backend, attach_timeout_s=0.05)
        await session.start()
        await session.play(make_track("bbbbbbbbbbb"))
        assert isinstance(session.state.last_error, EngineInitializationFailed)
        await session.shutdown()

    _run(run())


def test_transport_without_session_is_a_noop() -> None:
    events: list[object] = []

    async def run() -> None:
        session = _session(events)
        await session.start()
        assert await session.toggle_playback() == "no_active_session"
        assert await session.pause() == "no_active_session"
        assert await session.resume() == "no_active_session"
        assert await session.seek(0.5) == "no_active_session"
        assert session.state == PlaybackState()
        await session.shutdown()

    _run(run())
    assert events == []


def test_toggle_pause_freezes_position_and_resume_continues() -> None:
    async def run() -> None:
        backend = FakePlaybackBackend(tick_interval_ms=50)
        session = _session(backend=backend)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        await asyncio.sleep(0.15)
        assert await session.toggle_playback() == "applied"
        assert session.state.lifecycle == "paused"
        assert backend.status == "paused"
        await asyncio.sleep(0.1)
        frozen = session.state.position_seconds
        await asyncio.sleep(0.15)
        assert session.state.position_seconds == frozen
        assert await session.pause() == "applied"
        assert session.state.lifecycle == "paused"
        assert await session.toggle_playback() == "applied"
        assert session.state.lifecycle == "playing"
        assert backend.status == "playing"
        await session.shutdown()

    _run(run())


def test_seek_clamps_fraction_and_updates_position() -> None:
    async def run() -> None:
        backend = FakePlaybackBackend(tick_interval_ms=1000)
        session = _session(backend=backend, sample_interval_s=5.0)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        assert await session.seek(0.5) == "applied"
        assert session.state.position_seconds == 90.0
        assert await backend.get_position_ms() == 90_000
        await session.seek(2.0)
        assert session.state.position_seconds == 180.0
        await session.seek(-1.0)
        assert session.state.position_seconds == 0.0
        await session.seek(math.nan)
        assert session.state.position_seconds == 0.0
        await session.shutdown()

    _run(run())


class SlowPositionBackend(FakePlaybackBackend):
    """Reports positions that are already stale when they arrive."""

    async def get_position_ms(self) -> int:
        position = await super().get_position_ms()
        await asyncio.sleep(0.1)
        return position


def test_seek_is_not_overwritten_by_sample_taken_before_it() -> None:
    surface = RecordingSurface()

    async def run() -> None:
        backend = SlowPositionBackend(tick_interval_ms=1000)
        session = _session(
            backend=backend,
            publisher=NowPlayingPublisher(surface),
            sample_interval_s=0.05,
        )
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        await asyncio.sleep(0.08)
        await session.seek(0.5)
        await asyncio.sleep(0.15)
        assert session.state.position_seconds >= 90.0
        await session.shutdown()

    _run(run())
    assert any(snapshot.elapsed_seconds == 90.0 for snapshot in surface.snapshots)


def test_progress_fraction_is_clamped() -> None:
    assert PlaybackState().progress_fraction == 0.0
    assert PlaybackState(position_seconds=30, duration_seconds=60).progress_fraction == 0.5
    assert PlaybackState(position_seconds=90, duration_seconds=60).progress_fraction == 1.0
    assert PlaybackState(position_seconds=-5, duration_seconds=60).progress_fraction == 0.0


def test_failed_play_keeps_previous_now_playing() -> None:
    surface = RecordingSurface()

    async def run() -> None:
        resolver = StaticResolver(errors={"bbbbbbbbbbb": ExtractionFailed("offline")})
        publisher = NowPlayingPublisher(surface)
        session = _session(resolver=resolver, publisher=publisher)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa", title="First"))
        await asyncio.sleep(0.1)
        published = len(surface.snapshots)
        await session.play(make_track("bbbbbbbbbbb", title="Second"))
        await asyncio.sleep(0.1)
        assert session.state.lifecycle == "failed"
        assert len(surface.snapshots) == published
        assert publisher.last_snapshot is not None
        assert publisher.last_snapshot.title == "First"
        await session.shutdown()

    _run(run())
    assert {snapshot.title for snapshot in surface.snapshots} == {"First"}


def test_new_play_replaces_sampler_task() -> None:
    async def run() -> None:
        session = _session()
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        first_sampler = session._sampler_task  # noqa: SLF001
        assert first_sampler is not None
        await session.play(make_track("bbbbbbbbbbb"))
        assert first_sampler.done()
        assert session._sampler_task is not first_sampler  # noqa: SLF001
        assert session.is_sampling
        await session.shutdown()

    _run(run())


def test_backend_events_for_stale_generation_are_ignored() -> None:
    async def run() -> None:
        backend = FakePlaybackBackend(tick_interval_ms=1000)
        session = _session(backend=backend, sample_interval_s=5.0)
        await session.start()
        await session.play(make_track("aaaaaaaaaaa"))
        stale = session.generation - 1
        await session._handle_backend_event(MediaEnded(stale))  # noqa: SLF001
        assert session.state.lifecycle == "playing"
        await session._handle_backend_event(  # noqa: SLF001
            BackendError(session.generation, "decoder crashed")
        )
        assert session.state.lifecycle == "failed"
        assert isinstance(session.state.last_error, EngineRuntimeError)
        assert not session.is_sampling
        assert backend.status == "idle"
        assert backend.stream_url is None
        await session.shutdown()

    _run(run())


def test_start_failure_raises_audio_route_error() -> None:
    events: list[object] = []

    class BrokenBackend(FakePlaybackBackend):
        async def start(self) -> None:
            raise RuntimeError("no output device")

    async def run() -> None:
        session = _session(events, backend=BrokenBackend())
        with pytest.raises(AudioRouteError):
            await session.start()
        assert session.state.lifecycle == "failed"
        assert isinstance(session.state.last_error, AudioRouteError)

    _run(run())
    assert _lifecycles(events) == ["failed"]


def test_sample_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _session(sample_interval_s=0)


def test_format_time_is_exposed_on_session() -> None:
    assert PlaybackSession.format_time(65.9) == "1:05"
