"""Textual mini-player tests driven through the headless pilot."""

from __future__ import annotations

import asyncio
import sys

import pytest
from fakes import StaticResolver, make_track, stream_url

import tunestream.app as app_module
from tunestream.app import TuneStreamApp, build_parser
from tunestream.runtime import PlaybackRuntime
from tunestream.runtime_config import PlaybackSettings
from tunestream.services.artwork import ArtworkLoader
from tunestream.services.fake_backend import FakePlaybackBackend
from tunestream.services.playback_errors import ExtractionFailed

VIDEO_ID = "dQw4w9WgXcQ"


def _run(coro):
    """Run async app scenario from sync test functions."""
    return asyncio.run(coro)


async def _no_artwork(_url: str) -> bytes:
    raise OSError("offline")


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _app(
    resolver: StaticResolver | None = None,
    backends: list[FakePlaybackBackend] | None = None,
) -> TuneStreamApp:
    created = backends if backends is not None else []

    def build_backend(_name: str) -> FakePlaybackBackend:
        backend = FakePlaybackBackend(
            tick_interval_ms=1000, durations_ms={stream_url(VIDEO_ID): 300_000}
        )
        created.append(backend)
        return backend

    def build_runtime(pane) -> PlaybackRuntime:
        return PlaybackRuntime(
            settings=PlaybackSettings(sample_interval_s=5.0),
            backend_name="fake",
            surface=pane,
            resolver=resolver or StaticResolver(),
            artwork_loader=ArtworkLoader(fetch_bytes=_no_artwork),
            backend_factory=build_backend,
        )

    return TuneStreamApp(make_track(VIDEO_ID), runtime_factory=build_runtime)


def test_keys_drive_transport_and_status_line() -> None:
    app = _app()
    rings: list[str] = []
    app.bell = lambda: rings.append("bell")

    async def run_app() -> None:
        async with app.run_test() as pilot:
            session = app.runtime.session
            await _wait_for(lambda: session.state.lifecycle == "playing")
            await _wait_for(lambda: app.status_message == "Playing")
            assert app.now_playing_pane.snapshot is not None
            assert app.now_playing_pane.snapshot.title == f"Song {VIDEO_ID}"

            await pilot.press("space")
            await _wait_for(lambda: session.state.lifecycle == "paused")
            await _wait_for(lambda: app.status_message == "Paused")

            await pilot.press("right")
            await _wait_for(lambda: session.state.position_seconds > 0)
            assert session.state.position_seconds == pytest.approx(15.0)

            await pilot.press("left")
            await _wait_for(lambda: session.state.position_seconds < 1)
            assert session.state.position_seconds == pytest.approx(0.0)

            await pilot.press("space")
            await _wait_for(lambda: app.status_message == "Playing")
            app.exit()

    _run(run_app())
    assert rings == []


def test_failed_track_shows_reason_and_rings_bell_on_keys() -> None:
    resolver = StaticResolver(errors={VIDEO_ID: ExtractionFailed("offline")})
    app = _app(resolver)
    rings: list[str] = []
    app.bell = lambda: rings.append("bell")

    async def run_app() -> None:
        async with app.run_test() as pilot:
            await _wait_for(lambda: app.runtime.session.state.lifecycle == "failed")
            await _wait_for(lambda: app.status_message.startswith("Failed"))
            assert app.status_message == f"Failed: {ExtractionFailed.what_failed}"

            await pilot.press("space")
            await pilot.press("right")
            await _wait_for(lambda: len(rings) == 2)
            app.exit()

    _run(run_app())
    assert rings == ["bell", "bell"]


def test_unmount_shuts_runtime_down(monkeypatch) -> None:
    app = _app()
    calls: list[str] = []
    shutdown = app.runtime.shutdown

    async def recording_shutdown() -> None:
        calls.append("shutdown")
        await shutdown()

    monkeypatch.setattr(app.runtime, "shutdown", recording_shutdown)

    async def run_app() -> None:
        async with app.run_test():
            await _wait_for(lambda: app.runtime.session.state.lifecycle == "playing")
            assert app.runtime.control_surface.is_attached
            app.exit()

    _run(run_app())
    assert calls == ["shutdown"]
    assert not app.runtime.control_surface.is_attached
    assert app.runtime.bus.subscriber_count == 0


def test_unmount_cancels_pending_startup() -> None:
    resolver = StaticResolver(delays={VIDEO_ID: 5.0})
    backends: list[FakePlaybackBackend] = []
    app = _app(resolver, backends)

    async def run_app() -> None:
        async with app.run_test():
            await _wait_for(lambda: resolver.calls == [VIDEO_ID])
            assert app.runtime.session.state.lifecycle == "resolving"
            app.exit()

    _run(run_app())
    assert app._init_task is not None  # noqa: SLF001
    assert app._init_task.done()  # noqa: SLF001
    assert app.runtime.session.state.lifecycle != "playing"
    assert backends[0].attached == []
    assert not app.runtime.control_surface.is_attached


def test_main_builds_app_from_shared_flags(monkeypatch, tmp_path) -> None:
    import tunestream.cli as cli_module

    captured: dict[str, object] = {}
    settings = PlaybackSettings(log_level="ERROR")

    def fake_setup_logging(log_dir, level="INFO", log_file=None, **_kwargs):
        captured["level"] = level
        return tmp_path / "tunestream.log"

    def fake_run(self) -> None:
        captured["track"] = self.track
        captured["backend"] = self.runtime.backend_name
        captured["settings"] = self.runtime.settings

    monkeypatch.setattr(cli_module, "setup_logging", fake_setup_logging)
    monkeypatch.setattr(cli_module, "log_dir", lambda: tmp_path)
    monkeypatch.setattr(cli_module, "settings_path", lambda: tmp_path / "s.json")
    monkeypatch.setattr(
        cli_module, "load_settings_with_notice", lambda _path: (settings, None)
    )
    monkeypatch.setattr(app_module.TuneStreamApp, "run", fake_run)
    monkeypatch.setattr(
        sys, "argv", ["tunestream-tui", VIDEO_ID, "--backend", "fake", "--title", "Song"]
    )

    assert app_module.main() == 0
    assert captured["level"] == "ERROR"
    assert captured["backend"] == "fake"
    assert captured["settings"] is settings
    assert captured["track"].title == "Song"


def test_tui_parser_shares_cli_flags() -> None:
    args = build_parser().parse_args([VIDEO_ID, "--quiet", "--log-file", "x.log"])
    assert args.quiet is True
    assert args.log_file == "x.log"
    assert args.artist == "Unknown artist"
    assert args.backend is None
