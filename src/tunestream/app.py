"""Textual mini-player hosting the now-playing surface and transport keys."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from contextlib import suppress

from textual.app import App, ComposeResult
from textual.widgets import Footer, Header, Static

from .cli import add_common_arguments, configure_logging, track_from_args
from .events import PlaybackStateChanged
from .runtime import PlaybackRuntime
from .runtime_config import PlaybackSettings
from .services.control_surface import (
    SkipBackwardCommand,
    SkipForwardCommand,
    TogglePlayPauseCommand,
    TransportCommand,
)
from .services.playback_session import PlaybackState, Track
from .ui.now_playing_pane import NowPlayingPane

logger = logging.getLogger(__name__)

STARTUP_FAILED_MESSAGE = "Startup failed. Review the log file."

LIFECYCLE_LABELS = {
    "idle": "Idle",
    "resolving": "Looking up stream...",
    "ready": "Buffering...",
    "playing": "Playing",
    "paused": "Paused",
    "ended": "Ended",
    "failed": "Failed",
}

RuntimeFactory = Callable[[NowPlayingPane], PlaybackRuntime]


def status_text(state: PlaybackState) -> str:
    label = LIFECYCLE_LABELS.get(state.lifecycle, state.lifecycle)
    if state.lifecycle == "failed" and state.last_error is not None:
        return f"{label}: {state.last_error.what_failed}"
    return label


class TuneStreamApp(App):
    TITLE = "tunestream"
    CSS = """
    Screen {
        layout: vertical;
    }

    #status-line {
        height: 1;
        padding: 0 2;
    }
    """
    BINDINGS = [
        ("space", "play_pause", "Play/Pause"),
        ("left", "skip_backward", "Back"),
        ("right", "skip_forward", "Forward"),
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        track: Track,
        *,
        settings: PlaybackSettings | None = None,
        backend_name: str | None = None,
        runtime_factory: RuntimeFactory | None = None,
    ) -> None:
        super().__init__()
        self.track = track
        self.now_playing_pane = NowPlayingPane(id="now-playing")
        if runtime_factory is None:
            self.runtime = PlaybackRuntime(
                settings=settings,
                backend_name=backend_name,
                surface=self.now_playing_pane,
            )
        else:
            self.runtime = runtime_factory(self.now_playing_pane)
        self.status_message = ""
        self._unsubscribe_state: Callable[[], None] | None = None
        self._init_task: asyncio.Task[None] | None = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield self.now_playing_pane
        yield Static("", id="status-line")
        yield Footer()

    def on_mount(self) -> None:
        self._init_task = asyncio.create_task(self._start_playback())

    async def on_unmount(self) -> None:
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if self._unsubscribe_state is not None:
            self._unsubscribe_state()
            self._unsubscribe_state = None
        await self.runtime.shutdown()

    async def action_play_pause(self) -> None:
        await self._send(TogglePlayPauseCommand())

    async def action_skip_forward(self) -> None:
        await self._send(SkipForwardCommand(self.runtime.settings.skip_interval_s))

    async def action_skip_backward(self) -> None:
        await self._send(SkipBackwardCommand(self.runtime.settings.skip_interval_s))

    async def _send(self, command: TransportCommand) -> None:
        result = await self.runtime.control_surface.handle_command(command)
        if result == "command_failed":
            self.bell()

    async def _start_playback(self) -> None:
        try:
            await self.runtime.start()
            self._unsubscribe_state = self.runtime.bus.subscribe(
                self._handle_state_event, PlaybackStateChanged
            )
            if self.runtime.notice:
                self.notify(self.runtime.notice, severity="warning")
            await self.runtime.session.play(self.track)
        except Exception as exc:
            logger.exception("Failed to start playback: %s", exc)
            self._set_status(STARTUP_FAILED_MESSAGE)

    async def _handle_state_event(self, event: object) -> None:
        assert isinstance(event, PlaybackStateChanged)
        self._set_status(status_text(event.state))

    def _set_status(self, message: str) -> None:
        self.status_message = message
        self.query_one("#status-line", Static).update(message)


def build_parser() -> argparse.ArgumentParser:
    return add_common_arguments(
        argparse.ArgumentParser(
            prog="tunestream-tui", description="Terminal mini-player for tunestream."
        )
    )


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        settings = configure_logging(args)
        logger.info("Starting tunestream TUI")
        TuneStreamApp(
            track_from_args(args), settings=settings, backend_name=args.backend
        ).run()
        return 0
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Fatal startup error: %s", exc)
        print(
            "Startup failed. Verify backend/settings/log paths and re-run with --verbose.",
            file=sys.stderr,
        )
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
