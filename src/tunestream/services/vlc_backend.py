"""Network-stream playback through libVLC (python-vlc).

libVLC objects are owned by one worker thread. Coroutines hand it `_Command`
records over a queue and await a loop future that the thread resolves. Between
commands the thread polls the player so it can report end of media, errors and
a late-known length for the attachment token that is current.
"""

from __future__ import annotations

import asyncio
import queue
import threading
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, Literal, cast

from .playback_backend import BackendError, BackendEvent, MediaChanged, MediaEnded

VlcStatus = Literal["idle", "loading", "playing", "paused", "ended", "error"]

THREAD_NAME = "tunestream-vlc"
VLC_ARGS = ("--no-video",)
JOIN_TIMEOUT_S = 2.0


@dataclass
class _Command:
    name: str
    args: tuple[Any, ...]
    future: asyncio.Future[Any] | None


@dataclass
class _MediaWatch:
    """What the worker last reported for the current attachment."""

    token: int | None = None
    status: VlcStatus = "idle"
    duration_ms: int = -1


class VLCPlaybackBackend:
    """Streams attached URLs with libVLC on a dedicated worker thread."""

    def __init__(
        self, *, poll_interval_ms: int = 200, ready_poll_interval_ms: int = 50
    ) -> None:
        self._poll_interval = poll_interval_ms / 1000
        self._ready_poll_interval = ready_poll_interval_ms / 1000
        self._handler: Callable[[BackendEvent], Awaitable[None]] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._commands: queue.Queue[_Command] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._stopping = threading.Event()
        # Written by the worker thread only.
        self._current_token: int | None = None

    def set_event_handler(
        self, handler: Callable[[BackendEvent], Awaitable[None]]
    ) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self._thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        opened: asyncio.Future[None] = self._loop.create_future()
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._worker, args=(opened,), name=THREAD_NAME, daemon=True
        )
        self._thread.start()
        try:
            await opened
        except Exception:
            self._thread = None
            raise

    async def shutdown(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stopping.set()
        self._commands.put(_Command("wake", (), None))
        thread.join(timeout=JOIN_TIMEOUT_S)
        if thread.is_alive():
            raise RuntimeError(
                f"VLC backend thread did not stop within {JOIN_TIMEOUT_S} seconds."
            )
        self._thread = None

    async def attach(self, token: int, stream_url: str) -> int:
        """Start `stream_url` and wait until libVLC reports it playing."""
        await self._submit("attach", token, stream_url)
        seen_loading = False
        while True:
            status = await self._submit("get_state")
            if status == "playing":
                return int(await self._submit("get_duration_ms"))
            if status == "loading":
                seen_loading = True
            # A stale "stopped" from the previous media can precede "opening".
            elif status == "error" or (status == "ended" and seen_loading):
                raise RuntimeError(f"VLC could not play stream (state={status}).")
            await asyncio.sleep(self._ready_poll_interval)

    async def release(self) -> None:
        await self._submit("release")

    async def pause(self) -> None:
        await self._submit("pause")

    async def resume(self) -> None:
        await self._submit("resume")

    async def seek_ms(self, position_ms: int) -> None:
        await self._submit("seek_ms", position_ms)

    async def get_position_ms(self) -> int:
        return int(await self._submit("get_position_ms"))

    async def get_duration_ms(self) -> int:
        return int(await self._submit("get_duration_ms"))

    async def _submit(self, name: str, *args: Any) -> Any:
        thread = self._thread
        if self._loop is None or thread is None or not thread.is_alive():
            raise RuntimeError("VLC backend not started.")
        future: asyncio.Future[Any] = self._loop.create_future()
        self._commands.put(_Command(name, args, future))
        return await future

    def _worker(self, opened: asyncio.Future[None]) -> None:
        try:
            import vlc

            instance = vlc.Instance(*VLC_ARGS)
            player = instance.media_player_new()
        except Exception as exc:  # pragma: no cover - depends on VLC install
            self._reject(
                opened,
                RuntimeError(
                    f"VLC backend unavailable. Ensure VLC/libVLC is installed. ({exc})"
                ),
            )
            return

        self._settle(opened, None)
        watch = _MediaWatch()
        while not self._stopping.is_set():
            try:
                cmd: _Command | None = self._commands.get(timeout=self._poll_interval)
            except queue.Empty:
                cmd = None
            if cmd is not None and cmd.name != "wake":
                try:
                    self._settle(cmd.future, self._handle_command(cmd, instance, player))
                except Exception as exc:  # pragma: no cover - backend safety net
                    self._reject(cmd.future, exc)
            self._watch_media(player, watch)
        player.stop()

    def _watch_media(self, player: Any, watch: _MediaWatch) -> None:
        token = self._current_token
        if token != watch.token:
            watch.token = token
            watch.status = "idle"
            watch.duration_ms = -1
        if token is None:
            return
        status = _map_state(player)
        if status != watch.status:
            watch.status = status
            if status == "ended":
                self._emit_event(MediaEnded(token))
            elif status == "error":
                self._emit_event(BackendError(token, "VLC reported a media error."))
        if status in ("playing", "paused"):
            length = max(player.get_length(), 0)
            if length != watch.duration_ms:
                watch.duration_ms = length
                if length > 0:
                    self._emit_event(MediaChanged(token, length))

    def _handle_command(self, cmd: _Command, instance: Any, player: Any) -> Any:
        handler = _COMMANDS.get(cmd.name)
        if handler is None:
            raise ValueError(f"Unknown command {cmd.name}")
        return handler(self, instance, player, *cmd.args)

    def _cmd_attach(
        self, instance: Any, player: Any, token: int, stream_url: str
    ) -> None:
        player.set_media(instance.media_new(stream_url))
        player.play()
        self._current_token = token

    def _cmd_release(self, _instance: Any, player: Any) -> None:
        player.stop()
        self._current_token = None

    def _emit_event(self, event: BackendEvent) -> None:
        if self._handler is None or self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(
            cast(Coroutine[Any, Any, None], self._handler(event)), self._loop
        )

    def _settle(self, future: asyncio.Future[Any] | None, value: Any) -> None:
        if future is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(_resolve_future_result, future, value)

    def _reject(self, future: asyncio.Future[Any] | None, exc: Exception) -> None:
        if future is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(_resolve_future_exception, future, exc)


_COMMANDS: dict[str, Callable[..., Any]] = {
    "attach": VLCPlaybackBackend._cmd_attach,
    "release": VLCPlaybackBackend._cmd_release,
    "pause": lambda _self, _instance, player: player.set_pause(1),
    "resume": lambda _self, _instance, player: player.set_pause(0),
    "seek_ms": lambda _self, _instance, player, pos: player.set_time(int(pos)),
    "get_position_ms": lambda _self, _instance, player: max(player.get_time(), 0),
    "get_duration_ms": lambda _self, _instance, player: max(player.get_length(), 0),
    "get_state": lambda _self, _instance, player: _map_state(player),
}


def _resolve_future_result(future: asyncio.Future[Any], value: Any) -> None:
    # The awaiting coroutine may have been cancelled by a newer attachment.
    if not future.done():
        future.set_result(value)


def _resolve_future_exception(future: asyncio.Future[Any], exc: Exception) -> None:
    if not future.done():
        future.set_exception(exc)


def _map_state(player: Any) -> VlcStatus:
    try:
        state = player.get_state()
    except Exception:
        return "error"
    name = getattr(state, "name", str(state)).lower().rsplit(".", 1)[-1]
    if name in ("opening", "buffering"):
        return "loading"
    if name == "stopped":
        return "ended"
    if name in ("playing", "paused", "ended", "error"):
        return cast(VlcStatus, name)
    return "idle"
