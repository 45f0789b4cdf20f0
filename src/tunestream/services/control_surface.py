"""External control surface: hardware transport commands and system events.

Commands come from the host (lock-screen style transport buttons, key
bindings) and answer `"success"` or `"command_failed"`. System disruption
events arrive on the event bus; `attach()`/`detach()` pair the subscription
with the surface's lifetime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Literal, Union

from tunestream.events import (
    AudioInterruptionBegan,
    AudioInterruptionEnded,
    AudioRouteChanged,
    EventBus,
)
from tunestream.services.playback_session import PlaybackSession

logger = logging.getLogger(__name__)

CommandResult = Literal["success", "command_failed"]
DEFAULT_SKIP_INTERVAL_S = 15.0


@dataclass(frozen=True)
class PlayCommand:
    pass


@dataclass(frozen=True)
class PauseCommand:
    pass


@dataclass(frozen=True)
class TogglePlayPauseCommand:
    pass


@dataclass(frozen=True)
class ChangePlaybackPositionCommand:
    position_seconds: float


@dataclass(frozen=True)
class SkipForwardCommand:
    interval_seconds: float = DEFAULT_SKIP_INTERVAL_S


@dataclass(frozen=True)
class SkipBackwardCommand:
    interval_seconds: float = DEFAULT_SKIP_INTERVAL_S


TransportCommand = Union[
    PlayCommand,
    PauseCommand,
    TogglePlayPauseCommand,
    ChangePlaybackPositionCommand,
    SkipForwardCommand,
    SkipBackwardCommand,
]


def skip_target_seconds(
    current_seconds: float, duration_seconds: float, delta_seconds: float
) -> float:
    """Return `current + delta` clamped to `[0, duration]`."""
    return max(0.0, min(current_seconds + delta_seconds, duration_seconds))


class ControlSurface:
    """Routes transport commands and system events into the playback session."""

    def __init__(self, session: PlaybackSession, bus: EventBus) -> None:
        self._session = session
        self._bus = bus
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._bus.subscribe(
            self._handle_system_event,
            AudioInterruptionBegan,
            AudioInterruptionEnded,
            AudioRouteChanged,
        )

    def detach(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None

    async def handle_command(self, command: TransportCommand) -> CommandResult:
        state = self._session.state
        if state.current_track is None or not state.has_active_media:
            logger.debug("Transport command %s without active session", command)
            return "command_failed"
        if isinstance(command, TogglePlayPauseCommand):
            outcome = await self._session.toggle_playback()
        elif isinstance(command, PlayCommand):
            outcome = await self._session.resume()
        elif isinstance(command, PauseCommand):
            outcome = await self._session.pause()
        elif isinstance(command, ChangePlaybackPositionCommand):
            if state.duration_seconds <= 0:
                return "command_failed"
            outcome = await self._session.seek(
                command.position_seconds / state.duration_seconds
            )
        elif isinstance(command, (SkipForwardCommand, SkipBackwardCommand)):
            if state.duration_seconds <= 0:
                return "command_failed"
            delta = abs(command.interval_seconds)
            if isinstance(command, SkipBackwardCommand):
                delta = -delta
            target = skip_target_seconds(
                state.position_seconds, state.duration_seconds, delta
            )
            outcome = await self._session.seek(target / state.duration_seconds)
        else:
            logger.warning("Unsupported transport command: %r", command)
            return "command_failed"
        return "success" if outcome == "applied" else "command_failed"

    async def _handle_system_event(self, event: object) -> None:
        if self._session.state.current_track is None:
            return
        if isinstance(event, AudioInterruptionBegan):
            logger.info("Audio interruption began; pausing.")
            await self._session.pause()
        elif isinstance(event, AudioInterruptionEnded):
            if event.should_resume:
                logger.info("Audio interruption ended; resuming.")
                await self._session.resume()
        elif isinstance(event, AudioRouteChanged):
            if event.reason == "old_device_unavailable":
                logger.info("Audio output device removed; pausing.")
                await self._session.pause()
