"""Playback backend contracts and event payloads.

`PlaybackSession` depends on this protocol to stay engine-agnostic. Concrete
implementations (fake/VLC) translate engine-specific behavior into these shared
commands and events. Every attachment carries the session's generation token so
events from replaced media can be told apart from current ones.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class BackendEvent:
    """Marker base type for backend-originated events."""

    token: int


@dataclass(frozen=True)
class MediaChanged(BackendEvent):
    """Duration of the attached media became known or changed."""

    duration_ms: int


@dataclass(frozen=True)
class MediaEnded(BackendEvent):
    """Attached media played through to its natural end."""

    pass


@dataclass(frozen=True)
class BackendError(BackendEvent):
    """Backend-reported runtime error for the attached media."""

    message: str


class PlaybackBackend(Protocol):
    """Media engine protocol consumed by `PlaybackSession`."""

    def set_event_handler(
        self, handler: Callable[[BackendEvent], Awaitable[None]]
    ) -> None: ...

    async def start(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def attach(self, token: int, stream_url: str) -> int:
        """Open `stream_url`, start playing once ready, return duration in ms."""
        ...

    async def release(self) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def seek_ms(self, position_ms: int) -> None: ...

    async def get_position_ms(self) -> int: ...

    async def get_duration_ms(self) -> int: ...
