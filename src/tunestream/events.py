"""Cross-module event models and the in-process event bus.

Dataclass events are used for session/service signaling. UI layers and
external collaborators subscribe to the bus instead of binding to session
attributes directly.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from tunestream.services.playback_session import PlaybackState, Track

logger = logging.getLogger(__name__)

EventHandler = Callable[[object], Awaitable[None]]
RouteChangeReason = Literal[
    "old_device_unavailable", "new_device_available", "category_change", "other"
]


@dataclass(frozen=True)
class PlaybackStateChanged:
    """Session event emitted whenever the playback state snapshot is replaced."""

    state: PlaybackState


@dataclass(frozen=True)
class TrackStarted:
    """Session event emitted when a track begins playing (recently-played hook)."""

    track: Track


@dataclass(frozen=True)
class AudioInterruptionBegan:
    """System event: another audio source took the output (call, alarm)."""


@dataclass(frozen=True)
class AudioInterruptionEnded:
    """System event: the interruption finished; `should_resume` is the OS hint."""

    should_resume: bool = False


@dataclass(frozen=True)
class AudioRouteChanged:
    """System event: the audio output route changed."""

    reason: RouteChangeReason = "other"


@dataclass(eq=False)
class _Subscription:
    handler: EventHandler
    event_types: tuple[type, ...]


class EventBus:
    """Async fan-out of events to subscribers, in subscription order."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self, handler: EventHandler, *event_types: type
    ) -> Callable[[], None]:
        """Register `handler`; returns a callable that removes the registration.

        With no `event_types` the handler receives every event.
        """
        subscription = _Subscription(handler=handler, event_types=event_types)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def publish(self, event: object) -> None:
        for subscription in list(self._subscriptions):
            if subscription.event_types and not isinstance(
                event, subscription.event_types
            ):
                continue
            try:
                await subscription.handler(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed for %s", type(event).__name__
                )
