"""Process-wide playback runtime: builds, starts and tears down the services.

Exactly one `PlaybackRuntime` is created per application instance. Consumers
(CLI, TUI) receive its bus, session and control surface by injection instead of
looking up a global.
"""

from __future__ import annotations

import logging
from typing import Callable

from tunestream.events import EventBus
from tunestream.runtime_config import PlaybackSettings, resolve_backend_name
from tunestream.services.artwork import ArtworkLoader
from tunestream.services.control_surface import ControlSurface
from tunestream.services.fake_backend import FakePlaybackBackend
from tunestream.services.now_playing import (
    LoggingNowPlayingSurface,
    NowPlayingPublisher,
    NowPlayingSurface,
)
from tunestream.services.playback_backend import PlaybackBackend
from tunestream.services.playback_errors import AudioRouteError
from tunestream.services.playback_session import PlaybackSession
from tunestream.services.stream_resolver import StreamResolver, YtDlpStreamResolver
from tunestream.services.vlc_backend import VLCPlaybackBackend

logger = logging.getLogger(__name__)


def build_backend(name: str) -> PlaybackBackend:
    logger.info("Playback backend selected: %s", name)
    if name == "vlc":
        return VLCPlaybackBackend()
    return FakePlaybackBackend()


class PlaybackRuntime:
    """Owns the single bus/session/control-surface set for the process."""

    def __init__(
        self,
        *,
        settings: PlaybackSettings | None = None,
        backend_name: str | None = None,
        surface: NowPlayingSurface | None = None,
        resolver: StreamResolver | None = None,
        artwork_loader: ArtworkLoader | None = None,
        backend_factory: Callable[[str], PlaybackBackend] = build_backend,
        fallback_to_fake: bool = True,
    ) -> None:
        self.settings = settings or PlaybackSettings()
        self.backend_name = resolve_backend_name(backend_name, self.settings.backend)
        self.bus = EventBus()
        self.surface = surface or LoggingNowPlayingSurface()
        self.publisher = NowPlayingPublisher(
            self.surface, artwork_loader=artwork_loader or ArtworkLoader()
        )
        self._resolver = resolver or YtDlpStreamResolver()
        self._backend_factory = backend_factory
        self._fallback_to_fake = fallback_to_fake
        self.notice: str | None = None
        self.session = self._build_session(self.backend_name)
        self.control_surface = ControlSurface(self.session, self.bus)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        try:
            await self.session.start()
        except AudioRouteError as exc:
            if not self._fallback_to_fake or self.backend_name == "fake":
                raise
            logger.warning(
                "Backend %s unavailable (%s); using fake backend.",
                self.backend_name,
                exc.detail,
            )
            self.notice = exc.user_message
            self.backend_name = "fake"
            self.session = self._build_session(self.backend_name)
            self.control_surface = ControlSurface(self.session, self.bus)
            await self.session.start()
        self.control_surface.attach()
        self._started = True

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        self.control_surface.detach()
        await self.session.shutdown()
        await self.publisher.aclose()

    async def __aenter__(self) -> PlaybackRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    def _build_session(self, backend_name: str) -> PlaybackSession:
        return PlaybackSession(
            emit_event=self.bus.publish,
            resolver=self._resolver,
            backend=self._backend_factory(backend_name),
            publisher=self.publisher,
            sample_interval_s=self.settings.sample_interval_s,
            resolve_timeout_s=self.settings.resolve_timeout_s,
            attach_timeout_s=self.settings.attach_timeout_s,
        )
