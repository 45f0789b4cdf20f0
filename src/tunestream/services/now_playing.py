"""Now-playing metadata publishing.

Cheap fields are pushed synchronously on every position tick and transport
change. Artwork is fetched on a separate task per track and only re-pushes the
latest snapshot once decoded, so a slow or failing fetch never delays the
metadata push or touches playback state.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Protocol

from tunestream.services.artwork import ARTWORK_ERRORS, Artwork, ArtworkLoader
from tunestream.utils.time_format import format_time_pair

if TYPE_CHECKING:
    from tunestream.services.playback_session import PlaybackState, Track

logger = logging.getLogger(__name__)

PUBLISHABLE_LIFECYCLES = frozenset({"playing", "paused", "ended"})


@dataclass(frozen=True)
class NowPlayingSnapshot:
    """Metadata shown by the host's now-playing surface."""

    title: str
    artist: str
    elapsed_seconds: float
    duration_seconds: float
    playback_rate: float
    artwork: Artwork | None = None


class NowPlayingSurface(Protocol):
    """Host facility that displays now-playing metadata; last write wins."""

    def set_now_playing(self, snapshot: NowPlayingSnapshot) -> None: ...


class LoggingNowPlayingSurface:
    """Surface for headless runs that logs each distinct snapshot."""

    def __init__(self) -> None:
        self.last_snapshot: NowPlayingSnapshot | None = None

    def set_now_playing(self, snapshot: NowPlayingSnapshot) -> None:
        previous = self.last_snapshot
        self.last_snapshot = snapshot
        if (
            previous is not None
            and previous.title == snapshot.title
            and int(previous.elapsed_seconds) == int(snapshot.elapsed_seconds)
            and previous.playback_rate == snapshot.playback_rate
            and (previous.artwork is None) == (snapshot.artwork is None)
        ):
            return
        elapsed, duration = format_time_pair(
            snapshot.elapsed_seconds, snapshot.duration_seconds
        )
        logger.info(
            "Now playing: %s - %s [%s/%s]%s%s",
            snapshot.artist,
            snapshot.title,
            elapsed,
            duration,
            "" if snapshot.playback_rate else " (paused)",
            " (artwork)" if snapshot.artwork is not None else "",
        )


def snapshot_from_state(
    state: PlaybackState, artwork: Artwork | None = None
) -> NowPlayingSnapshot | None:
    """Derive a snapshot, or `None` when the state has nothing to display."""
    track = state.current_track
    if track is None or state.lifecycle not in PUBLISHABLE_LIFECYCLES:
        return None
    return NowPlayingSnapshot(
        title=track.title,
        artist=track.artist,
        elapsed_seconds=state.position_seconds,
        duration_seconds=state.duration_seconds,
        playback_rate=1.0 if state.is_playing else 0.0,
        artwork=artwork,
    )


class NowPlayingPublisher:
    """Pushes snapshots derived from playback state to a surface."""

    def __init__(
        self,
        surface: NowPlayingSurface,
        *,
        artwork_loader: ArtworkLoader | None = None,
    ) -> None:
        self._surface = surface
        self._artwork_loader = artwork_loader
        self._last_snapshot: NowPlayingSnapshot | None = None
        self._last_track_id: str | None = None
        self._artwork_track_id: str | None = None
        self._artwork: Artwork | None = None
        self._artwork_task: asyncio.Task[None] | None = None

    @property
    def last_snapshot(self) -> NowPlayingSnapshot | None:
        return self._last_snapshot

    def publish(self, state: PlaybackState) -> NowPlayingSnapshot | None:
        track = state.current_track
        artwork = (
            self._artwork
            if track is not None and track.id == self._artwork_track_id
            else None
        )
        snapshot = snapshot_from_state(state, artwork)
        if snapshot is None or track is None:
            return None
        self._last_snapshot = snapshot
        self._last_track_id = track.id
        self._surface.set_now_playing(snapshot)
        self._ensure_artwork(track)
        return snapshot

    async def aclose(self) -> None:
        await self._cancel_artwork_task()
        if self._artwork_loader is not None:
            await self._artwork_loader.aclose()

    def _ensure_artwork(self, track: Track) -> None:
        if self._artwork_loader is None or not track.thumbnail_url:
            return
        if self._artwork_track_id == track.id:
            return
        if self._artwork_task is not None and not self._artwork_task.done():
            self._artwork_task.cancel()
        self._artwork_track_id = track.id
        self._artwork = None
        self._artwork_task = asyncio.create_task(self._load_artwork(track))

    async def _load_artwork(self, track: Track) -> None:
        assert self._artwork_loader is not None
        try:
            artwork = await self._artwork_loader.load(track.thumbnail_url)
        except ARTWORK_ERRORS as exc:
            logger.warning(
                "Artwork fetch failed for track %s (%s): %s",
                track.id,
                track.thumbnail_url,
                exc,
            )
            return
        if self._artwork_track_id != track.id:
            return
        self._artwork = artwork
        if self._last_snapshot is None or self._last_track_id != track.id:
            return
        snapshot = replace(self._last_snapshot, artwork=artwork)
        self._last_snapshot = snapshot
        self._surface.set_now_playing(snapshot)

    async def _cancel_artwork_task(self) -> None:
        task = self._artwork_task
        self._artwork_task = None
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
