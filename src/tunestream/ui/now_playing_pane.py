"""Terminal now-playing surface."""

from __future__ import annotations

from rich.text import Text
from textual.widgets import Static

from tunestream.services.now_playing import NowPlayingSnapshot
from tunestream.utils.time_format import format_time_pair

BAR_WIDTH = 40


def time_fraction(elapsed_s: float, duration_s: float) -> float:
    if duration_s <= 0:
        return 0.0
    return max(0.0, min(elapsed_s / duration_s, 1.0))


def progress_bar(elapsed_s: float, duration_s: float, width: int = BAR_WIDTH) -> str:
    width = max(1, width)
    filled = int(time_fraction(elapsed_s, duration_s) * width)
    return "█" * filled + "░" * (width - filled)


def render_now_playing(
    snapshot: NowPlayingSnapshot | None, width: int = BAR_WIDTH
) -> Text:
    if snapshot is None:
        return Text("Not Playing", style="dim")
    elapsed, duration = format_time_pair(
        snapshot.elapsed_seconds, snapshot.duration_seconds
    )
    icon = "▶" if snapshot.playback_rate > 0 else "⏸"
    text = Text()
    text.append(f"{icon} {snapshot.title}\n", style="bold")
    text.append(f"{snapshot.artist}\n", style="dim")
    text.append(progress_bar(snapshot.elapsed_seconds, snapshot.duration_seconds, width))
    text.append(f" {elapsed}/{duration}")
    if snapshot.artwork is not None:
        text.append(
            f"\nArtwork {snapshot.artwork.width}x{snapshot.artwork.height}",
            style="dim",
        )
    return text


class NowPlayingPane(Static):
    """Displays the latest snapshot pushed by the now-playing publisher."""

    DEFAULT_CSS = """
    NowPlayingPane {
        height: auto;
        padding: 1 2;
    }
    """

    def __init__(self, **kwargs) -> None:
        super().__init__(render_now_playing(None), **kwargs)
        self.snapshot: NowPlayingSnapshot | None = None

    def set_now_playing(self, snapshot: NowPlayingSnapshot) -> None:
        self.snapshot = snapshot
        self.update(render_now_playing(snapshot))
