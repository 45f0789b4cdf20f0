"""Video id to playable audio stream resolution backed by yt-dlp.

Resolution is stateless: every call performs a fresh lookup because stream URLs
are short-lived upstream. Selection prefers audio-oriented streams and then the
lowest video quality, since video streams are only used for their audio track.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse

import yt_dlp
from yt_dlp.utils import YoutubeDLError

from tunestream.services.playback_errors import ExtractionFailed, NoPlayableStream
from tunestream.utils.async_utils import run_blocking

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
ADAPTIVE_LABELS = ("audio", "hls")
PREFERRED_QUALITIES = ("240p", "360p", "720p", "1080p")
QUALITY_ORDER = ADAPTIVE_LABELS + PREFERRED_QUALITIES
FALLBACK_RANK = len(QUALITY_ORDER)
DEFAULT_YDL_OPTIONS: dict[str, Any] = {
    "quiet": True,
    "no_warnings": True,
    "skip_download": True,
    "noplaylist": True,
}

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}


@dataclass(frozen=True)
class StreamCandidate:
    """Resolved, time-limited stream URL for one `play()` call."""

    url: str
    quality_rank: int
    quality_label: str


class StreamResolver(Protocol):
    async def resolve(self, video_id: str) -> StreamCandidate: ...


def select_stream_candidate(streams: Mapping[str, str]) -> StreamCandidate | None:
    """Pick a stream from an ordered `quality label -> url` mapping.

    Adaptive/audio labels win, then the preferred qualities lowest first, then
    whichever candidate was encountered first.
    """
    for rank, label in enumerate(QUALITY_ORDER):
        url = streams.get(label)
        if url:
            return StreamCandidate(url=url, quality_rank=rank, quality_label=label)
    for label, url in streams.items():
        if url:
            return StreamCandidate(
                url=url, quality_rank=FALLBACK_RANK, quality_label=label
            )
    return None


def streams_from_formats(formats: Iterable[Mapping[str, Any]]) -> dict[str, str]:
    """Label yt-dlp formats that carry audio; first format per label wins."""
    streams: dict[str, str] = {}
    for index, fmt in enumerate(formats):
        url = fmt.get("url")
        if not isinstance(url, str) or not url:
            continue
        if fmt.get("acodec") == "none":
            continue
        streams.setdefault(_format_label(fmt, index), url)
    return streams


def normalize_video_id(value: str) -> str | None:
    """Return the 11-character video id from a bare id or a watch/short URL."""
    candidate = value.strip() if isinstance(value, str) else ""
    if _VIDEO_ID_RE.match(candidate):
        return candidate
    parsed = urlparse(candidate)
    if not parsed.netloc:
        return None
    host = parsed.netloc.lower()
    if host in _SHORT_HOSTS:
        candidate = parsed.path.lstrip("/").split("/", 1)[0]
    elif parsed.path.startswith("/shorts/"):
        candidate = parsed.path[len("/shorts/") :].split("/", 1)[0]
    else:
        candidate = parse_qs(parsed.query).get("v", [""])[0]
    return candidate if _VIDEO_ID_RE.match(candidate) else None


class YtDlpStreamResolver:
    """Resolve stream candidates with yt-dlp metadata extraction."""

    def __init__(
        self,
        *,
        ydl_options: Mapping[str, Any] | None = None,
        extract_info: Callable[[str], Any] | None = None,
    ) -> None:
        self._ydl_options = dict(DEFAULT_YDL_OPTIONS)
        if ydl_options:
            self._ydl_options.update(ydl_options)
        self._extract_info = extract_info or self._extract_with_ytdlp

    async def resolve(self, video_id: str) -> StreamCandidate:
        normalized = normalize_video_id(video_id)
        if normalized is None:
            raise ExtractionFailed(f"Invalid video id: {video_id!r}")
        url = WATCH_URL.format(video_id=normalized)
        try:
            info = await run_blocking(self._extract_info, url)
        except (YoutubeDLError, OSError) as exc:
            raise ExtractionFailed(str(exc)) from exc
        if not isinstance(info, Mapping):
            raise NoPlayableStream(f"No stream metadata returned for {normalized}.")
        candidate = select_stream_candidate(_streams_from_info(info))
        if candidate is None:
            raise NoPlayableStream(f"No stream with audio for {normalized}.")
        logger.debug(
            "Resolved %s to %s stream (rank %d).",
            normalized,
            candidate.quality_label,
            candidate.quality_rank,
        )
        return candidate

    def _extract_with_ytdlp(self, url: str) -> Any:
        with yt_dlp.YoutubeDL(self._ydl_options) as ydl:
            return ydl.extract_info(url, download=False)


def _streams_from_info(info: Mapping[str, Any]) -> dict[str, str]:
    formats = info.get("formats")
    if isinstance(formats, list):
        streams = streams_from_formats(
            fmt for fmt in formats if isinstance(fmt, Mapping)
        )
        if streams:
            return streams
    # Single-format results carry the stream on the top-level entry.
    return streams_from_formats([info])


def _format_label(fmt: Mapping[str, Any], index: int) -> str:
    if fmt.get("vcodec") == "none":
        return "audio"
    protocol = str(fmt.get("protocol") or "")
    if protocol.startswith("m3u8"):
        return "hls"
    height = fmt.get("height")
    if isinstance(height, int) and not isinstance(height, bool) and height > 0:
        return f"{height}p"
    return str(fmt.get("format_id") or f"format-{index}")
