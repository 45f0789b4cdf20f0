"""Playback error taxonomy surfaced through `PlaybackState.last_error`.

Resolver and backend failures are normalized into these types at the session
boundary so subscribers never see raw upstream exceptions.
"""

from __future__ import annotations


def format_user_error(
    *, what_failed: str, likely_cause: str, next_step: str, detail: str | None = None
) -> str:
    message = f"{what_failed}\nLikely cause: {likely_cause}\nNext step: {next_step}"
    if detail:
        message = f"{message}\nDetails: {detail}"
    return message


class PlaybackError(Exception):
    """Base type for non-fatal playback failures."""

    what_failed = "Playback failed."
    likely_cause = "Unexpected playback failure."
    next_step = "Retry playback."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.what_failed)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return format_user_error(
            what_failed=self.what_failed,
            likely_cause=self.likely_cause,
            next_step=self.next_step,
            detail=self.detail,
        )


class ExtractionFailed(PlaybackError):
    what_failed = "Failed to look up the audio stream for this track."
    likely_cause = "Network failure, invalid video id, or upstream extraction error."
    next_step = "Check the connection and the video id, then retry."


class NoPlayableStream(PlaybackError):
    what_failed = "No playable audio stream was found for this track."
    likely_cause = "The video has no stream carrying audio or is restricted."
    next_step = "Pick another track or retry later."


class EngineInitializationFailed(PlaybackError):
    what_failed = "Failed to start playback of the resolved stream."
    likely_cause = "Media engine could not open or buffer the stream URL."
    next_step = "Retry playback; the stream URL may have expired."


class EngineRuntimeError(PlaybackError):
    what_failed = "Playback stopped because the media engine reported an error."
    likely_cause = "Stream interrupted, codec failure, or network drop."
    next_step = "Retry playback."


class AudioRouteError(PlaybackError):
    what_failed = "Failed to configure the audio output."
    likely_cause = "Media engine runtime is missing or no output device is available."
    next_step = "Install VLC/libVLC or check the audio device, then restart."


class NoActiveSession(PlaybackError):
    what_failed = "No track is loaded."
    likely_cause = "Transport command issued before playback started."
    next_step = "Start playback of a track first."
