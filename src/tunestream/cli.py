"""Command-line interface for tunestream: play one track headlessly."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .events import PlaybackStateChanged
from .logging_utils import setup_logging
from .paths import log_dir, settings_path
from .runtime import PlaybackRuntime
from .runtime_config import (
    BACKEND_NAMES,
    PlaybackSettings,
    load_settings_with_notice,
    resolve_log_level,
)
from .services.playback_session import PlaybackState, Track
from .services.stream_resolver import normalize_video_id

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PLAYBACK_FAILED = 2
TERMINAL_LIFECYCLES = frozenset({"ended", "failed"})


def add_common_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Add the flags and track arguments shared by both entry points."""
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument(
        "--backend",
        choices=BACKEND_NAMES,
        help="Playback backend to use (fake or vlc).",
    )
    parser.add_argument("video", help="Video id or watch URL to play")
    parser.add_argument("--title", help="Title shown as now playing")
    parser.add_argument("--artist", default="Unknown artist", help="Artist name")
    parser.add_argument("--thumbnail", default="", help="Artwork URL")
    return parser


def build_parser() -> argparse.ArgumentParser:
    return add_common_arguments(
        argparse.ArgumentParser(
            prog="tunestream",
            description="Stream the audio of a video to the speakers.",
        )
    )


def configure_logging(args: argparse.Namespace) -> PlaybackSettings:
    """Load settings and set up logging; flags override the configured level."""
    settings, notice = load_settings_with_notice(settings_path())
    level = resolve_log_level(
        verbose=args.verbose, quiet=args.quiet, default=settings.log_level
    )
    setup_logging(
        log_dir=log_dir(),
        level=level,
        log_file=Path(args.log_file) if args.log_file else None,
    )
    if notice:
        logger.warning(notice)
    return settings


def track_from_args(args: argparse.Namespace) -> Track:
    video_id = normalize_video_id(args.video) or args.video
    thumbnail = args.thumbnail or (
        f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"
        if normalize_video_id(args.video)
        else ""
    )
    return Track(
        id=video_id,
        title=args.title or video_id,
        artist=args.artist,
        thumbnail_url=thumbnail,
        source_video_id=video_id,
    )


async def play_until_done(runtime: PlaybackRuntime, track: Track) -> PlaybackState:
    """Play `track` and wait for it to end or fail."""
    done = asyncio.Event()

    async def on_state(event: object) -> None:
        assert isinstance(event, PlaybackStateChanged)
        if event.state.lifecycle in TERMINAL_LIFECYCLES:
            done.set()

    unsubscribe = runtime.bus.subscribe(on_state, PlaybackStateChanged)
    try:
        await runtime.session.play(track)
        await done.wait()
    finally:
        unsubscribe()
    return runtime.session.state


async def _run(args: argparse.Namespace, settings: PlaybackSettings) -> int:
    async with PlaybackRuntime(settings=settings, backend_name=args.backend) as runtime:
        if runtime.notice:
            logger.warning(runtime.notice)
        state = await play_until_done(runtime, track_from_args(args))
    if state.lifecycle == "failed" and state.last_error is not None:
        print(state.last_error.user_message, file=sys.stderr)
        return EXIT_PLAYBACK_FAILED
    return EXIT_OK


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    try:
        settings = configure_logging(args)
        logger.info("Starting tunestream CLI")
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_OK
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
