"""Runtime configuration: CLI flag normalization and persisted playback settings.

The settings loader is tolerant of invalid/missing values so upgrades and
partial/corrupt writes degrade to safe defaults instead of aborting startup.
"""

from __future__ import annotations

import json
import logging
import math
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

logger = logging.getLogger(__name__)

BACKEND_NAMES = ("fake", "vlc")
DEFAULT_BACKEND = "fake"


@dataclass(frozen=True)
class PlaybackSettings:
    """Persisted settings applied when the playback runtime is built."""

    backend: str = DEFAULT_BACKEND
    sample_interval_s: float = 0.5
    skip_interval_s: float = 15.0
    resolve_timeout_s: float = 30.0
    attach_timeout_s: float = 15.0
    log_level: str = "INFO"


def resolve_log_level(*, verbose: bool, quiet: bool, default: str = "INFO") -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose, and either flag
    overrides the configured `default`.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return default


def resolve_backend_name(cli_backend: str | None, settings_backend: str | None) -> str:
    """CLI choice wins over settings; unknown names fall back to the fake backend."""
    for candidate in (cli_backend, settings_backend):
        if isinstance(candidate, str):
            normalized = candidate.strip().lower()
            if normalized in BACKEND_NAMES:
                return normalized
    return DEFAULT_BACKEND


def _coerce_settings(data: dict[str, Any]) -> PlaybackSettings:
    defaults = PlaybackSettings()

    def _float_in_range(key: str, default: float, low: float, high: float) -> float:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return default
        numeric = float(value)
        if not math.isfinite(numeric):
            return default
        return max(low, min(numeric, high))

    def _str_or_default(key: str, default: str) -> str:
        value = data.get(key)
        return value if isinstance(value, str) and value.strip() else default

    return PlaybackSettings(
        backend=_str_or_default("backend", defaults.backend),
        sample_interval_s=_float_in_range(
            "sample_interval_s", defaults.sample_interval_s, 0.05, 5.0
        ),
        skip_interval_s=_float_in_range(
            "skip_interval_s", defaults.skip_interval_s, 1.0, 300.0
        ),
        resolve_timeout_s=_float_in_range(
            "resolve_timeout_s", defaults.resolve_timeout_s, 1.0, 600.0
        ),
        attach_timeout_s=_float_in_range(
            "attach_timeout_s", defaults.attach_timeout_s, 1.0, 600.0
        ),
        log_level=_str_or_default("log_level", defaults.log_level).upper(),
    )


def load_settings_with_notice(path: Path) -> tuple[PlaybackSettings, str | None]:
    """Load settings and return an optional user-facing notice."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("Settings file missing at %s; using defaults.", path)
        return PlaybackSettings(), None
    except OSError as exc:
        logger.warning("Failed to read settings %s: %s; using defaults.", path, exc)
        return (
            PlaybackSettings(),
            "Playback settings were reset to defaults.\n"
            "Likely cause: settings file is unreadable due to permissions or IO issues.\n"
            f"Next step: verify access to '{path}' and restart.",
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Settings file at %s is invalid JSON; using defaults.", path)
        return (
            PlaybackSettings(),
            "Playback settings were reset to defaults.\n"
            "Likely cause: settings file is corrupt or partially written.\n"
            f"Next step: remove or repair '{path}' and restart.",
        )

    if not isinstance(data, dict):
        logger.warning("Settings file at %s is not a JSON object.", path)
        return (
            PlaybackSettings(),
            "Playback settings were reset to defaults.\n"
            "Likely cause: settings file format is invalid for this version.\n"
            f"Next step: remove '{path}' and restart.",
        )

    return _coerce_settings(data), None


def load_settings(path: Path) -> PlaybackSettings:
    settings, _notice = load_settings_with_notice(path)
    return settings


def save_settings(path: Path, settings: PlaybackSettings) -> None:
    """Persist settings atomically via write-then-replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{uuid4().hex}.tmp")
    payload = json.dumps(asdict(settings), indent=2, sort_keys=True)
    try:
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(path)
    finally:
        with suppress(OSError):
            tmp_path.unlink()
