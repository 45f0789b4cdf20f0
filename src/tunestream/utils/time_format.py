"""Time formatting helpers for now-playing displays."""

from __future__ import annotations

import math


def format_time(seconds: float) -> str:
    """Format seconds as M:SS, truncating fractional seconds."""
    total_seconds = _coerce_seconds(seconds)
    minutes = total_seconds // 60
    secs = total_seconds % 60
    return f"{minutes}:{secs:02d}"


def format_time_pair(position_s: float, duration_s: float) -> tuple[str, str]:
    """Format position and duration; unknown duration renders a placeholder."""
    position = format_time(position_s)
    if _coerce_seconds(duration_s) <= 0:
        return position, "-:--"
    return position, format_time(duration_s)


def _coerce_seconds(value: float) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
