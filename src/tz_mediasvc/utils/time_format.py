"""Time formatting helpers for console output."""

from __future__ import annotations

import math

HOUR_MS = 3_600_000


def format_time_ms(ms: int, *, force_hours: bool = False) -> str:
    """Format milliseconds as MM:SS, or H:MM:SS when needed."""
    total_seconds = _coerce_ms(ms) // 1000
    hours = total_seconds // 3600
    seconds = total_seconds % 60
    if hours > 0 or force_hours:
        minutes = (total_seconds // 60) % 60
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{total_seconds // 60:02d}:{seconds:02d}"


def format_progress(position_ms: int, duration_ms: int) -> str:
    """Format `position / duration`; unknown durations render as dashes."""
    hours_mode = max(_coerce_ms(position_ms), _coerce_ms(duration_ms)) >= HOUR_MS
    position = format_time_ms(position_ms, force_hours=hours_mode)
    if duration_ms <= 0:
        placeholder = "--:--:--" if hours_mode else "--:--"
        return f"{position} / {placeholder}"
    return f"{position} / {format_time_ms(duration_ms, force_hours=hours_mode)}"


def _coerce_ms(value: int) -> int:
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(numeric):
        return 0
    return max(0, int(numeric))
