"""Runtime configuration normalization helpers.

These helpers keep CLI flag interpretation deterministic across entrypoints.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

DECODER_NAMES = ("fake", "vlc")
DEFAULT_DECODER = "vlc"
SAMPLE_INTERVAL_MIN_S = 0.05
SAMPLE_INTERVAL_MAX_S = 10.0
DEFAULT_SAMPLE_INTERVAL_S = 1.0
DEFAULT_COMMAND_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class ServiceConfig:
    """Effective settings for one `MediaService` instance."""

    decoder: str = DEFAULT_DECODER
    sample_interval_s: float = DEFAULT_SAMPLE_INTERVAL_S
    command_timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S


def resolve_log_level(*, verbose: bool, quiet: bool) -> str:
    """Resolve effective log level from CLI flags.

    Precedence is deterministic: --quiet overrides --verbose.
    """
    if quiet:
        return "WARNING"
    if verbose:
        return "DEBUG"
    return "INFO"


def resolve_decoder_name(value: str | None) -> str:
    """Normalize a decoder name, falling back to the default engine."""
    if value is None:
        return DEFAULT_DECODER
    normalized = value.strip().lower()
    if normalized in DECODER_NAMES:
        return normalized
    return DEFAULT_DECODER


def normalize_sample_interval(value: float | None) -> float:
    """Clamp the position sampling interval to a supported range."""
    if value is None:
        return DEFAULT_SAMPLE_INTERVAL_S
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SAMPLE_INTERVAL_S
    if not math.isfinite(numeric):
        return DEFAULT_SAMPLE_INTERVAL_S
    return max(SAMPLE_INTERVAL_MIN_S, min(numeric, SAMPLE_INTERVAL_MAX_S))


def build_service_config(
    *,
    decoder: str | None = None,
    sample_interval_s: float | None = None,
    command_timeout_s: float | None = None,
) -> ServiceConfig:
    timeout = DEFAULT_COMMAND_TIMEOUT_S
    if command_timeout_s is not None and command_timeout_s > 0:
        timeout = float(command_timeout_s)
    return ServiceConfig(
        decoder=resolve_decoder_name(decoder),
        sample_interval_s=normalize_sample_interval(sample_interval_s),
        command_timeout_s=timeout,
    )
