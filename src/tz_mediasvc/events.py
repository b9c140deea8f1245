"""Status events published by the playback controller.

Subscribers receive these through `tz_mediasvc.services.event_channel`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from tz_mediasvc.services.playback_controller import PlaybackState


@dataclass(frozen=True)
class DurationKnown:
    """Media duration resolved by the decoder; emitted once per prepare."""

    duration_ms: int


@dataclass(frozen=True)
class PositionUpdate:
    """Sampler tick reading.

    `position_ms` may exceed `duration_ms` briefly near end-of-track.
    """

    position_ms: int
    duration_ms: int


@dataclass(frozen=True)
class LoadFailed:
    """Decoder could not open the requested locator."""

    media_ref: str
    message: str


@dataclass(frozen=True)
class StateChanged:
    """Controller entered a new playback state."""

    state: PlaybackState
    media_ref: str | None


@dataclass(frozen=True)
class PlaybackFinished:
    """Session reached natural end-of-media."""

    media_ref: str


@dataclass(frozen=True)
class PlaybackError:
    """Decoder failed after the session had started playing."""

    media_ref: str
    message: str


PlaybackEvent = Union[
    DurationKnown,
    PositionUpdate,
    LoadFailed,
    StateChanged,
    PlaybackFinished,
    PlaybackError,
]
