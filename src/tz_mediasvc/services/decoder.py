"""Decoder/renderer adapter contract and decoder-originated events.

`PlaybackController` drives decoders only through this protocol. Concrete
adapters (fake/VLC) translate engine callbacks into the events below and may
invoke the registered handler from any thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Union


@dataclass(frozen=True)
class DecoderReady:
    """Asynchronous prepare completed; media is ready to start."""

    duration_ms: int


@dataclass(frozen=True)
class DecoderFailed:
    """Decoder could not load or continue rendering the media."""

    message: str


@dataclass(frozen=True)
class DecoderFinished:
    """Rendering reached natural end-of-media."""

    pass


DecoderEvent = Union[DecoderReady, DecoderFailed, DecoderFinished]
DecoderEventHandler = Callable[[DecoderEvent], None]


class Decoder(Protocol):
    """Single-use decoder handle owned by one playback session."""

    def set_event_handler(self, handler: DecoderEventHandler | None) -> None: ...

    async def load(self, locator: str) -> None:
        """Start asynchronous preparation; readiness arrives as `DecoderReady`."""
        ...

    async def start(self) -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...

    async def get_position_ms(self) -> int: ...

    async def get_duration_ms(self) -> int: ...

    async def release(self) -> None:
        """Free engine resources. Later calls raise `DecoderReleasedError`."""
        ...


DecoderFactory = Callable[[], Decoder]
