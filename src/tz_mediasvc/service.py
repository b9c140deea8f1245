"""Service composition root.

`MediaService` wires the event channel, the playback controller and the
configured decoder, and hands out command channels to bound clients. Closing
a client's channel makes its later commands fail with `ChannelUnavailable`.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Union

from tz_mediasvc.runtime_config import ServiceConfig
from tz_mediasvc.services.command_channel import (
    LocalCommandChannel,
    ThreadCommandChannel,
)
from tz_mediasvc.services.decoder import DecoderFactory
from tz_mediasvc.services.event_channel import EventChannel, EventHandler, Subscription
from tz_mediasvc.services.fake_decoder import FakeDecoder
from tz_mediasvc.services.playback_controller import (
    PlaybackController,
    PlaybackSnapshot,
)
from tz_mediasvc.services.vlc_decoder import VLCDecoder

logger = logging.getLogger(__name__)

BoundChannel = Union[LocalCommandChannel, ThreadCommandChannel]


def build_decoder_factory(name: str) -> DecoderFactory:
    logger.info("Decoder selected: %s", name)
    if name == "vlc":
        return VLCDecoder
    return FakeDecoder


class MediaService:
    """Long-lived playback service with bind/unbind client lifecycle."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        decoder_factory: DecoderFactory | None = None,
    ) -> None:
        self._config = config or ServiceConfig()
        self._events = EventChannel()
        self._controller = PlaybackController(
            events=self._events,
            decoder_factory=decoder_factory
            or build_decoder_factory(self._config.decoder),
            sample_interval_s=self._config.sample_interval_s,
        )
        self._channels: list[BoundChannel] = []

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def controller(self) -> PlaybackController:
        return self._controller

    @property
    def bound_clients(self) -> int:
        return len(self._channels)

    def snapshot(self) -> PlaybackSnapshot:
        return self._controller.snapshot()

    async def start(self) -> None:
        await self._controller.start()

    async def shutdown(self) -> None:
        """Stop playback, disconnect every client and close the event channel."""
        for channel in list(self._channels):
            self.unbind(channel)
        await self._controller.shutdown()
        await self._events.close()

    def bind(self) -> LocalCommandChannel:
        """Return a command channel for a client on the service's loop."""
        channel = LocalCommandChannel(self._controller)
        self._channels.append(channel)
        logger.debug("Client bound (%d active).", len(self._channels))
        return channel

    def bind_threadsafe(self) -> ThreadCommandChannel:
        """Return a blocking command channel for a client on another thread."""
        loop = self._controller.loop or asyncio.get_running_loop()
        channel = ThreadCommandChannel(
            self._controller, loop, timeout_s=self._config.command_timeout_s
        )
        self._channels.append(channel)
        logger.debug("Threaded client bound (%d active).", len(self._channels))
        return channel

    def unbind(self, channel: BoundChannel) -> None:
        channel.close()
        if channel in self._channels:
            self._channels.remove(channel)
            logger.debug("Client unbound (%d active).", len(self._channels))

    def subscribe(self, handler: EventHandler) -> Subscription:
        return self._events.subscribe(handler)

    async def __aenter__(self) -> MediaService:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()
