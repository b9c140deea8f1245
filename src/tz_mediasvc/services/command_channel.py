"""Command boundary between session clients and the playback controller.

`LocalCommandChannel` serves clients on the controller's own event loop.
`ThreadCommandChannel` serves blocking clients on other threads and marshals
each command onto the controller loop, waiting for its acknowledgement.
Both raise `ChannelUnavailable` when the controller cannot be reached.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Awaitable
from typing import Callable, Protocol

from tz_mediasvc.errors import ChannelUnavailable
from tz_mediasvc.services.playback_controller import PlaybackController

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_S = 5.0


class CommandChannel(Protocol):
    """Remote-callable playback command surface."""

    async def play(self, media_ref: str) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def stop(self) -> None: ...


class LocalCommandChannel:
    """Command channel for clients sharing the controller's event loop."""

    def __init__(self, controller: PlaybackController) -> None:
        self._controller = controller
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def play(self, media_ref: str) -> None:
        self._ensure_available("play")
        await self._controller.play(media_ref)

    async def pause(self) -> None:
        self._ensure_available("pause")
        await self._controller.pause()

    async def resume(self) -> None:
        self._ensure_available("resume")
        await self._controller.resume()

    async def stop(self) -> None:
        self._ensure_available("stop")
        await self._controller.stop()

    def _ensure_available(self, command: str) -> None:
        if self._closed:
            raise ChannelUnavailable(f"Cannot {command}: command channel is closed.")
        if not self._controller.running:
            raise ChannelUnavailable(
                f"Cannot {command}: playback controller is not running."
            )


class ThreadCommandChannel:
    """Blocking command channel for clients on foreign threads.

    A command that misses its acknowledgement timeout raises
    `ChannelUnavailable` but is not withdrawn; it still completes on the
    controller loop.
    """

    def __init__(
        self,
        controller: PlaybackController,
        loop: asyncio.AbstractEventLoop,
        *,
        timeout_s: float = DEFAULT_COMMAND_TIMEOUT_S,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._controller = controller
        self._loop = loop
        self._timeout_s = timeout_s
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    def play(self, media_ref: str) -> None:
        self._submit("play", lambda: self._controller.play(media_ref))

    def pause(self) -> None:
        self._submit("pause", self._controller.pause)

    def resume(self) -> None:
        self._submit("resume", self._controller.resume)

    def stop(self) -> None:
        self._submit("stop", self._controller.stop)

    def _submit(self, command: str, call: Callable[[], Awaitable[None]]) -> None:
        if self._closed.is_set():
            raise ChannelUnavailable(f"Cannot {command}: command channel is closed.")
        loop = self._loop
        if loop.is_closed() or not loop.is_running():
            raise ChannelUnavailable(
                f"Cannot {command}: controller loop is not running."
            )
        if _running_loop() is loop:
            raise RuntimeError(
                "ThreadCommandChannel must not be used from the controller loop."
            )
        if not self._controller.running:
            raise ChannelUnavailable(
                f"Cannot {command}: playback controller is not running."
            )
        try:
            future = asyncio.run_coroutine_threadsafe(_invoke(call), loop)
        except RuntimeError as exc:
            raise ChannelUnavailable(f"Cannot {command}: {exc}") from exc
        try:
            future.result(timeout=self._timeout_s)
        except concurrent.futures.TimeoutError as exc:
            # Submitted commands are never withdrawn.
            logger.warning(
                "Command %s not acknowledged within %.1f seconds; left running.",
                command,
                self._timeout_s,
            )
            raise ChannelUnavailable(
                f"Cannot {command}: no acknowledgement within {self._timeout_s:.1f}s."
            ) from exc
        except concurrent.futures.CancelledError as exc:
            raise ChannelUnavailable(f"Cannot {command}: command cancelled.") from exc


async def _invoke(call: Callable[[], Awaitable[None]]) -> None:
    await call()


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
