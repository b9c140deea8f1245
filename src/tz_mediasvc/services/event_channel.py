"""Publish/subscribe boundary for controller status events.

Each subscriber owns a bounded queue and a delivery task: events arrive in
emission order per subscriber, and a slow or failing subscriber never delays
the controller or other subscribers. When a stalled subscriber's queue is full
the oldest pending event is dropped to make room for the newest.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from typing import Callable

from tz_mediasvc.events import PlaybackEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[PlaybackEvent], Awaitable[None]]

DEFAULT_MAX_PENDING = 256


class Subscription:
    """Delivery queue and task for one subscriber."""

    def __init__(
        self,
        channel: EventChannel,
        handler: EventHandler,
        *,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        if max_pending <= 0:
            raise ValueError("max_pending must be > 0")
        self._channel = channel
        self._handler = handler
        self._queue: asyncio.Queue[PlaybackEvent] = asyncio.Queue(maxsize=max_pending)
        self._dropped = 0
        self._task: asyncio.Task[None] | None = asyncio.create_task(
            self._deliver_loop(), name="event-subscription"
        )

    @property
    def active(self) -> bool:
        return self._task is not None

    @property
    def dropped(self) -> int:
        """Events discarded because this subscriber fell behind."""
        return self._dropped

    def offer(self, event: PlaybackEvent) -> None:
        if self._task is None:
            return
        if self._queue.full():
            stale = self._queue.get_nowait()
            self._queue.task_done()
            if self._dropped == 0:
                logger.warning("Event subscriber backlog full; dropping oldest events.")
            self._dropped += 1
            logger.debug("Dropped %s for stalled subscriber.", type(stale).__name__)
        self._queue.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been handed to the handler."""
        if self._task is None:
            return
        await self._queue.join()

    async def close(self) -> None:
        """Unsubscribe; queued events not yet delivered are dropped."""
        self._channel._discard(self)
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _deliver_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Event subscriber failed handling %s.", type(event).__name__
                )
            finally:
                self._queue.task_done()


class EventChannel:
    """Fan-out of playback events to zero or more subscribers."""

    def __init__(self, *, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        if max_pending <= 0:
            raise ValueError("max_pending must be > 0")
        self._max_pending = max_pending
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, handler: EventHandler) -> Subscription:
        """Register `handler`; must be called from the running event loop."""
        if self._closed:
            raise RuntimeError("Event channel is closed.")
        subscription = Subscription(self, handler, max_pending=self._max_pending)
        self._subscriptions.append(subscription)
        return subscription

    async def publish(self, event: PlaybackEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s on closed channel.", type(event).__name__)
            return
        for subscription in list(self._subscriptions):
            subscription.offer(event)

    async def drain(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.drain()

    async def close(self) -> None:
        if self._closed:
            return
        await self.drain()
        self._closed = True
        for subscription in list(self._subscriptions):
            await subscription.close()

    def _discard(self, subscription: Subscription) -> None:
        with suppress(ValueError):
            self._subscriptions.remove(subscription)
