"""Cancellable periodic position sampler."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from typing import Callable

logger = logging.getLogger(__name__)


class PositionSampler:
    """Run `tick` once per interval until cancelled.

    The first tick fires one interval after `start()`. After `cancel()` no new
    tick begins; a tick already past its sleep may still complete unless the
    task is interrupted at its next await.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[None]],
        *,
        interval_s: float = 1.0,
        name: str = "position-sampler",
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self._tick = tick
        self._interval_s = interval_s
        self._name = name
        self._cancelled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def running(self) -> bool:
        return (
            self._task is not None and not self._task.done() and not self._cancelled
        )

    def start(self) -> None:
        if self._task is not None:
            return
        self._cancelled = False
        self._task = asyncio.create_task(self._run(), name=self._name)

    def cancel(self) -> None:
        """Request cancellation; safe to call repeatedly."""
        self._cancelled = True
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel and wait until the sampler task has acknowledged."""
        self.cancel()
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        try:
            while not self._cancelled:
                await asyncio.sleep(self._interval_s)
                if self._cancelled:
                    return
                try:
                    await self._tick()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Position sampler tick failed.")
        except asyncio.CancelledError:
            return
