"""Fake decoder for deterministic testing and the `--decoder fake` mode."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass

from tz_mediasvc.errors import DecoderReleasedError

from .decoder import (
    DecoderEvent,
    DecoderEventHandler,
    DecoderFailed,
    DecoderFinished,
    DecoderReady,
)


@dataclass
class _RenderState:
    locator: str | None = None
    loaded: bool = False
    rendering: bool = False
    position_ms: int = 0
    duration_ms: int = 0


class FakeDecoder:
    """In-memory decoder that simulates prepare latency and playback progress.

    With `auto_prepare=False` the test drives readiness explicitly through
    `complete_load()`, `fail_load()` and `finish()`.
    """

    def __init__(
        self,
        *,
        duration_ms: int = 180_000,
        prepare_delay_s: float = 0.0,
        tick_interval_ms: int = 50,
        auto_prepare: bool = True,
        auto_finish: bool = True,
        fail_locators: frozenset[str] = frozenset(),
    ) -> None:
        self._duration_ms = duration_ms
        self._prepare_delay_s = prepare_delay_s
        self._tick_interval_ms = tick_interval_ms
        self._auto_prepare = auto_prepare
        self._auto_finish = auto_finish
        self._fail_locators = fail_locators
        self._state = _RenderState()
        self._handler: DecoderEventHandler | None = None
        self._released = False
        self._prepare_task: asyncio.Task[None] | None = None
        self._ticker_task: asyncio.Task[None] | None = None
        self.calls: list[str] = []

    @property
    def locator(self) -> str | None:
        return self._state.locator

    @property
    def released(self) -> bool:
        return self._released

    @property
    def rendering(self) -> bool:
        return self._state.rendering

    def set_event_handler(self, handler: DecoderEventHandler | None) -> None:
        self._handler = handler

    async def load(self, locator: str) -> None:
        self._check_live()
        self.calls.append("load")
        self._state.locator = locator
        if not self._auto_prepare:
            return
        self._prepare_task = asyncio.create_task(self._prepare(locator))

    async def start(self) -> None:
        self._check_live()
        self.calls.append("start")
        if not self._state.loaded:
            return
        self._state.rendering = True
        if self._ticker_task is None:
            self._ticker_task = asyncio.create_task(self._ticker_loop())

    async def pause(self) -> None:
        self._check_live()
        self.calls.append("pause")
        self._state.rendering = False

    async def stop(self) -> None:
        self._check_live()
        self.calls.append("stop")
        self._state.rendering = False
        self._state.position_ms = 0
        await self._cancel_tasks()

    async def get_position_ms(self) -> int:
        self._check_live()
        return self._state.position_ms

    async def get_duration_ms(self) -> int:
        self._check_live()
        return self._state.duration_ms if self._state.loaded else -1

    async def release(self) -> None:
        if self._released:
            return
        self.calls.append("release")
        await self._cancel_tasks()
        self._released = True
        self._handler = None

    def complete_load(self, duration_ms: int | None = None) -> None:
        """Signal readiness as the engine callback would."""
        self._state.loaded = True
        self._state.duration_ms = (
            duration_ms if duration_ms is not None else self._duration_ms
        )
        self._emit(DecoderReady(self._state.duration_ms))

    def fail_load(self, message: str = "unsupported media") -> None:
        self._emit(DecoderFailed(message))

    def finish(self) -> None:
        self._state.rendering = False
        self._state.position_ms = self._state.duration_ms
        self._emit(DecoderFinished())

    def advance(self, delta_ms: int) -> None:
        self._state.position_ms += delta_ms

    async def _prepare(self, locator: str) -> None:
        if self._prepare_delay_s > 0:
            await asyncio.sleep(self._prepare_delay_s)
        if locator in self._fail_locators:
            self.fail_load(f"cannot open {locator}")
            return
        self.complete_load()

    async def _ticker_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._tick_interval_ms / 1000)
                if not self._state.rendering:
                    continue
                self._state.position_ms += self._tick_interval_ms
                duration = self._state.duration_ms
                if self._auto_finish and duration > 0:
                    if self._state.position_ms >= duration:
                        self.finish()
        except asyncio.CancelledError:
            pass

    async def _cancel_tasks(self) -> None:
        for task in (self._prepare_task, self._ticker_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._prepare_task = None
        self._ticker_task = None

    def _check_live(self) -> None:
        if self._released:
            raise DecoderReleasedError("Decoder handle already released.")

    def _emit(self, event: DecoderEvent) -> None:
        if self._handler is None:
            return
        self._handler(event)
