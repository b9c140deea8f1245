"""Playback coordination between remote commands and a decoder handle.

`PlaybackController` owns the single active `Session`: its decoder, its state
and its position sampler. Commands, decoder callbacks and sampler ticks all
mutate that session under one `asyncio.Lock`, and every event is published
while the lock is held so subscribers observe transitions in order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from contextlib import suppress
from dataclasses import dataclass
from functools import partial
from typing import Callable, Literal

from tz_mediasvc.errors import DecoderError
from tz_mediasvc.events import (
    DurationKnown,
    LoadFailed,
    PlaybackError,
    PlaybackFinished,
    PositionUpdate,
    StateChanged,
)
from tz_mediasvc.services.decoder import (
    Decoder,
    DecoderEvent,
    DecoderFactory,
    DecoderFailed,
    DecoderFinished,
    DecoderReady,
)
from tz_mediasvc.services.event_channel import EventChannel
from tz_mediasvc.services.position_sampler import PositionSampler

logger = logging.getLogger(__name__)

PlaybackState = Literal["idle", "preparing", "playing", "paused", "stopped"]
DURATION_UNKNOWN = -1


@dataclass
class Session:
    """One playback attempt for one media locator."""

    media_ref: str
    generation: int
    decoder: Decoder | None
    state: PlaybackState = "preparing"
    duration_ms: int = DURATION_UNKNOWN
    sampler: PositionSampler | None = None
    pause_requested: bool = False


@dataclass(frozen=True)
class PlaybackSnapshot:
    """Point-in-time view of controller state for observers."""

    state: PlaybackState
    media_ref: str | None
    duration_ms: int
    generation: int
    sampling: bool


class PlaybackController:
    """Owns the active session and applies commands and decoder callbacks."""

    def __init__(
        self,
        *,
        events: EventChannel,
        decoder_factory: DecoderFactory,
        sample_interval_s: float = 1.0,
    ) -> None:
        if sample_interval_s <= 0:
            raise ValueError("sample_interval_s must be > 0")
        self._events = events
        self._decoder_factory = decoder_factory
        self._sample_interval_s = sample_interval_s
        self._lock = asyncio.Lock()
        self._session: Session | None = None
        self._generation = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._decoder_events: asyncio.Queue[tuple[int, DecoderEvent]] | None = None
        self._dispatch_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def loop(self) -> asyncio.AbstractEventLoop | None:
        return self._loop

    @property
    def state(self) -> PlaybackState:
        session = self._session
        return session.state if session is not None else "idle"

    def snapshot(self) -> PlaybackSnapshot:
        session = self._session
        if session is None:
            return PlaybackSnapshot(
                state="idle",
                media_ref=None,
                duration_ms=DURATION_UNKNOWN,
                generation=self._generation,
                sampling=False,
            )
        return PlaybackSnapshot(
            state=session.state,
            media_ref=session.media_ref,
            duration_ms=session.duration_ms,
            generation=session.generation,
            sampling=session.sampler is not None and session.sampler.running,
        )

    async def start(self) -> None:
        """Start decoder-callback dispatch and begin accepting commands."""
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._decoder_events = asyncio.Queue()
        self._dispatch_task = asyncio.create_task(
            self._dispatch_decoder_events(), name="decoder-events"
        )
        self._running = True
        logger.info("Playback controller started.")

    async def shutdown(self) -> None:
        """Tear down any active session and stop callback dispatch."""
        if not self._running:
            return
        self._running = False
        async with self._lock:
            session = self._session
            if session is not None:
                await self._close_session(session)
                await self._publish_state("idle", session.media_ref)
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._dispatch_task
            self._dispatch_task = None
        logger.info("Playback controller stopped.")

    async def play(self, media_ref: str) -> None:
        """Replace any current session and start preparing `media_ref`.

        Returns once loading has been kicked off. Load failures are reported
        as `LoadFailed` events and leave the controller idle.
        """
        if not self._accepting("play"):
            return
        locator = media_ref.strip() if isinstance(media_ref, str) else ""
        async with self._lock:
            if not locator:
                logger.warning("Rejected play request with empty media locator.")
                await self._events.publish(
                    LoadFailed(str(media_ref or ""), "empty media locator")
                )
                return
            previous = self._session
            if previous is not None:
                logger.info(
                    "Replacing session %d (%s).",
                    previous.generation,
                    previous.media_ref,
                )
                await self._close_session(previous)
            self._generation += 1
            generation = self._generation
            try:
                decoder = self._decoder_factory()
            except Exception as exc:
                logger.exception("Decoder construction failed for %s.", locator)
                await self._events.publish(LoadFailed(locator, str(exc)))
                await self._publish_state("idle", locator)
                return
            session = Session(media_ref=locator, generation=generation, decoder=decoder)
            decoder.set_event_handler(partial(self._on_decoder_event, generation))
            self._session = session
            logger.info("Session %d preparing %s.", generation, locator)
            await self._publish_state("preparing", locator)
            try:
                await decoder.load(locator)
            except Exception as exc:
                logger.warning("Decoder rejected %s: %s", locator, exc)
                await self._close_session(session)
                await self._events.publish(LoadFailed(locator, str(exc)))
                await self._publish_state("idle", locator)

    async def pause(self) -> None:
        if not self._accepting("pause"):
            return
        async with self._lock:
            session = self._session
            if session is None:
                logger.debug("Ignoring pause while idle.")
                return
            if session.state == "preparing":
                # Applied when the decoder reports ready.
                session.pause_requested = True
                logger.debug("Pause requested during prepare of %s.", session.media_ref)
                return
            if session.state != "playing":
                logger.debug("Ignoring pause while %s.", session.state)
                return
            await self._stop_sampler(session)
            session.state = "paused"
            try:
                await self._require_decoder(session).pause()
            except Exception as exc:
                await self._fail_session(session, str(exc))
                return
            await self._publish_state("paused", session.media_ref)

    async def resume(self) -> None:
        if not self._accepting("resume"):
            return
        async with self._lock:
            session = self._session
            if session is None:
                logger.debug("Ignoring resume while idle.")
                return
            if session.state == "preparing":
                session.pause_requested = False
                return
            if session.state != "paused":
                logger.debug("Ignoring resume while %s.", session.state)
                return
            await self._enter_playing(session)

    async def stop(self) -> None:
        if not self._accepting("stop"):
            return
        async with self._lock:
            session = self._session
            if session is None:
                logger.debug("Ignoring stop while idle.")
                return
            logger.info("Stopping session %d.", session.generation)
            await self._close_session(session)
            await self._publish_state("idle", session.media_ref)

    def _accepting(self, command: str) -> bool:
        if self._running:
            return True
        logger.warning("Ignoring %s; playback controller is not running.", command)
        return False

    def _on_decoder_event(self, generation: int, event: DecoderEvent) -> None:
        """Decoder callback entry point; safe to call from any thread."""
        loop = self._loop
        queue = self._decoder_events
        if loop is None or queue is None or loop.is_closed():
            return
        item = (generation, event)
        try:
            running_loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is loop:
            queue.put_nowait(item)
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            logger.debug("Dropping %s; event loop closed.", type(event).__name__)

    async def _dispatch_decoder_events(self) -> None:
        queue = self._decoder_events
        if queue is None:
            return
        while True:
            generation, event = await queue.get()
            try:
                await self._handle_decoder_event(generation, event)
            except Exception:
                logger.exception(
                    "Failed handling decoder event %s.", type(event).__name__
                )

    async def _handle_decoder_event(self, generation: int, event: DecoderEvent) -> None:
        async with self._lock:
            session = self._session
            if session is None or session.generation != generation:
                logger.debug(
                    "Dropping %s from stale session %d.",
                    type(event).__name__,
                    generation,
                )
                return
            if isinstance(event, DecoderReady):
                await self._on_ready(session, event)
            elif isinstance(event, DecoderFinished):
                await self._on_finished(session)
            elif isinstance(event, DecoderFailed):
                await self._on_failed(session, event)

    async def _on_ready(self, session: Session, event: DecoderReady) -> None:
        if session.state != "preparing":
            logger.debug("Ignoring ready signal while %s.", session.state)
            return
        duration = event.duration_ms
        if duration <= 0:
            try:
                duration = await self._require_decoder(session).get_duration_ms()
            except DecoderError:
                duration = DURATION_UNKNOWN
            except Exception as exc:
                logger.exception("Duration query failed for %s.", session.media_ref)
                await self._on_failed(session, DecoderFailed(str(exc)))
                return
        session.duration_ms = duration if duration > 0 else DURATION_UNKNOWN
        if session.duration_ms > 0:
            await self._events.publish(DurationKnown(session.duration_ms))
        else:
            logger.info("Duration unknown for %s.", session.media_ref)
        if session.pause_requested:
            session.pause_requested = False
            session.state = "paused"
            logger.info("Session %d ready; holding pause.", session.generation)
            await self._publish_state("paused", session.media_ref)
            return
        await self._enter_playing(session)

    async def _on_finished(self, session: Session) -> None:
        logger.info("Session %d finished (%s).", session.generation, session.media_ref)
        await self._close_session(session)
        await self._events.publish(PlaybackFinished(session.media_ref))
        await self._publish_state("idle", session.media_ref)

    async def _on_failed(self, session: Session, event: DecoderFailed) -> None:
        if session.state == "preparing":
            logger.warning("Load failed for %s: %s", session.media_ref, event.message)
            await self._close_session(session)
            await self._events.publish(LoadFailed(session.media_ref, event.message))
            await self._publish_state("idle", session.media_ref)
            return
        await self._fail_session(session, event.message)

    async def _enter_playing(self, session: Session) -> None:
        try:
            await self._require_decoder(session).start()
        except Exception as exc:
            await self._fail_session(session, str(exc))
            return
        session.state = "playing"
        session.sampler = PositionSampler(
            partial(self._sample_position, session),
            interval_s=self._sample_interval_s,
            name=f"position-sampler-{session.generation}",
        )
        session.sampler.start()
        await self._publish_state("playing", session.media_ref)

    async def _sample_position(self, session: Session) -> None:
        async with self._lock:
            if self._session is not session or session.state != "playing":
                return
            decoder = session.decoder
        if decoder is None:
            return
        # Position reads may block on the engine; never hold the lock here.
        try:
            position = await decoder.get_position_ms()
        except DecoderError as exc:
            logger.debug("Sampler tick dropped: %s", exc)
            return
        async with self._lock:
            if self._session is not session or session.state != "playing":
                return
            position = max(0, position)
            if 0 < session.duration_ms < position:
                logger.debug(
                    "Position %d past duration %d for %s.",
                    position,
                    session.duration_ms,
                    session.media_ref,
                )
            await self._events.publish(PositionUpdate(position, session.duration_ms))

    async def _fail_session(self, session: Session, message: str) -> None:
        logger.error(
            "Playback error in session %d (%s): %s",
            session.generation,
            session.media_ref,
            message,
        )
        await self._close_session(session)
        await self._events.publish(PlaybackError(session.media_ref, message))
        await self._publish_state("idle", session.media_ref)

    async def _stop_sampler(self, session: Session) -> None:
        sampler = session.sampler
        session.sampler = None
        if sampler is not None:
            await sampler.stop()

    async def _close_session(self, session: Session) -> None:
        """Cancel sampling, then stop and release the decoder."""
        await self._stop_sampler(session)
        decoder = session.decoder
        session.decoder = None
        session.state = "stopped"
        if self._session is session:
            self._session = None
        if decoder is None:
            return
        decoder.set_event_handler(None)
        try:
            await _teardown_step("stop", decoder.stop)
        finally:
            # Runs even when the caller is cancelled mid-stop.
            await _teardown_step("release", decoder.release)

    async def _publish_state(self, state: PlaybackState, media_ref: str | None) -> None:
        await self._events.publish(StateChanged(state, media_ref))

    @staticmethod
    def _require_decoder(session: Session) -> Decoder:
        if session.decoder is None:
            raise DecoderError("Session decoder already released.")
        return session.decoder


async def _teardown_step(name: str, step: Callable[[], Awaitable[None]]) -> None:
    try:
        await step()
    except DecoderError as exc:
        logger.debug("Decoder %s skipped: %s", name, exc)
    except Exception:
        logger.warning("Decoder %s failed during teardown.", name, exc_info=True)
