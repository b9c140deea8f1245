"""VLC decoder adapter using python-vlc."""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any

from tz_mediasvc.errors import DecoderError, DecoderReleasedError

from .decoder import (
    DecoderEvent,
    DecoderEventHandler,
    DecoderFailed,
    DecoderFinished,
    DecoderReady,
)

logger = logging.getLogger(__name__)

PARSE_TIMEOUT_MS = 5000
THREAD_JOIN_TIMEOUT_S = 2.0


@dataclass
class _Command:
    name: str
    args: tuple[Any, ...]
    future: asyncio.Future[Any] | None


class VLCDecoder:
    """Decoder handle backed by a dedicated VLC thread.

    Engine state is polled on the thread; readiness, completion and errors are
    reported to the event handler from that thread.
    """

    def __init__(self, *, poll_interval_ms: int = 100) -> None:
        self._poll_interval = poll_interval_ms / 1000
        self._handler: DecoderEventHandler | None = None
        self._handler_lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: queue.Queue[_Command] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._released = False

    def set_event_handler(self, handler: DecoderEventHandler | None) -> None:
        with self._handler_lock:
            self._handler = handler

    async def load(self, locator: str) -> None:
        await self._ensure_thread()
        await self._submit("load", locator)

    async def start(self) -> None:
        await self._submit("start")

    async def pause(self) -> None:
        await self._submit("pause")

    async def stop(self) -> None:
        await self._submit("stop")

    async def get_position_ms(self) -> int:
        return int(await self._submit("get_position_ms"))

    async def get_duration_ms(self) -> int:
        return int(await self._submit("get_duration_ms"))

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.set_event_handler(None)
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        self._queue.put(_Command("wake", (), None))
        await asyncio.get_running_loop().run_in_executor(
            None, thread.join, THREAD_JOIN_TIMEOUT_S
        )
        if thread.is_alive():
            logger.warning(
                "VLC decoder thread did not stop within %.1f seconds.",
                THREAD_JOIN_TIMEOUT_S,
            )
        self._thread = None

    async def _ensure_thread(self) -> None:
        if self._released:
            raise DecoderReleasedError("VLC decoder already released.")
        if self._thread is not None:
            return
        self._loop = asyncio.get_running_loop()
        ready_future: asyncio.Future[None] = self._loop.create_future()
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._thread_main,
            args=(ready_future,),
            name="VLCDecoderThread",
            daemon=True,
        )
        self._thread.start()
        try:
            await ready_future
        except BaseException:
            # Initialization failed; no thread will ever drain the queue.
            self._stop_event.set()
            self._thread = None
            raise

    async def _submit(self, name: str, *args: Any) -> Any:
        if self._released:
            raise DecoderReleasedError("VLC decoder already released.")
        thread = self._thread
        if self._loop is None or thread is None:
            raise DecoderError("VLC decoder not loaded.")
        if not thread.is_alive():
            raise DecoderError("VLC decoder thread is not running.")
        future: asyncio.Future[Any] = self._loop.create_future()
        self._queue.put(_Command(name, args, future))
        return await future

    def _thread_main(self, ready_future: asyncio.Future[None]) -> None:
        try:
            import vlc

            instance = vlc.Instance()
            player = instance.media_player_new()
        except Exception as exc:
            self._notify_future_exception(
                ready_future,
                DecoderError(
                    "VLC decoder unavailable. Install python-vlc and VLC/libVLC."
                ),
            )
            logger.error("libVLC initialization failed: %s", exc)
            return

        self._notify_future_result(ready_future, None)
        session = _ThreadSession()

        while not self._stop_event.is_set():
            try:
                cmd = self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                cmd = None

            if cmd is not None and cmd.name != "wake":
                try:
                    result = self._handle_command(cmd, instance, player, session)
                    self._notify_future_result(cmd.future, result)
                except Exception as exc:  # pragma: no cover - engine safety net
                    self._notify_future_exception(cmd.future, exc)

            self._poll_engine(player, session)

        try:
            player.stop()
            player.release()
        except Exception:  # pragma: no cover - engine safety net
            logger.debug("libVLC player release failed.", exc_info=True)

    def _handle_command(
        self, cmd: _Command, instance: Any, player: Any, session: _ThreadSession
    ) -> Any:
        name = cmd.name
        if name == "load":
            (locator,) = cmd.args
            media = instance.media_new(locator)
            player.set_media(media)
            session.media = media
            session.preparing = True
            session.finished_reported = False
            _start_parse(media)
            return None
        if name == "start":
            player.play()
            return None
        if name == "pause":
            player.set_pause(1)
            return None
        if name == "stop":
            player.stop()
            return None
        if name == "get_position_ms":
            return max(player.get_time(), 0)
        if name == "get_duration_ms":
            return player.get_length() if session.media is not None else -1
        raise ValueError(f"Unknown command {name}")

    def _poll_engine(self, player: Any, session: _ThreadSession) -> None:
        if session.media is None:
            return
        if session.preparing:
            status = _parsed_status(session.media)
            if status == "pending":
                return
            session.preparing = False
            # Skipped parses still play; length is resolved once rendering starts.
            if status in {"done", "skipped"}:
                self._emit_event(DecoderReady(max(session.media.get_duration(), 0)))
            else:
                self._emit_event(DecoderFailed(f"media parse {status}"))
            return
        state = _state_name(player)
        if state == "ended" and not session.finished_reported:
            session.finished_reported = True
            self._emit_event(DecoderFinished())
        elif state == "error" and not session.finished_reported:
            session.finished_reported = True
            self._emit_event(DecoderFailed("libVLC reported a playback error"))

    def _emit_event(self, event: DecoderEvent) -> None:
        with self._handler_lock:
            handler = self._handler
        if handler is None:
            return
        handler(event)

    def _notify_future_result(
        self, future: asyncio.Future[Any] | None, value: Any
    ) -> None:
        if future is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(_resolve_future_result, future, value)

    def _notify_future_exception(
        self, future: asyncio.Future[Any] | None, exc: Exception
    ) -> None:
        if future is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(_resolve_future_exception, future, exc)


@dataclass
class _ThreadSession:
    media: Any = None
    preparing: bool = False
    finished_reported: bool = False


def _resolve_future_result(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _resolve_future_exception(future: asyncio.Future[Any], exc: Exception) -> None:
    if not future.done():
        future.set_exception(exc)


def _start_parse(media: Any) -> None:
    import vlc

    flags = vlc.MediaParseFlag.local | vlc.MediaParseFlag.network
    media.parse_with_options(flags, PARSE_TIMEOUT_MS)


def _parsed_status(media: Any) -> str:
    try:
        status = media.get_parsed_status()
    except Exception:
        return "failed"
    name = _enum_name(status)
    if name in {"done", "failed", "timeout", "skipped"}:
        return name
    return "pending"


def _state_name(player: Any) -> str:
    try:
        state = player.get_state()
    except Exception:
        return "error"
    return _enum_name(state)


def _enum_name(value: Any) -> str:
    name = getattr(value, "name", None)
    if not isinstance(name, str):
        # python-vlc enums render as "<EnumClass>.<member>".
        name = str(value).rsplit(".", 1)[-1]
    return name.lower()
