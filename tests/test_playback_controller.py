"""Tests for PlaybackController state transitions and event ordering."""

from __future__ import annotations

import asyncio
import random
import sys
from contextlib import suppress
from typing import Callable, TypeVar

import tz_mediasvc.services.playback_controller as controller_module
from tz_mediasvc.errors import DecoderError, DecoderReleasedError
from tz_mediasvc.events import (
    DurationKnown,
    LoadFailed,
    PlaybackError,
    PlaybackFinished,
    PositionUpdate,
    StateChanged,
)
from tz_mediasvc.services.decoder import DecoderFinished, DecoderReady
from tz_mediasvc.services.event_channel import EventChannel
from tz_mediasvc.services.fake_decoder import FakeDecoder
from tz_mediasvc.services.playback_controller import PlaybackController
from tz_mediasvc.services.position_sampler import PositionSampler
from tz_mediasvc.services.vlc_decoder import VLCDecoder

VALID_STATES = {"idle", "preparing", "playing", "paused", "stopped"}

E = TypeVar("E")


def _run(coro):
    """Run async controller scenario from sync test functions."""
    return asyncio.run(coro)


class _Harness:
    """Controller wired to recording subscribers and manual fake decoders."""

    def __init__(
        self,
        *,
        decoder_cls: Callable[..., FakeDecoder] = FakeDecoder,
        sample_interval_s: float = 0.1,
        **decoder_kwargs,
    ) -> None:
        decoder_kwargs.setdefault("auto_prepare", False)
        self._decoder_cls = decoder_cls
        self._decoder_kwargs = decoder_kwargs
        self.decoders: list[FakeDecoder] = []
        self.events: list[object] = []
        self.channel = EventChannel()
        self.controller = PlaybackController(
            events=self.channel,
            decoder_factory=self._build_decoder,
            sample_interval_s=sample_interval_s,
        )

    def _build_decoder(self) -> FakeDecoder:
        decoder = self._decoder_cls(**self._decoder_kwargs)
        self.decoders.append(decoder)
        return decoder

    async def _record(self, event: object) -> None:
        self.events.append(event)

    async def start(self) -> None:
        self.channel.subscribe(self._record)
        await self.controller.start()

    async def settle(self, delay_s: float = 0.02) -> None:
        await asyncio.sleep(delay_s)
        await self.channel.drain()

    async def close(self) -> None:
        await self.controller.shutdown()
        await self.channel.close()

    @property
    def latest(self) -> FakeDecoder:
        return self.decoders[-1]

    def of_type(self, kind: type[E]) -> list[E]:
        return [event for event in self.events if isinstance(event, kind)]

    def states(self) -> list[str]:
        return [event.state for event in self.of_type(StateChanged)]


def test_ready_emits_duration_then_playing_then_one_position_per_tick() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        assert harness.controller.state == "preparing"
        harness.latest.complete_load(5000)
        await harness.settle()
        assert harness.controller.state == "playing"
        duration_index = harness.events.index(DurationKnown(5000))
        playing_index = harness.events.index(StateChanged("playing", "a.mp3"))
        assert duration_index < playing_index
        assert harness.of_type(PositionUpdate) == []

        await asyncio.sleep(0.13)
        await harness.channel.drain()
        updates = harness.of_type(PositionUpdate)
        assert len(updates) == 1
        assert updates[0].position_ms >= 0
        assert updates[0].duration_ms == 5000
        await harness.close()

    _run(run())


def test_duration_known_emitted_once_before_any_position_update() -> None:
    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(4000)
        await harness.settle(0.25)
        durations = [
            i for i, e in enumerate(harness.events) if isinstance(e, DurationKnown)
        ]
        positions = [
            i for i, e in enumerate(harness.events) if isinstance(e, PositionUpdate)
        ]
        assert len(durations) == 1
        assert positions
        assert durations[0] < positions[0]
        await harness.close()

    _run(run())


def test_stop_when_idle_is_silent_noop() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.stop()
        await harness.controller.stop()
        await harness.settle()
        assert harness.controller.state == "idle"
        assert harness.events == []
        assert harness.decoders == []
        await harness.close()

    _run(run())


def test_pause_resume_while_idle_are_noops() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.pause()
        await harness.controller.resume()
        await harness.settle()
        assert harness.controller.state == "idle"
        assert harness.events == []
        await harness.close()

    _run(run())


def test_pause_is_idempotent_and_stops_position_updates() -> None:
    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(10_000)
        await harness.settle(0.12)
        assert harness.of_type(PositionUpdate)

        await harness.controller.pause()
        await harness.controller.pause()
        await harness.settle()
        count = len(harness.of_type(PositionUpdate))
        await harness.settle(0.2)

        assert harness.controller.state == "paused"
        assert harness.controller.snapshot().sampling is False
        assert len(harness.of_type(PositionUpdate)) == count
        assert harness.states().count("paused") == 1
        assert harness.latest.calls.count("pause") == 1

        await harness.controller.resume()
        await harness.controller.resume()
        await harness.settle(0.12)
        assert harness.controller.state == "playing"
        assert harness.states().count("playing") == 2
        assert len(harness.of_type(PositionUpdate)) > count
        await harness.close()

    _run(run())


def test_pause_before_ready_holds_pause_after_prepare() -> None:
    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.controller.pause()
        await harness.settle()
        assert harness.controller.state == "preparing"

        harness.latest.complete_load(5000)
        await harness.settle(0.2)
        assert harness.controller.state == "paused"
        assert DurationKnown(5000) in harness.events
        assert harness.states()[-1] == "paused"
        assert "start" not in harness.latest.calls
        assert harness.of_type(PositionUpdate) == []

        await harness.controller.resume()
        await harness.settle(0.08)
        assert harness.controller.state == "playing"
        assert "start" in harness.latest.calls
        await harness.close()

    _run(run())


def test_resume_during_prepare_cancels_pending_pause() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.controller.pause()
        await harness.controller.resume()
        harness.latest.complete_load(5000)
        await harness.settle()
        assert harness.controller.state == "playing"
        await harness.close()

    _run(run())


def test_finished_tears_down_and_stops_position_updates() -> None:
    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        decoder.complete_load(5000)
        await harness.settle(0.12)

        decoder.finish()
        await harness.settle()
        finished_index = harness.events.index(PlaybackFinished("a.mp3"))
        await harness.settle(0.2)

        assert harness.controller.state == "idle"
        assert harness.controller.snapshot().sampling is False
        assert decoder.released is True
        assert decoder.calls[-2:] == ["stop", "release"]
        tail = harness.events[finished_index + 1 :]
        assert tail == [StateChanged("idle", "a.mp3")]
        await harness.close()

    _run(run())


def test_play_replaces_session_without_interleaving_events() -> None:
    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        first = harness.latest
        first.complete_load(5000)
        await harness.settle(0.12)
        assert harness.of_type(PositionUpdate)

        await harness.controller.play("b.mp3")
        await harness.settle()
        assert first.released is True
        assert first.calls[-2:] == ["stop", "release"]
        second = harness.latest
        assert second is not first
        assert second.calls == ["load"]

        preparing_b = harness.events.index(StateChanged("preparing", "b.mp3"))
        first.complete_load(5000)
        first.finish()
        await harness.settle(0.2)
        tail = harness.events[preparing_b + 1 :]
        assert tail == []
        assert harness.controller.state == "preparing"
        assert harness.controller.snapshot().media_ref == "b.mp3"
        await harness.close()

    _run(run())


def test_stale_generation_callbacks_are_dropped() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.controller.play("b.mp3")
        stale_generation = harness.controller.snapshot().generation - 1
        harness.controller._on_decoder_event(  # noqa: SLF001
            stale_generation, DecoderReady(1000)
        )
        harness.controller._on_decoder_event(  # noqa: SLF001
            stale_generation, DecoderFinished()
        )
        await harness.settle()
        assert harness.controller.state == "preparing"
        assert DurationKnown(1000) not in harness.events
        await harness.close()

    _run(run())


def test_teardown_cancels_sampler_before_decoder_stop(monkeypatch) -> None:
    samplers: list[PositionSampler] = []
    observed: list[bool] = []

    class RecordingSampler(PositionSampler):
        def start(self) -> None:
            samplers.append(self)
            super().start()

    class OrderedDecoder(FakeDecoder):
        async def stop(self) -> None:
            observed.append(bool(samplers) and not samplers[-1].running)
            await super().stop()

    monkeypatch.setattr(controller_module, "PositionSampler", RecordingSampler)

    async def run() -> None:
        harness = _Harness(decoder_cls=OrderedDecoder, sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(5000)
        await harness.settle()
        assert samplers and samplers[-1].running
        await harness.controller.stop()
        await harness.close()

    _run(run())
    assert observed == [True]


def test_position_read_does_not_hold_controller_lock() -> None:
    class BlockingPositionDecoder(FakeDecoder):
        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            self.reading = asyncio.Event()
            self.unblock = asyncio.Event()

        async def get_position_ms(self) -> int:
            self.reading.set()
            await self.unblock.wait()
            return await super().get_position_ms()

    async def run() -> None:
        harness = _Harness(decoder_cls=BlockingPositionDecoder, sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        assert isinstance(decoder, BlockingPositionDecoder)
        decoder.complete_load(5000)
        await asyncio.wait_for(decoder.reading.wait(), timeout=1.0)

        await asyncio.wait_for(harness.controller.pause(), timeout=1.0)
        decoder.unblock.set()
        await harness.settle(0.1)
        assert harness.controller.state == "paused"
        assert harness.of_type(PositionUpdate) == []
        await harness.close()

    _run(run())


def test_sampler_tick_on_released_handle_is_dropped() -> None:
    class ReleasedPositionDecoder(FakeDecoder):
        async def get_position_ms(self) -> int:
            raise DecoderReleasedError("gone")

    async def run() -> None:
        harness = _Harness(decoder_cls=ReleasedPositionDecoder, sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(5000)
        await harness.settle(0.2)
        assert harness.controller.state == "playing"
        assert harness.of_type(PositionUpdate) == []
        await harness.close()

    _run(run())


def test_negative_position_is_clamped_to_zero() -> None:
    class NegativePositionDecoder(FakeDecoder):
        async def get_position_ms(self) -> int:
            return -250

    async def run() -> None:
        harness = _Harness(decoder_cls=NegativePositionDecoder, sample_interval_s=0.05)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(5000)
        await harness.settle(0.12)
        updates = harness.of_type(PositionUpdate)
        assert updates
        assert all(update.position_ms == 0 for update in updates)
        await harness.close()

    _run(run())


def test_decoder_reported_load_failure_returns_to_idle() -> None:
    async def run() -> None:
        harness = _Harness(auto_prepare=True, fail_locators=frozenset({"bad.mp3"}))
        await harness.start()
        await harness.controller.play("bad.mp3")
        await harness.settle()
        assert harness.controller.state == "idle"
        assert LoadFailed("bad.mp3", "cannot open bad.mp3") in harness.events
        assert harness.states() == ["preparing", "idle"]
        assert harness.latest.released is True
        await harness.close()

    _run(run())


def test_load_exception_becomes_load_failed_event() -> None:
    class RejectingDecoder(FakeDecoder):
        async def load(self, locator: str) -> None:
            raise DecoderError(f"no such file: {locator}")

    async def run() -> None:
        harness = _Harness(decoder_cls=RejectingDecoder)
        await harness.start()
        await harness.controller.play("missing.mp3")
        await harness.settle()
        assert harness.controller.state == "idle"
        assert LoadFailed("missing.mp3", "no such file: missing.mp3") in harness.events
        assert harness.latest.released is True
        await harness.close()

    _run(run())


def test_blank_locator_is_rejected_without_touching_session() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.controller.play("   ")
        await harness.settle()
        assert harness.controller.state == "preparing"
        assert harness.controller.snapshot().media_ref == "a.mp3"
        assert len(harness.decoders) == 1
        assert isinstance(harness.events[-1], LoadFailed)
        await harness.close()

    _run(run())


def test_decoder_failure_while_playing_reports_playback_error() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        decoder.complete_load(5000)
        await harness.settle()
        decoder.fail_load("audio device lost")
        await harness.settle()
        assert harness.controller.state == "idle"
        assert PlaybackError("a.mp3", "audio device lost") in harness.events
        assert decoder.released is True
        await harness.close()

    _run(run())


def test_decoder_start_failure_reports_playback_error() -> None:
    class BrokenStartDecoder(FakeDecoder):
        async def start(self) -> None:
            raise RuntimeError("output unavailable")

    async def run() -> None:
        harness = _Harness(decoder_cls=BrokenStartDecoder)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        harness.latest.complete_load(5000)
        await harness.settle()
        assert harness.controller.state == "idle"
        assert PlaybackError("a.mp3", "output unavailable") in harness.events
        await harness.controller.play("b.mp3")
        await harness.settle()
        assert harness.controller.state == "preparing"
        await harness.close()

    _run(run())


def test_random_command_sequences_never_raise_and_keep_sampler_invariant() -> None:
    rng = random.Random(1234)
    operations = ["play", "pause", "resume", "stop", "ready", "finish", "fail"]

    async def run() -> None:
        harness = _Harness(sample_interval_s=0.05)
        await harness.start()
        controller = harness.controller
        for step in range(150):
            op = rng.choice(operations)
            if op == "play":
                await controller.play(f"track-{step}.mp3")
            elif op == "pause":
                await controller.pause()
            elif op == "resume":
                await controller.resume()
            elif op == "stop":
                await controller.stop()
            elif harness.decoders:
                decoder = harness.latest
                if op == "ready":
                    decoder.complete_load(rng.randint(1, 10_000))
                elif op == "finish":
                    decoder.finish()
                else:
                    decoder.fail_load("random failure")
            await harness.settle(0.005)
            snapshot = controller.snapshot()
            assert snapshot.state in VALID_STATES
            assert snapshot.sampling == (snapshot.state == "playing")
            live = [decoder for decoder in harness.decoders if not decoder.released]
            assert len(live) <= 1
        await harness.close()
        assert controller.state == "idle"
        assert all(decoder.released for decoder in harness.decoders)

    _run(run())


def test_concurrent_commands_leave_single_live_decoder() -> None:
    async def run() -> None:
        harness = _Harness(auto_prepare=True, duration_ms=5000)
        await harness.start()
        controller = harness.controller
        await asyncio.gather(
            controller.play("a.mp3"),
            controller.pause(),
            controller.play("b.mp3"),
            controller.stop(),
            controller.resume(),
            controller.play("c.mp3"),
        )
        await harness.settle(0.05)
        assert controller.state in VALID_STATES
        live = [decoder for decoder in harness.decoders if not decoder.released]
        assert len(live) <= 1
        await harness.close()

    _run(run())


def test_natural_completion_with_auto_decoder() -> None:
    async def run() -> None:
        harness = _Harness(
            auto_prepare=True,
            duration_ms=300,
            tick_interval_ms=50,
            sample_interval_s=0.05,
        )
        await harness.start()
        await harness.controller.play("short.mp3")
        await harness.settle(0.7)
        assert harness.controller.state == "idle"
        assert harness.of_type(DurationKnown) == [DurationKnown(300)]
        finished_index = harness.events.index(PlaybackFinished("short.mp3"))
        assert not any(
            isinstance(event, PositionUpdate)
            for event in harness.events[finished_index:]
        )
        assert harness.states() == ["preparing", "playing", "idle"]
        await harness.close()

    _run(run())


def test_shutdown_releases_decoder_and_ignores_later_commands() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        decoder.complete_load(5000)
        await harness.settle()
        await harness.controller.shutdown()
        assert harness.controller.running is False
        assert harness.controller.state == "idle"
        assert decoder.released is True
        await harness.controller.play("b.mp3")
        assert len(harness.decoders) == 1
        await harness.channel.close()

    _run(run())


def test_unknown_duration_skips_duration_event() -> None:
    async def run() -> None:
        harness = _Harness()
        await harness.start()
        await harness.controller.play("stream://radio")
        await harness.settle()
        harness.latest.complete_load(0)
        await harness.settle()
        assert harness.controller.state == "playing"
        assert harness.of_type(DurationKnown) == []
        assert harness.controller.snapshot().duration_ms == -1
        await harness.close()

    _run(run())


def test_missing_libvlc_reports_load_failed_instead_of_hanging(monkeypatch) -> None:
    monkeypatch.setitem(sys.modules, "vlc", None)

    async def run() -> None:
        channel = EventChannel()
        events: list[object] = []

        async def record(event: object) -> None:
            events.append(event)

        channel.subscribe(record)
        controller = PlaybackController(events=channel, decoder_factory=VLCDecoder)
        await controller.start()
        await asyncio.wait_for(controller.play("a.mp3"), timeout=3.0)
        await channel.drain()
        assert controller.state == "idle"
        failures = [event for event in events if isinstance(event, LoadFailed)]
        assert len(failures) == 1
        assert failures[0].media_ref == "a.mp3"
        assert "VLC decoder unavailable" in failures[0].message
        assert events[-1] == StateChanged("idle", "a.mp3")
        await asyncio.wait_for(controller.stop(), timeout=1.0)
        await asyncio.wait_for(controller.shutdown(), timeout=1.0)
        await channel.close()

    _run(run())


def test_cancelled_stop_still_releases_decoder() -> None:
    class SlowStopDecoder(FakeDecoder):
        async def stop(self) -> None:
            await asyncio.sleep(0.5)
            await super().stop()

    async def run() -> None:
        harness = _Harness(decoder_cls=SlowStopDecoder)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        decoder.complete_load(5000)
        await harness.settle()
        stopping = asyncio.create_task(harness.controller.stop())
        await asyncio.sleep(0.05)
        stopping.cancel()
        with suppress(asyncio.CancelledError):
            await stopping
        assert decoder.released is True
        assert harness.controller.state == "idle"
        await harness.controller.play("b.mp3")
        await harness.settle()
        assert harness.controller.state == "preparing"
        await harness.close()

    _run(run())


def test_duration_query_failure_becomes_load_failed() -> None:
    class BrokenDurationDecoder(FakeDecoder):
        async def get_duration_ms(self) -> int:
            raise RuntimeError("duration query exploded")

    async def run() -> None:
        harness = _Harness(decoder_cls=BrokenDurationDecoder)
        await harness.start()
        await harness.controller.play("a.mp3")
        await harness.settle()
        decoder = harness.latest
        decoder.complete_load(0)
        await harness.settle()
        assert harness.controller.state == "idle"
        assert LoadFailed("a.mp3", "duration query exploded") in harness.events
        assert harness.states() == ["preparing", "idle"]
        assert harness.of_type(PositionUpdate) == []
        assert decoder.released is True
        await harness.close()

    _run(run())
