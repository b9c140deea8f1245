"""Command-line interface for tz-mediasvc.

`play` runs one service instance, prints its events and exits when the
session ends. With `--interactive`, commands typed on stdin are sent through
a thread-crossing command channel.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from contextlib import suppress
from pathlib import Path
from typing import TextIO

from . import __version__
from .doctor import render_report, run_doctor
from .errors import ChannelUnavailable
from .events import (
    DurationKnown,
    LoadFailed,
    PlaybackError,
    PlaybackEvent,
    PlaybackFinished,
    PositionUpdate,
    StateChanged,
)
from .logging_utils import setup_logging
from .paths import log_dir
from .runtime_config import (
    DECODER_NAMES,
    DEFAULT_DECODER,
    ServiceConfig,
    build_service_config,
    resolve_log_level,
)
from .service import MediaService
from .services.command_channel import ThreadCommandChannel
from .utils.time_format import format_progress, format_time_ms
from .version import build_help_epilog

logger = logging.getLogger(__name__)

INTERACTIVE_COMMANDS = ("play", "pause", "resume", "stop", "quit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tz-mediasvc",
        description="TaggedZ's single-session media playback service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=build_help_epilog(),
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument(
        "--decoder",
        choices=DECODER_NAMES,
        default=DEFAULT_DECODER,
        help="Decoder engine to use (fake or vlc).",
    )
    parser.add_argument(
        "--sample-interval",
        type=float,
        help="Seconds between position updates (clamped to 0.05-10).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)
    play = subparsers.add_parser("play", help="Play one media locator.")
    play.add_argument("locator", help="File path or URI of the media to play.")
    play.add_argument(
        "--interactive",
        action="store_true",
        help="Read pause/resume/stop/play/quit commands from stdin.",
    )
    subparsers.add_parser("doctor", help="Check decoder and log readiness.")
    return parser


def describe_event(event: PlaybackEvent) -> str | None:
    """Render one event as a console line."""
    if isinstance(event, DurationKnown):
        return f"duration {format_time_ms(event.duration_ms)}"
    if isinstance(event, PositionUpdate):
        return f"position {format_progress(event.position_ms, event.duration_ms)}"
    if isinstance(event, StateChanged):
        suffix = f" ({event.media_ref})" if event.media_ref else ""
        return f"state {event.state}{suffix}"
    if isinstance(event, LoadFailed):
        return f"load failed for {event.media_ref}: {event.message}"
    if isinstance(event, PlaybackError):
        return f"playback error for {event.media_ref}: {event.message}"
    if isinstance(event, PlaybackFinished):
        return f"finished {event.media_ref}"
    return None


def parse_command(line: str) -> tuple[str, str | None] | None:
    """Parse an interactive command line into `(command, argument)`."""
    parts = line.strip().split(maxsplit=1)
    if not parts:
        return None
    command = parts[0].lower()
    if command not in INTERACTIVE_COMMANDS:
        return None
    argument = parts[1].strip() if len(parts) > 1 else None
    if command == "play" and not argument:
        return None
    return command, argument


def dispatch_command(
    channel: ThreadCommandChannel, command: str, argument: str | None
) -> None:
    if command == "play" and argument:
        channel.play(argument)
    elif command == "pause":
        channel.pause()
    elif command == "resume":
        channel.resume()
    elif command == "stop":
        channel.stop()


def _read_commands(
    channel: ThreadCommandChannel,
    stdin: TextIO,
    out: TextIO,
    loop: asyncio.AbstractEventLoop,
    done: asyncio.Event,
) -> None:
    for line in stdin:
        parsed = parse_command(line)
        if parsed is None:
            if line.strip():
                print(f"commands: {', '.join(INTERACTIVE_COMMANDS)}", file=out)
            continue
        command, argument = parsed
        if command == "quit":
            break
        try:
            dispatch_command(channel, command, argument)
        except ChannelUnavailable as exc:
            print(f"service unavailable: {exc}", file=out)
            break
    with suppress(RuntimeError):
        loop.call_soon_threadsafe(done.set)


async def run_session(
    locator: str,
    config: ServiceConfig,
    *,
    interactive: bool = False,
    stdin: TextIO | None = None,
    out: TextIO | None = None,
) -> int:
    """Play `locator` until it finishes, fails, or the user quits."""
    stream = out or sys.stdout
    done = asyncio.Event()
    exit_code = 0

    async def on_event(event: PlaybackEvent) -> None:
        nonlocal exit_code
        line = describe_event(event)
        if line:
            print(line, file=stream, flush=True)
        if interactive:
            return
        if isinstance(event, (LoadFailed, PlaybackError)):
            exit_code = 1
            done.set()
        elif isinstance(event, PlaybackFinished):
            done.set()

    async with MediaService(config) as service:
        service.subscribe(on_event)
        await service.bind().play(locator)
        if interactive:
            channel = service.bind_threadsafe()
            reader = threading.Thread(
                target=_read_commands,
                args=(
                    channel,
                    stdin or sys.stdin,
                    stream,
                    asyncio.get_running_loop(),
                    done,
                ),
                name="StdinCommandReader",
                daemon=True,
            )
            reader.start()
        await done.wait()
        await service.events.drain()
    return exit_code


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
        )
        config = build_service_config(
            decoder=args.decoder, sample_interval_s=args.sample_interval
        )
        if args.command == "doctor":
            report = run_doctor(config.decoder)
            print(render_report(report))
            return report.exit_code
        logger.info("Starting tz-mediasvc with decoder %s", config.decoder)
        return asyncio.run(
            run_session(args.locator, config, interactive=args.interactive)
        )
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
