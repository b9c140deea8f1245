"""VLC decoder smoke test: play, pause, resume and stop a real file."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from tz_mediasvc.runtime_config import ServiceConfig  # noqa: E402
from tz_mediasvc.service import MediaService  # noqa: E402


async def _run(path: Path, seconds: float) -> None:
    async def _handler(event) -> None:
        print(event)

    async with MediaService(ServiceConfig(decoder="vlc")) as service:
        service.subscribe(_handler)
        channel = service.bind()
        await channel.play(str(path))
        await asyncio.sleep(seconds)
        await channel.pause()
        await asyncio.sleep(1.0)
        await channel.resume()
        await asyncio.sleep(seconds)
        await channel.stop()
        await service.events.drain()


def main() -> None:
    parser = argparse.ArgumentParser(description="VLC decoder smoke test.")
    parser.add_argument("path", type=Path, help="Path to an audio file.")
    parser.add_argument("--seconds", type=float, default=3.0)
    args = parser.parse_args()
    asyncio.run(_run(args.path, args.seconds))


if __name__ == "__main__":
    main()
