"""Project version source of truth and `--help` footer."""

from __future__ import annotations

import platform

from tz_mediasvc.runtime_config import DECODER_NAMES, DEFAULT_DECODER

__all__ = ["PROJECT_URL", "__version__", "build_help_epilog"]

# Manually updated for each release.
__version__ = "0.1.0"
PROJECT_URL = "https://github.com/taggedzi/tz-mediasvc"


def build_help_epilog() -> str:
    """Footer listing decoders, platform and version for bug reports."""
    decoders = ", ".join(
        f"{name} (default)" if name == DEFAULT_DECODER else name
        for name in DECODER_NAMES
    )
    return "\n".join(
        [
            f"Decoders: {decoders}",
            "Run `tz-mediasvc doctor` to check libVLC before using the vlc decoder.",
            "",
            f"Project URL: {PROJECT_URL}",
            f"Platform: {platform.platform()}",
            f"Python: {platform.python_version()}",
            f"Version: {__version__}",
        ]
    )
