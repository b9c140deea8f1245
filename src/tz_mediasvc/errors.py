"""Error taxonomy shared by the controller, channels, and decoder adapters.

Only boundary-crossing conditions are exceptions. Load failures travel as
`tz_mediasvc.events.LoadFailed` events and invalid transitions are no-ops.
"""

from __future__ import annotations


class MediaServiceError(Exception):
    """Base class for tz-mediasvc errors."""


class ChannelUnavailable(MediaServiceError):
    """Command boundary is unreachable.

    Callers should treat playback as stopped and retry later.
    """


class DecoderError(MediaServiceError):
    """Decoder adapter could not execute a command."""


class DecoderReleasedError(DecoderError):
    """Decoder handle was used after `release()`."""
