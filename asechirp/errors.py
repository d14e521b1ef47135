"""Exceptions raised while loading sprites.

Decoding and packing failures are fatal to loading that asset and propagate
to the caller. Playback never raises; it logs and keeps a well-defined state.
"""

from __future__ import annotations


class AsechirpError(Exception):
    """Base class for every error raised by asechirp."""


class DecodeError(AsechirpError):
    """The encoded sprite could not be decoded."""


class MalformedError(DecodeError):
    """Structural corruption: bad magic, truncated data, invalid ranges."""


class UnsupportedError(DecodeError):
    """A recognized feature that this decoder does not handle."""


class PackError(AsechirpError):
    """The decoded frames could not be packed into an atlas."""


class EmptyInputError(PackError):
    """There were no frames to pack."""


class CapacityExceededError(PackError):
    """The frames do not fit in the maximum atlas size."""

    def __init__(self, message: str, max_size: int) -> None:
        super().__init__(message)
        self.max_size = max_size
