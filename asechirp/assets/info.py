"""Decoded sprite data: frame images and the read-only animation metadata."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping

import numpy as np

from asechirp.errors import MalformedError

_ONE_MICROSECOND = timedelta(microseconds=1)


def to_microseconds(value: float | timedelta) -> int:
    """Convert a time span to whole microseconds.

    Plain numbers are milliseconds. timedelta values are exact, so summing
    them before converting gives the same total as converting each one.
    """
    if isinstance(value, timedelta):
        return value // _ONE_MICROSECOND
    return round(value * 1000)


class AnimationDirection(Enum):
    """Playback direction of a tag, as stored in the file."""

    FORWARD = 0
    REVERSE = 1
    PING_PONG = 2
    PING_PONG_REVERSE = 3
    UNKNOWN = -1

    @classmethod
    def from_code(cls, code: int) -> AnimationDirection:
        """Map a raw direction code, keeping unrecognized codes as UNKNOWN."""
        for direction in cls:
            if direction.value == code and direction is not cls.UNKNOWN:
                return direction
        return cls.UNKNOWN


@dataclass
class FrameImage:
    """A single flattened RGBA frame.

    ``pixels`` has shape (height, width, 4) and dtype uint8, straight alpha.
    """

    width: int
    height: int
    pixels: np.ndarray

    @property
    def nbytes(self) -> int:
        return self.pixels.nbytes


@dataclass(frozen=True)
class Tag:
    """A named, inclusive frame range with a playback direction."""

    name: str
    start: int
    end: int
    direction: AnimationDirection = AnimationDirection.FORWARD
    raw_direction: int = 0
    repeat: int = 0  # 0 = loop forever

    @property
    def frame_count(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class SliceKey:
    """One keyframe of a slice, valid from ``frame`` until the next key."""

    frame: int
    x: int
    y: int
    width: int
    height: int
    center: tuple[int, int, int, int] | None = None  # nine-patch (x, y, w, h)
    pivot: tuple[int, int] | None = None


@dataclass(frozen=True)
class Palette:
    """Indexed-color palette as RGBA tuples."""

    colors: tuple[tuple[int, int, int, int], ...]

    def __len__(self) -> int:
        return len(self.colors)

    def as_array(self, size: int = 256) -> np.ndarray:
        """Return the palette as a (size, 4) uint8 array, zero padded."""
        table = np.zeros((max(size, len(self.colors)), 4), dtype=np.uint8)
        if self.colors:
            table[: len(self.colors)] = np.asarray(self.colors, dtype=np.uint8)
        return table


@dataclass(frozen=True)
class AnimationInfo:
    """Immutable metadata shared by every player of a loaded sprite.

    Validated on construction: at least one frame, one positive duration per
    frame, and every tag range inside [0, frame_count - 1].
    """

    dimensions: tuple[int, int]
    frame_count: int
    frame_durations: tuple[float, ...]
    tags: Mapping[str, Tag] = field(default_factory=dict)
    slices: Mapping[str, tuple[SliceKey, ...]] = field(default_factory=dict)
    palette: Palette | None = None
    transparent_index: int = 0
    frame_durations_us: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "frame_durations", tuple(float(d) for d in self.frame_durations))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))
        object.__setattr__(
            self, "slices",
            MappingProxyType({name: tuple(keys) for name, keys in self.slices.items()}),
        )

        if self.frame_count < 1:
            raise MalformedError("Sprite has no frames")
        if len(self.frame_durations) != self.frame_count:
            raise MalformedError(
                f"Expected {self.frame_count} frame durations, got {len(self.frame_durations)}"
            )
        for index, duration in enumerate(self.frame_durations):
            if duration <= 0:
                raise MalformedError(f"Frame {index} has non-positive duration {duration}")
        object.__setattr__(
            self, "frame_durations_us",
            tuple(max(1, to_microseconds(d)) for d in self.frame_durations),
        )
        for tag in self.tags.values():
            if not 0 <= tag.start <= tag.end < self.frame_count:
                raise MalformedError(
                    f"Tag '{tag.name}' range [{tag.start}, {tag.end}] is outside "
                    f"[0, {self.frame_count - 1}]"
                )

    @property
    def width(self) -> int:
        return self.dimensions[0]

    @property
    def height(self) -> int:
        return self.dimensions[1]

    @property
    def tag_names(self) -> list[str]:
        return list(self.tags.keys())

    @property
    def total_duration_ms(self) -> float:
        return sum(self.frame_durations)

    def get_tag(self, name: str) -> Tag | None:
        return self.tags.get(name)

    def frame_duration(self, index: int) -> float:
        """Display duration of a frame, in milliseconds."""
        return self.frame_durations[index]

    def frame_duration_us(self, index: int) -> int:
        """Display duration of a frame, in whole microseconds."""
        return self.frame_durations_us[index]
