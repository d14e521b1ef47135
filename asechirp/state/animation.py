"""Per-instance animation playback: tag-scoped stepping driven by elapsed time."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from datetime import timedelta
from typing import Any

from asechirp.assets.info import AnimationDirection, AnimationInfo, Tag, to_microseconds

logger = logging.getLogger(__name__)

_BACKWARD_SEEDED = (AnimationDirection.REVERSE, AnimationDirection.PING_PONG_REVERSE)
_PING_PONG = (AnimationDirection.PING_PONG, AnimationDirection.PING_PONG_REVERSE)


@dataclass
class AnimationState:
    """Mutable playback state of one animated instance.

    ``current_frame`` is an absolute frame index that always lies inside the
    active tag's range (or the whole sprite without a tag). ``elapsed_us`` is
    the time already spent on the current frame, in whole microseconds, so
    splitting a time span into several advance() calls never changes the
    result. ``elapsed`` is the same value in milliseconds. ``forward``
    only matters for the ping-pong directions.

    The AnimationInfo is never stored here; pass the same info to every
    call. Many states may share one info.
    """

    tag: str | None = None
    current_frame: int = 0
    elapsed_us: int = 0
    forward: bool = True
    playing: bool = True

    @classmethod
    def start(cls, info: AnimationInfo, tag: str | None = None, playing: bool = True) -> AnimationState:
        """Create a state seeded at the entry point of ``tag``.

        An unknown tag logs a warning and loops over every frame instead.
        """
        state = cls(playing=playing)
        state._seed(info, tag)
        return state

    def _seed(self, info: AnimationInfo, tag: str | None) -> None:
        resolved = None
        if tag is not None:
            resolved = info.get_tag(tag)
            if resolved is None:
                logger.warning(
                    "Tag '%s' not found (available: %s); looping over all frames",
                    tag, ", ".join(info.tag_names) or "none",
                )

        if resolved is None:
            self.tag = None
            self.current_frame = 0
            self.forward = True
        elif resolved.direction in _BACKWARD_SEEDED:
            self.tag = resolved.name
            self.current_frame = resolved.end
            self.forward = False
        else:
            self.tag = resolved.name
            self.current_frame = resolved.start
            self.forward = True
        self.elapsed_us = 0

    def set_tag(self, info: AnimationInfo, tag: str | None) -> None:
        """Switch tag and restart at its entry point, exactly like start()."""
        self._seed(info, tag)

    def _resolve(self, info: AnimationInfo) -> tuple[Tag | None, bool]:
        """Return (active tag, ok). ok is False when the tag is missing from info."""
        if self.tag is None:
            return None, True
        tag = info.get_tag(self.tag)
        if tag is None:
            logger.error("Tag %s wasn't found.", self.tag)
            return None, False
        return tag, True

    def _bounds(self, info: AnimationInfo) -> tuple[int, int]:
        tag, _ok = self._resolve(info)
        if tag is None:
            return 0, info.frame_count - 1
        return tag.start, tag.end

    # -- stepping -----------------------------------------------------------

    def advance(self, info: AnimationInfo, dt: float | timedelta) -> bool:
        """Advance by ``dt``. Returns whether any frame step happened.

        ``dt`` is a timedelta or a number of milliseconds; either way it is
        rounded to whole microseconds. Handles ``dt`` spanning many frames;
        the result is the same as advancing in smaller increments adding up
        to ``dt``.
        """
        if not self.playing:
            return False

        tag, ok = self._resolve(info)
        if not ok:
            return False

        dt_us = to_microseconds(dt)
        if dt_us > 0:
            self.elapsed_us += dt_us

        if tag is None:
            lo, hi, direction = 0, info.frame_count - 1, AnimationDirection.FORWARD
        else:
            lo, hi, direction = tag.start, tag.end, tag.direction

        if direction is AnimationDirection.UNKNOWN:
            duration = info.frame_duration_us(self.current_frame)
            if self.elapsed_us >= duration:
                self.elapsed_us %= duration
                logger.warning(
                    "Unknown animation direction %d in tag '%s'; frame left unchanged",
                    tag.raw_direction, tag.name,
                )
            return False

        stepped = False
        cycle = None
        while self.elapsed_us >= info.frame_duration_us(self.current_frame):
            self.elapsed_us -= info.frame_duration_us(self.current_frame)
            self._step(lo, hi, direction)
            stepped = True

            # Whole cycles return to the same frame; skip them in one go.
            if cycle is None:
                cycle = _cycle_duration_us(info, lo, hi, direction)
            if self.elapsed_us >= cycle:
                self.elapsed_us %= cycle

        return stepped

    def _step(self, lo: int, hi: int, direction: AnimationDirection) -> None:
        """Apply one step of the direction policy within [lo, hi]."""
        current = self.current_frame

        if direction is AnimationDirection.FORWARD:
            nxt = current + 1
            self.current_frame = nxt if lo <= nxt <= hi else lo
            return

        if direction is AnimationDirection.REVERSE:
            nxt = current - 1
            self.current_frame = nxt if lo <= nxt <= hi else hi
            return

        # Ping-pong: bounce at the endpoints, visiting each once per reversal.
        if lo == hi:
            self.current_frame = lo
            return
        nxt = current + 1 if self.forward else current - 1
        if nxt > hi:
            # Sitting on the end while still heading forward, e.g. after set_frame.
            nxt = hi - 1
            self.forward = False
        elif nxt < lo:
            nxt = lo + 1
            self.forward = True
        if nxt >= hi:
            self.forward = False
        elif nxt <= lo:
            self.forward = True
        self.current_frame = nxt

    # -- queries ------------------------------------------------------------

    @property
    def elapsed(self) -> float:
        """Time spent on the current frame, in milliseconds."""
        return self.elapsed_us / 1000

    def current_frame_duration(self, info: AnimationInfo) -> float:
        """Duration of the current frame, in milliseconds."""
        return info.frame_duration(self.current_frame)

    def frame_finished(self, info: AnimationInfo, dt: float | timedelta) -> bool:
        """Whether advancing by ``dt`` would reach the end of the current frame.

        Does not modify the state.
        """
        remaining = info.frame_duration_us(self.current_frame) - self.elapsed_us
        return max(to_microseconds(dt), 0) >= remaining

    def tag_relative_frame(self, info: AnimationInfo) -> int:
        """Current frame relative to the start of the tag (0 without a tag)."""
        tag, _ok = self._resolve(info)
        if tag is None:
            return 0
        return max(0, self.current_frame - tag.start)

    def remaining_frames_in_tag(self, info: AnimationInfo) -> int | None:
        """Frames left after the current one before the tag's end, or None without a tag."""
        tag, _ok = self._resolve(info)
        if tag is None:
            return None
        return max(0, tag.end - self.current_frame)

    # -- direct control -----------------------------------------------------

    def set_frame(self, info: AnimationInfo, frame: int) -> None:
        """Jump to an absolute frame, clamped into the active range."""
        lo, hi = self._bounds(info)
        self.current_frame = min(max(frame, lo), hi)
        self.elapsed_us = 0

    def set_tag_frame(self, info: AnimationInfo, frame: int) -> None:
        """Jump to a frame relative to the tag start, clamped to the tag's end."""
        lo, _hi = self._bounds(info)
        self.set_frame(info, lo + max(frame, 0))

    def play(self) -> None:
        """Starts or resumes playing."""
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def toggle(self) -> None:
        """Toggles between playing and paused."""
        self.playing = not self.playing

    @property
    def is_playing(self) -> bool:
        return self.playing

    @property
    def is_paused(self) -> bool:
        return not self.playing

    # -- snapshots ----------------------------------------------------------

    def copy(self) -> AnimationState:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnimationState:
        return cls(
            tag=data.get("tag"),
            current_frame=int(data.get("current_frame", 0)),
            elapsed_us=int(data.get("elapsed_us", 0)),
            forward=bool(data.get("forward", True)),
            playing=bool(data.get("playing", True)),
        )


def _cycle_duration_us(info: AnimationInfo, lo: int, hi: int, direction: AnimationDirection) -> int:
    """Time one full playback cycle over [lo, hi] takes, in microseconds."""
    durations = info.frame_durations_us
    if direction in _PING_PONG and hi > lo:
        return durations[lo] + durations[hi] + 2 * sum(durations[lo + 1:hi])
    return sum(durations[lo:hi + 1])
