"""Host binding: drives an AnimationState against a loaded sprite's atlas."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Iterator

from asechirp.assets.atlas import Rect
from asechirp.assets.info import to_microseconds
from asechirp.assets.loader import LoadedSprite
from asechirp.constants import (
    DEFAULT_SPEED_MULTIPLIER,
    MAX_SPEED_MULTIPLIER,
    MIN_SPEED_MULTIPLIER,
)
from asechirp.state.animation import AnimationState

logger = logging.getLogger(__name__)


class SpritePlayer:
    """Plays one animated instance of a sprite.

    A player can be created before its sprite has finished loading: it
    remembers the requested tag and play flag, and only builds its
    AnimationState once attach() hands it the loaded sprite. Until then
    update() does nothing.
    """

    def __init__(
        self,
        tag: str | None = None,
        speed: float = DEFAULT_SPEED_MULTIPLIER,
        playing: bool = True,
    ) -> None:
        self._requested_tag = tag
        self._requested_playing = playing
        self._speed = DEFAULT_SPEED_MULTIPLIER
        self.speed = speed
        self._sprite: LoadedSprite | None = None
        self._state: AnimationState | None = None
        self._on_frame_change: list[Callable[[SpritePlayer, int], None]] = []

    @property
    def sprite(self) -> LoadedSprite | None:
        return self._sprite

    @property
    def state(self) -> AnimationState | None:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is not None

    @property
    def speed(self) -> float:
        return self._speed

    @speed.setter
    def speed(self, value: float) -> None:
        self._speed = min(max(value, MIN_SPEED_MULTIPLIER), MAX_SPEED_MULTIPLIER)

    def on_frame_change(self, callback: Callable[[SpritePlayer, int], None]) -> None:
        """Register a callback receiving (player, new_frame) on every visible change."""
        self._on_frame_change.append(callback)

    def attach(self, sprite: LoadedSprite) -> None:
        """Bind the loaded sprite and start playback at the requested tag."""
        self._sprite = sprite
        self._state = AnimationState.start(
            sprite.info, self._requested_tag, playing=self._requested_playing,
        )
        logger.debug(
            "Attached %s (tag=%s, frame=%d)",
            sprite.name, self._state.tag, self._state.current_frame,
        )
        self._notify()

    def detach(self) -> None:
        """Drop the sprite, remembering the current tag and play flag."""
        if self._state is not None:
            self._requested_tag = self._state.tag
            self._requested_playing = self._state.playing
        self._sprite = None
        self._state = None

    def update(self, dt: float | timedelta) -> bool:
        """Advance by ``dt`` (ms or timedelta) scaled by speed. Returns whether the frame changed."""
        if self._state is None or self._sprite is None:
            return False
        before = self._state.current_frame
        stepped = self._state.advance(self._sprite.info, self._scaled(dt))
        if stepped and self._state.current_frame != before:
            self._notify()
            return True
        return False

    def _scaled(self, dt: float | timedelta) -> timedelta:
        return timedelta(microseconds=round(to_microseconds(dt) * self._speed))

    def _notify(self) -> None:
        if self._state is None:
            return
        for cb in self._on_frame_change:
            cb(self, self._state.current_frame)

    # -- render binding -----------------------------------------------------

    @property
    def current_frame(self) -> int | None:
        return self._state.current_frame if self._state is not None else None

    @property
    def atlas_index(self) -> int | None:
        """Atlas slot showing the current frame."""
        if self._state is None or self._sprite is None:
            return None
        return self._sprite.atlas.slot_for(self._state.current_frame)

    @property
    def region(self) -> Rect | None:
        """Atlas rectangle showing the current frame."""
        if self._state is None or self._sprite is None:
            return None
        return self._sprite.atlas.region_for(self._state.current_frame)

    # -- control ------------------------------------------------------------

    @property
    def tag(self) -> str | None:
        return self._state.tag if self._state is not None else self._requested_tag

    def set_tag(self, tag: str | None) -> None:
        if self._state is None or self._sprite is None:
            self._requested_tag = tag
            return
        self._state.set_tag(self._sprite.info, tag)
        self._notify()

    def set_frame(self, frame: int) -> None:
        if self._state is None or self._sprite is None:
            logger.debug("set_frame(%d) ignored: sprite not loaded yet", frame)
            return
        self._state.set_frame(self._sprite.info, frame)
        self._notify()

    def set_tag_frame(self, frame: int) -> None:
        if self._state is None or self._sprite is None:
            logger.debug("set_tag_frame(%d) ignored: sprite not loaded yet", frame)
            return
        self._state.set_tag_frame(self._sprite.info, frame)
        self._notify()

    def play(self) -> None:
        if self._state is None:
            self._requested_playing = True
        else:
            self._state.play()

    def pause(self) -> None:
        if self._state is None:
            self._requested_playing = False
        else:
            self._state.pause()

    def toggle(self) -> None:
        if self._state is None:
            self._requested_playing = not self._requested_playing
        else:
            self._state.toggle()

    @property
    def is_playing(self) -> bool:
        if self._state is None:
            return self._requested_playing
        return self._state.is_playing

    def frame_finished(self, dt: float | timedelta) -> bool:
        """Whether the next update(dt) will finish the current frame."""
        if self._state is None or self._sprite is None:
            return False
        return self._state.frame_finished(self._sprite.info, self._scaled(dt))

    def remaining_frames_in_tag(self) -> int | None:
        if self._state is None or self._sprite is None:
            return None
        return self._state.remaining_frames_in_tag(self._sprite.info)

    def tag_relative_frame(self) -> int:
        if self._state is None or self._sprite is None:
            return 0
        return self._state.tag_relative_frame(self._sprite.info)


class PlayerGroup:
    """Named collection of players updated together each tick.

    Each player exclusively owns its state; sprites (and their info) may be
    shared between players.
    """

    def __init__(self) -> None:
        self._players: dict[str, SpritePlayer] = {}

    def add(self, name: str, player: SpritePlayer) -> SpritePlayer:
        if name in self._players:
            logger.warning("Replacing player '%s'", name)
        self._players[name] = player
        return player

    def remove(self, name: str) -> SpritePlayer | None:
        return self._players.pop(name, None)

    def get(self, name: str) -> SpritePlayer | None:
        return self._players.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._players.keys())

    def __len__(self) -> int:
        return len(self._players)

    def __iter__(self) -> Iterator[tuple[str, SpritePlayer]]:
        return iter(self._players.items())

    def update(self, dt: float | timedelta) -> list[str]:
        """Advance every ready player. Returns the names whose frame changed."""
        changed = []
        pending = 0
        for name, player in self._players.items():
            if not player.is_ready:
                pending += 1
                continue
            if player.update(dt):
                changed.append(name)
        if pending:
            logger.debug("%d player(s) still waiting for their sprite", pending)
        return changed
