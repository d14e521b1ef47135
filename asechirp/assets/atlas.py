"""Packs decoded frames into one atlas texture with a stable frame → region map."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from asechirp.assets.info import FrameImage
from asechirp.constants import (
    DEFAULT_ATLAS_INITIAL_SIZE,
    DEFAULT_ATLAS_MAX_SIZE,
    DEFAULT_ATLAS_PADDING,
)
from asechirp.errors import CapacityExceededError, EmptyInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rect:
    """Pixel rectangle inside the atlas texture."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "w": self.width, "h": self.height}


@dataclass(frozen=True, eq=False)
class AtlasLayout:
    """A packed texture plus the mapping from frame index to packed slot.

    ``regions`` holds one Rect per slot; ``frame_slots[frame]`` is the slot
    showing that frame. Identical frames may share a slot.
    """

    texture: np.ndarray
    regions: tuple[Rect, ...]
    frame_slots: tuple[int, ...]

    @property
    def size(self) -> tuple[int, int]:
        return self.texture.shape[1], self.texture.shape[0]

    @property
    def frame_count(self) -> int:
        return len(self.frame_slots)

    @property
    def slot_count(self) -> int:
        return len(self.regions)

    @property
    def nbytes(self) -> int:
        return self.texture.nbytes

    def slot_for(self, frame: int) -> int:
        return self.frame_slots[frame]

    def region_for(self, frame: int) -> Rect:
        return self.regions[self.frame_slots[frame]]

    def frame_pixels(self, frame: int) -> np.ndarray:
        """View of the texture showing a frame."""
        r = self.region_for(frame)
        return self.texture[r.y:r.bottom, r.x:r.right]


class AtlasPacker:
    """Shelf packer growing a texture from ``initial_size`` up to ``max_size``.

    Slots are placed tallest first, so physical order can differ from frame
    order; the frame → slot map keeps the two apart. Output is deterministic
    for identical input.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_ATLAS_MAX_SIZE,
        initial_size: int = DEFAULT_ATLAS_INITIAL_SIZE,
        padding: int = DEFAULT_ATLAS_PADDING,
        deduplicate: bool = True,
    ) -> None:
        self.max_size = max_size
        self.initial_size = max(1, min(initial_size, max_size))
        self.padding = max(0, padding)
        self.deduplicate = deduplicate

    def pack(self, frames: Sequence[FrameImage]) -> AtlasLayout:
        if not frames:
            raise EmptyInputError("No frames to pack")

        slot_images, frame_slots = self._assign_slots(frames)
        sizes = [(img.width, img.height) for img in slot_images]

        max_w = max(w for w, _ in sizes)
        max_h = max(h for _, h in sizes)
        if max_w > self.max_size or max_h > self.max_size:
            raise CapacityExceededError(
                f"Frame of {max_w}x{max_h} does not fit in a {self.max_size}px atlas",
                self.max_size,
            )

        width = self._grow_to(self.initial_size, max_w)
        height = self._grow_to(self.initial_size, max_h)
        order = sorted(range(len(sizes)), key=lambda s: (-sizes[s][1], -sizes[s][0], s))

        while True:
            positions = self._shelf_pack(order, sizes, width, height)
            if positions is not None:
                break
            if width <= height and width < self.max_size:
                width = min(width * 2, self.max_size)
            elif height < self.max_size:
                height = min(height * 2, self.max_size)
            elif width < self.max_size:
                width = min(width * 2, self.max_size)
            else:
                raise CapacityExceededError(
                    f"{len(sizes)} frames do not fit in a {self.max_size}x{self.max_size} atlas",
                    self.max_size,
                )

        texture = np.zeros((height, width, 4), dtype=np.uint8)
        regions = []
        for slot, image in enumerate(slot_images):
            x, y = positions[slot]
            texture[y:y + image.height, x:x + image.width] = image.pixels
            regions.append(Rect(x, y, image.width, image.height))

        logger.debug(
            "Packed %d frames into %d slots on a %dx%d atlas",
            len(frames), len(slot_images), width, height,
        )
        return AtlasLayout(texture=texture, regions=tuple(regions), frame_slots=tuple(frame_slots))

    def _assign_slots(self, frames: Sequence[FrameImage]) -> tuple[list[FrameImage], list[int]]:
        """Give each frame a slot, sharing slots between identical frames."""
        slot_images: list[FrameImage] = []
        frame_slots: list[int] = []
        seen: dict[tuple[int, int, bytes], list[int]] = {}

        for frame in frames:
            if not self.deduplicate:
                frame_slots.append(len(slot_images))
                slot_images.append(frame)
                continue

            digest = hashlib.blake2b(np.ascontiguousarray(frame.pixels).tobytes(), digest_size=16).digest()
            key = (frame.width, frame.height, digest)
            match = None
            for slot in seen.get(key, []):
                if np.array_equal(slot_images[slot].pixels, frame.pixels):
                    match = slot
                    break
            if match is None:
                match = len(slot_images)
                slot_images.append(frame)
                seen.setdefault(key, []).append(match)
            frame_slots.append(match)

        return slot_images, frame_slots

    def _grow_to(self, size: int, minimum: int) -> int:
        while size < minimum:
            size = min(size * 2, self.max_size)
        return size

    def _shelf_pack(
        self,
        order: list[int],
        sizes: list[tuple[int, int]],
        width: int,
        height: int,
    ) -> dict[int, tuple[int, int]] | None:
        """Place slots row by row; None if they do not fit."""
        positions: dict[int, tuple[int, int]] = {}
        x = y = shelf_height = 0
        for slot in order:
            w, h = sizes[slot]
            if x > 0 and x + w > width:
                y += shelf_height + self.padding
                x = 0
                shelf_height = 0
            if x + w > width or y + h > height:
                return None
            positions[slot] = (x, y)
            x += w + self.padding
            shelf_height = max(shelf_height, h)
        return positions


def pack(
    frames: Sequence[FrameImage],
    max_size: int = DEFAULT_ATLAS_MAX_SIZE,
    initial_size: int = DEFAULT_ATLAS_INITIAL_SIZE,
    padding: int = DEFAULT_ATLAS_PADDING,
    deduplicate: bool = True,
) -> AtlasLayout:
    """Pack frames into one texture. See AtlasPacker."""
    packer = AtlasPacker(
        max_size=max_size,
        initial_size=initial_size,
        padding=padding,
        deduplicate=deduplicate,
    )
    return packer.pack(frames)
