"""Shared pytest fixtures: a synthetic Aseprite file builder and info factory."""

from __future__ import annotations

import struct
import zlib
from typing import Callable, Sequence

import numpy as np
import pytest

from asechirp.assets.info import AnimationDirection, AnimationInfo, Tag

LAYER_VISIBLE = 1


def _string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<H", len(raw)) + raw


def _chunk(chunk_type: int, payload: bytes) -> bytes:
    return struct.pack("<IH", len(payload) + 6, chunk_type) + payload


def solid(width: int, height: int, rgba: Sequence[int]) -> np.ndarray:
    """A width x height RGBA image filled with one color."""
    return np.full((height, width, 4), rgba, dtype=np.uint8)


class AseBuilder:
    """Writes minimal but valid .aseprite files for tests."""

    def __init__(
        self,
        width: int = 2,
        height: int = 2,
        depth: int = 32,
        flags: int = 1,
        speed: int = 100,
        transparent_index: int = 0,
    ) -> None:
        self.width = width
        self.height = height
        self.depth = depth
        self.flags = flags
        self.speed = speed
        self.transparent_index = transparent_index
        self.frames: list[tuple[int, list[bytes]]] = []
        self._setup_chunks: list[bytes] = []
        self._layer_count = 0

    def add_frame(self, duration: int = 100) -> int:
        self.frames.append((duration, []))
        return len(self.frames) - 1

    def add_layer(
        self,
        name: str,
        flags: int = LAYER_VISIBLE,
        layer_type: int = 0,
        child_level: int = 0,
        blend_mode: int = 0,
        opacity: int = 255,
    ) -> int:
        payload = struct.pack(
            "<HHHHHHB3x", flags, layer_type, child_level, 0, 0, blend_mode, opacity,
        ) + _string(name)
        self._setup_chunks.append(_chunk(0x2004, payload))
        self._layer_count += 1
        return self._layer_count - 1

    def add_cel(
        self,
        frame: int,
        layer: int,
        pixels: np.ndarray | bytes,
        x: int = 0,
        y: int = 0,
        opacity: int = 255,
        compressed: bool = True,
        z_index: int = 0,
        size: tuple[int, int] | None = None,
    ) -> None:
        if isinstance(pixels, np.ndarray):
            height, width = pixels.shape[:2]
            raw = np.ascontiguousarray(pixels).tobytes()
        else:
            width, height = size
            raw = pixels
        cel_type = 2 if compressed else 0
        body = zlib.compress(raw) if compressed else raw
        payload = (
            struct.pack("<HhhBHh5x", layer, x, y, opacity, cel_type, z_index)
            + struct.pack("<HH", width, height)
            + body
        )
        self.add_chunk(frame, 0x2005, payload)

    def add_linked_cel(self, frame: int, layer: int, linked_frame: int) -> None:
        payload = struct.pack("<HhhBHh5x", layer, 0, 0, 255, 1, 0) + struct.pack("<H", linked_frame)
        self.add_chunk(frame, 0x2005, payload)

    def add_chunk(self, frame: int, chunk_type: int, payload: bytes) -> None:
        self.frames[frame][1].append(_chunk(chunk_type, payload))

    def add_tags(self, tags: Sequence[tuple[str, int, int, int]], repeat: int = 0) -> None:
        payload = struct.pack("<H8x", len(tags))
        for name, start, end, direction in tags:
            payload += struct.pack("<HHBH6x3sx", start, end, direction, repeat, b"\x00\x00\x00")
            payload += _string(name)
        self._setup_chunks.append(_chunk(0x2018, payload))

    def set_palette(self, colors: Sequence[tuple[int, int, int, int]]) -> None:
        payload = struct.pack("<III8x", len(colors), 0, len(colors) - 1)
        for r, g, b, a in colors:
            payload += struct.pack("<HBBBB", 0, r, g, b, a)
        self._setup_chunks.append(_chunk(0x2019, payload))

    def add_slice(
        self,
        name: str,
        keys: Sequence[tuple[int, int, int, int, int]],
        center: tuple[int, int, int, int] | None = None,
        pivot: tuple[int, int] | None = None,
    ) -> None:
        flags = (1 if center else 0) | (2 if pivot else 0)
        payload = struct.pack("<III", len(keys), flags, 0) + _string(name)
        for frame, x, y, w, h in keys:
            payload += struct.pack("<IiiII", frame, x, y, w, h)
            if center:
                payload += struct.pack("<iiII", *center)
            if pivot:
                payload += struct.pack("<ii", *pivot)
        self._setup_chunks.append(_chunk(0x2022, payload))

    def build(self) -> bytes:
        body = b""
        for index, (duration, chunks) in enumerate(self.frames):
            all_chunks = (self._setup_chunks if index == 0 else []) + chunks
            frame_body = b"".join(all_chunks)
            body += struct.pack(
                "<IHHH2xI",
                16 + len(frame_body), 0xF1FA, min(len(all_chunks), 0xFFFF),
                duration, len(all_chunks),
            ) + frame_body

        header = struct.pack(
            "<IHHHHHIHIIB3xHBBhhHH84x",
            128 + len(body), 0xA5E0, len(self.frames), self.width, self.height,
            self.depth, self.flags, self.speed, 0, 0, self.transparent_index,
            0, 1, 1, 0, 0, 16, 16,
        )
        return header + body


RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)


def animated_sprite_bytes() -> bytes:
    """4 frames of 2x2 (red, green, blue, red) with walk/back/bounce tags."""
    builder = AseBuilder()
    layer = builder.add_layer("body")
    for color in (RED, GREEN, BLUE, RED):
        frame = builder.add_frame(100)
        builder.add_cel(frame, layer, solid(2, 2, color))
    builder.add_tags([
        ("walk", 0, 1, 0),
        ("back", 1, 3, 1),
        ("bounce", 0, 3, 2),
    ])
    return builder.build()


@pytest.fixture
def ase_builder() -> type[AseBuilder]:
    return AseBuilder


@pytest.fixture
def sprite_bytes() -> bytes:
    return animated_sprite_bytes()


@pytest.fixture
def sprite_file(tmp_path, sprite_bytes):
    path = tmp_path / "hero.aseprite"
    path.write_bytes(sprite_bytes)
    return path


@pytest.fixture
def make_info() -> Callable[..., AnimationInfo]:
    """Factory: make_info([100, 100, ...], {"name": (start, end, direction)})."""

    def factory(durations, tags=None) -> AnimationInfo:
        built = {}
        for name, (start, end, direction) in (tags or {}).items():
            if isinstance(direction, AnimationDirection):
                raw = direction.value
            else:
                raw = direction
                direction = AnimationDirection.from_code(raw)
            built[name] = Tag(name=name, start=start, end=end, direction=direction, raw_direction=raw)
        return AnimationInfo(
            dimensions=(1, 1),
            frame_count=len(durations),
            frame_durations=tuple(durations),
            tags=built,
        )

    return factory
