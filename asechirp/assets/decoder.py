"""Aseprite decoder: flattens every frame of an .ase/.aseprite file into RGBA."""

from __future__ import annotations

import logging
import struct
import zlib
from dataclasses import dataclass
from typing import Iterator

import numpy as np

from asechirp.assets.info import (
    AnimationDirection,
    AnimationInfo,
    FrameImage,
    Palette,
    SliceKey,
    Tag,
)
from asechirp.constants import (
    FALLBACK_FRAME_DURATION_MS,
    FILE_MAGIC,
    FRAME_MAGIC,
    HEADER_SIZE,
)
from asechirp.errors import MalformedError, UnsupportedError

logger = logging.getLogger(__name__)

_HEADER = struct.Struct("<IHHHHHIHIIB3xHBBhhHH84x")
_FRAME_HEADER = struct.Struct("<IHHH2xI")

# Chunk types
CHUNK_OLD_PALETTE = 0x0004
CHUNK_OLD_PALETTE_64 = 0x0011
CHUNK_LAYER = 0x2004
CHUNK_CEL = 0x2005
CHUNK_TAGS = 0x2018
CHUNK_PALETTE = 0x2019
CHUNK_SLICE = 0x2022

# Layer flags / types
LAYER_VISIBLE = 1
LAYER_BACKGROUND = 8
LAYER_REFERENCE = 64
LAYER_TYPE_GROUP = 1
LAYER_TYPE_TILEMAP = 2

# Cel types
CEL_RAW = 0
CEL_LINKED = 1
CEL_COMPRESSED = 2
CEL_COMPRESSED_TILEMAP = 3

HEADER_FLAG_LAYER_OPACITY = 1

BLEND_NORMAL = 0
_BLEND_NAMES = {
    0: "normal", 1: "multiply", 2: "screen", 3: "overlay", 4: "darken",
    5: "lighten", 6: "color dodge", 7: "color burn", 8: "hard light",
    9: "soft light", 10: "difference", 11: "exclusion", 12: "hue",
    13: "saturation", 14: "color", 15: "luminosity", 16: "addition",
    17: "subtract", 18: "divide",
}


class _Reader:
    """Bounded little-endian reader over a byte buffer."""

    def __init__(self, data: bytes | memoryview, offset: int = 0, end: int | None = None) -> None:
        self._data = memoryview(data)
        self.offset = offset
        self.end = len(self._data) if end is None else min(end, len(self._data))

    @property
    def remaining(self) -> int:
        return self.end - self.offset

    def read(self, size: int) -> bytes:
        if size < 0 or self.offset + size > self.end:
            raise MalformedError(
                f"Unexpected end of data at offset {self.offset} (wanted {size} bytes)"
            )
        chunk = bytes(self._data[self.offset:self.offset + size])
        self.offset += size
        return chunk

    def skip(self, size: int) -> None:
        self.read(size)

    def unpack(self, fmt: str) -> tuple:
        s = struct.Struct(fmt)
        return s.unpack(self.read(s.size))

    def u8(self) -> int:
        return self.unpack("<B")[0]

    def u16(self) -> int:
        return self.unpack("<H")[0]

    def i16(self) -> int:
        return self.unpack("<h")[0]

    def u32(self) -> int:
        return self.unpack("<I")[0]

    def i32(self) -> int:
        return self.unpack("<i")[0]

    def string(self) -> str:
        length = self.u16()
        return self.read(length).decode("utf-8", errors="replace")


@dataclass
class _Header:
    frame_count: int
    width: int
    height: int
    color_depth: int
    flags: int
    speed: int
    transparent_index: int
    color_count: int


@dataclass
class _Layer:
    name: str
    flags: int
    layer_type: int
    child_level: int
    blend_mode: int
    opacity: int
    visible: bool = True  # effective, after parent groups

    @property
    def is_background(self) -> bool:
        return bool(self.flags & LAYER_BACKGROUND)

    @property
    def composited(self) -> bool:
        return (
            self.visible
            and self.layer_type != LAYER_TYPE_GROUP
            and not self.flags & LAYER_REFERENCE
        )


@dataclass
class _Cel:
    layer: int
    x: int
    y: int
    opacity: int
    z_index: int
    cel_type: int
    width: int = 0
    height: int = 0
    data: bytes = b""
    linked_frame: int = -1


class AsepriteDecoder:
    """Decodes an in-memory Aseprite file frame-by-frame into RGBA arrays.

    The decoder never touches the file system; hand it the file's bytes.
    Call open() to parse the structure and get the AnimationInfo, then
    decode_all_frames() or decode_frame() for pixels.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._header: _Header | None = None
        self._info: AnimationInfo | None = None
        self._layers: list[_Layer] = []
        self._cels: dict[tuple[int, int], _Cel] = {}
        self._palette: Palette | None = None
        self._palette_table: np.ndarray | None = None
        self._pixel_cache: dict[tuple[int, int], np.ndarray] = {}
        self._warned_blend_modes: set[int] = set()

    @property
    def info(self) -> AnimationInfo | None:
        return self._info

    def open(self) -> AnimationInfo:
        """Parse the header and every frame's chunks."""
        reader = _Reader(self._data)
        header = self._read_header(reader)
        self._header = header

        durations: list[float] = []
        tags: dict[str, Tag] = {}
        slices: dict[str, tuple[SliceKey, ...]] = {}
        new_palette: Palette | None = None
        old_palette: Palette | None = None

        offset = HEADER_SIZE
        for frame_index in range(header.frame_count):
            frame_reader = _Reader(self._data, offset)
            frame_bytes, magic, old_chunks, duration, new_chunks = frame_reader.unpack(
                _FRAME_HEADER.format
            )
            if magic != FRAME_MAGIC:
                raise MalformedError(
                    f"Bad frame magic 0x{magic:04X} in frame {frame_index} at offset {offset}"
                )
            if frame_bytes < _FRAME_HEADER.size or offset + frame_bytes > len(self._data):
                raise MalformedError(f"Frame {frame_index} is truncated")
            frame_reader.end = offset + frame_bytes

            if duration == 0:
                duration = header.speed or FALLBACK_FRAME_DURATION_MS
            durations.append(float(duration))

            chunk_count = new_chunks if new_chunks else old_chunks
            for _ in range(chunk_count):
                chunk_start = frame_reader.offset
                chunk_size = frame_reader.u32()
                chunk_type = frame_reader.u16()
                if chunk_size < 6:
                    raise MalformedError(f"Chunk at offset {chunk_start} has invalid size {chunk_size}")
                chunk_end = chunk_start + chunk_size
                if chunk_end > frame_reader.end:
                    raise MalformedError(f"Chunk 0x{chunk_type:04X} in frame {frame_index} is truncated")
                chunk = _Reader(self._data, frame_reader.offset, chunk_end)

                if chunk_type == CHUNK_LAYER:
                    self._layers.append(self._read_layer(chunk, header))
                elif chunk_type == CHUNK_CEL:
                    cel = self._read_cel(chunk)
                    self._cels[(frame_index, cel.layer)] = cel
                elif chunk_type == CHUNK_TAGS:
                    for tag in self._read_tags(chunk):
                        tags[tag.name] = tag
                elif chunk_type == CHUNK_PALETTE:
                    new_palette = self._read_palette(chunk, new_palette)
                elif chunk_type in (CHUNK_OLD_PALETTE, CHUNK_OLD_PALETTE_64):
                    old_palette = self._read_old_palette(
                        chunk, old_palette, six_bit=chunk_type == CHUNK_OLD_PALETTE_64
                    )
                elif chunk_type == CHUNK_SLICE:
                    name, keys = self._read_slice(chunk)
                    slices[name] = keys
                else:
                    logger.debug("Skipping chunk 0x%04X in frame %d", chunk_type, frame_index)

                frame_reader.offset = chunk_end

            offset += frame_bytes

        self._resolve_layer_visibility()
        self._palette = new_palette if new_palette is not None else old_palette
        if self._palette is not None:
            self._palette_table = self._palette.as_array(256)
        else:
            self._palette_table = np.zeros((256, 4), dtype=np.uint8)

        self._info = AnimationInfo(
            dimensions=(header.width, header.height),
            frame_count=header.frame_count,
            frame_durations=tuple(durations),
            tags=tags,
            slices=slices,
            palette=self._palette,
            transparent_index=header.transparent_index,
        )

        logger.debug(
            "Parsed sprite %dx%d: %d frames, %d layers, %d tags, %d slices",
            header.width, header.height, header.frame_count,
            len(self._layers), len(tags), len(slices),
        )
        return self._info

    # -- header / chunk parsing ---------------------------------------------

    @staticmethod
    def _read_header(reader: _Reader) -> _Header:
        if reader.remaining < HEADER_SIZE:
            raise MalformedError(f"File too short for header ({reader.remaining} bytes)")
        (
            file_size, magic, frames, width, height, depth, flags, speed,
            _reserved1, _reserved2, transparent_index, color_count,
            _pixel_w, _pixel_h, _grid_x, _grid_y, _grid_w, _grid_h,
        ) = reader.unpack(_HEADER.format)

        if magic != FILE_MAGIC:
            raise MalformedError(f"Not an Aseprite file (magic 0x{magic:04X})")
        if file_size > reader.end:
            raise MalformedError(f"File is truncated: header says {file_size} bytes, got {reader.end}")
        if frames == 0:
            raise MalformedError("Sprite has no frames")
        if width == 0 or height == 0:
            raise MalformedError(f"Invalid sprite size {width}x{height}")
        if depth not in (32, 16, 8):
            raise UnsupportedError(f"Unsupported color depth {depth}")

        return _Header(
            frame_count=frames,
            width=width,
            height=height,
            color_depth=depth,
            flags=flags,
            speed=speed,
            transparent_index=transparent_index,
            color_count=color_count or 256,
        )

    @staticmethod
    def _read_layer(chunk: _Reader, header: _Header) -> _Layer:
        flags, layer_type, child_level, _w, _h, blend_mode, opacity = chunk.unpack("<HHHHHHB")
        chunk.skip(3)
        name = chunk.string()
        if not header.flags & HEADER_FLAG_LAYER_OPACITY:
            opacity = 255
        return _Layer(
            name=name,
            flags=flags,
            layer_type=layer_type,
            child_level=child_level,
            blend_mode=blend_mode,
            opacity=opacity,
        )

    @staticmethod
    def _read_cel(chunk: _Reader) -> _Cel:
        layer, x, y, opacity, cel_type, z_index = chunk.unpack("<HhhBHh")
        chunk.skip(5)
        cel = _Cel(layer=layer, x=x, y=y, opacity=opacity, z_index=z_index, cel_type=cel_type)

        if cel_type == CEL_RAW:
            cel.width, cel.height = chunk.unpack("<HH")
            cel.data = chunk.read(chunk.remaining)
        elif cel_type == CEL_LINKED:
            cel.linked_frame = chunk.u16()
        elif cel_type == CEL_COMPRESSED:
            cel.width, cel.height = chunk.unpack("<HH")
            cel.data = chunk.read(chunk.remaining)
        elif cel_type == CEL_COMPRESSED_TILEMAP:
            raise UnsupportedError("Tilemap cels are not supported")
        else:
            raise UnsupportedError(f"Unknown cel type {cel_type}")
        return cel

    @staticmethod
    def _read_tags(chunk: _Reader) -> list[Tag]:
        count = chunk.u16()
        chunk.skip(8)
        tags = []
        for _ in range(count):
            start, end, direction, repeat = chunk.unpack("<HHBH")
            chunk.skip(6 + 3 + 1)  # reserved, deprecated RGB, extra byte
            name = chunk.string()
            if start > end:
                raise MalformedError(f"Tag '{name}' has start {start} after end {end}")
            tags.append(Tag(
                name=name,
                start=start,
                end=end,
                direction=AnimationDirection.from_code(direction),
                raw_direction=direction,
                repeat=repeat,
            ))
        return tags

    @staticmethod
    def _read_palette(chunk: _Reader, previous: Palette | None) -> Palette:
        size, first, last = chunk.unpack("<III")
        chunk.skip(8)
        if last < first or size > 65536:
            raise MalformedError(f"Invalid palette range [{first}, {last}] for size {size}")
        colors = list(previous.colors) if previous is not None else []
        colors.extend([(0, 0, 0, 0)] * (size - len(colors)))
        del colors[size:]
        for index in range(first, last + 1):
            flags, r, g, b, a = chunk.unpack("<HBBBB")
            if flags & 1:
                chunk.string()
            if index < size:
                colors[index] = (r, g, b, a)
        return Palette(colors=tuple(colors))

    @staticmethod
    def _read_old_palette(chunk: _Reader, previous: Palette | None, six_bit: bool) -> Palette:
        colors = list(previous.colors) if previous is not None else [(0, 0, 0, 0)] * 256
        packets = chunk.u16()
        index = 0
        for _ in range(packets):
            index += chunk.u8()
            count = chunk.u8() or 256
            for _ in range(count):
                r, g, b = chunk.unpack("<BBB")
                if six_bit:
                    r, g, b = (r * 255 // 63, g * 255 // 63, b * 255 // 63)
                if index < len(colors):
                    colors[index] = (r, g, b, 255)
                index += 1
        return Palette(colors=tuple(colors))

    @staticmethod
    def _read_slice(chunk: _Reader) -> tuple[str, tuple[SliceKey, ...]]:
        key_count, flags, _reserved = chunk.unpack("<III")
        name = chunk.string()
        keys = []
        for _ in range(key_count):
            frame, x, y, width, height = chunk.unpack("<IiiII")
            center = chunk.unpack("<iiII") if flags & 1 else None
            pivot = chunk.unpack("<ii") if flags & 2 else None
            keys.append(SliceKey(
                frame=frame, x=x, y=y, width=width, height=height,
                center=center, pivot=pivot,
            ))
        return name, tuple(keys)

    def _resolve_layer_visibility(self) -> None:
        """Hide layers nested under an invisible group."""
        parents: list[bool] = []
        for layer in self._layers:
            del parents[layer.child_level:]
            layer.visible = all(parents) and bool(layer.flags & LAYER_VISIBLE)
            parents.append(layer.visible)

    # -- pixel decoding -------------------------------------------------------

    def decode_frame(self, index: int) -> FrameImage:
        """Composite every visible layer of a frame into one RGBA image."""
        if self._info is None or self._header is None:
            raise RuntimeError("Decoder not opened. Call open() first.")
        if not 0 <= index < self._info.frame_count:
            raise IndexError(f"Frame {index} out of range (0..{self._info.frame_count - 1})")

        width, height = self._info.dimensions
        canvas = np.zeros((height, width, 4), dtype=np.float32)

        entries = []
        for layer_index, layer in enumerate(self._layers):
            if not layer.composited:
                continue
            cel = self._cels.get((index, layer_index))
            if cel is None:
                continue
            entries.append((layer_index + cel.z_index, cel.z_index, layer_index, cel))
        entries.sort(key=lambda e: (e[0], e[1]))

        for _order, _z, layer_index, cel in entries:
            layer = self._layers[layer_index]
            source, pixels = self._cel_pixels(index, layer_index, cel)
            opacity = (source.opacity / 255.0) * (layer.opacity / 255.0)
            if opacity <= 0.0:
                continue
            _composite(canvas, pixels, source.x, source.y, opacity, self._blend_mode(layer))

        rgba = np.clip(canvas * 255.0 + 0.5, 0, 255).astype(np.uint8)
        return FrameImage(width=width, height=height, pixels=rgba)

    def decode_all_frames(self) -> list[FrameImage]:
        """Decode every frame, in order."""
        if self._info is None:
            raise RuntimeError("Decoder not opened. Call open() first.")
        return [self.decode_frame(i) for i in range(self._info.frame_count)]

    def iter_frames(self) -> Iterator[tuple[int, FrameImage]]:
        """Yield (frame_index, FrameImage) tuples."""
        if self._info is None:
            raise RuntimeError("Decoder not opened. Call open() first.")
        for i in range(self._info.frame_count):
            yield i, self.decode_frame(i)

    def _cel_pixels(self, frame: int, layer_index: int, cel: _Cel) -> tuple[_Cel, np.ndarray]:
        """Resolve linked cels and return (source cel, RGBA uint8 pixels)."""
        source_frame = frame
        seen = {frame}
        while cel.cel_type == CEL_LINKED:
            source_frame = cel.linked_frame
            linked = self._cels.get((source_frame, layer_index))
            if linked is None or source_frame in seen:
                raise MalformedError(
                    f"Cel in frame {frame}, layer {layer_index} links to missing frame {source_frame}"
                )
            seen.add(source_frame)
            cel = linked

        key = (source_frame, layer_index)
        pixels = self._pixel_cache.get(key)
        if pixels is None:
            raw = cel.data
            if cel.cel_type == CEL_COMPRESSED:
                try:
                    raw = zlib.decompress(raw)
                except zlib.error as e:
                    raise MalformedError(
                        f"Corrupt compressed cel in frame {source_frame}, layer {layer_index}: {e}"
                    ) from e
            pixels = self._to_rgba(raw, cel.width, cel.height, self._layers[layer_index].is_background)
            self._pixel_cache[key] = pixels
        return cel, pixels

    def _to_rgba(self, raw: bytes, width: int, height: int, background: bool) -> np.ndarray:
        if self._header is None or self._palette_table is None:
            raise RuntimeError("Decoder not opened. Call open() first.")
        depth = self._header.color_depth
        bpp = depth // 8
        expected = width * height * bpp
        if len(raw) < expected:
            raise MalformedError(f"Cel pixel data too short: {len(raw)} < {expected} bytes")
        buf = np.frombuffer(raw, dtype=np.uint8, count=expected)

        if depth == 32:
            return buf.reshape(height, width, 4)

        if depth == 16:
            gray_alpha = buf.reshape(height, width, 2)
            rgba = np.empty((height, width, 4), dtype=np.uint8)
            rgba[..., 0:3] = gray_alpha[..., 0:1]
            rgba[..., 3] = gray_alpha[..., 1]
            return rgba

        indices = buf.reshape(height, width)
        rgba = self._palette_table[indices]
        if not background:
            rgba[indices == self._header.transparent_index] = 0
        return rgba

    def _blend_mode(self, layer: _Layer) -> int:
        mode = layer.blend_mode
        if mode in _BLEND_FUNCS or mode == BLEND_NORMAL:
            return mode
        if mode not in self._warned_blend_modes:
            self._warned_blend_modes.add(mode)
            logger.warning(
                "Blend mode '%s' on layer '%s' is not supported; compositing as normal",
                _BLEND_NAMES.get(mode, str(mode)), layer.name,
            )
        return BLEND_NORMAL


# -- compositing ----------------------------------------------------------------

def _hard_light(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    return np.where(cs <= 0.5, cb * 2.0 * cs, cb + (2.0 * cs - 1.0) - cb * (2.0 * cs - 1.0))


def _soft_light(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    d = np.where(cb <= 0.25, ((16.0 * cb - 12.0) * cb + 4.0) * cb, np.sqrt(cb))
    return np.where(
        cs <= 0.5,
        cb - (1.0 - 2.0 * cs) * cb * (1.0 - cb),
        cb + (2.0 * cs - 1.0) * (d - cb),
    )


def _color_dodge(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        dodged = np.minimum(1.0, cb / (1.0 - cs))
    return np.where(cb == 0.0, 0.0, np.where(cs >= 1.0, 1.0, dodged))


def _color_burn(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        burned = 1.0 - np.minimum(1.0, (1.0 - cb) / cs)
    return np.where(cb >= 1.0, 1.0, np.where(cs <= 0.0, 0.0, burned))


def _divide(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        divided = np.minimum(1.0, cb / cs)
    return np.where(cs <= 0.0, np.where(cb > 0.0, 1.0, 0.0), divided)


_BLEND_FUNCS = {
    1: lambda cb, cs: cb * cs,
    2: lambda cb, cs: cb + cs - cb * cs,
    3: lambda cb, cs: _hard_light(cs, cb),
    4: np.minimum,
    5: np.maximum,
    6: _color_dodge,
    7: _color_burn,
    8: _hard_light,
    9: _soft_light,
    10: lambda cb, cs: np.abs(cb - cs),
    11: lambda cb, cs: cb + cs - 2.0 * cb * cs,
    16: lambda cb, cs: np.minimum(1.0, cb + cs),
    17: lambda cb, cs: np.maximum(0.0, cb - cs),
    18: _divide,
}


def _composite(
    canvas: np.ndarray,
    pixels: np.ndarray,
    x: int,
    y: int,
    opacity: float,
    blend_mode: int,
) -> None:
    """Draw straight-alpha RGBA ``pixels`` over ``canvas`` (float, 0..1) at (x, y)."""
    canvas_h, canvas_w = canvas.shape[:2]
    src_h, src_w = pixels.shape[:2]
    x0, y0 = max(x, 0), max(y, 0)
    x1, y1 = min(x + src_w, canvas_w), min(y + src_h, canvas_h)
    if x0 >= x1 or y0 >= y1:
        return

    src = pixels[y0 - y:y1 - y, x0 - x:x1 - x].astype(np.float32) / 255.0
    dst = canvas[y0:y1, x0:x1]

    src_a = src[..., 3:4] * opacity
    dst_a = dst[..., 3:4]
    src_rgb = src[..., :3]
    dst_rgb = dst[..., :3]

    blend = _BLEND_FUNCS.get(blend_mode)
    if blend is not None:
        src_rgb = (1.0 - dst_a) * src_rgb + dst_a * np.clip(blend(dst_rgb, src_rgb), 0.0, 1.0)

    out_a = src_a + dst_a * (1.0 - src_a)
    premultiplied = src_rgb * src_a + dst_rgb * dst_a * (1.0 - src_a)
    out_rgb = np.zeros_like(premultiplied)
    np.divide(premultiplied, out_a, out=out_rgb, where=out_a > 0.0)

    dst[..., :3] = out_rgb
    dst[..., 3:4] = out_a


def decode(data: bytes) -> tuple[list[FrameImage], AnimationInfo]:
    """Decode an Aseprite file's bytes into frame images and animation info."""
    decoder = AsepriteDecoder(data)
    info = decoder.open()
    frames = decoder.decode_all_frames()
    logger.debug("Decoded %d frames (%dx%d)", len(frames), info.width, info.height)
    return frames, info
