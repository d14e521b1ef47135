"""PNG / APNG export through PyAV, and the JSON index written beside an atlas."""

from __future__ import annotations

import logging
from fractions import Fraction
from pathlib import Path
from typing import Any, Sequence

import av
import numpy as np

from asechirp import __version__
from asechirp.assets.loader import LoadedSprite

logger = logging.getLogger(__name__)

_MS = Fraction(1, 1000)


def write_png(path: str | Path, rgba: np.ndarray) -> None:
    """Write an (H, W, 4) uint8 RGBA array as a PNG image."""
    height, width = rgba.shape[:2]
    container = av.open(str(path), mode="w", format="image2", options={"update": "1"})
    try:
        stream = container.add_stream("png")
        stream.width = width
        stream.height = height
        stream.pix_fmt = "rgba"
        frame = av.VideoFrame.from_ndarray(np.ascontiguousarray(rgba), format="rgba")
        for packet in stream.encode(frame):
            container.mux(packet)
        for packet in stream.encode():
            container.mux(packet)
    finally:
        container.close()
    logger.info("Wrote %dx%d PNG to %s", width, height, path)


def write_apng(
    path: str | Path,
    frames: Sequence[np.ndarray],
    durations_ms: Sequence[float],
    loop: int = 0,
) -> None:
    """Write RGBA frames with per-frame durations as an animated PNG.

    Args:
        path: Output file.
        frames: Equally sized (H, W, 4) uint8 arrays.
        durations_ms: Display duration of each frame.
        loop: Number of plays, 0 = forever.
    """
    if not frames:
        raise ValueError("No frames to write")
    if len(frames) != len(durations_ms):
        raise ValueError(f"{len(frames)} frames but {len(durations_ms)} durations")

    height, width = frames[0].shape[:2]
    final_delay = durations_ms[-1] / 1000.0
    container = av.open(
        str(path), mode="w", format="apng",
        options={"plays": str(loop), "final_delay": f"{final_delay:.3f}"},
    )
    try:
        stream = container.add_stream("apng", rate=1000)
        stream.width = width
        stream.height = height
        stream.pix_fmt = "rgba"
        stream.codec_context.time_base = _MS

        pts = 0
        for pixels, duration in zip(frames, durations_ms):
            frame = av.VideoFrame.from_ndarray(np.ascontiguousarray(pixels), format="rgba")
            frame.pts = pts
            frame.time_base = _MS
            for packet in stream.encode(frame):
                container.mux(packet)
            pts += max(1, int(round(duration)))
        for packet in stream.encode():
            container.mux(packet)
    finally:
        container.close()
    logger.info("Wrote %d-frame APNG (%dx%d) to %s", len(frames), width, height, path)


def atlas_index(sprite: LoadedSprite, image_name: str = "") -> dict[str, Any]:
    """Describe a packed sprite: frame rects, durations, tags and slices."""
    info = sprite.info
    atlas = sprite.atlas
    width, height = atlas.size
    return {
        "frames": [
            {
                "frame": index,
                "slot": atlas.slot_for(index),
                "rect": atlas.region_for(index).to_dict(),
                "duration": info.frame_duration(index),
            }
            for index in range(info.frame_count)
        ],
        "tags": [
            {
                "name": tag.name,
                "from": tag.start,
                "to": tag.end,
                "direction": tag.direction.name.lower(),
                "raw_direction": tag.raw_direction,
                "repeat": tag.repeat,
            }
            for tag in info.tags.values()
        ],
        "slices": [
            {
                "name": name,
                "keys": [
                    {
                        "frame": key.frame,
                        "bounds": {"x": key.x, "y": key.y, "w": key.width, "h": key.height},
                        "center": list(key.center) if key.center else None,
                        "pivot": list(key.pivot) if key.pivot else None,
                    }
                    for key in keys
                ],
            }
            for name, keys in info.slices.items()
        ],
        "meta": {
            "app": "asechirp",
            "version": __version__,
            "source": sprite.name,
            "image": image_name,
            "size": {"w": width, "h": height},
            "frame_size": {"w": info.width, "h": info.height},
        },
    }
