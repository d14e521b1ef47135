"""Sprite file loading: reads bytes, decodes frames and packs them into an atlas."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from asechirp.assets.atlas import AtlasLayout, AtlasPacker, Rect
from asechirp.assets.decoder import decode
from asechirp.assets.info import AnimationInfo
from asechirp.config import AtlasConfig
from asechirp.constants import ASEPRITE_EXTENSIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class LoadedSprite:
    """A fully loaded sprite ready for playback.

    Only built once decoding and packing have both succeeded, so every
    player attached to it can start advancing immediately.
    """

    name: str
    info: AnimationInfo
    atlas: AtlasLayout

    @property
    def frame_count(self) -> int:
        return self.info.frame_count

    @property
    def nbytes(self) -> int:
        return self.atlas.nbytes

    def region_for(self, frame: int) -> Rect:
        return self.atlas.region_for(frame)


def is_aseprite_file(path: str | Path) -> bool:
    """Whether a path has one of the Aseprite file extensions."""
    return Path(path).suffix.lower() in ASEPRITE_EXTENSIONS


def load_sprite_bytes(
    data: bytes,
    name: str = "<memory>",
    atlas_config: AtlasConfig | None = None,
) -> LoadedSprite:
    """Decode and pack an in-memory Aseprite file.

    Raises:
        DecodeError: the bytes are not a usable Aseprite file.
        PackError: the frames do not fit in an atlas.
    """
    atlas_config = atlas_config or AtlasConfig()
    frames, info = decode(data)
    packer = AtlasPacker(
        max_size=atlas_config.max_size,
        initial_size=atlas_config.initial_size,
        padding=atlas_config.padding,
        deduplicate=atlas_config.deduplicate,
    )
    atlas = packer.pack(frames)
    return LoadedSprite(name=name, info=info, atlas=atlas)


def load_sprite(path: str | Path, atlas_config: AtlasConfig | None = None) -> LoadedSprite:
    """Load an Aseprite file from disk.

    Args:
        path: Path to a .ase or .aseprite file.
        atlas_config: Packing settings; defaults when omitted.

    Returns:
        LoadedSprite with the packed atlas and animation info.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sprite file not found: {path}")
    if not is_aseprite_file(path):
        logger.warning("%s does not have an Aseprite extension %s", path.name, ASEPRITE_EXTENSIONS)

    logger.info("Loading sprite: %s", path)
    sprite = load_sprite_bytes(path.read_bytes(), name=path.name, atlas_config=atlas_config)

    width, height = sprite.atlas.size
    logger.info(
        "Loaded %d frames (%dx%d), %d tags, atlas %dx%d (%d slots) from %s",
        sprite.info.frame_count, sprite.info.width, sprite.info.height,
        len(sprite.info.tags), width, height, sprite.atlas.slot_count, path.name,
    )
    return sprite
