"""Shared store of loaded sprites, so every player of one file uses one asset."""

from __future__ import annotations

import logging
from collections import OrderedDict
from pathlib import Path

from asechirp.assets.loader import LoadedSprite, load_sprite
from asechirp.config import AtlasConfig
from asechirp.constants import DEFAULT_CACHE_MAX_MB

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class SpriteCache:
    """Loaded sprites keyed by path, bounded by the size of their atlas textures.

    A new sprite pushes out the least recently used ones until the total
    fits ``max_mb`` again. The newest sprite is always kept, even when it is
    bigger than the whole budget. Players holding an evicted sprite keep
    their reference; the next get_or_load() of that path loads it again.
    """

    def __init__(
        self,
        max_mb: int = DEFAULT_CACHE_MAX_MB,
        atlas_config: AtlasConfig | None = None,
    ) -> None:
        self._budget = max_mb * _MB
        self._atlas_config = atlas_config or AtlasConfig()
        self._sprites: OrderedDict[str, LoadedSprite] = OrderedDict()
        self._used = 0

    @property
    def current_mb(self) -> float:
        return self._used / _MB

    @property
    def max_mb(self) -> int:
        return self._budget // _MB

    @property
    def entry_count(self) -> int:
        return len(self._sprites)

    def __contains__(self, path: str | Path) -> bool:
        return str(path) in self._sprites

    def get(self, path: str | Path) -> LoadedSprite | None:
        """Return the cached sprite for ``path`` (marking it recently used), or None."""
        sprite = self._sprites.get(str(path))
        if sprite is not None:
            self._sprites.move_to_end(str(path))
        return sprite

    def get_or_load(self, path: str | Path) -> LoadedSprite:
        """Return the cached sprite for ``path``, loading it on a miss.

        Loading errors (FileNotFoundError, DecodeError, PackError) propagate
        and leave the cache as it was.
        """
        sprite = self.get(path)
        if sprite is not None:
            return sprite

        sprite = load_sprite(path, atlas_config=self._atlas_config)
        self._make_room(sprite.nbytes)
        self._sprites[str(path)] = sprite
        self._used += sprite.nbytes
        logger.info(
            "Cached %s (%.1f MB atlas); %d sprite(s), %.1f / %d MB",
            sprite.name, sprite.nbytes / _MB, self.entry_count, self.current_mb, self.max_mb,
        )
        return sprite

    def evict(self, path: str | Path) -> None:
        """Drop one sprite; unknown paths are ignored."""
        sprite = self._sprites.pop(str(path), None)
        if sprite is not None:
            self._used -= sprite.nbytes

    def clear(self) -> None:
        self._sprites.clear()
        self._used = 0

    def _make_room(self, incoming: int) -> None:
        while self._sprites and self._used + incoming > self._budget:
            key, oldest = self._sprites.popitem(last=False)
            self._used -= oldest.nbytes
            logger.info("Evicted %s (%.1f MB) from cache", Path(key).name, oldest.nbytes / _MB)
