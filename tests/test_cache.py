"""Tests for the sprite cache and file loader."""

import logging

import pytest

from asechirp.assets.cache import SpriteCache
from asechirp.assets.loader import is_aseprite_file, load_sprite
from asechirp.config import AtlasConfig
from asechirp.errors import DecodeError, MalformedError


@pytest.fixture
def second_file(tmp_path, sprite_bytes):
    path = tmp_path / "villain.ase"
    path.write_bytes(sprite_bytes)
    return path


class TestLoader:
    def test_load_sprite_from_disk(self, sprite_file):
        sprite = load_sprite(sprite_file)

        assert sprite.name == "hero.aseprite"
        assert sprite.frame_count == 4
        assert sprite.info.tag_names == ["walk", "back", "bounce"]
        assert sprite.nbytes == sprite.atlas.texture.nbytes

    def test_atlas_config_is_applied(self, sprite_file):
        sprite = load_sprite(sprite_file, atlas_config=AtlasConfig(initial_size=8, deduplicate=False))

        assert sprite.atlas.slot_count == 4
        assert sprite.atlas.size == (8, 8)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sprite(tmp_path / "nope.aseprite")

    def test_unexpected_extension_warns(self, tmp_path, sprite_bytes, caplog):
        path = tmp_path / "hero.bin"
        path.write_bytes(sprite_bytes)

        with caplog.at_level(logging.WARNING):
            sprite = load_sprite(path)

        assert sprite.frame_count == 4
        assert "Aseprite extension" in caplog.text

    @pytest.mark.parametrize(
        "name, expected",
        [("a.ase", True), ("a.ASEPRITE", True), ("a.png", False), ("ase", False)],
    )
    def test_is_aseprite_file(self, name, expected):
        assert is_aseprite_file(name) is expected


class TestSpriteCache:
    def test_same_path_returns_same_sprite(self, sprite_file):
        cache = SpriteCache()

        first = cache.get_or_load(sprite_file)
        second = cache.get_or_load(sprite_file)

        assert first is second
        assert cache.entry_count == 1
        assert sprite_file in cache
        assert cache.get(sprite_file) is first

    def test_get_unknown_returns_none(self, sprite_file):
        assert SpriteCache().get(sprite_file) is None

    def test_lru_eviction_over_budget(self, sprite_file, second_file):
        cache = SpriteCache(max_mb=0)

        first = cache.get_or_load(sprite_file)
        cache.get_or_load(second_file)

        assert sprite_file not in cache
        assert second_file in cache
        assert cache.entry_count == 1
        # Holders of an evicted sprite keep using it.
        assert first.frame_count == 4

    def test_budget_tracks_atlas_bytes(self, sprite_file, second_file):
        cache = SpriteCache()

        first = cache.get_or_load(sprite_file)
        second = cache.get_or_load(second_file)

        assert cache.current_mb == (first.nbytes + second.nbytes) / (1024 * 1024)
        cache.evict(second_file)
        assert cache.current_mb == first.nbytes / (1024 * 1024)
        cache.evict(second_file)
        assert cache.entry_count == 1

    def test_evict_and_clear(self, sprite_file, second_file):
        cache = SpriteCache()
        cache.get_or_load(sprite_file)
        cache.get_or_load(second_file)

        cache.evict(sprite_file)
        assert cache.entry_count == 1
        assert sprite_file not in cache

        cache.clear()
        assert cache.entry_count == 0
        assert cache.current_mb == 0

    def test_failed_load_leaves_cache_unchanged(self, tmp_path, sprite_file):
        broken = tmp_path / "broken.aseprite"
        broken.write_bytes(b"\x00" * 200)
        cache = SpriteCache()
        cache.get_or_load(sprite_file)
        before = cache.current_mb

        with pytest.raises(MalformedError):
            cache.get_or_load(broken)
        with pytest.raises(FileNotFoundError):
            cache.get_or_load(tmp_path / "missing.aseprite")

        assert broken not in cache
        assert cache.entry_count == 1
        assert cache.current_mb == before

    def test_decode_errors_share_base(self):
        assert issubclass(MalformedError, DecodeError)
