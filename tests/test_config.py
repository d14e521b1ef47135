"""Tests for TOML configuration and profiles."""

from pathlib import Path

from asechirp.config import (
    AppConfig,
    AtlasConfig,
    SpriteConfig,
    get_config_dir,
    list_profiles,
    load_profile,
)
from asechirp.constants import DEFAULT_ATLAS_MAX_SIZE, DEFAULT_FPS


def test_defaults_from_empty_file(tmp_path):
    path = tmp_path / "empty.toml"
    path.write_text("")

    config = AppConfig.from_toml(path)

    assert config.atlas.max_size == DEFAULT_ATLAS_MAX_SIZE
    assert config.playback.fps == DEFAULT_FPS
    assert config.sprites == []
    assert config.config_path == path


def test_round_trip(tmp_path):
    config = AppConfig(
        atlas=AtlasConfig(max_size=512, initial_size=64, padding=1, deduplicate=False),
        sprites=[
            SpriteConfig(name="hero", file="hero.aseprite", tag="walk", speed=1.5),
            SpriteConfig(name="coin", file="coin.ase", playing=False),
        ],
    )
    config.general.profile_name = "Stage"
    config.playback.fps = 30
    path = tmp_path / "stage.toml"

    config.to_toml(path)
    loaded = AppConfig.from_toml(path)

    assert loaded.general.profile_name == "Stage"
    assert loaded.atlas == config.atlas
    assert loaded.playback.fps == 30
    assert loaded.sprites == config.sprites


def test_partial_sections(tmp_path):
    path = tmp_path / "partial.toml"
    path.write_text(
        '[atlas]\npadding = 2\n\n'
        '[[sprites]]\nname = "hero"\nfile = "hero.aseprite"\n'
    )

    config = AppConfig.from_toml(path)

    assert config.atlas.padding == 2
    assert config.atlas.deduplicate is True
    assert config.sprites[0].tag == ""
    assert config.sprites[0].speed == 1.0


def test_resolve_path_prefers_config_directory(tmp_path, monkeypatch):
    profile_dir = tmp_path / "profiles"
    profile_dir.mkdir()
    (profile_dir / "hero.aseprite").write_bytes(b"")
    config = AppConfig(config_path=profile_dir / "stage.toml")
    monkeypatch.chdir(tmp_path)

    assert config.resolve_path("hero.aseprite") == profile_dir / "hero.aseprite"
    assert config.resolve_path("other.aseprite") == tmp_path / "other.aseprite"
    assert config.resolve_path(str(tmp_path / "abs.ase")) == tmp_path / "abs.ase"


def test_profiles_live_under_xdg_config_home(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

    base = get_config_dir()
    assert base == tmp_path / "asechirp"
    assert (base / "profiles").is_dir()
    assert list_profiles() == []

    AppConfig().to_toml(base / "profiles" / "b.toml")
    AppConfig().to_toml(base / "profiles" / "a.toml")

    profiles = list_profiles()
    assert [p.name for p in profiles] == ["a.toml", "b.toml"]
    assert isinstance(load_profile(profiles[0]), AppConfig)
    assert Path(load_profile(profiles[0]).config_path) == profiles[0]
