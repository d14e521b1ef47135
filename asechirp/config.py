"""TOML configuration loading and saving, profile management."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

import tomli_w

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from asechirp.constants import (
    DEFAULT_ATLAS_INITIAL_SIZE,
    DEFAULT_ATLAS_MAX_SIZE,
    DEFAULT_ATLAS_PADDING,
    DEFAULT_CACHE_MAX_MB,
    DEFAULT_FPS,
    DEFAULT_PLAY_DURATION_MS,
    DEFAULT_SPEED_MULTIPLIER,
)


@dataclass
class SpriteConfig:
    """A sprite to load and play, with its starting tag."""

    name: str
    file: str
    tag: str = ""  # "" = loop over every frame
    speed: float = DEFAULT_SPEED_MULTIPLIER
    playing: bool = True


@dataclass
class AtlasConfig:
    """Atlas packing settings."""

    max_size: int = DEFAULT_ATLAS_MAX_SIZE
    initial_size: int = DEFAULT_ATLAS_INITIAL_SIZE
    padding: int = DEFAULT_ATLAS_PADDING
    deduplicate: bool = True


@dataclass
class PlaybackConfig:
    """Fixed-rate playback simulation settings."""

    fps: int = DEFAULT_FPS
    duration_ms: float = DEFAULT_PLAY_DURATION_MS
    speed: float = DEFAULT_SPEED_MULTIPLIER


@dataclass
class GeneralConfig:
    """General settings."""

    profile_name: str = "Default"
    cache_max_mb: int = DEFAULT_CACHE_MAX_MB


@dataclass
class AppConfig:
    """Top-level configuration."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    atlas: AtlasConfig = field(default_factory=AtlasConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)
    sprites: list[SpriteConfig] = field(default_factory=list)
    config_path: Path | None = None

    @classmethod
    def from_toml(cls, path: Path) -> AppConfig:
        """Load configuration from a TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return cls._from_dict(data, config_path=path)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Build config from a parsed TOML dict."""
        general_data = data.get("general", {})
        general = GeneralConfig(
            profile_name=general_data.get("profile_name", "Default"),
            cache_max_mb=general_data.get("cache_max_mb", DEFAULT_CACHE_MAX_MB),
        )

        atlas_data = data.get("atlas", {})
        atlas = AtlasConfig(
            max_size=atlas_data.get("max_size", DEFAULT_ATLAS_MAX_SIZE),
            initial_size=atlas_data.get("initial_size", DEFAULT_ATLAS_INITIAL_SIZE),
            padding=atlas_data.get("padding", DEFAULT_ATLAS_PADDING),
            deduplicate=atlas_data.get("deduplicate", True),
        )

        playback_data = data.get("playback", {})
        playback = PlaybackConfig(
            fps=playback_data.get("fps", DEFAULT_FPS),
            duration_ms=float(playback_data.get("duration_ms", DEFAULT_PLAY_DURATION_MS)),
            speed=float(playback_data.get("speed", DEFAULT_SPEED_MULTIPLIER)),
        )

        sprites = []
        for s in data.get("sprites", []):
            sprites.append(SpriteConfig(
                name=s["name"],
                file=s["file"],
                tag=s.get("tag", ""),
                speed=float(s.get("speed", DEFAULT_SPEED_MULTIPLIER)),
                playing=s.get("playing", True),
            ))

        return cls(
            general=general,
            atlas=atlas,
            playback=playback,
            sprites=sprites,
            config_path=config_path,
        )

    def to_toml(self, path: Path) -> None:
        """Save configuration to a TOML file."""
        data = self._to_dict()
        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def _to_dict(self) -> dict[str, Any]:
        """Convert config to a TOML-compatible dict."""
        return {
            "general": {
                "profile_name": self.general.profile_name,
                "cache_max_mb": self.general.cache_max_mb,
            },
            "atlas": {
                "max_size": self.atlas.max_size,
                "initial_size": self.atlas.initial_size,
                "padding": self.atlas.padding,
                "deduplicate": self.atlas.deduplicate,
            },
            "playback": {
                "fps": self.playback.fps,
                "duration_ms": self.playback.duration_ms,
                "speed": self.playback.speed,
            },
            "sprites": [
                {
                    "name": s.name,
                    "file": s.file,
                    "tag": s.tag,
                    "speed": s.speed,
                    "playing": s.playing,
                }
                for s in self.sprites
            ],
        }

    def resolve_path(self, file_path: str) -> Path:
        """Resolve a sprite path relative to the config file, then the cwd."""
        p = Path(file_path)
        if p.is_absolute():
            return p

        if self.config_path:
            candidate = self.config_path.parent / p
            if candidate.exists():
                return candidate

        return Path.cwd() / p


def get_config_dir() -> Path:
    """Return the XDG config directory for asechirp.

    Uses $XDG_CONFIG_HOME/asechirp if set, otherwise ~/.config/asechirp.
    Creates the directory (and profiles/ subdirectory) if they don't exist.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg) / "asechirp"
    else:
        base = Path.home() / ".config" / "asechirp"
    profiles_dir = base / "profiles"
    profiles_dir.mkdir(parents=True, exist_ok=True)
    return base


def get_profiles_dir() -> Path:
    """Return the default profiles directory."""
    return get_config_dir() / "profiles"


def list_profiles() -> list[Path]:
    """List all .toml profile files in the default profiles directory."""
    profiles_dir = get_profiles_dir()
    if not profiles_dir.exists():
        return []
    return sorted(profiles_dir.glob("*.toml"))


def load_profile(path: Path) -> AppConfig:
    """Load a profile from a TOML file."""
    logger.debug("Loading profile %s", path)
    return AppConfig.from_toml(path)
