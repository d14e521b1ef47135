"""Command-line entry point: inspect, play, pack and preview Aseprite sprites."""

from __future__ import annotations

import argparse
import json
import logging
from datetime import timedelta
from pathlib import Path

from asechirp.assets.cache import SpriteCache
from asechirp.assets.info import AnimationDirection, AnimationInfo
from asechirp.assets.loader import LoadedSprite, load_sprite
from asechirp.config import AppConfig, list_profiles, load_profile
from asechirp.errors import AsechirpError
from asechirp.state.animation import AnimationState
from asechirp.state.player import PlayerGroup, SpritePlayer

logger = logging.getLogger(__name__)


def cmd_info(args: argparse.Namespace, config: AppConfig) -> int:
    """Print a sprite's dimensions, frames, tags and slices."""
    sprite = load_sprite(args.file, atlas_config=config.atlas)
    info = sprite.info

    print(f"{sprite.name}: {info.width}x{info.height}, {info.frame_count} frames, "
          f"{info.total_duration_ms:.0f} ms total")
    print("durations: " + " ".join(f"{d:g}" for d in info.frame_durations))
    width, height = sprite.atlas.size
    print(f"atlas: {width}x{height}, {sprite.atlas.slot_count} slots")

    if info.tags:
        print("tags:")
        for tag in info.tags.values():
            direction = tag.direction.name.lower()
            if tag.direction is AnimationDirection.UNKNOWN:
                direction = f"unknown({tag.raw_direction})"
            print(f"  {tag.name}: {tag.start}-{tag.end} {direction}")
    if info.slices:
        print("slices:")
        for name, keys in info.slices.items():
            print(f"  {name}: {len(keys)} key(s)")
    return 0


def _build_group(args: argparse.Namespace, config: AppConfig) -> PlayerGroup:
    """Players for FILE, or for every sprite in the profile."""
    cache = SpriteCache(max_mb=config.general.cache_max_mb, atlas_config=config.atlas)
    group = PlayerGroup()
    speed = args.speed if args.speed is not None else config.playback.speed

    if args.file:
        player = group.add(Path(args.file).name, SpritePlayer(tag=args.tag, speed=speed))
        player.attach(cache.get_or_load(args.file))
        return group

    for sprite_cfg in config.sprites:
        player = group.add(sprite_cfg.name, SpritePlayer(
            tag=sprite_cfg.tag or None,
            speed=sprite_cfg.speed * speed,
            playing=sprite_cfg.playing,
        ))
        path = config.resolve_path(sprite_cfg.file)
        if not path.exists():
            logger.warning("Sprite not found for '%s': %s", sprite_cfg.name, sprite_cfg.file)
            continue
        player.attach(cache.get_or_load(path))
    return group


def cmd_play(args: argparse.Namespace, config: AppConfig) -> int:
    """Simulate fixed-rate ticks and print every visible frame change."""
    group = _build_group(args, config)
    if not len(group):
        logger.error("Nothing to play: give a FILE or a profile with [[sprites]]")
        return 1

    fps = args.fps or config.playback.fps
    duration_ms = args.duration_ms if args.duration_ms is not None else config.playback.duration_ms
    duration_us = round(duration_ms * 1000)

    for name, player in group:
        if player.is_ready:
            print(f"{0.0:9.1f} ms  {name}: frame {player.current_frame} (slot {player.atlas_index})")

    # Tick boundaries in whole microseconds; the deltas always add up to the elapsed time.
    elapsed_us = 0
    ticks = 0
    while (ticks + 1) * 1_000_000 // fps <= duration_us:
        ticks += 1
        now_us = ticks * 1_000_000 // fps
        dt = timedelta(microseconds=now_us - elapsed_us)
        elapsed_us = now_us
        for name in group.update(dt):
            player = group.get(name)
            print(f"{elapsed_us / 1000:9.1f} ms  {name}: frame {player.current_frame} (slot {player.atlas_index})")

    logger.info("Simulated %d ticks at %d FPS (%.0f ms)", ticks, fps, elapsed_us / 1000)
    return 0


def cmd_atlas(args: argparse.Namespace, config: AppConfig) -> int:
    """Write the packed atlas texture and its JSON index."""
    from asechirp.util.export import atlas_index, write_png

    sprite = load_sprite(args.file, atlas_config=config.atlas)
    output = Path(args.output)
    index_path = output.with_suffix(".json")

    write_png(output, sprite.atlas.texture)
    with open(index_path, "w", encoding="utf-8") as f:
        json.dump(atlas_index(sprite, image_name=output.name), f, indent=2)
    logger.info("Wrote atlas index to %s", index_path)
    return 0


def playback_sequence(info: AnimationInfo, tag: str | None, loops: int = 1) -> list[tuple[int, float]]:
    """(frame, duration_ms) pairs for ``loops`` full cycles of a tag."""
    state = AnimationState.start(info, tag)
    active = info.get_tag(state.tag) if state.tag else None

    if active is None:
        steps = info.frame_count
    elif active.direction is AnimationDirection.UNKNOWN:
        steps = 1
    elif active.direction in (AnimationDirection.PING_PONG, AnimationDirection.PING_PONG_REVERSE):
        steps = max(1, 2 * (active.frame_count - 1))
    else:
        steps = active.frame_count

    sequence = []
    for _ in range(steps * max(1, loops)):
        duration = state.current_frame_duration(info)
        sequence.append((state.current_frame, duration))
        state.advance(info, duration)
    return sequence


def cmd_preview(args: argparse.Namespace, config: AppConfig) -> int:
    """Render a tag's playback into an animated PNG."""
    from asechirp.util.export import write_apng

    sprite: LoadedSprite = load_sprite(args.file, atlas_config=config.atlas)
    sequence = playback_sequence(sprite.info, args.tag, loops=args.loops)
    frames = [sprite.atlas.frame_pixels(frame) for frame, _ in sequence]
    durations = [duration for _, duration in sequence]
    write_apng(args.output, frames, durations)
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    from asechirp import __version__

    parser = argparse.ArgumentParser(
        prog="asechirp",
        description="Aseprite sprite decoding, atlas packing and animation playback",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--profile", type=str, default=None,
        help="Path to a TOML profile file to load",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="Show frames, tags and slices")
    info.add_argument("file", help="Path to a .ase/.aseprite file")
    info.set_defaults(func=cmd_info)

    play = sub.add_parser("play", help="Simulate playback and print frame changes")
    play.add_argument("file", nargs="?", default=None,
                      help="Sprite to play (default: every sprite in the profile)")
    play.add_argument("--tag", type=str, default=None, help="Tag to play")
    play.add_argument("--fps", type=int, default=None, help="Tick rate override")
    play.add_argument("--duration-ms", type=float, default=None, help="Simulated time")
    play.add_argument("--speed", type=float, default=None, help="Speed multiplier")
    play.set_defaults(func=cmd_play)

    atlas = sub.add_parser("atlas", help="Write the packed atlas PNG and JSON index")
    atlas.add_argument("file", help="Path to a .ase/.aseprite file")
    atlas.add_argument("-o", "--output", required=True, help="Output PNG path")
    atlas.set_defaults(func=cmd_atlas)

    preview = sub.add_parser("preview", help="Render a tag's playback to an animated PNG")
    preview.add_argument("file", help="Path to a .ase/.aseprite file")
    preview.add_argument("-o", "--output", required=True, help="Output APNG path")
    preview.add_argument("--tag", type=str, default=None, help="Tag to render")
    preview.add_argument("--loops", type=int, default=1, help="Cycles to render")
    preview.set_defaults(func=cmd_preview)

    return parser.parse_args(argv)


def _load_config(args: argparse.Namespace) -> AppConfig:
    if args.profile:
        return load_profile(Path(args.profile))
    if args.command == "play" and not args.file:
        profiles = list_profiles()
        if profiles:
            latest = max(profiles, key=lambda p: p.stat().st_mtime)
            logger.info("No --profile given, loading most recent: %s", latest)
            return load_profile(latest)
    return AppConfig()


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = _load_config(args)
        return args.func(args, config)
    except FileNotFoundError as e:
        logger.error("%s", e)
        return 1
    except AsechirpError as e:
        logger.error("Failed to load sprite: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
