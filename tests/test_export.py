"""Tests for PNG/APNG export and the atlas JSON index."""

import json

import av
import numpy as np
import pytest

from asechirp.app import main
from asechirp.assets.loader import load_sprite
from asechirp.util.export import atlas_index, write_apng, write_png
from conftest import BLUE, GREEN, RED, solid


def _read_frames(path):
    with av.open(str(path)) as container:
        stream = container.streams.video[0]
        frames = list(container.decode(stream))
        times = [float(f.pts * stream.time_base) for f in frames]
        return [f.to_ndarray(format="rgba") for f in frames], times


def test_png_round_trips_pixels(tmp_path):
    rgba = np.zeros((3, 5, 4), dtype=np.uint8)
    rgba[0, 0] = RED
    rgba[2, 4] = (10, 20, 30, 128)
    path = tmp_path / "texture.png"

    write_png(path, rgba)

    frames, _ = _read_frames(path)
    assert len(frames) == 1
    assert np.array_equal(frames[0], rgba)


def test_apng_keeps_frames_and_timing(tmp_path):
    frames = [solid(2, 2, RED), solid(2, 2, GREEN), solid(2, 2, BLUE)]
    path = tmp_path / "anim.apng"

    write_apng(path, frames, [100, 250, 80])

    decoded, times = _read_frames(path)
    assert len(decoded) == 3
    assert np.array_equal(decoded[0], frames[0])
    assert np.array_equal(decoded[1], frames[1])
    assert times == pytest.approx([0.0, 0.1, 0.35])


def test_apng_rejects_bad_input(tmp_path):
    with pytest.raises(ValueError):
        write_apng(tmp_path / "empty.apng", [], [])
    with pytest.raises(ValueError):
        write_apng(tmp_path / "short.apng", [solid(2, 2, RED)], [100, 100])


def test_atlas_index_describes_sprite(sprite_file):
    sprite = load_sprite(sprite_file)

    index = atlas_index(sprite, image_name="hero.png")

    assert set(index) == {"frames", "tags", "slices", "meta"}
    assert [f["frame"] for f in index["frames"]] == [0, 1, 2, 3]
    assert index["frames"][3]["slot"] == index["frames"][0]["slot"]
    assert index["frames"][1]["rect"] == sprite.region_for(1).to_dict()
    assert index["frames"][1]["duration"] == 100.0
    assert index["tags"][2] == {
        "name": "bounce", "from": 0, "to": 3, "direction": "ping_pong",
        "raw_direction": 2, "repeat": 0,
    }
    width, height = sprite.atlas.size
    assert index["meta"]["size"] == {"w": width, "h": height}
    assert index["meta"]["image"] == "hero.png"


def test_atlas_command_writes_png_and_json(tmp_path, sprite_file):
    output = tmp_path / "out" / "hero.png"
    output.parent.mkdir()

    assert main(["atlas", str(sprite_file), "-o", str(output)]) == 0

    index = json.loads(output.with_suffix(".json").read_text())
    assert index["meta"]["source"] == "hero.aseprite"
    frames, _ = _read_frames(output)
    assert np.array_equal(frames[0], load_sprite(sprite_file).atlas.texture)


def test_preview_command_renders_tag(tmp_path, sprite_file):
    output = tmp_path / "walk.apng"

    assert main(["preview", str(sprite_file), "-o", str(output), "--tag", "walk"]) == 0

    frames, _ = _read_frames(output)
    assert len(frames) == 2
    assert np.array_equal(frames[0], solid(2, 2, RED))
    assert np.array_equal(frames[1], solid(2, 2, GREEN))
