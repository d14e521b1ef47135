"""Aseprite sprite decoding, atlas packing and tag-scoped animation playback."""

__version__ = "0.1.0"
