"""Default constants and configuration values."""

# File format
ASEPRITE_EXTENSIONS = (".ase", ".aseprite")
FILE_MAGIC = 0xA5E0
FRAME_MAGIC = 0xF1FA
HEADER_SIZE = 128
FALLBACK_FRAME_DURATION_MS = 100

# Atlas packing
DEFAULT_ATLAS_INITIAL_SIZE = 256
DEFAULT_ATLAS_MAX_SIZE = 2048
DEFAULT_ATLAS_PADDING = 0

# Sprite cache
DEFAULT_CACHE_MAX_MB = 256

# Playback
DEFAULT_FPS = 60
DEFAULT_SPEED_MULTIPLIER = 1.0
MIN_SPEED_MULTIPLIER = 0.1
MAX_SPEED_MULTIPLIER = 5.0
DEFAULT_PLAY_DURATION_MS = 2000.0
