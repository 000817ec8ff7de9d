"""Fixed processing policy for uploaded event media.

Module constants rather than settings: changing any of them
changes what the pipeline produces, so they ship with the code.
"""

# Objects outside this prefix belong to other features (business images, avatars)
INGEST_PREFIX = "events/"

VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".m4v", ".avi", ".mkv", ".webm"})

DERIVATIVE_MARKER = "_compressed"
DERIVATIVE_EXTENSION = ".mp4"
DERIVATIVE_CONTENT_TYPE = "video/mp4"

# 3MB, smaller files gain nothing from a re-encode
MIN_SIZE_TO_COMPRESS = 3 * 1024 * 1024

VIDEO_CODEC = "libx264"
AUDIO_CODEC = "aac"
VIDEO_BITRATE = "1500k"
MAX_FPS = 30
MAX_WIDTH = 960
MAX_HEIGHT = 960
CRF = 28
PRESET = "fast"
CONTAINER_FORMAT = "mp4"

# Compressed output must be at most 90% of the original to replace it
BENEFICIAL_RATIO = 0.9

MAX_CONCURRENT_INVOCATIONS = 5

# 9 minutes, the encoder can stall on malformed input
INVOCATION_TIMEOUT_SECONDS = 540

PIPELINE_ID = "processEventVideo"
PRODUCED_BY_METADATA_KEY = "compressedBy"
