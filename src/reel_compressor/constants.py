"""
Centralized constants for Reel Compressor.

File extension sets, media defaults and calibration values live here
to avoid duplication across modules.
"""

# Video file extensions (case-insensitive matching via both cases)
VIDEO_EXTENSIONS = {
    ".mov",
    ".mp4",
    ".m4v",
    ".avi",
    ".mkv",
    ".webm",
    ".MOV",
    ".MP4",
    ".M4V",
    ".AVI",
    ".MKV",
    ".WEBM",
}

# Suffix appended to compressed output stems
COMPRESSED_SUFFIX = "_compressed"

# Bounded timeouts (seconds)
PROBE_TIMEOUT = 10.0
AUDIO_TIMEOUT = 10.0
FINALIZE_TIMEOUT = 600.0
THUMBNAIL_TIMEOUT = 30.0

# Audio track decoded for the merger
AUDIO_SAMPLE_RATE = 48000
AUDIO_CHANNELS = 2

# Thumbnail box and default capture point
THUMBNAIL_WIDTH = 1280
THUMBNAIL_HEIGHT = 720
THUMBNAIL_TIMESTAMP = 5.0
THUMBNAIL_EPSILON = 0.05

# Conventional encoder baseline: ~1 MiB of source per second
REFERENCE_THROUGHPUT_BYTES_PER_MS = 1024 * 1024 / 1000

# Lowest video bitrate the target-size fit will go down to
MIN_VIDEO_BITRATE_BPS = 64_000

# Share of the target size spent on media payload (rest is container overhead)
CONTAINER_HEADROOM = 0.95

# Quality score assigned to untouched pass-through sources
PASSTHROUGH_QUALITY_SCORE = 10
