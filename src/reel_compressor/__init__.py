"""
Reel Compressor (reelc) - Adaptive video compression pipeline

Shrinks oversized player highlight videos under a target size with:
- Named speed/quality profiles (maximum-speed ... premium)
- Decode -> sample -> render -> encode pipeline driven by ffmpeg
- Optional audio preservation with graceful degradation
- Thumbnail extraction and pass-through for already-small sources
- Parallel chunked encoding and a bounded worker pool for batches
"""

__version__ = "0.1.0"
__package_name__ = "reel-compressor"
__short_name__ = "reelc"
