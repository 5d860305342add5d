"""
Thumbnail extractor - Single-frame capture at an arbitrary timestamp.

Independent of the encode loop: one seek, one decoded frame, one JPEG.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import THUMBNAIL_EPSILON, THUMBNAIL_HEIGHT, THUMBNAIL_TIMEOUT, THUMBNAIL_TIMESTAMP, THUMBNAIL_WIDTH
from .errors import ThumbnailError, UnreadableSourceError
from .prober import SourceInfo, SourceProber
from .render import fit_within

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thumbnail:
    data: bytes
    width: int
    height: int
    timestamp_seconds: float
    mime_type: str = "image/jpeg"

    def save(self, path: Path) -> Path:
        path.write_bytes(self.data)
        return path


def clamp_timestamp(timestamp: float, duration: float, epsilon: float = THUMBNAIL_EPSILON) -> float:
    """Clamp to [0, duration - epsilon]."""
    upper = max(0.0, duration - epsilon)
    return min(max(0.0, timestamp), upper)


class ThumbnailExtractor:
    """Captures a JPEG still fitted inside a bounding box."""

    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        prober: SourceProber | None = None,
        box_width: int = THUMBNAIL_WIDTH,
        box_height: int = THUMBNAIL_HEIGHT,
        quality: int = 3,
        timeout: float = THUMBNAIL_TIMEOUT,
    ):
        self.ffmpeg = ffmpeg
        self.prober = prober or SourceProber()
        self.box_width = box_width
        self.box_height = box_height
        self.quality = quality
        self.timeout = timeout

    def build_command(self, source: Path, timestamp: float, width: int, height: int) -> list[str]:
        return [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-ss",
            f"{timestamp:.3f}",
            "-i",
            str(source),
            "-frames:v",
            "1",
            "-vf",
            f"scale={width}:{height}",
            "-q:v",
            str(self.quality),
            "-f",
            "image2pipe",
            "-c:v",
            "mjpeg",
            "-",
        ]

    def extract(
        self,
        source: Path,
        timestamp_seconds: float = THUMBNAIL_TIMESTAMP,
        source_info: SourceInfo | None = None,
    ) -> Thumbnail:
        """
        Capture one frame at `timestamp_seconds` (clamped to the source duration).

        Raises:
            ThumbnailError: source unreadable or ffmpeg produced no image
        """
        if source_info is None:
            try:
                source_info = self.prober.probe(source)
            except UnreadableSourceError as e:
                raise ThumbnailError(e.message) from e

        timestamp = clamp_timestamp(timestamp_seconds, source_info.duration_seconds)
        width, height = fit_within(source_info.width, source_info.height, self.box_width, self.box_height)
        cmd = self.build_command(source, timestamp, width, height)
        logger.debug(f"Thumbnail: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise ThumbnailError(f"Thumbnail capture timed out after {self.timeout:.0f}s") from None
        except OSError as e:
            raise ThumbnailError(f"Cannot run {self.ffmpeg}: {e}") from e

        if result.returncode != 0 or not result.stdout:
            detail = result.stderr.decode(errors="replace").strip()[-200:] if result.stderr else "no image data"
            raise ThumbnailError(f"Thumbnail capture failed at {timestamp:.2f}s: {detail}")

        return Thumbnail(data=result.stdout, width=width, height=height, timestamp_seconds=timestamp)
