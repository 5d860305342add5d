"""
Source prober - Duration, resolution and size of the input asset.

Runs a single bounded ffprobe call; never hangs on a broken container.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import PROBE_TIMEOUT
from .errors import UnreadableSourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceInfo:
    """What the pipeline needs to know about a source asset."""

    path: Path
    duration_seconds: float
    width: int
    height: int
    size_bytes: int
    has_audio: bool = False
    frame_rate: float = 0.0
    video_codec: str = ""

    def fits_within(self, target_size_bytes: int) -> bool:
        """True when the source already satisfies the target size."""
        return self.size_bytes <= target_size_bytes


def _parse_rate(value: str | None) -> float:
    """Parse ffprobe rational rates like '30000/1001'."""
    if not value:
        return 0.0
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            return float(num) / float(den) if float(den) else 0.0
        return float(value)
    except ValueError:
        return 0.0


def parse_probe_output(path: Path, data: dict, size_bytes: int) -> SourceInfo:
    """Turn ffprobe JSON into SourceInfo, rejecting anything unusable."""
    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise UnreadableSourceError(f"No video stream in {path.name}")

    width = int(video.get("width") or 0)
    height = int(video.get("height") or 0)
    if width <= 0 or height <= 0:
        raise UnreadableSourceError(f"Invalid frame size {width}x{height} in {path.name}")

    duration_raw = (data.get("format") or {}).get("duration") or video.get("duration")
    try:
        duration = float(duration_raw)
    except (TypeError, ValueError):
        raise UnreadableSourceError(f"Missing duration in {path.name}") from None
    if duration <= 0:
        raise UnreadableSourceError(f"Non-positive duration {duration} in {path.name}")

    return SourceInfo(
        path=path,
        duration_seconds=duration,
        width=width,
        height=height,
        size_bytes=size_bytes,
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        frame_rate=_parse_rate(video.get("avg_frame_rate")) or _parse_rate(video.get("r_frame_rate")),
        video_codec=video.get("codec_name", ""),
    )


class SourceProber:
    """Opens a source read-only through ffprobe and reads its metadata."""

    def __init__(self, ffprobe: str = "ffprobe", timeout: float = PROBE_TIMEOUT):
        self.ffprobe = ffprobe
        self.timeout = timeout

    def build_command(self, path: Path) -> list[str]:
        return [
            self.ffprobe,
            "-v",
            "error",
            "-show_format",
            "-show_streams",
            "-of",
            "json",
            str(path),
        ]

    def probe(self, path: Path) -> SourceInfo:
        """
        Probe a source asset.

        Raises:
            UnreadableSourceError: file missing, ffprobe failed or timed out,
                or the metadata is incomplete
        """
        if not path.is_file():
            raise UnreadableSourceError(f"Source not found: {path}")
        size_bytes = path.stat().st_size

        try:
            result = subprocess.run(
                self.build_command(path), capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            raise UnreadableSourceError(f"ffprobe timed out after {self.timeout:.0f}s on {path.name}") from None
        except OSError as e:
            raise UnreadableSourceError(f"Cannot run {self.ffprobe}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or "").strip()[-300:] or f"exit code {result.returncode}"
            raise UnreadableSourceError(f"ffprobe failed on {path.name}: {detail}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            raise UnreadableSourceError(f"ffprobe returned invalid JSON for {path.name}") from None

        info = parse_probe_output(path, data, size_bytes)
        logger.debug(
            f"Probed {path.name}: {info.width}x{info.height}, {info.duration_seconds:.2f}s, "
            f"{info.size_bytes} bytes, audio={info.has_audio}"
        )
        return info
