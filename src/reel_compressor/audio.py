"""
Audio track merger - Decodes source audio for the encoder session.

The track is decoded independently of the video timeline to PCM and trimmed
to the capture duration; the encoder then re-synchronizes it against the
capture clock. Any failure here degrades to a video-only output.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE, AUDIO_TIMEOUT
from .errors import AudioDegradedWarning
from .prober import SourceInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioTrack:
    """Decoded PCM track ready to be muxed."""

    path: Path
    duration_seconds: float
    sample_rate: int = AUDIO_SAMPLE_RATE
    channels: int = AUDIO_CHANNELS


class AudioMerger:
    """Prepares the audio input of an encoder session."""

    def __init__(
        self,
        ffmpeg: str = "ffmpeg",
        timeout: float = AUDIO_TIMEOUT,
        sample_rate: int = AUDIO_SAMPLE_RATE,
        channels: int = AUDIO_CHANNELS,
    ):
        self.ffmpeg = ffmpeg
        self.timeout = timeout
        self.sample_rate = sample_rate
        self.channels = channels

    def build_command(self, source: Path, output: Path, duration_seconds: float) -> list[str]:
        return [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-y",
            "-i",
            str(source),
            "-map",
            "0:a:0",
            "-vn",
            "-t",
            f"{duration_seconds:.6f}",
            "-ac",
            str(self.channels),
            "-ar",
            str(self.sample_rate),
            "-c:a",
            "pcm_s16le",
            "-f",
            "wav",
            str(output),
        ]

    def prepare(self, source: SourceInfo, work_dir: Path, duration_seconds: float) -> AudioTrack:
        """
        Decode the first audio stream of `source` into `work_dir`.

        Args:
            source: Probed source
            work_dir: Pipeline scratch directory
            duration_seconds: Capture duration the track is trimmed to

        Returns:
            AudioTrack pointing at a WAV file

        Raises:
            AudioDegradedWarning: no audio stream, timeout or decode failure
        """
        if not source.has_audio:
            raise AudioDegradedWarning("Source has no audio stream")

        output = work_dir / "audio.wav"
        cmd = self.build_command(source.path, output, duration_seconds)
        logger.debug(f"Audio: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            output.unlink(missing_ok=True)
            raise AudioDegradedWarning(f"Audio decode timed out after {self.timeout:.0f}s") from None
        except OSError as e:
            raise AudioDegradedWarning(f"Cannot run {self.ffmpeg}: {e}") from e

        if result.returncode != 0 or not output.exists() or output.stat().st_size == 0:
            output.unlink(missing_ok=True)
            detail = result.stderr.decode(errors="replace").strip()[-200:] if result.stderr else ""
            raise AudioDegradedWarning(f"Audio decode failed{': ' + detail if detail else ''}")

        return AudioTrack(
            path=output,
            duration_seconds=duration_seconds,
            sample_rate=self.sample_rate,
            channels=self.channels,
        )
