"""
Encoder module - Incremental encoding of the raster stream.

Supports:
- Ordered codec negotiation (VP9/Opus WebM, VP8/Vorbis WebM, H.264/AAC MP4)
- A streaming encoder session fed raw frames over stdin
- Optional audio track muxed in and re-synchronized to the capture clock
- Stitching independently encoded chunks into one container
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .constants import FINALIZE_TIMEOUT
from .errors import EncodeFailedError, NoSupportedCodecError
from .render import RasterBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Codec:
    """One entry of the codec capability list."""

    name: str
    video_encoder: str
    audio_encoder: str
    container: str  # file extension without dot
    mime_type: str
    muxer: str


CODECS: dict[str, Codec] = {
    "vp9": Codec(
        name="vp9",
        video_encoder="libvpx-vp9",
        audio_encoder="libopus",
        container="webm",
        mime_type="video/webm;codecs=vp9,opus",
        muxer="webm",
    ),
    "vp8": Codec(
        name="vp8",
        video_encoder="libvpx",
        audio_encoder="libvorbis",
        container="webm",
        mime_type="video/webm;codecs=vp8,vorbis",
        muxer="webm",
    ),
    "h264": Codec(
        name="h264",
        video_encoder="libx264",
        audio_encoder="aac",
        container="mp4",
        mime_type="video/mp4;codecs=h264,aac",
        muxer="mp4",
    ),
}

DEFAULT_CODEC_PREFERENCE = ["vp9", "vp8", "h264"]

_ENCODER_LINE_RE = re.compile(r"^\s*[VAS][A-Z.]{5}\s+(\S+)\s+")


def parse_encoders(output: str) -> set[str]:
    """
    Parse `ffmpeg -encoders` output into encoder names.

    Lines look like: " V....D libx264              libx264 H.264 / AVC ..."
    """
    encoders = set()
    for line in output.splitlines():
        match = _ENCODER_LINE_RE.match(line)
        if match and match.group(1) != "=":
            encoders.add(match.group(1))
    return encoders


def list_available_encoders(ffmpeg: str = "ffmpeg") -> set[str]:
    """Encoder names this ffmpeg build supports (empty if ffmpeg cannot run)."""
    try:
        result = subprocess.run([ffmpeg, "-hide_banner", "-encoders"], capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Cannot list ffmpeg encoders: {e}")
        return set()
    if result.returncode != 0:
        return set()
    return parse_encoders(result.stdout)


def negotiate_codec(preference: list[str], available: set[str]) -> Codec:
    """
    Pick the first codec in `preference` whose video encoder is available.

    Raises:
        NoSupportedCodecError: nothing in the list is usable; there is no
            silent fallback to an unvalidated default
    """
    for name in preference:
        codec = CODECS.get(name.lower())
        if codec is None:
            logger.warning(f"Unknown codec in preference list: {name}")
            continue
        if codec.video_encoder in available:
            logger.debug(f"Negotiated codec {codec.name} ({codec.video_encoder})")
            return codec
    raise NoSupportedCodecError(list(preference))


def get_speed_args(codec: Codec, quality_score: int) -> list[str]:
    """
    Map a profile's quality score to encoder speed settings.

    Speed tiers (quality 1-4) get the fastest settings, balanced tiers
    (5-8) a middle ground, top tiers (9-10) spend more time per frame.

    - VP8/VP9: realtime deadline, -cpu-used 8 / 5 / 3
    - H.264:   ultrafast / veryfast / medium preset
    """
    if quality_score <= 4:
        tier = 0
    elif quality_score <= 8:
        tier = 1
    else:
        tier = 2

    if codec.name in ("vp8", "vp9"):
        cpu_used = ("8", "5", "3")[tier]
        args = ["-deadline", "realtime", "-cpu-used", cpu_used]
        if codec.name == "vp9":
            args.extend(["-row-mt", "1"])
        return args
    return ["-preset", ("ultrafast", "veryfast", "medium")[tier]]


class SessionState(Enum):
    CREATED = "created"
    STARTED = "started"
    FINALIZED = "finalized"
    CLOSED = "closed"


@dataclass
class EncoderSettings:
    """Everything an encoder session needs besides the frames."""

    codec: Codec
    width: int
    height: int
    frame_rate: float
    video_bitrate_bps: int
    audio_bitrate_bps: int | None = None
    audio_path: Path | None = None
    quality_score: int = 5
    extra_args: list[str] = field(default_factory=list)

    @property
    def with_audio(self) -> bool:
        return self.audio_path is not None and self.audio_bitrate_bps is not None


def build_encode_command(settings: EncoderSettings, output_path: Path, ffmpeg: str = "ffmpeg") -> list[str]:
    """Build the ffmpeg command for a rawvideo-on-stdin encoder."""
    codec = settings.codec
    cmd = [ffmpeg, "-hide_banner", "-loglevel", "error", "-y"]

    # Input 0: raster stream at the capture rate
    cmd.extend(
        [
            "-f",
            "rawvideo",
            "-pix_fmt",
            "rgb24",
            "-s",
            f"{settings.width}x{settings.height}",
            "-r",
            f"{settings.frame_rate:g}",
            "-i",
            "-",
        ]
    )

    # Input 1: decoded audio track
    if settings.with_audio:
        cmd.extend(["-i", str(settings.audio_path)])

    cmd.extend(["-map", "0:v:0"])
    if settings.with_audio:
        cmd.extend(["-map", "1:a:0"])

    # Video: pad odd sizes for 4:2:0
    cmd.extend(["-vf", "pad=ceil(iw/2)*2:ceil(ih/2)*2", "-pix_fmt", "yuv420p"])
    cmd.extend(["-c:v", codec.video_encoder])
    cmd.extend(get_speed_args(codec, settings.quality_score))

    bitrate = settings.video_bitrate_bps
    cmd.extend(["-b:v", str(bitrate), "-maxrate", str(bitrate), "-bufsize", str(bitrate * 2)])

    if settings.with_audio:
        # Re-sync against the capture clock, not the source video clock
        cmd.extend(["-af", "aresample=async=1:first_pts=0,apad", "-shortest"])
        cmd.extend(["-c:a", codec.audio_encoder, "-b:a", str(settings.audio_bitrate_bps)])
    else:
        cmd.append("-an")

    if codec.muxer == "mp4":
        cmd.extend(["-movflags", "+faststart"])
    cmd.extend(settings.extra_args)
    cmd.extend(["-f", codec.muxer, str(output_path)])
    return cmd


class EncoderSession:
    """
    Stateful encoder accumulating output across frame pushes.

    Output goes to `<output>.part` and is moved into place only by
    `finalize()`, so a failed or cancelled session never leaves a
    playable-looking partial file behind.
    """

    def __init__(
        self,
        settings: EncoderSettings,
        output_path: Path,
        ffmpeg: str = "ffmpeg",
        log_path: Path | None = None,
        finalize_timeout: float = FINALIZE_TIMEOUT,
    ):
        self.settings = settings
        self.output_path = output_path
        self.part_path = output_path.with_name(output_path.name + ".part")
        self.ffmpeg = ffmpeg
        self.log_path = log_path
        self.finalize_timeout = finalize_timeout
        self.frames_pushed = 0
        self.state = SessionState.CREATED
        self._process: subprocess.Popen | None = None
        self._log_file = None

    @property
    def is_open(self) -> bool:
        return self._process is not None

    def start(self) -> None:
        if self.state is not SessionState.CREATED:
            raise EncodeFailedError(f"Encoder session already {self.state.value}", stage="encode")

        cmd = build_encode_command(self.settings, self.part_path, self.ffmpeg)
        logger.debug(f"Encoder: {' '.join(cmd)}")
        self._log_file = open(self.log_path, "wb") if self.log_path else subprocess.DEVNULL
        try:
            self._process = subprocess.Popen(
                cmd, stdin=subprocess.PIPE, stdout=subprocess.DEVNULL, stderr=self._log_file
            )
        except OSError as e:
            self._close_log()
            raise EncodeFailedError(f"Cannot start encoder ({self.ffmpeg}): {e}", stage="encode") from e
        self.state = SessionState.STARTED

    def push_frame(self, raster: RasterBuffer) -> None:
        if self.state is not SessionState.STARTED or self._process is None or self._process.stdin is None:
            raise EncodeFailedError("Encoder session is not running", stage="encode")
        try:
            self._process.stdin.write(raster.view())
        except (BrokenPipeError, ValueError) as e:
            raise EncodeFailedError(f"Encoder stopped accepting frames{self._log_tail()}", stage="encode") from e
        self.frames_pushed += 1

    def finalize(self) -> Path:
        """Flush, wait for the encoder and move the output into place."""
        if self.state is not SessionState.STARTED or self._process is None:
            raise EncodeFailedError("Encoder session is not running", stage="finalize")
        if self.frames_pushed == 0:
            raise EncodeFailedError("No frames were encoded", stage="finalize")

        process = self._process
        try:
            if process.stdin:
                process.stdin.close()
        except BrokenPipeError:
            pass

        try:
            returncode = process.wait(timeout=self.finalize_timeout)
        except subprocess.TimeoutExpired:
            raise EncodeFailedError(
                f"Encoder did not finish within {self.finalize_timeout:.0f}s", stage="finalize"
            ) from None

        if returncode != 0:
            raise EncodeFailedError(f"Encoder exited with code {returncode}{self._log_tail()}", stage="finalize")
        if not self.part_path.exists() or self.part_path.stat().st_size == 0:
            raise EncodeFailedError("Encoder produced no output", stage="finalize")

        os.replace(self.part_path, self.output_path)
        self._process = None
        self._close_log()
        self.state = SessionState.FINALIZED
        logger.debug(f"Encoded {self.frames_pushed} frames -> {self.output_path.name}")
        return self.output_path

    def close(self) -> None:
        """Abort if still running and drop partial output. Safe to call more than once."""
        process, self._process = self._process, None
        if process is not None:
            if process.poll() is None:
                process.kill()
            if process.stdin:
                try:
                    process.stdin.close()
                except BrokenPipeError:
                    pass
            process.wait()
        self._close_log()
        if self.part_path.exists():
            self.part_path.unlink()
        if self.state is not SessionState.FINALIZED:
            self.state = SessionState.CLOSED

    def _close_log(self) -> None:
        if self._log_file not in (None, subprocess.DEVNULL):
            self._log_file.close()
        self._log_file = None

    def _log_tail(self) -> str:
        if not self.log_path or not self.log_path.exists():
            return ""
        tail = self.log_path.read_bytes()[-300:].decode(errors="replace").strip()
        return f": {tail}" if tail else ""


def build_stitch_command(
    concat_list: Path,
    output_path: Path,
    codec: Codec,
    audio_path: Path | None = None,
    audio_bitrate_bps: int | None = None,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    """Build the ffmpeg command that joins chunk files (and muxes audio)."""
    cmd = [ffmpeg, "-hide_banner", "-loglevel", "error", "-y"]
    cmd.extend(["-f", "concat", "-safe", "0", "-i", str(concat_list)])
    with_audio = audio_path is not None and audio_bitrate_bps is not None
    if with_audio:
        cmd.extend(["-i", str(audio_path)])
    cmd.extend(["-map", "0:v:0", "-c:v", "copy"])
    if with_audio:
        cmd.extend(["-map", "1:a:0", "-af", "aresample=async=1:first_pts=0,apad", "-shortest"])
        cmd.extend(["-c:a", codec.audio_encoder, "-b:a", str(audio_bitrate_bps)])
    else:
        cmd.append("-an")
    if codec.muxer == "mp4":
        cmd.extend(["-movflags", "+faststart"])
    cmd.extend(["-f", codec.muxer, str(output_path)])
    return cmd


def concat_quote(path: Path) -> str:
    """Escape a path for a single-quoted concat demuxer `file` line."""
    return str(path).replace("'", "'\\''")


def stitch_chunks(
    chunk_paths: list[Path],
    output_path: Path,
    codec: Codec,
    work_dir: Path,
    audio_path: Path | None = None,
    audio_bitrate_bps: int | None = None,
    ffmpeg: str = "ffmpeg",
    timeout: float = FINALIZE_TIMEOUT,
) -> Path:
    """
    Concatenate chunk files in order into one container.

    Raises:
        EncodeFailedError: ffmpeg failed, timed out or wrote nothing
    """
    if not chunk_paths:
        raise EncodeFailedError("No chunks to stitch", stage="stitch")

    concat_list = work_dir / "chunks.txt"
    with open(concat_list, "w") as f:
        for path in chunk_paths:
            f.write(f"file '{concat_quote(path.resolve())}'\n")

    part_path = output_path.with_name(output_path.name + ".part")
    cmd = build_stitch_command(concat_list, part_path, codec, audio_path, audio_bitrate_bps, ffmpeg)
    logger.debug(f"Stitch: {' '.join(cmd)}")

    try:
        result = subprocess.run(cmd, capture_output=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        part_path.unlink(missing_ok=True)
        raise EncodeFailedError("Stitching timed out", stage="stitch") from None
    except OSError as e:
        raise EncodeFailedError(f"Cannot run {ffmpeg}: {e}", stage="stitch") from e

    if result.returncode != 0 or not part_path.exists() or part_path.stat().st_size == 0:
        part_path.unlink(missing_ok=True)
        detail = result.stderr.decode(errors="replace")[-300:] if result.stderr else "Unknown error"
        raise EncodeFailedError(f"Stitching failed: {detail}", stage="stitch")

    os.replace(part_path, output_path)
    return output_path
