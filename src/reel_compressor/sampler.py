"""
Frame sampler - Walks the capture timeline one tick at a time.

Tick state machine:

    AWAITING_FRAME -> RENDERING -> ADVANCING -> (DONE | AWAITING_FRAME)

Tick `i` stands for time `i / target_frame_rate`. When `i % frame_stride == 0`
the next decoded frame is drawn into the raster buffer; otherwise the draw is
skipped and the buffer keeps the previous frame. Either way the buffer is
handed to the encoder, so output timing stays at the capture rate.
"""

import logging
import subprocess
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import EncodeFailedError
from .progress import CancellationToken, ProgressReporter
from .render import RasterBuffer, scale_filter

logger = logging.getLogger(__name__)


class SamplerState(Enum):
    AWAITING_FRAME = "awaiting_frame"
    RENDERING = "rendering"
    ADVANCING = "advancing"
    DONE = "done"


class FrameSource(Protocol):
    """Anything that yields decoded rgb24 frames in timeline order."""

    def open(self) -> None: ...

    def read_frame(self) -> bytes | None: ...

    def close(self) -> None: ...


class FrameDecoder:
    """
    ffmpeg process emitting sampled, scaled rgb24 frames on stdout.

    The filter graph resamples the source to the capture rate, keeps every
    `frame_stride`-th sample and scales it to the render size, so only frames
    that will actually be drawn are decoded to raw pixels.
    """

    def __init__(
        self,
        source: Path,
        width: int,
        height: int,
        frame_rate: float,
        frame_stride: int = 1,
        start_seconds: float = 0.0,
        duration_seconds: float | None = None,
        ffmpeg: str = "ffmpeg",
        log_path: Path | None = None,
    ):
        self.source = source
        self.width = width
        self.height = height
        self.frame_rate = frame_rate
        self.frame_stride = frame_stride
        self.start_seconds = start_seconds
        self.duration_seconds = duration_seconds
        self.ffmpeg = ffmpeg
        self.log_path = log_path
        self.frames_read = 0
        self._process: subprocess.Popen | None = None
        self._log_file = None

    @property
    def frame_size(self) -> int:
        return self.width * self.height * 3

    @property
    def is_open(self) -> bool:
        return self._process is not None

    def build_filter(self) -> str:
        filters = [f"fps={self.frame_rate:g}"]
        if self.frame_stride > 1:
            filters.append(f"select=not(mod(n\\,{self.frame_stride}))")
        filters.append(scale_filter(self.width, self.height))
        return ",".join(filters)

    def build_command(self) -> list[str]:
        cmd = [self.ffmpeg, "-hide_banner", "-loglevel", "error", "-nostdin"]

        # Input seek: frame-accurate when decoding
        if self.start_seconds > 0:
            cmd.extend(["-ss", f"{self.start_seconds:.6f}"])
        cmd.extend(["-i", str(self.source)])

        if self.duration_seconds is not None:
            cmd.extend(["-t", f"{self.duration_seconds:.6f}"])

        cmd.extend(["-an", "-sn", "-vf", self.build_filter(), "-fps_mode", "passthrough"])
        cmd.extend(["-pix_fmt", "rgb24", "-f", "rawvideo", "-"])
        return cmd

    def open(self) -> None:
        cmd = self.build_command()
        logger.debug(f"Decoder: {' '.join(cmd)}")
        self._log_file = open(self.log_path, "wb") if self.log_path else subprocess.DEVNULL
        try:
            self._process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=self._log_file)
        except OSError as e:
            self._close_log()
            raise EncodeFailedError(f"Cannot start decoder ({self.ffmpeg}): {e}", stage="decode") from e

    def read_frame(self) -> bytes | None:
        """Next frame, or None when the source is exhausted."""
        if self._process is None or self._process.stdout is None:
            raise EncodeFailedError("Decoder is not open", stage="decode")

        buf = bytearray()
        while len(buf) < self.frame_size:
            chunk = self._process.stdout.read(self.frame_size - len(buf))
            if not chunk:
                break
            buf.extend(chunk)

        if not buf:
            self._check_exit()
            return None
        if len(buf) < self.frame_size:
            # Truncated trailing frame: treat as end of stream
            logger.debug(f"Decoder returned a partial frame ({len(buf)} of {self.frame_size} bytes)")
            self._check_exit()
            return None

        self.frames_read += 1
        return bytes(buf)

    def _check_exit(self) -> None:
        try:
            returncode = self._process.wait(timeout=30)
        except subprocess.TimeoutExpired:
            raise EncodeFailedError("Decoder did not exit after end of stream", stage="decode") from None
        if returncode != 0:
            raise EncodeFailedError(
                f"Decoder exited with code {returncode}{self._log_tail()}",
                stage="decode",
            )

    def _log_tail(self) -> str:
        if not self.log_path or not self.log_path.exists():
            return ""
        tail = self.log_path.read_bytes()[-300:].decode(errors="replace").strip()
        return f": {tail}" if tail else ""

    def close(self) -> None:
        """Stop the decoder process. Safe to call more than once."""
        process, self._process = self._process, None
        if process is not None:
            if process.poll() is None:
                process.kill()
            if process.stdout:
                process.stdout.close()
            process.wait()
        self._close_log()

    def _close_log(self) -> None:
        if self._log_file not in (None, subprocess.DEVNULL):
            self._log_file.close()
        self._log_file = None


class FrameSampler:
    """Drives ticks over `[start_index, end_index)` into a frame sink."""

    def __init__(
        self,
        source: FrameSource,
        raster: RasterBuffer,
        frame_stride: int,
        end_index: int,
        start_index: int = 0,
        progress: ProgressReporter | None = None,
        cancel_token: CancellationToken | None = None,
    ):
        self.source = source
        self.raster = raster
        self.frame_stride = frame_stride
        self.start_index = start_index
        self.end_index = end_index
        self.frame_index = start_index
        self.progress = progress
        self.cancel_token = cancel_token
        self.state = SamplerState.AWAITING_FRAME if start_index < end_index else SamplerState.DONE
        self.exhausted = False

    @property
    def ticks(self) -> int:
        return self.frame_index - self.start_index

    def tick(self, sink: Callable[[RasterBuffer], None]) -> SamplerState:
        """Run one tick; returns the state after it."""
        if self.state is SamplerState.DONE:
            return self.state
        if self.cancel_token:
            self.cancel_token.raise_if_cancelled("sample")

        if self.frame_index % self.frame_stride == 0:
            frame = self.source.read_frame()
            if frame is None:
                self.exhausted = True
                self.state = SamplerState.DONE
                return self.state
            self.state = SamplerState.RENDERING
            self.raster.draw(frame)

        sink(self.raster)

        self.state = SamplerState.ADVANCING
        self.frame_index += 1
        if self.progress:
            self.progress.advance()

        self.state = SamplerState.DONE if self.frame_index >= self.end_index else SamplerState.AWAITING_FRAME
        return self.state

    def run(self, sink: Callable[[RasterBuffer], None]) -> int:
        """Tick until done; returns the number of frames handed to the sink."""
        while self.tick(sink) is not SamplerState.DONE:
            pass
        if self.exhausted:
            logger.debug(f"Source exhausted at frame {self.frame_index} of {self.end_index}")
        return self.ticks
