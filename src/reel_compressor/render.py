"""
Render/scale stage - Off-screen raster buffer fed to the encoder.

The decoder already resamples frames to the output size; the render stage
owns the buffer those frames are drawn into. Ticks that skip the draw leave
the previous frame in place so the encoder reads it again.
"""

import math

import numpy as np

BYTES_PER_PIXEL = 3  # rgb24


def scaled_dimensions(width: int, height: int, scale_factor: float) -> tuple[int, int]:
    """floor(width * scale), floor(height * scale), never below 1 pixel."""
    return max(1, math.floor(width * scale_factor)), max(1, math.floor(height * scale_factor))


def fit_within(width: int, height: int, box_width: int, box_height: int) -> tuple[int, int]:
    """
    Largest even size with the source aspect ratio that fits the box.

    Examples:
        fit_within(1920, 1080, 1280, 720) -> (1280, 720)
        fit_within(1080, 1920, 1280, 720) -> (404, 720)
    """
    if width <= 0 or height <= 0:
        return box_width, box_height
    aspect = width / height
    if aspect > box_width / box_height:
        out_w, out_h = box_width, box_width / aspect
    else:
        out_w, out_h = box_height * aspect, box_height
    return max(2, int(out_w) // 2 * 2), max(2, int(out_h) // 2 * 2)


def scale_filter(width: int, height: int) -> str:
    """ffmpeg scale expression for the render size."""
    return f"scale={width}:{height}:flags=area"


class RasterBuffer:
    """Fixed-size RGB frame buffer."""

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self.pixels = np.zeros((height, width, BYTES_PER_PIXEL), dtype=np.uint8)
        self.draw_count = 0

    @property
    def frame_size(self) -> int:
        return self.width * self.height * BYTES_PER_PIXEL

    @property
    def has_content(self) -> bool:
        return self.draw_count > 0

    def draw(self, frame: bytes) -> None:
        """Copy one decoded rgb24 frame into the buffer."""
        if len(frame) != self.frame_size:
            raise ValueError(f"Frame is {len(frame)} bytes, expected {self.frame_size} for {self.width}x{self.height}")
        np.copyto(self.pixels, np.frombuffer(frame, dtype=np.uint8).reshape(self.height, self.width, BYTES_PER_PIXEL))
        self.draw_count += 1

    def view(self) -> memoryview:
        """Zero-copy view of the current contents for the encoder pipe."""
        return memoryview(self.pixels).cast("B")
