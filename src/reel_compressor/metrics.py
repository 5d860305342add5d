"""Compression ratio, wall-clock duration and speed factor."""

import time
from dataclasses import dataclass

from .constants import REFERENCE_THROUGHPUT_BYTES_PER_MS


def compression_ratio(original_bytes: int, compressed_bytes: int) -> float:
    """original / compressed; values below 1 are reported as-is."""
    if compressed_bytes <= 0:
        return 0.0
    return original_bytes / compressed_bytes


def speed_factor(
    original_bytes: int,
    duration_ms: float,
    reference_throughput: float = REFERENCE_THROUGHPUT_BYTES_PER_MS,
) -> float:
    """
    Baseline encode time divided by actual processing time.

    The baseline is how long a conventional encoder running at
    `reference_throughput` bytes/ms would need for the source. Reporting only.
    """
    baseline_ms = original_bytes / reference_throughput
    return baseline_ms / max(duration_ms, 1.0)


@dataclass(frozen=True)
class PipelineMetrics:
    original_size_bytes: int
    compressed_size_bytes: int
    processing_duration_ms: float
    compression_ratio: float
    speed_factor: float


class MetricsRecorder:
    """Wall-clock timer plus the derived metrics."""

    def __init__(self, reference_throughput: float = REFERENCE_THROUGHPUT_BYTES_PER_MS):
        self.reference_throughput = reference_throughput
        self._started: float | None = None

    def start(self) -> None:
        self._started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return (time.perf_counter() - self._started) * 1000

    def finish(self, original_bytes: int, compressed_bytes: int) -> PipelineMetrics:
        duration_ms = self.elapsed_ms
        return PipelineMetrics(
            original_size_bytes=original_bytes,
            compressed_size_bytes=compressed_bytes,
            processing_duration_ms=duration_ms,
            compression_ratio=compression_ratio(original_bytes, compressed_bytes),
            speed_factor=speed_factor(original_bytes, duration_ms, self.reference_throughput),
        )

    def passthrough(self, original_bytes: int) -> PipelineMetrics:
        """Metrics for an untouched source: ratio 1, speed factor 1."""
        return PipelineMetrics(
            original_size_bytes=original_bytes,
            compressed_size_bytes=original_bytes,
            processing_duration_ms=self.elapsed_ms,
            compression_ratio=1.0,
            speed_factor=1.0,
        )
