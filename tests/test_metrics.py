"""Tests for compression metrics."""

from unittest.mock import patch

import pytest

from reel_compressor.constants import REFERENCE_THROUGHPUT_BYTES_PER_MS
from reel_compressor.metrics import MetricsRecorder, compression_ratio, speed_factor


class TestCompressionRatio:
    def test_ratio(self):
        assert compression_ratio(500, 50) == 10.0

    def test_growth_is_not_clamped(self):
        assert compression_ratio(100, 200) == 0.5

    def test_zero_output(self):
        assert compression_ratio(100, 0) == 0.0


class TestSpeedFactor:
    def test_baseline_speed_is_one(self):
        # 1 MiB at the reference rate takes 1000 ms
        assert speed_factor(1024 * 1024, 1000.0) == pytest.approx(1.0)

    def test_twice_as_fast(self):
        assert speed_factor(1024 * 1024, 500.0) == pytest.approx(2.0)

    def test_duration_floor(self):
        assert speed_factor(1000, 0.0) == speed_factor(1000, 1.0)

    def test_custom_reference(self):
        assert speed_factor(2000, 1000.0, reference_throughput=1.0) == pytest.approx(2.0)

    def test_reference_constant(self):
        assert REFERENCE_THROUGHPUT_BYTES_PER_MS == pytest.approx(1048.576)


class TestMetricsRecorder:
    def test_finish(self):
        recorder = MetricsRecorder()
        with patch("reel_compressor.metrics.time.perf_counter", side_effect=[10.0, 12.0]):
            recorder.start()
            metrics = recorder.finish(10 * 1024 * 1024, 1024 * 1024)

        assert metrics.processing_duration_ms == pytest.approx(2000.0)
        assert metrics.compression_ratio == 10.0
        assert metrics.speed_factor == pytest.approx(5.0)

    def test_passthrough(self):
        recorder = MetricsRecorder()
        recorder.start()
        metrics = recorder.passthrough(1234)

        assert metrics.compression_ratio == 1.0
        assert metrics.speed_factor == 1.0
        assert metrics.compressed_size_bytes == 1234

    def test_elapsed_before_start(self):
        assert MetricsRecorder().elapsed_ms == 0.0
