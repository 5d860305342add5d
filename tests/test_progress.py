"""Tests for progress reporting and cancellation."""

import threading

import pytest

from reel_compressor.errors import CancelledError
from reel_compressor.progress import CancellationToken, ProgressReporter


class TestProgressReporter:
    """Tests for ProgressReporter."""

    def test_percent_of_total(self):
        values = []
        reporter = ProgressReporter(values.append, total_frames=8)
        for _ in range(4):
            reporter.advance()

        assert values == [12.5, 25.0, 37.5, 50.0]
        assert reporter.frames_done == 4
        assert reporter.percent == 50.0

    def test_complete_emits_exactly_100(self):
        values = []
        reporter = ProgressReporter(values.append, total_frames=10)
        reporter.advance(3)
        reporter.complete()
        assert values == [30.0, 100.0]

    def test_complete_once(self):
        values = []
        reporter = ProgressReporter(values.append, total_frames=2)
        reporter.advance(2)
        reporter.complete()
        assert values == [100.0]

    def test_never_exceeds_100(self):
        values = []
        reporter = ProgressReporter(values.append, total_frames=2)
        reporter.advance(5)
        assert values == [100.0]

    def test_unknown_total_reports_nothing_until_complete(self):
        values = []
        reporter = ProgressReporter(values.append)
        reporter.advance()
        reporter.complete()
        assert values == [100.0]

    def test_set_total(self):
        values = []
        reporter = ProgressReporter(values.append)
        reporter.set_total(4)
        reporter.advance()
        assert values == [25.0]

    def test_no_callback(self):
        reporter = ProgressReporter(None, total_frames=4)
        reporter.advance()
        reporter.complete()
        assert reporter.percent == 100.0

    def test_concurrent_advances_are_monotonic(self):
        values = []
        reporter = ProgressReporter(values.append, total_frames=4000)

        def work():
            for _ in range(1000):
                reporter.advance()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert values == sorted(values)
        assert values[-1] == 100.0
        assert reporter.frames_done == 4000


class TestCancellationToken:
    def test_not_cancelled_by_default(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled("sample")

    def test_raise_names_stage(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError) as exc_info:
            token.raise_if_cancelled("encode")
        assert exc_info.value.stage == "encode"

    def test_child_follows_parent(self):
        parent = CancellationToken()
        child = parent.child()
        parent.cancel()
        assert child.cancelled is True

    def test_child_cancel_does_not_affect_parent(self):
        parent = CancellationToken()
        child = parent.child()
        child.cancel()
        assert child.cancelled is True
        assert parent.cancelled is False
