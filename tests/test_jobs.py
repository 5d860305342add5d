"""Tests for the in-process job status store."""

import threading
import time
from pathlib import Path

import pytest

from fakes import MB

from reel_compressor.errors import EncodeFailedError
from reel_compressor.jobs import InProcessJobStore, JobState, UnknownJobError
from reel_compressor.orchestrator import CompressionResult


def wait_for(store, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = store.poll_status(job_id)
        if status.status.is_terminal:
            return status
        time.sleep(0.01)
    raise AssertionError(f"Job {job_id} did not finish")


def make_result(source: Path) -> CompressionResult:
    return CompressionResult(
        output_asset=source.with_name("out.webm"),
        original_size_bytes=100,
        compressed_size_bytes=10,
        compression_ratio=10.0,
        processing_duration_ms=5.0,
        profile_used="fast",
        quality_score=3,
        speed_factor=2.0,
        codec="vp9",
    )


class StubOrchestrator:
    """Orchestrator replacement with scripted behaviour."""

    def __init__(self, error: Exception | None = None, block: bool = False):
        self.error = error
        self.block = block
        self.started = threading.Event()

    def compress(self, request, cancel_token=None):
        if request.progress:
            request.progress(40.0)
        self.started.set()
        if self.block:
            while not cancel_token.cancelled:
                time.sleep(0.005)
            cancel_token.raise_if_cancelled("encode")
        if self.error:
            raise self.error
        return make_result(request.source)


def params(source: Path, **extra) -> dict:
    return {"source": str(source), "target_size_bytes": 10 * MB, "profile_name": "fast", **extra}


class TestJobState:
    def test_terminal_states(self):
        assert JobState.QUEUED.is_terminal is False
        assert JobState.PROCESSING.is_terminal is False
        assert {s for s in JobState if s.is_terminal} == {JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED}


class TestInProcessJobStore:
    """Tests for create/poll/cancel."""

    def test_completed_job(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator(), max_workers=1)
        job_id = store.create_job(params(tmp_path / "a.mov"))

        status = wait_for(store, job_id)
        store.shutdown()

        assert status.status is JobState.COMPLETED
        assert status.progress == 100.0
        assert status.output_ref == str(tmp_path / "out.webm")
        assert CompressionResult.from_dict(status.result).codec == "vp9"

    def test_failed_job_keeps_stage(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator(error=EncodeFailedError("pipe closed", stage="encode")))
        status = wait_for(store, store.create_job(params(tmp_path / "a.mov")))
        store.shutdown()

        assert status.status is JobState.FAILED
        assert status.error == "pipe closed"
        assert status.error_stage == "encode"
        assert status.error_type == "EncodeFailedError"

    def test_unexpected_exception_fails_job(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator(error=RuntimeError("boom")))
        status = wait_for(store, store.create_job(params(tmp_path / "a.mov")))
        store.shutdown()

        assert status.status is JobState.FAILED
        assert status.error == "boom"
        assert status.error_type is None

    def test_cancel_running_job(self, tmp_path):
        orchestrator = StubOrchestrator(block=True)
        store = InProcessJobStore(orchestrator)
        job_id = store.create_job(params(tmp_path / "a.mov"))
        assert orchestrator.started.wait(5)

        store.cancel(job_id)
        status = wait_for(store, job_id)
        store.shutdown()

        assert status.status is JobState.CANCELLED
        assert status.error_stage == "encode"

    def test_cancel_finished_job_is_noop(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator())
        job_id = store.create_job(params(tmp_path / "a.mov"))
        wait_for(store, job_id)

        store.cancel(job_id)
        store.shutdown()

        assert store.poll_status(job_id).status is JobState.COMPLETED

    def test_poll_returns_snapshot(self, tmp_path):
        orchestrator = StubOrchestrator(block=True)
        store = InProcessJobStore(orchestrator)
        job_id = store.create_job(params(tmp_path / "a.mov"))
        assert orchestrator.started.wait(5)
        snapshot = store.poll_status(job_id)

        store.cancel(job_id)
        wait_for(store, job_id)
        store.shutdown()

        assert snapshot.status is JobState.PROCESSING
        assert snapshot.progress == 40.0
        assert store.poll_status(job_id).status is JobState.CANCELLED

    def test_unknown_job(self):
        store = InProcessJobStore(StubOrchestrator())
        with pytest.raises(UnknownJobError):
            store.poll_status("nope")
        with pytest.raises(UnknownJobError):
            store.cancel("nope")
        store.shutdown()

    def test_forget_finished_job(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator())
        job_id = store.create_job(params(tmp_path / "a.mov"))
        wait_for(store, job_id)

        store.forget(job_id)
        store.shutdown()

        with pytest.raises(UnknownJobError):
            store.poll_status(job_id)
        with pytest.raises(UnknownJobError):
            store.forget(job_id)

    def test_forget_running_job_refused(self, tmp_path):
        orchestrator = StubOrchestrator(block=True)
        store = InProcessJobStore(orchestrator)
        job_id = store.create_job(params(tmp_path / "a.mov"))
        assert orchestrator.started.wait(5)

        with pytest.raises(ValueError, match="still processing"):
            store.forget(job_id)

        store.cancel(job_id)
        wait_for(store, job_id)
        store.shutdown()

    def test_invalid_params(self, tmp_path):
        store = InProcessJobStore(StubOrchestrator())
        with pytest.raises(ValueError, match="target_size_bytes"):
            store.create_job({"source": str(tmp_path / "a.mov"), "target_size_bytes": 0})
        store.shutdown()

    def test_runs_real_pipeline(self, harness):
        store = InProcessJobStore(harness.build(), max_workers=1)
        job_id = store.create_job(params(harness.source, thumbnail_at=None))

        status = wait_for(store, job_id)
        store.shutdown()

        assert status.status is JobState.COMPLETED, status.error
        result = CompressionResult.from_dict(status.result)
        assert result.output_asset.exists()
        assert result.compressed_size_bytes <= 10 * MB

