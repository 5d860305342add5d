"""
Job status store - Create-and-poll contract for delegated compression.

InProcessJobStore runs jobs on a bounded worker pool in this process; a
remote deployment would implement the same two calls over the network.
"""

import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from .errors import CancelledError, CompressionError
from .orchestrator import CompressionRequest, PipelineOrchestrator
from .progress import CancellationToken

logger = logging.getLogger(__name__)


class JobState(Enum):
    """Status of a compression job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


@dataclass
class JobStatus:
    job_id: str
    status: JobState = JobState.QUEUED
    progress: float = 0.0
    output_ref: str | None = None
    error: str | None = None
    error_stage: str | None = None
    error_type: str | None = None  # CompressionError subclass name
    result: dict[str, Any] | None = None  # CompressionResult.to_dict()


class UnknownJobError(KeyError):
    """Job id was never issued by this store."""


class JobStatusStore(Protocol):
    def create_job(self, params: dict[str, Any]) -> str: ...

    def poll_status(self, job_id: str) -> JobStatus: ...


class InProcessJobStore:
    """Runs jobs through a PipelineOrchestrator on a thread pool."""

    def __init__(self, orchestrator: PipelineOrchestrator, max_workers: int | None = None):
        self.orchestrator = orchestrator
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reelc-job")
        self._jobs: dict[str, JobStatus] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def create_job(self, params: dict[str, Any]) -> str:
        """
        Queue a compression job.

        Raises:
            ValueError: params do not form a valid CompressionRequest
        """
        job_id = uuid.uuid4().hex
        request = CompressionRequest.from_params(params, progress=lambda pct: self._set_progress(job_id, pct))
        token = CancellationToken()
        with self._lock:
            self._jobs[job_id] = JobStatus(job_id=job_id)
            self._tokens[job_id] = token
        self._executor.submit(self._run, job_id, request, token)
        logger.debug(f"Job {job_id} queued for {request.source.name}")
        return job_id

    def poll_status(self, job_id: str) -> JobStatus:
        """Snapshot of the job; later changes do not affect the returned object."""
        with self._lock:
            if job_id not in self._jobs:
                raise UnknownJobError(job_id)
            return replace(self._jobs[job_id])

    def cancel(self, job_id: str) -> None:
        """Request cancellation; a no-op for finished jobs."""
        with self._lock:
            if job_id not in self._jobs:
                raise UnknownJobError(job_id)
            token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()

    def forget(self, job_id: str) -> None:
        """
        Drop a finished job from the store.

        Raises:
            UnknownJobError: job id is not in the store
            ValueError: job is still queued or processing
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise UnknownJobError(job_id)
            if not job.status.is_terminal:
                raise ValueError(f"Job {job_id} is still {job.status.value}")
            del self._jobs[job_id]

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            tokens = list(self._tokens.values())
        if not wait:
            for token in tokens:
                token.cancel()
        self._executor.shutdown(wait=wait)

    def _update(self, job_id: str, **changes) -> None:
        with self._lock:
            job = self._jobs[job_id]
            for key, value in changes.items():
                setattr(job, key, value)

    def _set_progress(self, job_id: str, percent: float) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.progress = max(job.progress, percent)

    def _run(self, job_id: str, request: CompressionRequest, token: CancellationToken) -> None:
        self._update(job_id, status=JobState.PROCESSING)
        try:
            result = self.orchestrator.compress(request, cancel_token=token)
        except CancelledError as e:
            self._update(job_id, status=JobState.CANCELLED, error=e.message, error_stage=e.stage)
        except CompressionError as e:
            self._update(
                job_id, status=JobState.FAILED, error=e.message, error_stage=e.stage, error_type=type(e).__name__
            )
        except Exception as e:
            logger.exception(f"Job {job_id} crashed")
            self._update(job_id, status=JobState.FAILED, error=str(e), error_stage="pipeline")
        else:
            self._update(
                job_id,
                status=JobState.COMPLETED,
                progress=100.0,
                output_ref=str(result.output_url or result.output_asset),
                result=result.to_dict(),
            )
        finally:
            with self._lock:
                self._tokens.pop(job_id, None)
