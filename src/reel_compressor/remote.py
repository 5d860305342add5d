"""
Remote compressor - Delegates a request through a JobStatusStore.

Callers get the same CompressionResult shape as the embedded orchestrator.
"""

import logging
import time
from collections.abc import Callable

from .errors import CancelledError, CompressionError, error_from_kind
from .jobs import JobState, JobStatusStore
from .orchestrator import CompressionRequest, CompressionResult
from .progress import CancellationToken

logger = logging.getLogger(__name__)


class RemoteCompressor:
    def __init__(
        self,
        store: JobStatusStore,
        poll_interval: float = 2.0,
        max_consecutive_errors: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.poll_interval = poll_interval
        self.max_consecutive_errors = max_consecutive_errors
        self._sleep = sleep

    def compress(self, request: CompressionRequest, cancel_token: CancellationToken | None = None) -> CompressionResult:
        """
        Submit the request and poll until the job finishes.

        Progress from the store is forwarded only when it increases. Polling
        errors back off linearly and give up after `max_consecutive_errors`.

        Raises:
            CompressionError: job failed (raised as the class and stage the
                job recorded), polling kept failing, or the job finished
                without a result
            CancelledError: the job was cancelled, or `cancel_token` was set
        """
        job_id = self.store.create_job(request.to_params())
        logger.info(f"Submitted {request.source.name} as job {job_id}")

        last_progress = 0.0
        consecutive_errors = 0
        while True:
            if cancel_token is not None:
                if cancel_token.cancelled and hasattr(self.store, "cancel"):
                    self.store.cancel(job_id)
                cancel_token.raise_if_cancelled("remote")

            try:
                status = self.store.poll_status(job_id)
            except (OSError, TimeoutError) as e:
                consecutive_errors += 1
                logger.warning(f"Polling job {job_id} failed ({consecutive_errors}/{self.max_consecutive_errors}): {e}")
                if consecutive_errors >= self.max_consecutive_errors:
                    raise CompressionError(f"Lost contact with job {job_id}: {e}", stage="remote") from e
                self._sleep(self.poll_interval * consecutive_errors)
                continue
            consecutive_errors = 0

            if status.progress > last_progress:
                last_progress = status.progress
                if request.progress:
                    request.progress(last_progress)

            if status.status.is_terminal and hasattr(self.store, "forget"):
                self.store.forget(job_id)

            if status.status is JobState.COMPLETED:
                if status.result is None:
                    raise CompressionError(f"Job {job_id} completed without a result", stage="remote")
                result = CompressionResult.from_dict(status.result)
                if request.progress and last_progress < 100.0:
                    request.progress(100.0)
                return result
            if status.status is JobState.CANCELLED:
                raise CancelledError(status.error_stage or "remote")
            if status.status is JobState.FAILED:
                raise error_from_kind(
                    status.error_type, status.error or f"Job {job_id} failed", status.error_stage or "remote"
                )

            self._sleep(self.poll_interval)
