"""Pool runner - Compresses requests concurrently on a bounded thread pool."""

import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from ..orchestrator import CompressionRequest, CompressionResult, PipelineOrchestrator
from ..progress import CancellationToken
from .base import BatchResult, ItemOutcome, RunnerCallbacks, run_one, with_item_progress

logger = logging.getLogger(__name__)


class PoolRunner:
    """
    Worker-pool batch runner.

    Pool size bounds how many decoder/encoder process pairs run at once;
    it defaults to the number of CPUs. Pipelines share nothing but the
    orchestrator, which keeps no per-call state.
    """

    def __init__(self, orchestrator: PipelineOrchestrator, max_workers: int | None = None):
        self.orchestrator = orchestrator
        self.max_workers = max_workers or os.cpu_count() or 1
        self.cancel_token = CancellationToken()
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reelc-worker")
            return self._executor

    def _compressor(self) -> Callable[[CompressionRequest], CompressionResult]:
        """Bind work to the current token so a later cancel() reaches it even while queued."""
        with self._lock:
            token = self.cancel_token
        return lambda request: self.orchestrator.compress(request, cancel_token=token.child())

    def submit(self, request: CompressionRequest) -> Future:
        """Schedule one request; the future resolves to a CompressionResult."""
        return self._pool().submit(self._compressor(), request)

    def run(self, requests: list[CompressionRequest], callbacks: RunnerCallbacks | None = None) -> BatchResult:
        cb = callbacks or RunnerCallbacks()
        result = BatchResult()
        total = len(requests)
        compress = self._compressor()

        if cb.on_batch_start:
            cb.on_batch_start(total)

        def work(idx: int, request: CompressionRequest) -> ItemOutcome:
            if cb.on_item_start:
                cb.on_item_start(request.source, idx + 1, total)
            outcome = run_one(compress, with_item_progress(request, cb))
            if not outcome.success:
                logger.warning(f"Failed {request.source.name}: [{outcome.stage}] {outcome.error}")
            if cb.on_item_complete:
                cb.on_item_complete(outcome)
            return outcome

        futures = [self._pool().submit(work, idx, request) for idx, request in enumerate(requests)]
        # Keep input order in the batch result
        for future in futures:
            result.record(future.result())

        if cb.on_batch_complete:
            cb.on_batch_complete(result)

        return result

    def cancel(self) -> None:
        """
        Cancel every running and queued request at its next frame boundary.

        Batches started afterwards run under a fresh token.
        """
        with self._lock:
            token, self.cancel_token = self.cancel_token, CancellationToken()
        token.cancel()

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def __enter__(self) -> "PoolRunner":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
