"""Sequential runner - Compresses requests one at a time."""

import logging

from ..orchestrator import CompressionRequest, PipelineOrchestrator
from .base import BatchResult, RunnerCallbacks, run_one, with_item_progress

logger = logging.getLogger(__name__)


class SequentialRunner:
    """
    Sequential batch runner.

    Runs requests in order on the calling thread.
    Uses callbacks for progress reporting without coupling to UI.
    """

    def __init__(self, orchestrator: PipelineOrchestrator):
        self.orchestrator = orchestrator

    def run(self, requests: list[CompressionRequest], callbacks: RunnerCallbacks | None = None) -> BatchResult:
        cb = callbacks or RunnerCallbacks()
        result = BatchResult()
        total = len(requests)

        if cb.on_batch_start:
            cb.on_batch_start(total)

        for idx, request in enumerate(requests):
            if cb.on_item_start:
                cb.on_item_start(request.source, idx + 1, total)

            outcome = run_one(self.orchestrator.compress, with_item_progress(request, cb))
            result.record(outcome)
            if not outcome.success:
                logger.warning(f"Failed {request.source.name}: [{outcome.stage}] {outcome.error}")

            if cb.on_item_complete:
                cb.on_item_complete(outcome)

        if cb.on_batch_complete:
            cb.on_batch_complete(result)

        return result
