"""Base runner classes and protocols."""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Protocol

from ..errors import CompressionError
from ..orchestrator import CompressionRequest, CompressionResult


@dataclass
class ItemOutcome:
    """What happened to one request of a batch."""

    source: Path
    result: CompressionResult | None = None
    error: str | None = None
    stage: str | None = None

    @property
    def success(self) -> bool:
        return self.result is not None


@dataclass
class BatchResult:
    """Result of running a batch of requests."""

    success: bool = True
    items: list[ItemOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def completed(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.success)

    @property
    def passthrough(self) -> int:
        return sum(1 for item in self.items if item.result and item.result.passthrough)

    @property
    def total_input_bytes(self) -> int:
        return sum(item.result.original_size_bytes for item in self.items if item.result)

    @property
    def total_output_bytes(self) -> int:
        return sum(item.result.compressed_size_bytes for item in self.items if item.result)

    @property
    def compression_ratio(self) -> float:
        """Overall input/output ratio across successful items."""
        if self.total_output_bytes == 0:
            return 1.0
        return self.total_input_bytes / self.total_output_bytes

    def record(self, outcome: ItemOutcome) -> None:
        self.items.append(outcome)
        if not outcome.success:
            self.success = False
            self.errors.append(f"{outcome.source.name}: [{outcome.stage}] {outcome.error}")


@dataclass
class RunnerCallbacks:
    """
    Callbacks for runner progress reporting.

    Allows CLI to display progress without coupling runner to Rich/UI.
    All callbacks are optional - if None, no callback is made.
    With PoolRunner they are called from worker threads.
    """

    # Batch lifecycle
    on_batch_start: Callable[[int], None] | None = None  # total items
    on_batch_complete: Callable[[BatchResult], None] | None = None

    # Item lifecycle
    on_item_start: Callable[[Path, int, int], None] | None = None  # source, index, total
    on_item_progress: Callable[[Path, float], None] | None = None  # source, percent
    on_item_complete: Callable[[ItemOutcome], None] | None = None


class RunnerProtocol(Protocol):
    """Protocol for batch runners."""

    def run(self, requests: list[CompressionRequest], callbacks: RunnerCallbacks | None = None) -> BatchResult:
        """
        Execute a batch.

        Args:
            requests: Requests to compress
            callbacks: Optional callbacks for progress reporting

        Returns:
            BatchResult with execution summary
        """
        ...


def with_item_progress(request: CompressionRequest, cb: RunnerCallbacks) -> CompressionRequest:
    """Copy of the request whose progress also feeds the runner's per-item callback."""
    if cb.on_item_progress is None:
        return request
    own = request.progress
    on_item_progress = cb.on_item_progress

    def forward(percent: float) -> None:
        if own:
            own(percent)
        on_item_progress(request.source, percent)

    return replace(request, progress=forward)


def run_one(compress: Callable[[CompressionRequest], CompressionResult], request: CompressionRequest) -> ItemOutcome:
    """Run a request, turning typed pipeline errors into a failed outcome."""
    try:
        return ItemOutcome(source=request.source, result=compress(request))
    except CompressionError as e:
        return ItemOutcome(source=request.source, error=e.message, stage=e.stage)
