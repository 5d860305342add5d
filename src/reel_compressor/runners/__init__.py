"""
Runners layer - Execution engines for batches of compression requests.

Each request runs its own pipeline with its own state; runners only decide
how many run at once and report progress through callbacks.
"""

from .base import BatchResult, ItemOutcome, RunnerCallbacks, RunnerProtocol
from .pool import PoolRunner
from .sequential import SequentialRunner

__all__ = [
    "BatchResult",
    "ItemOutcome",
    "PoolRunner",
    "RunnerCallbacks",
    "RunnerProtocol",
    "SequentialRunner",
]
