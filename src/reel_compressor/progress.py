"""Progress reporting and cooperative cancellation."""

import threading
from collections.abc import Callable

from .errors import CancelledError

ProgressCallback = Callable[[float], None]  # percent, 0..100


class CancellationToken:
    """
    Thread-safe stop flag checked between frames.

    Frames are the atomic unit of work: a cancel request never interrupts
    a frame half-way, it is observed at the next tick.
    """

    def __init__(self, parent: "CancellationToken | None" = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.cancelled)

    def child(self) -> "CancellationToken":
        """Token cancelled by this one, or on its own without affecting this one."""
        return CancellationToken(parent=self)

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise CancelledError(stage)


class ProgressReporter:
    """
    Converts frames processed into a percentage for the caller's callback.

    Safe to share between chunk workers. Reported values never go down
    and `complete()` always lands on exactly 100.
    """

    def __init__(self, callback: ProgressCallback | None, total_frames: int = 0):
        self._callback = callback
        self._total = max(0, total_frames)
        self._done = 0
        self._last = 0.0
        self._reported = False
        self._lock = threading.Lock()

    @property
    def frames_done(self) -> int:
        return self._done

    @property
    def percent(self) -> float:
        return self._last

    def set_total(self, total_frames: int) -> None:
        with self._lock:
            self._total = max(0, total_frames)

    def advance(self, frames: int = 1) -> None:
        """Record processed frames and report the new percentage."""
        with self._lock:
            self._done += frames
            if self._total <= 0:
                return
            self._emit(min(100.0, self._done / self._total * 100))

    def complete(self) -> None:
        with self._lock:
            self._emit(100.0)

    def _emit(self, value: float) -> None:
        if self._reported and value <= self._last:
            return
        self._reported = True
        self._last = value
        if self._callback:
            self._callback(value)
