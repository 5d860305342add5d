"""
Per-call pipeline state.

One PipelineState exists per in-flight compression and is never shared
between requests. It tracks every decode/encode handle the call opens so
they can all be released however the call ends.
"""

import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Closeable(Protocol):
    def close(self) -> None: ...


@dataclass
class PipelineState:
    source: Path
    profile_name: str
    work_dir: Path | None = None
    output_path: Path | None = None
    stage: str = "init"
    total_frames: int = 0
    frames_encoded: int = 0
    output_committed: bool = False
    warnings: list[str] = field(default_factory=list)
    _handles: list[Any] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def enter(self, stage: str) -> None:
        logger.info(f"{self.source.name}: stage {self.stage} -> {stage}")
        self.stage = stage

    def acquire(self, handle: Closeable) -> Closeable:
        """Register a handle for release; returns it for chaining."""
        with self._lock:
            self._handles.append(handle)
        return handle

    def release(self, handle: Closeable) -> None:
        with self._lock:
            if handle not in self._handles:
                return
            self._handles.remove(handle)
        handle.close()

    @property
    def open_handles(self) -> int:
        with self._lock:
            return len(self._handles)

    def warn(self, message: str) -> None:
        logger.warning(f"{self.source.name}: {message}")
        self.warnings.append(message)

    def release_all(self) -> int:
        """
        Close every registered handle, newest first. Idempotent.

        Runs on failure paths too, so close errors are logged rather than
        raised over the original error. Returns how many closes failed.
        """
        with self._lock:
            handles, self._handles = self._handles[::-1], []
        failures = 0
        for handle in handles:
            try:
                handle.close()
            except OSError as e:
                logger.error(f"Failed to release {type(handle).__name__}: {e}")
                failures += 1
        return failures

    def discard_work_dir(self) -> None:
        if self.work_dir is not None and self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
        self.work_dir = None
