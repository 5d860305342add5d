"""Asset store contract and a directory-backed implementation."""

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Protocol

logger = logging.getLogger(__name__)


class AssetStore(Protocol):
    """Sink for compressed outputs and thumbnails."""

    def upload(self, data: bytes, path: str) -> str:
        """Store `data` under `path`; returns its public URL."""
        ...

    def get_public_url(self, path: str) -> str: ...


def _safe_relative(path: str) -> PurePosixPath:
    """Reject absolute paths and parent references."""
    rel = PurePosixPath(path)
    if rel.is_absolute() or ".." in rel.parts or not rel.parts:
        raise ValueError(f"Invalid asset path: {path!r}")
    return rel


class LocalAssetStore:
    """
    Stores assets under a root directory.

    URLs are `file://` URIs unless a `base_url` is configured, in which case
    they are `<base_url>/<path>` (for a directory served over HTTP).
    """

    def __init__(self, root: Path, base_url: str | None = None):
        self.root = root
        self.base_url = base_url.rstrip("/") if base_url else None

    def _target(self, path: str) -> Path:
        return self.root.joinpath(*_safe_relative(path).parts)

    def upload(self, data: bytes, path: str) -> str:
        target = self._target(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".upload")
        tmp.write_bytes(data)
        os.replace(tmp, target)
        logger.debug(f"Stored {len(data)} bytes at {target}")
        return self.get_public_url(path)

    def get_public_url(self, path: str) -> str:
        rel = _safe_relative(path)
        if self.base_url:
            return f"{self.base_url}/{rel.as_posix()}"
        return self._target(path).resolve().as_uri()

    def exists(self, path: str) -> bool:
        return self._target(path).exists()
