"""
Configuration management with YAML loading and environment variable support.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import (
    AUDIO_TIMEOUT,
    FINALIZE_TIMEOUT,
    PROBE_TIMEOUT,
    REFERENCE_THROUGHPUT_BYTES_PER_MS,
    THUMBNAIL_HEIGHT,
    THUMBNAIL_TIMEOUT,
    THUMBNAIL_TIMESTAMP,
    THUMBNAIL_WIDTH,
)
from .encoder import DEFAULT_CODEC_PREFERENCE

SECTIONS = ["paths", "pipeline", "thumbnail", "processing", "remote", "logging"]


def _get_default_data_dir() -> Path:
    """Get default data directory based on XDG spec or platform."""
    if xdg_data := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_data) / "reel-compressor"
    return Path.home() / ".local" / "share" / "reel-compressor"


def _env_path(env_var: str, default: Path | None = None) -> Path | None:
    """Get path from environment variable or return default."""
    if value := os.environ.get(env_var):
        return Path(value)
    return default


@dataclass
class PathsConfig:
    """Paths configuration - all paths can be overridden via environment variables."""

    # Compressed outputs; None writes next to the source
    output_dir: Path | None = field(default_factory=lambda: _env_path("REELC_OUTPUT_DIR"))
    # Scratch space for part files, audio tracks and chunks; None uses the system temp dir
    work_dir: Path | None = field(default_factory=lambda: _env_path("REELC_WORK_DIR"))
    # Root of the local asset store
    asset_root: Path | None = field(default_factory=lambda: _env_path("REELC_ASSET_ROOT"))
    logs_dir: Path | None = None


@dataclass
class PipelineConfig:
    default_profile: str = "balanced"
    probe_timeout: float = PROBE_TIMEOUT
    audio_timeout: float = AUDIO_TIMEOUT
    finalize_timeout: float = FINALIZE_TIMEOUT
    parallel_chunks: int = 1
    min_chunk_seconds: float = 10.0
    codec_preference: list[str] = field(default_factory=lambda: list(DEFAULT_CODEC_PREFERENCE))
    fit_bitrate: bool = True
    reference_throughput_bytes_per_ms: float = REFERENCE_THROUGHPUT_BYTES_PER_MS


@dataclass
class ThumbnailConfig:
    timestamp: float = THUMBNAIL_TIMESTAMP
    width: int = THUMBNAIL_WIDTH
    height: int = THUMBNAIL_HEIGHT
    quality: int = 3  # mjpeg -q:v, 2 (best) to 31
    timeout: float = THUMBNAIL_TIMEOUT


@dataclass
class ProcessingConfig:
    workers: int = 0  # 0 = os.cpu_count()


@dataclass
class RemoteConfig:
    poll_interval: float = 2.0
    max_consecutive_errors: int = 5


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file_logging: bool = False
    console_logging: bool = True
    log_file: Path | None = None


@dataclass
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    thumbnail: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tools: dict = field(default_factory=dict)
    profiles: dict = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "AppConfig":
        """Create config from dictionary."""
        config = cls()

        for attr in SECTIONS:
            section = getattr(config, attr)
            for key, value in (data.get(attr) or {}).items():
                if not hasattr(section, key):
                    continue
                if isinstance(getattr(section, key), Path) or key.endswith(("_dir", "_root", "_file")):
                    value = Path(value) if isinstance(value, str) else value
                setattr(section, key, value)

        if "tools" in data:
            config.tools = dict(data["tools"] or {})

        if "profiles" in data:
            config.profiles = dict(data["profiles"] or {})

        return config

    def _to_dict(self) -> dict:
        """Convert config to dictionary."""
        result = {}
        for attr in SECTIONS:
            section = getattr(self, attr)
            result[attr] = {
                key: str(value) if isinstance(value, Path) else value for key, value in vars(section).items()
            }
        result["tools"] = dict(self.tools)
        result["profiles"] = dict(self.profiles)
        return result

    @property
    def worker_count(self) -> int:
        return self.processing.workers if self.processing.workers > 0 else (os.cpu_count() or 1)

    def default_log_file(self) -> Path:
        if self.logging.log_file:
            return self.logging.log_file
        logs_dir = self.paths.logs_dir or _get_default_data_dir() / "logs"
        return logs_dir / "reelc.log"


def _get_default_config_dir() -> Path:
    """Get default config directory."""
    # Check environment variable first
    if config_dir := os.environ.get("REELC_CONFIG_DIR"):
        return Path(config_dir)

    # Check XDG config home
    if xdg_config := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_config) / "reel-compressor"

    # Fall back to ~/.config
    return Path.home() / ".config" / "reel-compressor"


def load_config(config_path: Path | None = None, config_dir: Path | None = None) -> AppConfig:
    """
    Load configuration.

    Args:
        config_path: Path to config file (default: searches standard locations)
        config_dir: Directory searched for config.yaml

    Returns:
        AppConfig (defaults if no file is found)
    """
    if config_dir is None:
        config_dir = _get_default_config_dir()

    if config_path is None:
        search_paths = [
            config_dir / "config.yaml",
            Path.cwd() / "reelc.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    return AppConfig.from_yaml(config_path) if config_path else AppConfig()


def validate_config(config: AppConfig) -> list[str]:
    """
    Validate values that would otherwise fail deep inside a run.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []
    pipeline = config.pipeline
    if pipeline.parallel_chunks < 1:
        errors.append(f"pipeline.parallel_chunks must be >= 1, got {pipeline.parallel_chunks}")
    if not pipeline.codec_preference:
        errors.append("pipeline.codec_preference is empty")
    for name in ("probe_timeout", "audio_timeout", "finalize_timeout"):
        if getattr(pipeline, name) <= 0:
            errors.append(f"pipeline.{name} must be positive")
    if pipeline.reference_throughput_bytes_per_ms <= 0:
        errors.append("pipeline.reference_throughput_bytes_per_ms must be positive")
    if config.remote.poll_interval <= 0:
        errors.append("remote.poll_interval must be positive")
    if config.processing.workers < 0:
        errors.append("processing.workers must be >= 0")
    return errors
