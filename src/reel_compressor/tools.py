"""
External tool resolution - locate ffmpeg/ffprobe and report what they can do.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

# Standard user bin directory following XDG spec
USER_BIN_DIR = Path.home() / ".local" / "share" / "reel-compressor" / "bin"

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")


def resolve_tool_path(tool_name: str, config_path: str | None) -> Path | None:
    """
    Resolve tool path with smart fallback.

    Search order:
    1. Config file override (if specified and exists)
    2. User local bin (~/.local/share/reel-compressor/bin)
    3. System PATH

    Args:
        tool_name: Name of the tool to find
        config_path: Path from config file (may be empty string or None)

    Returns:
        Path to tool, or None if not found
    """
    if config_path:
        p = Path(config_path)
        if p.exists():
            return p

    user_bin = USER_BIN_DIR / tool_name
    if user_bin.exists():
        return user_bin

    sys_path = shutil.which(tool_name)
    if sys_path:
        return Path(sys_path)

    return None


@dataclass(frozen=True)
class ToolPaths:
    """Executables used by the pipeline stages."""

    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"

    @classmethod
    def resolve(cls, tools_config: dict | None = None) -> "ToolPaths":
        """
        Resolve ffmpeg/ffprobe from config, user bin or PATH.

        Unresolved tools keep their bare name so the failure surfaces
        as a typed error from the stage that first runs them.
        """
        tools_config = tools_config or {}
        resolved = {}
        for name in REQUIRED_TOOLS:
            path = resolve_tool_path(name, tools_config.get(name))
            resolved[name] = str(path) if path else name
        return cls(**resolved)


def check_tools_status(tools_config: dict | None = None) -> dict[str, Path | None]:
    """Map each required tool to its resolved path (None when missing)."""
    tools_config = tools_config or {}
    return {name: resolve_tool_path(name, tools_config.get(name)) for name in REQUIRED_TOOLS}


def get_ffmpeg_version(ffmpeg: str = "ffmpeg") -> str | None:
    """First line of `ffmpeg -version`, or None if ffmpeg cannot run."""
    try:
        result = subprocess.run([ffmpeg, "-version"], capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0 or not result.stdout:
        return None
    return result.stdout.splitlines()[0].strip()
