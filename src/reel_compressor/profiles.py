"""
Compression profiles - Named speed/quality tiers.

Terminology:
- Profile: Encode parameters for one tier (scale, frame rate, stride, bitrates)
- Catalog: Immutable lookup of profiles by name
- Pipeline: The single decode/sample/render/encode loop every profile drives

A profile defines HOW hard to squeeze, not WHAT to squeeze.
Adding a tier is a data change: add an entry here or under `profiles:` in YAML.
"""

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from itertools import combinations

from .constants import CONTAINER_HEADROOM, MIN_VIDEO_BITRATE_BPS
from .errors import ProfileNotFoundError


@dataclass(frozen=True)
class CompressionProfile:
    """Encode parameters for one named tier."""

    name: str
    scale_factor: float  # 0 < x <= 1, applied to both dimensions
    target_frame_rate: float  # capture rate in Hz
    frame_stride: int  # redraw every Nth sample, hold the rest
    video_bitrate_bps: int
    audio_bitrate_bps: int | None  # None = video-only tier
    quality_score: int  # ordinal 1-10
    description: str = ""

    def __post_init__(self):
        if not 0 < self.scale_factor <= 1:
            raise ValueError(f"{self.name}: scale_factor must be in (0, 1], got {self.scale_factor}")
        if self.target_frame_rate <= 0:
            raise ValueError(f"{self.name}: target_frame_rate must be positive, got {self.target_frame_rate}")
        if self.frame_stride < 1:
            raise ValueError(f"{self.name}: frame_stride must be >= 1, got {self.frame_stride}")
        if self.video_bitrate_bps <= 0:
            raise ValueError(f"{self.name}: video_bitrate_bps must be positive, got {self.video_bitrate_bps}")
        if self.audio_bitrate_bps is not None and self.audio_bitrate_bps <= 0:
            raise ValueError(f"{self.name}: audio_bitrate_bps must be positive, got {self.audio_bitrate_bps}")
        if not 1 <= self.quality_score <= 10:
            raise ValueError(f"{self.name}: quality_score must be in 1..10, got {self.quality_score}")

    @property
    def has_audio(self) -> bool:
        return self.audio_bitrate_bps is not None


# Default profiles, fastest first
DEFAULT_PROFILES: dict[str, CompressionProfile] = {
    "maximum-speed": CompressionProfile(
        name="maximum-speed",
        scale_factor=0.30,
        target_frame_rate=8,
        frame_stride=8,
        video_bitrate_bps=200_000,
        audio_bitrate_bps=None,
        quality_score=1,
        description="Smallest and fastest, choppy preview quality",
    ),
    "high-speed": CompressionProfile(
        name="high-speed",
        scale_factor=0.40,
        target_frame_rate=12,
        frame_stride=6,
        video_bitrate_bps=300_000,
        audio_bitrate_bps=None,
        quality_score=2,
        description="Very fast, low frame rate",
    ),
    "fast": CompressionProfile(
        name="fast",
        scale_factor=0.50,
        target_frame_rate=15,
        frame_stride=4,
        video_bitrate_bps=500_000,
        audio_bitrate_bps=None,
        quality_score=3,
        description="Fast, half resolution",
    ),
    "rapid": CompressionProfile(
        name="rapid",
        scale_factor=0.60,
        target_frame_rate=20,
        frame_stride=3,
        video_bitrate_bps=800_000,
        audio_bitrate_bps=None,
        quality_score=4,
        description="Quick turnaround, watchable motion",
    ),
    "balanced": CompressionProfile(
        name="balanced",
        scale_factor=0.70,
        target_frame_rate=24,
        frame_stride=2,
        video_bitrate_bps=2_000_000,
        audio_bitrate_bps=128_000,
        quality_score=8,
        description="Good quality and speed, audio kept",
    ),
    "high": CompressionProfile(
        name="high",
        scale_factor=0.85,
        target_frame_rate=30,
        frame_stride=1,
        video_bitrate_bps=3_000_000,
        audio_bitrate_bps=128_000,
        quality_score=9,
        description="Every frame at 30 fps, audio kept",
    ),
    "premium": CompressionProfile(
        name="premium",
        scale_factor=0.90,
        target_frame_rate=30,
        frame_stride=1,
        video_bitrate_bps=4_000_000,
        audio_bitrate_bps=128_000,
        quality_score=10,
        description="Near-original quality, slowest",
    ),
}

# Names used by the older per-tier services
PROFILE_ALIASES = {
    "blazing": "maximum-speed",
    "lightning": "high-speed",
    "turbo": "fast",
    "quality": "high",
}

_BITRATE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)(?:bps)?\s*$")


def parse_bitrate(value: int | float | str | None) -> int | None:
    """
    Parse a bitrate into bits per second.

    Accepts plain numbers and ffmpeg-style strings ("128k", "2.5M").

    Examples:
        parse_bitrate("2M")   -> 2000000
        parse_bitrate("128k") -> 128000
        parse_bitrate(None)   -> None
    """
    if value is None:
        return None
    if isinstance(value, int | float):
        return int(value)
    match = _BITRATE_RE.match(value)
    if not match:
        raise ValueError(f"Invalid bitrate: {value!r}")
    number, unit = float(match.group(1)), match.group(2).lower()
    multiplier = {"": 1, "k": 1_000, "m": 1_000_000}[unit]
    return int(number * multiplier)


def format_bitrate(bps: int | None) -> str:
    """Human-readable bitrate (e.g. 2.0 Mbps, 128 kbps)."""
    if bps is None:
        return "-"
    if bps >= 1_000_000:
        return f"{bps / 1_000_000:.1f} Mbps"
    return f"{bps // 1000} kbps"


def normalize_profile_name(name: str) -> str:
    """Lowercase, underscores to hyphens, legacy aliases resolved."""
    key = name.strip().lower().replace("_", "-")
    return PROFILE_ALIASES.get(key, key)


def validate_tradeoff(profiles: Mapping[str, CompressionProfile]) -> list[str]:
    """
    Check the monotonic speed/quality tradeoff.

    A higher-quality profile must not be strictly worse than a lower-quality one
    on both axes at once (smaller scale AND larger stride).

    Returns:
        List of violation messages (empty if valid)
    """
    problems = []
    for a, b in combinations(profiles.values(), 2):
        better, worse = (a, b) if a.quality_score > b.quality_score else (b, a)
        if better.quality_score == worse.quality_score:
            continue
        if better.scale_factor < worse.scale_factor and better.frame_stride > worse.frame_stride:
            problems.append(
                f"{better.name} (quality {better.quality_score}) has smaller scale and larger stride "
                f"than {worse.name} (quality {worse.quality_score})"
            )
    return problems


class ProfileCatalog:
    """Immutable name -> profile lookup. Pure, no side effects."""

    def __init__(self, profiles: Mapping[str, CompressionProfile] | None = None):
        profiles = dict(DEFAULT_PROFILES if profiles is None else profiles)
        problems = validate_tradeoff(profiles)
        if problems:
            raise ValueError("Profile catalog violates speed/quality tradeoff: " + "; ".join(problems))
        self._profiles = {normalize_profile_name(name): profile for name, profile in profiles.items()}

    def resolve(self, name: str) -> CompressionProfile:
        """Look up a profile by name or alias."""
        profile = self._profiles.get(normalize_profile_name(name))
        if profile is None:
            raise ProfileNotFoundError(name, self.names())
        return profile

    def names(self) -> list[str]:
        """Profile names ordered fastest to highest quality."""
        return [p.name for p in sorted(self._profiles.values(), key=lambda p: (p.quality_score, p.name))]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_profile_name(name) in self._profiles

    def __iter__(self) -> Iterator[CompressionProfile]:
        return iter(sorted(self._profiles.values(), key=lambda p: (p.quality_score, p.name)))

    def __len__(self) -> int:
        return len(self._profiles)

    @classmethod
    def from_yaml_config(cls, yaml_cfg: dict) -> "ProfileCatalog":
        return cls(load_profiles_from_yaml(yaml_cfg))


def load_profile(name: str, config_dict: dict, base: CompressionProfile | None = None) -> CompressionProfile:
    """
    Build a profile from a config dict, inheriting unset fields from `base`.

    Args:
        name: Profile name
        config_dict: Profile configuration from YAML
        base: Existing profile to override (e.g. a default tier)

    Returns:
        CompressionProfile instance
    """

    def pick(key: str, fallback):
        return config_dict[key] if key in config_dict else fallback

    audio_default = base.audio_bitrate_bps if base else None
    return CompressionProfile(
        name=name,
        scale_factor=float(pick("scale_factor", base.scale_factor if base else 1.0)),
        target_frame_rate=float(pick("frame_rate", base.target_frame_rate if base else 30)),
        frame_stride=int(pick("frame_stride", base.frame_stride if base else 1)),
        video_bitrate_bps=parse_bitrate(pick("video_bitrate", base.video_bitrate_bps if base else 2_000_000)),
        audio_bitrate_bps=parse_bitrate(pick("audio_bitrate", audio_default)),
        quality_score=int(pick("quality", base.quality_score if base else 5)),
        description=pick("description", base.description if base else ""),
    )


def load_profiles_from_yaml(yaml_cfg: dict) -> dict[str, CompressionProfile]:
    """
    Merge YAML `profiles:` overrides onto the default tiers.

    Args:
        yaml_cfg: Full YAML configuration dictionary

    Returns:
        Dictionary of profile name to CompressionProfile
    """
    profiles = dict(DEFAULT_PROFILES)

    for raw_name, cfg in (yaml_cfg.get("profiles") or {}).items():
        name = normalize_profile_name(raw_name)
        profiles[name] = load_profile(name, cfg or {}, base=profiles.get(name))

    return profiles


def fit_video_bitrate(
    profile: CompressionProfile,
    target_size_bytes: int,
    capture_seconds: float,
    with_audio: bool,
) -> int:
    """
    Cap the profile's video bitrate so the output lands near the target size.

    Never raises the bitrate above the profile's own value and never goes
    below MIN_VIDEO_BITRATE_BPS.
    """
    if capture_seconds <= 0:
        return profile.video_bitrate_bps
    audio_bps = profile.audio_bitrate_bps if with_audio and profile.audio_bitrate_bps else 0
    budget_bps = int(target_size_bytes * CONTAINER_HEADROOM * 8 / capture_seconds) - audio_bps
    return max(MIN_VIDEO_BITRATE_BPS, min(profile.video_bitrate_bps, budget_bps))
