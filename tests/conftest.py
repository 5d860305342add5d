"""Shared pytest fixtures for reel-compressor tests."""

from unittest.mock import MagicMock, patch

import pytest
from fakes import PipelineHarness
from typer.testing import CliRunner


@pytest.fixture
def harness(tmp_path):
    return PipelineHarness(tmp_path)


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample config file."""
    config_file = tmp_path / "reelc.yaml"
    config_file.write_text(
        f"""
paths:
  output_dir: "{tmp_path / "output"}"
  work_dir: "{tmp_path / "work"}"

pipeline:
  default_profile: fast
  parallel_chunks: 2
  codec_preference: [vp9, h264]

logging:
  level: WARNING
  console_logging: false

profiles:
  balanced:
    video_bitrate: 2.5M
    description: "Tuned balanced"
  tiny:
    scale_factor: 0.25
    frame_rate: 6
    frame_stride: 8
    video_bitrate: 150k
    quality: 1
    description: "Smallest possible"
"""
    )
    (tmp_path / "output").mkdir()
    return config_file


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for tests that call external tools."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        yield mock_run


@pytest.fixture(name="_mock_shutil_which")
def mock_shutil_which():
    """Mock shutil.which to simulate available tools."""

    def which_side_effect(tool):
        available = {"ffmpeg", "ffprobe"}
        return f"/usr/bin/{tool}" if tool in available else None

    with patch("shutil.which", side_effect=which_side_effect) as mock:
        yield mock
