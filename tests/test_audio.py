"""Tests for the audio track merger."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from reel_compressor.audio import AudioMerger
from reel_compressor.errors import AudioDegradedWarning

from fakes import make_info


def writes_wav(cmd, **kwargs):
    Path(cmd[-1]).write_bytes(b"RIFF....WAVE")
    return MagicMock(returncode=0, stderr=b"")


class TestAudioMerger:
    """Tests for AudioMerger.prepare."""

    def test_command(self):
        cmd = AudioMerger(ffmpeg="ff").build_command(Path("in.mov"), Path("/w/audio.wav"), 12.5)

        assert cmd[0] == "ff"
        assert cmd[cmd.index("-map") + 1] == "0:a:0"
        assert cmd[cmd.index("-t") + 1] == "12.500000"
        assert cmd[cmd.index("-ar") + 1] == "48000"
        assert cmd[cmd.index("-ac") + 1] == "2"
        assert cmd[-3:] == ["-f", "wav", "/w/audio.wav"]

    def test_prepare(self, tmp_path):
        info = make_info(tmp_path / "in.mov", 1000)
        with patch("subprocess.run", side_effect=writes_wav):
            track = AudioMerger().prepare(info, tmp_path, 8.0)

        assert track.path == tmp_path / "audio.wav"
        assert track.path.exists()
        assert track.duration_seconds == 8.0
        assert track.sample_rate == 48000

    def test_no_audio_stream(self, tmp_path):
        info = make_info(tmp_path / "in.mov", 1000, has_audio=False)
        with patch("subprocess.run") as mock_run:
            with pytest.raises(AudioDegradedWarning, match="no audio stream"):
                AudioMerger().prepare(info, tmp_path, 8.0)
        mock_run.assert_not_called()

    def test_timeout(self, tmp_path):
        info = make_info(tmp_path / "in.mov", 1000)
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("ffmpeg", 10)):
            with pytest.raises(AudioDegradedWarning, match="timed out after 10s"):
                AudioMerger().prepare(info, tmp_path, 8.0)

    def test_decode_failure(self, tmp_path):
        info = make_info(tmp_path / "in.mov", 1000)
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stderr=b"Stream map '0:a:0' matches no streams")
            with pytest.raises(AudioDegradedWarning, match="matches no streams"):
                AudioMerger().prepare(info, tmp_path, 8.0)
        assert not (tmp_path / "audio.wav").exists()

    def test_missing_ffmpeg(self, tmp_path):
        info = make_info(tmp_path / "in.mov", 1000)
        with patch("subprocess.run", side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(AudioDegradedWarning, match="Cannot run ffmpeg"):
                AudioMerger().prepare(info, tmp_path, 8.0)
