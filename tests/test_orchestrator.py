"""Tests for the pipeline orchestrator, driven end to end through fakes."""

import math
from pathlib import Path

import pytest

from fakes import MB, make_info

from reel_compressor.assets import LocalAssetStore
from reel_compressor.encoder import CODECS
from reel_compressor.errors import (
    CancelledError,
    EncodeFailedError,
    NoSupportedCodecError,
    ProfileNotFoundError,
    UnreadableSourceError,
    UploadError,
)
from reel_compressor.orchestrator import CompressionRequest, CompressionResult, output_filename
from reel_compressor.profiles import DEFAULT_PROFILES
from reel_compressor.progress import CancellationToken


def request_for(harness, target_mb: float = 50, profile: str = "balanced", **kwargs) -> CompressionRequest:
    return CompressionRequest(
        source=harness.source,
        target_size_bytes=int(target_mb * MB),
        profile_name=profile,
        **kwargs,
    )


class TestCompressionRequest:
    """Tests for request validation."""

    def test_rejects_non_positive_target(self, tmp_path):
        with pytest.raises(ValueError, match="target_size_bytes"):
            CompressionRequest(source=tmp_path / "a.mov", target_size_bytes=0)

    def test_rejects_bad_chunk_count(self, tmp_path):
        with pytest.raises(ValueError, match="parallel_chunks"):
            CompressionRequest(source=tmp_path / "a.mov", target_size_bytes=1, parallel_chunks=0)

    def test_params_round_trip(self, tmp_path):
        request = CompressionRequest(
            source=tmp_path / "a.mov",
            target_size_bytes=1234,
            profile_name="fast",
            preserve_audio=False,
            output_dir=tmp_path / "out",
            thumbnail_at=None,
            parallel_chunks=3,
        )
        restored = CompressionRequest.from_params(request.to_params())
        assert restored == request


class TestPassThrough:
    """Sources already under the target are returned untouched."""

    def test_small_source_passes_through(self, harness):
        harness.prober.info = make_info(harness.source, 10 * MB)
        progress = []
        result = harness.build().compress(request_for(harness, 50, progress=progress.append))

        assert result.passthrough is True
        assert result.compression_ratio == 1
        assert result.speed_factor == 1
        assert result.output_asset == harness.source
        assert result.compressed_size_bytes == result.original_size_bytes == 10 * MB
        assert result.quality_score == 10
        assert result.processing_duration_ms < 1000
        assert progress == [100.0]

    def test_no_encode_stage_invoked(self, harness):
        harness.prober.info = make_info(harness.source, 10 * MB)
        harness.build().compress(request_for(harness, 50))

        assert harness.decoders == []
        assert harness.encoder_sessions == []
        assert harness.audio.calls == 0

    def test_thumbnail_still_produced(self, harness):
        harness.prober.info = make_info(harness.source, 10 * MB)
        result = harness.build().compress(request_for(harness, 50, thumbnail_at=2.0))

        assert result.thumbnail is not None
        assert harness.thumbnailer.calls == [2.0]

    @pytest.mark.parametrize("profile", sorted(DEFAULT_PROFILES))
    def test_any_profile_passes_through(self, harness, profile):
        harness.prober.info = make_info(harness.source, 10 * MB)
        result = harness.build().compress(request_for(harness, 50, profile=profile))
        assert result.passthrough is True
        assert result.profile_used == profile

    def test_exact_target_size_passes_through(self, harness):
        harness.prober.info = make_info(harness.source, 50 * MB)
        assert harness.build().compress(request_for(harness, 50)).passthrough is True


class TestEncodePath:
    """Sources over the target go through sample/render/encode."""

    def test_balanced_scenario(self, harness):
        """500MB source, 50MB target, balanced profile."""
        harness.prober.info = make_info(harness.source, 500 * MB, duration=600.0, has_audio=True)
        result = harness.build().compress(request_for(harness, 50, profile="balanced"))

        assert result.passthrough is False
        assert result.compressed_size_bytes <= 50 * MB
        assert result.compression_ratio == pytest.approx(10, rel=0.1)
        assert result.audio_preserved is True
        assert result.profile_used == "balanced"
        assert result.quality_score == 8
        assert result.codec == "vp9"
        assert result.output_asset.exists()
        assert result.output_asset.name == "clip_balanced_compressed.webm"

    def test_dimensions_and_frame_count_are_deterministic(self, harness):
        profile = DEFAULT_PROFILES["fast"]
        harness.prober.info = make_info(harness.source, 500 * MB, duration=7.3)
        for _ in range(2):
            harness.build().compress(request_for(harness, 50, profile="fast"))

        expected_frames = math.floor(7.3 * profile.target_frame_rate)
        expected_w = math.floor(64 * profile.scale_factor)
        expected_h = math.floor(36 * profile.scale_factor)
        for encoder in harness.encoder_sessions:
            assert encoder.frames == expected_frames
            assert (encoder.settings.width, encoder.settings.height) == (expected_w, expected_h)

    def test_stride_controls_decoded_frames(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=10.0)
        harness.build().compress(request_for(harness, 50, profile="fast"))

        # fast: 15 fps, stride 4 -> 150 ticks, 38 draws
        assert harness.encoder_sessions[0].frames == 150
        assert harness.decoders[0].reads == 38

    def test_progress_monotonic_and_reaches_100(self, harness):
        progress = []
        harness.build().compress(request_for(harness, 50, profile="rapid", progress=progress.append))

        assert progress == sorted(progress)
        assert progress[-1] == 100.0
        assert all(0 <= p <= 100 for p in progress)

    def test_source_exhaustion_still_completes(self, harness):
        harness.frames_available = 5
        progress = []
        result = harness.build().compress(request_for(harness, 50, profile="fast", progress=progress.append))

        # 5 draws at stride 4 -> ticks 0..19 before the 6th read returns None
        assert harness.encoder_sessions[0].frames == 20
        assert progress[-1] == 100.0
        assert result.output_asset.exists()

    def test_video_only_profile_drops_audio(self, harness):
        result = harness.build().compress(request_for(harness, 50, profile="maximum-speed"))

        assert result.audio_preserved is False
        assert any("video-only" in w for w in result.warnings)
        assert harness.encoder_sessions[0].settings.audio_path is None

    def test_preserve_audio_false_skips_merger(self, harness):
        result = harness.build().compress(request_for(harness, 50, preserve_audio=False))

        assert result.audio_preserved is False
        assert result.warnings == []
        assert harness.audio.calls == 0

    def test_output_dir_respected(self, harness, tmp_path):
        out = tmp_path / "out"
        result = harness.build().compress(request_for(harness, 50, output_dir=out))
        assert result.output_asset.parent == out

    def test_work_dir_removed(self, harness):
        harness.build().compress(request_for(harness, 50))
        assert harness.work_dirs() == []

    def test_ratio_not_clamped_when_output_grows(self, harness):
        harness.prober.info = make_info(harness.source, 60 * MB, duration=600.0)
        harness.config.pipeline.fit_bitrate = False
        result = harness.build().compress(request_for(harness, 50, profile="premium"))

        assert result.compressed_size_bytes > result.original_size_bytes
        assert result.compression_ratio < 1

    def test_fit_bitrate_caps_profile_bitrate(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=600.0)
        harness.build().compress(request_for(harness, 10, profile="premium"))
        assert harness.encoder_sessions[0].settings.video_bitrate_bps < DEFAULT_PROFILES["premium"].video_bitrate_bps

    def test_profile_alias(self, harness):
        result = harness.build().compress(request_for(harness, 50, profile="blazing"))
        assert result.profile_used == "maximum-speed"


class TestAudioDegradation:
    """Audio failures never fail the request."""

    def test_audio_decode_failure_yields_success(self, harness):
        harness.audio.error = "Audio decode timed out after 10s"
        result = harness.build().compress(request_for(harness, 50, preserve_audio=True))

        assert result.audio_preserved is False
        assert result.output_asset.exists()
        assert any("timed out" in w for w in result.warnings)

    def test_source_without_audio(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, has_audio=False)
        result = harness.build().compress(request_for(harness, 50))
        assert result.audio_preserved is False

    def test_missing_audio_encoder(self, harness):
        harness.encoders.discard("libopus")
        result = harness.build().compress(request_for(harness, 50))

        assert result.codec == "vp9"
        assert result.audio_preserved is False
        assert harness.audio.calls == 0


class TestFailures:
    """Fatal errors name their stage and leave nothing behind."""

    def test_unknown_profile_fails_fast(self, harness):
        with pytest.raises(ProfileNotFoundError) as exc_info:
            harness.build().compress(request_for(harness, 50, profile="ultra"))

        assert exc_info.value.stage == "profile"
        assert "balanced" in exc_info.value.available
        assert harness.prober.calls == []

    def test_unreadable_source_before_encoder(self, harness):
        harness.prober.error = UnreadableSourceError("moov atom not found")
        with pytest.raises(UnreadableSourceError) as exc_info:
            harness.build().compress(request_for(harness, 50))

        assert exc_info.value.stage == "probe"
        assert harness.encoder_sessions == []
        assert harness.decoders == []

    def test_no_supported_codec(self, harness, tmp_path):
        harness.encoders = {"aac"}
        harness.asset_store = LocalAssetStore(tmp_path / "assets")
        with pytest.raises(NoSupportedCodecError) as exc_info:
            harness.build().compress(request_for(harness, 50))

        assert exc_info.value.stage == "negotiate"
        assert harness.encoder_sessions == []
        assert not (tmp_path / "assets").exists()

    def test_codec_preference_order(self, harness):
        harness.encoders = {"libx264", "aac", "libvpx", "libvorbis"}
        result = harness.build().compress(request_for(harness, 50))
        assert result.codec == "vp8"

        harness.config.pipeline.codec_preference = ["h264", "vp9"]
        result = harness.build().compress(request_for(harness, 50))
        assert result.codec == "h264"
        assert result.output_asset.suffix == ".mp4"

    def test_decoder_failure_releases_handles(self, harness):
        harness.decoder_fail_after = 3
        with pytest.raises(EncodeFailedError) as exc_info:
            harness.build().compress(request_for(harness, 50))

        assert exc_info.value.stage == "decode"
        assert harness.tracker.open_count == 0
        assert not any(p.name.endswith("_compressed.webm") for p in harness.tmp_path.iterdir())
        assert harness.work_dirs() == []

    def test_empty_source_fails(self, harness):
        harness.frames_available = 0
        with pytest.raises(EncodeFailedError) as exc_info:
            harness.build().compress(request_for(harness, 50))
        assert exc_info.value.stage == "sample"
        assert harness.tracker.open_count == 0

    def test_too_short_for_one_frame(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=0.01)
        with pytest.raises(EncodeFailedError, match="no frames"):
            harness.build().compress(request_for(harness, 50))

    def test_upload_failure_removes_output(self, harness):
        class BrokenStore:
            def upload(self, data, path):
                raise OSError("disk full")

            def get_public_url(self, path):
                return path

        harness.asset_store = BrokenStore()
        with pytest.raises(UploadError) as exc_info:
            harness.build().compress(request_for(harness, 50))

        assert exc_info.value.stage == "upload"
        assert not (harness.tmp_path / "clip_balanced_compressed.webm").exists()

    def test_failure_keeps_existing_output_from_earlier_run(self, harness):
        existing = harness.tmp_path / "clip_balanced_compressed.webm"
        existing.write_bytes(b"earlier result")
        harness.decoder_fail_after = 1
        with pytest.raises(EncodeFailedError):
            harness.build().compress(request_for(harness, 50))
        assert existing.read_bytes() == b"earlier result"


class TestCancellation:
    """Cancelling between ticks releases every handle."""

    @pytest.mark.parametrize("chunks", [1, 3])
    def test_cancel_mid_encode(self, harness, chunks):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=60.0)
        harness.config.pipeline.min_chunk_seconds = 1.0
        token = CancellationToken()

        def on_progress(pct: float):
            if pct >= 20:
                token.cancel()

        with pytest.raises(CancelledError):
            harness.build().compress(
                request_for(harness, 50, progress=on_progress, parallel_chunks=chunks), cancel_token=token
            )

        assert harness.tracker.open_count == 0
        assert harness.work_dirs() == []
        assert not (harness.tmp_path / "clip_balanced_compressed.webm").exists()

    def test_cancel_before_start(self, harness):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError) as exc_info:
            harness.build().compress(request_for(harness, 50), cancel_token=token)

        assert exc_info.value.stage == "probe"
        assert harness.prober.calls == []


class TestChunkedEncoding:
    """Parallel chunks produce the same frames as the sequential loop."""

    def test_chunks_cover_timeline(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=60.0)
        harness.config.pipeline.min_chunk_seconds = 5.0
        progress = []
        result = harness.build().compress(
            request_for(harness, 50, profile="fast", parallel_chunks=4, progress=progress.append)
        )

        assert len(harness.encoder_sessions) == 4
        assert sum(e.frames for e in harness.encoder_sessions) == 60 * 15
        assert sum(d.reads for d in harness.decoders) == math.ceil(60 * 15 / 4)
        for decoder in harness.decoders:
            assert round(decoder.kwargs["start_seconds"] * 15) % 4 == 0
        assert all(e.settings.audio_path is None for e in harness.encoder_sessions)
        assert result.output_asset.exists()
        assert progress[-1] == 100.0
        assert progress == sorted(progress)

    def test_short_source_falls_back_to_sequential(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=8.0)
        harness.config.pipeline.min_chunk_seconds = 10.0
        harness.build().compress(request_for(harness, 50, parallel_chunks=4))
        assert len(harness.encoder_sessions) == 1

    def test_chunk_failure_fails_request(self, harness):
        harness.prober.info = make_info(harness.source, 500 * MB, duration=60.0)
        harness.config.pipeline.min_chunk_seconds = 1.0
        harness.decoder_fail_after = 2
        with pytest.raises(EncodeFailedError) as exc_info:
            harness.build().compress(request_for(harness, 50, parallel_chunks=3))

        assert exc_info.value.stage == "decode"
        assert harness.tracker.open_count == 0


class TestAssetStoreUpload:
    def test_uploads_output_and_thumbnail(self, harness, tmp_path):
        harness.asset_store = LocalAssetStore(tmp_path / "assets", base_url="https://cdn.example.com/v")
        result = harness.build().compress(request_for(harness, 50))

        assert result.output_url == "https://cdn.example.com/v/clip_balanced_compressed.webm"
        assert result.thumbnail_url == "https://cdn.example.com/v/clip_balanced_compressed_thumb.jpg"
        assert (tmp_path / "assets" / "clip_balanced_compressed.webm").exists()


class TestCompressionResult:
    def test_dict_round_trip(self, harness):
        result = harness.build().compress(request_for(harness, 50))
        restored = CompressionResult.from_dict(result.to_dict())

        assert restored == result
        assert isinstance(restored.output_asset, Path)

    def test_size_reduction(self):
        result = CompressionResult(
            output_asset=Path("out.webm"),
            original_size_bytes=1000,
            compressed_size_bytes=250,
            compression_ratio=4.0,
            processing_duration_ms=10.0,
            profile_used="fast",
            quality_score=3,
            speed_factor=1.0,
        )
        assert result.size_reduction == 0.75

    def test_output_filename(self):
        name = output_filename(Path("/v/IMG_0001.MOV"), DEFAULT_PROFILES["high"], CODECS["h264"])
        assert name == "IMG_0001_high_compressed.mp4"
