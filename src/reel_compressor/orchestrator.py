"""
Pipeline orchestrator - Top-level entry point for one compression.

Flow:
1. Resolve profile (fail fast on a bad name)
2. Probe source; return a pass-through result if it already fits
3. Negotiate codec, decode audio (optional, non-fatal)
4. Sample/render/encode, sequentially or as parallel chunks plus a stitch
5. Metrics, thumbnail, optional upload, result record

Every decode/encode handle is registered on a per-call PipelineState and
released however the call ends. Partial output is never left behind.
"""

import base64
import logging
import math
import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

from .assets import AssetStore
from .audio import AudioMerger, AudioTrack
from .chunking import ChunkRange, plan_chunks
from .config import AppConfig
from .constants import COMPRESSED_SUFFIX, PASSTHROUGH_QUALITY_SCORE, THUMBNAIL_TIMESTAMP
from .encoder import (
    Codec,
    EncoderSession,
    EncoderSettings,
    list_available_encoders,
    negotiate_codec,
    stitch_chunks,
)
from .errors import (
    AudioDegradedWarning,
    CancelledError,
    CompressionError,
    EncodeFailedError,
    ThumbnailError,
    UploadError,
)
from .metrics import MetricsRecorder, PipelineMetrics
from .profiles import CompressionProfile, ProfileCatalog, fit_video_bitrate
from .progress import CancellationToken, ProgressCallback, ProgressReporter
from .prober import SourceInfo, SourceProber
from .render import RasterBuffer, scaled_dimensions
from .sampler import FrameDecoder, FrameSampler, FrameSource
from .state import PipelineState
from .thumbnail import Thumbnail, ThumbnailExtractor
from .tools import ToolPaths

logger = logging.getLogger(__name__)

DecoderFactory = Callable[..., FrameSource]
EncoderFactory = Callable[[EncoderSettings, Path, Path | None], EncoderSession]
Stitcher = Callable[..., Path]


@dataclass
class CompressionRequest:
    """
    Caller input for one compression.

    Raises:
        ValueError: target_size_bytes is not positive
    """

    source: Path
    target_size_bytes: int
    profile_name: str = "balanced"
    preserve_audio: bool = True
    progress: ProgressCallback | None = None
    output_dir: Path | None = None
    thumbnail_at: float | None = THUMBNAIL_TIMESTAMP  # None disables the thumbnail
    parallel_chunks: int | None = None  # None uses the configured value

    def __post_init__(self):
        self.source = Path(self.source)
        if self.output_dir is not None:
            self.output_dir = Path(self.output_dir)
        if self.target_size_bytes <= 0:
            raise ValueError(f"target_size_bytes must be positive, got {self.target_size_bytes}")
        if self.parallel_chunks is not None and self.parallel_chunks < 1:
            raise ValueError(f"parallel_chunks must be >= 1, got {self.parallel_chunks}")

    def to_params(self) -> dict[str, Any]:
        """Serializable form for a job status store (drops the callback)."""
        return {
            "source": str(self.source),
            "target_size_bytes": self.target_size_bytes,
            "profile_name": self.profile_name,
            "preserve_audio": self.preserve_audio,
            "output_dir": str(self.output_dir) if self.output_dir else None,
            "thumbnail_at": self.thumbnail_at,
            "parallel_chunks": self.parallel_chunks,
        }

    @classmethod
    def from_params(cls, params: dict[str, Any], progress: ProgressCallback | None = None) -> "CompressionRequest":
        return cls(
            source=Path(params["source"]),
            target_size_bytes=int(params["target_size_bytes"]),
            profile_name=params.get("profile_name", "balanced"),
            preserve_audio=params.get("preserve_audio", True),
            progress=progress,
            output_dir=Path(params["output_dir"]) if params.get("output_dir") else None,
            thumbnail_at=params.get("thumbnail_at", THUMBNAIL_TIMESTAMP),
            parallel_chunks=params.get("parallel_chunks"),
        )


@dataclass
class CompressionResult:
    output_asset: Path
    original_size_bytes: int
    compressed_size_bytes: int
    compression_ratio: float
    processing_duration_ms: float
    profile_used: str
    quality_score: int
    speed_factor: float
    thumbnail: Thumbnail | None = None
    audio_preserved: bool = False
    passthrough: bool = False
    codec: str | None = None
    warnings: list[str] = field(default_factory=list)
    output_url: str | None = None
    thumbnail_url: str | None = None

    @property
    def size_reduction(self) -> float:
        """Fraction of the original size saved (negative if the output grew)."""
        if self.original_size_bytes == 0:
            return 0.0
        return 1 - self.compressed_size_bytes / self.original_size_bytes

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["output_asset"] = str(self.output_asset)
        if self.thumbnail is not None:
            data["thumbnail"] = {
                "data": base64.b64encode(self.thumbnail.data).decode("ascii"),
                "width": self.thumbnail.width,
                "height": self.thumbnail.height,
                "timestamp_seconds": self.thumbnail.timestamp_seconds,
                "mime_type": self.thumbnail.mime_type,
            }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompressionResult":
        values = dict(data)
        values["output_asset"] = Path(values["output_asset"])
        thumb = values.get("thumbnail")
        if thumb is not None:
            values["thumbnail"] = Thumbnail(
                data=base64.b64decode(thumb["data"]),
                width=thumb["width"],
                height=thumb["height"],
                timestamp_seconds=thumb["timestamp_seconds"],
                mime_type=thumb.get("mime_type", "image/jpeg"),
            )
        values["warnings"] = list(values.get("warnings") or [])
        return cls(**values)


def output_filename(source: Path, profile: CompressionProfile, codec: Codec) -> str:
    """
    Examples:
        clip.mov + balanced + vp9 -> clip_balanced_compressed.webm
    """
    return f"{source.stem}_{profile.name}{COMPRESSED_SUFFIX}.{codec.container}"


@dataclass
class _EncodePlan:
    """Derived per-call encode parameters."""

    profile: CompressionProfile
    codec: Codec
    width: int
    height: int
    total_frames: int
    settings: EncoderSettings
    output_path: Path

    @property
    def capture_seconds(self) -> float:
        return self.total_frames / self.profile.target_frame_rate


class PipelineOrchestrator:
    """
    Runs compression requests against injected stage implementations.

    Holds no per-call state: every `compress()` call builds its own
    PipelineState, so one orchestrator can serve concurrent requests.
    """

    def __init__(
        self,
        catalog: ProfileCatalog | None = None,
        config: AppConfig | None = None,
        tools: ToolPaths | None = None,
        prober: SourceProber | None = None,
        thumbnailer: ThumbnailExtractor | None = None,
        audio_merger: AudioMerger | None = None,
        decoder_factory: DecoderFactory | None = None,
        encoder_factory: EncoderFactory | None = None,
        encoders_probe: Callable[[], set[str]] | None = None,
        stitcher: Stitcher | None = None,
        asset_store: AssetStore | None = None,
    ):
        self.config = config or AppConfig()
        self.catalog = catalog or ProfileCatalog()
        self.tools = tools or ToolPaths()
        pipeline = self.config.pipeline
        thumb = self.config.thumbnail
        self.prober = prober or SourceProber(self.tools.ffprobe, timeout=pipeline.probe_timeout)
        self.thumbnailer = thumbnailer or ThumbnailExtractor(
            self.tools.ffmpeg,
            prober=self.prober,
            box_width=thumb.width,
            box_height=thumb.height,
            quality=thumb.quality,
            timeout=thumb.timeout,
        )
        self.audio_merger = audio_merger or AudioMerger(self.tools.ffmpeg, timeout=pipeline.audio_timeout)
        self.decoder_factory = decoder_factory or self._default_decoder
        self.encoder_factory = encoder_factory or self._default_encoder
        self.encoders_probe = encoders_probe or (lambda: list_available_encoders(self.tools.ffmpeg))
        self.stitcher = stitcher or self._default_stitcher
        self.asset_store = asset_store
        self._encoders: set[str] | None = None
        self._encoders_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AppConfig, asset_store: AssetStore | None = None) -> "PipelineOrchestrator":
        """Build an orchestrator with real ffmpeg-backed stages."""
        return cls(
            catalog=ProfileCatalog.from_yaml_config({"profiles": config.profiles}),
            config=config,
            tools=ToolPaths.resolve(config.tools),
            asset_store=asset_store,
        )

    # Default stage implementations

    def _default_decoder(self, **kwargs) -> FrameDecoder:
        return FrameDecoder(ffmpeg=self.tools.ffmpeg, **kwargs)

    def _default_encoder(self, settings: EncoderSettings, output_path: Path, log_path: Path | None) -> EncoderSession:
        return EncoderSession(
            settings,
            output_path,
            ffmpeg=self.tools.ffmpeg,
            log_path=log_path,
            finalize_timeout=self.config.pipeline.finalize_timeout,
        )

    def _default_stitcher(self, chunk_paths, output_path, codec, work_dir, audio_path, audio_bitrate_bps) -> Path:
        return stitch_chunks(
            chunk_paths,
            output_path,
            codec,
            work_dir,
            audio_path=audio_path,
            audio_bitrate_bps=audio_bitrate_bps,
            ffmpeg=self.tools.ffmpeg,
            timeout=self.config.pipeline.finalize_timeout,
        )

    def available_encoders(self) -> set[str]:
        """ffmpeg encoder names, listed once per orchestrator."""
        with self._encoders_lock:
            if self._encoders is None:
                self._encoders = self.encoders_probe()
            return self._encoders

    # Entry point

    def compress(self, request: CompressionRequest, cancel_token: CancellationToken | None = None) -> CompressionResult:
        """
        Compress one source.

        Returns a complete CompressionResult or raises a CompressionError
        naming the failing stage. Audio and thumbnail problems are recorded
        in `result.warnings` and never raise.
        """
        token = cancel_token or CancellationToken()
        recorder = MetricsRecorder(self.config.pipeline.reference_throughput_bytes_per_ms)
        recorder.start()
        progress = ProgressReporter(request.progress)

        profile = self.catalog.resolve(request.profile_name)
        state = PipelineState(source=request.source, profile_name=profile.name)
        logger.info(f"Compressing {request.source.name} with profile {profile.name}")

        try:
            self._enter(state, token, "probe")
            info = self.prober.probe(request.source)

            if info.fits_within(request.target_size_bytes):
                return self._passthrough(request, info, profile, state, recorder, progress)

            return self._compress(request, info, profile, state, recorder, progress, token)

        except CompressionError as e:
            self._discard_output(state)
            if isinstance(e, CancelledError):
                logger.info(f"{request.source.name}: cancelled during {e.stage}")
            else:
                logger.error(f"{request.source.name}: {e}")
            raise
        except OSError as e:
            self._discard_output(state)
            logger.error(f"{request.source.name}: [{state.stage}] {e}")
            raise EncodeFailedError(str(e), stage=state.stage) from e
        finally:
            state.release_all()
            state.discard_work_dir()

    # Pass-through

    def _passthrough(
        self,
        request: CompressionRequest,
        info: SourceInfo,
        profile: CompressionProfile,
        state: PipelineState,
        recorder: MetricsRecorder,
        progress: ProgressReporter,
    ) -> CompressionResult:
        logger.info(
            f"{info.path.name}: {info.size_bytes} bytes already within target "
            f"{request.target_size_bytes}, passing through"
        )
        metrics = recorder.passthrough(info.size_bytes)
        thumbnail = self._capture_thumbnail(request, info, state)
        result = CompressionResult(
            output_asset=info.path,
            original_size_bytes=metrics.original_size_bytes,
            compressed_size_bytes=metrics.compressed_size_bytes,
            compression_ratio=metrics.compression_ratio,
            processing_duration_ms=metrics.processing_duration_ms,
            profile_used=profile.name,
            quality_score=PASSTHROUGH_QUALITY_SCORE,
            speed_factor=metrics.speed_factor,
            thumbnail=thumbnail,
            audio_preserved=info.has_audio,
            passthrough=True,
            codec=info.video_codec or None,
            warnings=state.warnings,
        )
        self._upload(result, info.path, info.path.name, state)
        progress.complete()
        return result

    # Encode path

    def _compress(
        self,
        request: CompressionRequest,
        info: SourceInfo,
        profile: CompressionProfile,
        state: PipelineState,
        recorder: MetricsRecorder,
        progress: ProgressReporter,
        token: CancellationToken,
    ) -> CompressionResult:
        self._enter(state, token, "plan")
        width, height = scaled_dimensions(info.width, info.height, profile.scale_factor)
        total_frames = math.floor(info.duration_seconds * profile.target_frame_rate)
        if total_frames <= 0:
            raise EncodeFailedError(
                f"{info.duration_seconds:.3f}s source yields no frames at {profile.target_frame_rate:g} fps",
                stage="sample",
            )
        state.total_frames = total_frames
        progress.set_total(total_frames)

        self._enter(state, token, "negotiate")
        codec = negotiate_codec(self.config.pipeline.codec_preference, self.available_encoders())

        state.work_dir = self._make_work_dir()
        output_dir = request.output_dir or self.config.paths.output_dir or info.path.parent
        output_dir.mkdir(parents=True, exist_ok=True)
        output_path = output_dir / output_filename(info.path, profile, codec)
        state.output_path = output_path

        capture_seconds = total_frames / profile.target_frame_rate
        audio_track = None
        if request.preserve_audio:
            self._enter(state, token, "audio")
            audio_track = self._prepare_audio(info, profile, codec, state, capture_seconds)

        video_bitrate = profile.video_bitrate_bps
        if self.config.pipeline.fit_bitrate:
            video_bitrate = fit_video_bitrate(
                profile, request.target_size_bytes, capture_seconds, with_audio=audio_track is not None
            )

        settings = EncoderSettings(
            codec=codec,
            width=width,
            height=height,
            frame_rate=profile.target_frame_rate,
            video_bitrate_bps=video_bitrate,
            audio_bitrate_bps=profile.audio_bitrate_bps if audio_track else None,
            audio_path=audio_track.path if audio_track else None,
            quality_score=profile.quality_score,
        )
        plan = _EncodePlan(profile, codec, width, height, total_frames, settings, output_path)
        logger.info(
            f"{info.path.name}: {info.width}x{info.height} -> {width}x{height}, "
            f"{total_frames} frames @ {profile.target_frame_rate:g} fps, stride {profile.frame_stride}, "
            f"{codec.name} {video_bitrate // 1000} kbps"
        )

        requested_chunks = request.parallel_chunks or self.config.pipeline.parallel_chunks
        chunks = plan_chunks(
            total_frames,
            profile.target_frame_rate,
            profile.frame_stride,
            requested_chunks,
            self.config.pipeline.min_chunk_seconds,
        )
        if len(chunks) > 1:
            self._encode_chunked(info, plan, chunks, audio_track, state, progress, token)
        else:
            self._encode_sequential(info, plan, state, progress, token)

        self._enter(state, token, "metrics")
        metrics: PipelineMetrics = recorder.finish(info.size_bytes, output_path.stat().st_size)
        thumbnail = self._capture_thumbnail(request, info, state)

        result = CompressionResult(
            output_asset=output_path,
            original_size_bytes=metrics.original_size_bytes,
            compressed_size_bytes=metrics.compressed_size_bytes,
            compression_ratio=metrics.compression_ratio,
            processing_duration_ms=metrics.processing_duration_ms,
            profile_used=profile.name,
            quality_score=profile.quality_score,
            speed_factor=metrics.speed_factor,
            thumbnail=thumbnail,
            audio_preserved=audio_track is not None,
            codec=codec.name,
            warnings=state.warnings,
        )
        self._upload(result, output_path, output_path.name, state)
        progress.complete()
        logger.info(
            f"{info.path.name}: {metrics.original_size_bytes} -> {metrics.compressed_size_bytes} bytes "
            f"({metrics.compression_ratio:.2f}x) in {metrics.processing_duration_ms:.0f} ms"
        )
        return result

    def _encode_sequential(
        self,
        info: SourceInfo,
        plan: _EncodePlan,
        state: PipelineState,
        progress: ProgressReporter,
        token: CancellationToken,
    ) -> None:
        self._enter(state, token, "encode")
        frames = self._encode_range(
            info,
            plan,
            plan.settings,
            plan.output_path,
            ChunkRange(0, 0, plan.total_frames),
            state,
            progress,
            token,
        )
        if frames == 0:
            raise EncodeFailedError("Source produced no frames", stage="sample")
        state.frames_encoded = frames
        state.output_committed = True

    def _encode_chunked(
        self,
        info: SourceInfo,
        plan: _EncodePlan,
        chunks: list[ChunkRange],
        audio_track: AudioTrack | None,
        state: PipelineState,
        progress: ProgressReporter,
        token: CancellationToken,
    ) -> None:
        """Encode chunks concurrently (video-only), then stitch and mux audio."""
        self._enter(state, token, "encode")
        chunk_dir = state.work_dir / "chunks"
        chunk_dir.mkdir(parents=True, exist_ok=True)
        chunk_settings = replace(plan.settings, audio_path=None, audio_bitrate_bps=None)
        chunk_token = token.child()
        logger.info(f"{info.path.name}: encoding {len(chunks)} chunks in parallel")

        frames_by_chunk: dict[int, int] = {}
        errors: list[CompressionError] = []
        with ThreadPoolExecutor(max_workers=len(chunks), thread_name_prefix="reelc-chunk") as pool:
            futures = {
                pool.submit(
                    self._encode_range,
                    info,
                    plan,
                    chunk_settings,
                    chunk_dir / f"chunk_{chunk.index:03d}.{plan.codec.container}",
                    chunk,
                    state,
                    progress,
                    chunk_token,
                ): chunk
                for chunk in chunks
            }
            for future in as_completed(futures):
                chunk = futures[future]
                try:
                    frames_by_chunk[chunk.index] = future.result()
                except CompressionError as e:
                    chunk_token.cancel()
                    errors.append(e)
                except OSError as e:
                    chunk_token.cancel()
                    errors.append(EncodeFailedError(f"Chunk {chunk.index}: {e}", stage="encode"))

        if errors:
            token.raise_if_cancelled("encode")
            # Sibling chunks stopped by the first failure report CancelledError
            raise next((e for e in errors if not isinstance(e, CancelledError)), errors[0])

        chunk_paths = [
            chunk_dir / f"chunk_{chunk.index:03d}.{plan.codec.container}"
            for chunk in chunks
            if frames_by_chunk.get(chunk.index, 0) > 0
        ]
        if not chunk_paths:
            raise EncodeFailedError("Source produced no frames", stage="sample")
        state.frames_encoded = sum(frames_by_chunk.values())

        self._enter(state, token, "stitch")
        self.stitcher(
            chunk_paths,
            plan.output_path,
            plan.codec,
            state.work_dir,
            audio_track.path if audio_track else None,
            plan.profile.audio_bitrate_bps if audio_track else None,
        )
        state.output_committed = True

    def _encode_range(
        self,
        info: SourceInfo,
        plan: _EncodePlan,
        settings: EncoderSettings,
        output_path: Path,
        chunk: ChunkRange,
        state: PipelineState,
        progress: ProgressReporter,
        token: CancellationToken,
    ) -> int:
        """
        Decode, sample and encode one frame range into `output_path`.

        Returns the number of frames encoded; 0 means the source ended before
        the range started and nothing was written.
        """
        profile = plan.profile
        whole = chunk.start_frame == 0 and chunk.end_frame == plan.total_frames
        log_dir = state.work_dir
        decoder = state.acquire(
            self.decoder_factory(
                source=info.path,
                width=plan.width,
                height=plan.height,
                frame_rate=profile.target_frame_rate,
                frame_stride=profile.frame_stride,
                start_seconds=chunk.start_seconds(profile.target_frame_rate),
                duration_seconds=None if whole else chunk.duration_seconds(profile.target_frame_rate),
                log_path=log_dir / f"decode_{chunk.index:03d}.log" if log_dir else None,
            )
        )
        decoder.open()

        encoder = state.acquire(
            self.encoder_factory(settings, output_path, log_dir / f"encode_{chunk.index:03d}.log" if log_dir else None)
        )
        encoder.start()

        sampler = FrameSampler(
            decoder,
            RasterBuffer(plan.width, plan.height),
            profile.frame_stride,
            end_index=chunk.end_frame,
            start_index=chunk.start_frame,
            progress=progress,
            cancel_token=token,
        )
        frames = sampler.run(encoder.push_frame)
        if sampler.exhausted:
            logger.debug(f"Range {chunk.index}: source ended after {frames} of {chunk.frame_count} frames")

        if frames > 0:
            token.raise_if_cancelled("finalize")
            encoder.finalize()
        state.release(encoder)
        state.release(decoder)
        return frames

    # Optional stages

    def _prepare_audio(
        self,
        info: SourceInfo,
        profile: CompressionProfile,
        codec: Codec,
        state: PipelineState,
        capture_seconds: float,
    ) -> AudioTrack | None:
        """Decode the audio track; any problem degrades to video-only."""
        try:
            if not profile.has_audio:
                raise AudioDegradedWarning(f"Profile {profile.name} is video-only")
            if codec.audio_encoder not in self.available_encoders():
                raise AudioDegradedWarning(f"Audio encoder {codec.audio_encoder} not available")
            return self.audio_merger.prepare(info, state.work_dir, capture_seconds)
        except AudioDegradedWarning as w:
            state.warn(f"Audio not preserved: {w.reason}")
            return None

    def _capture_thumbnail(
        self, request: CompressionRequest, info: SourceInfo, state: PipelineState
    ) -> Thumbnail | None:
        if request.thumbnail_at is None:
            return None
        try:
            return self.thumbnailer.extract(info.path, request.thumbnail_at, source_info=info)
        except ThumbnailError as e:
            state.warn(f"Thumbnail not captured: {e.message}")
            return None

    def _upload(self, result: CompressionResult, output: Path, name: str, state: PipelineState) -> None:
        if self.asset_store is None:
            return
        state.enter("upload")
        try:
            result.output_url = self.asset_store.upload(output.read_bytes(), name)
            if result.thumbnail is not None:
                thumb_name = f"{Path(name).stem}_thumb.jpg"
                result.thumbnail_url = self.asset_store.upload(result.thumbnail.data, thumb_name)
        except (OSError, ValueError) as e:
            raise UploadError(f"Upload of {name} failed: {e}") from e

    # Helpers

    def _enter(self, state: PipelineState, token: CancellationToken, stage: str) -> None:
        token.raise_if_cancelled(stage)
        state.enter(stage)

    def _make_work_dir(self) -> Path:
        base = self.config.paths.work_dir
        if base is not None:
            base.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="reelc-", dir=base))

    def _discard_output(self, state: PipelineState) -> None:
        """Remove an output this call wrote; a pre-existing file is left alone."""
        path = state.output_path
        if path is None or not state.output_committed:
            return
        if path.exists():
            path.unlink()
            logger.debug(f"Removed incomplete output {path}")
        state.output_committed = False


def compress(request: CompressionRequest, config: AppConfig | None = None) -> CompressionResult:
    """Convenience wrapper: one-off compression with a config-built orchestrator."""
    return PipelineOrchestrator.from_config(config or AppConfig()).compress(request)
