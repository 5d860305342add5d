"""
Time-range partitioning for parallel chunked encoding.

Chunk starts are multiples of the frame stride, so every chunk samples
exactly the ticks the sequential loop would have drawn.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ChunkRange:
    index: int
    start_frame: int
    end_frame: int  # exclusive

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame

    def start_seconds(self, frame_rate: float) -> float:
        return self.start_frame / frame_rate

    def duration_seconds(self, frame_rate: float) -> float:
        return self.frame_count / frame_rate


def plan_chunks(
    total_frames: int,
    frame_rate: float,
    frame_stride: int,
    requested: int,
    min_chunk_seconds: float = 0.0,
) -> list[ChunkRange]:
    """
    Split `[0, total_frames)` into at most `requested` contiguous ranges.

    Fewer chunks are produced when the timeline is too short for each range to
    span `min_chunk_seconds`. Always returns at least one range for a non-empty
    timeline.

    Examples:
        plan_chunks(100, 10, 4, 3) -> [0, 36), [36, 68), [68, 100)
    """
    if total_frames <= 0:
        return []

    min_frames = max(frame_stride, int(min_chunk_seconds * frame_rate))
    count = max(1, min(requested, total_frames // min_frames if min_frames else requested))

    # Work in units of stride-groups so boundaries stay aligned
    groups = -(-total_frames // frame_stride)
    count = min(count, groups)
    base, extra = divmod(groups, count)

    chunks = []
    start_group = 0
    for index in range(count):
        size = base + (1 if index < extra else 0)
        start = start_group * frame_stride
        end = min(total_frames, (start_group + size) * frame_stride)
        chunks.append(ChunkRange(index=index, start_frame=start, end_frame=end))
        start_group += size
    return chunks
