"""
Domain models for the transcoding pipeline.
These are internal representations separate from API schemas and ORM rows.

Records that describe published artifacts are frozen and validate themselves
at construction, so an invalid segment or variant never reaches the manifest
builder or the database.
"""
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

# Resolution marker for an audio-only variant
AUDIO_RESOLUTION = 0

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


def resolution_label(resolution: int) -> str:
    """Display label of a resolution; the audio variant renders as "0p"."""
    return f"{resolution}p"


def validate_resolution(resolution: int) -> int:
    if isinstance(resolution, bool) or not isinstance(resolution, int) or resolution < 0:
        raise ValueError(f"Resolution must be a positive height or {AUDIO_RESOLUTION} (audio), got {resolution!r}")
    return resolution


class StreamingPlaylistType(Enum):
    """Streaming playlist type enumeration."""
    NONE = 0
    HLS = 1


class SubJobStatus(str, Enum):
    """Per-resolution sub-job status."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Aggregate transcoding job status."""
    PENDING = "pending"
    RUNNING = "running"
    PUBLISHED = "published"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.PUBLISHED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass(frozen=True)
class SourceMedia:
    """What the probe learned about an uploaded file."""
    path: Path
    duration: float
    width: int = 0
    height: int = 0
    fps: float = 0.0
    has_video: bool = True
    has_audio: bool = True
    video_codec: str = ""
    audio_codec: str = ""
    size: int = 0

    def __post_init__(self):
        if self.duration <= 0:
            raise ValueError(f"Source duration must be positive, got {self.duration}")
        if not self.has_video and not self.has_audio:
            raise ValueError("Source has neither a video nor an audio stream")

    @property
    def is_audio_only(self) -> bool:
        return not self.has_video


@dataclass(frozen=True)
class TranscodeOptions:
    """Per-request knobs for a transcoding job."""
    allow_upscale: bool = False
    segment_duration: int = 4
    keep_existing: bool = False

    def __post_init__(self):
        if self.segment_duration <= 0:
            raise ValueError("segment_duration must be positive")


@dataclass(frozen=True)
class EncodedSegment:
    """A byte range of the variant file holding one media segment."""
    index: int
    duration: float
    byte_offset: int
    byte_length: int

    def __post_init__(self):
        if self.index < 0:
            raise ValueError(f"Segment index must be >= 0, got {self.index}")
        if self.duration <= 0:
            raise ValueError(f"Segment {self.index} has non-positive duration {self.duration}")
        if self.byte_offset < 0 or self.byte_length <= 0:
            raise ValueError(
                f"Segment {self.index} has invalid byte range {self.byte_length}@{self.byte_offset}"
            )

    @property
    def range_key(self) -> str:
        """Inclusive "start-end" byte range."""
        return f"{self.byte_offset}-{self.byte_offset + self.byte_length - 1}"


@dataclass(frozen=True)
class Segment(EncodedSegment):
    """A published segment together with the SHA-256 of its exact bytes."""
    sha256: str = ""

    def __post_init__(self):
        super().__post_init__()
        if not _SHA256_RE.match(self.sha256 or ""):
            raise ValueError(f"Segment {self.index} has no valid sha256 digest")


@dataclass(frozen=True)
class VariantMetadata:
    """Encoder output description for one resolution."""
    resolution: int
    file_name: str
    duration: float
    width: int = 0
    height: int = 0
    fps: float = 0.0
    codecs: str = ""
    init_offset: int = 0
    init_length: int = 0

    def __post_init__(self):
        validate_resolution(self.resolution)

    @property
    def label(self) -> str:
        return resolution_label(self.resolution)


@dataclass(frozen=True)
class VariantFile:
    """One published resolution: file, segments and peer descriptor data."""
    resolution: int
    file_name: str
    size: int
    duration: float
    segments: Tuple[Segment, ...]
    width: int = 0
    height: int = 0
    fps: float = 0.0
    codecs: str = ""
    init_offset: int = 0
    init_length: int = 0
    info_hash: str = ""
    magnet_uri: str = ""
    file_url: str = ""
    torrent_url: str = ""
    manifest_sha256: str = ""

    def __post_init__(self):
        validate_resolution(self.resolution)
        if not self.segments:
            raise ValueError(f"Variant {self.label} has no segments")
        if self.size <= 0:
            raise ValueError(f"Variant {self.label} has non-positive size {self.size}")
        object.__setattr__(self, "segments", tuple(self.segments))

    @property
    def label(self) -> str:
        return resolution_label(self.resolution)

    @property
    def is_audio(self) -> bool:
        return self.resolution == AUDIO_RESOLUTION

    @property
    def segment_count(self) -> int:
        return len(self.segments)

    @property
    def segments_duration(self) -> float:
        return sum(segment.duration for segment in self.segments)

    @property
    def bandwidth(self) -> int:
        """Average bits per second over the whole variant file."""
        return int(math.ceil(self.size * 8 / self.duration)) if self.duration > 0 else 0


@dataclass(frozen=True)
class PeerDescriptor:
    """BitTorrent v1 description of a variant file."""
    info_hash: str
    name: str
    announce: Tuple[str, ...]
    url_list: Tuple[str, ...]
    torrent_bytes: bytes
    magnet_uri: str
    torrent_url: str = ""


@dataclass(frozen=True)
class StreamingPlaylist:
    """All variants of one video for a playlist type."""
    video_uuid: str
    type: StreamingPlaylistType
    playlist_url: str
    segments_sha256_url: str
    files: Tuple[VariantFile, ...] = ()
    playlist_hash: str = ""

    def __post_init__(self):
        resolutions = [f.resolution for f in self.files]
        if len(resolutions) != len(set(resolutions)):
            raise ValueError(f"Duplicate resolutions in playlist for {self.video_uuid}: {resolutions}")
        object.__setattr__(self, "files", tuple(sorted(self.files, key=lambda f: f.resolution)))

    @property
    def resolutions(self) -> Tuple[int, ...]:
        return tuple(f.resolution for f in self.files)

    def get_file(self, resolution: int) -> Optional[VariantFile]:
        for variant in self.files:
            if variant.resolution == resolution:
                return variant
        return None


@dataclass
class VideoDetail:
    """Read model returned to API callers."""
    uuid: str
    name: str
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_audio_only: bool = False
    created_at: Any = None
    updated_at: Any = None
    streaming_playlists: Tuple[StreamingPlaylist, ...] = field(default_factory=tuple)

    def get_playlist(self, playlist_type: StreamingPlaylistType = StreamingPlaylistType.HLS) -> Optional[StreamingPlaylist]:
        for playlist in self.streaming_playlists:
            if playlist.type == playlist_type:
                return playlist
        return None
