"""
Pydantic models for API request/response validation.
"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List

from vidstream.models.domain import StreamingPlaylist, VariantFile, VideoDetail
from vidstream.services.transcoding.jobs import TranscodeJob


# Response Models

class SegmentResponse(BaseModel):
    """One byte-range segment of a variant file."""
    index: int
    duration: float
    byte_offset: int
    byte_length: int
    sha256: str


class VariantFileResponse(BaseModel):
    """Response model for one resolution of a playlist."""
    resolution: int
    label: str
    file_name: str
    size: int
    duration: float
    width: int
    height: int
    fps: float
    codecs: str
    bandwidth: int
    info_hash: str
    magnet_uri: str
    file_url: str
    torrent_url: str
    segments: List[SegmentResponse] = []

    @classmethod
    def from_domain(cls, variant: VariantFile, include_segments: bool = True) -> "VariantFileResponse":
        return cls(
            resolution=variant.resolution,
            label=variant.label,
            file_name=variant.file_name,
            size=variant.size,
            duration=variant.duration,
            width=variant.width,
            height=variant.height,
            fps=variant.fps,
            codecs=variant.codecs,
            bandwidth=variant.bandwidth,
            info_hash=variant.info_hash,
            magnet_uri=variant.magnet_uri,
            file_url=variant.file_url,
            torrent_url=variant.torrent_url,
            segments=[
                SegmentResponse(
                    index=s.index,
                    duration=s.duration,
                    byte_offset=s.byte_offset,
                    byte_length=s.byte_length,
                    sha256=s.sha256,
                )
                for s in variant.segments
            ] if include_segments else [],
        )


class StreamingPlaylistResponse(BaseModel):
    """Response model for a published streaming playlist."""
    type: str
    playlist_url: str
    segments_sha256_url: str
    playlist_hash: Optional[str] = None
    files: List[VariantFileResponse] = []

    @classmethod
    def from_domain(cls, playlist: StreamingPlaylist, include_segments: bool = True) -> "StreamingPlaylistResponse":
        return cls(
            type=playlist.type.name,
            playlist_url=playlist.playlist_url,
            segments_sha256_url=playlist.segments_sha256_url,
            playlist_hash=playlist.playlist_hash or None,
            files=[VariantFileResponse.from_domain(f, include_segments) for f in playlist.files],
        )


class VideoResponse(BaseModel):
    """Response model for video data."""
    uuid: str
    name: str
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_audio_only: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    streaming_playlists: List[StreamingPlaylistResponse] = []

    @classmethod
    def from_domain(cls, video: VideoDetail, include_segments: bool = True) -> "VideoResponse":
        return cls(
            uuid=video.uuid,
            name=video.name,
            duration=video.duration,
            width=video.width,
            height=video.height,
            is_audio_only=video.is_audio_only,
            created_at=video.created_at,
            updated_at=video.updated_at,
            streaming_playlists=[
                StreamingPlaylistResponse.from_domain(p, include_segments)
                for p in video.streaming_playlists
            ],
        )


class SubJobResponse(BaseModel):
    """Per-resolution sub-job state."""
    resolution: int
    label: str
    status: str
    segments_produced: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None


class JobStatusResponse(BaseModel):
    """Response model for job status."""
    job_id: str
    video_uuid: str
    status: str
    resolutions: List[int]
    created_at: float
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    subjobs: List[SubJobResponse] = []

    @classmethod
    def from_job(cls, job: TranscodeJob) -> "JobStatusResponse":
        return cls(**job.to_dict())


class CreateVideoResponse(BaseModel):
    """Response model for video creation."""
    video: VideoResponse
    job: Optional[JobStatusResponse] = None


class DeleteVideoResponse(BaseModel):
    """Response model for video deletion."""
    status: str
    video_uuid: str
    deleted: Dict[str, Any] = {}
    errors: Optional[List[str]] = None
    duration_ms: int = 0


class ErrorResponse(BaseModel):
    """Error body produced by the error handling middleware."""
    error: str
    error_type: Optional[str] = None
    detail: Optional[str] = None
    status_code: int


# Request Models

class CreateVideoRequest(BaseModel):
    """Request model for registering an uploaded file."""
    name: str = Field(..., min_length=1, max_length=500)
    source_path: str = Field(..., description="Local path of the uploaded file")
    resolutions: Optional[List[int]] = Field(
        None, description="Explicit resolution set; 0 is the audio-only variant"
    )


class UpdateVideoRequest(BaseModel):
    """Request model for renaming a video."""
    name: str = Field(..., min_length=1, max_length=500)


class TranscodeRequest(BaseModel):
    """Request model for re-transcoding a video."""
    resolutions: Optional[List[int]] = Field(None, description="Resolutions to (re)produce")
    keep_existing: bool = Field(default=False, description="Keep published resolutions not in the request")
    allow_upscale: Optional[bool] = Field(None, description="Override the configured upscale policy")
