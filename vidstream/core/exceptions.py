"""
Custom exception classes for the Vidstream application.
These exceptions provide meaningful error messages and HTTP status codes.

The transcoding pipeline raises the pipeline errors below; sub-job failures are
caught at the aggregate job boundary and recorded there, API errors are turned
into JSON responses by ErrorHandlingMiddleware.
"""
from typing import Optional


class VidstreamException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


class SourceUnavailable(VidstreamException):
    """Raised when the source media cannot be read or probed."""

    def __init__(self, source: str, error: str):
        super().__init__(
            message=f"Source media unavailable ({source}): {error}",
            status_code=422
        )
        self.source = source
        self.error = error


class EncodeFailure(VidstreamException):
    """Raised when a variant cannot be produced."""

    def __init__(self, resolution: int, error: str, segments_produced: int = 0):
        super().__init__(
            message=f"Encoding {resolution}p failed after {segments_produced} segment(s): {error}",
            status_code=500
        )
        self.resolution = resolution
        self.error = error
        self.segments_produced = segments_produced


class IntegrityComputationFailure(EncodeFailure):
    """Raised when segment bytes cannot be read back for hashing."""

    def __init__(self, resolution: int, error: str, segments_produced: int = 0):
        super().__init__(resolution, f"segment hashing failed: {error}", segments_produced)


class DescriptorGenerationFailure(EncodeFailure):
    """Raised when a peer descriptor cannot be built from a variant."""

    def __init__(self, resolution: int, error: str, segments_produced: int = 0):
        super().__init__(resolution, f"descriptor generation failed: {error}", segments_produced)


class ManifestValidationError(VidstreamException):
    """Raised when segments handed to the manifest builder are not a contiguous run."""

    def __init__(self, error: str):
        super().__init__(
            message=f"Invalid segment sequence: {error}",
            status_code=500
        )
        self.error = error


class PublicationConflict(VidstreamException):
    """Raised when another publish holds the (video, playlist type) slot for too long."""

    def __init__(self, video_uuid: str, playlist_type: str, waited: float):
        super().__init__(
            message=f"Publication of {playlist_type} playlist for {video_uuid} "
                    f"still locked after {waited:.1f}s",
            status_code=409
        )
        self.video_uuid = video_uuid
        self.playlist_type = playlist_type
        self.waited = waited


class StorageTeardownFailure(VidstreamException):
    """Raised when derived artifacts of a video could not be removed."""

    def __init__(self, video_uuid: str, remaining: Optional[list] = None, error: str = ""):
        remaining = remaining or []
        detail = error or f"{len(remaining)} path(s) left behind"
        super().__init__(
            message=f"Storage teardown failed for {video_uuid}: {detail}",
            status_code=500
        )
        self.video_uuid = video_uuid
        self.remaining = remaining
        self.error = error


class TranscodeCancelled(VidstreamException):
    """Error recorded on a job stopped because its video was deleted or the service shut down."""

    def __init__(self, video_uuid: str):
        super().__init__(
            message=f"Transcoding cancelled for video: {video_uuid}",
            status_code=409
        )
        self.video_uuid = video_uuid


# ---------------------------------------------------------------------------
# API errors
# ---------------------------------------------------------------------------


class VideoNotFoundException(VidstreamException):
    """Raised when a video is not found."""

    def __init__(self, video_uuid: str):
        super().__init__(
            message=f"Video not found: {video_uuid}",
            status_code=404
        )
        self.video_uuid = video_uuid


class JobNotFoundException(VidstreamException):
    """Raised when a transcoding job is not found."""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"No transcoding job found: {job_id}",
            status_code=404
        )
        self.job_id = job_id


class ValidationException(VidstreamException):
    """Raised when request data validation fails."""

    def __init__(self, message: str):
        super().__init__(
            message=f"Validation error: {message}",
            status_code=400  # Bad Request
        )
