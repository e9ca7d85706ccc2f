"""
Transcoding job state.

A TranscodeJob is the aggregate for one submit() call; it owns one SubJob per
requested resolution.

    SubJob:  pending -> running -> succeeded | failed
    Job:     pending -> running -> published | failed | cancelled

Transitions outside these graphs raise ValueError.
"""
import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from vidstream.core.exceptions import EncodeFailure, TranscodeCancelled
from vidstream.models.domain import (
    JobStatus,
    StreamingPlaylist,
    SubJobStatus,
    TranscodeOptions,
    VariantFile,
    resolution_label,
)

_SUBJOB_TRANSITIONS = {
    SubJobStatus.PENDING: {SubJobStatus.RUNNING, SubJobStatus.FAILED},
    SubJobStatus.RUNNING: {SubJobStatus.SUCCEEDED, SubJobStatus.FAILED},
}

_JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.PUBLISHED, JobStatus.FAILED, JobStatus.CANCELLED},
}


@dataclass
class SubJob:
    """Encoding of one resolution."""
    resolution: int
    status: SubJobStatus = SubJobStatus.PENDING
    segments_produced: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    variant: Optional[VariantFile] = None
    file_path: Optional[Path] = None
    torrent_path: Optional[Path] = None

    def _move(self, status: SubJobStatus) -> None:
        if status not in _SUBJOB_TRANSITIONS.get(self.status, set()):
            raise ValueError(f"Sub-job {self.label}: cannot go from {self.status.value} to {status.value}")
        self.status = status

    @property
    def label(self) -> str:
        return resolution_label(self.resolution)

    def mark_running(self) -> None:
        self._move(SubJobStatus.RUNNING)
        self.started_at = time.time()

    def mark_succeeded(self, variant: VariantFile, file_path: Path, torrent_path: Path) -> None:
        self._move(SubJobStatus.SUCCEEDED)
        self.variant = variant
        self.file_path = file_path
        self.torrent_path = torrent_path
        self.segments_produced = variant.segment_count
        self.completed_at = time.time()

    def mark_failed(self, error: BaseException) -> None:
        self._move(SubJobStatus.FAILED)
        self.error = str(error) or type(error).__name__
        self.error_type = type(error).__name__
        if isinstance(error, EncodeFailure):
            self.segments_produced = error.segments_produced
        self.completed_at = time.time()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolution": self.resolution,
            "label": self.label,
            "status": self.status.value,
            "segments_produced": self.segments_produced,
            "error": self.error,
            "error_type": self.error_type,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


@dataclass
class TranscodeJob:
    """Aggregate state of one transcoding request."""
    job_id: str
    video_uuid: str
    resolutions: Tuple[int, ...]
    options: TranscodeOptions
    status: JobStatus = JobStatus.PENDING
    subjobs: Dict[int, SubJob] = field(default_factory=dict)
    error: Optional[str] = None
    error_type: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    playlist: Optional[StreamingPlaylist] = None

    def __post_init__(self):
        if not self.subjobs:
            self.subjobs = {r: SubJob(resolution=r) for r in self.resolutions}

    def _move(self, status: JobStatus) -> None:
        if status not in _JOB_TRANSITIONS.get(self.status, set()):
            raise ValueError(f"Job {self.job_id}: cannot go from {self.status.value} to {status.value}")
        self.status = status

    def mark_running(self) -> None:
        self._move(JobStatus.RUNNING)
        self.started_at = time.time()

    def mark_published(self, playlist: StreamingPlaylist) -> None:
        self._move(JobStatus.PUBLISHED)
        self.playlist = playlist
        self.completed_at = time.time()

    def mark_failed(self, error: BaseException) -> None:
        self._move(JobStatus.FAILED)
        self.error = str(error) or type(error).__name__
        self.error_type = type(error).__name__
        self.completed_at = time.time()

    def mark_cancelled(self) -> None:
        self._move(JobStatus.CANCELLED)
        error = TranscodeCancelled(self.video_uuid)
        self.error = error.message
        self.error_type = type(error).__name__
        self.completed_at = time.time()

    def unfinished_subjobs(self) -> List[SubJob]:
        return [
            s for s in self.subjobs.values()
            if s.status in (SubJobStatus.PENDING, SubJobStatus.RUNNING)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "video_uuid": self.video_uuid,
            "status": self.status.value,
            "resolutions": list(self.resolutions),
            "error": self.error,
            "error_type": self.error_type,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "subjobs": [self.subjobs[r].to_dict() for r in sorted(self.subjobs)],
        }


class JobHandle:
    """Returned by submit(); lets the caller observe or await a job."""

    def __init__(self, job: TranscodeJob, task: "asyncio.Task"):
        self.job = job
        self._task = task

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def video_uuid(self) -> str:
        return self.job.video_uuid

    @property
    def status(self) -> JobStatus:
        return self.job.status

    def done(self) -> bool:
        return self._task.done()

    async def wait(self, timeout: Optional[float] = None) -> TranscodeJob:
        """Wait until the job reaches a terminal state (or the timeout passes)."""
        await asyncio.wait({self._task}, timeout=timeout)
        return self.job
