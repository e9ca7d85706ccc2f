"""
Transcoding job status endpoints.

Jobs are read from the in-process scheduler; when Redis mirroring is enabled,
jobs started by another process are looked up there.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from redis.exceptions import RedisError

from vidstream.api.deps import get_app_settings, get_scheduler, get_video_service
from vidstream.core.config import Settings
from vidstream.core.exceptions import JobNotFoundException
from vidstream.models.schemas import JobStatusResponse
from vidstream.services import job_tracker
from vidstream.services.transcoding.scheduler import TranscodeScheduler
from vidstream.services.video_service import VideoService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job(
    job_id: str,
    video_uuid: Optional[str] = Query(None, description="Owning video, needed for jobs of other processes"),
    scheduler: TranscodeScheduler = Depends(get_scheduler),
    settings: Settings = Depends(get_app_settings),
):
    """Get the state of a transcoding job and its per-resolution sub-jobs."""
    job = scheduler.get_job(job_id)
    if job is not None:
        return JobStatusResponse.from_job(job)

    if settings.redis_enabled and video_uuid:
        try:
            mirrored = await job_tracker.get_job_state(video_uuid, job_id)
        except RedisError as e:
            logger.warning(f"Redis lookup of job {job_id} failed: {e}")
            mirrored = None
        if mirrored:
            return JobStatusResponse(**mirrored)

    raise JobNotFoundException(job_id)


@router.get("/videos/{video_uuid}/jobs", response_model=list[JobStatusResponse])
async def list_video_jobs(
    video_uuid: str,
    scheduler: TranscodeScheduler = Depends(get_scheduler),
    service: VideoService = Depends(get_video_service),
):
    """List the transcoding jobs of a video known to this process, oldest first."""
    await service.get_video(video_uuid)  # 404 for unknown videos
    return [JobStatusResponse.from_job(job) for job in scheduler.get_jobs_for_video(video_uuid)]
