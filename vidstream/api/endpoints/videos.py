"""
Video-related API endpoints.
Handles video registration, retrieval, rename and re-transcoding.
"""
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query

from vidstream.api.deps import get_video_service
from vidstream.core.logging import (
    log_operation_start,
    log_operation_complete,
    get_request_id
)
from vidstream.models.schemas import (
    CreateVideoRequest,
    CreateVideoResponse,
    JobStatusResponse,
    TranscodeRequest,
    UpdateVideoRequest,
    VideoResponse,
)
from vidstream.services.video_service import VideoService

router = APIRouter()


@router.post("/videos", response_model=CreateVideoResponse, status_code=201)
async def create_video(
    request: CreateVideoRequest,
    service: VideoService = Depends(get_video_service),
):
    """Register an uploaded file and start transcoding it."""
    start_time = time.time()
    operation = "create_video"

    log_operation_start(
        logger="vidstream.api.endpoints.videos",
        function="create_video",
        operation=operation,
        message=f"Registering video '{request.name}'",
        context={"source_path": request.source_path, "request_id": get_request_id()}
    )

    video, handle = await service.create_video(
        name=request.name,
        source_path=request.source_path,
        resolutions=request.resolutions,
    )

    log_operation_complete(
        logger="vidstream.api.endpoints.videos",
        function="create_video",
        operation=operation,
        message="Video registered",
        context={"video_uuid": video.uuid, "job_id": handle.job_id if handle else None},
        duration=time.time() - start_time
    )

    return CreateVideoResponse(
        video=VideoResponse.from_domain(video),
        job=JobStatusResponse.from_job(handle.job) if handle else None,
    )


@router.get("/videos", response_model=list[VideoResponse])
async def list_videos(
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: VideoService = Depends(get_video_service),
):
    """List videos, newest first. Segment lists are omitted."""
    videos = await service.list_videos(limit=limit, offset=offset)
    return [VideoResponse.from_domain(v, include_segments=False) for v in videos]


@router.get("/videos/{video_uuid}", response_model=VideoResponse)
async def get_video(
    video_uuid: str,
    service: VideoService = Depends(get_video_service),
):
    """Get a video with its playlists, files and segments."""
    video = await service.get_video(video_uuid)
    return VideoResponse.from_domain(video)


@router.put("/videos/{video_uuid}", response_model=VideoResponse)
async def update_video(
    video_uuid: str,
    request: UpdateVideoRequest,
    service: VideoService = Depends(get_video_service),
):
    """Rename a video. Does not re-transcode."""
    video = await service.update_video(video_uuid, name=request.name)
    return VideoResponse.from_domain(video, include_segments=False)


@router.post("/videos/{video_uuid}/transcode", response_model=JobStatusResponse, status_code=202)
async def transcode_video(
    video_uuid: str,
    request: TranscodeRequest,
    service: VideoService = Depends(get_video_service),
):
    """Submit a re-transcoding job for an existing video."""
    handle = await service.retranscode(
        video_uuid,
        resolutions=request.resolutions,
        keep_existing=request.keep_existing,
        allow_upscale=request.allow_upscale,
    )
    return JobStatusResponse.from_job(handle.job)
