"""
Video deletion API endpoint.
"""
import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from vidstream.api.deps import get_video_delete_service
from vidstream.core.logging import (
    log_operation_start,
    log_operation_complete,
    log_operation_error,
    get_request_id
)
from vidstream.models.schemas import DeleteVideoResponse
from vidstream.services.video_delete_service import VideoDeleteService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.delete("/videos/{video_uuid}", response_model=DeleteVideoResponse)
async def delete_video(
    video_uuid: str,
    service: VideoDeleteService = Depends(get_video_delete_service),
):
    """
    Delete a video: cancels its transcodes, removes playlists, torrents, temp
    files, the source file, mirrored job state and the DB record.

    Responds 500 (record kept, safe to retry) when stored files could not be
    removed.
    """
    start_time = time.time()
    operation = "delete_video"

    log_operation_start(
        logger="vidstream.api.endpoints.delete",
        function="delete_video",
        operation=operation,
        message=f"Starting video deletion: {video_uuid}",
        context={"video_uuid": video_uuid, "request_id": get_request_id()},
    )

    result = await service.delete_video(video_uuid)
    duration = time.time() - start_time

    if result.status == "failed":
        log_operation_error(
            logger="vidstream.api.endpoints.delete",
            function="delete_video",
            operation=operation,
            error=Exception("; ".join(result.errors)),
            message="Video deletion failed",
            context={
                "video_uuid": video_uuid,
                "errors": result.errors,
                "duration_seconds": duration,
            },
        )
        raise HTTPException(
            status_code=500,
            detail={
                "error": result.errors[0] if result.errors else "Deletion failed",
                "video_uuid": video_uuid,
                "all_errors": result.errors,
            },
        )

    log_operation_complete(
        logger="vidstream.api.endpoints.delete",
        function="delete_video",
        operation=operation,
        message=f"Video deletion {result.status}",
        context={
            "video_uuid": video_uuid,
            "status": result.status,
            "deleted": result.deleted,
            "errors": result.errors,
        },
        duration=duration,
    )

    return DeleteVideoResponse(
        status=result.status,
        video_uuid=result.video_uuid,
        deleted=result.deleted,
        errors=result.errors if result.errors else None,
        duration_ms=result.duration_ms,
    )
