"""
Dependency injection for FastAPI endpoints.
Services are built once in the application lifespan and kept on app.state.
"""
from fastapi import Request

from vidstream.core.config import Settings
from vidstream.services.storage.publisher import StoragePublisher
from vidstream.services.transcoding.scheduler import TranscodeScheduler
from vidstream.services.video_delete_service import VideoDeleteService
from vidstream.services.video_service import VideoService


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_scheduler(request: Request) -> TranscodeScheduler:
    """
    Get the transcode scheduler singleton.

    Returns:
        TranscodeScheduler instance
    """
    return request.app.state.scheduler


def get_publisher(request: Request) -> StoragePublisher:
    return request.app.state.publisher


def get_video_service(request: Request) -> VideoService:
    return request.app.state.video_service


def get_video_delete_service(request: Request) -> VideoDeleteService:
    return request.app.state.video_delete_service
