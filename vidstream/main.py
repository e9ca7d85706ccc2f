"""
FastAPI application.

Run with:
    uvicorn vidstream.main:create_app --factory
or
    python -m vidstream.main
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from redis.exceptions import RedisError

from vidstream.api.endpoints import delete, jobs, videos
from vidstream.core.config import Settings, get_settings
from vidstream.core.logging import setup_logging
from vidstream.core.redis import close_redis_client, get_async_redis_client, health_check
from vidstream.database.session import close_db, get_session_factory, init_db
from vidstream.middleware.error_handling import ErrorHandlingMiddleware
from vidstream.middleware.logging import RequestLoggingMiddleware
from vidstream.models.schemas import ErrorResponse
from vidstream.services.playlist_recorder import DatabasePlaylistRecorder
from vidstream.services.storage.publisher import StoragePublisher
from vidstream.services.storage.workspace import TempWorkspace
from vidstream.services.transcoding.encoder import BaseEncoder, FFmpegEncoder
from vidstream.services.transcoding.probe import FFprobeSourceProvider
from vidstream.services.transcoding.scheduler import TranscodeScheduler
from vidstream.services.video_delete_service import VideoDeleteService
from vidstream.services.video_service import VideoService
from vidstream.utils.url import LAZY_STATIC_TORRENTS_PREFIX, STATIC_HLS_PREFIX

logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def create_app(
    settings: Optional[Settings] = None,
    encoder: Optional[BaseEncoder] = None,
    source_provider: Optional[FFprobeSourceProvider] = None,
) -> FastAPI:
    """Build the API application; encoder and source provider are injectable for tests."""
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir, console=settings.debug)

    for directory in (settings.videos_dir, settings.hls_dir, settings.torrents_dir, settings.tmp_dir):
        directory.mkdir(parents=True, exist_ok=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(settings)
        session_factory = get_session_factory()

        if settings.redis_enabled:
            try:
                await get_async_redis_client()
            except RedisError as e:
                # Job mirroring degrades to warnings; the API still works
                logger.error(f"Failed to initialize Redis: {e}")

        workspace = TempWorkspace(settings.tmp_dir)
        # No job survives a restart: whatever is in the temp area is garbage
        await workspace.cleanup_old_files(max_age_hours=0)

        publisher = StoragePublisher(settings, workspace)
        scheduler = TranscodeScheduler(
            encoder=encoder or FFmpegEncoder(settings),
            publisher=publisher,
            workspace=workspace,
            recorder=DatabasePlaylistRecorder(session_factory),
            settings=settings,
        )

        app.state.settings = settings
        app.state.workspace = workspace
        app.state.publisher = publisher
        app.state.scheduler = scheduler
        app.state.video_service = VideoService(
            scheduler,
            session_factory,
            source_provider=source_provider or FFprobeSourceProvider(settings),
            settings=settings,
        )
        app.state.video_delete_service = VideoDeleteService(scheduler, publisher, session_factory, settings)

        logger.info(f"{settings.app_name} {settings.app_version} started")
        try:
            yield
        finally:
            await scheduler.shutdown()
            if settings.redis_enabled:
                await close_redis_client()
            await close_db()
            logger.info(f"{settings.app_name} stopped")

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    # Add middleware (order matters - last added runs first)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(videos.router, prefix="/api", tags=["videos"], responses=ERROR_RESPONSES)
    app.include_router(jobs.router, prefix="/api", tags=["jobs"], responses=ERROR_RESPONSES)
    app.include_router(delete.router, prefix="/api", tags=["videos"], responses=ERROR_RESPONSES)

    # Public artifacts: playlists, fragmented files, segment hashes and torrents
    app.mount(STATIC_HLS_PREFIX, StaticFiles(directory=str(settings.hls_dir)), name="hls")
    app.mount(LAZY_STATIC_TORRENTS_PREFIX, StaticFiles(directory=str(settings.torrents_dir)), name="torrents")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": settings.app_name, "version": settings.app_version}

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        if settings.redis_enabled:
            redis_status = "connected" if await health_check() else "disconnected"
        else:
            redis_status = "disabled"
        return {
            "status": "healthy",
            "redis": redis_status,
            "jobs": app.state.scheduler.count_by_status(),
        }

    return app


def main() -> None:
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=9000)


if __name__ == "__main__":
    main()
