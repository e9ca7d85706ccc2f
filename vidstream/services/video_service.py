"""
Video service - creation, lookup, rename and re-transcoding of videos.

Creating a video stores the source under videos_dir, records it and submits a
transcoding job; renaming never re-transcodes.
"""
import logging
import time
import uuid as uuid_lib
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import aiofiles
import aiofiles.os

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import (
    SourceUnavailable,
    ValidationException,
    VideoNotFoundException,
)
from vidstream.core.logging import log_operation_complete, log_operation_start
from vidstream.database.models.video import Video
from vidstream.models.domain import TranscodeOptions, VideoDetail
from vidstream.repositories import streaming_playlist_db_repository, video_db_repository
from vidstream.services.transcoding.jobs import JobHandle
from vidstream.services.transcoding.probe import FFprobeSourceProvider
from vidstream.services.transcoding.resolutions import compute_resolutions
from vidstream.services.transcoding.scheduler import TranscodeScheduler

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


def to_detail(video: Video) -> VideoDetail:
    """Build the read model from a video row (playlists, files and segments loaded)."""
    return VideoDetail(
        uuid=video.uuid,
        name=video.name,
        duration=video.duration_seconds,
        width=video.width,
        height=video.height,
        is_audio_only=video.is_audio_only,
        created_at=video.created_at,
        updated_at=video.updated_at,
        streaming_playlists=tuple(
            streaming_playlist_db_repository.to_domain(row, video.uuid)
            for row in video.streaming_playlists
        ),
    )


async def _copy_file(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        while True:
            chunk = await src.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            await dst.write(chunk)


class VideoService:
    """Video lifecycle operations other than deletion."""

    def __init__(
        self,
        scheduler: TranscodeScheduler,
        session_factory: async_sessionmaker[AsyncSession],
        source_provider: Optional[FFprobeSourceProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.source_provider = source_provider or FFprobeSourceProvider(self.settings)

    async def create_video(
        self,
        name: str,
        source_path: Path,
        resolutions: Optional[Sequence[int]] = None,
    ) -> Tuple[VideoDetail, Optional[JobHandle]]:
        """
        Store an uploaded file, record the video and start transcoding.

        Args:
            name: Display name
            source_path: Local path of the uploaded file
            resolutions: Explicit resolution set (default: derived from the source)

        Returns:
            Tuple of (video, job handle or None when transcoding is disabled)

        Raises:
            SourceUnavailable: The file cannot be probed
            ValidationException: Audio-only upload while audio files are disabled
        """
        start_time = time.time()
        source_path = Path(source_path)
        log_operation_start(
            logger=__name__,
            function="create_video",
            operation="create_video",
            message=f"Creating video '{name}'",
            context={"source_path": str(source_path)}
        )

        source = await self.source_provider.probe(source_path)
        if source.is_audio_only and not self.settings.allow_audio_files:
            raise ValidationException("audio-only uploads are disabled")

        video_uuid = str(uuid_lib.uuid4())
        stored_path = self.settings.videos_dir / f"{video_uuid}{source_path.suffix.lower()}"
        await _copy_file(source_path, stored_path)
        source = replace(source, path=stored_path, size=stored_path.stat().st_size)

        try:
            async with self.session_factory() as session:
                video = await video_db_repository.create(
                    session,
                    uuid=video_uuid,
                    name=name,
                    source=source,
                    source_path=str(stored_path),
                )
                await session.commit()
                detail = to_detail(video)
        except Exception:
            await aiofiles.os.remove(stored_path)
            raise

        handle = None
        if self.settings.transcoding_enabled:
            handle = self.scheduler.submit(
                video_uuid,
                source,
                list(resolutions) if resolutions else compute_resolutions(source, self.settings),
            )

        log_operation_complete(
            logger=__name__,
            function="create_video",
            operation="create_video",
            message=f"Created video {video_uuid}",
            context={
                "video_uuid": video_uuid,
                "is_audio_only": source.is_audio_only,
                "job_id": handle.job_id if handle else None,
            },
            duration=time.time() - start_time,
        )
        return detail, handle

    async def get_video(self, video_uuid: str) -> VideoDetail:
        """
        Raises:
            VideoNotFoundException: Unknown UUID
        """
        async with self.session_factory() as session:
            video = await video_db_repository.get_by_uuid(session, video_uuid)
            if video is None:
                raise VideoNotFoundException(video_uuid)
            return to_detail(video)

    async def list_videos(self, limit: Optional[int] = None, offset: int = 0) -> List[VideoDetail]:
        async with self.session_factory() as session:
            videos = await video_db_repository.list_all(session, limit=limit, offset=offset)
            return [to_detail(v) for v in videos]

    async def update_video(self, video_uuid: str, name: str) -> VideoDetail:
        """
        Rename a video. Published renditions are left untouched.

        Raises:
            VideoNotFoundException: Unknown UUID
        """
        async with self.session_factory() as session:
            video = await video_db_repository.update_by_uuid(session, video_uuid, name=name)
            if video is None:
                raise VideoNotFoundException(video_uuid)
            await session.commit()
            detail = to_detail(video)

        logger.info(f"Renamed video {video_uuid} to '{name}'")
        return detail

    async def retranscode(
        self,
        video_uuid: str,
        resolutions: Optional[Sequence[int]] = None,
        keep_existing: bool = False,
        allow_upscale: Optional[bool] = None,
    ) -> JobHandle:
        """
        Submit a new transcoding job for an existing video.

        With keep_existing, published resolutions outside the request are
        carried over unchanged; otherwise the new tree replaces the old one.

        Raises:
            VideoNotFoundException: Unknown UUID
            SourceUnavailable: The stored source file is gone
        """
        async with self.session_factory() as session:
            video = await video_db_repository.get_by_uuid(session, video_uuid)
            if video is None:
                raise VideoNotFoundException(video_uuid)
            source = video_db_repository.to_source_media(video)

        if not source.path.is_file():
            raise SourceUnavailable(str(source.path), "stored source file is missing")

        upscale = self.settings.allow_upscale if allow_upscale is None else allow_upscale
        options = TranscodeOptions(
            allow_upscale=upscale,
            segment_duration=self.settings.segment_duration,
            keep_existing=keep_existing,
        )
        if not resolutions:
            resolutions = compute_resolutions(source, self.settings, allow_upscale=upscale)

        handle = self.scheduler.submit(video_uuid, source, resolutions, options)
        logger.info(f"Re-transcoding {video_uuid} as job {handle.job_id}: {list(handle.job.resolutions)}")
        return handle
