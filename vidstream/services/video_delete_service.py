"""
Video deletion service.
Cancels running transcodes, tears down stored artifacts, then removes the
source file, Redis job state and the database record.

A video is only removed from the database once its public and temp storage
is verified empty; a failed teardown is reported as "failed" and the record
stays so the deletion can be retried.
"""
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import StorageTeardownFailure, VideoNotFoundException
from vidstream.repositories import video_db_repository
from vidstream.services import job_tracker
from vidstream.services.storage.publisher import StoragePublisher
from vidstream.services.transcoding.scheduler import TranscodeScheduler

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    """Result of video deletion operation."""
    status: str  # "completed", "partial", "failed"
    video_uuid: str
    deleted: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    duration_ms: int = 0


class VideoDeleteService:
    """Main service for video deletion orchestration."""

    def __init__(
        self,
        scheduler: TranscodeScheduler,
        publisher: StoragePublisher,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.scheduler = scheduler
        self.publisher = publisher
        self.session_factory = session_factory

    async def delete_video(self, video_uuid: str) -> DeleteResult:
        """
        Delete a video and everything derived from it.

        Storage errors result in status="failed" (record kept); source file
        and Redis errors in status="partial". DB errors are raised.

        Raises:
            VideoNotFoundException: Unknown UUID
        """
        start_time = time.time()
        logger.info(f"Starting deletion for video: {video_uuid}")
        result = DeleteResult(status="completed", video_uuid=video_uuid)

        async with self.session_factory() as session:
            video = await video_db_repository.get_by_uuid(session, video_uuid)
            if video is None:
                raise VideoNotFoundException(video_uuid)
            source_path = video.source_path

        # 1. Stop transcodes first so nothing gets published behind our back
        result.deleted["jobs_cancelled"] = await self.scheduler.cancel_video(video_uuid)

        # 2. Public tree, torrents, staging leftovers and temp files
        try:
            result.deleted["storage"] = await self.publisher.retract(video_uuid)
        except StorageTeardownFailure as e:
            result.status = "failed"
            result.errors.append(e.message)
            result.errors.extend(f"Remaining: {path}" for path in e.remaining)
            result.duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"Deletion failed for {video_uuid}, record kept: {e.message}")
            return result

        # 3. Source file
        result.deleted["source_file"] = False
        if source_path:
            try:
                Path(source_path).unlink(missing_ok=True)
                result.deleted["source_file"] = True
            except OSError as e:
                msg = f"Source file deletion failed: {e}"
                logger.error(msg)
                result.errors.append(msg)
                result.status = "partial"

        # 4. Mirrored job state
        if self.settings.redis_enabled:
            try:
                result.deleted["redis_keys"] = await job_tracker.delete_job_states(video_uuid)
            except (RedisError, OSError) as e:
                msg = f"Redis deletion failed: {e}"
                logger.error(msg)
                result.errors.append(msg)
                result.status = "partial"

        # 5. Video DB record (CASCADE removes playlists, files and segments)
        async with self.session_factory() as session:
            deleted = await video_db_repository.delete_by_uuid(session, video_uuid)
            await session.commit()
        result.deleted["database"] = deleted
        self.scheduler.forget_video(video_uuid)

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Deletion {result.status} for {video_uuid}, "
            f"duration={result.duration_ms}ms, errors={len(result.errors)}"
        )
        return result
