"""
Database-backed PlaylistRecorder used by the transcode scheduler.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidstream.core.exceptions import VideoNotFoundException
from vidstream.models.domain import StreamingPlaylist, StreamingPlaylistType
from vidstream.repositories import streaming_playlist_db_repository, video_db_repository
from vidstream.services.transcoding.scheduler import PlaylistRecorder

logger = logging.getLogger(__name__)


class DatabasePlaylistRecorder(PlaylistRecorder):
    """Reads and replaces playlist rows, each call in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, video_uuid: str) -> Optional[StreamingPlaylist]:
        async with self.session_factory() as session:
            video = await video_db_repository.get_by_uuid(session, video_uuid)
            if video is None:
                return None
            row = await streaming_playlist_db_repository.get_for_video(
                session, video.id, StreamingPlaylistType.HLS
            )
            if row is None:
                return None
            return streaming_playlist_db_repository.to_domain(row, video_uuid)

    async def save(self, playlist: StreamingPlaylist) -> None:
        """
        Replace the video's playlist, files and segments atomically.

        Raises:
            VideoNotFoundException: The video was deleted meanwhile
        """
        async with self.session_factory() as session:
            try:
                video = await video_db_repository.get_by_uuid(session, playlist.video_uuid)
                if video is None:
                    raise VideoNotFoundException(playlist.video_uuid)
                await streaming_playlist_db_repository.replace(session, video.id, playlist)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            f"Recorded {playlist.type.name} playlist of {playlist.video_uuid} "
            f"with resolutions {list(playlist.resolutions)}"
        )
