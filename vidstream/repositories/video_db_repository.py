"""
Video database repository - CRUD operations for the videos table.
"""
from pathlib import Path
from typing import Optional
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from vidstream.database.models.video import Video
from vidstream.models.domain import SourceMedia


async def create(
    session: AsyncSession,
    uuid: str,
    name: str,
    source: Optional[SourceMedia] = None,
    source_path: Optional[str] = None,
) -> Video:
    """
    Create a new video record in the database.

    Args:
        session: Async database session
        uuid: Public video UUID
        name: Human-readable name
        source: Probe result of the stored source file (optional)
        source_path: Path of the stored source file (optional)

    Returns:
        Created Video instance

    Raises:
        IntegrityError: If the UUID already exists
    """
    video = Video(uuid=uuid, name=name, source_path=source_path, streaming_playlists=[])
    if source is not None:
        video.duration_seconds = source.duration
        video.width = source.width
        video.height = source.height
        video.fps = source.fps
        video.is_audio_only = source.is_audio_only
        video.video_codec = source.video_codec or None
        video.audio_codec = source.audio_codec or None
        video.file_size_bytes = source.size
    session.add(video)
    await session.flush()  # Flush to get the ID
    await session.refresh(video)  # Refresh to get server defaults
    return video


async def get_by_uuid(session: AsyncSession, uuid: str) -> Optional[Video]:
    """
    Get a video by its UUID.

    Returns:
        Video instance or None if not found
    """
    stmt = select(Video).where(Video.uuid == uuid)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_id(session: AsyncSession, id: int) -> Optional[Video]:
    stmt = select(Video).where(Video.id == id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_all(session: AsyncSession, limit: Optional[int] = None, offset: int = 0) -> list[Video]:
    """
    List videos ordered by creation date (newest first).
    """
    stmt = select(Video).order_by(Video.created_at.desc(), Video.id.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_uuids(session: AsyncSession) -> set[str]:
    """UUIDs of all known videos."""
    result = await session.execute(select(Video.uuid))
    return set(result.scalars().all())


async def update_by_uuid(session: AsyncSession, uuid: str, **fields) -> Optional[Video]:
    """
    Update a video record.

    Args:
        session: Async database session
        uuid: Video UUID
        **fields: Fields to update (e.g., name="New name")

    Returns:
        Updated Video instance or None if not found
    """
    video = await get_by_uuid(session, uuid)
    if video is None:
        return None
    for key, value in fields.items():
        setattr(video, key, value)
    await session.flush()
    await session.refresh(video)
    return video


async def delete_by_uuid(session: AsyncSession, uuid: str) -> bool:
    """
    Delete a video by its UUID. Playlists, files and segments go with it
    (ON DELETE CASCADE).

    Returns:
        True if deleted, False if not found
    """
    stmt = delete(Video).where(Video.uuid == uuid)
    result = await session.execute(stmt)
    return result.rowcount > 0


def to_source_media(video: Video) -> SourceMedia:
    """Rebuild the probe result stored on a video row."""
    return SourceMedia(
        path=Path(video.source_path or ""),
        duration=video.duration_seconds or 0.0,
        width=video.width or 0,
        height=video.height or 0,
        fps=video.fps or 0.0,
        has_video=not video.is_audio_only,
        has_audio=bool(video.audio_codec) or video.is_audio_only,
        video_codec=video.video_codec or "",
        audio_codec=video.audio_codec or "",
        size=video.file_size_bytes or 0,
    )
