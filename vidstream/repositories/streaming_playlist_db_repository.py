"""
Streaming playlist database repository.

A playlist row, its variant files and their segments are always written and
replaced together; readers get them back as a StreamingPlaylist domain object.
"""
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vidstream.database.models.streaming_playlist import VideoStreamingPlaylist
from vidstream.database.models.video_file import VideoFile, VideoSegment
from vidstream.models.domain import Segment, StreamingPlaylist, StreamingPlaylistType, VariantFile


async def get_for_video(
    session: AsyncSession,
    video_id: int,
    playlist_type: StreamingPlaylistType = StreamingPlaylistType.HLS,
) -> Optional[VideoStreamingPlaylist]:
    """
    Get the playlist of a video for one playlist type.

    Returns:
        VideoStreamingPlaylist instance (files and segments loaded) or None
    """
    stmt = select(VideoStreamingPlaylist).where(
        VideoStreamingPlaylist.video_id == video_id,
        VideoStreamingPlaylist.type == playlist_type.value,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def replace(session: AsyncSession, video_id: int, playlist: StreamingPlaylist) -> VideoStreamingPlaylist:
    """
    Replace a video's playlist of playlist.type with the given one.

    Args:
        session: Async database session
        video_id: Owning video row ID
        playlist: Published playlist with all its variants

    Returns:
        Created VideoStreamingPlaylist instance
    """
    existing = await get_for_video(session, video_id, playlist.type)
    if existing is not None:
        await session.delete(existing)
        await session.flush()

    row = VideoStreamingPlaylist(
        video_id=video_id,
        type=playlist.type.value,
        playlist_url=playlist.playlist_url,
        segments_sha256_url=playlist.segments_sha256_url,
        playlist_hash=playlist.playlist_hash or None,
        files=[_file_row(variant) for variant in playlist.files],
    )
    session.add(row)
    await session.flush()
    return row


def _file_row(variant: VariantFile) -> VideoFile:
    return VideoFile(
        resolution=variant.resolution,
        file_name=variant.file_name,
        size=variant.size,
        duration=variant.duration,
        width=variant.width,
        height=variant.height,
        fps=variant.fps,
        codecs=variant.codecs or None,
        init_offset=variant.init_offset,
        init_length=variant.init_length,
        info_hash=variant.info_hash,
        magnet_uri=variant.magnet_uri,
        file_url=variant.file_url,
        torrent_url=variant.torrent_url,
        manifest_sha256=variant.manifest_sha256 or None,
        segments=[
            VideoSegment(
                segment_index=segment.index,
                duration=segment.duration,
                byte_offset=segment.byte_offset,
                byte_length=segment.byte_length,
                sha256=segment.sha256,
            )
            for segment in variant.segments
        ],
    )


def to_domain(row: VideoStreamingPlaylist, video_uuid: str) -> StreamingPlaylist:
    """Convert a playlist row (with files and segments loaded) to the domain model."""
    files = tuple(
        VariantFile(
            resolution=f.resolution,
            file_name=f.file_name,
            size=f.size,
            duration=f.duration,
            segments=tuple(
                Segment(
                    index=s.segment_index,
                    duration=s.duration,
                    byte_offset=s.byte_offset,
                    byte_length=s.byte_length,
                    sha256=s.sha256,
                )
                for s in f.segments
            ),
            width=f.width,
            height=f.height,
            fps=f.fps,
            codecs=f.codecs or "",
            init_offset=f.init_offset,
            init_length=f.init_length,
            info_hash=f.info_hash,
            magnet_uri=f.magnet_uri,
            file_url=f.file_url,
            torrent_url=f.torrent_url,
            manifest_sha256=f.manifest_sha256 or "",
        )
        for f in row.files
    )
    return StreamingPlaylist(
        video_uuid=video_uuid,
        type=StreamingPlaylistType(row.type),
        playlist_url=row.playlist_url,
        segments_sha256_url=row.segments_sha256_url,
        files=files,
        playlist_hash=row.playlist_hash or "",
    )
