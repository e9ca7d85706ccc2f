"""
Variant file and segment models.
"""
from datetime import datetime
from sqlalchemy import (
    String, Integer, Float, BigInteger, Text, DateTime, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from vidstream.database.base import Base


class VideoFile(Base):
    """
    Video files table - one fragmented MP4 per resolution of a playlist.
    """
    __tablename__ = "video_files"

    # Columns
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    playlist_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("video_streaming_playlists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    resolution: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    height: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fps: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    codecs: Mapped[str | None] = mapped_column(String(100), nullable=True)
    init_offset: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    init_length: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    info_hash: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    magnet_uri: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    torrent_url: Mapped[str] = mapped_column(Text, nullable=False)
    manifest_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )

    # Relationships
    playlist: Mapped["VideoStreamingPlaylist"] = relationship("VideoStreamingPlaylist", back_populates="files")
    segments: Mapped[list["VideoSegment"]] = relationship(
        "VideoSegment",
        back_populates="file",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="VideoSegment.segment_index",
        lazy="selectin"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('playlist_id', 'resolution', name='uq_video_file_playlist_resolution'),
        CheckConstraint('resolution >= 0', name='check_video_file_resolution'),
        CheckConstraint('size > 0', name='check_video_file_size'),
    )


class VideoSegment(Base):
    """
    Video segments table - byte range and SHA-256 of each segment of a file.
    """
    __tablename__ = "video_segments"

    # Columns
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    file_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("video_files.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    segment_index: Mapped[int] = mapped_column(Integer, nullable=False)
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    byte_offset: Mapped[int] = mapped_column(BigInteger, nullable=False)
    byte_length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    # Relationships
    file: Mapped["VideoFile"] = relationship("VideoFile", back_populates="segments")

    # Constraints
    __table_args__ = (
        UniqueConstraint('file_id', 'segment_index', name='uq_video_segment_file_index'),
        CheckConstraint('byte_length > 0', name='check_video_segment_length'),
    )
