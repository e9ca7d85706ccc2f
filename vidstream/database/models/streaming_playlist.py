"""
Streaming playlist model - one published playlist (per type) of a video.
"""
from datetime import datetime
from sqlalchemy import String, Integer, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from vidstream.database.base import Base


class VideoStreamingPlaylist(Base):
    """
    Video streaming playlists table - the master playlist and its variant files.
    """
    __tablename__ = "video_streaming_playlists"

    # Columns
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    type: Mapped[int] = mapped_column(Integer, nullable=False)
    playlist_url: Mapped[str] = mapped_column(Text, nullable=False)
    segments_sha256_url: Mapped[str] = mapped_column(Text, nullable=False)
    playlist_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now()
    )

    # Relationships
    video: Mapped["Video"] = relationship("Video", back_populates="streaming_playlists")
    files: Mapped[list["VideoFile"]] = relationship(
        "VideoFile",
        back_populates="playlist",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="VideoFile.resolution",
        lazy="selectin"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('video_id', 'type', name='uq_streaming_playlist_video_type'),
    )
