"""
Database models package.
All models must be imported here so Alembic can discover them via Base.metadata.
"""
from vidstream.database.models.video import Video
from vidstream.database.models.streaming_playlist import VideoStreamingPlaylist
from vidstream.database.models.video_file import VideoFile, VideoSegment

__all__ = [
    "Video",
    "VideoStreamingPlaylist",
    "VideoFile",
    "VideoSegment",
]
