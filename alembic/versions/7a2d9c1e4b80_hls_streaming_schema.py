"""hls_streaming_schema

Revision ID: 7a2d9c1e4b80
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7a2d9c1e4b80'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    # Step 1 - Create videos table
    op.create_table(
        'videos',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('source_path', sa.Text(), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('fps', sa.Float(), nullable=True),
        sa.Column('is_audio_only', sa.Boolean(), nullable=False),
        sa.Column('video_codec', sa.String(length=50), nullable=True),
        sa.Column('audio_codec', sa.String(length=50), nullable=True),
        sa.Column('file_size_bytes', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_videos_uuid'), 'videos', ['uuid'], unique=True)
    op.create_index(op.f('ix_videos_created_at'), 'videos', ['created_at'], unique=False)

    # Step 2 - Create video_streaming_playlists (one per video and type, ON DELETE CASCADE)
    op.create_table(
        'video_streaming_playlists',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('video_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Integer(), nullable=False),
        sa.Column('playlist_url', sa.Text(), nullable=False),
        sa.Column('segments_sha256_url', sa.Text(), nullable=False),
        sa.Column('playlist_hash', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['video_id'], ['videos.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('video_id', 'type', name='uq_streaming_playlist_video_type'),
    )
    op.create_index(
        op.f('ix_video_streaming_playlists_video_id'), 'video_streaming_playlists', ['video_id'], unique=False
    )

    # Step 3 - Create video_files (one fragmented MP4 per resolution)
    op.create_table(
        'video_files',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('playlist_id', sa.Integer(), nullable=False),
        sa.Column('resolution', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('size', sa.BigInteger(), nullable=False),
        sa.Column('duration', sa.Float(), nullable=False),
        sa.Column('width', sa.Integer(), nullable=False),
        sa.Column('height', sa.Integer(), nullable=False),
        sa.Column('fps', sa.Float(), nullable=False),
        sa.Column('codecs', sa.String(length=100), nullable=True),
        sa.Column('init_offset', sa.BigInteger(), nullable=False),
        sa.Column('init_length', sa.BigInteger(), nullable=False),
        sa.Column('info_hash', sa.String(length=40), nullable=False),
        sa.Column('magnet_uri', sa.Text(), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=False),
        sa.Column('torrent_url', sa.Text(), nullable=False),
        sa.Column('manifest_sha256', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['playlist_id'], ['video_streaming_playlists.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('playlist_id', 'resolution', name='uq_video_file_playlist_resolution'),
        sa.CheckConstraint('resolution >= 0', name='check_video_file_resolution'),
        sa.CheckConstraint('size > 0', name='check_video_file_size'),
    )
    op.create_index(op.f('ix_video_files_playlist_id'), 'video_files', ['playlist_id'], unique=False)
    op.create_index(op.f('ix_video_files_info_hash'), 'video_files', ['info_hash'], unique=False)

    # Step 4 - Create video_segments (byte range and sha256 per segment)
    op.create_table(
        'video_segments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('file_id', sa.Integer(), nullable=False),
        sa.Column('segment_index', sa.Integer(), nullable=False),
        sa.Column('duration', sa.Float(), nullable=False),
        sa.Column('byte_offset', sa.BigInteger(), nullable=False),
        sa.Column('byte_length', sa.BigInteger(), nullable=False),
        sa.Column('sha256', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['file_id'], ['video_files.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('file_id', 'segment_index', name='uq_video_segment_file_index'),
        sa.CheckConstraint('byte_length > 0', name='check_video_segment_length'),
    )
    op.create_index(op.f('ix_video_segments_file_id'), 'video_segments', ['file_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema - reverses upgrade() in reverse order."""
    op.drop_index(op.f('ix_video_segments_file_id'), table_name='video_segments')
    op.drop_table('video_segments')
    op.drop_index(op.f('ix_video_files_info_hash'), table_name='video_files')
    op.drop_index(op.f('ix_video_files_playlist_id'), table_name='video_files')
    op.drop_table('video_files')
    op.drop_index(op.f('ix_video_streaming_playlists_video_id'), table_name='video_streaming_playlists')
    op.drop_table('video_streaming_playlists')
    op.drop_index(op.f('ix_videos_created_at'), table_name='videos')
    op.drop_index(op.f('ix_videos_uuid'), table_name='videos')
    op.drop_table('videos')
