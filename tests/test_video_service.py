import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from tests.conftest import FakeEncoder, FakeSourceProvider
from vidstream.core.exceptions import (
    SourceUnavailable,
    StorageTeardownFailure,
    ValidationException,
    VideoNotFoundException,
)
from vidstream.models.domain import JobStatus
from vidstream.services.playlist_recorder import DatabasePlaylistRecorder
from vidstream.services.transcoding.scheduler import TranscodeScheduler
from vidstream.services.video_delete_service import VideoDeleteService
from vidstream.services.video_service import VideoService


@pytest.fixture
def source_provider():
    return FakeSourceProvider()


@pytest.fixture
def upload(tmp_path):
    """An uploaded video file."""
    path = tmp_path / "uploads" / "holiday.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"fake-mp4" * 64)
    return path


@pytest.fixture
def audio_upload(tmp_path, source_provider):
    path = tmp_path / "uploads" / "podcast.mp3"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"fake-mp3" * 64)
    source_provider.register(
        path, width=0, height=0, fps=0.0, has_video=False, video_codec="", audio_codec="mp3"
    )
    return path


@pytest.fixture
def service(scheduler, session_factory, source_provider, settings):
    return VideoService(scheduler, session_factory, source_provider=source_provider, settings=settings)


@pytest.fixture
def delete_service(scheduler, publisher, session_factory, settings):
    return VideoDeleteService(scheduler, publisher, session_factory, settings)


def _public_snapshot(settings, video_uuid):
    """Bytes of every published file of a video."""
    snapshot = {}
    for path in sorted(settings.get_hls_dir(video_uuid).iterdir()):
        snapshot[path.name] = path.read_bytes()
    for path in sorted(settings.torrents_dir.glob(f"{video_uuid}-*")):
        snapshot[path.name] = path.read_bytes()
    return snapshot


class TestVideoService:
    """Tests for video creation, rename and re-transcoding."""

    @pytest.mark.asyncio
    async def test_create_video_publishes_hls(self, service, settings, upload):
        video, handle = await service.create_video("Holiday", upload)

        assert handle.job.resolutions == (240, 360, 480, 720)
        assert (settings.videos_dir / f"{video.uuid}.mp4").exists()
        job = await handle.wait(timeout=10)
        assert job.status == JobStatus.PUBLISHED

        detail = await service.get_video(video.uuid)
        playlist = detail.get_playlist()
        assert detail.name == "Holiday"
        assert detail.height == 720
        assert playlist.resolutions == (240, 360, 480, 720)
        assert playlist.playlist_url == (
            f"http://localhost:9000/static/streaming-playlists/hls/{video.uuid}/master.m3u8"
        )

    @pytest.mark.asyncio
    async def test_audio_only_upload(self, service, settings, audio_upload):
        """Test that an audio file gets the audio variant plus its companion resolutions."""
        video, handle = await service.create_video("Podcast", audio_upload)
        job = await handle.wait(timeout=10)

        assert video.is_audio_only
        assert job.status == JobStatus.PUBLISHED
        assert job.playlist.resolutions == (0, 240, 360)

        public_dir = settings.get_hls_dir(video.uuid)
        master = (public_dir / "master.m3u8").read_text().splitlines()
        assert [line for line in master if not line.startswith("#")] == ["0.m3u8", "240.m3u8", "360.m3u8"]
        assert "RESOLUTION" not in master[2]
        hashes = json.loads((public_dir / "segments-sha256.json").read_text())
        assert f"{video.uuid}-0-fragmented.mp4" in hashes
        assert settings.get_torrent_path(video.uuid, 0).exists()

    @pytest.mark.asyncio
    async def test_audio_uploads_can_be_disabled(self, scheduler, session_factory, source_provider, settings, audio_upload):
        strict = settings.model_copy(update={"allow_audio_files": False})
        service = VideoService(scheduler, session_factory, source_provider=source_provider, settings=strict)

        with pytest.raises(ValidationException):
            await service.create_video("Podcast", audio_upload)
        assert await service.list_videos() == []

    @pytest.mark.asyncio
    async def test_missing_upload(self, service, tmp_path):
        with pytest.raises(SourceUnavailable):
            await service.create_video("Nothing", tmp_path / "missing.mp4")

    @pytest.mark.asyncio
    async def test_explicit_resolutions(self, service, upload):
        video, handle = await service.create_video("Holiday", upload, resolutions=[360, 240, 360])
        job = await handle.wait(timeout=10)
        assert job.playlist.resolutions == (240, 360)

    @pytest.mark.asyncio
    async def test_transcoding_disabled(self, scheduler, session_factory, source_provider, settings, upload):
        idle = settings.model_copy(update={"transcoding_enabled": False})
        service = VideoService(scheduler, session_factory, source_provider=source_provider, settings=idle)

        video, handle = await service.create_video("Holiday", upload)

        assert handle is None
        assert (await service.get_video(video.uuid)).streaming_playlists == ()

    @pytest.mark.asyncio
    async def test_rename_leaves_published_files_untouched(self, service, scheduler, settings, upload):
        """Test that renaming changes the name and nothing that peers verify."""
        video, handle = await service.create_video("Holiday", upload)
        await handle.wait(timeout=10)
        before = _public_snapshot(settings, video.uuid)
        hashes_before = [f.info_hash for f in (await service.get_video(video.uuid)).get_playlist().files]

        renamed = await service.update_video(video.uuid, name="Summer holiday")

        assert renamed.name == "Summer holiday"
        assert _public_snapshot(settings, video.uuid) == before
        assert [f.info_hash for f in renamed.get_playlist().files] == hashes_before
        assert len(scheduler.get_jobs_for_video(video.uuid)) == 1

    @pytest.mark.asyncio
    async def test_rename_unknown_video(self, service):
        with pytest.raises(VideoNotFoundException):
            await service.update_video("missing", name="x")

    @pytest.mark.asyncio
    async def test_list_videos(self, service, upload):
        first, _ = await service.create_video("First", upload, resolutions=[240])
        second, _ = await service.create_video("Second", upload, resolutions=[240])

        videos = await service.list_videos()

        assert [v.uuid for v in videos] == [second.uuid, first.uuid]
        assert len(await service.list_videos(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_retranscode(self, service, settings, upload):
        video, handle = await service.create_video("Holiday", upload)
        await handle.wait(timeout=10)

        job = await (await service.retranscode(video.uuid, resolutions=[480])).wait(timeout=10)

        assert job.status == JobStatus.PUBLISHED
        assert (await service.get_video(video.uuid)).get_playlist().resolutions == (480,)
        assert not settings.get_torrent_path(video.uuid, 720).exists()

    @pytest.mark.asyncio
    async def test_retranscode_keep_existing(self, service, upload):
        video, handle = await service.create_video("Holiday", upload, resolutions=[240, 720])
        await handle.wait(timeout=10)

        handle = await service.retranscode(video.uuid, resolutions=[480], keep_existing=True)
        await handle.wait(timeout=10)

        assert (await service.get_video(video.uuid)).get_playlist().resolutions == (240, 480, 720)

    @pytest.mark.asyncio
    async def test_retranscode_unknown_video(self, service):
        with pytest.raises(VideoNotFoundException):
            await service.retranscode("missing")

    @pytest.mark.asyncio
    async def test_retranscode_without_source(self, service, settings, upload):
        video, handle = await service.create_video("Holiday", upload)
        await handle.wait(timeout=10)
        (settings.videos_dir / f"{video.uuid}.mp4").unlink()

        with pytest.raises(SourceUnavailable):
            await service.retranscode(video.uuid)


class TestVideoDeleteService:
    """Tests for garbage-free video deletion."""

    @pytest.mark.asyncio
    async def test_delete_leaves_nothing_behind(self, service, delete_service, publisher, workspace, settings, upload):
        video, handle = await service.create_video("Holiday", upload)
        await handle.wait(timeout=10)

        result = await delete_service.delete_video(video.uuid)

        assert result.status == "completed"
        assert result.deleted["database"] is True
        assert result.deleted["source_file"] is True
        assert publisher.residual_paths(video.uuid) == []
        assert not (settings.videos_dir / f"{video.uuid}.mp4").exists()
        assert workspace.is_empty()
        with pytest.raises(VideoNotFoundException):
            await service.get_video(video.uuid)

    @pytest.mark.asyncio
    async def test_delete_while_transcoding(
        self, settings, publisher, workspace, session_factory, source_provider, upload
    ):
        """Test that deleting a video cancels its job and removes partial output."""
        scheduler = TranscodeScheduler(
            encoder=FakeEncoder(gate=asyncio.Event()),
            publisher=publisher,
            workspace=workspace,
            recorder=DatabasePlaylistRecorder(session_factory),
            settings=settings,
        )
        service = VideoService(scheduler, session_factory, source_provider=source_provider, settings=settings)
        delete_service = VideoDeleteService(scheduler, publisher, session_factory, settings)
        video, handle = await service.create_video("Holiday", upload)
        await asyncio.sleep(0.05)

        result = await delete_service.delete_video(video.uuid)

        assert result.status == "completed"
        assert result.deleted["jobs_cancelled"] == 1
        assert handle.status == JobStatus.CANCELLED
        assert publisher.residual_paths(video.uuid) == []
        assert workspace.is_empty()
        assert scheduler.get_jobs_for_video(video.uuid) == []
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_delete_unknown_video(self, delete_service):
        with pytest.raises(VideoNotFoundException):
            await delete_service.delete_video("missing")

    @pytest.mark.asyncio
    async def test_failed_teardown_keeps_record(self, service, delete_service, publisher, upload):
        """Test that a video whose files could not be removed stays in the database."""
        video, handle = await service.create_video("Holiday", upload)
        await handle.wait(timeout=10)
        failure = StorageTeardownFailure(video.uuid, ["/storage/left-behind"])

        with patch.object(publisher, "retract", new=AsyncMock(side_effect=failure)):
            result = await delete_service.delete_video(video.uuid)

        assert result.status == "failed"
        assert "Remaining: /storage/left-behind" in result.errors
        assert (await service.get_video(video.uuid)).uuid == video.uuid

        retry = await delete_service.delete_video(video.uuid)
        assert retry.status == "completed"
