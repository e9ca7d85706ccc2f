import asyncio
import time
from unittest.mock import AsyncMock

import pytest

from vidstream.core.exceptions import PublicationConflict
from vidstream.models.domain import StreamingPlaylistType
from vidstream.services.storage.publisher import StagedTree

UUID = "3f1c2d4e-0000-4000-8000-000000000001"
HLS = StreamingPlaylistType.HLS


def _stage(base, resolutions, marker="v1"):
    """Stage a small HLS tree and its torrents under base."""
    playlist_dir = base / "hls"
    torrents_dir = base / "torrents"
    playlist_dir.mkdir(parents=True)
    torrents_dir.mkdir(parents=True)
    torrents = {}
    for resolution in resolutions:
        (playlist_dir / f"{UUID}-{resolution}-fragmented.mp4").write_bytes(f"{marker}-{resolution}".encode())
        (playlist_dir / f"{resolution}.m3u8").write_text(f"#EXTM3U\n# {marker}\n")
        torrent = torrents_dir / f"{UUID}-{resolution}-hls.torrent"
        torrent.write_bytes(f"torrent-{marker}-{resolution}".encode())
        torrents[resolution] = torrent
    (playlist_dir / "segments-sha256.json").write_text("{}\n")
    (playlist_dir / "master.m3u8").write_text(f"#EXTM3U\n# {marker}\n")
    return StagedTree(playlist_dir=playlist_dir, torrents=torrents)


class TestStoragePublisher:
    """Tests for atomic publication and teardown."""

    @pytest.mark.asyncio
    async def test_publish_installs_tree_and_torrents(self, publisher, settings, tmp_path):
        """Test that a staged tree becomes the public tree."""
        staged = _stage(tmp_path / "stage1", [240, 720])

        public_dir = await publisher.publish(UUID, HLS, staged)

        assert public_dir == settings.get_hls_dir(UUID)
        assert (public_dir / "master.m3u8").read_text() == "#EXTM3U\n# v1\n"
        assert (public_dir / f"{UUID}-720-fragmented.mp4").exists()
        assert settings.get_torrent_path(UUID, 240).read_bytes() == b"torrent-v1-240"
        assert not staged.playlist_dir.exists()
        assert not list(settings.hls_dir.glob(f".{UUID}.*"))

    @pytest.mark.asyncio
    async def test_republish_replaces_everything(self, publisher, settings, tmp_path):
        """Test that nothing of the previous tree survives a republish."""
        await publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240, 720]))
        await publisher.publish(UUID, HLS, _stage(tmp_path / "stage2", [360], marker="v2"))

        public_dir = settings.get_hls_dir(UUID)
        assert sorted(p.name for p in public_dir.iterdir()) == sorted([
            "360.m3u8", f"{UUID}-360-fragmented.mp4", "master.m3u8", "segments-sha256.json"
        ])
        assert (public_dir / "master.m3u8").read_text() == "#EXTM3U\n# v2\n"
        assert sorted(p.name for p in settings.torrents_dir.iterdir()) == [f"{UUID}-360-hls.torrent"]
        assert publisher.list_public_videos() == [UUID]

    @pytest.mark.asyncio
    async def test_busy_slot_raises_conflict(self, publisher, tmp_path):
        """Test that waiting past the lock timeout raises PublicationConflict."""
        staged = _stage(tmp_path / "stage1", [240])

        async with publisher._slot(UUID, HLS):
            assert publisher.is_busy(UUID)
            with pytest.raises(PublicationConflict):
                await publisher.publish(UUID, HLS, staged)

        assert not publisher.is_busy(UUID)

    @pytest.mark.asyncio
    async def test_waiting_publish_runs_after_current_one(self, publisher, settings, tmp_path):
        """Test that the most recent publish is the one left in place."""
        first = publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240]))
        second = publisher.publish(UUID, HLS, _stage(tmp_path / "stage2", [240], marker="v2"))

        await asyncio.gather(first, second)

        assert (settings.get_hls_dir(UUID) / "master.m3u8").read_text() == "#EXTM3U\n# v2\n"

    @pytest.mark.asyncio
    async def test_only_hls_can_be_published(self, publisher, tmp_path):
        with pytest.raises(ValueError):
            await publisher.publish(UUID, StreamingPlaylistType.NONE, _stage(tmp_path / "s", [240]))

    @pytest.mark.asyncio
    async def test_retract_removes_all_artifacts(self, publisher, workspace, settings, tmp_path):
        """Test that retract leaves no public, staging or temp path behind."""
        await publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240, 720]))
        (settings.hls_dir / f".{UUID}.staging-deadbeef").mkdir()
        (workspace.resolution_dir(UUID, "job_x", 240) / "partial.mp4").write_bytes(b"x")

        result = await publisher.retract(UUID)

        assert result["playlist_dirs"] == 2
        assert result["torrents"] == 2
        assert publisher.residual_paths(UUID) == []
        assert publisher.list_public_videos() == []

    @pytest.mark.asyncio
    async def test_retract_is_idempotent(self, publisher):
        first = await publisher.retract(UUID)
        second = await publisher.retract(UUID)
        assert first["playlist_dirs"] == second["playlist_dirs"] == 0

    @pytest.mark.asyncio
    async def test_retract_keeps_other_videos(self, publisher, settings, tmp_path):
        other = "aaaaaaaa-0000-4000-8000-000000000002"
        await publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240]))
        settings.get_hls_dir(other).mkdir(parents=True)
        settings.get_torrent_path(other, 240).write_bytes(b"t")

        await publisher.retract(UUID)

        assert publisher.list_public_videos() == [other]

    @pytest.mark.asyncio
    async def test_discard_staging(self, publisher, settings):
        settings.hls_dir.mkdir(parents=True)
        (settings.hls_dir / f".{UUID}.staging-abc").mkdir()
        (settings.hls_dir / f".{UUID}.old-abc").mkdir()

        assert await publisher.discard_staging(UUID) == 2
        assert publisher.residual_paths(UUID) == []

    @pytest.mark.asyncio
    async def test_retract_keeps_single_writer(self, publisher, settings, tmp_path, monkeypatch):
        """Test that publishes queued behind and after a retract never install at the same time."""
        active = []
        overlaps = []
        install = publisher._install
        remove = publisher._remove_artifacts

        def slow_remove(video_uuid):
            time.sleep(0.2)
            return remove(video_uuid)

        def tracked_install(video_uuid, staged):
            active.append(video_uuid)
            overlaps.append(len(active))
            try:
                time.sleep(0.1)
                return install(video_uuid, staged)
            finally:
                active.remove(video_uuid)

        monkeypatch.setattr(publisher, "_remove_artifacts", slow_remove)
        monkeypatch.setattr(publisher, "_install", tracked_install)

        retract = asyncio.create_task(publisher.retract(UUID))
        await asyncio.sleep(0.05)
        queued = asyncio.create_task(publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240])))
        await retract
        late = asyncio.create_task(publisher.publish(UUID, HLS, _stage(tmp_path / "stage2", [240], marker="v2")))
        await asyncio.gather(queued, late)

        assert overlaps == [1, 1]
        assert (settings.get_hls_dir(UUID) / "master.m3u8").read_text() == "#EXTM3U\n# v2\n"
        assert not publisher._slots

    @pytest.mark.asyncio
    async def test_failed_commit_restores_previous_tree(self, publisher, settings, tmp_path):
        """Test that a failing commit puts the previous tree and torrents back."""
        await publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240]))
        staged = _stage(tmp_path / "stage2", [240, 360], marker="v2")
        commit = AsyncMock(side_effect=RuntimeError("database unavailable"))

        with pytest.raises(RuntimeError):
            await publisher.publish(UUID, HLS, staged, commit=commit)

        public_dir = settings.get_hls_dir(UUID)
        assert (public_dir / "master.m3u8").read_text() == "#EXTM3U\n# v1\n"
        assert sorted(p.name for p in settings.torrents_dir.iterdir()) == [f"{UUID}-240-hls.torrent"]
        assert settings.get_torrent_path(UUID, 240).read_bytes() == b"torrent-v1-240"
        assert (staged.playlist_dir / "master.m3u8").read_text() == "#EXTM3U\n# v2\n"
        assert not list(settings.hls_dir.glob(f".{UUID}.*"))

        # The restored staged tree can be published again
        await publisher.publish(UUID, HLS, staged)
        assert (public_dir / "master.m3u8").read_text() == "#EXTM3U\n# v2\n"

    @pytest.mark.asyncio
    async def test_failed_first_commit_leaves_nothing_public(self, publisher, settings, tmp_path):
        staged = _stage(tmp_path / "stage1", [240])

        with pytest.raises(RuntimeError):
            await publisher.publish(UUID, HLS, staged, commit=AsyncMock(side_effect=RuntimeError("down")))

        assert not settings.get_hls_dir(UUID).exists()
        assert not list(settings.torrents_dir.iterdir())
        assert staged.playlist_dir.exists()

    @pytest.mark.asyncio
    async def test_cancelled_publish_completes_commit(self, publisher, settings, tmp_path):
        """Test that cancelling a publish mid-commit still leaves a committed tree."""
        entered = asyncio.Event()
        release = asyncio.Event()
        committed = []

        async def commit():
            entered.set()
            await release.wait()
            committed.append(True)

        task = asyncio.create_task(publisher.publish(UUID, HLS, _stage(tmp_path / "stage1", [240]), commit=commit))
        await entered.wait()
        task.cancel()
        await asyncio.sleep(0.05)
        assert publisher.is_busy(UUID)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert committed == [True]
        assert (settings.get_hls_dir(UUID) / "master.m3u8").exists()
        assert not publisher.is_busy(UUID)
        assert not list(settings.hls_dir.glob(f".{UUID}.*"))
