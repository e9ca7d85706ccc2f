"""
Storage publisher / reconciler.

Publication moves a fully staged HLS tree into the public location:

    {streaming_playlists_dir}/hls/{uuid}/          <- directory swap
    {torrents_dir}/{uuid}-{res}-hls.torrent        <- per-file atomic replace

The staged tree is first moved next to the public directory (same filesystem)
as `.{uuid}.staging-{token}`, then swapped in with two renames, so a reader
either sees the complete previous tree or the complete new one. The previous
tree and torrents are kept in `.{uuid}.backup-{token}` until the optional
commit callback (recording the playlist) succeeded; if it fails the previous
tree is put back and the new one returns to its staging directory.

Only one publish or retract runs at a time per (video, playlist type); the
slot is an asyncio.Lock whose waiters are served in arrival order, so the
most recent request is the last one applied. Waiting longer than
`publish_lock_timeout_seconds` raises PublicationConflict.
"""
import asyncio
import logging
import os
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import PublicationConflict, StorageTeardownFailure
from vidstream.core.logging import log_event
from vidstream.models.domain import StreamingPlaylistType
from vidstream.services.storage.workspace import TempWorkspace
from vidstream.utils.retry import retry_with_backoff
from vidstream.utils.url import MASTER_PLAYLIST_NAME

logger = logging.getLogger(__name__)

Commit = Callable[[], Awaitable[None]]


@dataclass
class StagedTree:
    """A complete, not yet public HLS tree produced by one job."""
    playlist_dir: Path
    torrents: Dict[int, Path] = field(default_factory=dict)


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def _fsync_file(path: Path) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _fsync_dir(path: Path) -> None:
    try:
        _fsync_file(path)
    except OSError:
        pass  # Directory fsync is not supported everywhere


def fsync_playlist_tree(directory: Path) -> None:
    """Flush every file of a playlist tree, the master playlist last."""
    master = directory / MASTER_PLAYLIST_NAME
    for path in sorted(directory.iterdir()):
        if path.is_file() and path != master:
            _fsync_file(path)
    if master.exists():
        _fsync_file(master)
    _fsync_dir(directory)


class StoragePublisher:
    """Installs staged trees into public storage and tears them down again."""

    def __init__(self, settings: Optional[Settings] = None, workspace: Optional[TempWorkspace] = None):
        self.settings = settings or get_settings()
        self.workspace = workspace
        self._slots: Dict[Tuple[str, StreamingPlaylistType], _Slot] = {}

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _slot(self, video_uuid: str, playlist_type: StreamingPlaylistType):
        key = (video_uuid, playlist_type)
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        # The entry is dropped only once nobody holds or waits for its lock
        slot.users += 1
        try:
            timeout = self.settings.publish_lock_timeout_seconds
            started = time.monotonic()
            try:
                await asyncio.wait_for(slot.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                raise PublicationConflict(video_uuid, playlist_type.name, time.monotonic() - started)
            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def is_busy(self, video_uuid: str, playlist_type: StreamingPlaylistType = StreamingPlaylistType.HLS) -> bool:
        slot = self._slots.get((video_uuid, playlist_type))
        return bool(slot and slot.lock.locked())

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(
        self,
        video_uuid: str,
        playlist_type: StreamingPlaylistType,
        staged: StagedTree,
        commit: Optional[Commit] = None,
    ) -> Path:
        """
        Make a staged tree public.

        `commit` runs while the new tree is in place and the slot is held; if
        it raises, the previous tree and torrents are restored and the staged
        tree is moved back, so the call can be retried. Once the swap has
        started it runs to completion (commit or rollback included) even if
        the caller is cancelled.

        Returns:
            The public playlist directory

        Raises:
            PublicationConflict: The slot stayed busy past the lock timeout
        """
        if playlist_type != StreamingPlaylistType.HLS:
            raise ValueError(f"Cannot publish playlist type {playlist_type.name}")

        async with self._slot(video_uuid, playlist_type):
            swap = asyncio.ensure_future(self._swap(video_uuid, staged, commit))
            try:
                public_dir = await asyncio.shield(swap)
            except asyncio.CancelledError:
                # Keep the slot until the swap settled on the old or the new tree
                await asyncio.gather(swap, return_exceptions=True)
                raise

        log_event(
            level="INFO",
            logger=__name__,
            function="publish",
            operation="hls_publish",
            event="playlist_published",
            message=f"Published HLS playlist for {video_uuid}",
            context={
                "video_uuid": video_uuid,
                "public_dir": str(public_dir),
                "resolutions": sorted(staged.torrents),
            }
        )
        return public_dir

    async def _swap(self, video_uuid: str, staged: StagedTree, commit: Optional[Commit]) -> Path:
        backup = await asyncio.to_thread(self._install, video_uuid, staged)
        try:
            if commit is not None:
                await commit()
        except Exception as e:
            logger.warning(f"Commit of {video_uuid} failed, restoring the previous tree: {e}")
            await asyncio.to_thread(self._restore, video_uuid, staged, backup, True)
            raise
        await asyncio.to_thread(shutil.rmtree, backup, True)
        return self.settings.get_hls_dir(video_uuid)

    def _install(self, video_uuid: str, staged: StagedTree) -> Path:
        """Swap the staged tree in; returns the backup of what it replaced."""
        hls_root = self.settings.hls_dir
        torrents_dir = self.settings.torrents_dir
        hls_root.mkdir(parents=True, exist_ok=True)
        torrents_dir.mkdir(parents=True, exist_ok=True)

        token = uuid.uuid4().hex[:8]
        public_dir = self.settings.get_hls_dir(video_uuid)
        staging = hls_root / f".{video_uuid}.staging-{token}"
        backup = hls_root / f".{video_uuid}.backup-{token}"
        pending_torrents: List[Path] = []
        swapped = False

        try:
            shutil.move(str(staged.playlist_dir), str(staging))
            fsync_playlist_tree(staging)

            (backup / "torrents").mkdir(parents=True)
            for current in torrents_dir.glob(f"{video_uuid}-*-hls.torrent"):
                shutil.copy2(current, backup / "torrents" / current.name)

            if public_dir.exists():
                os.rename(public_dir, backup / "playlist")
            os.rename(staging, public_dir)
            swapped = True
            _fsync_dir(hls_root)

            installed = set()
            for resolution, source in sorted(staged.torrents.items()):
                final = self.settings.get_torrent_path(video_uuid, resolution)
                tmp = torrents_dir / f".{final.name}.{token}"
                pending_torrents.append(tmp)
                shutil.copyfile(source, tmp)
                _fsync_file(tmp)
                os.replace(tmp, final)
                installed.add(final.name)

            for stale in torrents_dir.glob(f"{video_uuid}-*-hls.torrent"):
                if stale.name not in installed:
                    stale.unlink()
        except Exception:
            for tmp in pending_torrents:
                tmp.unlink(missing_ok=True)
            if staging.exists():
                shutil.move(str(staging), str(staged.playlist_dir))
            self._restore(video_uuid, staged, backup, swapped)
            raise

        return backup

    def _restore(self, video_uuid: str, staged: StagedTree, backup: Path, swapped: bool) -> None:
        """Put the tree and torrents saved in backup back in place."""
        public_dir = self.settings.get_hls_dir(video_uuid)
        torrents_dir = self.settings.torrents_dir

        if swapped and public_dir.exists():
            shutil.move(str(public_dir), str(staged.playlist_dir))
        previous = backup / "playlist"
        if previous.exists():
            os.rename(previous, public_dir)
        _fsync_dir(self.settings.hls_dir)

        saved = backup / "torrents"
        if saved.exists():
            for current in torrents_dir.glob(f"{video_uuid}-*-hls.torrent"):
                current.unlink()
            for torrent in saved.iterdir():
                os.replace(torrent, torrents_dir / torrent.name)
        shutil.rmtree(backup, ignore_errors=True)

    # ------------------------------------------------------------------
    # Retract
    # ------------------------------------------------------------------

    def residual_paths(self, video_uuid: str) -> List[str]:
        """Every path in public or temp storage still derived from this video."""
        remaining: List[Path] = []
        hls_root = self.settings.hls_dir
        torrents_dir = self.settings.torrents_dir

        public_dir = self.settings.get_hls_dir(video_uuid)
        if public_dir.exists():
            remaining.append(public_dir)
        if hls_root.exists():
            remaining.extend(hls_root.glob(f".{video_uuid}.*"))
        if torrents_dir.exists():
            remaining.extend(torrents_dir.glob(f"{video_uuid}-*-hls.torrent"))
            remaining.extend(torrents_dir.glob(f".{video_uuid}-*"))
        if self.workspace is not None and self.workspace.video_dir(video_uuid).exists():
            remaining.append(self.workspace.video_dir(video_uuid))
        return sorted(str(p) for p in remaining)

    def _remove_artifacts(self, video_uuid: str) -> dict:
        result = {"playlist_dirs": 0, "torrents": 0}
        hls_root = self.settings.hls_dir
        torrents_dir = self.settings.torrents_dir

        dirs = [self.settings.get_hls_dir(video_uuid)]
        if hls_root.exists():
            dirs.extend(hls_root.glob(f".{video_uuid}.*"))
        for directory in dirs:
            if directory.exists():
                shutil.rmtree(directory)
                result["playlist_dirs"] += 1

        if torrents_dir.exists():
            for pattern in (f"{video_uuid}-*-hls.torrent", f".{video_uuid}-*"):
                for torrent in torrents_dir.glob(pattern):
                    torrent.unlink(missing_ok=True)
                    result["torrents"] += 1
        return result

    async def _retract_once(self, video_uuid: str) -> dict:
        try:
            result = await asyncio.to_thread(self._remove_artifacts, video_uuid)
            if self.workspace is not None:
                result["temp"] = await self.workspace.cleanup_video(video_uuid)
        except OSError as e:
            raise StorageTeardownFailure(video_uuid, self.residual_paths(video_uuid), str(e)) from e

        remaining = self.residual_paths(video_uuid)
        if remaining:
            raise StorageTeardownFailure(video_uuid, remaining)
        return result

    async def retract(
        self,
        video_uuid: str,
        playlist_type: Optional[StreamingPlaylistType] = None,
    ) -> dict:
        """
        Remove every stored artifact of a video. Safe to call repeatedly.

        Raises:
            StorageTeardownFailure: Artifacts still present after all retries
        """
        playlist_type = playlist_type or StreamingPlaylistType.HLS
        async with self._slot(video_uuid, playlist_type):
            result = await retry_with_backoff(
                self._retract_once,
                self.settings.teardown_max_retries,
                self.settings.retry_base_delay,
                f"retract {video_uuid}",
                video_uuid,
            )

        logger.info(f"Retracted stored artifacts of {video_uuid}: {result}")
        return result

    async def discard_staging(self, video_uuid: str) -> int:
        """Remove half-installed staging directories left by an interrupted publish."""
        async with self._slot(video_uuid, StreamingPlaylistType.HLS):
            hls_root = self.settings.hls_dir
            leftovers = list(hls_root.glob(f".{video_uuid}.*")) if hls_root.exists() else []
            for path in leftovers:
                await asyncio.to_thread(shutil.rmtree, path, True)
        if leftovers:
            logger.info(f"Discarded {len(leftovers)} staging leftover(s) of {video_uuid}")
        return len(leftovers)

    def list_public_videos(self) -> List[str]:
        """UUIDs that currently own a public playlist directory or a torrent."""
        owners = set()
        if self.settings.hls_dir.exists():
            owners.update(
                p.name for p in self.settings.hls_dir.iterdir()
                if p.is_dir() and not p.name.startswith(".")
            )
        if self.settings.torrents_dir.exists():
            for torrent in self.settings.torrents_dir.glob("*-hls.torrent"):
                # {uuid}-{res}-hls.torrent
                owners.add(torrent.name.rsplit("-", 2)[0])
        return sorted(owners)
