"""
Temp workspace -- management of transient transcoding files.

Every transcoding job writes its intermediate output under one structured
temp tree:

    tmp/
    └── {video_uuid}/
        └── {job_id}/
            ├── {resolution}/          one per sub-job (exclusive owner)
            │   └── {uuid}-{res}-fragmented.mp4
            └── publish/               staged tree handed to the publisher
                ├── hls/
                └── torrents/

A job removes its own directory when it finishes, whatever the outcome, so
the temp tree is empty whenever no job is running. cleanup_video() removes
everything left for a video (deletion, re-submission after a crash) and
cleanup_old_files() is the periodic safety net.
"""
import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

PUBLISH_DIR = "publish"


def human_size(size_bytes: float) -> str:
    """Format byte count as a human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


def _tree_stats(path: Path) -> dict:
    files = 0
    size = 0
    for file_path in path.rglob("*"):
        if file_path.is_file():
            try:
                size += file_path.stat().st_size
                files += 1
            except FileNotFoundError:
                continue
    return {"files": files, "bytes": size}


def _remove_empty_dirs(base: Path) -> int:
    """Remove empty directories below base, deepest first."""
    removed = 0
    for dir_path in sorted(base.rglob("*"), key=lambda p: len(p.parts), reverse=True):
        if not dir_path.is_dir() or dir_path == base:
            continue
        try:
            dir_path.rmdir()  # Only succeeds if empty
            removed += 1
        except OSError:
            pass  # Not empty: still owned by a running job
    return removed


class TempWorkspace:
    """Per-job and per-resolution scratch directories under settings.tmp_dir."""

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def video_dir(self, video_uuid: str) -> Path:
        return self.base_dir / video_uuid

    def job_dir(self, video_uuid: str, job_id: str) -> Path:
        return self.video_dir(video_uuid) / job_id

    def resolution_dir(self, video_uuid: str, job_id: str, resolution: int) -> Path:
        """Return (and create) the directory owned by one sub-job."""
        target = self.job_dir(video_uuid, job_id) / str(resolution)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def staging_dir(self, video_uuid: str, job_id: str) -> Path:
        """Return (and create) the directory where a job assembles its publishable tree."""
        target = self.job_dir(video_uuid, job_id) / PUBLISH_DIR
        target.mkdir(parents=True, exist_ok=True)
        return target

    async def cleanup_job(self, video_uuid: str, job_id: str) -> dict:
        """Delete one job's temp directory; the video directory goes too once empty."""
        job_dir = self.job_dir(video_uuid, job_id)
        result = {"files_deleted": 0, "bytes_freed": 0, "dirs_removed": 0}
        if job_dir.exists():
            stats = _tree_stats(job_dir)
            await asyncio.to_thread(shutil.rmtree, job_dir)
            result["files_deleted"] = stats["files"]
            result["bytes_freed"] = stats["bytes"]
            result["dirs_removed"] = 1

        video_dir = self.video_dir(video_uuid)
        try:
            video_dir.rmdir()
            result["dirs_removed"] += 1
        except OSError:
            pass  # Missing, or another job of this video is still running

        logger.debug(f"Temp cleanup for job {job_id} of {video_uuid}: {result}")
        return result

    async def cleanup_video(self, video_uuid: str, keep_jobs: Optional[Iterable[str]] = None) -> dict:
        """
        Delete all temp files of a video except the directories of `keep_jobs`.

        Returns:
            Dict with keys: files_deleted, bytes_freed, dirs_removed
        """
        keep = set(keep_jobs or ())
        result = {"files_deleted": 0, "bytes_freed": 0, "dirs_removed": 0}
        video_dir = self.video_dir(video_uuid)
        if not video_dir.exists():
            return result

        for child in list(video_dir.iterdir()):
            if child.name in keep:
                continue
            if child.is_dir():
                stats = _tree_stats(child)
                await asyncio.to_thread(shutil.rmtree, child)
                result["files_deleted"] += stats["files"]
                result["bytes_freed"] += stats["bytes"]
            else:
                result["files_deleted"] += 1
                result["bytes_freed"] += child.stat().st_size
                child.unlink()
            result["dirs_removed"] += 1

        if not keep:
            try:
                video_dir.rmdir()
                result["dirs_removed"] += 1
            except OSError:
                pass

        if result["files_deleted"] or result["dirs_removed"]:
            logger.info(
                f"Temp cleanup for video '{video_uuid}': "
                f"deleted {result['files_deleted']} files, freed {human_size(result['bytes_freed'])}"
            )
        return result

    async def cleanup_old_files(self, max_age_hours: float = 24.0) -> dict:
        """
        Delete all temp files older than max_age_hours, then prune empty directories.

        Returns:
            Dict with keys: files_deleted, bytes_freed, dirs_removed, duration_ms
        """
        start = time.monotonic()
        files_deleted = 0
        bytes_freed = 0

        if not self.base_dir.exists():
            return {"files_deleted": 0, "bytes_freed": 0, "dirs_removed": 0, "duration_ms": 0}

        cutoff = time.time() - (max_age_hours * 3600)

        for file_path in self.base_dir.rglob("*"):
            if not file_path.is_file():
                continue
            try:
                stat = file_path.stat()
                if stat.st_mtime < cutoff:
                    file_path.unlink()
                    files_deleted += 1
                    bytes_freed += stat.st_size
            except FileNotFoundError:
                pass  # Removed by its job in the meantime

        dirs_removed = _remove_empty_dirs(self.base_dir)
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"Temp cleanup complete: deleted {files_deleted} files, "
            f"freed {human_size(bytes_freed)}, removed {dirs_removed} dirs in {duration_ms}ms"
        )
        return {
            "files_deleted": files_deleted,
            "bytes_freed": bytes_freed,
            "dirs_removed": dirs_removed,
            "duration_ms": duration_ms,
        }

    def list_entries(self) -> List[Path]:
        """Everything currently below the temp base."""
        if not self.base_dir.exists():
            return []
        return sorted(self.base_dir.rglob("*"))

    def is_empty(self) -> bool:
        return not self.list_entries()

    async def get_stats(self) -> dict:
        """Disk usage of the temp tree, grouped by video."""
        by_video = {}
        if self.base_dir.exists():
            for video_dir in sorted(p for p in self.base_dir.iterdir() if p.is_dir()):
                stats = _tree_stats(video_dir)
                by_video[video_dir.name] = {
                    "jobs": sum(1 for p in video_dir.iterdir() if p.is_dir()),
                    "files": stats["files"],
                    "size_bytes": stats["bytes"],
                    "size_human": human_size(stats["bytes"]),
                }
        total = sum(v["size_bytes"] for v in by_video.values())
        return {
            "total_files": sum(v["files"] for v in by_video.values()),
            "total_size_bytes": total,
            "total_size_human": human_size(total),
            "by_video": by_video,
        }
