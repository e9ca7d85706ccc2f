"""
Transcode job scheduler.

submit() registers a job and returns a JobHandle immediately; the work runs
in asyncio tasks:

    job task
    ├── sub-job task per resolution  (bounded by the encode semaphore,
    │     encode -> hash segments -> describe -> done)  per-sub-job timeout)
    └── when every sub-job succeeded:
          stage tree (variant playlists, segments-sha256.json, master last)
          -> publish (retried on PublicationConflict), recording the playlist
             rows before the previous tree is dropped

The first failing sub-job fails the whole job: its siblings are cancelled,
nothing is published and the job's temp directory is removed. Deleting a
video cancels its jobs through cancel_video().
"""
import asyncio
import logging
import os
import shutil
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import aiofiles
from redis.exceptions import RedisError

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import (
    EncodeFailure,
    ManifestValidationError,
    PublicationConflict,
    ValidationException,
)
from vidstream.core.logging import (
    log_event,
    log_operation_complete,
    log_operation_error,
    log_operation_start,
    set_request_id,
)
from vidstream.models.domain import (
    JobStatus,
    Segment,
    SourceMedia,
    StreamingPlaylist,
    StreamingPlaylistType,
    SubJobStatus,
    TranscodeOptions,
    VariantFile,
)
from vidstream.services import job_tracker
from vidstream.services.storage.publisher import StagedTree, StoragePublisher
from vidstream.services.storage.workspace import TempWorkspace
from vidstream.services.transcoding.descriptor import PeerDescriptorGenerator
from vidstream.services.transcoding.encoder import BaseEncoder, EncodeTarget
from vidstream.services.transcoding.hasher import hash_file_range, render_segments_sha256
from vidstream.services.transcoding.jobs import JobHandle, SubJob, TranscodeJob
from vidstream.services.transcoding.manifest import (
    ManifestBuilder,
    playlist_sha256,
    validate_segment_sequence,
)
from vidstream.services.transcoding.resolutions import normalize_requested
from vidstream.utils.retry import retry_with_backoff
from vidstream.utils.url import (
    MASTER_PLAYLIST_NAME,
    SEGMENTS_SHA256_NAME,
    fragmented_file_name,
    master_playlist_url,
    segments_sha256_url,
    torrent_file_name,
    torrent_url,
    variant_file_url,
    variant_playlist_name,
)

logger = logging.getLogger(__name__)


class PlaylistRecorder(ABC):
    """Persistence of published playlists (implemented on the database)."""

    @abstractmethod
    async def load(self, video_uuid: str) -> Optional[StreamingPlaylist]:
        """Currently recorded HLS playlist of a video, if any."""

    @abstractmethod
    async def save(self, playlist: StreamingPlaylist) -> None:
        """Replace the video's playlist of this type in one transaction."""


async def _write_synced(path: Path, content) -> None:
    mode = "wb" if isinstance(content, bytes) else "w"
    async with aiofiles.open(path, mode) as f:
        await f.write(content)
        await f.flush()
        os.fsync(f.fileno())


class TranscodeScheduler:
    """Runs transcoding jobs with a bounded number of concurrent encodes."""

    def __init__(
        self,
        encoder: BaseEncoder,
        publisher: StoragePublisher,
        workspace: TempWorkspace,
        recorder: Optional[PlaylistRecorder] = None,
        descriptors: Optional[PeerDescriptorGenerator] = None,
        manifests: Optional[ManifestBuilder] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.encoder = encoder
        self.publisher = publisher
        self.workspace = workspace
        self.recorder = recorder
        self.descriptors = descriptors or PeerDescriptorGenerator(self.settings)
        self.manifests = manifests or ManifestBuilder()

        self.max_concurrent_encodes = self.settings.max_concurrent_encodes
        self._semaphore = asyncio.Semaphore(self.max_concurrent_encodes)
        self._jobs: Dict[str, TranscodeJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

        logger.info(
            f"Initialized transcode scheduler: max_concurrent_encodes={self.max_concurrent_encodes}, "
            f"subjob_timeout={self.settings.subjob_timeout_seconds}s"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def default_options(self) -> TranscodeOptions:
        return TranscodeOptions(
            allow_upscale=self.settings.allow_upscale,
            segment_duration=self.settings.segment_duration,
        )

    def submit(
        self,
        video_uuid: str,
        source: SourceMedia,
        resolutions: Sequence[int],
        options: Optional[TranscodeOptions] = None,
    ) -> JobHandle:
        """
        Register a transcoding job and start it in the background.

        Raises:
            ValidationException: Empty or invalid resolution list
            RuntimeError: Scheduler already shut down
        """
        if self._closed:
            raise RuntimeError("Transcode scheduler is shut down")
        try:
            resolved = tuple(normalize_requested(resolutions))
        except ValueError as e:
            raise ValidationException(str(e)) from e

        job = TranscodeJob(
            job_id=f"job_{uuid.uuid4().hex[:12]}",
            video_uuid=video_uuid,
            resolutions=resolved,
            options=options or self.default_options(),
        )
        self._jobs[job.job_id] = job

        task = asyncio.create_task(self._run_job(job, source), name=f"transcode-{job.job_id}")
        self._tasks[job.job_id] = task
        self._idle.clear()
        task.add_done_callback(lambda t, job_id=job.job_id: self._on_task_done(job_id, t))

        log_event(
            level="INFO",
            logger=__name__,
            function="submit",
            operation="transcode_submit",
            event="job_submitted",
            message=f"Submitted transcoding job {job.job_id} for {video_uuid}",
            context={
                "job_id": job.job_id,
                "video_uuid": video_uuid,
                "resolutions": list(resolved),
                "source": str(source.path),
            }
        )
        return JobHandle(job, task)

    def get_job(self, job_id: str) -> Optional[TranscodeJob]:
        return self._jobs.get(job_id)

    def get_jobs_for_video(self, video_uuid: str) -> List[TranscodeJob]:
        jobs = [j for j in self._jobs.values() if j.video_uuid == video_uuid]
        return sorted(jobs, key=lambda j: j.created_at)

    def has_active_job(self, video_uuid: str) -> bool:
        return any(self._jobs[job_id].video_uuid == video_uuid for job_id in self._tasks)

    async def cancel_video(self, video_uuid: str) -> int:
        """
        Cancel every unfinished job of a video and wait until they stopped.

        Returns:
            Number of jobs cancelled
        """
        job_ids = [job_id for job_id in self._tasks if self._jobs[job_id].video_uuid == video_uuid]
        tasks = [self._tasks[job_id] for job_id in job_ids]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for job_id in job_ids:
            job = self._jobs[job_id]
            if not job.status.is_terminal:
                # Cancelled before the task got to run
                self._abort_subjobs(job, "cancelled")
                job.mark_cancelled()
                await self._mirror(job)

        if job_ids:
            logger.info(f"Cancelled {len(job_ids)} transcoding job(s) of {video_uuid}")
        return len(job_ids)

    def forget_video(self, video_uuid: str) -> None:
        """Drop finished job records of a deleted video."""
        for job_id in [j for j, job in self._jobs.items() if job.video_uuid == video_uuid]:
            if job_id not in self._tasks:
                del self._jobs[job_id]

    async def wait_drained(self, timeout: Optional[float] = None) -> bool:
        """Completion signal: True once no job is running."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def shutdown(self) -> None:
        """Cancel all running jobs; no new submissions are accepted."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Transcode scheduler shut down ({len(tasks)} job(s) cancelled)")

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if not self._tasks:
            self._idle.set()
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Job task {job_id} crashed: {task.exception()!r}")

    async def _mirror(self, job: TranscodeJob) -> None:
        if not self.settings.redis_enabled:
            return
        try:
            await job_tracker.save_job_state(job.to_dict())
        except (RedisError, OSError) as e:
            logger.warning(f"Could not mirror job {job.job_id} to Redis: {e}")

    @staticmethod
    def _abort_subjobs(job: TranscodeJob, reason: str) -> None:
        for subjob in job.unfinished_subjobs():
            subjob.mark_failed(RuntimeError(reason))

    async def _run_job(self, job: TranscodeJob, source: SourceMedia) -> None:
        set_request_id(job.job_id)
        operation = "transcode_job"
        started = time.monotonic()
        log_operation_start(
            logger=__name__,
            function="_run_job",
            operation=operation,
            message=f"Transcoding {job.video_uuid} into {len(job.resolutions)} variant(s)",
            context={"job_id": job.job_id, "resolutions": list(job.resolutions)},
        )

        job.mark_running()
        await self._mirror(job)
        subtasks: Dict[int, asyncio.Task] = {}

        try:
            await self._discard_leftovers(job)
            subtasks = {
                resolution: asyncio.create_task(
                    self._run_subjob(job, job.subjobs[resolution], source),
                    name=f"transcode-{job.job_id}-{resolution}",
                )
                for resolution in job.resolutions
            }
            await self._await_subjobs(job, subtasks)
            playlist = await self._publish(job)

            log_operation_complete(
                logger=__name__,
                function="_run_job",
                operation=operation,
                message=f"Published {job.video_uuid}",
                context={"job_id": job.job_id, "resolutions": list(playlist.resolutions)},
                duration=time.monotonic() - started,
            )
        except asyncio.CancelledError:
            await self._stop_subtasks(subtasks)
            if job.status == JobStatus.PUBLISHED:
                # The swap had started and was recorded before the cancellation took effect
                logger.info(f"Job {job.job_id} of {job.video_uuid} cancelled after publication")
                raise
            self._abort_subjobs(job, "cancelled")
            job.mark_cancelled()
            logger.info(f"Job {job.job_id} of {job.video_uuid} cancelled")
            raise
        except Exception as e:
            await self._stop_subtasks(subtasks)
            self._abort_subjobs(job, "aborted: another resolution failed")
            job.mark_failed(e)
            log_operation_error(
                logger=__name__,
                function="_run_job",
                operation=operation,
                error=e,
                context={"job_id": job.job_id, "video_uuid": job.video_uuid},
            )
        finally:
            await self.workspace.cleanup_job(job.video_uuid, job.job_id)
            await self._mirror(job)

    async def _discard_leftovers(self, job: TranscodeJob) -> None:
        """Remove what earlier, no longer running attempts left behind."""
        active = [job_id for job_id in self._tasks if self._jobs[job_id].video_uuid == job.video_uuid]
        await self.workspace.cleanup_video(job.video_uuid, keep_jobs=active)
        try:
            await self.publisher.discard_staging(job.video_uuid)
        except PublicationConflict as e:
            logger.warning(f"Skipped staging cleanup for {job.video_uuid}: {e.message}")

    @staticmethod
    async def _stop_subtasks(subtasks: Dict[int, asyncio.Task]) -> None:
        pending = [t for t in subtasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _await_subjobs(self, job: TranscodeJob, subtasks: Dict[int, asyncio.Task]) -> None:
        """Wait for all sub-jobs; on the first failure raise its error."""
        done, _ = await asyncio.wait(subtasks.values(), return_when=asyncio.FIRST_EXCEPTION)
        failed = [
            job.subjobs[resolution] for resolution, task in subtasks.items()
            if task in done and not task.cancelled() and task.exception() is not None
        ]
        if not failed:
            return

        first = min(failed, key=lambda s: s.completed_at or float("inf"))
        raise subtasks[first.resolution].exception()

    async def _run_subjob(self, job: TranscodeJob, subjob: SubJob, source: SourceMedia) -> None:
        timeout = self.settings.subjob_timeout_seconds
        async with self._semaphore:
            subjob.mark_running()
            await self._mirror(job)
            try:
                await asyncio.wait_for(self._produce_variant(job, subjob, source), timeout=timeout)
            except asyncio.TimeoutError:
                error = EncodeFailure(
                    subjob.resolution, f"timed out after {timeout}s", subjob.segments_produced
                )
                subjob.mark_failed(error)
                raise error
            except asyncio.CancelledError:
                if subjob.status == SubJobStatus.RUNNING:
                    subjob.mark_failed(RuntimeError("cancelled"))
                raise
            except EncodeFailure as e:
                subjob.mark_failed(e)
                raise
            except Exception as e:
                error = EncodeFailure(subjob.resolution, f"{type(e).__name__}: {e}", subjob.segments_produced)
                subjob.mark_failed(error)
                raise error from e

        logger.info(
            f"Sub-job {subjob.label} of {job.job_id} succeeded "
            f"({subjob.segments_produced} segments)"
        )

    async def _produce_variant(self, job: TranscodeJob, subjob: SubJob, source: SourceMedia) -> None:
        video_uuid = job.video_uuid
        resolution = subjob.resolution
        workdir = self.workspace.resolution_dir(video_uuid, job.job_id, resolution)
        target = EncodeTarget(resolution, workdir, fragmented_file_name(video_uuid, resolution))

        encoded = await self.encoder.encode(source, target, job.options)

        segments: List[Segment] = []
        async for encoded_segment in encoded:
            digest = await hash_file_range(
                encoded.file_path,
                encoded_segment.byte_offset,
                encoded_segment.byte_length,
                resolution,
                len(segments),
            )
            segments.append(Segment(
                index=encoded_segment.index,
                duration=encoded_segment.duration,
                byte_offset=encoded_segment.byte_offset,
                byte_length=encoded_segment.byte_length,
                sha256=digest,
            ))
            subjob.segments_produced = len(segments)

        try:
            validate_segment_sequence(segments)
        except ManifestValidationError as e:
            raise EncodeFailure(resolution, e.error, len(segments)) from e

        total = sum(s.duration for s in segments)
        if abs(total - source.duration) > job.options.segment_duration:
            raise EncodeFailure(
                resolution,
                f"segments cover {total:.2f}s of a {source.duration:.2f}s source",
                len(segments),
            )

        metadata = encoded.metadata
        base_url = self.settings.webserver_url
        variant = VariantFile(
            resolution=resolution,
            file_name=metadata.file_name,
            size=encoded.size,
            duration=metadata.duration,
            segments=tuple(segments),
            width=metadata.width,
            height=metadata.height,
            fps=metadata.fps,
            codecs=metadata.codecs,
            init_offset=metadata.init_offset,
            init_length=metadata.init_length,
            file_url=variant_file_url(base_url, video_uuid, resolution),
            torrent_url=torrent_url(base_url, video_uuid, resolution),
        )

        descriptor = await self.descriptors.describe(video_uuid, variant, encoded.file_path)
        torrent_path = workdir / torrent_file_name(video_uuid, resolution)
        await _write_synced(torrent_path, descriptor.torrent_bytes)

        variant = replace(
            variant,
            info_hash=descriptor.info_hash,
            magnet_uri=descriptor.magnet_uri,
            manifest_sha256=playlist_sha256(self.manifests.build_variant_playlist(variant)),
        )
        subjob.mark_succeeded(variant, encoded.file_path, torrent_path)

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    async def _carry_existing(self, job: TranscodeJob, hls_dir: Path, torrents_dir: Path) -> List[VariantFile]:
        """Copy published variants this job does not replace into the staged tree."""
        if self.recorder is None:
            return []
        existing = await self.recorder.load(job.video_uuid)
        if existing is None:
            return []

        carried = []
        public_dir = self.settings.get_hls_dir(job.video_uuid)
        for variant in existing.files:
            if variant.resolution in job.resolutions:
                continue
            file_path = public_dir / variant.file_name
            torrent_path = self.settings.get_torrent_path(job.video_uuid, variant.resolution)
            if not file_path.exists() or not torrent_path.exists():
                logger.warning(
                    f"Published {variant.label} of {job.video_uuid} is missing on disk, not carried over"
                )
                continue
            await asyncio.to_thread(shutil.copy2, file_path, hls_dir / variant.file_name)
            await asyncio.to_thread(shutil.copy2, torrent_path, torrents_dir / torrent_path.name)
            carried.append(variant)
        return carried

    async def _publish(self, job: TranscodeJob) -> StreamingPlaylist:
        video_uuid = job.video_uuid
        staging = self.workspace.staging_dir(video_uuid, job.job_id)
        hls_dir = staging / "hls"
        torrents_dir = staging / "torrents"
        hls_dir.mkdir(parents=True, exist_ok=True)
        torrents_dir.mkdir(parents=True, exist_ok=True)

        torrents: Dict[int, Path] = {}
        fresh = []
        for resolution in job.resolutions:
            subjob = job.subjobs[resolution]
            os.replace(subjob.file_path, hls_dir / subjob.variant.file_name)
            torrents[resolution] = torrents_dir / subjob.torrent_path.name
            os.replace(subjob.torrent_path, torrents[resolution])
            fresh.append(subjob.variant)

        variants = fresh
        if job.options.keep_existing:
            carried = await self._carry_existing(job, hls_dir, torrents_dir)
            for variant in carried:
                torrents[variant.resolution] = torrents_dir / torrent_file_name(video_uuid, variant.resolution)
            variants = self.manifests.merge_variants(carried, fresh)

        # Variant playlists first, master playlist last
        for variant in variants:
            await _write_synced(
                hls_dir / variant_playlist_name(variant.resolution),
                self.manifests.build_variant_playlist(variant),
            )
        await _write_synced(hls_dir / SEGMENTS_SHA256_NAME, render_segments_sha256(variants))
        master = self.manifests.build_master_playlist(variants)
        await _write_synced(hls_dir / MASTER_PLAYLIST_NAME, master)

        base_url = self.settings.webserver_url
        playlist = StreamingPlaylist(
            video_uuid=video_uuid,
            type=StreamingPlaylistType.HLS,
            playlist_url=master_playlist_url(base_url, video_uuid),
            segments_sha256_url=segments_sha256_url(base_url, video_uuid),
            files=tuple(variants),
            playlist_hash=playlist_sha256(master),
        )

        async def record() -> None:
            if self.recorder is not None:
                await self.recorder.save(playlist)
            job.mark_published(playlist)

        # A failed recording puts the previous tree back in place
        await retry_with_backoff(
            self.publisher.publish,
            self.settings.publish_max_retries,
            self.settings.retry_base_delay,
            f"publish {video_uuid}",
            video_uuid,
            StreamingPlaylistType.HLS,
            StagedTree(playlist_dir=hls_dir, torrents=torrents),
            commit=record,
        )
        return playlist

    @property
    def jobs(self) -> List[TranscodeJob]:
        return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts
