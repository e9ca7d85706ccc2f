import asyncio
import math
import uuid
from dataclasses import replace
from pathlib import Path

import pytest

from vidstream.core.config import Settings
from vidstream.core.exceptions import EncodeFailure, SourceUnavailable
from vidstream.database.session import close_db, create_tables, get_session_factory, init_db
from vidstream.repositories import video_db_repository
from vidstream.models.domain import AUDIO_RESOLUTION, EncodedSegment, SourceMedia, VariantMetadata
from vidstream.services.playlist_recorder import DatabasePlaylistRecorder
from vidstream.services.storage.publisher import StoragePublisher
from vidstream.services.storage.workspace import TempWorkspace
from vidstream.services.transcoding.encoder import BaseEncoder, EncodedVariant, output_dimensions
from vidstream.services.transcoding.scheduler import TranscodeScheduler

INIT_SECTION_SIZE = 64
SEGMENT_SIZE = 1500


def write_fake_variant(path: Path, resolution: int, duration: float, segment_duration: int):
    """Write a deterministic fragmented file and return its segment layout."""
    count = max(1, int(math.ceil(duration / segment_duration)))
    init = (f"init-{resolution}".encode() * INIT_SECTION_SIZE)[:INIT_SECTION_SIZE]
    chunks = [init]
    segments = []
    offset = INIT_SECTION_SIZE
    remaining = duration
    for index in range(count):
        seg_duration = min(float(segment_duration), remaining)
        remaining -= seg_duration
        data = (f"{resolution}:{index};".encode() * SEGMENT_SIZE)[:SEGMENT_SIZE]
        chunks.append(data)
        segments.append(EncodedSegment(
            index=index,
            duration=seg_duration,
            byte_offset=offset,
            byte_length=len(data),
        ))
        offset += len(data)
    path.write_bytes(b"".join(chunks))
    return segments


class FakeEncoder(BaseEncoder):
    """Encoder double producing small deterministic variant files."""

    def __init__(self, fail_resolutions=(), delay: float = 0.0, gate: asyncio.Event = None,
                 truncate_resolutions=()):
        self.fail_resolutions = set(fail_resolutions)
        self.truncate_resolutions = set(truncate_resolutions)
        self.delay = delay
        self.gate = gate
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def encode(self, source, target, options):
        self.check_target(source, target, options)
        self.calls.append(target.resolution)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if target.resolution in self.fail_resolutions:
                raise EncodeFailure(target.resolution, "simulated encoder crash", 1)
            target.output_dir.mkdir(parents=True, exist_ok=True)
            segments = write_fake_variant(
                target.file_path, target.resolution, source.duration, options.segment_duration
            )
            if target.resolution in self.truncate_resolutions:
                # Reports only the first segment of a complete file
                segments = segments[:1]
        finally:
            self.active -= 1

        if target.resolution == AUDIO_RESOLUTION:
            width = height = 0
            codecs = "mp4a.40.2"
        else:
            width, height = output_dimensions(source, target.resolution)
            codecs = "avc1.64001f,mp4a.40.2"
        metadata = VariantMetadata(
            resolution=target.resolution,
            file_name=target.file_name,
            duration=source.duration,
            width=width,
            height=height,
            fps=0.0 if target.resolution == AUDIO_RESOLUTION else 30.0,
            codecs=codecs,
            init_offset=0,
            init_length=INIT_SECTION_SIZE,
        )
        return EncodedVariant.from_segments(metadata, target.file_path, segments)


class FakeSourceProvider:
    """Probe double: every existing file is a 10s 1280x720 video unless registered otherwise."""

    def __init__(self):
        self.media = {}

    def register(self, path: Path, **fields) -> None:
        self.media[Path(path).name] = fields

    async def probe(self, path: Path) -> SourceMedia:
        path = Path(path)
        if not path.is_file():
            raise SourceUnavailable(str(path), "file not found")
        fields = dict(duration=10.0, width=1280, height=720, fps=30.0,
                      video_codec="h264", audio_codec="aac")
        fields.update(self.media.get(path.name, {}))
        return SourceMedia(path=path, size=path.stat().st_size, **fields)


def make_source(directory: Path, name: str = "source.mp4", **fields) -> SourceMedia:
    """Create a source file on disk and its probe result."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_bytes(b"source-bytes" * 100)
    defaults = dict(duration=10.0, width=1280, height=720, fps=30.0,
                    video_codec="h264", audio_codec="aac")
    defaults.update(fields)
    return replace(SourceMedia(path=path, **defaults), size=path.stat().st_size)


def make_audio_source(directory: Path, name: str = "track.mp3", duration: float = 10.0) -> SourceMedia:
    return make_source(
        directory, name, duration=duration, width=0, height=0, fps=0.0,
        has_video=False, video_codec="", audio_codec="mp3",
    )


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every directory into tmp_path."""
    storage = tmp_path / "storage"
    return Settings(
        _env_file=None,
        log_dir=tmp_path / "logs",
        videos_dir=storage / "videos",
        streaming_playlists_dir=storage / "streaming-playlists",
        torrents_dir=storage / "torrents",
        tmp_dir=storage / "tmp",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        redis_enabled=False,
        webserver_url="http://localhost:9000",
        transcoding_resolutions=[240, 360, 480, 720, 1080],
        audio_companion_resolutions=[360, 240],
        allow_upscale=False,
        segment_duration=4,
        max_concurrent_encodes=2,
        subjob_timeout_seconds=5.0,
        publish_lock_timeout_seconds=0.5,
        publish_max_retries=2,
        teardown_max_retries=1,
        retry_base_delay=0.01,
    )


@pytest.fixture
def workspace(settings):
    return TempWorkspace(settings.tmp_dir)


@pytest.fixture
def publisher(settings, workspace):
    return StoragePublisher(settings, workspace)


@pytest.fixture
def encoder():
    return FakeEncoder()


@pytest.fixture
async def session_factory(settings):
    """Fresh SQLite database with all tables."""
    await init_db(settings)
    await create_tables()
    yield get_session_factory()
    await close_db()


@pytest.fixture
async def scheduler(settings, encoder, publisher, workspace, session_factory):
    scheduler = TranscodeScheduler(
        encoder=encoder,
        publisher=publisher,
        workspace=workspace,
        recorder=DatabasePlaylistRecorder(session_factory),
        settings=settings,
    )
    yield scheduler
    await scheduler.shutdown()


async def insert_video(session_factory, source: SourceMedia, name: str = "clip") -> str:
    """Create the video row a transcoding job records its playlist against."""
    video_uuid = str(uuid.uuid4())
    async with session_factory() as session:
        await video_db_repository.create(
            session, uuid=video_uuid, name=name, source=source, source_path=str(source.path)
        )
        await session.commit()
    return video_uuid
