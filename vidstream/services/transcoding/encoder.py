"""
Encoder adapter: turns a source file into one HLS variant.

FFmpegEncoder drives ffmpeg's HLS muxer in fragmented-MP4 single-file mode,
so each resolution is one `<uuid>-<res>-fragmented.mp4` whose init section
and media segments are byte ranges. ffmpeg's own playlist is parsed for those
ranges and then discarded; published playlists are rendered by the
ManifestBuilder.

The result is an EncodedVariant: metadata plus an async iterator over the
segments, in index order, that can be consumed exactly once.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Iterable, List, Optional, Tuple

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import EncodeFailure
from vidstream.models.domain import (
    AUDIO_RESOLUTION,
    EncodedSegment,
    SourceMedia,
    TranscodeOptions,
    VariantMetadata,
)
from vidstream.services.transcoding.resolutions import to_even

logger = logging.getLogger(__name__)

AAC_CODEC = "mp4a.40.2"

# Frame rate rules: below 720p cap at 30 fps, 720p and above keep up to 60 fps
FPS_AVERAGE = 30
FPS_MAX = 60
KEEP_ORIGIN_FPS_RESOLUTION_MIN = 720
AUDIO_ONLY_COMPANION_FPS = 25

_MAP_RE = re.compile(r'#EXT-X-MAP:URI="(?P<uri>[^"]+)"(?:,BYTERANGE="(?P<length>\d+)@(?P<offset>\d+)")?')
_BYTERANGE_RE = re.compile(r"#EXT-X-BYTERANGE:(?P<length>\d+)(?:@(?P<offset>\d+))?")


@dataclass(frozen=True)
class EncodeTarget:
    """Where and at which resolution a variant should be written."""
    resolution: int
    output_dir: Path
    file_name: str

    @property
    def file_path(self) -> Path:
        return self.output_dir / self.file_name


class EncodedVariant:
    """Encoder output: variant metadata and a single-use stream of segments."""

    def __init__(self, metadata: VariantMetadata, file_path: Path, segments: AsyncIterator[EncodedSegment]):
        self.metadata = metadata
        self.file_path = file_path
        self._segments = segments
        self._consumed = False

    @classmethod
    def from_segments(
        cls,
        metadata: VariantMetadata,
        file_path: Path,
        segments: Iterable[EncodedSegment],
    ) -> "EncodedVariant":
        async def _iterate():
            for segment in segments:
                yield segment
        return cls(metadata, file_path, _iterate())

    @property
    def resolution(self) -> int:
        return self.metadata.resolution

    @property
    def size(self) -> int:
        return self.file_path.stat().st_size

    def __aiter__(self) -> AsyncIterator[EncodedSegment]:
        if self._consumed:
            raise RuntimeError(f"Segments of {self.metadata.label} were already consumed")
        self._consumed = True
        return self._segments


def compute_output_fps(source_fps: float, resolution: int) -> float:
    if source_fps <= 0:
        return float(FPS_AVERAGE)
    cap = FPS_MAX if resolution >= KEEP_ORIGIN_FPS_RESOLUTION_MIN else FPS_AVERAGE
    return float(min(source_fps, cap))


def h264_level(height: int, fps: float) -> str:
    high_fps = fps > 30
    if height <= 480:
        return "3.0"
    if height <= 720:
        return "3.2" if high_fps else "3.1"
    if height <= 1080:
        return "4.2" if high_fps else "4.0"
    return "5.1"


def h264_codec_string(level: str) -> str:
    """RFC 6381 codec string for an x264 High profile stream at `level`."""
    return f"avc1.6400{int(round(float(level) * 10)):02x}"


def output_dimensions(source: SourceMedia, resolution: int) -> Tuple[int, int]:
    """Width and height of a video variant, keeping the source aspect ratio."""
    if source.has_video and source.width and source.height:
        width = to_even(int(round(source.width * resolution / source.height)))
    else:
        width = to_even(int(round(resolution * 16 / 9)))
    return max(width, 2), resolution


def parse_ffmpeg_playlist(content: str) -> Tuple[int, int, List[EncodedSegment]]:
    """
    Extract (init_offset, init_length, segments) from an ffmpeg single-file playlist.
    A BYTERANGE without an offset continues where the previous range ended.
    """
    init_offset = init_length = 0
    segments: List[EncodedSegment] = []
    pending_duration: Optional[float] = None
    pending_range: Optional[Tuple[int, int]] = None
    next_offset = 0

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#EXT-X-MAP:"):
            match = _MAP_RE.match(line)
            if match and match.group("length"):
                init_length = int(match.group("length"))
                init_offset = int(match.group("offset"))
                next_offset = init_offset + init_length
        elif line.startswith("#EXTINF:"):
            pending_duration = float(line[len("#EXTINF:"):].split(",", 1)[0])
        elif line.startswith("#EXT-X-BYTERANGE:"):
            match = _BYTERANGE_RE.match(line)
            if match:
                length = int(match.group("length"))
                offset = int(match.group("offset")) if match.group("offset") else next_offset
                pending_range = (offset, length)
                next_offset = offset + length
        elif not line.startswith("#"):
            if pending_duration is not None and pending_range is not None:
                segments.append(EncodedSegment(
                    index=len(segments),
                    duration=pending_duration,
                    byte_offset=pending_range[0],
                    byte_length=pending_range[1],
                ))
            pending_duration = None
            pending_range = None

    return init_offset, init_length, segments


class BaseEncoder(ABC):
    """Interface of every encoder backend."""

    def check_target(self, source: SourceMedia, target: EncodeTarget, options: TranscodeOptions) -> None:
        """
        Raises:
            EncodeFailure: Target not producible from this source
        """
        if target.resolution == AUDIO_RESOLUTION:
            if not source.has_audio:
                raise EncodeFailure(target.resolution, "source has no audio stream")
            return
        if source.has_video and not options.allow_upscale and target.resolution > to_even(source.height):
            raise EncodeFailure(
                target.resolution,
                f"target exceeds source height {source.height} and upscaling is disabled"
            )

    @abstractmethod
    async def encode(self, source: SourceMedia, target: EncodeTarget, options: TranscodeOptions) -> EncodedVariant:
        """Produce one variant under target.output_dir."""


class FFmpegEncoder(BaseEncoder):
    """Encodes variants with an external ffmpeg process."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_command(
        self,
        source: SourceMedia,
        target: EncodeTarget,
        options: TranscodeOptions,
        playlist_path: Path,
    ) -> List[str]:
        s = self.settings
        cmd = [s.ffmpeg_path, "-hide_banner", "-loglevel", s.ffmpeg_loglevel, "-y"]

        if target.resolution == AUDIO_RESOLUTION:
            cmd.extend(["-i", str(source.path), "-map", "0:a:0", "-vn"])
            cmd.extend(self._audio_params())
        else:
            width, height = output_dimensions(source, target.resolution)
            if source.is_audio_only:
                fps = float(AUDIO_ONLY_COMPANION_FPS)
                cmd.extend([
                    "-f", "lavfi", "-i", f"color=c=black:s={width}x{height}:r={AUDIO_ONLY_COMPANION_FPS}",
                    "-i", str(source.path),
                    "-map", "0:v:0", "-map", "1:a:0", "-shortest",
                ])
            else:
                fps = compute_output_fps(source.fps, target.resolution)
                cmd.extend(["-i", str(source.path), "-map", "0:v:0"])
                if source.has_audio:
                    cmd.extend(["-map", "0:a:0"])
            cmd.extend(self._video_params(width, height, fps, options))
            if source.has_audio:
                cmd.extend(self._audio_params())

        cmd.extend(self._hls_params(target, options, playlist_path))
        return cmd

    def _video_params(self, width: int, height: int, fps: float, options: TranscodeOptions) -> List[str]:
        level = h264_level(height, fps)
        return [
            "-c:v", self.settings.video_encoder,
            "-preset", self.settings.x264_preset,
            "-profile:v", "high",
            "-level:v", level,
            "-pix_fmt", "yuv420p",
            "-vf", f"scale={width}:{height}",
            "-r", f"{fps:g}",
            "-force_key_frames", f"expr:gte(t,n_forced*{options.segment_duration})",
        ]

    def _audio_params(self) -> List[str]:
        return ["-c:a", self.settings.audio_encoder, "-b:a", self.settings.audio_bitrate]

    @staticmethod
    def _hls_params(target: EncodeTarget, options: TranscodeOptions, playlist_path: Path) -> List[str]:
        return [
            "-f", "hls",
            "-hls_time", str(options.segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_type", "fmp4",
            "-hls_flags", "single_file",
            "-hls_segment_filename", str(target.file_path),
            str(playlist_path),
        ]

    def _metadata(self, source: SourceMedia, target: EncodeTarget, duration: float,
                  init_offset: int, init_length: int) -> VariantMetadata:
        if target.resolution == AUDIO_RESOLUTION:
            return VariantMetadata(
                resolution=target.resolution,
                file_name=target.file_name,
                duration=duration,
                codecs=AAC_CODEC,
                init_offset=init_offset,
                init_length=init_length,
            )

        width, height = output_dimensions(source, target.resolution)
        fps = float(AUDIO_ONLY_COMPANION_FPS) if source.is_audio_only else compute_output_fps(source.fps, target.resolution)
        codecs = h264_codec_string(h264_level(height, fps))
        if source.has_audio:
            codecs = f"{codecs},{AAC_CODEC}"
        return VariantMetadata(
            resolution=target.resolution,
            file_name=target.file_name,
            duration=duration,
            width=width,
            height=height,
            fps=fps,
            codecs=codecs,
            init_offset=init_offset,
            init_length=init_length,
        )

    async def encode(self, source: SourceMedia, target: EncodeTarget, options: TranscodeOptions) -> EncodedVariant:
        """
        Run ffmpeg for one resolution.

        Raises:
            EncodeFailure: Upscale refused, ffmpeg missing or exiting non-zero,
                or an output without segments
        """
        self.check_target(source, target, options)
        target.output_dir.mkdir(parents=True, exist_ok=True)
        playlist_path = target.output_dir / f"{target.resolution}.ffmpeg.m3u8"
        cmd = self.build_command(source, target, options, playlist_path)

        logger.info(f"Encoding {target.resolution}p of {source.path.name} into {target.file_path}")
        logger.debug(f"ffmpeg command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise EncodeFailure(target.resolution, f"ffmpeg not found: {e}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Timeout or video deletion: do not leave ffmpeg running
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        produced: List[EncodedSegment] = []
        init_offset = init_length = 0
        if playlist_path.exists():
            init_offset, init_length, produced = parse_ffmpeg_playlist(playlist_path.read_text())
            playlist_path.unlink()

        if process.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip()[-1000:] or f"exit code {process.returncode}"
            raise EncodeFailure(target.resolution, error_msg, len(produced))
        if not produced or not target.file_path.exists():
            raise EncodeFailure(target.resolution, "ffmpeg produced no segments", len(produced))

        metadata = self._metadata(
            source, target, sum(s.duration for s in produced), init_offset, init_length
        )
        logger.info(
            f"Encoded {metadata.label} of {source.path.name}: "
            f"{len(produced)} segments, {metadata.duration:.2f}s"
        )
        return EncodedVariant.from_segments(metadata, target.file_path, produced)
