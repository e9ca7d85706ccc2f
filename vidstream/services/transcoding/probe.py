"""
Source media probing with ffprobe.

Reads duration and stream layout of an uploaded file before any encoding
starts; an unreadable or stream-less file is rejected here with
SourceUnavailable.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import SourceUnavailable
from vidstream.models.domain import SourceMedia

logger = logging.getLogger(__name__)


def _parse_frame_rate(value: str) -> float:
    try:
        num, den = value.split("/")
        return float(num) / float(den) if float(den) > 0 else 0.0
    except (ValueError, ZeroDivisionError):
        return 0.0


def parse_probe_output(path: Path, raw_info: Dict[str, Any]) -> SourceMedia:
    """
    Build a SourceMedia from ffprobe's `-show_format -show_streams` JSON.

    Raises:
        SourceUnavailable: No usable stream or no duration
    """
    format_info = raw_info.get("format", {}) or {}
    video_stream: Optional[Dict[str, Any]] = None
    audio_stream: Optional[Dict[str, Any]] = None

    for stream in raw_info.get("streams", []) or []:
        codec_type = stream.get("codec_type", "")
        # Cover art is exposed as a one-frame video stream
        is_attached_pic = (stream.get("disposition") or {}).get("attached_pic") == 1
        if codec_type == "video" and video_stream is None and not is_attached_pic:
            video_stream = stream
        elif codec_type == "audio" and audio_stream is None:
            audio_stream = stream

    if video_stream is None and audio_stream is None:
        raise SourceUnavailable(str(path), "no audio or video stream")

    try:
        duration = float(format_info.get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0.0
    if duration <= 0:
        raise SourceUnavailable(str(path), "unknown duration")

    width = height = 0
    fps = 0.0
    if video_stream is not None:
        width = int(video_stream.get("width", 0) or 0)
        height = int(video_stream.get("height", 0) or 0)
        fps = _parse_frame_rate(video_stream.get("avg_frame_rate") or video_stream.get("r_frame_rate", "0/1"))

    return SourceMedia(
        path=Path(path),
        duration=duration,
        width=width,
        height=height,
        fps=fps,
        has_video=video_stream is not None,
        has_audio=audio_stream is not None,
        video_codec=(video_stream or {}).get("codec_name", ""),
        audio_codec=(audio_stream or {}).get("codec_name", ""),
        size=int(format_info.get("size", 0) or 0),
    )


class FFprobeSourceProvider:
    """Probes local source files with ffprobe."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def build_command(self, path: Path) -> list:
        return [
            self.settings.ffprobe_path,
            "-hide_banner",
            "-loglevel", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            str(path),
        ]

    async def probe(self, path: Path) -> SourceMedia:
        """
        Probe a source file.

        Raises:
            SourceUnavailable: Missing file, ffprobe error, timeout or unusable media
        """
        path = Path(path)
        if not path.is_file():
            raise SourceUnavailable(str(path), "file not found")

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise SourceUnavailable(str(path), f"ffprobe not found: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.settings.probe_timeout_seconds
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise SourceUnavailable(str(path), f"ffprobe timeout ({self.settings.probe_timeout_seconds}s)")

        if process.returncode != 0:
            error_msg = stderr.decode(errors="replace").strip() or "Unknown ffprobe error"
            logger.warning(f"ffprobe error (code {process.returncode}) for {path}: {error_msg}")
            raise SourceUnavailable(str(path), error_msg)

        try:
            raw_info = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise SourceUnavailable(str(path), f"unparseable ffprobe output: {e}") from e

        source = parse_probe_output(path, raw_info)
        logger.info(
            f"Probed {path.name}: duration={source.duration:.2f}s "
            f"video={source.width}x{source.height}@{source.fps:.2f} audio={source.has_audio}"
        )
        return source
